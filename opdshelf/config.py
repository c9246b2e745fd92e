from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .env import read_env, read_env_flag

DEFAULT_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
DEFAULT_BOOKS_DIR = "./books"
DB_FILENAME = ".opdshelf.db"


@dataclass(frozen=True)
class Settings:
    books_dir: Path
    db_path: Path
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    reverse_proxy: bool = False
    reverse_proxy_host: str = ""
    reverse_proxy_port: str = ""
    admin_username: Optional[str] = None
    admin_password_hash: Optional[str] = None

    @property
    def auth_enabled(self) -> bool:
        return bool(self.admin_username and self.admin_password_hash)


def _parse_port(raw: Optional[str]) -> int:
    if not raw:
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError:
        return DEFAULT_PORT
    if not 0 < port < 65536:
        return DEFAULT_PORT
    return port


def load_settings() -> Settings:
    """Build the process configuration from the environment.

    Called once at startup; the resulting value is stored on the application
    and handed to everything that needs it.
    """

    books_dir = Path(read_env("BOOKS_DIR") or DEFAULT_BOOKS_DIR).expanduser()
    books_dir.mkdir(parents=True, exist_ok=True)
    db_env = read_env("OPDSHELF_DB_PATH")
    db_path = Path(db_env).expanduser() if db_env else books_dir / DB_FILENAME

    return Settings(
        books_dir=books_dir,
        db_path=db_path,
        port=_parse_port(read_env("PORT")),
        host=read_env("HOST") or DEFAULT_HOST,
        reverse_proxy=read_env_flag("REVERSE_PROXY"),
        reverse_proxy_host=read_env("REVERSE_PROXY_HOST", "") or "",
        reverse_proxy_port=read_env("REVERSE_PROXY_PORT", "") or "",
        admin_username=read_env("ADMIN_USERNAME"),
        admin_password_hash=read_env("ADMIN_PASSWORD_HASH"),
    )

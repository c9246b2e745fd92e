from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

FILE_SUFFIX = "_FILE"
TRUE_VALUES = {"1", "true", "yes", "on"}

logger = logging.getLogger("opdshelf.env")


def _read_secret_file(name: str, file_path: str) -> Optional[str]:
    try:
        raw = Path(file_path).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("%s%s points at unreadable file %s: %s", name, FILE_SUFFIX, file_path, exc)
        return None
    return raw.rstrip("\r\n")


def read_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return ``$NAME``, else the contents of the file named by ``$NAME_FILE``.

    Empty values count as unset so an empty ``ADMIN_PASSWORD_HASH=`` in a
    compose file does not mask the secret file.
    """

    direct = os.environ.get(name, "")
    if direct:
        return direct

    file_path = os.environ.get(name + FILE_SUFFIX, "")
    if file_path:
        value = _read_secret_file(name, file_path)
        if value is not None:
            return value
    return default


def read_env_flag(name: str, default: bool = False) -> bool:
    value = read_env(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES

from __future__ import annotations

import base64
import binascii
import datetime as dt
import secrets
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from .config import Settings
from .db import create_session, delete_session, delete_sessions_before, get_session, touch_session

SESSION_COOKIE = "opdshelf_session"
SESSION_MAX_AGE = 15 * 24 * 60 * 60
BASIC_REALM = 'Basic realm="OPDShelf"'


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


def verify_credentials(settings: Settings, username: str, password: str) -> bool:
    if not settings.auth_enabled:
        return False
    if not secrets.compare_digest((username or "").encode("utf-8"), settings.admin_username.encode("utf-8")):
        return False
    hasher = PasswordHasher()
    try:
        return hasher.verify(settings.admin_password_hash, password or "")
    except (VerifyMismatchError, InvalidHash, VerificationError):
        return False


def parse_basic_auth(header: Optional[str]) -> Optional[tuple[str, str]]:
    if not header:
        return None
    scheme, _, encoded = header.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def check_basic_auth(settings: Settings, header: Optional[str]) -> bool:
    credentials = parse_basic_auth(header)
    if credentials is None:
        return False
    return verify_credentials(settings, *credentials)


def create_session_token() -> str:
    return secrets.token_urlsafe(32)


def sign_in(settings: Settings, username: str) -> str:
    cutoff = (_now() - dt.timedelta(seconds=SESSION_MAX_AGE)).isoformat()
    delete_sessions_before(settings.db_path, cutoff)
    session_id = create_session_token()
    create_session(settings.db_path, session_id, username, _now_iso())
    return session_id


def is_authenticated(settings: Settings, session_id: Optional[str]) -> bool:
    if not session_id:
        return False
    session = get_session(settings.db_path, session_id)
    if not session:
        return False
    last_seen = dt.datetime.fromisoformat(session["last_seen"])
    if _now() - last_seen > dt.timedelta(seconds=SESSION_MAX_AGE):
        delete_session(settings.db_path, session_id)
        return False
    touch_session(settings.db_path, session_id, _now_iso())
    return True


def sign_out(settings: Settings, session_id: Optional[str]) -> None:
    if not session_id:
        return
    delete_session(settings.db_path, session_id)

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
import time

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from market_scout.config import settings
from market_scout.database import get_db
from market_scout.errors import ErrorCode, ScoutError
from market_scout.models.user import User


security = HTTPBearer(auto_error=False)


def _sign(payload: str) -> str:
    return hmac.new(settings.auth_secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def create_access_token(user_id: int, ttl_seconds: int | None = None) -> str:
    exp = int(time.time()) + (ttl_seconds if ttl_seconds is not None else settings.auth_token_ttl_seconds)
    payload = f"{user_id}:{exp}:{secrets.token_hex(6)}"
    token_raw = f"{payload}:{_sign(payload)}".encode("utf-8")
    return base64.urlsafe_b64encode(token_raw).decode("utf-8").rstrip("=")


def decode_access_token(token: str) -> int | None:
    if not token:
        return None
    padding = "=" * (-len(token) % 4)
    try:
        decoded = base64.urlsafe_b64decode((token + padding).encode("utf-8")).decode("utf-8")
        user_id_str, exp_str, nonce, signature = decoded.split(":", 3)
    except (ValueError, UnicodeDecodeError):
        return None

    if not hmac.compare_digest(_sign(f"{user_id_str}:{exp_str}:{nonce}"), signature):
        return None
    try:
        exp = int(exp_str)
        user_id = int(user_id_str)
    except ValueError:
        return None
    if exp < int(time.time()):
        return None
    return user_id


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ScoutError(ErrorCode.AUTH_REQUIRED, "Authentication required")

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise ScoutError(ErrorCode.AUTH_REQUIRED, "Invalid token")

    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if not user:
        raise ScoutError(ErrorCode.AUTH_REQUIRED, "Invalid user")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise ScoutError(ErrorCode.PERMISSION_DENIED, "Admin access required")
    return current_user

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Cookie, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlmodel import Session

from khojpayo import config
from khojpayo.db.db import get_session
from khojpayo.models.user import Profile

logger = logging.getLogger(__name__)

SESSION_COOKIE = "access_token"

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(profile: Profile) -> str:
    now = datetime.now(timezone.utc)

    jwt_payload = {
        "sub": str(profile.id),
        "role": profile.role,
        "iat": now,
        "exp": now + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
    }

    return jwt.encode(jwt_payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def _extract_token(
    credentials: Optional[HTTPAuthorizationCredentials],
    cookie_token: Optional[str],
) -> Optional[str]:
    # Authorization header wins over the session cookie
    if credentials and credentials.credentials:
        return credentials.credentials
    if cookie_token:
        return cookie_token
    return None


def _decode(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])


def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(default=None),
):
    token = _extract_token(credentials, access_token)
    if not token:
        return None

    try:
        return _decode(token)
    except JWTError:
        return None


def get_current_user_required(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    access_token: Optional[str] = Cookie(default=None),
):
    token = _extract_token(credentials, access_token)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        return _decode(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def caller_id(current_user) -> uuid.UUID:
    try:
        return uuid.UUID(current_user["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def get_db_user(session: Session, current_user) -> Profile:
    user = session.get(Profile, caller_id(current_user))

    if not user:
        logger.warning("token for unknown profile %s", current_user.get("sub"))
        raise HTTPException(status_code=404, detail="User not found")

    return user


def get_optional_db_user(session: Session, current_user) -> Optional[Profile]:
    if not current_user:
        return None

    try:
        return session.get(Profile, uuid.UUID(current_user["sub"]))
    except (KeyError, TypeError, ValueError):
        return None


def require_user(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
) -> Profile:
    return get_db_user(session, current_user)


def require_admin(user: Profile = Depends(require_user)) -> Profile:
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail="This action requires platform administrator privileges",
        )
    return user

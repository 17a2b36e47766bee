"""
Password hashing and JWT handling.

Access and refresh tokens are both HS256 JWTs over the user id. The ``type``
claim keeps them apart: a refresh token is only accepted by ``/auth/refresh``
and never authenticates an API call or a push channel.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from passlib.context import CryptContext
from app.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def _encode(subject, token_type: str, lifetime: timedelta) -> str:
    claims = {
        "exp": datetime.now(timezone.utc) + lifetime,
        "sub": str(subject),
        "type": token_type,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(subject, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(subject, ACCESS, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(subject, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(subject, REFRESH, expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: str, token_type: str = ACCESS) -> Optional[str]:
    """User id (``sub``) of a valid, unexpired token of ``token_type``, else None."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != token_type:
        return None
    return payload.get("sub")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

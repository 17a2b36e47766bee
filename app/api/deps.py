import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import UserProfile

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


def user_from_token(db: Session, token: Optional[str]) -> Optional[UserProfile]:
    """Active profile for a bearer token, or None."""
    if not token:
        return None
    subject = decode_token(token)
    try:
        user_id = uuid.UUID(subject) if subject else None
    except ValueError:
        return None
    if user_id is None:
        return None
    user = db.query(UserProfile).filter(UserProfile.id == user_id).first()
    if not user or not user.is_active:
        return None
    return user


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> UserProfile:
    user = user_from_token(db, token)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


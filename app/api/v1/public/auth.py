import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.core.security import REFRESH, create_access_token, create_refresh_token, decode_token, get_password_hash, verify_password

from app.api.deps import get_current_user
from app.models.user import UserProfile
from app.schemas.user import RefreshRequest, UserCreate, Token, User as UserSchema

router = APIRouter(prefix="/auth", tags=["auth"])


def _build_token_response(user: UserProfile) -> Token:
    access_token = create_access_token(subject=str(user.id))
    refresh_token = create_refresh_token(subject=str(user.id))
    return Token(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        user=UserSchema.model_validate(user),
    )


@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
def register(body: UserCreate, db: Session = Depends(get_db)):
    if db.query(UserProfile).filter(UserProfile.email == body.email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )
    user = UserProfile(
        email=body.email,
        password_hash=get_password_hash(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        profile_image=body.profile_image,
        user_role=body.user_role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _build_token_response(user)


@router.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = db.query(UserProfile).filter(UserProfile.email == form_data.username).first()
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return _build_token_response(user)


@router.post("/refresh", response_model=Token)
def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    """Trade a refresh token for a fresh token pair."""
    subject = decode_token(body.refresh_token, token_type=REFRESH)
    try:
        user_id = uuid.UUID(subject) if subject else None
    except ValueError:
        user_id = None
    user = db.query(UserProfile).filter(UserProfile.id == user_id).first() if user_id else None
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _build_token_response(user)


@router.post("/logout", status_code=status.HTTP_200_OK)
def logout(current_user: UserProfile = Depends(get_current_user)):
    """Tokens are stateless; the client discards its copy."""
    return {"message": "Successfully logged out"}

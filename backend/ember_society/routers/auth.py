from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
import logging

from ember_society.core.database import get_db
from ember_society.core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    decode_access_token,
    InvalidTokenError,
    oauth2_scheme,
    optional_oauth2_scheme,
)
from ember_society.models.user import User
from ember_society.schemas.user import UserCreate, Token, CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=Token, status_code=201)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    logger.info(f"Registration request for {user_data.email} ({user_data.username})")

    result = await db.execute(
        select(User).where(or_(User.email == user_data.email, User.username == user_data.username))
    )
    existing = result.scalar_one_or_none()
    if existing:
        detail = "Email already registered" if existing.email == user_data.email else "Username already taken"
        logger.warning(f"Registration rejected: {detail}")
        raise HTTPException(status_code=400, detail=detail)

    try:
        new_user = User(
            email=user_data.email,
            username=user_data.username,
            display_name=user_data.display_name,
            hashed_password=get_password_hash(user_data.password),
            last_login_at=datetime.utcnow(),
        )
        db.add(new_user)
        await db.commit()
        await db.refresh(new_user)
    except Exception as e:
        logger.error(f"Registration error: {type(e).__name__}: {str(e)}")
        await db.rollback()
        raise HTTPException(status_code=500, detail="Registration failed")

    logger.info(f"User created with ID: {new_user.id}")
    return {
        "access_token": create_access_token(new_user.id, new_user.username),
        "token_type": "bearer",
    }


@router.post("/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    # The username field accepts either a username or an email
    result = await db.execute(
        select(User).where(or_(User.email == form_data.username, User.username == form_data.username))
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(form_data.password, user.hashed_password):
        logger.warning(f"Login failed for: {form_data.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user.last_login_at = datetime.utcnow()
    await db.commit()

    logger.info(f"Login successful for user {user.id}")
    return {"access_token": create_access_token(user.id, user.username), "token_type": "bearer"}


async def _user_from_token(token: str, db: AsyncSession) -> Optional[User]:
    try:
        user_id, _ = decode_access_token(token)
    except InvalidTokenError:
        return None
    return await db.get(User, user_id)


async def get_current_user(token: str = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)) -> User:
    user = await _user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    token: Optional[str] = Depends(optional_oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Anonymous callers get ``None``; a bad token is treated as anonymous."""
    if not token:
        return None
    return await _user_from_token(token, db)


async def get_current_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


@router.get("/me", response_model=CurrentUser)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return current_user

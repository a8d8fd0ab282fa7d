from typing import Any
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from servicehub.core import security
from servicehub.models.user import Token, UserCreate, UserLogin, UserResponse, AuthResponse
from servicehub.db.database import get_db
from servicehub.db.db_models import User, UserRole, ProfessionalProfile

router = APIRouter()


def _token_for(user: User) -> Token:
    return Token(
        access_token=security.create_access_token(user.id, user.role),
        token_type="bearer",
    )


async def _authenticate(db: AsyncSession, email: str, password: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user or not security.verify_password(password, user.password_hash):
        raise HTTPException(status_code=400, detail="Incorrect email or password")
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_in: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Register a client or professional. Professionals get an empty profile."""
    user = User(
        email=user_in.email,
        password_hash=security.get_password_hash(user_in.password),
        full_name=user_in.full_name,
        phone=user_in.phone,
        role=user_in.role.value,
        avatar_url=user_in.avatar_url,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="A user with this email already exists")

    if user.role == UserRole.PRO.value:
        db.add(ProfessionalProfile(user_id=user.id, bio=user_in.bio))
        await db.flush()

    await db.refresh(user)
    return AuthResponse(user=UserResponse.model_validate(user), token=_token_for(user))


@router.post("/login", response_model=Token)
async def login_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """OAuth2 compatible token login, get an access token for future requests."""
    user = await _authenticate(db, form_data.username, form_data.password)
    return _token_for(user)


@router.post("/login/json", response_model=Token)
async def login_json(
    user_in: UserLogin,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """JSON based login for the mobile apps."""
    user = await _authenticate(db, user_in.email, user_in.password)
    return _token_for(user)

from pydantic import BaseModel, ConfigDict, EmailStr
from typing import Optional
from datetime import datetime
from servicehub.db.db_models import UserRole


# Token Schemas
class Token(BaseModel):
    access_token: str
    token_type: str


class CurrentUser(BaseModel):
    """Identity carried by a verified bearer token."""
    id: str
    role: UserRole


# User Schemas
class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: str
    role: UserRole = UserRole.CLIENT
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None  # For professionals


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    full_name: str
    role: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class UserIdentity(BaseModel):
    """Display identity of the other party in a chat or booking."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    avatar_url: Optional[str] = None


class AuthResponse(BaseModel):
    user: UserResponse
    token: Token

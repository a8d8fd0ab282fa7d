from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from servicehub.core import security
from servicehub.core.config import settings
from servicehub.db.database import get_db
from servicehub.db.db_models import UserRole
from servicehub.models.user import CurrentUser
from servicehub.services.booking_service import BookingService
from servicehub.services.budget_service import BudgetService
from servicehub.services.chat_service import ChatService
from servicehub.services.notification_service import NotificationBus, get_notification_bus

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/login"
)


async def get_current_user(token: str = Depends(reusable_oauth2)) -> CurrentUser:
    """Trust the identity in a valid token; no store lookup."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = security.decode_access_token(token)
        return CurrentUser(id=payload.get("sub"), role=payload.get("role"))
    except (JWTError, ValidationError):
        raise credentials_exception


async def get_current_client(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if current_user.role != UserRole.CLIENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only clients can perform this action",
        )
    return current_user


async def get_current_professional(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if current_user.role != UserRole.PRO:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only professionals can perform this action",
        )
    return current_user


def get_bus() -> NotificationBus:
    return get_notification_bus()


def get_chat_service(
    db: AsyncSession = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
) -> ChatService:
    return ChatService(db, bus)


def get_budget_service(
    db: AsyncSession = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
) -> BudgetService:
    return BudgetService(db, bus)


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    bus: NotificationBus = Depends(get_bus),
) -> BookingService:
    return BookingService(db, bus)

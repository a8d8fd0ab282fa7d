"""
Domain exceptions raised by the chat, budget and booking engines.

Each exception carries its HTTP status so the API layer can translate it
without inspecting message text.
"""

from typing import Any, Dict, Optional

from fastapi import status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class ValidationException(DomainException):
    """Missing or malformed required input."""

    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedException(DomainException):
    """Raised when the caller is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Authenticated, but not allowed to act on this resource."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """The requested transition is not allowed from the current status."""

    status_code = status.HTTP_409_CONFLICT


class BudgetExpiredException(ConflictException):
    def __init__(self, budget_id: str) -> None:
        super().__init__(
            "Budget has expired",
            code="BUDGET_EXPIRED",
            details={"budget_id": budget_id},
        )


class NotificationDeliveryError(Exception):
    """A publish could not be delivered. Always caught inside the bus."""


class NotificationBusNotInitialized(RuntimeError):
    """The notification bus was used before init_notification_bus()."""


ValidationError = ValidationException
NotFoundError = NotFoundException
ForbiddenError = ForbiddenException
ConflictError = ConflictException
BudgetExpiredError = BudgetExpiredException

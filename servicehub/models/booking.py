from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from servicehub.db.db_models import Booking, UserRole
from servicehub.models.service import ServiceSummary
from servicehub.models.user import UserIdentity


class BookingCreate(BaseModel):
    professional_id: Optional[str] = None
    service_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


class BookingClientInfo(BaseModel):
    """Client contact details captured when the booking was requested."""
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


class BookingResponse(BaseModel):
    id: str
    status: str
    client_id: str
    professional_id: str
    service_id: str
    scheduled_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None
    service: Optional[ServiceSummary] = None
    client: Optional[BookingClientInfo] = None
    professional: Optional[UserIdentity] = None

    @classmethod
    def from_booking(cls, booking: Booking, viewer_role: Optional[str] = None) -> "BookingResponse":
        """Expects ``booking.service`` loaded down to the professional's user."""
        professional = None
        if viewer_role == UserRole.CLIENT.value and booking.service is not None:
            profile = booking.service.professional
            if profile is not None and profile.user is not None:
                professional = UserIdentity.model_validate(profile.user)

        return cls(
            id=booking.id,
            status=booking.status,
            client_id=booking.client_id,
            professional_id=booking.professional_id,
            service_id=booking.service_id,
            scheduled_at=booking.scheduled_at,
            latitude=booking.latitude,
            longitude=booking.longitude,
            address=booking.address,
            created_at=booking.created_at,
            service=ServiceSummary.model_validate(booking.service) if booking.service else None,
            client=BookingClientInfo(
                id=booking.client_id,
                name=booking.client_name,
                phone=booking.client_phone,
                email=booking.client_email,
                avatar_url=booking.client_avatar_url,
            ),
            professional=professional,
        )

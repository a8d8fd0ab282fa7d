import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicehub.core.exceptions import (
    ConflictException, ForbiddenException, NotFoundException, ValidationException,
)
from servicehub.db.db_models import (
    Booking, BookingStatus, ProfessionalProfile, Service, User, UserRole,
    as_utc_naive, utcnow,
)
from servicehub.services import payloads
from servicehub.services.notification_service import (
    NotificationBus, SocketEvent, client_channel, professional_channel,
)

logger = logging.getLogger(__name__)


class BookingService:
    """Scheduled-service offers: REQUESTED -> ACCEPTED | CANCELLED."""

    def __init__(self, db: AsyncSession, bus: NotificationBus):
        self.db = db
        self.bus = bus

    def _booking_query(self):
        return select(Booking).options(
            selectinload(Booking.service)
            .selectinload(Service.professional)
            .selectinload(ProfessionalProfile.user),
        ).execution_options(populate_existing=True)

    async def get_booking(self, booking_id: str) -> Booking:
        result = await self.db.execute(self._booking_query().where(Booking.id == booking_id))
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        return booking

    async def create_booking(
        self,
        client_id: str,
        role: str,
        professional_id: Optional[str],
        service_id: Optional[str],
        scheduled_at: Optional[datetime],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        address: Optional[str] = None,
    ) -> Booking:
        if role != UserRole.CLIENT.value:
            raise ForbiddenException("Only clients can create bookings")
        if not professional_id or not service_id or scheduled_at is None:
            raise ValidationException("professional_id, service_id and scheduled_at are required")

        service = await self.db.scalar(
            select(Service)
            .options(selectinload(Service.professional))
            .where(Service.id == service_id)
        )
        if service is None:
            raise NotFoundException("Service not found", details={"service_id": service_id})
        if await self.db.get(User, professional_id) is None:
            raise NotFoundException(
                "Professional not found", details={"professional_id": professional_id}
            )
        if service.professional.user_id != professional_id:
            raise ValidationException(
                "Service is not offered by this professional",
                details={"service_id": service_id, "professional_id": professional_id},
            )
        client = await self.db.get(User, client_id)
        if client is None:
            raise NotFoundException("Client not found", details={"client_id": client_id})

        booking = Booking(
            client_id=client.id,
            professional_id=professional_id,
            service_id=service.id,
            status=BookingStatus.REQUESTED.value,
            scheduled_at=as_utc_naive(scheduled_at),
            latitude=latitude,
            longitude=longitude,
            address=address,
            client_name=client.full_name,
            client_phone=client.phone,
            client_email=client.email,
            client_avatar_url=client.avatar_url,
        )
        self.db.add(booking)
        await self.db.commit()
        logger.info("Booking %s requested by %s for service %s", booking.id, client_id, service_id)

        booking = await self.get_booking(booking.id)
        await self.bus.publish(
            professional_channel(professional_id),
            SocketEvent.NEW_BOOKING_OFFER,
            payloads.booking_offer(booking),
        )
        return booking

    async def list_mine(self, user_id: str, role: str) -> List[Booking]:
        if role == UserRole.PRO.value:
            condition = Booking.professional_id == user_id
        else:
            condition = Booking.client_id == user_id
        result = await self.db.execute(
            self._booking_query().where(condition).order_by(Booking.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_pending(self, professional_id: str, role: str) -> List[Booking]:
        if role != UserRole.PRO.value:
            raise ForbiddenException("Only professionals can list pending bookings")
        result = await self.db.execute(
            self._booking_query()
            .where(
                Booking.professional_id == professional_id,
                Booking.status == BookingStatus.REQUESTED.value,
            )
            .order_by(Booking.created_at.desc())
        )
        return list(result.scalars().all())

    async def _respond(
        self, booking_id: str, professional_id: str, target: BookingStatus
    ) -> Booking:
        booking = await self.get_booking(booking_id)
        if booking.professional_id != professional_id:
            raise ForbiddenException("Booking belongs to another professional")
        if booking.status != BookingStatus.REQUESTED.value:
            raise ConflictException(
                "Booking has already been answered", details={"status": booking.status}
            )

        result = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.REQUESTED.value)
            .values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            raise ConflictException("Booking has already been answered")

        logger.info("Booking %s -> %s", booking_id, target.value)
        return await self.get_booking(booking_id)

    async def accept(self, booking_id: str, professional_id: str) -> Booking:
        booking = await self._respond(booking_id, professional_id, BookingStatus.ACCEPTED)
        await self.bus.publish(
            client_channel(booking.client_id),
            SocketEvent.BOOKING_ACCEPTED,
            {"id": booking.id, "status": booking.status, "scheduledAt": booking.scheduled_at},
        )
        return booking

    async def reject(self, booking_id: str, professional_id: str) -> Booking:
        booking = await self._respond(booking_id, professional_id, BookingStatus.CANCELLED)
        await self.bus.publish(
            client_channel(booking.client_id),
            SocketEvent.BOOKING_REJECTED,
            {"id": booking.id, "status": booking.status},
        )
        return booking

from typing import Any, List
from fastapi import APIRouter, Depends, status
from servicehub.api import deps
from servicehub.models.booking import BookingCreate, BookingResponse
from servicehub.models.user import CurrentUser
from servicehub.services.booking_service import BookingService

router = APIRouter()


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_in: BookingCreate,
    current_user: CurrentUser = Depends(deps.get_current_user),
    bookings: BookingService = Depends(deps.get_booking_service),
) -> Any:
    """Client books a professional's service for a given time."""
    booking = await bookings.create_booking(
        current_user.id,
        current_user.role.value,
        professional_id=booking_in.professional_id,
        service_id=booking_in.service_id,
        scheduled_at=booking_in.scheduled_at,
        latitude=booking_in.latitude,
        longitude=booking_in.longitude,
        address=booking_in.address,
    )
    return BookingResponse.from_booking(booking, current_user.role.value)


@router.get("/mine", response_model=List[BookingResponse])
async def read_my_bookings(
    current_user: CurrentUser = Depends(deps.get_current_user),
    bookings: BookingService = Depends(deps.get_booking_service),
) -> Any:
    """Bookings where the caller is the client or the professional."""
    role = current_user.role.value
    return [
        BookingResponse.from_booking(b, role)
        for b in await bookings.list_mine(current_user.id, role)
    ]


@router.get("/pending", response_model=List[BookingResponse])
async def read_pending_bookings(
    current_user: CurrentUser = Depends(deps.get_current_user),
    bookings: BookingService = Depends(deps.get_booking_service),
) -> Any:
    """Offers still waiting for the professional's answer."""
    role = current_user.role.value
    return [
        BookingResponse.from_booking(b, role)
        for b in await bookings.list_pending(current_user.id, role)
    ]


@router.patch("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str,
    current_user: CurrentUser = Depends(deps.get_current_professional),
    bookings: BookingService = Depends(deps.get_booking_service),
) -> Any:
    booking = await bookings.accept(booking_id, current_user.id)
    return BookingResponse.from_booking(booking, current_user.role.value)


@router.patch("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str,
    current_user: CurrentUser = Depends(deps.get_current_professional),
    bookings: BookingService = Depends(deps.get_booking_service),
) -> Any:
    booking = await bookings.reject(booking_id, current_user.id)
    return BookingResponse.from_booking(booking, current_user.role.value)

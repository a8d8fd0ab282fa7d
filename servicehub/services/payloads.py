"""Event payloads published on the notification bus (camelCase wire keys)."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from servicehub.core.config import settings
from servicehub.db.db_models import (
    Booking, Budget, BudgetStatus, Chat, Message, Service, User, utcnow,
)

RESPONDABLE_STATUSES = (BudgetStatus.PENDING, BudgetStatus.QUOTED)


def format_price(price: Optional[Decimal]) -> Optional[str]:
    if price is None:
        return None
    if Decimal(price) == 0:
        return "0"
    return f"{Decimal(price):.2f}"


def is_lapsed(budget: Budget, now: Optional[datetime] = None) -> bool:
    """Open budget whose validity window has passed but is not yet marked EXPIRED."""
    if budget.status not in {s.value for s in RESPONDABLE_STATUSES}:
        return False
    if budget.expires_at is None:
        return False
    return (now or utcnow()) > budget.expires_at


def effective_budget_status(budget: Budget, now: Optional[datetime] = None) -> str:
    if is_lapsed(budget, now):
        return BudgetStatus.EXPIRED.value
    return budget.status


def preview(content: Optional[str], length: Optional[int] = None) -> Optional[str]:
    if content is None:
        return None
    length = length or settings.CHAT_PREVIEW_LENGTH
    if len(content) <= length:
        return content
    return content[:length].rstrip() + "..."


def user_identity(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.full_name, "avatarUrl": user.avatar_url}


def service_summary(service: Optional[Service]) -> Optional[Dict[str, Any]]:
    if service is None:
        return None
    return {"id": service.id, "title": service.title}


def budget_projection(budget: Optional[Budget]) -> Optional[Dict[str, Any]]:
    if budget is None:
        return None
    return {
        "id": budget.id,
        "status": effective_budget_status(budget),
        "price": format_price(budget.price),
        "description": budget.description,
        "expiresAt": budget.expires_at,
    }


def chat_snapshot(chat: Chat, budget: Optional[Budget]) -> Dict[str, Any]:
    """Full chat shape used by NEW_CHAT so a list can render it without a refetch."""
    return {
        "id": chat.id,
        "clientId": chat.client_id,
        "professionalId": chat.professional_id,
        "serviceId": chat.service_id,
        "lastMessageAt": chat.last_message_at,
        "createdAt": chat.created_at,
        "updatedAt": chat.updated_at,
        "client": user_identity(chat.client),
        "professional": user_identity(chat.professional),
        "service": service_summary(chat.service),
        "budget": budget_projection(budget),
        "messages": [],
        "messageCount": 0,
    }


def message_snapshot(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "chatId": message.chat_id,
        "senderId": message.sender_id,
        "content": message.content,
        "messageType": message.message_type,
        "mediaUrl": message.media_url,
        "audioDuration": message.audio_duration,
        "isRead": message.is_read,
        "createdAt": message.created_at,
        "sender": user_identity(message.sender),
    }


def booking_offer(booking: Booking) -> Dict[str, Any]:
    service = booking.service
    return {
        "id": booking.id,
        "client": {
            "id": booking.client_id,
            "name": booking.client_name,
            "phone": booking.client_phone,
            "email": booking.client_email,
            "avatarUrl": booking.client_avatar_url,
        },
        "service": {
            "id": service.id,
            "title": service.title,
            "description": service.description,
            "price": format_price(service.price),
            "pricingType": service.pricing_type,
        },
        "scheduledAt": booking.scheduled_at,
        "address": booking.address,
        "latitude": booking.latitude,
        "longitude": booking.longitude,
        "createdAt": booking.created_at,
    }

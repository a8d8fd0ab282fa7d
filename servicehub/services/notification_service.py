"""
Notification bus over Socket.IO rooms.

Connections (Socket.IO sids) join named channels; engines publish events to a
channel and the server fans them out to every connection currently joined.
Membership is kept by the server's client manager, which also drops a
connection from every room when it disconnects.
Delivery is best-effort: failures are logged and never reach the caller, the
database stays the source of truth.

Channel names live in three disjoint namespaces:

    chat:<chatId>            participants looking at one conversation
    professional:<userId>    a professional's personal notifications
    client:<userId>          a client's personal notifications
"""
import enum
import logging
from typing import Any, FrozenSet, Optional

import socketio
from fastapi.encoders import jsonable_encoder

from servicehub.core.exceptions import (
    NotificationBusNotInitialized,
    NotificationDeliveryError,
)

logger = logging.getLogger(__name__)

NAMESPACE = "/"


class SocketEvent(str, enum.Enum):
    NEW_MESSAGE = "new-message"
    MESSAGE_READ = "message-read"
    MESSAGE_DELETED = "message-deleted"
    NEW_CHAT = "new-chat"
    TYPING = "typing"
    STOP_TYPING = "stop-typing"
    CHAT_LIST_UPDATE = "chat-list-update"
    NEW_BUDGET = "new-budget"
    BUDGET_ACCEPTED = "budget-accepted"
    BUDGET_REJECTED = "budget-rejected"
    BUDGET_CANCELLED = "budget-cancelled"
    NEW_BOOKING_OFFER = "new-booking-offer"
    BOOKING_ACCEPTED = "booking-accepted"
    BOOKING_REJECTED = "booking-rejected"


def chat_room(chat_id: str) -> str:
    return f"chat:{chat_id}"


def professional_channel(user_id: str) -> str:
    return f"professional:{user_id}"


def client_channel(user_id: str) -> str:
    return f"client:{user_id}"


class NotificationBus:
    def __init__(self, sio: socketio.AsyncServer):
        self.sio = sio

    # ─── Membership ──────────────────────────────────────────────────

    async def join(self, connection_id: str, channel: str) -> None:
        await self.sio.enter_room(connection_id, channel, namespace=NAMESPACE)
        logger.debug("%s joined %s", connection_id, channel)

    async def leave(self, connection_id: str, channel: str) -> None:
        await self.sio.leave_room(connection_id, channel, namespace=NAMESPACE)
        logger.debug("%s left %s", connection_id, channel)

    async def join_chat_room(self, connection_id: str, chat_id: str) -> None:
        await self.join(connection_id, chat_room(chat_id))

    async def leave_chat_room(self, connection_id: str, chat_id: str) -> None:
        await self.leave(connection_id, chat_room(chat_id))

    async def join_professional_channel(self, connection_id: str, user_id: str) -> None:
        await self.join(connection_id, professional_channel(user_id))

    async def join_client_channel(self, connection_id: str, user_id: str) -> None:
        await self.join(connection_id, client_channel(user_id))

    async def members(self, channel: str) -> FrozenSet[str]:
        """Connections in ``channel`` on this server process."""
        return frozenset(
            sid for sid, _ in self.sio.manager.get_participants(NAMESPACE, channel)
        )

    # ─── Publishing ──────────────────────────────────────────────────

    async def _deliver(self, channel: str, event: str, data: Any, skip: Optional[str]) -> None:
        try:
            await self.sio.emit(event, data, room=channel, skip_sid=skip, namespace=NAMESPACE)
        except Exception as e:
            raise NotificationDeliveryError(f"Failed to deliver {event} to {channel}") from e

    async def publish(
        self,
        channel: str,
        event: SocketEvent,
        payload: Any,
        skip: Optional[str] = None,
    ) -> bool:
        """Send ``payload`` to every connection in ``channel`` except ``skip``.

        Returns False when the event could not be sent. Never raises.
        """
        name = event.value if isinstance(event, SocketEvent) else str(event)
        try:
            data = jsonable_encoder(payload)
        except Exception:
            logger.error("Could not encode %s for %s", name, channel, exc_info=True)
            return False

        try:
            await self._deliver(channel, name, data, skip)
        except NotificationDeliveryError:
            logger.error("Notification delivery failed on %s", channel, exc_info=True)
            return False
        logger.info("Published %s to %s", name, channel)
        return True


# Process-wide instance, set once at startup
_bus: Optional[NotificationBus] = None


def init_notification_bus(sio: socketio.AsyncServer) -> NotificationBus:
    global _bus
    if _bus is not None:
        raise RuntimeError("Notification bus already initialized")
    _bus = NotificationBus(sio)
    logger.info("Notification bus initialized")
    return _bus


def get_notification_bus() -> NotificationBus:
    """
    Get the shared notification bus.

    Raises:
        NotificationBusNotInitialized: if init_notification_bus() was never called
    """
    if _bus is None:
        raise NotificationBusNotInitialized(
            "Notification bus not initialized. Call init_notification_bus() during startup."
        )
    return _bus


def is_notification_bus_initialized() -> bool:
    return _bus is not None

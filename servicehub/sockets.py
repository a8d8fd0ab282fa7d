"""
Socket.IO connection handlers for the notification bus.

Connections authenticate with the same bearer token as the HTTP API
(``auth={"token": ...}``) and then join the channels they want to hear from.
"""
import logging
from typing import Any, Optional

import socketio
from jose import JWTError
from pydantic import ValidationError
from socketio.exceptions import ConnectionRefusedError

from servicehub.core import security
from servicehub.db.db_models import UserRole
from servicehub.models.user import CurrentUser
from servicehub.services.notification_service import (
    NotificationBus,
    SocketEvent,
    chat_room,
)

logger = logging.getLogger(__name__)


def _channel_id(data: Any, key: str) -> Optional[str]:
    # Clients send either the bare id or {"<key>": id}
    if isinstance(data, dict):
        data = data.get(key)
    if data is None:
        return None
    value = str(data).strip()
    return value or None


class SocketHandlers:
    def __init__(self, sio: socketio.AsyncServer, bus: NotificationBus):
        self.sio = sio
        self.bus = bus

    def register(self) -> None:
        self.sio.on("connect", self.connect)
        self.sio.on("disconnect", self.disconnect)
        self.sio.on("join-chat", self.join_chat)
        self.sio.on("leave-chat", self.leave_chat)
        self.sio.on("join-professional", self.join_professional)
        self.sio.on("join-client", self.join_client)
        self.sio.on(SocketEvent.TYPING.value, self.typing)
        self.sio.on(SocketEvent.STOP_TYPING.value, self.stop_typing)

    async def _user(self, sid: str) -> CurrentUser:
        session = await self.sio.get_session(sid)
        return CurrentUser(id=session["user_id"], role=session["role"])

    async def connect(self, sid: str, environ: dict, auth: Optional[dict] = None):
        token = auth.get("token") if isinstance(auth, dict) else None
        if not token:
            raise ConnectionRefusedError("Authentication required")
        try:
            payload = security.decode_access_token(token.replace("Bearer ", ""))
            user = CurrentUser(id=payload.get("sub"), role=payload.get("role"))
        except (JWTError, ValidationError):
            raise ConnectionRefusedError("Invalid token")

        await self.sio.save_session(sid, {"user_id": user.id, "role": user.role.value})
        logger.info("Socket %s connected as %s (%s)", sid, user.id, user.role.value)

    async def disconnect(self, sid: str, reason: Any = None) -> None:
        # Room cleanup is done by the client manager
        logger.info("Socket %s disconnected", sid)

    async def join_chat(self, sid: str, data: Any) -> None:
        chat_id = _channel_id(data, "chatId")
        if chat_id:
            await self.bus.join_chat_room(sid, chat_id)

    async def leave_chat(self, sid: str, data: Any) -> None:
        chat_id = _channel_id(data, "chatId")
        if chat_id:
            await self.bus.leave_chat_room(sid, chat_id)

    async def join_professional(self, sid: str, data: Any) -> None:
        user = await self._user(sid)
        user_id = _channel_id(data, "userId")
        if user.role != UserRole.PRO or user_id != user.id:
            logger.warning("Socket %s refused professional channel %s", sid, user_id)
            return
        await self.bus.join_professional_channel(sid, user_id)

    async def join_client(self, sid: str, data: Any) -> None:
        user = await self._user(sid)
        user_id = _channel_id(data, "userId")
        if user.role != UserRole.CLIENT or user_id != user.id:
            logger.warning("Socket %s refused client channel %s", sid, user_id)
            return
        await self.bus.join_client_channel(sid, user_id)

    async def _relay(self, sid: str, event: SocketEvent, data: Any) -> None:
        chat_id = _channel_id(data, "chatId")
        if not chat_id:
            return
        user = await self._user(sid)
        await self.bus.publish(
            chat_room(chat_id),
            event,
            {"chatId": chat_id, "userId": user.id},
            skip=sid,
        )

    async def typing(self, sid: str, data: Any) -> None:
        await self._relay(sid, SocketEvent.TYPING, data)

    async def stop_typing(self, sid: str, data: Any) -> None:
        await self._relay(sid, SocketEvent.STOP_TYPING, data)

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicehub.core.config import settings
from servicehub.core.exceptions import (
    ForbiddenException, NotFoundException, ValidationException,
)
from servicehub.db.db_models import (
    Chat, Message, MessageType, Service, User, UserRole, NO_SERVICE_KEY, utcnow,
)
from servicehub.services import payloads
from servicehub.services.notification_service import (
    NotificationBus, SocketEvent, chat_room, client_channel, professional_channel,
)

logger = logging.getLogger(__name__)


def normalize_service_id(service_id: Optional[str]) -> Optional[str]:
    """Empty or missing service ids all mean "no service"."""
    if service_id is None or not str(service_id).strip():
        return None
    return service_id


@dataclass
class ChatSummary:
    chat: Chat
    last_message: Optional[Message]
    unread_count: int


class ChatService:
    def __init__(self, db: AsyncSession, bus: NotificationBus):
        self.db = db
        self.bus = bus

    # ─── Lookups ─────────────────────────────────────────────────────

    def _chat_query(self):
        return select(Chat).options(
            selectinload(Chat.client),
            selectinload(Chat.professional),
            selectinload(Chat.service),
            selectinload(Chat.budget),
        ).execution_options(populate_existing=True)

    async def load_chat(self, chat_id: str) -> Chat:
        result = await self.db.execute(self._chat_query().where(Chat.id == chat_id))
        chat = result.scalar_one_or_none()
        if chat is None:
            raise NotFoundException("Chat not found", details={"chat_id": chat_id})
        return chat

    async def find_chat(
        self, client_id: str, professional_id: str, service_id: Optional[str] = None
    ) -> Optional[Chat]:
        service_id = normalize_service_id(service_id)
        result = await self.db.execute(
            self._chat_query().where(
                Chat.client_id == client_id,
                Chat.professional_id == professional_id,
                Chat.service_key == (service_id or NO_SERVICE_KEY),
            )
        )
        return result.scalar_one_or_none()

    async def check_chat(
        self, client_id: str, professional_id: str, service_id: Optional[str] = None
    ) -> Chat:
        """Find-only variant of get_or_create_chat."""
        if not client_id or not professional_id:
            raise ValidationException("client_id and professional_id are required")
        chat = await self.find_chat(client_id, professional_id, service_id)
        if chat is None:
            raise NotFoundException("Chat not found")
        return chat

    # ─── Creation ────────────────────────────────────────────────────

    async def _ensure_participants(
        self, client_id: str, professional_id: str, service_id: Optional[str]
    ) -> None:
        for user_id in (client_id, professional_id):
            if await self.db.get(User, user_id) is None:
                raise NotFoundException("User not found", details={"user_id": user_id})
        if service_id and await self.db.get(Service, service_id) is None:
            raise NotFoundException("Service not found", details={"service_id": service_id})

    async def get_or_create_chat_with_flag(
        self, client_id: str, professional_id: str, service_id: Optional[str] = None
    ) -> Tuple[Chat, bool]:
        """Return ``(chat, created)`` for the (client, professional, service) triple.

        Two concurrent callers may both miss the lookup; the unique constraint
        on the triple makes the slower insert fail, and that caller re-reads
        the winner's row instead of surfacing the error.
        """
        if not client_id or not professional_id:
            raise ValidationException("client_id and professional_id are required")
        service_id = normalize_service_id(service_id)

        chat = await self.find_chat(client_id, professional_id, service_id)
        if chat is not None:
            return chat, False

        await self._ensure_participants(client_id, professional_id, service_id)

        chat = Chat(
            client_id=client_id,
            professional_id=professional_id,
            service_id=service_id,
            service_key=service_id or NO_SERVICE_KEY,
        )
        self.db.add(chat)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.find_chat(client_id, professional_id, service_id)
            if existing is None:
                raise
            logger.info("Chat for %s/%s/%s created concurrently, reusing %s",
                        client_id, professional_id, service_id, existing.id)
            return existing, False

        logger.info("Created chat %s", chat.id)
        return await self.load_chat(chat.id), True

    async def get_or_create_chat(
        self, client_id: str, professional_id: str, service_id: Optional[str] = None
    ) -> Chat:
        chat, _ = await self.get_or_create_chat_with_flag(client_id, professional_id, service_id)
        return chat

    async def touch(self, chat_id: str) -> None:
        await self.db.execute(
            update(Chat)
            .where(Chat.id == chat_id)
            .values(last_message_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    # ─── Listing ─────────────────────────────────────────────────────

    async def list_chats(self, user_id: str, role: Optional[str]) -> List[ChatSummary]:
        if role == UserRole.PRO.value:
            condition = Chat.professional_id == user_id
        else:
            condition = Chat.client_id == user_id

        result = await self.db.execute(
            self._chat_query().where(condition).order_by(Chat.last_message_at.desc())
        )
        chats = result.scalars().all()

        summaries = []
        for chat in chats:
            msg_result = await self.db.execute(
                select(Message)
                .options(selectinload(Message.sender))
                .where(Message.chat_id == chat.id)
                .order_by(Message.created_at.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            unread = await self.db.scalar(
                select(func.count())
                .select_from(Message)
                .where(
                    Message.chat_id == chat.id,
                    Message.sender_id != user_id,
                    Message.is_read.is_(False),
                )
            )
            summaries.append(ChatSummary(chat, msg_result.scalar_one_or_none(), unread or 0))
        return summaries

    async def list_messages(
        self, chat_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Message]:
        await self.load_chat(chat_id)
        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc())
            .offset(max(offset, 0))
            .limit(limit or settings.MESSAGE_PAGE_SIZE)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ─── Messages ────────────────────────────────────────────────────

    async def append_message(
        self,
        chat_id: str,
        sender_id: str,
        content: Optional[str] = None,
        media_url: Optional[str] = None,
        message_type: str = MessageType.TEXT.value,
        audio_duration: Optional[float] = None,
    ) -> Message:
        if not sender_id:
            raise ValidationException("sender_id is required")
        if not content and not media_url:
            raise ValidationException("content or media_url is required")

        chat = await self.load_chat(chat_id)
        if sender_id not in (chat.client_id, chat.professional_id):
            raise ForbiddenException("Sender is not a participant of this chat")

        try:
            message_type = MessageType(message_type).value
        except ValueError:
            raise ValidationException(f"Unknown message type: {message_type}")

        now = utcnow()
        # Locks the chat row: concurrent senders reach the emptiness check one at a time
        await self.db.execute(
            update(Chat).where(Chat.id == chat.id).values(last_message_at=now)
        )
        is_first = not await self.db.scalar(
            select(exists().where(Message.chat_id == chat.id))
        )
        message = Message(
            chat_id=chat.id,
            sender_id=sender_id,
            content=content,
            media_url=media_url,
            message_type=message_type,
            audio_duration=audio_duration,
            created_at=now,
        )
        self.db.add(message)
        await self.db.commit()

        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.id == message.id)
            .execution_options(populate_existing=True)
        )
        message = result.scalar_one()

        await self.bus.publish(
            chat_room(chat.id), SocketEvent.NEW_MESSAGE, payloads.message_snapshot(message)
        )

        list_update = {
            "chatId": chat.id,
            "lastMessageAt": now,
            "lastMessage": {
                "content": payloads.preview(message.content),
                "senderId": message.sender_id,
                "createdAt": message.created_at,
            },
        }
        await self.bus.publish(
            professional_channel(chat.professional_id), SocketEvent.CHAT_LIST_UPDATE, list_update
        )
        await self.bus.publish(
            client_channel(chat.client_id), SocketEvent.CHAT_LIST_UPDATE, list_update
        )

        if is_first:
            await self.bus.publish(
                professional_channel(chat.professional_id),
                SocketEvent.NEW_CHAT,
                payloads.chat_snapshot(chat, chat.budget),
            )
        return message

    async def mark_read(self, chat_id: str, reader_id: str) -> int:
        """Mark every message the other party sent as read. Returns rows changed."""
        if not reader_id:
            raise ValidationException("user_id is required")
        chat = await self.load_chat(chat_id)

        result = await self.db.execute(
            update(Message)
            .where(
                Message.chat_id == chat.id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        event = {"chatId": chat.id, "userId": reader_id}
        await self.bus.publish(
            professional_channel(chat.professional_id), SocketEvent.MESSAGE_READ, event
        )
        await self.bus.publish(client_channel(chat.client_id), SocketEvent.MESSAGE_READ, event)
        return result.rowcount

    async def delete_message(self, message_id: str, requester_id: Optional[str] = None) -> None:
        message = await self.db.get(Message, message_id)
        if message is None:
            raise NotFoundException("Message not found", details={"message_id": message_id})
        if requester_id is not None and requester_id != message.sender_id:
            raise ForbiddenException("Only the sender can delete a message")
        chat_id = message.chat_id

        await self.db.delete(message)
        await self.db.commit()
        logger.info("Deleted message %s from chat %s", message_id, chat_id)

        await self.bus.publish(
            chat_room(chat_id),
            SocketEvent.MESSAGE_DELETED,
            {"messageId": message_id, "chatId": chat_id},
        )

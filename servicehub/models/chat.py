from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime
from servicehub.db.db_models import MessageType
from servicehub.models.user import UserIdentity
from servicehub.models.budget import BudgetProjection


# ─── Chat Schemas ────────────────────────────────────────────────────

class ChatCreate(BaseModel):
    client_id: str
    professional_id: str
    service_id: Optional[str] = None


class ChatServiceInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str


class ChatResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    professional_id: str
    service_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    client: Optional[UserIdentity] = None
    professional: Optional[UserIdentity] = None
    service: Optional[ChatServiceInfo] = None


class ChatListItem(ChatResponse):
    budget: Optional[BudgetProjection] = None
    last_message: Optional["MessageResponse"] = None
    unread_count: int = 0


# ─── Message Schemas ─────────────────────────────────────────────────

class MessageCreate(BaseModel):
    content: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    media_url: Optional[str] = None
    audio_duration: Optional[float] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chat_id: str
    sender_id: str
    content: Optional[str] = None
    message_type: str
    media_url: Optional[str] = None
    audio_duration: Optional[float] = None
    is_read: bool = False
    created_at: datetime
    sender: Optional[UserIdentity] = None


class MarkReadResponse(BaseModel):
    success: bool = True
    updated: int


ChatListItem.model_rebuild()

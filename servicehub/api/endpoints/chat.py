from typing import Any, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from servicehub.api import deps
from servicehub.db.db_models import Chat
from servicehub.models.budget import BudgetProjection
from servicehub.models.chat import (
    ChatCreate, ChatResponse, ChatListItem,
    MessageCreate, MessageResponse, MarkReadResponse,
)
from servicehub.models.user import CurrentUser
from servicehub.services.chat_service import ChatService

router = APIRouter()


def _ensure_participant(chat: Chat, user: CurrentUser) -> None:
    if user.id not in (chat.client_id, chat.professional_id):
        raise HTTPException(status_code=403, detail="Not authorized")


# ─── Chats ───────────────────────────────────────────────────────────

@router.post("/chats", response_model=ChatResponse)
async def get_or_create_chat(
    chat_in: ChatCreate,
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    """Return the chat for (client, professional, service), creating it if needed."""
    if current_user.id not in (chat_in.client_id, chat_in.professional_id):
        raise HTTPException(status_code=403, detail="Not authorized")
    return await chats.get_or_create_chat(
        chat_in.client_id, chat_in.professional_id, chat_in.service_id
    )


@router.get("/chats/check", response_model=ChatResponse)
async def check_chat(
    client_id: str,
    professional_id: str,
    service_id: Optional[str] = None,
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    """Look a chat up without creating it."""
    chat = await chats.check_chat(client_id, professional_id, service_id)
    _ensure_participant(chat, current_user)
    return chat


@router.get("/chats/user/{user_id}", response_model=List[ChatListItem])
async def list_user_chats(
    user_id: str,
    role: Optional[str] = None,
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    """Chat list for a user, most recently active first."""
    if user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized")

    summaries = await chats.list_chats(user_id, role or current_user.role.value)
    items = []
    for summary in summaries:
        chat = summary.chat
        items.append(ChatListItem(
            **ChatResponse.model_validate(chat).model_dump(),
            budget=BudgetProjection.from_budget(chat.budget) if chat.budget else None,
            last_message=(
                MessageResponse.model_validate(summary.last_message)
                if summary.last_message else None
            ),
            unread_count=summary.unread_count,
        ))
    return items


# ─── Messages ────────────────────────────────────────────────────────

@router.get("/chats/{chat_id}/messages", response_model=List[MessageResponse])
async def get_messages(
    chat_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    """Oldest-first page of a chat's messages."""
    chat = await chats.load_chat(chat_id)
    _ensure_participant(chat, current_user)
    return await chats.list_messages(chat_id, limit=limit, offset=offset)


@router.post(
    "/chats/{chat_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    chat_id: str,
    message_in: MessageCreate,
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    """Send a text or media message."""
    return await chats.append_message(
        chat_id,
        current_user.id,
        content=message_in.content,
        media_url=message_in.media_url,
        message_type=message_in.message_type.value,
        audio_duration=message_in.audio_duration,
    )


@router.patch("/chats/{chat_id}/messages/read", response_model=MarkReadResponse)
async def mark_messages_read(
    chat_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    chat = await chats.load_chat(chat_id)
    _ensure_participant(chat, current_user)
    updated = await chats.mark_read(chat_id, current_user.id)
    return MarkReadResponse(updated=updated)


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    chats: ChatService = Depends(deps.get_chat_service),
) -> Any:
    await chats.delete_message(message_id, requester_id=current_user.id)
    return {"success": True}

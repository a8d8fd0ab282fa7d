import asyncio

import pytest
from sqlalchemy import func, select

from servicehub.core.exceptions import (
    ForbiddenException, NotFoundException, ValidationException,
)
from servicehub.db.db_models import Chat, UserRole
from servicehub.services.chat_service import ChatService


# ─── Get or create ───────────────────────────────────────────────────

async def test_get_or_create_returns_existing_chat(chats, client_user, pro_user, service):
    first, created = await chats.get_or_create_chat_with_flag(client_user.id, pro_user.id, service.id)
    second, created_again = await chats.get_or_create_chat_with_flag(
        client_user.id, pro_user.id, service.id
    )

    assert created is True
    assert created_again is False
    assert first.id == second.id
    assert second.service.title == "Pipe repair"


async def test_missing_and_empty_service_are_the_same_chat(chats, client_user, pro_user):
    a = await chats.get_or_create_chat(client_user.id, pro_user.id, None)
    b = await chats.get_or_create_chat(client_user.id, pro_user.id, "")
    c = await chats.get_or_create_chat(client_user.id, pro_user.id, "   ")

    assert a.id == b.id == c.id
    assert a.service_id is None


async def test_chat_per_service(chats, make_service, client_user, pro_user, service):
    other = await make_service(pro_user, title="Tile fixing")

    a = await chats.get_or_create_chat(client_user.id, pro_user.id, service.id)
    b = await chats.get_or_create_chat(client_user.id, pro_user.id, other.id)

    assert a.id != b.id


async def test_concurrent_get_or_create_yields_one_chat(
    session_factory, bus, client_user, pro_user, service
):
    async def open_chat():
        async with session_factory() as session:
            chat = await ChatService(session, bus).get_or_create_chat(
                client_user.id, pro_user.id, service.id
            )
            return chat.id

    ids = await asyncio.gather(*(open_chat() for _ in range(4)))

    assert len(set(ids)) == 1
    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Chat)) == 1


async def test_get_or_create_validation(chats, client_user, pro_user):
    with pytest.raises(ValidationException):
        await chats.get_or_create_chat("", pro_user.id)
    with pytest.raises(NotFoundException):
        await chats.get_or_create_chat(client_user.id, "no-such-user")
    with pytest.raises(NotFoundException):
        await chats.get_or_create_chat(client_user.id, pro_user.id, "no-such-service")


async def test_check_chat_never_creates(chats, client_user, pro_user, service):
    with pytest.raises(NotFoundException):
        await chats.check_chat(client_user.id, pro_user.id, service.id)

    created = await chats.get_or_create_chat(client_user.id, pro_user.id, service.id)
    found = await chats.check_chat(client_user.id, pro_user.id, service.id)
    assert found.id == created.id


# ─── Messages ────────────────────────────────────────────────────────

async def test_first_message_announces_new_chat(
    chats, sio, sockets, join_room, client_user, pro_user, service
):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id, service.id)
    room = await join_room(chat.id)

    message = await chats.append_message(chat.id, client_user.id, content="Hi, are you free?")

    assert message.sender.full_name == "Ana Client"
    assert sio.events(room) == ["new-message"]
    assert sio.events(sockets["pro"]) == ["chat-list-update", "new-chat"]
    assert sio.events(sockets["client"]) == ["chat-list-update"]

    [snapshot] = sio.payloads(sockets["pro"], "new-chat")
    assert snapshot["id"] == chat.id
    assert snapshot["client"]["name"] == "Ana Client"
    assert snapshot["service"]["title"] == "Pipe repair"
    assert snapshot["messages"] == []


async def test_later_messages_do_not_announce_chat(
    chats, sio, sockets, client_user, pro_user, service
):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id, service.id)
    await chats.append_message(chat.id, client_user.id, content="Hello")
    sio.clear()

    await chats.append_message(chat.id, pro_user.id, content="Hi there")

    assert sio.events(sockets["pro"]) == ["chat-list-update"]
    assert sio.events(sockets["client"]) == ["chat-list-update"]


async def test_simultaneous_first_messages_announce_chat_once(
    session_factory, bus, chats, sio, sockets, client_user, pro_user, service
):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id, service.id)

    async def send(sender_id, text):
        async with session_factory() as session:
            await ChatService(session, bus).append_message(chat.id, sender_id, content=text)

    await asyncio.gather(
        send(client_user.id, "Hello"),
        send(pro_user.id, "Hi"),
        send(client_user.id, "Anyone there?"),
    )

    assert sio.events(sockets["pro"]).count("new-chat") == 1
    assert sio.events(sockets["pro"]).count("chat-list-update") == 3


async def test_chat_list_update_carries_preview(
    chats, sio, sockets, client_user, pro_user
):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id)
    long_text = "x" * 200

    await chats.append_message(chat.id, client_user.id, content=long_text)

    [update] = sio.payloads(sockets["client"], "chat-list-update")
    assert update["chatId"] == chat.id
    assert update["lastMessage"]["content"] == "x" * 80 + "..."
    assert update["lastMessage"]["senderId"] == client_user.id


async def test_media_message(chats, client_user, pro_user):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id)

    message = await chats.append_message(
        chat.id, pro_user.id, media_url="https://cdn.example.com/a.m4a",
        message_type="AUDIO", audio_duration=12.5,
    )

    assert message.content is None
    assert message.message_type == "AUDIO"
    assert message.audio_duration == 12.5


async def test_append_message_validation(chats, make_user, client_user, pro_user):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id)
    outsider = await make_user(UserRole.CLIENT)

    with pytest.raises(ValidationException):
        await chats.append_message(chat.id, client_user.id)
    with pytest.raises(ValidationException):
        await chats.append_message(chat.id, client_user.id, content="hi", message_type="STICKER")
    with pytest.raises(ForbiddenException):
        await chats.append_message(chat.id, outsider.id, content="let me in")
    with pytest.raises(NotFoundException):
        await chats.append_message("no-such-chat", client_user.id, content="hi")


async def test_list_messages_oldest_first_with_paging(chats, client_user, pro_user):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id)
    for i in range(5):
        await chats.append_message(chat.id, client_user.id, content=f"m{i}")

    page = await chats.list_messages(chat.id, limit=2, offset=1)

    assert [m.content for m in page] == ["m1", "m2"]
    assert page[0].sender.id == client_user.id


# ─── Read state ──────────────────────────────────────────────────────

async def test_mark_read_only_touches_other_party_messages(
    chats, sio, sockets, client_user, pro_user
):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id)
    await chats.append_message(chat.id, client_user.id, content="one")
    await chats.append_message(chat.id, client_user.id, content="two")
    await chats.append_message(chat.id, pro_user.id, content="reply")
    sio.clear()

    assert await chats.mark_read(chat.id, pro_user.id) == 2
    assert await chats.mark_read(chat.id, pro_user.id) == 0

    read_event = {"chatId": chat.id, "userId": pro_user.id}
    assert sio.payloads(sockets["client"], "message-read") == [read_event, read_event]
    assert sio.payloads(sockets["pro"], "message-read") == [read_event, read_event]

    messages = await chats.list_messages(chat.id)
    assert [m.is_read for m in messages] == [True, True, False]


async def test_list_chats_counts_unread(chats, make_user, client_user, pro_user):
    other_client = await make_user(UserRole.CLIENT)
    older = await chats.get_or_create_chat(other_client.id, pro_user.id)
    await chats.append_message(older.id, other_client.id, content="old")
    newer = await chats.get_or_create_chat(client_user.id, pro_user.id)
    await chats.append_message(newer.id, client_user.id, content="a")
    await chats.append_message(newer.id, client_user.id, content="b")

    summaries = await chats.list_chats(pro_user.id, UserRole.PRO.value)

    assert [s.chat.id for s in summaries] == [newer.id, older.id]
    assert summaries[0].unread_count == 2
    assert summaries[0].last_message.content == "b"

    client_view = await chats.list_chats(client_user.id, UserRole.CLIENT.value)
    assert [s.chat.id for s in client_view] == [newer.id]
    assert client_view[0].unread_count == 0


# ─── Deletion ────────────────────────────────────────────────────────

async def test_delete_message(chats, sio, join_room, client_user, pro_user):
    chat = await chats.get_or_create_chat(client_user.id, pro_user.id)
    message = await chats.append_message(chat.id, client_user.id, content="oops")
    room = await join_room(chat.id)

    with pytest.raises(ForbiddenException):
        await chats.delete_message(message.id, requester_id=pro_user.id)

    await chats.delete_message(message.id, requester_id=client_user.id)

    assert sio.payloads(room, "message-deleted") == [
        {"messageId": message.id, "chatId": chat.id}
    ]
    assert await chats.list_messages(chat.id) == []
    with pytest.raises(NotFoundException):
        await chats.delete_message(message.id)

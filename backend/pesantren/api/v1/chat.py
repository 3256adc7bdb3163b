# backend/pesantren/api/v1/chat.py
import asyncio
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pesantren.core.chat_constants import MESSAGE_PAGE_DEFAULT, MESSAGE_PAGE_MAX, SEARCH_QUERY_MAX_LENGTH
from pesantren.core.errors import Forbidden, ValidationFailed
from pesantren.core.security import get_current_user, get_stream_user
from pesantren.db.database import get_db
from pesantren.db.models.user import User
from pesantren.schemas.chat import (
    BatchStatusResult,
    BatchStatusUpdate,
    ChatCreate,
    ChatCreated,
    ChatList,
    ChatSearchResult,
    ChatServerStatus,
    ChatUser,
    ChatUserList,
    MessageCreate,
    MessageEnvelope,
    MessagePage,
    MessageRead,
    StatusUpdate,
    StatusUpdateResult,
)
from pesantren.services import chat_service
from pesantren.services.chat_notifier import STREAM_CLOSED, ChatNotifier, get_notifier

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_KEEPALIVE_SECONDS = float(os.getenv("CHAT_STREAM_KEEPALIVE_SECONDS", "15"))
STREAM_RETRY_MS = 3000


@router.get("/status", response_model=ChatServerStatus)
async def get_chat_status(
    current_user: User = Depends(get_current_user),
    notifier: ChatNotifier = Depends(get_notifier),
):
    """
    Chat server health and the number of open realtime channels.
    """
    return ChatServerStatus(status="online", active_connections=notifier.active_connections)


# --- Chat directory ---

@router.get("", response_model=ChatList)
async def get_user_chats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Caller's chats, most recent activity first."""
    return ChatList(chats=await chat_service.list_user_chats(db, current_user))


@router.post("", response_model=ChatCreated, status_code=status.HTTP_201_CREATED)
async def create_chat(
    chat_in: ChatCreate,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Opens a chat with another user, or returns the one that already exists."""
    chat, created = await chat_service.get_or_create_chat(db, current_user, chat_in.participant_id)
    if not created:
        response.status_code = status.HTTP_200_OK
        return ChatCreated(message="Chat sudah ada", chat_id=chat.id)
    return ChatCreated(message="Chat berhasil dibuat", chat_id=chat.id)


@router.get("/users", response_model=ChatUserList)
async def get_chat_users(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Users the caller is allowed to chat with."""
    users = await chat_service.list_chat_partners(db, current_user)
    return ChatUserList(users=[ChatUser.model_validate(u) for u in users])


@router.get("/search", response_model=ChatSearchResult)
async def search_chats(
    query: str = Query(..., min_length=1, max_length=SEARCH_QUERY_MAX_LENGTH),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    chats = await chat_service.search_chats(db, current_user, query)
    return ChatSearchResult(chats=chats, query=query)


# --- Realtime channel ---

def format_sse(event) -> str:
    data = event.message.model_dump_json(by_alias=True)
    return f"event: {event.type}\nid: {event.message.id}\ndata: {data}\n\n"


async def event_stream(request: Request, notifier: ChatNotifier, chat_id: str, keepalive: float = STREAM_KEEPALIVE_SECONDS):
    """
    Server-sent events for one chat. Lives until the client goes away or
    the notifier drops a subscriber that fell too far behind;
    leaving the generator removes the subscription.
    """
    async with notifier.subscription(chat_id) as queue:
        yield f"retry: {STREAM_RETRY_MS}\n\n"
        while True:
            if await request.is_disconnected():
                logger.info(f"[ChatStream] Client left chat {chat_id}")
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if event is STREAM_CLOSED:
                logger.info(f"[ChatStream] Stream for chat {chat_id} closed by the notifier")
                break
            yield format_sse(event)


@router.get("/stream")
async def stream_chat(
    request: Request,
    user_id: Optional[int] = Query(None, alias="userId"),
    chat_id: Optional[str] = Query(None, alias="chatId"),
    current_user: User = Depends(get_stream_user),
    db: AsyncSession = Depends(get_db),
    notifier: ChatNotifier = Depends(get_notifier),
):
    if user_id is None or not chat_id:
        raise ValidationFailed("Parameter userId dan chatId wajib diisi")
    if user_id != current_user.id:
        raise Forbidden("Akses ditolak")

    await chat_service.check_membership(db, chat_id, current_user.id)
    # Give the pooled connection back before the long-lived response
    await db.close()

    return StreamingResponse(
        event_stream(request, notifier, chat_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# --- Messages ---

@router.get("/{chat_id}/messages", response_model=MessagePage)
async def get_messages(
    chat_id: str,
    after: Optional[str] = Query(None),
    limit: int = Query(MESSAGE_PAGE_DEFAULT, ge=1, le=MESSAGE_PAGE_MAX),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Message history, oldest first. Pass nextCursor as `after` for the next page."""
    messages, next_cursor, has_more = await chat_service.list_messages(db, chat_id, current_user.id, after, limit)
    return MessagePage(
        messages=[MessageRead.model_validate(m) for m in messages],
        next_cursor=next_cursor,
        has_more=has_more,
    )


@router.post("/{chat_id}/messages", response_model=MessageEnvelope, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: str,
    message_in: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: ChatNotifier = Depends(get_notifier),
):
    message = await chat_service.append_message(db, notifier, chat_id, current_user, message_in.body)
    return MessageEnvelope(message=MessageRead.model_validate(message))


@router.put("/{chat_id}/messages/{message_id}/status", response_model=StatusUpdateResult)
async def update_message_status(
    chat_id: str,
    message_id: str,
    status_in: StatusUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: ChatNotifier = Depends(get_notifier),
):
    """Marks a received message as delivered or read."""
    message, timestamp = await chat_service.update_message_status(
        db, notifier, chat_id, message_id, current_user.id, status_in.status
    )
    return StatusUpdateResult(
        message=MessageRead.model_validate(message),
        status=message.status,
        timestamp=timestamp,
    )


@router.post("/{chat_id}/messages/status", response_model=BatchStatusResult)
async def batch_update_message_status(
    chat_id: str,
    batch_in: BatchStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: ChatNotifier = Depends(get_notifier),
):
    success, failed = await chat_service.batch_update_status(
        db, notifier, chat_id, batch_in.message_ids, current_user.id, batch_in.status
    )
    return BatchStatusResult(success=success, failed=failed)

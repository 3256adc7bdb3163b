# backend/pesantren/services/chat_service.py
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pesantren.core.chat_constants import (
    MessageStatus,
    STATUS_ORDER,
    TARGET_STATUSES,
    MESSAGE_MAX_LENGTH,
    MESSAGE_PAGE_DEFAULT,
    MESSAGE_PAGE_MAX,
    STATUS_UPDATE_ATTEMPTS,
    UNKNOWN_USER_NAME,
)
from pesantren.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from pesantren.core.push_id import generate_push_id
from pesantren.core.roles import can_chat, chat_partner_roles
from pesantren.db.models.chat_data import Chat, ChatMessage, make_pair_key
from pesantren.db.models.user import User, get_utc_now
from pesantren.schemas.chat import ChatSummary, MessageRead
from pesantren.services.chat_notifier import ChatNotifier, MessageAppended, StatusChanged

logger = logging.getLogger(__name__)


def _to_millis(moment: datetime) -> int:
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)


def _parse_timestamp(value: str) -> datetime:
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _next_status_timestamp(existing: Dict[str, str]) -> str:
    """Current time, but never earlier than a timestamp already recorded."""
    moment = get_utc_now()
    for value in existing.values():
        moment = max(moment, _parse_timestamp(value))
    return moment.isoformat()


def _parse_target_status(target) -> MessageStatus:
    try:
        status = MessageStatus(target)
    except ValueError:
        raise ValidationFailed(f"Status tidak valid: {target}")
    if status not in TARGET_STATUSES:
        raise ValidationFailed(f"Status tidak valid: {status.value}")
    return status


# --- Membership ---

async def check_membership(db: AsyncSession, chat_id: str, user_id: int) -> Chat:
    """
    Returns the chat if user_id is one of its two participants.
    NotFound when the chat does not exist, Forbidden otherwise.
    """
    chat = await db.get(Chat, chat_id)
    if not chat:
        raise NotFound("Chat tidak ditemukan")
    if not chat.has_participant(user_id):
        logger.warning(f"[ChatService] User {user_id} is not a participant of chat {chat_id}")
        raise Forbidden("Akses ditolak")
    return chat


# --- Chat directory ---

async def list_chat_partners(db: AsyncSession, user: User) -> List[User]:
    """Users the caller may open a chat with, per the role pairing rule."""
    roles = chat_partner_roles(user.role)
    if not roles:
        return []
    stmt = (
        select(User)
        .where(User.id != user.id, User.is_active == True, User.role.in_(list(roles)))
        .order_by(User.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _find_chat_by_pair(db: AsyncSession, pair_key: str) -> Optional[Chat]:
    result = await db.execute(select(Chat).where(Chat.pair_key == pair_key))
    return result.scalar_one_or_none()


async def get_or_create_chat(db: AsyncSession, user: User, participant_id: int) -> Tuple[Chat, bool]:
    """
    Returns (chat, created). A pair of users shares exactly one chat.
    """
    if participant_id == user.id:
        raise ValidationFailed("Tidak dapat membuat chat dengan diri sendiri")

    other = await db.get(User, participant_id)
    if not other or not other.is_active:
        raise NotFound("Pengguna tidak ditemukan")
    if not can_chat(user.role, other.role):
        raise Forbidden("Peran pengguna tidak diizinkan untuk chat ini")

    pair_key = make_pair_key(user.id, other.id)
    existing = await _find_chat_by_pair(db, pair_key)
    if existing:
        return existing, False

    chat = Chat(
        id=generate_push_id(),
        participant1_id=user.id,
        participant2_id=other.id,
        participant1_name=user.name,
        participant2_name=other.name,
        pair_key=pair_key,
        created_at=get_utc_now(),
    )
    db.add(chat)
    try:
        await db.commit()
    except IntegrityError:
        # Someone created the same pair concurrently
        await db.rollback()
        existing = await _find_chat_by_pair(db, pair_key)
        if existing is None:
            raise
        return existing, False

    logger.info(f"[ChatService] Chat {chat.id} created between {user.id} and {other.id}")
    return chat, True


def _summarize(chat: Chat, user_id: int, others: Dict[int, User]) -> ChatSummary:
    other_id, stored_name = chat.other_participant(user_id)
    other = others.get(other_id)
    name = (other.name if other else None) or stored_name or UNKNOWN_USER_NAME
    return ChatSummary(
        id=chat.id,
        other_participant_id=other_id,
        other_participant_name=name,
        other_participant_role=other.role if other else None,
        last_message=chat.last_message or "",
        last_message_time=chat.last_message_time or chat.created_at,
        last_message_status=chat.last_message_status,
        created_at=chat.created_at,
    )


async def _load_user_chats(db: AsyncSession, user: User) -> List[Tuple[ChatSummary, Optional[User]]]:
    stmt = select(Chat).where(or_(Chat.participant1_id == user.id, Chat.participant2_id == user.id))
    chats = (await db.execute(stmt)).scalars().all()
    if not chats:
        return []

    other_ids = {chat.other_participant(user.id)[0] for chat in chats}
    users_res = await db.execute(select(User).where(User.id.in_(other_ids)))
    others = {u.id: u for u in users_res.scalars().all()}

    rows = [(_summarize(chat, user.id, others), others.get(chat.other_participant(user.id)[0])) for chat in chats]
    # Most recent activity first
    rows.sort(key=lambda row: row[0].last_message_time, reverse=True)
    return rows


async def list_user_chats(db: AsyncSession, user: User) -> List[ChatSummary]:
    return [summary for summary, _ in await _load_user_chats(db, user)]


async def search_chats(db: AsyncSession, user: User, query: str) -> List[ChatSummary]:
    """Caller's chats whose other participant's name or email contains query."""
    needle = query.strip().lower()
    if not needle:
        return []

    results = []
    for summary, other in await _load_user_chats(db, user):
        haystack = [summary.other_participant_name]
        if other:
            haystack.append(other.email)
        if any(needle in (value or "").lower() for value in haystack):
            results.append(summary)
    return results


# --- Messages ---

async def append_message(
    db: AsyncSession,
    notifier: ChatNotifier,
    chat_id: str,
    user: User,
    body: str,
) -> ChatMessage:
    """
    Stores a new message (status "sent") and publishes MessageAppended.
    The key and createdAt come from the same clock reading.
    """
    chat = await check_membership(db, chat_id, user.id)

    body = (body or "").strip()
    if not body:
        raise ValidationFailed("Pesan tidak boleh kosong")
    if len(body) > MESSAGE_MAX_LENGTH:
        raise ValidationFailed(f"Pesan terlalu panjang (maksimal {MESSAGE_MAX_LENGTH} karakter)")

    now = get_utc_now()
    message = ChatMessage(
        id=generate_push_id(_to_millis(now)),
        chat_id=chat.id,
        sender_id=user.id,
        sender_name=user.name,
        body=body,
        created_at=now,
        status=MessageStatus.SENT.value,
        status_timestamp={MessageStatus.SENT.value: now.isoformat()},
    )
    db.add(message)

    chat.last_message = body
    chat.last_message_time = now
    chat.last_message_id = message.id
    chat.last_message_status = MessageStatus.SENT.value
    await db.commit()

    logger.info(f"[ChatService] Message {message.id} appended to chat {chat.id} by user {user.id}")
    await notifier.publish(MessageAppended(chat_id=chat.id, message=MessageRead.model_validate(message)))
    return message


async def _get_message(db: AsyncSession, chat_id: str, message_id: str) -> Optional[ChatMessage]:
    # Lookup is scoped to the chat; populate_existing drops stale identity-map state
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.id == message_id, ChatMessage.chat_id == chat_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_messages(
    db: AsyncSession,
    chat_id: str,
    user_id: int,
    after: Optional[str] = None,
    limit: int = MESSAGE_PAGE_DEFAULT,
) -> Tuple[List[ChatMessage], Optional[str], bool]:
    """
    One page of history, oldest first, ordered by (createdAt, id).
    Returns (messages, next_cursor, has_more).
    """
    if limit < 1 or limit > MESSAGE_PAGE_MAX:
        raise ValidationFailed(f"limit harus antara 1 dan {MESSAGE_PAGE_MAX}")

    await check_membership(db, chat_id, user_id)

    stmt = select(ChatMessage).where(ChatMessage.chat_id == chat_id)
    if after:
        anchor = await _get_message(db, chat_id, after)
        if not anchor:
            raise NotFound("Pesan tidak ditemukan")
        stmt = stmt.where(
            or_(
                ChatMessage.created_at > anchor.created_at,
                and_(ChatMessage.created_at == anchor.created_at, ChatMessage.id > anchor.id),
            )
        )
    stmt = stmt.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc()).limit(limit + 1)

    rows = list((await db.execute(stmt)).scalars().all())
    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = rows[-1].id if has_more and rows else None
    return rows, next_cursor, has_more


async def update_message_status(
    db: AsyncSession,
    notifier: ChatNotifier,
    chat_id: str,
    message_id: str,
    user_id: int,
    target,
) -> Tuple[ChatMessage, str]:
    """
    Recipient-only, forward-only status transition.

    sent -> delivered -> read. Repeating the current status is a no-op,
    moving backwards is a Conflict. The write only applies if the status is
    still the one that was read (compare-and-swap), otherwise it is retried.
    Returns (message, timestamp of the target status).
    """
    target = _parse_target_status(target)
    await check_membership(db, chat_id, user_id)

    for attempt in range(STATUS_UPDATE_ATTEMPTS):
        message = await _get_message(db, chat_id, message_id)
        if not message:
            raise NotFound("Pesan tidak ditemukan")
        if message.sender_id == user_id:
            raise Forbidden("Tidak dapat memperbarui status pesan sendiri")

        current = MessageStatus(message.status)
        timestamps = dict(message.status_timestamp or {})

        if STATUS_ORDER[target] == STATUS_ORDER[current]:
            return message, timestamps.get(target.value, "")
        if STATUS_ORDER[target] < STATUS_ORDER[current]:
            raise Conflict(f"Status pesan sudah '{current.value}'")

        stamp = _next_status_timestamp(timestamps)
        # Jumping sent -> read also records delivered
        for status, rank in STATUS_ORDER.items():
            if STATUS_ORDER[current] < rank <= STATUS_ORDER[target]:
                timestamps.setdefault(status.value, stamp)

        result = await db.execute(
            update(ChatMessage)
            .where(
                ChatMessage.id == message.id,
                ChatMessage.chat_id == chat_id,
                ChatMessage.status == current.value,
            )
            .values(status=target.value, status_timestamp=timestamps)
        )
        if result.rowcount == 1:
            await db.execute(
                update(Chat)
                .where(Chat.id == chat_id, Chat.last_message_id == message.id)
                .values(last_message_status=target.value)
            )
            await db.commit()
            break

        await db.rollback()
        logger.info(f"[ChatService] Message {message_id} changed concurrently (attempt {attempt + 1}), retrying")
    else:
        raise Conflict("Status pesan sedang diperbarui, silakan coba lagi")

    await db.refresh(message)
    logger.info(f"[ChatService] Message {message.id} in chat {chat_id}: {current.value} -> {target.value}")
    await notifier.publish(
        StatusChanged(chat_id=chat_id, message=MessageRead.model_validate(message), previous_status=current)
    )
    return message, timestamps[target.value]


async def batch_update_status(
    db: AsyncSession,
    notifier: ChatNotifier,
    chat_id: str,
    message_ids: List[str],
    user_id: int,
    target,
) -> Tuple[List[str], List[str]]:
    """
    Applies update_message_status to each id. Per-message failures are
    collected instead of raised. Returns (success, failed).
    """
    target = _parse_target_status(target)
    await check_membership(db, chat_id, user_id)

    success, failed = [], []
    for message_id in dict.fromkeys(message_ids):
        try:
            await update_message_status(db, notifier, chat_id, message_id, user_id, target)
            success.append(message_id)
        except (NotFound, Forbidden, Conflict) as e:
            logger.info(f"[ChatService] Status update skipped for message {message_id}: {e.detail}")
            failed.append(message_id)
    return success, failed

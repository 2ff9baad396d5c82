"""
Chat Service
============
Conversations, participants, messages, reactions and read state.

Project channels are open to every member of the project's organization
(members join on first access). Direct-message threads are visible to
their participants only.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import metrics as app_metrics
from auth.rbac import get_membership, has_role
from exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from logging_config import get_logger
from models import (
    ChatConversation,
    ChatMessage,
    ChatParticipant,
    MessageReaction,
    Project,
    Task,
    User,
    utcnow,
)

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class ConversationAccess:
    conversation: ChatConversation
    participant: ChatParticipant
    role: str


def message_to_dict(message: ChatMessage, reactions: Optional[List[MessageReaction]] = None) -> Dict[str, Any]:
    """Wire form of a message, as sent over REST and WebSocket."""
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "user_id": message.user_id,
        "message": message.message,
        "attachments": message.attachments,
        "created_at": message.created_at.isoformat() if message.created_at else None,
        "updated_at": message.updated_at.isoformat() if message.updated_at else None,
        "reactions": [
            {"id": r.id, "message_id": r.message_id, "user_id": r.user_id, "emoji": r.emoji}
            for r in (reactions or [])
        ],
    }


async def get_conversation(session: AsyncSession, conversation_id: int) -> ChatConversation:
    conversation = await session.get(ChatConversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    return conversation


async def _participant(session: AsyncSession, conversation_id: int, user_id: str) -> Optional[ChatParticipant]:
    return (await session.execute(
        select(ChatParticipant).where(
            ChatParticipant.conversation_id == conversation_id,
            ChatParticipant.user_id == user_id,
        )
    )).scalar_one_or_none()


async def _org_role(session: AsyncSession, project_id: int, user_id: str) -> Optional[str]:
    project = await session.get(Project, project_id)
    if project is None:
        return None
    membership = await get_membership(session, user_id, project.organization_id)
    return membership.role if membership else None


async def check_conversation_access(session: AsyncSession, conversation_id: int, user: User) -> ConversationAccess:
    """
    Resolve the caller's participation, auto-joining project channels.

    Raises:
        NotFoundError: Unknown conversation
        PermissionDeniedError: Not in the project, or not in the DM thread
    """
    conversation = await get_conversation(session, conversation_id)
    role = await _org_role(session, conversation.project_id, user.id)
    if role is None:
        raise PermissionDeniedError("Access denied")

    participant = await _participant(session, conversation.id, user.id)
    if participant is None:
        if conversation.type == "dm":
            raise PermissionDeniedError("Access denied")
        participant = ChatParticipant(conversation_id=conversation.id, user_id=user.id)
        session.add(participant)
        await session.flush()

    return ConversationAccess(conversation=conversation, participant=participant, role=role)


async def list_project_conversations(session: AsyncSession, project_id: int, user_id: str) -> List[ChatConversation]:
    my_dms = select(ChatParticipant.conversation_id).where(ChatParticipant.user_id == user_id)
    result = await session.execute(
        select(ChatConversation)
        .where(
            ChatConversation.project_id == project_id,
            or_(ChatConversation.type == "channel", ChatConversation.id.in_(my_dms)),
        )
        .order_by(ChatConversation.id)
    )
    return list(result.scalars().all())


async def _require_org_member(session: AsyncSession, project: Project, user_id: str) -> None:
    if await get_membership(session, user_id, project.organization_id) is None:
        raise ValidationError("Participant must be a member of the project's organization", field="user_id")


async def create_conversation(
    session: AsyncSession,
    project: Project,
    creator: User,
    data: Dict[str, Any],
) -> ChatConversation:
    if data.get("task_id") is not None:
        task = await session.get(Task, data["task_id"])
        if task is None or task.project_id != project.id:
            raise ValidationError("Task must belong to the project", field="task_id")

    participant_ids = [uid for uid in dict.fromkeys(data.get("participant_ids") or []) if uid != creator.id]
    if data.get("type") == "dm" and not participant_ids:
        raise ValidationError("A direct message needs at least one other participant", field="participant_ids")
    for uid in participant_ids:
        await _require_org_member(session, project, uid)

    conversation = ChatConversation(
        project_id=project.id,
        task_id=data.get("task_id"),
        type=data.get("type") or "channel",
        name=data.get("name"),
        created_by=creator.id,
    )
    session.add(conversation)
    await session.flush()

    for uid in [creator.id, *participant_ids]:
        session.add(ChatParticipant(conversation_id=conversation.id, user_id=uid))
    await session.flush()
    return conversation


async def list_participants(session: AsyncSession, conversation_id: int) -> List[ChatParticipant]:
    result = await session.execute(
        select(ChatParticipant).where(ChatParticipant.conversation_id == conversation_id).order_by(ChatParticipant.id)
    )
    return list(result.scalars().all())


async def add_participant(session: AsyncSession, conversation: ChatConversation, user_id: str) -> ChatParticipant:
    project = await session.get(Project, conversation.project_id)
    await _require_org_member(session, project, user_id)
    if await _participant(session, conversation.id, user_id) is not None:
        raise ConflictError("User is already a participant")

    participant = ChatParticipant(conversation_id=conversation.id, user_id=user_id)
    session.add(participant)
    await session.flush()
    return participant


async def remove_participant(session: AsyncSession, access: ConversationAccess, user_id: str) -> None:
    if user_id != access.participant.user_id and not has_role(access.role, "admin") \
            and access.conversation.created_by != access.participant.user_id:
        raise PermissionDeniedError("You cannot remove this participant")

    participant = await _participant(session, access.conversation.id, user_id)
    if participant is None:
        raise NotFoundError("Participant", user_id)
    await session.delete(participant)
    await session.flush()


# =============================================================================
# Messages
# =============================================================================

async def reactions_for(session: AsyncSession, message_ids: List[int]) -> Dict[int, List[MessageReaction]]:
    if not message_ids:
        return {}
    rows = (await session.execute(
        select(MessageReaction).where(MessageReaction.message_id.in_(message_ids)).order_by(MessageReaction.id)
    )).scalars().all()
    grouped: Dict[int, List[MessageReaction]] = {}
    for r in rows:
        grouped.setdefault(r.message_id, []).append(r)
    return grouped


async def list_messages(
    session: AsyncSession,
    conversation_id: int,
    before_id: Optional[int] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """A page of live messages, oldest first, ending just before ``before_id``."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    stmt = select(ChatMessage).where(
        ChatMessage.conversation_id == conversation_id,
        ChatMessage.deleted_at.is_(None),
    )
    if before_id is not None:
        stmt = stmt.where(ChatMessage.id < before_id)
    rows = list((await session.execute(stmt.order_by(ChatMessage.id.desc()).limit(limit))).scalars().all())
    rows.reverse()

    reactions = await reactions_for(session, [m.id for m in rows])
    return [message_to_dict(m, reactions.get(m.id)) for m in rows]


async def get_message(session: AsyncSession, conversation_id: int, message_id: int) -> ChatMessage:
    message = await session.get(ChatMessage, message_id)
    if message is None or message.conversation_id != conversation_id or message.deleted_at is not None:
        raise NotFoundError("Message", message_id)
    return message


async def post_message(
    session: AsyncSession,
    conversation_id: int,
    user_id: str,
    text: str,
    attachments: Optional[List[Dict[str, Any]]] = None,
    transport: str = "rest",
) -> ChatMessage:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty", field="message")

    message = ChatMessage(
        conversation_id=conversation_id,
        user_id=user_id,
        message=text,
        attachments=attachments,
    )
    session.add(message)
    await session.flush()

    participant = await _participant(session, conversation_id, user_id)
    if participant is not None:
        participant.last_read_at = message.created_at
        await session.flush()

    app_metrics.chat_messages_total.labels(transport=transport).inc()
    return message


async def edit_message(session: AsyncSession, message: ChatMessage, user_id: str, text: str) -> ChatMessage:
    if message.user_id != user_id:
        raise PermissionDeniedError("Only the author can edit this message")
    message.message = text.strip()
    await session.flush()
    return message


async def delete_message(session: AsyncSession, message: ChatMessage, access: ConversationAccess) -> None:
    """Soft delete; allowed for the author and organization admins."""
    if message.user_id != access.participant.user_id and not has_role(access.role, "admin"):
        raise PermissionDeniedError("Only the author or an admin can delete this message")
    message.deleted_at = utcnow()
    await session.flush()


async def add_reaction(session: AsyncSession, message: ChatMessage, user_id: str, emoji: str) -> MessageReaction:
    reaction = MessageReaction(message_id=message.id, user_id=user_id, emoji=emoji)
    session.add(reaction)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError("Reaction already exists", original_error=e)
    return reaction


async def remove_reaction(session: AsyncSession, message: ChatMessage, user_id: str, emoji: str) -> None:
    reaction = (await session.execute(
        select(MessageReaction).where(
            MessageReaction.message_id == message.id,
            MessageReaction.user_id == user_id,
            MessageReaction.emoji == emoji,
        )
    )).scalar_one_or_none()
    if reaction is None:
        raise NotFoundError("Reaction", emoji)
    await session.delete(reaction)
    await session.flush()


async def mark_read(session: AsyncSession, participant: ChatParticipant) -> ChatParticipant:
    participant.last_read_at = utcnow()
    await session.flush()
    return participant


async def unread_counts(session: AsyncSession, user_id: str) -> List[Dict[str, int]]:
    """Messages from others newer than the user's read marker, per conversation."""
    stmt = (
        select(ChatParticipant.conversation_id, func.count(ChatMessage.id))
        .join(ChatMessage, ChatMessage.conversation_id == ChatParticipant.conversation_id)
        .where(
            ChatParticipant.user_id == user_id,
            ChatMessage.deleted_at.is_(None),
            or_(ChatMessage.user_id.is_(None), ChatMessage.user_id != user_id),
            or_(
                ChatParticipant.last_read_at.is_(None),
                and_(ChatParticipant.last_read_at.is_not(None), ChatMessage.created_at > ChatParticipant.last_read_at),
            ),
        )
        .group_by(ChatParticipant.conversation_id)
        .order_by(ChatParticipant.conversation_id)
    )
    return [{"conversation_id": cid, "unread": count} for cid, count in (await session.execute(stmt)).all()]

"""
Chat Router
===========
Project conversations over REST and a WebSocket per conversation.

WebSocket protocol (``/ws/chat/{conversation_id}``, session cookie auth):

Client frames:
    {"type": "message", "message": "..."}
    {"type": "typing", "is_typing": true}
    {"type": "ping"}

Server frames:
    {"type": "message", "data": {...}}
    {"type": "typing", "data": {"userId": ..., "isTyping": ...}}
    {"type": "pong"}
    {"type": "error", "message": "..."}

Close codes: 4401 unauthenticated, 4403 not allowed in the conversation.
"""

import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from auth import ProjectAccess, get_current_user, require_project_role, user_from_token
from config import get_settings
from database import get_db
from exceptions import AuthenticationError, NotFoundError, PermissionDeniedError, ValidationError
from logging_config import get_logger
from models import User
from routers.deps import get_chat_hub
from schemas import (
    ConversationCreate,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
    MessageUpdate,
    ParticipantAdd,
    ParticipantResponse,
    ReactionCreate,
    ReactionResponse,
    UnreadCount,
)
from security import sanitize_text
from services import chat_service
from services.chat_hub import ChatHub

logger = get_logger(__name__)

router = APIRouter()
ws_router = APIRouter()

MAX_MESSAGE_LENGTH = 10000

WS_UNAUTHENTICATED = 4401
WS_FORBIDDEN = 4403


# =============================================================================
# Conversations
# =============================================================================

@router.get("/projects/{project_id}/conversations", response_model=List[ConversationResponse])
async def list_conversations(
    access: ProjectAccess = Depends(require_project_role("viewer")),
    db: AsyncSession = Depends(get_db),
):
    return await chat_service.list_project_conversations(db, access.project.id, access.user.id)


@router.post("/projects/{project_id}/conversations", response_model=ConversationResponse, status_code=201)
async def create_conversation(
    body: ConversationCreate,
    access: ProjectAccess = Depends(require_project_role("member")),
    db: AsyncSession = Depends(get_db),
):
    conversation = await chat_service.create_conversation(db, access.project, access.user, body.model_dump())
    await db.commit()
    return conversation


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    access = await chat_service.check_conversation_access(db, conversation_id, user)
    await db.commit()
    return access.conversation


# =============================================================================
# Participants
# =============================================================================

@router.get("/conversations/{conversation_id}/participants", response_model=List[ParticipantResponse])
async def list_participants(
    conversation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await chat_service.check_conversation_access(db, conversation_id, user)
    await db.commit()
    return await chat_service.list_participants(db, conversation_id)


@router.post("/conversations/{conversation_id}/participants", response_model=ParticipantResponse, status_code=201)
async def add_participant(
    conversation_id: int,
    body: ParticipantAdd,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    access = await chat_service.check_conversation_access(db, conversation_id, user)
    participant = await chat_service.add_participant(db, access.conversation, body.user_id)
    await db.commit()
    return participant


@router.delete("/conversations/{conversation_id}/participants/{user_id}", status_code=204)
async def remove_participant(
    conversation_id: int,
    user_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    access = await chat_service.check_conversation_access(db, conversation_id, user)
    await chat_service.remove_participant(db, access, user_id)
    await db.commit()


# =============================================================================
# Messages
# =============================================================================

@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    conversation_id: int,
    before_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=chat_service.MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await chat_service.check_conversation_access(db, conversation_id, user)
    await db.commit()
    return await chat_service.list_messages(db, conversation_id, before_id, limit)


@router.post("/conversations/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def post_message(
    conversation_id: int,
    body: MessageCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    await chat_service.check_conversation_access(db, conversation_id, user)
    message = await chat_service.post_message(db, conversation_id, user.id, body.message, body.attachments)
    await db.commit()

    payload = chat_service.message_to_dict(message)
    await hub.broadcast_message(conversation_id, payload)
    return payload


@router.patch("/conversations/{conversation_id}/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    conversation_id: int,
    message_id: int,
    body: MessageUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    await chat_service.check_conversation_access(db, conversation_id, user)
    message = await chat_service.get_message(db, conversation_id, message_id)
    message = await chat_service.edit_message(db, message, user.id, body.message)
    await db.commit()

    reactions = await chat_service.reactions_for(db, [message.id])
    payload = chat_service.message_to_dict(message, reactions.get(message.id))
    await hub.broadcast_message(conversation_id, payload)
    return payload


@router.delete("/conversations/{conversation_id}/messages/{message_id}", status_code=204)
async def delete_message(
    conversation_id: int,
    message_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: ChatHub = Depends(get_chat_hub),
):
    access = await chat_service.check_conversation_access(db, conversation_id, user)
    message = await chat_service.get_message(db, conversation_id, message_id)
    await chat_service.delete_message(db, message, access)
    await db.commit()
    await hub.broadcast_message(conversation_id, {"id": message_id, "conversation_id": conversation_id, "deleted": True})


@router.post(
    "/conversations/{conversation_id}/messages/{message_id}/reactions",
    response_model=ReactionResponse,
    status_code=201,
)
async def add_reaction(
    conversation_id: int,
    message_id: int,
    body: ReactionCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await chat_service.check_conversation_access(db, conversation_id, user)
    message = await chat_service.get_message(db, conversation_id, message_id)
    reaction = await chat_service.add_reaction(db, message, user.id, body.emoji)
    await db.commit()
    return reaction


@router.delete("/conversations/{conversation_id}/messages/{message_id}/reactions/{emoji}", status_code=204)
async def remove_reaction(
    conversation_id: int,
    message_id: int,
    emoji: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await chat_service.check_conversation_access(db, conversation_id, user)
    message = await chat_service.get_message(db, conversation_id, message_id)
    await chat_service.remove_reaction(db, message, user.id, emoji)
    await db.commit()


@router.post("/conversations/{conversation_id}/read", response_model=ParticipantResponse)
async def mark_read(
    conversation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    access = await chat_service.check_conversation_access(db, conversation_id, user)
    participant = await chat_service.mark_read(db, access.participant)
    await db.commit()
    return participant


@router.get("/chat/unread", response_model=List[UnreadCount])
async def unread(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await chat_service.unread_counts(db, user.id)


# =============================================================================
# WebSocket
# =============================================================================

async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"type": "error", "message": message})


@ws_router.websocket("/ws/chat/{conversation_id}")
async def chat_socket(websocket: WebSocket, conversation_id: int, db: AsyncSession = Depends(get_db)):
    await websocket.accept()

    token = websocket.cookies.get(get_settings().session_cookie_name)
    try:
        user = await user_from_token(db, token)
    except AuthenticationError:
        await websocket.close(code=WS_UNAUTHENTICATED)
        return
    try:
        await chat_service.check_conversation_access(db, conversation_id, user)
        await db.commit()
    except (PermissionDeniedError, NotFoundError):
        await websocket.close(code=WS_FORBIDDEN)
        return

    hub: ChatHub = websocket.app.state.chat_hub
    await hub.connect(conversation_id, websocket)
    logger.info("Chat socket connected", conversation_id=conversation_id, user_id=user.id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await _send_error(websocket, "Invalid JSON")
                continue
            kind = frame.get("type") if isinstance(frame, dict) else None

            if kind == "ping":
                await websocket.send_json({"type": "pong"})
            elif kind == "typing":
                await hub.broadcast_typing(conversation_id, user.id, bool(frame.get("is_typing")))
            elif kind == "message":
                text = sanitize_text(str(frame.get("message") or ""))
                if len(text) > MAX_MESSAGE_LENGTH:
                    await _send_error(websocket, "Message too long")
                    continue
                try:
                    message = await chat_service.post_message(
                        db, conversation_id, user.id, text, transport="websocket"
                    )
                    await db.commit()
                except ValidationError as e:
                    await db.rollback()
                    await _send_error(websocket, e.message)
                    continue
                await hub.broadcast_message(conversation_id, chat_service.message_to_dict(message))
            else:
                await _send_error(websocket, "Unknown frame type")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(conversation_id, websocket)
        logger.info("Chat socket closed", conversation_id=conversation_id, user_id=user.id)

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, and_, func, or_, select

from khojpayo.db.db import get_session
from khojpayo.models.conversation import Conversation, ConversationMessage
from khojpayo.models.item import Item, ItemMedia
from khojpayo.models.user import Profile
from khojpayo.utils.activity import notify
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.s3_service import generate_signed_url

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_LENGTH = 100


class ConversationCreateRequest(BaseModel):
    item_id: Optional[uuid.UUID] = None
    recipient_id: Optional[uuid.UUID] = None


class MessageCreateRequest(BaseModel):
    content: str = Field(default="", max_length=2000)


def get_conversation_for(session: Session, conversation_id: uuid.UUID, user: Profile) -> Conversation:
    conversation = session.get(Conversation, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    if not conversation.has_participant(user.id):
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")

    return conversation


def item_preview(session: Session, item: Optional[Item]) -> Optional[dict]:
    if not item:
        return None

    primary = session.exec(
        select(ItemMedia)
        .where(ItemMedia.item_id == item.id)
        .order_by(ItemMedia.is_primary.desc(), ItemMedia.order)
    ).first()

    return {
        "id": item.id,
        "title": item.title,
        "type": item.type,
        "status": item.status,
        "image": generate_signed_url(primary.url) if primary else None,
    }


def serialize_conversation(session: Session, conversation: Conversation, user: Profile) -> dict:
    other = session.get(Profile, conversation.other_participant(user.id))

    last_message = session.exec(
        select(ConversationMessage)
        .where(ConversationMessage.conversation_id == conversation.id)
        .order_by(ConversationMessage.created_at.desc())
    ).first()

    unread_count = session.exec(
        select(func.count(ConversationMessage.id))
        .where(ConversationMessage.conversation_id == conversation.id)
        .where(ConversationMessage.sender_id != user.id)
        .where(ConversationMessage.read_at == None)  # noqa: E711
    ).one()

    return {
        "id": conversation.id,
        "created_at": conversation.created_at,
        "last_message_at": conversation.last_message_at,
        "item": item_preview(session, session.get(Item, conversation.item_id)),
        "other_user": other.summary() if other else None,
        "last_message": last_message,
        "unread_count": unread_count,
    }


@router.get("")
async def list_conversations(
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    conversations = session.exec(
        select(Conversation)
        .where(or_(Conversation.participant_1 == user.id, Conversation.participant_2 == user.id))
        .order_by(Conversation.last_message_at.desc())
    ).all()

    return {
        "conversations": [serialize_conversation(session, c, user) for c in conversations]
    }


@router.post("")
async def start_conversation(
    payload: ConversationCreateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    if not payload.item_id or not payload.recipient_id:
        raise HTTPException(status_code=400, detail="item_id and recipient_id are required")

    if payload.recipient_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot start a conversation with yourself")

    item = session.get(Item, payload.item_id)
    if not item or item.status == "deleted":
        raise HTTPException(status_code=404, detail="Item not found")

    if not session.get(Profile, payload.recipient_id):
        raise HTTPException(status_code=404, detail="Recipient not found")

    # Either participant may have started it
    existing = session.exec(
        select(Conversation)
        .where(Conversation.item_id == item.id)
        .where(or_(
            and_(Conversation.participant_1 == user.id, Conversation.participant_2 == payload.recipient_id),
            and_(Conversation.participant_1 == payload.recipient_id, Conversation.participant_2 == user.id),
        ))
    ).first()

    if existing:
        return {"conversation": serialize_conversation(session, existing, user), "is_new": False}

    conversation = Conversation(
        item_id=item.id,
        participant_1=user.id,
        participant_2=payload.recipient_id,
    )

    session.add(conversation)
    session.commit()
    session.refresh(conversation)

    return JSONResponse(
        status_code=201,
        content=jsonable_encoder({
            "conversation": serialize_conversation(session, conversation, user),
            "is_new": True,
        }),
    )


@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    conversation = get_conversation_for(session, conversation_id, user)

    messages = session.exec(
        select(ConversationMessage)
        .where(ConversationMessage.conversation_id == conversation.id)
        .order_by(ConversationMessage.created_at.asc())
    ).all()

    senders = {
        p.id: p.summary()
        for p in session.exec(
            select(Profile).where(Profile.id.in_({m.sender_id for m in messages}))
        ).all()
    }

    messages_response = []
    now = datetime.now(timezone.utc)

    for message in messages:
        data = message.model_dump()
        data["sender"] = senders.get(message.sender_id)
        messages_response.append(data)

        # Mark the other side's messages as read
        if message.sender_id != user.id and message.read_at is None:
            message.read_at = now
            session.add(message)

    session.commit()

    return {"messages": messages_response}


@router.post("/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: uuid.UUID,
    payload: MessageCreateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    conversation = get_conversation_for(session, conversation_id, user)

    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")

    message = ConversationMessage(
        conversation_id=conversation.id,
        sender_id=user.id,
        content=content,
    )

    conversation.last_message_at = message.created_at

    session.add(message)
    session.add(conversation)
    session.commit()
    session.refresh(message)

    message_response = message.model_dump()
    message_response["sender"] = user.summary()

    # The message is already stored; a failed notification must not fail the send
    try:
        notify(
            session,
            conversation.other_participant(user.id),
            "new_message",
            f"New message from {user.name}",
            content[:PREVIEW_LENGTH],
            {"conversation_id": conversation.id, "message_id": message.id},
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to create message notification for conversation %s", conversation.id)

    return {"message": message_response}

import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session, func, select

from khojpayo.db.db import get_session
from khojpayo.models.notification import Notification
from khojpayo.models.user import Profile
from khojpayo.utils.activity import notify
from khojpayo.utils.auth_helper import require_user


router = APIRouter()


class MarkReadRequest(BaseModel):
    notification_ids: Optional[list[uuid.UUID]] = None
    mark_all_read: bool = False


def unread_count(session: Session, user: Profile) -> int:
    return session.exec(
        select(func.count(Notification.id))
        .where(Notification.user_id == user.id)
        .where(Notification.is_read == False)  # noqa: E712
    ).one()


@router.get("")
async def get_my_notifications(
    unread: bool = False,
    limit: int = Query(50, ge=1, le=100),
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    query = (
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )

    if unread:
        query = query.where(Notification.is_read == False)  # noqa: E712

    notifications = session.exec(query).all()

    return {
        "notifications": notifications,
        "unreadCount": unread_count(session, user),
    }


@router.get("/count")
async def get_unread_notifications_count(
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    return {"count": unread_count(session, user)}


@router.patch("")
async def mark_notifications_read(
    payload: MarkReadRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    query = (
        select(Notification)
        .where(Notification.user_id == user.id)
        .where(Notification.is_read == False)  # noqa: E712
    )

    if not payload.mark_all_read:
        if not payload.notification_ids:
            raise HTTPException(status_code=400, detail="Provide notification_ids or mark_all_read")
        query = query.where(Notification.id.in_(payload.notification_ids))

    now = datetime.now(timezone.utc)
    notifications = session.exec(query).all()

    for notif in notifications:
        notif.is_read = True
        notif.read_at = now
        session.add(notif)

    session.commit()

    return {"ok": True, "updated": len(notifications)}


@router.post("/{notification_id}/mark-read")
async def mark_notification_read(
    notification_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    notif = session.exec(
        select(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.user_id == user.id)
    ).first()

    if not notif:
        raise HTTPException(
            status_code=404,
            detail="Notification not found"
        )

    notif.is_read = True
    notif.read_at = datetime.now(timezone.utc)
    session.add(notif)
    session.commit()

    return {"ok": True}


@router.post("/test", status_code=201)
async def create_test_notification(
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    notification = notify(
        session,
        user.id,
        "test",
        "Test notification",
        "This is a test notification.",
        {"test": True},
    )

    session.commit()
    session.refresh(notification)

    return {"notification": notification}

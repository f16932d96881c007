import logging
import uuid
from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlmodel import Session

from khojpayo.models.activity_log import ActivityLog
from khojpayo.models.notification import Notification

logger = logging.getLogger(__name__)


def notify(
    session: Session,
    user_id: uuid.UUID,
    type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        data=jsonable(data),
    )
    session.add(notification)
    return notification


def log_activity(
    session: Session,
    user_id: Optional[uuid.UUID],
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    details: Optional[dict] = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=jsonable(details),
    )
    session.add(entry)

    logger.info("%s %s %s by %s", action, entity_type, entity_id, user_id)
    return entry


def jsonable(data: Optional[dict]) -> Optional[dict]:
    # JSON columns cannot hold UUIDs or datetimes
    if data is None:
        return None
    return jsonable_encoder(data)

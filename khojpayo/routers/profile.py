from typing import Literal, Optional
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session, select

from khojpayo.db.db import get_session
from khojpayo.models.item import Item
from khojpayo.models.user import Profile
from khojpayo.routers.items import serialize_items
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.form_validator import not_null


router = APIRouter()


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    preferred_language: Optional[Literal["en", "ne"]] = None

    @field_validator("name", "preferred_language")
    @classmethod
    def reject_null(cls, value):
        return not_null(value)


@router.get("/me")
async def get_my_profile(user: Profile = Depends(require_user)):
    return user.public_dict()


@router.patch("/me")
async def update_my_profile(
    payload: ProfileUpdateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, field, value.strip() if isinstance(value, str) else value)

    user.updated_at = datetime.now(timezone.utc)

    session.add(user)
    session.commit()
    session.refresh(user)

    return user.public_dict()


@router.get("/items")
async def get_my_items(
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    items = session.exec(
        select(Item)
        .where(Item.user_id == user.id)
        .where(Item.status != "deleted")
        .order_by(Item.created_at.desc())
    ).all()

    # Separate by type
    lost_items = [item for item in items if item.type == "lost"]
    found_items = [item for item in items if item.type == "found"]

    return {
        "lost_items": serialize_items(session, lost_items),
        "found_items": serialize_items(session, found_items),
    }


@router.get("/{user_id}")
async def get_profile(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    profile_user = session.get(Profile, user_id)

    if not profile_user:
        raise HTTPException(status_code=404, detail="User not found")

    items = session.exec(
        select(Item)
        .where(Item.user_id == profile_user.id)
        .where(Item.status == "active")
        .order_by(Item.created_at.desc())
    ).all()

    lost_items = [item for item in items if item.type == "lost"]
    found_items = [item for item in items if item.type == "found"]

    return {
        "user": {
            "id": profile_user.id,
            "name": profile_user.name,
            "avatar_url": profile_user.avatar_url,
            "is_verified": profile_user.is_verified,
            "created_at": profile_user.created_at,
        },
        "lost_items": serialize_items(session, lost_items),
        "found_items": serialize_items(session, found_items),
    }

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from sqlmodel import Session, func, select

from khojpayo.db.db import get_session
from khojpayo.models.organization import OrganizationMember
from khojpayo.models.user import Profile
from khojpayo.utils.activity import log_activity
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.form_validator import not_null
from khojpayo.utils.org_rbac import (
    MANAGER_ROLES,
    MEMBER_ROLES,
    get_membership,
    get_organization_or_404,
    require_org_role,
)


router = APIRouter()


class MemberAddRequest(BaseModel):
    user_id: Optional[uuid.UUID] = None
    email: Optional[str] = None
    role: Literal["admin", "member"] = "member"
    member_role: str = "org_staff"
    permissions: Optional[dict] = None


class MemberUpdateRequest(BaseModel):
    member_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    role: Optional[Literal["admin", "member"]] = None
    member_role: Optional[str] = None
    permissions: Optional[dict] = None

    @field_validator("role", "member_role")
    @classmethod
    def reject_null(cls, value):
        return not_null(value)


def check_member_role(member_role: str):
    if member_role not in MEMBER_ROLES:
        raise HTTPException(status_code=400, detail="Invalid member role")


def find_member(
    session: Session,
    organization_id: uuid.UUID,
    member_id: Optional[uuid.UUID],
    user_id: Optional[uuid.UUID],
) -> OrganizationMember:
    query = (
        select(OrganizationMember)
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.is_active == True)  # noqa: E712
    )

    if member_id:
        query = query.where(OrganizationMember.id == member_id)
    else:
        query = query.where(OrganizationMember.user_id == user_id)

    member = session.exec(query).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")

    return member


def count_owners(session: Session, organization_id: uuid.UUID) -> int:
    return session.exec(
        select(func.count(OrganizationMember.id))
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.member_role == "org_owner")
        .where(OrganizationMember.is_active == True)  # noqa: E712
    ).one()


def serialize_member(session: Session, member: OrganizationMember) -> dict:
    data = member.model_dump()
    profile = session.get(Profile, member.user_id)
    data["user"] = {
        "id": profile.id,
        "name": profile.name,
        "email": profile.email,
        "avatar_url": profile.avatar_url,
    } if profile else None
    return data


@router.get("/{organization_id}/members")
async def list_members(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)

    if not get_membership(session, user.id, organization_id):
        raise HTTPException(status_code=403, detail="Not a member of this organization")

    members = session.exec(
        select(OrganizationMember)
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.is_active == True)  # noqa: E712
        .order_by(OrganizationMember.created_at)
    ).all()

    return {"members": [serialize_member(session, m) for m in members]}


@router.post("/{organization_id}/members")
async def add_member(
    organization_id: uuid.UUID,
    payload: MemberAddRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    requester = require_org_role(session, user.id, organization_id, MANAGER_ROLES)

    check_member_role(payload.member_role)

    if payload.member_role == "org_owner" and requester.member_role != "org_owner":
        raise HTTPException(status_code=403, detail="Only the owner can promote to owner")

    # Resolve the target user
    if payload.user_id:
        target = session.get(Profile, payload.user_id)
        if not target:
            raise HTTPException(status_code=404, detail="User not found")
    elif payload.email:
        email = payload.email.strip().lower()
        target = session.exec(select(Profile).where(Profile.email == email)).first()
        if not target:
            raise HTTPException(status_code=404, detail=f"User not found with email: {email}")
    else:
        raise HTTPException(status_code=400, detail="user_id or email is required")

    now = datetime.now(timezone.utc)

    existing = session.exec(
        select(OrganizationMember)
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.user_id == target.id)
    ).first()

    if existing and existing.is_active:
        raise HTTPException(status_code=400, detail="User is already a member of this organization")

    if existing:
        # Reactivate former member
        member = existing
        member.is_active = True
        member.deactivated_at = None
        member.deactivated_by = None
        status_code = 200
    else:
        member = OrganizationMember(organization_id=organization_id, user_id=target.id)
        status_code = 201

    member.role = payload.role
    member.member_role = payload.member_role
    member.permissions = payload.permissions or {}
    member.invited_by = user.id
    member.invited_at = now
    member.accepted_at = now

    session.add(member)

    log_activity(
        session,
        user.id,
        "create",
        "organization_member",
        member.id,
        {"organization_id": organization_id, "member_user_id": target.id, "member_role": member.member_role},
    )

    session.commit()
    session.refresh(member)

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"member": serialize_member(session, member)}),
    )


@router.patch("/{organization_id}/members")
async def update_member(
    organization_id: uuid.UUID,
    payload: MemberUpdateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)

    if not payload.member_id and not payload.user_id:
        raise HTTPException(status_code=400, detail="member_id or user_id is required")

    requester = require_org_role(session, user.id, organization_id, MANAGER_ROLES)
    member = find_member(session, organization_id, payload.member_id, payload.user_id)

    is_owner = requester.member_role == "org_owner"

    if member.member_role == "org_owner" and not is_owner:
        raise HTTPException(status_code=403, detail="Only the owner can modify owner permissions")

    updates = payload.model_dump(exclude_unset=True, exclude={"member_id", "user_id"})

    if "member_role" in updates:
        check_member_role(updates["member_role"])

        if updates["member_role"] == "org_owner" and not is_owner:
            raise HTTPException(status_code=403, detail="Only the owner can promote to owner")

        if member.member_role == "org_owner" and updates["member_role"] != "org_owner":
            if count_owners(session, organization_id) <= 1:
                raise HTTPException(status_code=400, detail="Organization must keep at least one owner")

    for field, value in updates.items():
        setattr(member, field, value)

    session.add(member)

    log_activity(session, user.id, "update", "organization_member", member.id, {"updates": updates})

    session.commit()
    session.refresh(member)

    return {"member": serialize_member(session, member)}


@router.delete("/{organization_id}/members")
async def remove_member(
    organization_id: uuid.UUID,
    member_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)

    if not member_id and not user_id:
        raise HTTPException(status_code=400, detail="member_id or user_id is required")

    require_org_role(session, user.id, organization_id, MANAGER_ROLES)
    member = find_member(session, organization_id, member_id, user_id)

    if member.member_role == "org_owner":
        raise HTTPException(status_code=400, detail="Cannot remove the organization owner")

    member.is_active = False
    member.deactivated_at = datetime.now(timezone.utc)
    member.deactivated_by = user.id

    session.add(member)

    log_activity(
        session,
        user.id,
        "delete",
        "organization_member",
        member.id,
        {"organization_id": organization_id, "member_user_id": member.user_id},
    )

    session.commit()

    return {"message": "Member removed successfully"}

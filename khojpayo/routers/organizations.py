import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from khojpayo.db.db import get_session
from khojpayo.models.organization import Organization, OrganizationMember
from khojpayo.models.user import Profile
from khojpayo.utils.activity import log_activity
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.form_validator import Location, OrganizationType, require_email
from khojpayo.utils.org_rbac import get_organization_or_404


router = APIRouter()


class OrganizationCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    type: OrganizationType
    description: Optional[str] = Field(default=None, max_length=2000)
    contact_email: str
    contact_phone: str = Field(min_length=1)
    location: Location
    address: str = Field(min_length=1)


@router.get("")
async def list_organizations(
    type: Optional[str] = None,
    verified: Optional[bool] = None,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
):
    query = (
        select(Organization)
        .where(Organization.is_active == True)  # noqa: E712
        .order_by(Organization.created_at.desc())
    )

    if type:
        query = query.where(Organization.type == type)

    if verified:
        query = query.where(Organization.is_verified == True)  # noqa: E712

    if search:
        query = query.where(Organization.name.ilike(f"%{search}%"))

    return {"organizations": session.exec(query).all()}


@router.get("/{organization_id}")
async def get_organization(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
):
    return {"organization": get_organization_or_404(session, organization_id)}


@router.post("", status_code=201)
async def create_organization(
    payload: OrganizationCreateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    existing = session.exec(
        select(Organization).where(Organization.admin_id == user.id)
    ).first()

    if existing:
        raise HTTPException(
            status_code=400,
            detail="You already have an organization registered",
        )

    org = Organization(
        name=payload.name.strip(),
        type=payload.type,
        description=payload.description,
        contact_email=require_email(payload.contact_email),
        contact_phone=payload.contact_phone,
        location=payload.location.model_dump(exclude_none=True),
        address=payload.address,
        admin_id=user.id,
    )
    session.add(org)

    now = datetime.now(timezone.utc)

    # Creator owns the organization
    session.add(OrganizationMember(
        organization_id=org.id,
        user_id=user.id,
        role="admin",
        member_role="org_owner",
        invited_at=now,
        accepted_at=now,
    ))

    if user.role != "admin":
        user.role = "organization"
        user.updated_at = now
        session.add(user)

    log_activity(session, user.id, "create", "organization", org.id, {"name": org.name, "type": org.type})

    session.commit()
    session.refresh(org)

    return {"organization": org}

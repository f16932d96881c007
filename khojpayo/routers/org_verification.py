"""
Organization verification workflow: verification details, official email
ownership checks and the organization's verified contact people.
"""

import hashlib
import logging
import re
import secrets
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session, select

from khojpayo import config
from khojpayo.db.db import get_session
from khojpayo.models.contract import OrganizationContract
from khojpayo.models.organization import OrganizationMember
from khojpayo.models.user import Profile
from khojpayo.models.verification import OrganizationContact, OrganizationVerification, VerificationAudit
from khojpayo.utils.auth_helper import require_user
from khojpayo.utils.form_validator import as_utc, not_null, require_email
from khojpayo.utils.org_rbac import (
    MANAGER_ROLES,
    extract_email_domain,
    get_organization_or_404,
    log_verification_audit,
    require_org_action,
    require_org_role,
    validate_org_email,
)

logger = logging.getLogger(__name__)

router = APIRouter()

OTP_PATTERN = re.compile(r"^\d{6}$")

ContactRole = Literal["owner", "director", "manager", "it_admin", "operations", "hr", "other"]


class VerificationDetailsRequest(BaseModel):
    registered_name: str = Field(min_length=1)
    registration_type: str = Field(min_length=1)
    registration_number: str = Field(min_length=1)
    registration_date: Optional[date] = None
    registration_authority: Optional[str] = None
    province: str = Field(min_length=1)
    district: str = Field(min_length=1)
    municipality: str = Field(min_length=1)
    ward_number: Optional[int] = Field(default=None, ge=1)
    street_address: Optional[str] = None
    postal_code: Optional[str] = None
    official_email: str = Field(min_length=1)
    official_phone: str = Field(min_length=1)
    official_phone_alt: Optional[str] = None
    official_website: Optional[str] = None
    registration_certificate_url: Optional[str] = None
    pan_certificate_url: Optional[str] = None
    vat_certificate_url: Optional[str] = None
    letterhead_url: Optional[str] = None
    other_documents: list = []


class OtpRequest(BaseModel):
    otp: Optional[str] = None


class ContactCreateRequest(BaseModel):
    user_id: uuid.UUID
    full_name: str = Field(min_length=1)
    position_title: str = Field(min_length=1)
    role: ContactRole
    department: Optional[str] = None
    email: str
    phone: str = Field(min_length=1)
    phone_alt: Optional[str] = None
    is_primary_contact: bool = False
    can_manage_items: bool = True
    can_manage_claims: bool = True
    can_manage_members: bool = False
    can_view_analytics: bool = True


class ContactUpdateRequest(BaseModel):
    contact_id: Optional[uuid.UUID] = None
    full_name: Optional[str] = Field(default=None, min_length=1)
    position_title: Optional[str] = Field(default=None, min_length=1)
    role: Optional[ContactRole] = None
    department: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, min_length=1)
    phone_alt: Optional[str] = None
    is_primary_contact: Optional[bool] = None
    can_manage_items: Optional[bool] = None
    can_manage_claims: Optional[bool] = None
    can_manage_members: Optional[bool] = None
    can_view_analytics: Optional[bool] = None

    @field_validator(
        "full_name",
        "position_title",
        "role",
        "email",
        "phone",
        "is_primary_contact",
        "can_manage_items",
        "can_manage_claims",
        "can_manage_members",
        "can_view_analytics",
    )
    @classmethod
    def reject_null(cls, value):
        return not_null(value)


def hash_otp(otp: str) -> str:
    return hashlib.sha256(otp.encode("utf-8")).hexdigest()


def get_verification(session: Session, organization_id: uuid.UUID) -> Optional[OrganizationVerification]:
    return session.exec(
        select(OrganizationVerification)
        .where(OrganizationVerification.organization_id == organization_id)
    ).first()


def serialize_contacts(session: Session, contacts: list) -> list:
    contacts_response = []

    for contact in contacts:
        data = contact.model_dump()
        profile = session.get(Profile, contact.user_id)
        data["user"] = {
            "id": profile.id,
            "name": profile.name,
            "email": profile.email,
            "avatar_url": profile.avatar_url,
        } if profile else None
        contacts_response.append(data)

    return contacts_response


def active_contacts(session: Session, organization_id: uuid.UUID) -> list:
    return session.exec(
        select(OrganizationContact)
        .where(OrganizationContact.organization_id == organization_id)
        .where(OrganizationContact.is_active == True)  # noqa: E712
        .order_by(OrganizationContact.is_primary_contact.desc(), OrganizationContact.created_at)
    ).all()


def clear_primary_contact(session: Session, organization_id: uuid.UUID, keep_id: Optional[uuid.UUID] = None):
    primaries = session.exec(
        select(OrganizationContact)
        .where(OrganizationContact.organization_id == organization_id)
        .where(OrganizationContact.is_primary_contact == True)  # noqa: E712
    ).all()

    for contact in primaries:
        if contact.id != keep_id:
            contact.is_primary_contact = False
            session.add(contact)


def get_contract(session: Session, organization_id: uuid.UUID) -> Optional[OrganizationContract]:
    return session.exec(
        select(OrganizationContract)
        .where(OrganizationContract.organization_id == organization_id)
    ).first()


# Verification details

@router.get("/{organization_id}/verification")
async def get_verification_details(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_action(session, user.id, organization_id, "view")

    verification = get_verification(session, organization_id)

    audit_trail = session.exec(
        select(VerificationAudit)
        .where(VerificationAudit.organization_id == organization_id)
        .order_by(VerificationAudit.created_at.desc())
        .limit(20)
    ).all()

    return {
        "verification": verification.public_dict() if verification else None,
        "contacts": serialize_contacts(session, active_contacts(session, organization_id)),
        "audit_trail": audit_trail,
        "contract": get_contract(session, organization_id),
    }


@router.post("/{organization_id}/verification")
async def save_verification_details(
    organization_id: uuid.UUID,
    payload: VerificationDetailsRequest,
    request: Request,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_action(session, user.id, organization_id, "edit_verification")

    official_email = require_email(payload.official_email)
    email_validation = validate_org_email(session, official_email)

    if not email_validation["valid"]:
        return JSONResponse(
            status_code=400,
            content={"error": email_validation["message"], "email_validation": email_validation},
        )

    verification = get_verification(session, organization_id)

    if verification and verification.verification_status == "approved":
        raise HTTPException(
            status_code=400,
            detail="Cannot modify approved verification. Contact support for changes.",
        )

    details = payload.model_dump()
    details["official_email"] = official_email

    if verification:
        action = "updated"

        # a new address has to be verified again
        if verification.official_email != official_email:
            verification.email_verification_status = "pending"
            verification.email_verification_token = None
            verification.email_verification_token_expires = None
            verification.email_verified_at = None

        for field, value in details.items():
            setattr(verification, field, value)
        verification.updated_at = datetime.now(timezone.utc)
    else:
        action = "created"
        verification = OrganizationVerification(organization_id=organization_id, **details)

    verification.email_domain = extract_email_domain(official_email)
    verification.is_generic_email = email_validation["is_blocked"]

    session.add(verification)

    log_verification_audit(
        session,
        request,
        organization_id,
        action,
        user.id,
        details={"updated_fields": sorted(details)},
    )

    session.commit()
    session.refresh(verification)

    return {
        "verification": verification.public_dict(),
        "email_validation": email_validation,
    }


@router.put("/{organization_id}/verification")
async def submit_verification(
    organization_id: uuid.UUID,
    request: Request,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    org = get_organization_or_404(session, organization_id)
    require_org_action(session, user.id, organization_id, "submit_verification")

    verification = get_verification(session, organization_id)
    if not verification:
        raise HTTPException(status_code=400, detail="Please complete verification details before submitting")

    if verification.verification_status not in ("draft", "rejected"):
        raise HTTPException(
            status_code=400,
            detail=f"Verification is already {verification.verification_status}",
        )

    if not verification.registration_certificate_url:
        raise HTTPException(status_code=400, detail="Registration certificate is required")

    primary_contact = session.exec(
        select(OrganizationContact)
        .where(OrganizationContact.organization_id == organization_id)
        .where(OrganizationContact.is_primary_contact == True)  # noqa: E712
        .where(OrganizationContact.is_active == True)  # noqa: E712
    ).first()

    if not primary_contact:
        raise HTTPException(status_code=400, detail="Please add a primary contact person")

    previous_status = verification.verification_status
    now = datetime.now(timezone.utc)

    verification.verification_status = "submitted"
    verification.submitted_at = now
    verification.updated_at = now

    org.verification_status = "submitted"
    org.verification_submitted_at = now
    org.updated_at = now

    session.add(verification)
    session.add(org)

    log_verification_audit(
        session,
        request,
        organization_id,
        "submitted",
        user.id,
        previous_status=previous_status,
        new_status="submitted",
    )

    session.commit()
    session.refresh(verification)

    return {
        "message": "Verification submitted successfully",
        "verification": verification.public_dict(),
    }


# Official email ownership

@router.get("/{organization_id}/email-verify")
async def check_email_domain(
    organization_id: uuid.UUID,
    email: Optional[str] = None,
    session: Session = Depends(get_session),
):
    if not email:
        raise HTTPException(status_code=400, detail="Email parameter is required")

    email = require_email(email)

    return {
        "email": email,
        "domain": extract_email_domain(email),
        **validate_org_email(session, email),
    }


@router.post("/{organization_id}/email-verify")
async def send_email_code(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_role(session, user.id, organization_id, MANAGER_ROLES)

    verification = get_verification(session, organization_id)
    if not verification:
        raise HTTPException(status_code=400, detail="Please complete verification details first")

    if verification.is_generic_email and verification.email_verification_status != "manual_override":
        return JSONResponse(
            status_code=400,
            content={
                "error": "Generic email domains require manual override by admin",
                "requires_manual_override": True,
            },
        )

    if verification.email_verification_status in ("verified", "manual_override"):
        return {"message": "Email is already verified", "already_verified": True}

    otp = f"{secrets.randbelow(900000) + 100000}"
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=config.EMAIL_OTP_TTL_MINUTES)

    verification.email_verification_token = hash_otp(otp)
    verification.email_verification_token_expires = expires_at
    verification.email_verification_status = "code_sent"
    verification.updated_at = datetime.now(timezone.utc)

    session.add(verification)
    session.commit()

    # TODO: deliver the code through a transactional mail provider
    logger.info("email verification code issued for organization %s", organization_id)

    response = {
        "message": f"Verification code sent to {verification.official_email}",
        "expires_at": expires_at,
    }

    if config.ENVIRONMENT == "development":
        response["dev_otp"] = otp

    return response


@router.put("/{organization_id}/email-verify")
async def confirm_email_code(
    organization_id: uuid.UUID,
    payload: OtpRequest,
    request: Request,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_role(session, user.id, organization_id, MANAGER_ROLES)

    otp = (payload.otp or "").strip()
    if not OTP_PATTERN.match(otp):
        raise HTTPException(status_code=400, detail="Valid 6-digit OTP is required")

    verification = get_verification(session, organization_id)
    if not verification:
        raise HTTPException(status_code=400, detail="Verification record not found")

    if verification.email_verification_status == "verified":
        return {"message": "Email is already verified", "already_verified": True}

    if verification.email_verification_status != "code_sent" or not verification.email_verification_token:
        raise HTTPException(status_code=400, detail="Please request a verification code first")

    expires = as_utc(verification.email_verification_token_expires)
    if not expires or expires < datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="Verification code has expired. Please request a new one.")

    if not secrets.compare_digest(hash_otp(otp), verification.email_verification_token):
        raise HTTPException(status_code=400, detail="Invalid verification code")

    now = datetime.now(timezone.utc)

    verification.email_verification_status = "verified"
    verification.email_verified_at = now
    verification.email_verification_token = None
    verification.email_verification_token_expires = None
    verification.updated_at = now

    session.add(verification)

    log_verification_audit(
        session,
        request,
        organization_id,
        "updated",
        user.id,
        comments="Official email verified successfully",
        details={"email_verified": True, "email": verification.official_email},
    )

    session.commit()

    return {"message": "Email verified successfully", "verified": True}


# Contacts

@router.get("/{organization_id}/contacts")
async def list_contacts(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_action(session, user.id, organization_id, "view")

    return {"contacts": serialize_contacts(session, active_contacts(session, organization_id))}


@router.post("/{organization_id}/contacts")
async def add_contact(
    organization_id: uuid.UUID,
    payload: ContactCreateRequest,
    request: Request,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_role(session, user.id, organization_id, MANAGER_ROLES)

    if not session.get(Profile, payload.user_id):
        raise HTTPException(status_code=400, detail="User not found")

    details = payload.model_dump()
    details["email"] = require_email(payload.email)

    now = datetime.now(timezone.utc)

    existing = session.exec(
        select(OrganizationContact)
        .where(OrganizationContact.organization_id == organization_id)
        .where(OrganizationContact.user_id == payload.user_id)
    ).first()

    if existing and existing.is_active:
        raise HTTPException(status_code=400, detail="This user is already a contact for this organization")

    if payload.is_primary_contact:
        clear_primary_contact(session, organization_id, keep_id=existing.id if existing else None)

    if existing:
        # Reactivate a former contact
        for field, value in details.items():
            setattr(existing, field, value)
        existing.is_active = True
        existing.deactivated_at = None
        existing.deactivated_by = None
        existing.deactivation_reason = None
        existing.updated_at = now
        contact = existing
        status_code = 200
    else:
        contact = OrganizationContact(organization_id=organization_id, **details)
        status_code = 201

    session.add(contact)

    # Contacts can act for the organization
    membership = session.exec(
        select(OrganizationMember)
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.user_id == payload.user_id)
    ).first()

    if not membership:
        session.add(OrganizationMember(
            organization_id=organization_id,
            user_id=payload.user_id,
            role="member",
            member_role="org_staff",
            invited_by=user.id,
            invited_at=now,
            accepted_at=now,
        ))
    elif not membership.is_active:
        membership.is_active = True
        membership.deactivated_at = None
        membership.deactivated_by = None
        session.add(membership)

    log_verification_audit(
        session,
        request,
        organization_id,
        "contact_added",
        user.id,
        details={
            "contact_user_id": payload.user_id,
            "contact_name": payload.full_name,
            "contact_role": payload.role,
            "is_primary": payload.is_primary_contact,
            "reactivated": status_code == 200,
        },
    )

    session.commit()
    session.refresh(contact)

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"contact": serialize_contacts(session, [contact])[0]}),
    )


@router.patch("/{organization_id}/contacts")
async def update_contact(
    organization_id: uuid.UUID,
    payload: ContactUpdateRequest,
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_role(session, user.id, organization_id, MANAGER_ROLES)

    if not payload.contact_id:
        raise HTTPException(status_code=400, detail="contact_id is required")

    contact = session.get(OrganizationContact, payload.contact_id)
    if not contact or contact.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="Contact not found")

    updates = payload.model_dump(exclude_unset=True, exclude={"contact_id"})

    if "email" in updates:
        updates["email"] = require_email(updates["email"])

    if updates.get("is_primary_contact"):
        clear_primary_contact(session, organization_id, keep_id=contact.id)

    for field, value in updates.items():
        setattr(contact, field, value)

    contact.updated_at = datetime.now(timezone.utc)

    session.add(contact)
    session.commit()
    session.refresh(contact)

    return {"contact": serialize_contacts(session, [contact])[0]}


@router.delete("/{organization_id}/contacts")
async def remove_contact(
    organization_id: uuid.UUID,
    request: Request,
    contact_id: Optional[uuid.UUID] = None,
    reason: str = "Removed by admin",
    session: Session = Depends(get_session),
    user: Profile = Depends(require_user),
):
    get_organization_or_404(session, organization_id)
    require_org_role(session, user.id, organization_id, MANAGER_ROLES)

    if not contact_id:
        raise HTTPException(status_code=400, detail="contact_id is required")

    contact = session.get(OrganizationContact, contact_id)
    if not contact or contact.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="Contact not found")

    contact.is_active = False
    contact.is_primary_contact = False
    contact.deactivated_at = datetime.now(timezone.utc)
    contact.deactivated_by = user.id
    contact.deactivation_reason = reason

    session.add(contact)

    log_verification_audit(
        session,
        request,
        organization_id,
        "contact_removed",
        user.id,
        details={"contact_id": contact.id, "contact_name": contact.full_name, "reason": reason},
    )

    session.commit()

    return {"message": "Contact removed successfully"}

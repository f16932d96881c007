import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session, func, or_, select

from khojpayo.db.db import get_session
from khojpayo.models.contract import OrganizationContract
from khojpayo.models.organization import Organization
from khojpayo.models.user import Profile
from khojpayo.models.verification import (
    OrganizationCallLog,
    OrganizationContact,
    OrganizationVerification,
    VerificationAudit,
)
from khojpayo.routers.org_verification import get_contract, get_verification, serialize_contacts
from khojpayo.utils.activity import notify
from khojpayo.utils.auth_helper import require_admin
from khojpayo.utils.form_validator import as_utc, not_null, require_email
from khojpayo.utils.org_rbac import (
    extract_email_domain,
    get_organization_or_404,
    is_blocked_email_domain,
    log_verification_audit,
)

router = APIRouter()

VERIFICATION_STATUSES = (
    "draft",
    "submitted",
    "under_review",
    "pending_call",
    "pending_documents",
    "approved",
    "rejected",
    "suspended",
)

REVIEWABLE = ("under_review", "pending_call", "pending_documents")

# action -> (allowed current statuses, new status, audit action, error message)
REVIEW_TRANSITIONS = {
    "start_review": (("submitted",), "under_review", "review_started", "Can only start review on submitted verifications"),
    "approve": (REVIEWABLE, "approved", "approved", "Invalid status for approval"),
    "reject": (REVIEWABLE, "rejected", "rejected", "Invalid status for rejection"),
    "request_documents": (("under_review",), "pending_documents", "document_requested", "Invalid status for requesting documents"),
    "schedule_call": (("under_review", "pending_documents"), "pending_call", "call_scheduled", "Invalid status for scheduling call"),
    "suspend": (("approved",), "suspended", "suspended", "Can only suspend approved organizations"),
    "reactivate": (("suspended",), "approved", "reactivated", "Can only reactivate suspended organizations"),
}

COMPLETED_CALL_STATUSES = ("completed_verified", "completed_failed")


# Request / response models
class VerificationStats(BaseModel):
    total_pending: int
    total_under_review: int
    total_pending_call: int
    total_pending_documents: int
    total_approved: int
    total_rejected: int
    total_suspended: int
    avg_approval_time_days: float
    this_week_submissions: int
    this_week_approvals: int


class ReviewActionRequest(BaseModel):
    action: Literal[
        "start_review",
        "approve",
        "reject",
        "request_documents",
        "schedule_call",
        "suspend",
        "reactivate",
    ]
    comments: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_category: Optional[str] = None


class AdminVerificationUpdate(BaseModel):
    override_generic_email: bool = False
    override_reason: Optional[str] = None
    trust_score: Optional[int] = Field(default=None, ge=0, le=100)

    registered_name: Optional[str] = None
    registration_type: Optional[str] = None
    registration_number: Optional[str] = None
    registration_authority: Optional[str] = None
    official_email: Optional[str] = None
    official_phone: Optional[str] = None
    official_website: Optional[str] = None
    registration_certificate_url: Optional[str] = None
    pan_certificate_url: Optional[str] = None
    vat_certificate_url: Optional[str] = None
    letterhead_url: Optional[str] = None

    @field_validator(
        "registered_name",
        "registration_type",
        "registration_number",
        "official_email",
        "official_phone",
    )
    @classmethod
    def reject_null(cls, value):
        return not_null(value)


class CallLogRequest(BaseModel):
    phone_called: str = Field(min_length=1)
    phone_source: Literal["provided", "website", "google_listing", "official_directory", "other"]
    phone_source_url: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    call_status: Literal[
        "not_started",
        "scheduled",
        "in_progress",
        "completed_verified",
        "completed_failed",
        "unreachable",
    ]
    answered_by: Optional[str] = None
    answered_by_position: Optional[str] = None
    verification_questions: list[dict] = []
    call_summary: Optional[str] = None
    verification_result: Optional[bool] = None
    follow_up_required: bool = False
    follow_up_notes: Optional[str] = None
    call_duration_seconds: Optional[int] = Field(default=None, ge=0)


ContractType = Literal["standard", "premium", "enterprise", "government", "ngo", "educational"]
ContractStatus = Literal["none", "draft", "pending_signature", "signed", "active", "expired", "terminated"]


class ContractRequest(BaseModel):
    contract_type: ContractType
    contract_status: ContractStatus = "draft"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_renew: bool = False
    contract_document_url: Optional[str] = None
    signed_document_url: Optional[str] = None
    org_signatory_name: Optional[str] = None
    org_signatory_position: Optional[str] = None
    monthly_item_limit: Optional[int] = Field(default=None, ge=0)
    monthly_claim_limit: Optional[int] = Field(default=None, ge=0)
    storage_limit_mb: Optional[int] = Field(default=None, ge=0)
    api_rate_limit: Optional[int] = Field(default=None, ge=0)
    internal_notes: Optional[str] = None
    special_terms: Optional[str] = None
    bank_name: Optional[str] = None
    bank_branch: Optional[str] = None
    account_holder_name: Optional[str] = None


class Amendment(BaseModel):
    date: date
    description: str = Field(min_length=1)
    document_url: Optional[str] = None


class ContractActionRequest(BaseModel):
    action: Literal["sign", "activate", "terminate", "add_amendment", "verify_bank"]
    signed_document_url: Optional[str] = None
    amendment: Optional[Amendment] = None


def get_verification_or_404(session: Session, organization_id: uuid.UUID) -> OrganizationVerification:
    verification = get_verification(session, organization_id)
    if not verification:
        raise HTTPException(status_code=404, detail="Verification not found")
    return verification


def profile_names(session: Session, ids: set) -> dict:
    if not ids:
        return {}
    return {
        p.id: p.name for p in session.exec(select(Profile).where(Profile.id.in_(ids))).all()
    }


@router.get("")
def list_verifications(
    status: Optional[Literal[VERIFICATION_STATUSES]] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["submitted_at", "created_at", "registered_name", "verification_status"] = "submitted_at",
    sort_order: Literal["asc", "desc"] = "desc",
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    filters = []

    if status:
        filters.append(OrganizationVerification.verification_status == status)

    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            OrganizationVerification.registered_name.ilike(pattern),
            OrganizationVerification.registration_number.ilike(pattern),
        ))

    total = session.exec(
        select(func.count(OrganizationVerification.id)).where(*filters)
    ).one()

    sort_column = getattr(OrganizationVerification, sort_by)
    order = sort_column.asc() if sort_order == "asc" else sort_column.desc()

    rows = session.exec(
        select(OrganizationVerification, Organization)
        .join(Organization, OrganizationVerification.organization_id == Organization.id)
        .where(*filters)
        .order_by(order)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    verifications = []

    for verification, org in rows:
        primary = session.exec(
            select(OrganizationContact)
            .where(OrganizationContact.organization_id == org.id)
            .where(OrganizationContact.is_primary_contact == True)  # noqa: E712
            .where(OrganizationContact.is_active == True)  # noqa: E712
        ).first()

        data = verification.public_dict()
        data["organization"] = {
            "id": org.id,
            "name": org.name,
            "type": org.type,
            "logo_url": org.logo_url,
            "is_active": org.is_active,
        }
        data["primary_contact"] = {
            "full_name": primary.full_name,
            "email": primary.email,
            "phone": primary.phone,
        } if primary else None

        verifications.append(data)

    return {
        "verifications": verifications,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": -(-total // limit),
        },
    }


@router.get("/stats", response_model=VerificationStats)
def get_verification_stats(
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    counts = {status: 0 for status in VERIFICATION_STATUSES}

    for status, count in session.exec(
        select(OrganizationVerification.verification_status, func.count(OrganizationVerification.id))
        .group_by(OrganizationVerification.verification_status)
    ).all():
        counts[status] = count

    week_ago = datetime.now(timezone.utc) - timedelta(days=7)

    this_week_submissions = session.exec(
        select(func.count(OrganizationVerification.id))
        .where(OrganizationVerification.submitted_at >= week_ago)
    ).one()

    this_week_approvals = session.exec(
        select(func.count(VerificationAudit.id))
        .where(VerificationAudit.action == "approved")
        .where(VerificationAudit.created_at >= week_ago)
    ).one()

    # Submission to approval, for organizations approved at least once
    approved_orgs = session.exec(
        select(Organization)
        .where(Organization.verification_submitted_at != None)  # noqa: E711
        .where(Organization.verification_approved_at != None)  # noqa: E711
    ).all()

    durations = [
        (as_utc(org.verification_approved_at) - as_utc(org.verification_submitted_at)).total_seconds() / 86400
        for org in approved_orgs
    ]
    avg_days = round(sum(durations) / len(durations), 1) if durations else 0.0

    return VerificationStats(
        total_pending=counts["submitted"],
        total_under_review=counts["under_review"],
        total_pending_call=counts["pending_call"],
        total_pending_documents=counts["pending_documents"],
        total_approved=counts["approved"],
        total_rejected=counts["rejected"],
        total_suspended=counts["suspended"],
        avg_approval_time_days=avg_days,
        this_week_submissions=this_week_submissions,
        this_week_approvals=this_week_approvals,
    )


@router.get("/{organization_id}")
def get_verification_detail(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    org = get_organization_or_404(session, organization_id)
    verification = get_verification(session, organization_id)

    contacts = session.exec(
        select(OrganizationContact)
        .where(OrganizationContact.organization_id == organization_id)
        .order_by(OrganizationContact.is_primary_contact.desc(), OrganizationContact.created_at)
    ).all()

    call_logs = session.exec(
        select(OrganizationCallLog)
        .where(OrganizationCallLog.organization_id == organization_id)
        .order_by(OrganizationCallLog.called_at.desc())
    ).all()

    audit_trail = session.exec(
        select(VerificationAudit)
        .where(VerificationAudit.organization_id == organization_id)
        .order_by(VerificationAudit.created_at.desc())
    ).all()

    names = profile_names(
        session,
        {c.caller_id for c in call_logs} | {a.performed_by for a in audit_trail},
    )

    return {
        "organization": org,
        "verification": verification.public_dict() if verification else None,
        "contacts": serialize_contacts(session, contacts),
        "call_logs": [c.model_dump() | {"caller_name": names.get(c.caller_id)} for c in call_logs],
        "audit_trail": [a.model_dump() | {"performer_name": names.get(a.performed_by)} for a in audit_trail],
        "contract": get_contract(session, organization_id),
    }


@router.post("/{organization_id}")
def review_verification(
    organization_id: uuid.UUID,
    payload: ReviewActionRequest,
    request: Request,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    org = get_organization_or_404(session, organization_id)
    verification = get_verification_or_404(session, organization_id)

    allowed_from, new_status, audit_action, error = REVIEW_TRANSITIONS[payload.action]
    previous_status = verification.verification_status

    if previous_status not in allowed_from:
        raise HTTPException(status_code=400, detail=error)

    if payload.action == "reject" and not payload.rejection_reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")

    now = datetime.now(timezone.utc)

    verification.verification_status = new_status
    verification.updated_at = now

    # Capabilities follow approval
    org.verification_status = new_status
    org.can_post_items = new_status == "approved"
    org.can_manage_claims = new_status == "approved"
    org.updated_at = now

    if new_status == "approved":
        org.is_verified = True
        org.verification_approved_at = now
        org.verification_approved_by = admin.id

    if new_status == "suspended":
        org.suspended_at = now
        org.suspended_by = admin.id
        org.suspension_reason = payload.rejection_reason or payload.comments

    if payload.action == "reactivate":
        org.suspended_at = None
        org.suspended_by = None
        org.suspension_reason = None

    session.add(verification)
    session.add(org)

    log_verification_audit(
        session,
        request,
        organization_id,
        audit_action,
        admin.id,
        previous_status=previous_status,
        new_status=new_status,
        comments=payload.comments,
        rejection_reason=payload.rejection_reason,
        rejection_category=payload.rejection_category,
    )

    reason = f" Reason: {payload.rejection_reason}" if payload.rejection_reason else ""
    notify(
        session,
        org.admin_id,
        f"verification_{new_status}",
        "Organization verification update",
        f"The verification of '{org.name}' is now {new_status.replace('_', ' ')}.{reason}",
        {"organization_id": org.id, "previous_status": previous_status, "new_status": new_status},
    )

    session.commit()

    return {
        "message": f"Verification {audit_action} successfully",
        "previous_status": previous_status,
        "new_status": new_status,
    }


@router.put("/{organization_id}")
def override_verification(
    organization_id: uuid.UUID,
    payload: AdminVerificationUpdate,
    request: Request,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    org = get_organization_or_404(session, organization_id)
    verification = get_verification_or_404(session, organization_id)

    updates = payload.model_dump(
        exclude_unset=True,
        exclude={"override_generic_email", "override_reason", "trust_score"},
    )

    now = datetime.now(timezone.utc)

    if "official_email" in updates:
        official_email = require_email(updates["official_email"])
        updates["official_email"] = official_email

        # a new address has to be verified again
        if official_email != verification.official_email:
            updates.update(
                email_domain=extract_email_domain(official_email),
                is_generic_email=is_blocked_email_domain(session, official_email),
                email_verification_status="pending",
                email_verification_token=None,
                email_verification_token_expires=None,
                email_verified_at=None,
            )

    if payload.override_generic_email:
        if not payload.override_reason:
            raise HTTPException(status_code=400, detail="Override reason is required")

        updates.update(
            email_verification_status="manual_override",
            generic_email_override_by=admin.id,
            generic_email_override_reason=payload.override_reason,
            email_verified_at=now,
        )

    for field, value in updates.items():
        setattr(verification, field, value)

    verification.updated_at = now
    session.add(verification)

    if payload.trust_score is not None:
        org.trust_score = payload.trust_score
        org.updated_at = now
        session.add(org)

    log_verification_audit(
        session,
        request,
        organization_id,
        "manual_override" if payload.override_generic_email else "updated",
        admin.id,
        comments=f"Email override: {payload.override_reason}" if payload.override_generic_email else "Admin update",
        details={"updated_fields": sorted(updates), "trust_score": payload.trust_score},
    )

    session.commit()
    session.refresh(verification)

    return {"verification": verification.public_dict()}


# Phone verification calls

@router.get("/{organization_id}/calls")
def list_calls(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    get_organization_or_404(session, organization_id)

    call_logs = session.exec(
        select(OrganizationCallLog)
        .where(OrganizationCallLog.organization_id == organization_id)
        .order_by(OrganizationCallLog.called_at.desc())
    ).all()

    names = profile_names(session, {c.caller_id for c in call_logs})

    return {
        "call_logs": [c.model_dump() | {"caller_name": names.get(c.caller_id)} for c in call_logs]
    }


@router.post("/{organization_id}/calls", status_code=201)
def log_call(
    organization_id: uuid.UUID,
    payload: CallLogRequest,
    request: Request,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    org = get_organization_or_404(session, organization_id)

    call_log = OrganizationCallLog(
        organization_id=organization_id,
        caller_id=admin.id,
        **payload.model_dump(),
    )
    session.add(call_log)

    # A finished call hands the verification back to the reviewer
    if payload.call_status in COMPLETED_CALL_STATUSES:
        verification = get_verification(session, organization_id)

        if verification and verification.verification_status == "pending_call":
            verification.verification_status = "under_review"
            verification.updated_at = datetime.now(timezone.utc)
            org.verification_status = "under_review"
            session.add(verification)
            session.add(org)

    log_verification_audit(
        session,
        request,
        organization_id,
        "call_completed",
        admin.id,
        comments=payload.call_summary,
        details={
            "phone_called": payload.phone_called,
            "phone_source": payload.phone_source,
            "call_status": payload.call_status,
            "verification_result": payload.verification_result,
            "answered_by": payload.answered_by,
        },
    )

    session.commit()
    session.refresh(call_log)

    return {"call_log": call_log}


# Contracts

@router.get("/{organization_id}/contract")
def read_contract(
    organization_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    get_organization_or_404(session, organization_id)

    return {"contract": get_contract(session, organization_id)}


@router.post("/{organization_id}/contract")
def save_contract(
    organization_id: uuid.UUID,
    payload: ContractRequest,
    request: Request,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    get_organization_or_404(session, organization_id)

    contract = get_contract(session, organization_id)

    if contract:
        for field, value in payload.model_dump().items():
            setattr(contract, field, value)
        contract.updated_at = datetime.now(timezone.utc)
        action = "updated"
        status_code = 200
    else:
        contract = OrganizationContract(organization_id=organization_id, **payload.model_dump())
        action = "contract_uploaded"
        status_code = 201

    session.add(contract)

    log_verification_audit(
        session,
        request,
        organization_id,
        action,
        admin.id,
        details={"contract_type": payload.contract_type, "contract_status": payload.contract_status},
    )

    session.commit()
    session.refresh(contract)

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"contract": contract}),
    )


@router.put("/{organization_id}/contract")
def update_contract(
    organization_id: uuid.UUID,
    payload: ContractActionRequest,
    request: Request,
    session: Session = Depends(get_session),
    admin: Profile = Depends(require_admin),
):
    get_organization_or_404(session, organization_id)

    contract = get_contract(session, organization_id)
    if not contract:
        raise HTTPException(status_code=404, detail="Contract not found")

    now = datetime.now(timezone.utc)
    audit_action = "updated"

    if payload.action == "sign":
        if contract.contract_status != "pending_signature":
            raise HTTPException(status_code=400, detail="Contract must be in pending_signature status")

        contract.contract_status = "signed"
        contract.platform_signatory_id = admin.id
        contract.platform_signed_at = now
        if payload.signed_document_url:
            contract.signed_document_url = payload.signed_document_url
        audit_action = "contract_signed"

    elif payload.action == "activate":
        if contract.contract_status != "signed":
            raise HTTPException(status_code=400, detail="Contract must be signed before activation")

        contract.contract_status = "active"
        contract.start_date = contract.start_date or now.date()

    elif payload.action == "terminate":
        contract.contract_status = "terminated"
        contract.end_date = now.date()

    elif payload.action == "add_amendment":
        if not payload.amendment:
            raise HTTPException(status_code=400, detail="Amendment details required")

        # reassign so the JSON column is flagged dirty
        contract.amendments = [*(contract.amendments or []), jsonable_encoder(payload.amendment)]

    else:
        contract.bank_verified = True
        contract.bank_verified_at = now
        contract.bank_verified_by = admin.id

    contract.updated_at = now
    session.add(contract)

    log_verification_audit(
        session,
        request,
        organization_id,
        audit_action,
        admin.id,
        comments=f"Contract action: {payload.action}",
        details={"action": payload.action, "contract_status": contract.contract_status},
    )

    session.commit()
    session.refresh(contract)

    return {"contract": contract}

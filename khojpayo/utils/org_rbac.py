"""
Organization role based access control.

Membership roles map to a fixed set of actions. Actions that touch items or
claims additionally need the organization to be active, approved and
granted the matching capability by an admin.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import HTTPException, Request
from sqlmodel import Session, select

from khojpayo.models.organization import Organization, OrganizationMember
from khojpayo.models.verification import ApprovedOrgDomain, BlockedEmailDomain, VerificationAudit
from khojpayo.utils.activity import jsonable

logger = logging.getLogger(__name__)


ROLE_PERMISSIONS = {
    "org_owner": {
        "view", "edit_verification", "submit_verification", "post_item",
        "manage_claim", "manage_members", "manage_settings", "transfer_ownership",
        "view_analytics", "view_contracts", "manage_contracts",
    },
    "org_admin": {
        "view", "edit_verification", "submit_verification", "post_item",
        "manage_claim", "manage_members", "manage_settings",
        "view_analytics", "view_contracts",
    },
    "org_staff": {"view", "post_item", "manage_claim", "view_analytics"},
    "org_viewer": {"view", "view_analytics"},
}

MEMBER_ROLES = tuple(ROLE_PERMISSIONS)
MANAGER_ROLES = ("org_owner", "org_admin")

# Only allowed once the organization has been approved
REQUIRES_APPROVAL = {"post_item", "manage_claim"}


@dataclass
class PermissionCheckResult:
    allowed: bool
    reason: Optional[str] = None
    org_status: Optional[str] = None
    user_role: Optional[str] = None


def get_membership(session: Session, user_id: uuid.UUID, organization_id: uuid.UUID) -> Optional[OrganizationMember]:
    return session.exec(
        select(OrganizationMember)
        .where(OrganizationMember.user_id == user_id)
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.is_active == True)  # noqa: E712
    ).first()


def get_user_org_role(session: Session, user_id: uuid.UUID, organization_id: uuid.UUID) -> Optional[str]:
    membership = get_membership(session, user_id, organization_id)
    return membership.member_role if membership else None


def can_user_perform_action(
    session: Session,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    action: str,
) -> PermissionCheckResult:
    role = get_user_org_role(session, user_id, organization_id)

    if not role:
        return PermissionCheckResult(False, "User is not a member of this organization")

    if action not in ROLE_PERMISSIONS.get(role, set()):
        return PermissionCheckResult(
            False,
            f"Your role ({role}) does not have permission for this action",
            user_role=role,
        )

    org = session.get(Organization, organization_id)
    if not org:
        return PermissionCheckResult(False, "Organization not found")

    if not org.is_active:
        return PermissionCheckResult(False, "Organization is not active", org.verification_status, role)

    if action in REQUIRES_APPROVAL:
        if org.verification_status != "approved":
            return PermissionCheckResult(
                False,
                "Organization must be verified and approved to perform this action",
                org.verification_status,
                role,
            )

        if action == "post_item" and not org.can_post_items:
            return PermissionCheckResult(
                False, "Organization is not authorized to post items", org.verification_status, role
            )

        if action == "manage_claim" and not org.can_manage_claims:
            return PermissionCheckResult(
                False, "Organization is not authorized to manage claims", org.verification_status, role
            )

    return PermissionCheckResult(True, org_status=org.verification_status, user_role=role)


def require_org_action(session: Session, user_id: uuid.UUID, organization_id: uuid.UUID, action: str) -> PermissionCheckResult:
    result = can_user_perform_action(session, user_id, organization_id, action)

    if not result.allowed:
        raise HTTPException(status_code=403, detail=result.reason)

    return result


def require_org_role(
    session: Session,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    roles: Iterable[str] = MANAGER_ROLES,
) -> OrganizationMember:
    membership = get_membership(session, user_id, organization_id)

    if not membership:
        raise HTTPException(status_code=403, detail="You are not a member of this organization")

    roles = tuple(roles)
    if membership.member_role not in roles:
        raise HTTPException(
            status_code=403,
            detail=f"This action requires one of these roles: {', '.join(roles)}",
        )

    return membership


def get_organization_or_404(session: Session, organization_id: uuid.UUID) -> Organization:
    org = session.get(Organization, organization_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


# Email domains

def extract_email_domain(email: str) -> str:
    _, _, domain = (email or "").partition("@")
    return domain.strip().lower()


def is_blocked_email_domain(session: Session, email: str) -> bool:
    domain = extract_email_domain(email)

    blocked = session.exec(
        select(BlockedEmailDomain).where(BlockedEmailDomain.domain == domain)
    ).first()

    return blocked is not None


def check_approved_domain(session: Session, email: str) -> tuple[bool, int]:
    domain = extract_email_domain(email)

    exact = session.exec(
        select(ApprovedOrgDomain).where(ApprovedOrgDomain.domain == domain)
    ).first()

    if exact:
        return True, exact.trust_level

    # sub.gov.np is covered by gov.np
    for approved in session.exec(select(ApprovedOrgDomain)).all():
        if domain.endswith("." + approved.domain):
            return True, approved.trust_level

    return False, 0


def validate_org_email(session: Session, email: str) -> dict:
    if is_blocked_email_domain(session, email):
        return {
            "valid": False,
            "is_blocked": True,
            "is_approved": False,
            "trust_level": 0,
            "requires_manual_override": True,
            "message": (
                "Generic email providers (Gmail, Yahoo, etc.) are not allowed. "
                "Please use your official organization email. "
                "Contact support if you need a manual override."
            ),
        }

    is_approved, trust_level = check_approved_domain(session, email)

    if is_approved:
        return {
            "valid": True,
            "is_blocked": False,
            "is_approved": True,
            "trust_level": trust_level,
            "requires_manual_override": False,
            "message": "Email domain is pre-approved as an official organization domain.",
        }

    return {
        "valid": True,
        "is_blocked": False,
        "is_approved": False,
        "trust_level": 1,
        "requires_manual_override": False,
        "message": "Email domain accepted. Email verification will be required.",
    }


# Audit trail

def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip")


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


def log_verification_audit(
    session: Session,
    request: Request,
    organization_id: uuid.UUID,
    action: str,
    performed_by: uuid.UUID,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
    comments: Optional[str] = None,
    details: Optional[dict] = None,
    rejection_reason: Optional[str] = None,
    rejection_category: Optional[str] = None,
) -> VerificationAudit:
    """Stage an audit entry; committed together with the caller's changes."""
    entry = VerificationAudit(
        organization_id=organization_id,
        action=action,
        performed_by=performed_by,
        previous_status=previous_status,
        new_status=new_status,
        comments=comments,
        details=jsonable(details),
        rejection_reason=rejection_reason,
        rejection_category=rejection_category,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    session.add(entry)

    logger.info("organization %s audit %s by %s", organization_id, action, performed_by)
    return entry

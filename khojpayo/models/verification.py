from typing import Optional
import uuid
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel, UniqueConstraint
from datetime import date, datetime, timezone


class OrganizationVerification(SQLModel, table=True):
    __tablename__ = "organization_verification"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", unique=True)

    # Registration
    registered_name: str = Field(index=True)
    registration_type: str  # company_registrar, pan, vat, police_unit, government_office, ...
    registration_number: str = Field(index=True)
    registration_date: Optional[date] = None
    registration_authority: Optional[str] = None

    # Address
    province: str
    district: str
    municipality: str
    ward_number: Optional[int] = None
    street_address: Optional[str] = None
    postal_code: Optional[str] = None

    # Official contact
    official_email: str
    official_phone: str
    official_phone_alt: Optional[str] = None
    official_website: Optional[str] = None

    # Email domain verification
    email_domain: Optional[str] = None
    email_verification_status: str = Field(default="pending")  # pending, code_sent, verified, failed, manual_override
    email_verification_token: Optional[str] = None  # sha256 of the code
    email_verification_token_expires: Optional[datetime] = None
    email_verified_at: Optional[datetime] = None
    is_generic_email: bool = Field(default=False)
    generic_email_override_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    generic_email_override_reason: Optional[str] = None

    # Documents
    registration_certificate_url: Optional[str] = None
    pan_certificate_url: Optional[str] = None
    vat_certificate_url: Optional[str] = None
    letterhead_url: Optional[str] = None
    other_documents: list = Field(default_factory=list, sa_column=Column(JSON))

    verification_status: str = Field(default="draft", index=True)
    submitted_at: Optional[datetime] = Field(default=None, index=True)

    def public_dict(self) -> dict:
        return self.model_dump(exclude={"email_verification_token"})


class OrganizationContact(SQLModel, table=True):
    __tablename__ = "organization_contacts"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)

    full_name: str
    position_title: str
    role: str  # owner, director, manager, it_admin, operations, hr, other
    department: Optional[str] = None

    email: str
    phone: str
    phone_alt: Optional[str] = None

    is_primary_contact: bool = Field(default=False)
    is_verified: bool = Field(default=False)
    verified_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None

    can_manage_items: bool = Field(default=True)
    can_manage_claims: bool = Field(default=True)
    can_manage_members: bool = Field(default=False)
    can_view_analytics: bool = Field(default=True)

    is_active: bool = Field(default=True)
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    deactivation_reason: Optional[str] = None

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "user_id",
            name="uq_organization_contact"
        ),
    )


class OrganizationCallLog(SQLModel, table=True):
    __tablename__ = "organization_call_logs"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", index=True)
    caller_id: uuid.UUID = Field(foreign_key="profiles.id")

    phone_called: str
    phone_source: str  # provided, website, google_listing, official_directory, other
    phone_source_url: Optional[str] = None

    scheduled_at: Optional[datetime] = None
    called_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    call_duration_seconds: Optional[int] = None

    # not_started, scheduled, in_progress, completed_verified, completed_failed, unreachable
    call_status: str
    answered_by: Optional[str] = None
    answered_by_position: Optional[str] = None

    # [{question, answer, verified}]
    verification_questions: list = Field(default_factory=list, sa_column=Column(JSON))
    call_summary: Optional[str] = None
    verification_result: Optional[bool] = None
    follow_up_required: bool = Field(default=False)
    follow_up_notes: Optional[str] = None


class VerificationAudit(SQLModel, table=True):
    __tablename__ = "organization_verification_audit"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", index=True)

    action: str = Field(index=True)  # created, submitted, review_started, approved, rejected, contact_added, ...
    previous_status: Optional[str] = None
    new_status: Optional[str] = None

    performed_by: uuid.UUID = Field(foreign_key="profiles.id")
    comments: Optional[str] = None
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    rejection_reason: Optional[str] = None
    rejection_category: Optional[str] = None

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class BlockedEmailDomain(SQLModel, table=True):
    __tablename__ = "blocked_email_domains"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    domain: str = Field(index=True, unique=True)
    reason: Optional[str] = None


class ApprovedOrgDomain(SQLModel, table=True):
    __tablename__ = "approved_org_domains"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    domain: str = Field(index=True, unique=True)
    organization_type: Optional[str] = None
    trust_level: int = Field(default=1)
    notes: Optional[str] = None

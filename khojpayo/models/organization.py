from typing import Optional
import uuid
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel, UniqueConstraint
from datetime import datetime, timezone


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    name: str = Field(index=True)
    type: str = Field(index=True)  # police, airport, hotel, university, hospital, bank, ...
    description: Optional[str] = None
    logo_url: Optional[str] = None

    contact_email: str
    contact_phone: str
    location: dict = Field(default_factory=dict, sa_column=Column(JSON))
    address: str

    # Owning user
    admin_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)

    is_verified: bool = Field(default=False)
    is_active: bool = Field(default=True)

    # Mirrors OrganizationVerification.verification_status
    verification_status: str = Field(default="draft", index=True)
    can_post_items: bool = Field(default=False)
    can_manage_claims: bool = Field(default=False)

    verification_submitted_at: Optional[datetime] = None
    verification_approved_at: Optional[datetime] = None
    verification_approved_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")

    suspended_at: Optional[datetime] = None
    suspended_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    suspension_reason: Optional[str] = None

    trust_score: Optional[int] = None


class OrganizationMember(SQLModel, table=True):
    __tablename__ = "organization_members"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)

    role: str = Field(default="member")  # admin, member
    member_role: str = Field(default="org_staff")  # org_owner, org_admin, org_staff, org_viewer
    permissions: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    invited_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    invited_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None

    is_active: bool = Field(default=True)
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "user_id",
            name="uq_organization_member"
        ),
    )

from typing import Optional
import uuid
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import date, datetime, timezone


class OrganizationContract(SQLModel, table=True):
    __tablename__ = "organization_contracts"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", unique=True)

    contract_type: str  # standard, premium, enterprise, government, ngo, educational
    contract_status: str = Field(default="draft")  # none, draft, pending_signature, signed, active, expired, terminated

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_renew: bool = Field(default=False)

    contract_document_url: Optional[str] = None
    signed_document_url: Optional[str] = None
    # [{date, description, document_url}]
    amendments: list = Field(default_factory=list, sa_column=Column(JSON))

    # Signatories
    org_signatory_name: Optional[str] = None
    org_signatory_position: Optional[str] = None
    org_signed_at: Optional[datetime] = None
    platform_signatory_id: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    platform_signed_at: Optional[datetime] = None

    # Banking
    bank_name: Optional[str] = None
    bank_branch: Optional[str] = None
    account_holder_name: Optional[str] = None
    bank_verified: bool = Field(default=False)
    bank_verified_at: Optional[datetime] = None
    bank_verified_by: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")

    # Limits
    monthly_item_limit: Optional[int] = None
    monthly_claim_limit: Optional[int] = None
    storage_limit_mb: Optional[int] = None
    api_rate_limit: Optional[int] = None

    internal_notes: Optional[str] = None
    special_terms: Optional[str] = None

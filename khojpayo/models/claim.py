from typing import Optional
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class Claim(SQLModel, table=True):
    __tablename__ = "claims"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)
    claimant_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)  # for sending notifications

    status: str = Field(default="pending", index=True)  # pending, verified, rejected, withdrawn, completed

    # Content
    secret_info: str
    proof_description: Optional[str] = None

    # Review
    reviewer_id: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id")
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class ClaimEvidence(SQLModel, table=True):
    __tablename__ = "claim_evidence"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    claim_id: uuid.UUID = Field(foreign_key="claims.id", index=True, ondelete="CASCADE")

    type: str  # image, document
    url: str
    description: Optional[str] = None

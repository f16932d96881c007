from typing import Optional
import uuid
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    # Ownership
    user_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)

    # Notification fields
    type: str = Field(index=True) # new_claim, claim_verified, claim_rejected, new_message, handover_*, verification_*

    title: str
    body: str

    data: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    is_read: bool = Field(default=False)
    read_at: Optional[datetime] = None

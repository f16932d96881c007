from typing import Optional
import secrets
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


def generate_handover_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


class Handover(SQLModel, table=True):
    __tablename__ = "handovers"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    claim_id: uuid.UUID = Field(foreign_key="claims.id", unique=True)

    method: str = Field(default="meetup")  # meetup, pickup, delivery
    status: str = Field(default="pending", index=True)  # pending, scheduled, completed, cancelled

    # Meetup / pickup
    meetup_location: Optional[str] = None
    meetup_time: Optional[datetime] = None

    # Delivery
    delivery_address: Optional[str] = None
    delivery_courier: Optional[str] = None
    delivery_tracking: Optional[str] = None
    delivery_cost: Optional[float] = None
    payer: Optional[str] = None  # finder, owner, split

    notes: Optional[str] = None

    # Finder shows the code, owner enters it on receipt
    handover_code: str = Field(default_factory=generate_handover_code)
    finder_confirmed: bool = Field(default=False)
    owner_confirmed: bool = Field(default=False)
    code_attempts: int = Field(default=0)
    completed_at: Optional[datetime] = None

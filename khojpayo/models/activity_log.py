from typing import Optional
import uuid
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_logs"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="profiles.id", index=True)

    action: str  # create, update, delete
    entity_type: str = Field(index=True)  # item, organization, organization_member
    entity_id: uuid.UUID

    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))

from typing import Optional
import uuid
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel
from datetime import date, datetime, timezone


class Item(SQLModel, table=True):
    __tablename__ = "items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Reporter info
    user_id: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    organization_id: Optional[uuid.UUID] = Field(default=None, foreign_key="organizations.id", index=True)

    # Item fields
    type: str = Field(index=True)  # "lost" or "found"
    title: str
    description: str
    category: str = Field(index=True)

    # {province, district, municipality, ward, landmark}
    location: dict = Field(default_factory=dict, sa_column=Column(JSON))
    province: Optional[str] = Field(default=None, index=True)
    district: Optional[str] = Field(default=None, index=True)

    date_lost_found: date
    time_lost_found: Optional[str] = None
    reward_amount: Optional[float] = None

    # Contact
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    show_contact: bool = Field(default=True)

    status: str = Field(default="active", index=True)  # active, claimed, resolved, expired, deleted

    # Organization held items
    storage_location: Optional[str] = None
    retention_date: Optional[date] = None

    is_verified_listing: bool = Field(default=False)
    view_count: int = Field(default=0)

    def set_location(self, location: dict):
        self.location = dict(location)
        self.province = location.get("province")
        self.district = location.get("district")


class ItemMedia(SQLModel, table=True):
    __tablename__ = "item_media"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    item_id: uuid.UUID = Field(foreign_key="items.id", index=True, ondelete="CASCADE")

    url: str  # storage key for uploads, absolute url otherwise
    thumbnail_url: Optional[str] = None
    is_primary: bool = Field(default=False)
    order: int = Field(default=0)

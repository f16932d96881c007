from datetime import date, datetime, timezone
from typing import Literal, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field, ValidationError, field_validator

ItemCategory = Literal[
    "electronics",
    "documents",
    "keys-wallets",
    "bags",
    "clothing",
    "jewelry",
    "pets",
    "vehicles",
    "others",
]


class Location(BaseModel):
    province: str = Field(min_length=1)
    district: str = Field(min_length=1)
    municipality: Optional[str] = None
    ward: Optional[int] = Field(default=None, ge=1)
    landmark: Optional[str] = None


class MediaIn(BaseModel):
    url: str
    thumbnail_url: Optional[str] = None


class ValidatedCreateItem(BaseModel):
    type: Literal["lost", "found"]
    title: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=2000)
    category: ItemCategory
    location: Location
    date_lost_found: date
    time_lost_found: Optional[str] = None
    reward_amount: Optional[float] = Field(default=None, ge=0)
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    show_contact: bool = True
    organization_id: Optional[str] = None
    storage_location: Optional[str] = None
    retention_date: Optional[date] = None
    media: list[MediaIn] = []

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()


class ValidatedUpdateItem(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    category: Optional[ItemCategory] = None
    location: Optional[Location] = None
    date_lost_found: Optional[date] = None
    time_lost_found: Optional[str] = None
    reward_amount: Optional[float] = Field(default=None, ge=0)
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    show_contact: Optional[bool] = None
    status: Optional[Literal["active", "resolved", "expired"]] = None
    storage_location: Optional[str] = None
    retention_date: Optional[date] = None

    @field_validator("title", "description", "category", "date_lost_found", "show_contact", "status")
    @classmethod
    def reject_null(cls, value):
        return not_null(value)


ITEM_UPDATE_FIELDS = set(ValidatedUpdateItem.model_fields)


def validate_update_item(updates: dict) -> ValidatedUpdateItem:
    for field in updates:
        if field not in ITEM_UPDATE_FIELDS:
            raise HTTPException(
                status_code=400,
                detail=f"Field '{field}' cannot be updated",
            )

    try:
        return ValidatedUpdateItem.model_validate(updates)
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail=format_validation_errors(e.errors()),
        )


def not_null(value):
    # explicit nulls on required columns
    if value is None:
        raise ValueError("cannot be null")
    return value


def format_validation_errors(errors) -> str:
    messages = []
    for error in errors:
        loc = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{loc}: {error.get('msg')}" if loc else error.get("msg", "Invalid input"))
    return "; ".join(messages) or "Invalid input"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def require_email(value: str) -> str:
    value = (value or "").strip().lower()
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        raise HTTPException(status_code=400, detail="Invalid email address")
    return value


OrganizationType = Literal[
    "police",
    "traffic_police",
    "airport",
    "bus_park",
    "hotel",
    "mall",
    "university",
    "college",
    "school",
    "hospital",
    "bank",
    "other",
]

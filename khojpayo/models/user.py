from typing import Optional
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


# Never sent back to clients
PRIVATE_FIELDS = {"password_hash", "google_id"}


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    email: str = Field(index=True, unique=True)
    name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None

    role: str = Field(default="individual")  # individual, organization, admin
    preferred_language: str = Field(default="en")  # en, ne
    is_verified: bool = Field(default=False)

    # Credentials
    password_hash: Optional[str] = None
    google_id: Optional[str] = Field(default=None, index=True)

    def public_dict(self) -> dict:
        return self.model_dump(exclude=PRIVATE_FIELDS)

    def summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "is_verified": self.is_verified,
        }

from typing import Optional
import uuid
from sqlmodel import Field, SQLModel, UniqueConstraint
from datetime import datetime, timezone


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_message_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    item_id: uuid.UUID = Field(foreign_key="items.id", index=True)

    # participant_1 started the conversation
    participant_1: uuid.UUID = Field(foreign_key="profiles.id", index=True)
    participant_2: uuid.UUID = Field(foreign_key="profiles.id", index=True)

    __table_args__ = (
        UniqueConstraint(
            "item_id",
            "participant_1",
            "participant_2",
            name="uq_item_participants",
        ),
    )

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.participant_1, self.participant_2)

    def other_participant(self, user_id: uuid.UUID) -> uuid.UUID:
        return self.participant_2 if self.participant_1 == user_id else self.participant_1


class ConversationMessage(SQLModel, table=True):
    __tablename__ = "conversation_messages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    conversation_id: uuid.UUID = Field(foreign_key="conversations.id", index=True, ondelete="CASCADE")
    sender_id: uuid.UUID = Field(foreign_key="profiles.id")

    content: str
    read_at: Optional[datetime] = None

"""Typed records shared by the adapters and processors."""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Output widths of text-embedding-3-small / text-embedding-3-large
SMALL_DIMENSIONS = 1536
LARGE_DIMENSIONS = 3072


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Message(BaseModel):
    """Immutable historical message. `user_id` in the database."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    author_id: str = Field(alias="user_id")
    content: str
    created_at: datetime
    channel_id: Optional[str] = None
    parent_id: Optional[str] = None


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    avatar_url: Optional[str] = None
    email: Optional[str] = None


class EmbeddingRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: str
    author_id: str
    small_vector: List[float]
    large_vector: List[float]
    created_at: Optional[datetime] = None

    def to_payload(self) -> dict:
        """Column layout expected by insert_message_embeddings."""
        return {
            "message_id": self.message_id,
            "user_id": self.author_id,
            "content_embedding": self.large_vector,
            "content_embedding_small": self.small_vector,
        }


class CandidateMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: str
    author_id: Optional[str] = None
    similarity: float


class RankedContextItem(BaseModel):
    """A candidate joined with its message, after boosting."""

    model_config = ConfigDict(frozen=True)

    message: Message
    similarity: float
    raw_similarity: float
    boosted: bool = False

    @property
    def content(self) -> str:
        return self.message.content


class SyncState(BaseModel):
    last_synced_at: datetime = EPOCH


class SyncResult(BaseModel):
    messages_processed: int = 0
    rows_inserted: int = 0
    total_batches: int = 0
    last_batch_size: int = 0
    skipped_ids: List[str] = Field(default_factory=list)
    abandoned_ids: List[str] = Field(default_factory=list)

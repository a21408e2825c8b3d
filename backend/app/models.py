"""Pydantic models for API responses.

Request intents are validated per item by ``mindmate.intents`` inside the
reconciler, so the batch envelope is checked by the route itself.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from mindmate.types import FailureKind, JournalRecord, MoodRecord, MoodState

# =============================================================================
# Envelope Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Error envelope: ``fail`` for client errors, ``error`` for server errors."""
    status: Literal["fail", "error"]
    message: str


# =============================================================================
# Sync Models
# =============================================================================

class SyncErrorItem(BaseModel):
    """One failed intent in a batch."""
    model_config = ConfigDict(populate_by_name=True)

    change_id: str = Field(..., alias="changeId")
    reason: str
    kind: FailureKind


class SyncResult(BaseModel):
    """Per-batch outcome."""
    processed: int
    failed: int
    errors: list[SyncErrorItem] = []


class SyncResponse(BaseModel):
    """Response to a batch sync."""
    status: Literal["success"] = "success"
    data: SyncResult


# =============================================================================
# Record Models
# =============================================================================

class JournalOut(BaseModel):
    """A journal as returned to its owner, content back in client ciphertext."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    encrypted_content: str = Field(..., alias="encryptedContent")
    mood: MoodState | None = None
    intensity: int | None = None
    tags: list[str] = []
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @classmethod
    def from_record(cls, record: JournalRecord, content: str) -> "JournalOut":
        return cls(
            id=record.id,
            encrypted_content=content,
            mood=record.mood,
            intensity=record.intensity,
            tags=record.tags,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class JournalListResponse(BaseModel):
    status: Literal["success"] = "success"
    data: list[JournalOut]


class MoodOut(BaseModel):
    """A mood log entry."""
    mood: MoodState
    intensity: int
    note: str | None = None
    timestamp: datetime

    @classmethod
    def from_record(cls, record: MoodRecord) -> "MoodOut":
        return cls(
            mood=record.mood,
            intensity=record.intensity,
            note=record.note,
            timestamp=record.timestamp,
        )


class MoodHistoryData(BaseModel):
    moods: list[MoodOut]
    start: datetime | None = None
    end: datetime | None = None


class MoodHistoryResponse(BaseModel):
    status: Literal["success"] = "success"
    data: MoodHistoryData

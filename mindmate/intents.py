"""Change intents: the tagged union of queued client mutations.

Wire shape::

    {"id": "...", "type": "CREATE_JOURNAL", "payload": {...}, "timestamp": "..."}

Each ``type`` has exactly one payload model. ``parse_intent`` validates a raw
wire dict into the matching model and raises ``IntentValidationError`` with a
readable message otherwise, so business logic never shape-checks payloads.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import IntentValidationError
from .types import IntentKind, MoodState, parse_timestamp, utc_now

MAX_NOTE_LENGTH = 500

# Fields a client may never set through an update
_PROTECTED_FIELDS = ("userId", "ownerId", "owner_id")


def _normalize_target_id(data: Any) -> Any:
    """Accept the target journal id as ``_id`` or ``id``."""
    if isinstance(data, dict) and "_id" not in data and "id" in data:
        data = dict(data)
        data["_id"] = data.pop("id")
    return data


# =============================================================================
# Payloads
# =============================================================================


class CreateJournalPayload(BaseModel):
    """Payload for CREATE_JOURNAL.

    The client temp id in ``_id`` is carried so the device can match its
    optimistic copy; the server assigns its own id and never stores it.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    client_id: Optional[str] = Field(default=None, alias="_id")
    encrypted_content: str = Field(..., alias="encryptedContent", min_length=1)
    mood: Optional[MoodState] = None
    intensity: Optional[int] = Field(default=None, ge=1, le=10)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, v):
        return [] if v is None else v


class UpdateJournalPayload(BaseModel):
    """Payload for UPDATE_JOURNAL.

    Both the flat shape ``{_id, encryptedContent, ...}`` and the mobile
    shape ``{id, updates: {...}}`` are accepted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    journal_id: str = Field(..., alias="_id", min_length=1)
    encrypted_content: Optional[str] = Field(default=None, alias="encryptedContent", min_length=1)
    mood: Optional[MoodState] = None
    intensity: Optional[int] = Field(default=None, ge=1, le=10)
    tags: Optional[List[str]] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_updates(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        updates = data.pop("updates", None)
        if isinstance(updates, dict):
            for key, value in updates.items():
                if key not in ("_id", "id"):
                    data.setdefault(key, value)
            for key in _PROTECTED_FIELDS:
                if key in updates:
                    raise ValueError(f"{key} cannot be updated")
        for key in _PROTECTED_FIELDS:
            if key in data:
                raise ValueError(f"{key} cannot be updated")
        return _normalize_target_id(data)

    def changes(self) -> Dict[str, Any]:
        """Fields the client actually set, keyed by record attribute name."""
        return self.model_dump(exclude={"journal_id"}, exclude_unset=True, exclude_none=True)


class DeleteJournalPayload(BaseModel):
    """Payload for DELETE_JOURNAL."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    journal_id: str = Field(..., alias="_id", min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _target_id(cls, data):
        return _normalize_target_id(data)


class LogMoodPayload(BaseModel):
    """Payload for LOG_MOOD. The mood's timestamp is the intent's timestamp."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    mood: MoodState
    intensity: int = Field(..., ge=1, le=10)
    note: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)


# =============================================================================
# Intents
# =============================================================================


class _IntentBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    occurred_at: datetime = Field(..., alias="timestamp")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _parse_occurred_at(cls, v):
        return parse_timestamp(v)

    @property
    def kind(self) -> IntentKind:
        return IntentKind(self.type)  # type: ignore[attr-defined]

    def to_wire(self) -> Dict[str, Any]:
        """Serialize back to the wire shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CreateJournalIntent(_IntentBase):
    type: Literal["CREATE_JOURNAL"] = "CREATE_JOURNAL"
    payload: CreateJournalPayload


class UpdateJournalIntent(_IntentBase):
    type: Literal["UPDATE_JOURNAL"] = "UPDATE_JOURNAL"
    payload: UpdateJournalPayload


class DeleteJournalIntent(_IntentBase):
    type: Literal["DELETE_JOURNAL"] = "DELETE_JOURNAL"
    payload: DeleteJournalPayload


class LogMoodIntent(_IntentBase):
    type: Literal["LOG_MOOD"] = "LOG_MOOD"
    payload: LogMoodPayload


ChangeIntent = Annotated[
    Union[CreateJournalIntent, UpdateJournalIntent, DeleteJournalIntent, LogMoodIntent],
    Field(discriminator="type"),
]

INTENT_TYPES = (CreateJournalIntent, UpdateJournalIntent, DeleteJournalIntent, LogMoodIntent)

_intent_adapter: TypeAdapter = TypeAdapter(ChangeIntent)


def format_validation_error(error: ValidationError, tag: Optional[str] = None) -> str:
    """Collapse pydantic errors into ``field: message; field: message``."""
    messages = []
    for err in error.errors():
        loc = list(err.get("loc", ()))
        if loc and tag is not None and loc[0] == tag:
            loc = loc[1:]
        path = ".".join(str(p) for p in loc)
        messages.append(f"{path}: {err['msg']}" if path else err["msg"])
    return "Validation failed: " + "; ".join(messages)


def parse_intent(raw: Any) -> ChangeIntent:
    """Validate a raw wire change into its typed intent.

    Raises:
        IntentValidationError: If the change is malformed for its declared type.
    """
    if isinstance(raw, INTENT_TYPES):
        return raw
    if not isinstance(raw, dict):
        raise IntentValidationError("", "Change must be an object")

    change_id = raw.get("id")
    change_id = "" if change_id is None else str(change_id)

    kind = raw.get("type")
    if not isinstance(kind, str) or kind not in IntentKind.__members__:
        raise IntentValidationError(change_id, f"Unsupported sync operation: {kind}")

    try:
        return _intent_adapter.validate_python(raw)
    except ValidationError as e:
        raise IntentValidationError(change_id, format_validation_error(e, tag=kind)) from e


def new_intent(
    kind: IntentKind,
    payload: Dict[str, Any],
    occurred_at: Optional[datetime] = None,
    change_id: Optional[str] = None,
) -> ChangeIntent:
    """Create a validated intent for a local mutation happening now."""
    return parse_intent(
        {
            "id": change_id or uuid.uuid4().hex,
            "type": IntentKind(kind).value,
            "payload": payload,
            "timestamp": occurred_at or utc_now(),
        }
    )

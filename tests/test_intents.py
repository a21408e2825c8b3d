"""Tests for change intent validation at the sync boundary."""

from datetime import datetime, timezone

import pytest

from mindmate.errors import IntentValidationError
from mindmate.intents import (
    CreateJournalIntent,
    DeleteJournalIntent,
    LogMoodIntent,
    UpdateJournalIntent,
    new_intent,
    parse_intent,
)
from mindmate.types import IntentKind, MoodState, format_timestamp, parse_timestamp


def wire(kind, payload, change_id="c1", timestamp="2024-03-01T12:00:00Z"):
    return {"id": change_id, "type": kind, "payload": payload, "timestamp": timestamp}


class TestParseIntent:
    def test_log_mood(self):
        intent = parse_intent(wire("LOG_MOOD", {"mood": "Anxious", "intensity": 7, "note": " tired "}))
        assert isinstance(intent, LogMoodIntent)
        assert intent.kind == IntentKind.LOG_MOOD
        assert intent.payload.mood == MoodState.ANXIOUS
        assert intent.payload.note == "tired"
        assert intent.occurred_at == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_create_journal(self):
        intent = parse_intent(wire("CREATE_JOURNAL", {
            "_id": "temp_abc",
            "encryptedContent": "U2FsdGVk",
            "mood": "Peaceful",
            "intensity": 3,
            "tags": ["sleep"],
        }))
        assert isinstance(intent, CreateJournalIntent)
        assert intent.payload.encrypted_content == "U2FsdGVk"
        assert intent.payload.client_id == "temp_abc"
        assert intent.payload.tags == ["sleep"]

    def test_create_journal_null_tags(self):
        intent = parse_intent(wire("CREATE_JOURNAL", {"encryptedContent": "x", "tags": None}))
        assert intent.payload.tags == []

    def test_update_journal_flat_shape(self):
        intent = parse_intent(wire("UPDATE_JOURNAL", {"_id": "j1", "encryptedContent": "new"}))
        assert isinstance(intent, UpdateJournalIntent)
        assert intent.payload.journal_id == "j1"
        assert intent.payload.changes() == {"encrypted_content": "new"}

    def test_update_journal_mobile_shape(self):
        intent = parse_intent(wire("UPDATE_JOURNAL", {
            "id": "j1",
            "updates": {"encryptedContent": "new", "mood": "Sad", "intensity": 2},
        }))
        assert intent.payload.journal_id == "j1"
        assert intent.payload.changes() == {
            "encrypted_content": "new",
            "mood": MoodState.SAD,
            "intensity": 2,
        }

    @pytest.mark.parametrize("field", ["userId", "ownerId"])
    def test_update_rejects_owner_change(self, field):
        with pytest.raises(IntentValidationError, match=field):
            parse_intent(wire("UPDATE_JOURNAL", {"id": "j1", "updates": {field: "someone-else"}}))

    def test_delete_journal_accepts_id(self):
        intent = parse_intent(wire("DELETE_JOURNAL", {"id": "j9"}))
        assert isinstance(intent, DeleteJournalIntent)
        assert intent.payload.journal_id == "j9"

    def test_integer_change_id_is_coerced(self):
        intent = parse_intent(wire("DELETE_JOURNAL", {"_id": "j1"}, change_id=42))
        assert intent.id == "42"

    def test_epoch_millis_timestamp(self):
        intent = parse_intent(wire("DELETE_JOURNAL", {"_id": "j1"}, timestamp=1709294400000))
        assert intent.occurred_at == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_already_parsed_intent_passes_through(self):
        intent = parse_intent(wire("DELETE_JOURNAL", {"_id": "j1"}))
        assert parse_intent(intent) is intent


class TestParseIntentFailures:
    def test_unknown_type(self):
        with pytest.raises(IntentValidationError, match="Unsupported sync operation") as exc:
            parse_intent(wire("SHARE_JOURNAL", {}, change_id="c7"))
        assert exc.value.change_id == "c7"

    def test_non_string_type(self):
        with pytest.raises(IntentValidationError, match="Unsupported"):
            parse_intent(wire(["LOG_MOOD"], {}))

    def test_not_an_object(self):
        with pytest.raises(IntentValidationError, match="must be an object"):
            parse_intent("LOG_MOOD")

    def test_missing_payload_field(self):
        with pytest.raises(IntentValidationError, match="intensity") as exc:
            parse_intent(wire("LOG_MOOD", {"mood": "Content"}, change_id="c3"))
        assert exc.value.change_id == "c3"

    @pytest.mark.parametrize("intensity", [0, 11, "high"])
    def test_intensity_out_of_range(self, intensity):
        with pytest.raises(IntentValidationError):
            parse_intent(wire("LOG_MOOD", {"mood": "Content", "intensity": intensity}))

    def test_unknown_mood(self):
        with pytest.raises(IntentValidationError, match="mood"):
            parse_intent(wire("LOG_MOOD", {"mood": "Elated", "intensity": 5}))

    def test_note_too_long(self):
        with pytest.raises(IntentValidationError, match="note"):
            parse_intent(wire("LOG_MOOD", {"mood": "Content", "intensity": 5, "note": "x" * 501}))

    def test_empty_content(self):
        with pytest.raises(IntentValidationError, match="encryptedContent"):
            parse_intent(wire("CREATE_JOURNAL", {"encryptedContent": ""}))

    def test_update_without_target(self):
        with pytest.raises(IntentValidationError):
            parse_intent(wire("UPDATE_JOURNAL", {"encryptedContent": "x"}))

    @pytest.mark.parametrize("timestamp", ["yesterday", "", None, True, 10**20])
    def test_bad_timestamp(self, timestamp):
        with pytest.raises(IntentValidationError):
            parse_intent(wire("DELETE_JOURNAL", {"_id": "j1"}, timestamp=timestamp))

    def test_missing_id(self):
        raw = wire("DELETE_JOURNAL", {"_id": "j1"})
        del raw["id"]
        with pytest.raises(IntentValidationError) as exc:
            parse_intent(raw)
        assert exc.value.change_id == ""


class TestWireShape:
    def test_to_wire_round_trips(self):
        intent = new_intent(
            IntentKind.CREATE_JOURNAL,
            {"_id": "temp_1", "encryptedContent": "abc", "mood": "Content"},
            change_id="c1",
        )
        data = intent.to_wire()
        assert data["id"] == "c1"
        assert data["type"] == "CREATE_JOURNAL"
        assert data["payload"]["_id"] == "temp_1"
        assert data["payload"]["encryptedContent"] == "abc"
        assert parse_intent(data).occurred_at == intent.occurred_at

    def test_new_intent_generates_id_and_time(self):
        intent = new_intent(IntentKind.LOG_MOOD, {"mood": "Sad", "intensity": 4})
        assert len(intent.id) == 32
        assert intent.occurred_at.tzinfo is not None


class TestTimestamps:
    def test_z_suffix(self):
        assert parse_timestamp("2024-03-01T12:00:00Z") == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-03-01T12:00:00").tzinfo is not None

    def test_digit_string_is_epoch_millis(self):
        assert parse_timestamp("1709294400000") == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)

    def test_format_is_fixed_width(self):
        a = format_timestamp(datetime(2024, 3, 1, 12, tzinfo=timezone.utc))
        b = format_timestamp(datetime(2024, 3, 1, 12, 0, 0, 5, tzinfo=timezone.utc))
        assert len(a) == len(b)
        assert a < b

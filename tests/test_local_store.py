"""Tests for the client's durable local store.

Tests:
- Intent log append/dequeue/dead-letter/requeue
- Durability across reopen
- Optimistic local copies and canonical replacement
- Drafts and sync metadata
"""

import pytest

from mindmate.client.local_store import MAX_RETRIES, LocalStore
from mindmate.errors import StorageError


def wire(change_id, kind="LOG_MOOD", timestamp="2024-03-01T12:00:00Z"):
    return {
        "id": change_id,
        "type": kind,
        "payload": {"mood": "Content", "intensity": 5},
        "timestamp": timestamp,
    }


class TestIntentLog:
    def test_append_and_read_in_order(self, local_store):
        local_store.append_intent(wire("c1"))
        local_store.append_intent(wire("c2", kind="CREATE_JOURNAL"))

        pending = local_store.pending_intents()

        assert [q.change_id for q in pending] == ["c1", "c2"]
        assert pending[0].intent == wire("c1")
        assert pending[0].retry_count == 0
        assert pending[0].queued_at is not None
        assert local_store.pending_count() == 2

    def test_duplicate_change_id_is_ignored(self, local_store):
        local_store.append_intent(wire("c1"))
        local_store.append_intent(wire("c1"))
        assert local_store.pending_count() == 1

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "client.db"
        LocalStore(path).append_intent(wire("c1"))

        reopened = LocalStore(path)

        assert [q.change_id for q in reopened.pending_intents()] == ["c1"]

    def test_remove_intents(self, local_store):
        for cid in ("c1", "c2", "c3"):
            local_store.append_intent(wire(cid))

        assert local_store.remove_intents(["c1", "c3"]) == 2
        assert local_store.remove_intents([]) == 0
        assert [q.change_id for q in local_store.pending_intents()] == ["c2"]

    def test_pending_limit(self, local_store):
        for cid in ("c1", "c2", "c3"):
            local_store.append_intent(wire(cid))
        assert len(local_store.pending_intents(limit=2)) == 2

    def test_record_failure_dead_letters_at_max(self, local_store):
        local_store.append_intent(wire("c1"))

        for attempt in range(1, MAX_RETRIES):
            assert local_store.record_failure("c1", "boom") == attempt
            assert local_store.pending_count() == 1

        assert local_store.record_failure("c1", "boom") == MAX_RETRIES
        assert local_store.pending_count() == 0
        dead = local_store.dead_letters()
        assert [q.change_id for q in dead] == ["c1"]
        assert dead[0].last_error == "boom"
        assert dead[0].last_attempt_at is not None

    def test_dead_letter_and_requeue(self, local_store):
        local_store.append_intent(wire("c1"))
        local_store.append_intent(wire("c2"))
        local_store.dead_letter("c1", "Validation failed")
        local_store.dead_letter("c2", "Validation failed")

        assert local_store.requeue_dead_letters(["c2"]) == 1
        assert [q.change_id for q in local_store.pending_intents()] == ["c2"]

        assert local_store.requeue_dead_letters() == 1
        requeued = local_store.pending_intents()
        assert {q.change_id for q in requeued} == {"c1", "c2"}
        assert all(q.retry_count == 0 and q.last_error is None for q in requeued)

    def test_queue_status(self, local_store):
        local_store.append_intent(wire("c1"))
        local_store.append_intent(wire("c2", kind="DELETE_JOURNAL"))
        local_store.append_intent(wire("c3"))
        local_store.dead_letter("c3", "bad")
        local_store.set_meta("last_sync_time", "2024-03-01T12:00:00+00:00")

        status = local_store.queue_status()

        assert status == {
            "pending": 2,
            "dead_letter": 1,
            "by_type": {"LOG_MOOD": 1, "DELETE_JOURNAL": 1},
            "last_sync_time": "2024-03-01T12:00:00+00:00",
        }

    def test_unopenable_path_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file")
        with pytest.raises(StorageError):
            LocalStore(blocker / "client.db")


class TestLocalState:
    def test_put_and_get(self, local_store):
        local_store.put_local("local_journals", "temp_1", {"_id": "temp_1", "encryptedContent": "x"}, False)

        record = local_store.get_local("local_journals", "temp_1")

        assert record["encryptedContent"] == "x"
        assert record["isSynced"] is False

    def test_set_synced_and_delete(self, local_store):
        local_store.put_local("local_moods", "c1", {"_id": "c1", "mood": "Sad"}, False)
        local_store.set_local_synced("local_moods", "c1")

        assert local_store.get_local("local_moods", "c1")["isSynced"] is True
        assert local_store.delete_local("local_moods", "c1") is True
        assert local_store.get_local("local_moods", "c1") is None

    def test_rejects_unknown_table(self, local_store):
        with pytest.raises(ValueError):
            local_store.put_local("journals; DROP TABLE x", "1", {}, False)

    def test_replace_keeps_only_listed_unsynced(self, local_store):
        local_store.put_local("local_journals", "temp_keep", {"_id": "temp_keep"}, False)
        local_store.put_local("local_journals", "temp_drop", {"_id": "temp_drop"}, False)
        local_store.put_local("local_journals", "old", {"_id": "old"}, True)

        count = local_store.replace_local(
            "local_journals",
            [{"_id": "s1", "updatedAt": "2024-03-01T12:00:00Z"}],
            keep_ids=["temp_keep"],
        )

        assert count == 1
        ids = {r["_id"]: r["isSynced"] for r in local_store.list_local("local_journals")}
        assert ids == {"temp_keep": False, "s1": True}

    def test_replace_with_custom_id_key(self, local_store):
        local_store.replace_local(
            "local_moods",
            [{"mood": "Sad", "timestamp": "2024-03-01T12:00:00Z"}],
            id_key="timestamp",
        )
        assert local_store.get_local("local_moods", "2024-03-01T12:00:00Z")["mood"] == "Sad"


class TestDraftsAndMeta:
    def test_draft_round_trip(self, local_store):
        assert local_store.load_draft() == ""
        local_store.save_draft("dear diary")
        assert local_store.load_draft() == "dear diary"
        local_store.clear_draft()
        assert local_store.load_draft() == ""

    def test_drafts_do_not_touch_queue(self, local_store):
        local_store.save_draft("half a thought")
        assert local_store.pending_count() == 0

    def test_meta(self, local_store):
        assert local_store.get_meta("last_sync_time") is None
        local_store.set_meta("last_sync_time", "now")
        assert local_store.get_meta("last_sync_time") == "now"

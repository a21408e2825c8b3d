"""Tests for the capped, timestamp-ordered mood history."""

from datetime import datetime, timedelta, timezone

import pytest

from mindmate.types import MOOD_HISTORY_CAP, MoodHistory, MoodRecord, MoodState

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def entry(minutes, mood=MoodState.CONTENT):
    return MoodRecord(owner_id="usr_owner", mood=mood, intensity=5, timestamp=T0 + timedelta(minutes=minutes))


def test_default_capacity():
    assert MoodHistory().capacity == MOOD_HISTORY_CAP == 500


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        MoodHistory(capacity=0)


def test_append_keeps_timestamp_order():
    history = MoodHistory(capacity=10)
    for minutes in (5, 1, 3):
        history.append(entry(minutes))

    assert [m.timestamp for m in history] == [T0 + timedelta(minutes=m) for m in (1, 3, 5)]


def test_equal_timestamps_keep_insertion_order():
    history = MoodHistory(capacity=10)
    first = entry(1, MoodState.SAD)
    second = entry(1, MoodState.ANGRY)
    history.append(first)
    history.append(second)

    assert history.entries == [first, second]


def test_overflow_trims_oldest():
    history = MoodHistory(capacity=3)
    for minutes in range(3):
        assert history.append(entry(minutes)) == []

    trimmed = history.append(entry(10))

    assert [m.timestamp for m in trimmed] == [T0]
    assert len(history) == 3


def test_out_of_order_oldest_entry_is_the_one_trimmed():
    history = MoodHistory(capacity=2)
    history.append(entry(5))
    history.append(entry(6))
    late = entry(1)

    assert history.append(late) == [late]
    assert late not in history.entries


def test_construction_overflow_is_reported_on_next_append():
    history = MoodHistory(capacity=2, entries=[entry(m) for m in range(4)])
    assert len(history) == 2

    trimmed = history.append(entry(10))

    assert [m.timestamp for m in trimmed] == [T0 + timedelta(minutes=m) for m in (0, 1, 2)]
    assert len(history) == 2


def test_contains_timestamp():
    history = MoodHistory(capacity=5, entries=[entry(1)])
    assert history.contains_timestamp(T0 + timedelta(minutes=1))
    assert not history.contains_timestamp(T0)

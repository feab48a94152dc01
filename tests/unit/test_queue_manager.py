from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from citizen_chat.domain.exceptions import AlreadyQueued
from citizen_chat.domain.models import DEFAULT_QUEUE_KEY, QueueKey
from citizen_chat.engine.queue import QueueManager
from citizen_chat.infra.metrics.handling_time import RollingHandlingTimeStats

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)
HEALTH = QueueKey("health", None)


def test_enqueue_appends_at_tail_even_when_clock_steps_back() -> None:
    queue = QueueManager()
    first, second, third = uuid4(), uuid4(), uuid4()

    queue.enqueue(first, HEALTH, NOW)
    queue.enqueue(second, HEALTH, NOW - timedelta(seconds=5))
    queue.enqueue(third, HEALTH, NOW - timedelta(minutes=1))

    assert [entry.conversation_id for entry in queue.entries(HEALTH)] == [first, second, third]
    assert queue.position(first) == 1
    assert queue.position(third) == 3


def test_restore_orders_by_waiting_since() -> None:
    queue = QueueManager()
    first, second, third = uuid4(), uuid4(), uuid4()

    queue.restore(
        [
            (second, HEALTH, NOW + timedelta(seconds=5)),
            (third, HEALTH, NOW + timedelta(seconds=9)),
            (first, HEALTH, NOW),
        ]
    )

    assert [entry.conversation_id for entry in queue.entries(HEALTH)] == [first, second, third]


def test_equal_timestamps_keep_arrival_order() -> None:
    queue = QueueManager()
    ids = [uuid4() for _ in range(4)]
    for conversation_id in ids:
        queue.enqueue(conversation_id, DEFAULT_QUEUE_KEY, NOW)

    assert [entry.conversation_id for entry in queue.entries(DEFAULT_QUEUE_KEY)] == ids


def test_enqueue_twice_raises_even_on_another_key() -> None:
    queue = QueueManager()
    conversation_id = uuid4()
    queue.enqueue(conversation_id, HEALTH, NOW)

    with pytest.raises(AlreadyQueued):
        queue.enqueue(conversation_id, DEFAULT_QUEUE_KEY, NOW)
    assert queue.key_of(conversation_id) == HEALTH


def test_dequeue_is_a_no_op_when_absent() -> None:
    queue = QueueManager()
    conversation_id = uuid4()
    queue.enqueue(conversation_id, HEALTH, NOW)

    assert queue.dequeue(conversation_id)
    assert not queue.dequeue(conversation_id)
    assert queue.position(conversation_id) is None
    assert queue.depth(HEALTH) == 0
    assert queue.keys() == []


def test_keys_are_ordered_by_earliest_enqueued_head() -> None:
    queue = QueueManager()
    queue.enqueue(uuid4(), HEALTH, NOW + timedelta(minutes=1))
    queue.enqueue(uuid4(), DEFAULT_QUEUE_KEY, NOW)

    assert queue.keys() == [HEALTH, DEFAULT_QUEUE_KEY]


def test_estimate_falls_back_to_default_handling_time() -> None:
    queue = QueueManager()
    assert queue.estimate_wait_seconds(3, HEALTH) == 900


def test_estimate_uses_rolling_average_for_key() -> None:
    stats = RollingHandlingTimeStats()
    stats.record(QueueKey("health", "vaccines"), 100)
    stats.record(QueueKey("health", "vaccines"), 200)
    queue = QueueManager(handling_times=stats)

    assert queue.estimate_wait_seconds(2, QueueKey("health", "vaccines")) == 300
    # Department-wide average backs services without history.
    assert queue.estimate_wait_seconds(1, QueueKey("health", "dental")) == 150
    assert queue.estimate_wait_seconds(1, DEFAULT_QUEUE_KEY) == 300


def test_entry_reports_position_and_estimate() -> None:
    queue = QueueManager(default_handling_seconds=60)
    first, second = uuid4(), uuid4()
    queue.enqueue(first, HEALTH, NOW)
    queue.enqueue(second, HEALTH, NOW)

    entry = queue.entry(second)

    assert entry is not None
    assert entry.position == 2
    assert entry.estimated_wait_seconds == 120
    assert entry.key == HEALTH


def test_rolling_stats_window_drops_old_samples() -> None:
    stats = RollingHandlingTimeStats(window=2)
    for seconds in (1000, 10, 20):
        stats.record(HEALTH, seconds)

    assert stats.average_handling_seconds(HEALTH) == 15

import asyncio
import itertools
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from citizen_chat.domain.exceptions import AlreadyQueued
from citizen_chat.domain.models import QueueEntry, QueueKey
from citizen_chat.engine.locks import KeyedLocks
from citizen_chat.infra.metrics.handling_time import HandlingTimeSource

logger = logging.getLogger(__name__)

DEFAULT_HANDLING_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class _Slot:
    conversation_id: UUID
    waiting_since: datetime
    ticket: int


class QueueManager:
    """FIFO waiting lists partitioned by (department, service) key.

    New entries join the tail, so lists keep arrival order whatever the
    wall clock says. Only ``restore`` orders by ``waiting_since``. A
    conversation sits in at most one list at a time.
    """

    def __init__(
        self,
        handling_times: HandlingTimeSource | None = None,
        default_handling_seconds: float = DEFAULT_HANDLING_SECONDS,
    ) -> None:
        self._lists: dict[QueueKey, list[_Slot]] = {}
        self._index: dict[UUID, QueueKey] = {}
        self._tickets = itertools.count(1)
        self._locks = KeyedLocks()
        self.handling_times = handling_times
        self.default_handling_seconds = default_handling_seconds

    def lock(self, key: QueueKey) -> asyncio.Lock:
        return self._locks(key)

    def enqueue(
        self, conversation_id: UUID, key: QueueKey, waiting_since: datetime
    ) -> QueueEntry:
        if conversation_id in self._index:
            logger.error(
                "Conversation enqueued twice",
                extra={
                    "conversation_id": str(conversation_id),
                    "queued_on": str(self._index[conversation_id]),
                    "requested_key": str(key),
                },
            )
            raise AlreadyQueued(conversation_id)

        slot = _Slot(conversation_id, waiting_since, next(self._tickets))
        slots = self._lists.setdefault(key, [])
        slots.append(slot)
        self._index[conversation_id] = key
        return self._entry_at(key, len(slots) - 1)

    def dequeue(self, conversation_id: UUID) -> bool:
        key = self._index.pop(conversation_id, None)
        if key is None:
            return False
        slots = self._lists[key]
        for index, slot in enumerate(slots):
            if slot.conversation_id == conversation_id:
                del slots[index]
                break
        if not slots:
            self._lists.pop(key, None)
        return True

    def key_of(self, conversation_id: UUID) -> QueueKey | None:
        return self._index.get(conversation_id)

    def position(self, conversation_id: UUID) -> int | None:
        key = self._index.get(conversation_id)
        if key is None:
            return None
        for index, slot in enumerate(self._lists[key]):
            if slot.conversation_id == conversation_id:
                return index + 1
        return None

    def estimate_wait_seconds(self, position: int, key: QueueKey) -> int:
        average = None
        if self.handling_times is not None:
            average = self.handling_times.average_handling_seconds(key)
        if average is None or average <= 0:
            average = self.default_handling_seconds
        return int(math.ceil(position * average))

    def entry(self, conversation_id: UUID) -> QueueEntry | None:
        position = self.position(conversation_id)
        if position is None:
            return None
        return self._entry_at(self._index[conversation_id], position - 1)

    def head(self, key: QueueKey) -> QueueEntry | None:
        if not self._lists.get(key):
            return None
        return self._entry_at(key, 0)

    def entries(self, key: QueueKey) -> list[QueueEntry]:
        return [self._entry_at(key, index) for index in range(self.depth(key))]

    def depth(self, key: QueueKey) -> int:
        return len(self._lists.get(key, ()))

    def keys(self) -> list[QueueKey]:
        """Non-empty keys, earliest-enqueued head first."""
        return sorted(
            (key for key, slots in self._lists.items() if slots),
            key=lambda key: self._lists[key][0].ticket,
        )

    def restore(self, entries: Iterable[tuple[UUID, QueueKey, datetime]]) -> None:
        """Rebuild every list from persisted waiting times, oldest first."""
        self._lists.clear()
        self._index.clear()
        for conversation_id, key, waiting_since in sorted(
            entries, key=lambda item: item[2]
        ):
            self.enqueue(conversation_id, key, waiting_since)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._index

    def __len__(self) -> int:
        return len(self._index)

    def _entry_at(self, key: QueueKey, index: int) -> QueueEntry:
        slot = self._lists[key][index]
        position = index + 1
        return QueueEntry(
            conversation_id=slot.conversation_id,
            key=key,
            waiting_since=slot.waiting_since,
            position=position,
            estimated_wait_seconds=self.estimate_wait_seconds(position, key),
        )

from collections import defaultdict, deque
from typing import Protocol

from citizen_chat.domain.models import QueueKey


class HandlingTimeSource(Protocol):
    def average_handling_seconds(self, key: QueueKey) -> float | None: ...


class RollingHandlingTimeStats:
    """Average handling time per queue key over the most recent closures.

    Falls back to the department-wide average when the exact
    department/service pair has no history yet.
    """

    def __init__(self, window: int = 50) -> None:
        if window < 1:
            raise ValueError("window must be positive")
        self._window = window
        self._samples: dict[QueueKey, deque[float]] = defaultdict(
            lambda: deque(maxlen=self._window)
        )

    def record(self, key: QueueKey, seconds: float) -> None:
        if seconds < 0:
            return
        self._samples[key].append(seconds)
        if key.service_id is not None:
            self._samples[QueueKey(key.department_id, None)].append(seconds)

    def average_handling_seconds(self, key: QueueKey) -> float | None:
        samples = self._samples.get(key)
        if not samples and key.service_id is not None:
            samples = self._samples.get(QueueKey(key.department_id, None))
        if not samples:
            return None
        return sum(samples) / len(samples)

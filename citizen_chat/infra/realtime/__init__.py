"""In-process realtime fan-out of engine events."""

from citizen_chat.infra.realtime.notifier import InMemoryNotifier, Subscription

__all__ = ["InMemoryNotifier", "Subscription"]

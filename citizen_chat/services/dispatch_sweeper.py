import asyncio
import contextlib
import logging

from citizen_chat.services.chat_service import ChatService

logger = logging.getLogger(__name__)


class DispatchSweeper:
    """Periodically re-runs dispatch over every non-empty queue.

    Event-driven dispatch covers the normal paths; the sweep picks up anything
    a failed or interrupted trigger left behind.
    """

    def __init__(self, service: ChatService, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.service = service
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="dispatch-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run_once(self) -> int:
        results = await self.service.sweep()
        if results:
            logger.info("Sweep assigned conversations", extra={"assigned": len(results)})
        return len(results)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Dispatch sweep failed")

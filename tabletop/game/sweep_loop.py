"""Async sweep loop -- drives turn timers and notification expiry.

The loop is started/stopped by the FastAPI lifespan handler and runs as a
background ``asyncio.Task``.  Each pass it:

1. Fires due reminder timers (``turn_tracker.send_periodic_reminders``).
2. Skips expired auto-advancing turns (``turn_tracker.check_expired_turns``).
3. Deletes expired notifications.

Reminder timers are durable rows, so a late or missed pass only delays a
reminder; it never loses or repeats one.
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from tabletop.game import notifications, turn_tracker
from tabletop.game.notifications import NotificationDispatcher

log = logging.getLogger(__name__)


class SweepLoop:
    """Periodic background sweep owned by one application instance."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: NotificationDispatcher,
        interval: float = 30.0,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.interval = interval
        self._running: bool = False
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info("Sweep loop started (every %.1fs)", self.interval)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("Sweep loop stopped")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Unhandled error in sweep")

    async def run_once(self) -> dict:
        """Run every sweep once and return what each did."""
        reminders = await turn_tracker.send_periodic_reminders(
            self.session_factory, self.dispatcher
        )
        expired = await turn_tracker.check_expired_turns(
            self.session_factory, self.dispatcher
        )
        async with self.session_factory() as db:
            cleaned = await notifications.cleanup_expired(db)
            await db.commit()

        if reminders or expired or cleaned:
            log.info(
                "Sweep: %d reminders sent, %d turns expired, %d notifications cleaned",
                reminders, expired, cleaned,
            )
        return {"reminders": reminders, "expired_turns": expired, "cleaned": cleaned}

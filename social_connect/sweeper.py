"""
Background expiry sweep. Pending flows are swept every tick; credentials once their
(longer) interval has elapsed. Runs as an asyncio task started from the app lifespan.
"""
import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from social_connect.store import CredentialStore, SweepResult, utcnow

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(
        self,
        store: CredentialStore,
        pending_interval: float,
        credential_interval: float,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.pending_interval = pending_interval
        self.credential_interval = credential_interval
        self._clock = clock
        self._last_credential_sweep: datetime | None = None
        self._task: asyncio.Task | None = None

    def run_once(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock()
        due = self._last_credential_sweep is None or (now - self._last_credential_sweep) >= timedelta(
            seconds=self.credential_interval
        )
        result = self.store.sweep_expired(now, pending=True, credentials=due)
        if due:
            self._last_credential_sweep = now
        if result.pending or result.credentials:
            logger.info("Swept %d pending flow(s), %d credential(s)", result.pending, result.credentials)
        return result

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.pending_interval)
            try:
                self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed; retrying next tick")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._last_credential_sweep = self._clock()
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

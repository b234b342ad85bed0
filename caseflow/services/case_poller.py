"""
Interval-based case list refresh.

Subscribers receive the full case list for one module every
``interval_seconds``. There is no push channel, so re-fetching on a timer
is how case list observers see status changes.

Usage
-----
    poller = CaseListPoller(store, "k12", interval_seconds=10)
    unsubscribe = poller.subscribe(on_cases)
    poller.start()
    ...
    unsubscribe()
    await poller.stop()
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

from caseflow.config import settings
from caseflow.models.schemas import CaseRecord
from caseflow.services.case_store import CaseStore

logger = logging.getLogger(__name__)

CaseListCallback = Callable[[List[CaseRecord]], Union[None, Awaitable[Any]]]


class CaseListPoller:
    """Re-fetches a module's case list on a fixed interval."""

    def __init__(
        self,
        store: CaseStore,
        module_type: Optional[str] = None,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.store = store
        self.module_type = module_type
        self.interval_seconds = (
            settings.CASE_POLL_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self._subscribers: List[CaseListCallback] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, callback: CaseListCallback) -> Callable[[], None]:
        """Register *callback*; the returned function removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def refresh(self) -> List[CaseRecord]:
        """
        Fetch the case list once and hand it to every subscriber.

        Fetch errors propagate; subscriber errors are logged and skipped.
        """
        cases = await self.store.list(self.module_type)
        for callback in list(self._subscribers):
            try:
                result = callback(cases)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("Case list subscriber failed: %s", exc, exc_info=True)
        return cases

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Case list polling started (module=%s, every %.1f s)",
            self.module_type or "all",
            self.interval_seconds,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Case list polling stopped (module=%s)", self.module_type or "all")

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception as exc:
                logger.warning("Case list refresh failed (continuing): %s", exc)
            await asyncio.sleep(self.interval_seconds)

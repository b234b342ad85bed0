"""
Per-case processing leases.

One ProcessingLeaseRegistry lives on ``app.state`` and guarantees that at
most one processing attempt runs per case inside this process. Each lease
also records the stage the attempt has reached so clients can poll progress.

Usage
-----
    async with leases.hold(case_id) as lease:
        lease.advance(ProcessingStage.EXTRACTING)
        ...
    leases.get(case_id)   # None once the attempt finishes
"""
from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import time
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)


class CaseBusyError(RuntimeError):
    """A processing attempt for this case is already running."""

    def __init__(self, case_id: str) -> None:
        self.case_id = case_id
        super().__init__(f"Case {case_id} is already being processed")


# ---------------------------------------------------------------------------
# Processing stage enum
# ---------------------------------------------------------------------------

class ProcessingStage(str, enum.Enum):
    QUEUED = "queued"
    CLEANUP = "cleanup"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    PERSISTING = "persisting"
    VERIFYING = "verifying"
    PURGING = "purging"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Lease (mutable dataclass shared between the attempt and pollers)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ProcessingLease:
    case_id: str
    stage: ProcessingStage = ProcessingStage.QUEUED
    started_at: datetime = dataclasses.field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    _started_monotonic: float = dataclasses.field(default_factory=time.monotonic, repr=False)

    @property
    def elapsed_seconds(self) -> float:
        return round(time.monotonic() - self._started_monotonic, 2)

    def advance(self, stage: ProcessingStage) -> None:
        logger.debug("Case %s: %s -> %s", self.case_id, self.stage.value, stage.value)
        self.stage = stage


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ProcessingLeaseRegistry:
    """Tracks in-flight processing attempts, keyed by case id."""

    def __init__(self) -> None:
        self._leases: Dict[str, ProcessingLease] = {}

    def is_held(self, case_id: str) -> bool:
        return case_id in self._leases

    def get(self, case_id: str) -> Optional[ProcessingLease]:
        return self._leases.get(case_id)

    def acquire(self, case_id: str) -> ProcessingLease:
        """
        Take the lease for *case_id*.

        Check and insert happen without an intervening await, so two
        coroutines on the same event loop cannot both succeed.

        Raises:
            CaseBusyError: Another attempt already holds the lease.
        """
        if case_id in self._leases:
            raise CaseBusyError(case_id)
        lease = ProcessingLease(case_id=case_id)
        self._leases[case_id] = lease
        return lease

    def release(self, case_id: str) -> None:
        self._leases.pop(case_id, None)

    @contextlib.asynccontextmanager
    async def hold(self, case_id: str) -> AsyncIterator[ProcessingLease]:
        lease = self.acquire(case_id)
        try:
            yield lease
        finally:
            self.release(case_id)
            logger.debug(
                "Released lease for case %s after %.2f s (stage=%s)",
                case_id,
                lease.elapsed_seconds,
                lease.stage.value,
            )

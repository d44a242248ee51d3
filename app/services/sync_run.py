"""In-memory bookkeeping of a single sync run."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Lifecycle of a run: idle -> fetching -> writing -> (reaping) -> done | failed."""

    IDLE = "idle"
    FETCHING = "fetching"
    WRITING = "writing"
    REAPING = "reaping"
    DONE = "done"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    SyncPhase.IDLE: {SyncPhase.FETCHING, SyncPhase.FAILED},
    SyncPhase.FETCHING: {SyncPhase.WRITING, SyncPhase.DONE, SyncPhase.FAILED},
    SyncPhase.WRITING: {SyncPhase.FETCHING, SyncPhase.REAPING, SyncPhase.DONE, SyncPhase.FAILED},
    SyncPhase.REAPING: {SyncPhase.DONE, SyncPhase.FAILED},
    SyncPhase.DONE: set(),
    SyncPhase.FAILED: set(),
}


@dataclass
class SyncRun:
    """Counters of one run. Never persisted; summarized into the response."""

    pipeline: str
    shop_id: int
    started_at: datetime = field(default_factory=datetime.utcnow)
    phase: SyncPhase = SyncPhase.IDLE
    total: int = 0
    fetched: int = 0
    failed: int = 0
    pages: int = 0
    api_calls: int = 0
    reaped: int = 0
    exhaustive: bool = False
    error: Optional[str] = None
    # Set when pagination stopped early on a remote error; the run still completes
    fetch_error: Optional[str] = None

    def advance(self, phase: SyncPhase) -> None:
        """Move to the next phase.

        Raises:
            ValueError: If the transition is not allowed.
        """
        if phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise ValueError(f"Invalid sync phase transition {self.phase.value} -> {phase.value}")
        logger.debug(f"[{self.pipeline}] shop {self.shop_id}: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def fail(self, error: str) -> None:
        self.error = error
        if self.phase != SyncPhase.FAILED:
            self.advance(SyncPhase.FAILED)

    @property
    def made_progress(self) -> bool:
        return self.fetched > 0 or self.failed > 0

    def counts(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "fetched": self.fetched,
            "failed": self.failed,
            "api_calls": self.api_calls,
        }

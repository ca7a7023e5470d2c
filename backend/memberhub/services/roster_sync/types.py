"""
Value types describing a roster sync run.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SyncMode(str, Enum):
    FULL = "full"
    DATABASE_ONLY = "database-only"


@dataclass(frozen=True)
class SyncOptions:
    """Caller options for one run."""
    push_pending_to_external: bool = True
    # Deadline for the full-sync attempts; expiry counts as an external failure
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class SyncRun:
    """Immutable audit record of one reconciliation attempt."""
    id: str
    started_at: datetime
    finished_at: datetime
    mode: SyncMode
    is_fallback: bool
    success: bool
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    pushed: int = 0
    cleaned: int = 0
    validated: int = 0
    errors: Tuple[str, ...] = ()
    circuit_breaker: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat(),
            'mode': self.mode.value,
            'is_fallback': self.is_fallback,
            'success': self.success,
            'created': self.created,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'pushed': self.pushed,
            'cleaned': self.cleaned,
            'validated': self.validated,
            'errors': list(self.errors),
            'circuit_breaker': dict(self.circuit_breaker),
        }


@dataclass
class SyncRunAccumulator:
    """Mutable counters filled during a run and frozen into a SyncRun."""
    id: str
    started_at: datetime
    mode: SyncMode = SyncMode.FULL
    is_fallback: bool = False
    success: bool = True
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    pushed: int = 0
    cleaned: int = 0
    validated: int = 0
    errors: List[str] = field(default_factory=list)

    @classmethod
    def start(cls) -> "SyncRunAccumulator":
        return cls(id=f"sync_{int(time.time() * 1000)}", started_at=datetime.utcnow())

    def merge_full_sync(self, other: "SyncRunAccumulator") -> None:
        """Take the pull/push counts of a successful full-sync attempt."""
        self.created = other.created
        self.updated = other.updated
        self.unchanged = other.unchanged
        self.pushed = other.pushed
        self.errors.extend(other.errors)

    def freeze(self, circuit_breaker: Dict[str, Any]) -> SyncRun:
        return SyncRun(
            id=self.id,
            started_at=self.started_at,
            finished_at=datetime.utcnow(),
            mode=self.mode,
            is_fallback=self.is_fallback,
            success=self.success,
            created=self.created,
            updated=self.updated,
            unchanged=self.unchanged,
            pushed=self.pushed,
            cleaned=self.cleaned,
            validated=self.validated,
            errors=tuple(self.errors),
            circuit_breaker=circuit_breaker,
        )

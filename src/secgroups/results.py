"""Per-run accounting for a reconciliation run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Overall outcome of a reconciliation run."""

    SYNCED = "synced"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Tally of adds and updates for one reconciliation run.

    Per-item failures are counted and the run continues; a fatal error
    (listing failure, identity conflict) marks the whole run failed.
    """

    added: int = 0
    updated: int = 0
    add_errors: int = 0
    update_errors: int = 0
    errors: list[str] = field(default_factory=list)
    fatal_error: str | None = None

    def add(self) -> None:
        self.added += 1

    def update(self) -> None:
        self.updated += 1

    def add_error(self, error: Exception) -> None:
        self.add_errors += 1
        self.errors.append(str(error))

    def update_error(self, error: Exception) -> None:
        self.update_errors += 1
        self.errors.append(str(error))

    def error(self, error: Exception) -> None:
        """Record a fatal error that aborted the run."""
        self.fatal_error = str(error)
        self.errors.append(str(error))

    @property
    def error_count(self) -> int:
        return self.add_errors + self.update_errors

    @property
    def is_error(self) -> bool:
        return self.fatal_error is not None

    @property
    def is_degraded(self) -> bool:
        """True when the run completed but some items failed."""
        return not self.is_error and self.error_count > 0

    @property
    def status(self) -> SyncStatus:
        if self.is_error:
            return SyncStatus.FAILED
        if self.error_count > 0:
            return SyncStatus.PARTIAL
        return SyncStatus.SYNCED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "added": self.added,
            "updated": self.updated,
            "add_errors": self.add_errors,
            "update_errors": self.update_errors,
            "errors": self.errors,
            "fatal_error": self.fatal_error,
        }

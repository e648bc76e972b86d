"""Provenance records for reconciliation runs.

Every run is stamped with what was reconciled, from which source, by
which build, and what it changed, so that an operator can answer
"when did this group get renamed, and by which run?" from the logs alone.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from .results import SyncResult, SyncStatus

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
SYNC_VERSION = os.environ.get("SECGROUPS_VERSION", "dev")


@dataclass
class SyncProvenance:
    """Complete provenance record for one reconciliation run."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    project_id: str = ""
    scope_key: str = ""
    provider: str = ""
    sync_version: str = SYNC_VERSION
    instance_id: str = ""

    # Outcome
    status: str = SyncStatus.SYNCED.value
    remote_count: int = 0
    local_count: int = 0
    removed_count: int = 0
    added: int = 0
    updated: int = 0
    add_errors: int = 0
    update_errors: int = 0

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def record_result(self, result: SyncResult) -> None:
        """Copy the tally of a finished run."""
        self.status = result.status.value
        self.added = result.added
        self.updated = result.updated
        self.add_errors = result.add_errors
        self.update_errors = result.update_errors
        if result.fatal_error and self.error is None:
            self.error = result.fatal_error

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Writes provenance records to the structured log."""

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._instance_id = os.environ.get("CONTAINER_INSTANCE_ID", "")

    def create_provenance(self, project_id: str, scope_key: str, provider: str) -> SyncProvenance:
        """Start a provenance record for a run."""
        return SyncProvenance(
            project_id=project_id,
            scope_key=scope_key,
            provider=provider,
            instance_id=self._instance_id,
        )

    def log_provenance(self, provenance: SyncProvenance) -> None:
        """Log a completed provenance record.

        Level follows the run status: INFO when fully synced, WARNING when
        some items failed, ERROR when the run failed.
        """
        if not self._enabled:
            return

        log_level = logging.INFO
        if provenance.status == SyncStatus.FAILED.value:
            log_level = logging.ERROR
        elif provenance.status == SyncStatus.PARTIAL.value:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Reconciliation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "project_id": provenance.project_id,
                "scope_key": provenance.scope_key,
                "status": provenance.status,
                "added": provenance.added,
                "updated": provenance.updated,
                "sync_version": provenance.sync_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )

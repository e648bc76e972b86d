"""Tests for reconciliation provenance records."""

from __future__ import annotations

import logging
from datetime import UTC

import pytest

from secgroups.errors import PersistenceError, ProviderError
from secgroups.provenance import ProvenanceLogger, SyncProvenance
from secgroups.results import SyncResult


class TestSyncProvenance:
    """Tests for SyncProvenance dataclass."""

    def test_default_values(self) -> None:
        """Test default provenance values."""
        prov = SyncProvenance()

        assert prov.status == "synced"
        assert prov.added == 0
        assert prov.error is None

    def test_timestamp_is_utc(self) -> None:
        """Test that timestamp is timezone-aware UTC."""
        assert SyncProvenance().timestamp.tzinfo == UTC

    def test_record_result(self) -> None:
        """Test copying a run tally."""
        result = SyncResult()
        result.add()
        result.update_error(PersistenceError("locked"))
        prov = SyncProvenance()

        prov.record_result(result)

        assert prov.status == "partial"
        assert prov.added == 1
        assert prov.update_errors == 1
        assert prov.error is None

    def test_record_failed_result(self) -> None:
        """Test that a fatal error is carried over."""
        result = SyncResult()
        result.error(ProviderError("down"))
        prov = SyncProvenance()

        prov.record_result(result)

        assert prov.status == "failed"
        assert prov.error == "down"

    def test_to_dict(self) -> None:
        """Test conversion to dictionary."""
        prov = SyncProvenance(project_id="p1", scope_key="subscription:x", provider="azure")

        data = prov.to_dict()

        assert data["project_id"] == "p1"
        assert data["scope_key"] == "subscription:x"
        assert isinstance(data["timestamp"], str)


class TestProvenanceLogger:
    """Tests for ProvenanceLogger."""

    def test_create_provenance(self) -> None:
        """Test starting a provenance record."""
        prov = ProvenanceLogger().create_provenance("p1", "snapshot:p1", "snapshot")

        assert prov.project_id == "p1"
        assert prov.scope_key == "snapshot:p1"
        assert prov.provider == "snapshot"

    @pytest.mark.parametrize(
        ("status", "level"),
        [
            ("synced", logging.INFO),
            ("partial", logging.WARNING),
            ("failed", logging.ERROR),
        ],
    )
    def test_log_level_follows_status(
        self, caplog: pytest.LogCaptureFixture, status: str, level: int
    ) -> None:
        """Test that the log level reflects the run status."""
        prov = SyncProvenance(project_id="p1", status=status)

        with caplog.at_level(logging.INFO, logger="secgroups.provenance"):
            ProvenanceLogger().log_provenance(prov)

        records = [r for r in caplog.records if r.message == "Reconciliation provenance"]
        assert len(records) == 1
        assert records[0].levelno == level
        assert records[0].status == status  # type: ignore[attr-defined]

    def test_disabled(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that audit logging can be turned off."""
        with caplog.at_level(logging.INFO, logger="secgroups.provenance"):
            ProvenanceLogger(enabled=False).log_provenance(SyncProvenance())

        assert not [r for r in caplog.records if r.message == "Reconciliation provenance"]

"""Provider snapshots loaded from YAML.

A snapshot file stands in for a live provider: air-gapped environments
export the provider's security group list and reconcile from the file.

Two layouts are accepted:

    securityGroups:
      - globalId: /subscriptions/.../networkSecurityGroups/nsg-web
        name: nsg-web
        description: web tier

or the same content under a Kubernetes-style ``spec`` section with
``apiVersion`` and ``kind``.

SECURITY: File size is checked before reading to prevent DoS via
large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import MAX_PROVIDER_RESULTS, MAX_SNAPSHOT_FILE_SIZE_BYTES
from .errors import ProviderError
from .models import RemoteSecurityGroup

logger = logging.getLogger(__name__)


class SnapshotLoadError(ProviderError):
    """Raised when a snapshot file cannot be loaded or validated."""

    pass


class ProviderSnapshot(BaseModel):
    """Validated content of a snapshot file."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    security_groups: list[RemoteSecurityGroup] = Field(
        default_factory=list, alias="securityGroups", max_length=MAX_PROVIDER_RESULTS
    )


def load_snapshot(path: Path) -> list[RemoteSecurityGroup]:
    """Load and validate a provider snapshot from YAML.

    Args:
        path: Snapshot file.

    Returns:
        Remote security groups in file order.

    Raises:
        SnapshotLoadError: If the file cannot be read or fails validation.
    """
    if not path.exists():
        raise SnapshotLoadError(f"Snapshot file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SnapshotLoadError(f"Failed to stat snapshot file {path}: {e}") from e

    if file_size > MAX_SNAPSHOT_FILE_SIZE_BYTES:
        raise SnapshotLoadError(
            f"Snapshot file exceeds maximum size of {MAX_SNAPSHOT_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SnapshotLoadError(f"Failed to read snapshot file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SnapshotLoadError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SnapshotLoadError(f"Snapshot file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        snapshot_data = raw_data.get("spec") or {}
        if not isinstance(snapshot_data, dict):
            raise SnapshotLoadError(f"Spec section must be a mapping: {path}")
    else:
        snapshot_data = raw_data

    try:
        snapshot = ProviderSnapshot.model_validate(snapshot_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SnapshotLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info(
        "Loaded provider snapshot from %s",
        path,
        extra={"groups_found": len(snapshot.security_groups)},
    )
    return snapshot.security_groups


class StaticSnapshotProvider:
    """ProviderView that re-reads a snapshot file on every listing."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def list_security_groups(self) -> list[RemoteSecurityGroup]:
        return load_snapshot(self._path)

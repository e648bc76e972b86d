"""Configuration management with validation.

All settings are validated at load time so that a misconfigured sync
process fails at startup rather than in the middle of a reconciliation run.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 60
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_PROVIDER_QUERY_TIMEOUT_SECONDS = 60
DEFAULT_SCOPE_LOCK_TIMEOUT_SECONDS = 30

DEFAULT_DATABASE_URL = "sqlite:///secgroups.db"

# Separator used when joining rendered rules into a group policy string
SECURITY_GROUP_SEPARATOR = ";"

# Resource limits
MAX_PROVIDER_RESULTS = 1000
MAX_SNAPSHOT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max snapshot file
MAX_NAME_LENGTH = 128
MAX_DESCRIPTION_LENGTH = 256
MAX_RESOURCE_GROUP_NAME_LENGTH = 90

# Input validation patterns
VALID_PROJECT_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$"
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w.()]{1,90}$"


@dataclass(frozen=True)
class Config:
    """Sync process configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Owner scope for groups discovered on the provider side
    project_id: str

    # Provider selection: Azure Resource Graph unless a snapshot file is given
    subscription_id: str = ""
    resource_group_name: str | None = None
    snapshot_file: Path | None = None

    database_url: str = DEFAULT_DATABASE_URL

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    provider_query_timeout_seconds: int = DEFAULT_PROVIDER_QUERY_TIMEOUT_SECONDS
    scope_lock_timeout_seconds: int = DEFAULT_SCOPE_LOCK_TIMEOUT_SECONDS

    # Behavior
    notify_on_sync: bool = False
    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.project_id:
            errors.append("PROJECT_ID is required")
        elif not re.match(VALID_PROJECT_ID_PATTERN, self.project_id):
            errors.append(f"PROJECT_ID must match pattern {VALID_PROJECT_ID_PATTERN}: {self.project_id}")

        if self.snapshot_file is None:
            if not self.subscription_id:
                errors.append("AZURE_SUBSCRIPTION_ID is required unless SNAPSHOT_FILE is set")
            elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
                errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")
        elif not self.snapshot_file.exists():
            errors.append(f"Snapshot file does not exist: {self.snapshot_file}")

        if self.resource_group_name:
            if len(self.resource_group_name) > MAX_RESOURCE_GROUP_NAME_LENGTH:
                errors.append(
                    f"RESOURCE_GROUP_NAME exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
                )
            elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.resource_group_name):
                errors.append(f"RESOURCE_GROUP_NAME contains invalid characters: {self.resource_group_name}")

        if not self.database_url:
            errors.append("DATABASE_URL must not be empty")

        # Timing validation
        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if self.provider_query_timeout_seconds < 1:
            errors.append("PROVIDER_QUERY_TIMEOUT must be at least 1 second")

        if self.scope_lock_timeout_seconds < 1:
            errors.append("SCOPE_LOCK_TIMEOUT must be at least 1 second")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def scope_key(self) -> str:
        """Key identifying the resource scope this process reconciles."""
        if self.snapshot_file is not None:
            return f"snapshot:{self.project_id}"
        if self.resource_group_name:
            return f"resource_group:{self.subscription_id}/{self.resource_group_name}"
        return f"subscription:{self.subscription_id}"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            PROJECT_ID: Owner scope for groups created from the provider
            AZURE_SUBSCRIPTION_ID: Subscription to list security groups from
            RESOURCE_GROUP_NAME: Optional resource group filter
            SNAPSHOT_FILE: YAML snapshot used instead of Azure (optional)
            DATABASE_URL: SQLAlchemy URL of the group store (default: sqlite:///secgroups.db)
            RECONCILE_INTERVAL: Seconds between reconciliation runs (default: 300)
            PROVIDER_QUERY_TIMEOUT: Timeout for provider listing in seconds (default: 60)
            SCOPE_LOCK_TIMEOUT: Seconds to wait for the per-scope lock (default: 30)
            NOTIFY_ON_SYNC: If "true", mark renamed groups dirty after a run (default: false)
            ENABLE_AUDIT_LOGGING: Emit provenance records (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        snapshot = os.environ.get("SNAPSHOT_FILE")

        return cls(
            project_id=os.environ.get("PROJECT_ID", ""),
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            resource_group_name=os.environ.get("RESOURCE_GROUP_NAME") or None,
            snapshot_file=Path(snapshot) if snapshot else None,
            database_url=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            provider_query_timeout_seconds=get_int(
                "PROVIDER_QUERY_TIMEOUT", DEFAULT_PROVIDER_QUERY_TIMEOUT_SECONDS
            ),
            scope_lock_timeout_seconds=get_int(
                "SCOPE_LOCK_TIMEOUT", DEFAULT_SCOPE_LOCK_TIMEOUT_SECONDS
            ),
            notify_on_sync=get_bool("NOTIFY_ON_SYNC", False),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )

"""Construction of the long-lived service objects.

Everything is built once at process start and handed to its users by
reference; no module keeps its own shared instance.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .cloner import SecurityGroupCloner
from .config import Config
from .controller import SyncController
from .locks import ScopeLockRegistry
from .provenance import ProvenanceLogger
from .provider import AzureSecurityGroupProvider, ProviderView
from .reconciler import SecurityGroupReconciler
from .security import get_managed_identity_credential
from .service import DependentsLookup, PolicyChangeNotifier, SecurityGroupService
from .snapshot_loader import StaticSnapshotProvider
from .store import SqlGroupStore

logger = logging.getLogger(__name__)


def build_provider(config: Config) -> tuple[ProviderView, str]:
    """Select the provider view for a configuration.

    Returns:
        The provider and a short name used in logs.

    Raises:
        SecretlessViolationError: If the Azure provider is selected and
            credential secrets are present in the environment.
    """
    if config.snapshot_file is not None:
        return StaticSnapshotProvider(config.snapshot_file), "snapshot"

    credential = get_managed_identity_credential(os.environ.get("AZURE_CLIENT_ID"))
    return AzureSecurityGroupProvider(credential, config), "azure"


@dataclass
class ServiceRegistry:
    """Every component of the sync process, wired together."""

    config: Config
    store: SqlGroupStore
    provider: ProviderView
    reconciler: SecurityGroupReconciler
    cloner: SecurityGroupCloner
    service: SecurityGroupService
    locks: ScopeLockRegistry
    provenance: ProvenanceLogger
    controller: SyncController

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: ProviderView | None = None,
        notifier: PolicyChangeNotifier | None = None,
        dependents: DependentsLookup | None = None,
    ) -> ServiceRegistry:
        """Build all components for ``config``.

        Args:
            config: Validated configuration.
            provider: Provider to use instead of the configured one.
            notifier: Receiver of policy change notifications.
            dependents: Counts resources attached to a group.
        """
        if provider is None:
            provider, provider_name = build_provider(config)
        else:
            provider_name = type(provider).__name__

        store = SqlGroupStore(config.database_url)
        reconciler = SecurityGroupReconciler(store, config.project_id)
        service = SecurityGroupService(store, notifier, dependents)
        locks = ScopeLockRegistry(config.scope_lock_timeout_seconds)
        provenance = ProvenanceLogger(enabled=config.enable_audit_logging)

        controller = SyncController(
            config=config,
            reconciler=reconciler,
            provider=provider,
            locks=locks,
            provenance_logger=provenance,
            service=service,
            provider_name=provider_name,
        )

        logger.info(
            "Services initialized",
            extra={"project_id": config.project_id, "provider": provider_name},
        )

        return cls(
            config=config,
            store=store,
            provider=provider,
            reconciler=reconciler,
            cloner=SecurityGroupCloner(store),
            service=service,
            locks=locks,
            provenance=provenance,
            controller=controller,
        )

    def close(self) -> None:
        self.store.dispose()

"""Reconciliation of local security groups against the provider's view.

One run:
1. Load every local group from the store
2. Partition local and remote sets by identity (removed / common / added)
3. Overwrite name and description of every matched local group
4. Create a local group for every remote-only record
5. Record, but never delete, local groups that disappeared remotely

Per-item store failures are counted in the SyncResult and the run moves on
to the next item. Listing failures and identity conflicts abort the run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from pydantic import ValidationError

from .compare import compare_sets
from .errors import InvalidArgumentError, SecurityGroupError
from .models import RemoteSecurityGroup, SecurityGroup, SecurityGroupPatch
from .results import SyncResult
from .store import GroupStore

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    """Output of one reconciliation run.

    Attributes:
        local_groups: Local groups that now correspond to a remote record
        remote_groups: The corresponding remote records, index-aligned
        removed: Local groups no longer reported by the provider (not deleted)
        changed_group_ids: Matched groups whose name or description changed
        result: Add/update tally
    """

    local_groups: list[SecurityGroup] = field(default_factory=list)
    remote_groups: list[RemoteSecurityGroup] = field(default_factory=list)
    removed: list[SecurityGroup] = field(default_factory=list)
    changed_group_ids: list[str] = field(default_factory=list)
    result: SyncResult = field(default_factory=SyncResult)

    def append(self, local: SecurityGroup, remote: RemoteSecurityGroup) -> None:
        self.local_groups.append(local)
        self.remote_groups.append(remote)


class SecurityGroupReconciler:
    """Drives one local/remote diff and the resulting store mutations."""

    def __init__(self, store: GroupStore, project_id: str) -> None:
        """Initialize the reconciler.

        Args:
            store: Group store to reconcile.
            project_id: Owner scope given to groups discovered remotely.
        """
        self._store = store
        self._project_id = project_id

    def sync_security_groups(self, remote_groups: Sequence[RemoteSecurityGroup]) -> SyncOutcome:
        """Reconcile the store with a remote snapshot.

        Args:
            remote_groups: Every security group the provider currently reports.

        Returns:
            SyncOutcome with aligned matched lists and the run tally.

        Raises:
            PersistenceError: If the local groups cannot be listed.
            IdentityConflictError: If an identity key is not unique.
        """
        local_groups = self._store.list_all()
        partition = compare_sets(local_groups, remote_groups)
        outcome = SyncOutcome(removed=partition.removed)

        if partition.removed:
            logger.info(
                "Security groups no longer reported by provider, keeping local records",
                extra={
                    "removed_count": len(partition.removed),
                    "removed_ids": [g.id for g in partition.removed],
                },
            )

        for local, remote in partition.pairs:
            try:
                synced, changed = self.sync_with_remote(local, remote)
            except SecurityGroupError as e:
                logger.warning(
                    "Failed to sync security group with provider",
                    extra={"group_id": local.id, "external_id": remote.global_id, "error": str(e)},
                )
                outcome.result.update_error(e)
                continue
            outcome.append(synced, remote)
            if changed and synced.id:
                outcome.changed_group_ids.append(synced.id)
            outcome.result.update()

        for remote in partition.added:
            try:
                created = self.new_from_remote(remote)
            except SecurityGroupError as e:
                logger.warning(
                    "Failed to create security group from provider",
                    extra={"external_id": remote.global_id, "error": str(e)},
                )
                outcome.result.add_error(e)
                continue
            outcome.append(created, remote)
            outcome.result.add()

        logger.info(
            "Security group sync complete",
            extra={"project_id": self._project_id, **outcome.result.to_dict()},
        )
        return outcome

    def sync_with_remote(
        self, local: SecurityGroup, remote: RemoteSecurityGroup
    ) -> tuple[SecurityGroup, bool]:
        """Overwrite a local group's name and description from the provider.

        Returns:
            The updated group and whether any field actually changed.

        Raises:
            InvalidArgumentError: If the remote fields are not valid locally.
        """
        if local.id is None:
            raise SecurityGroupError(f"Local group for {remote.global_id} has no id")
        try:
            patch = SecurityGroupPatch(name=remote.name, description=remote.description)
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Provider record {remote.global_id} is not a valid group: {e}"
            ) from e
        changed = patch.differs_from(local)
        return self._store.update(local.id, patch), changed

    def new_from_remote(self, remote: RemoteSecurityGroup) -> SecurityGroup:
        """Create a local group mirroring a remote-only record."""
        try:
            group = SecurityGroup(
                name=remote.name,
                description=remote.description,
                project_id=self._project_id,
                external_id=remote.global_id,
            )
        except ValidationError as e:
            raise InvalidArgumentError(
                f"Provider record {remote.global_id} is not a valid group: {e}"
            ) from e
        return self._store.insert_group(group)

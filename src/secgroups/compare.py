"""Three-way identity diff between local groups and provider records.

Local groups are keyed by external id, remote records by global id.
Local groups without an external id are purely local and never take part
in the diff.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .errors import IdentityConflictError
from .models import RemoteSecurityGroup, SecurityGroup

logger = logging.getLogger(__name__)


@dataclass
class SetPartition:
    """Result of partitioning local and remote sets by identity.

    Attributes:
        removed: Local groups whose external id no longer exists remotely
        common_local: Local side of each matched pair
        common_remote: Remote side of each matched pair, index-aligned
        added: Remote records with no local counterpart
    """

    removed: list[SecurityGroup] = field(default_factory=list)
    common_local: list[SecurityGroup] = field(default_factory=list)
    common_remote: list[RemoteSecurityGroup] = field(default_factory=list)
    added: list[RemoteSecurityGroup] = field(default_factory=list)

    @property
    def pairs(self) -> list[tuple[SecurityGroup, RemoteSecurityGroup]]:
        return list(zip(self.common_local, self.common_remote, strict=True))


def compare_sets(
    local: Sequence[SecurityGroup],
    remote: Sequence[RemoteSecurityGroup],
) -> SetPartition:
    """Partition local groups and remote records by identity.

    Matched pairs and added records follow the order of ``remote``;
    removed groups follow the order of ``local``.

    Args:
        local: Every group currently held by the store.
        remote: Every record the provider currently reports.

    Returns:
        The removed / common / added partition.

    Raises:
        IdentityConflictError: If an identity key appears twice on either side.
    """
    local_by_key: dict[str, SecurityGroup] = {}
    for group in local:
        if group.external_id is None:
            continue
        existing = local_by_key.get(group.external_id)
        if existing is not None:
            raise IdentityConflictError(
                f"Local groups {existing.id} and {group.id} share external id "
                f"{group.external_id}"
            )
        local_by_key[group.external_id] = group

    partition = SetPartition()
    seen_remote: set[str] = set()

    for record in remote:
        if record.global_id in seen_remote:
            raise IdentityConflictError(
                f"Provider reported global id {record.global_id} more than once"
            )
        seen_remote.add(record.global_id)

        match = local_by_key.get(record.global_id)
        if match is None:
            partition.added.append(record)
        else:
            partition.common_local.append(match)
            partition.common_remote.append(record)

    partition.removed = [
        group for key, group in local_by_key.items() if key not in seen_remote
    ]

    logger.debug(
        "Partitioned security groups",
        extra={
            "removed": len(partition.removed),
            "common": len(partition.common_local),
            "added": len(partition.added),
        },
    )
    return partition

"""Clone a security group together with its ordered rule set."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from .errors import DuplicateNameError, InvalidArgumentError, PersistenceError
from .models import SecurityGroup
from .store import GroupStore

logger = logging.getLogger(__name__)


def validate_group_name(store: GroupStore, project_id: str, name: str) -> str:
    """Check that ``name`` is usable for a new local group in a scope.

    The store's unique index still decides concurrent races; this check
    only turns the common case into a clear error before any write.

    Raises:
        InvalidArgumentError: If the name is empty.
        DuplicateNameError: If a local group with that name exists in the scope.
    """
    if not name or not name.strip():
        raise InvalidArgumentError("Missing name param")
    if store.count_by_name(project_id, name) > 0:
        raise DuplicateNameError(f"Duplicate name {name}")
    return name


class SecurityGroupCloner:
    """Copies one group and all of its rules into a new group.

    The new group row and every rule row are written in one store
    transaction, so a failure leaves no partially cloned group behind.
    """

    def __init__(self, store: GroupStore) -> None:
        self._store = store

    def clone(
        self,
        source_group_id: str,
        new_name: str,
        description: str,
        owner_scope: str,
    ) -> str:
        """Clone a group under a new name.

        Args:
            source_group_id: Group to copy.
            new_name: Name of the new group, unique within ``owner_scope``.
            description: Description of the new group.
            owner_scope: Project that owns the new group.

        Returns:
            Id of the new group.

        Raises:
            InvalidArgumentError: If ``new_name`` is empty.
            NotFoundError: If the source group does not exist.
            DuplicateNameError: If the name is taken in ``owner_scope``.
            PersistenceError: If any write fails; nothing is kept.
        """
        if not new_name or not new_name.strip():
            raise InvalidArgumentError("Missing name param")

        try:
            new_group = SecurityGroup(
                name=new_name, description=description, project_id=owner_scope
            )
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid clone parameters: {e}") from e

        with self._store.transaction():
            source = self._store.get(source_group_id)
            validate_group_name(self._store, owner_scope, new_name)

            clone = self._store.insert_group(new_group)
            if clone.id is None:
                raise PersistenceError("Store did not assign an id to the cloned group")

            rules = self._store.list_rules(source_group_id)
            for rule in rules:
                self._store.insert_rule(rule.copy_to(clone.id))

        logger.info(
            "Cloned security group",
            extra={
                "source_group_id": source.id,
                "new_group_id": clone.id,
                "project_id": owner_scope,
                "rule_count": len(rules),
            },
        )
        return clone.id

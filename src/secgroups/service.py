"""User-facing security group operations.

Creation, rule edits and policy rendering go through this service so that
every rule change marks the group dirty and notifies whatever depends on
the group's policy (compute instances attached to it, for example).
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import ValidationError

from .cloner import validate_group_name
from .errors import InvalidArgumentError, SecurityGroupError
from .models import SecurityGroup, SecurityGroupPatch, SecurityGroupRule, render_rules
from .store import GroupStore

logger = logging.getLogger(__name__)


class PolicyChangeNotifier(Protocol):
    """Receives a group whose effective policy may have changed."""

    def notify_policy_changed(self, group: SecurityGroup) -> None: ...


class DependentsLookup(Protocol):
    """Counts the resources (compute instances, for example) that use a group."""

    def count(self, group_id: str) -> int: ...


class NoDependents:
    """Lookup for deployments where nothing attaches to groups."""

    def count(self, group_id: str) -> int:
        return 0


class LoggingPolicyNotifier:
    """Notifier that only records the change in the log."""

    def notify_policy_changed(self, group: SecurityGroup) -> None:
        logger.info(
            "Security group policy changed",
            extra={"group_id": group.id, "group_name": group.name},
        )


class SecurityGroupService:
    """Create groups, edit their rule sets and render their policy."""

    def __init__(
        self,
        store: GroupStore,
        notifier: PolicyChangeNotifier | None = None,
        dependents: DependentsLookup | None = None,
    ) -> None:
        self._store = store
        self._notifier: PolicyChangeNotifier = notifier or LoggingPolicyNotifier()
        self._dependents: DependentsLookup = dependents or NoDependents()

    def create_group(self, name: str, description: str, project_id: str) -> SecurityGroup:
        """Create an empty local group.

        Raises:
            InvalidArgumentError: If the name is empty or fields are invalid.
            DuplicateNameError: If the name is taken in the project.
        """
        validate_group_name(self._store, project_id, name)
        try:
            group = SecurityGroup(name=name, description=description, project_id=project_id)
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid security group: {e}") from e
        created = self._store.insert_group(group)
        logger.info(
            "Created security group",
            extra={"group_id": created.id, "project_id": project_id},
        )
        return created

    def add_rule(self, group_id: str, rule: SecurityGroupRule) -> SecurityGroupRule:
        """Append a rule to a group and mark the group dirty."""
        self._store.get(group_id)
        saved = self._store.insert_rule(rule.copy_to(group_id))
        self.mark_dirty(group_id)
        return saved

    def get_rules(self, group_id: str) -> list[SecurityGroupRule]:
        self._store.get(group_id)
        return self._store.list_rules(group_id)

    def get_rule_string(self, group_id: str) -> str:
        """Render a group's rules into its policy string."""
        return render_rules(self.get_rules(group_id))

    def get_details(self, group_id: str) -> dict[str, Any]:
        """Group fields plus rendered rules and dependent count, as returned by the API."""
        group = self._store.get(group_id)
        rules = self._store.list_rules(group_id)
        details = group.to_dict()
        details["rules"] = render_rules(rules)
        details["rule_count"] = len(rules)
        details["guest_cnt"] = self._dependents.count(group_id)
        return details

    def mark_dirty(self, group_id: str) -> SecurityGroup:
        """Flag a group for re-sync and notify its dependents."""
        try:
            group = self._store.update(group_id, SecurityGroupPatch(is_dirty=True))
        except SecurityGroupError as e:
            logger.error(
                "Failed to mark security group dirty",
                extra={"group_id": group_id, "error": str(e)},
            )
            raise
        self._notifier.notify_policy_changed(group)
        return group

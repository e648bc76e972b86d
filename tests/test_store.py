"""Tests for the SQL group store."""

from __future__ import annotations

import pytest

from secgroups.errors import (
    DuplicateNameError,
    IdentityConflictError,
    NotFoundError,
    PersistenceError,
)
from secgroups.models import SecurityGroup, SecurityGroupPatch, SecurityGroupRule
from secgroups.store import SqlGroupStore


class TestGroups:
    """Tests for group records."""

    def test_insert_assigns_id(self, store: SqlGroupStore) -> None:
        """Test that inserted groups get an id and timestamp."""
        created = store.insert_group(SecurityGroup(name="web", project_id="p1"))

        assert created.id
        assert created.created_at is not None
        assert store.get(created.id).name == "web"

    def test_get_missing(self, store: SqlGroupStore) -> None:
        """Test that an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_list_by_scope(self, store: SqlGroupStore) -> None:
        """Test filtering by owner scope."""
        store.insert_group(SecurityGroup(name="web", project_id="p1"))
        store.insert_group(SecurityGroup(name="db", project_id="p2"))

        assert [g.name for g in store.list_by_scope("p1")] == ["web"]
        assert len(store.list_all()) == 2

    def test_find_by_external_id(self, store: SqlGroupStore) -> None:
        """Test lookup by provider identity."""
        store.insert_group(SecurityGroup(name="nsg", project_id="p1", external_id="G1"))

        found = store.find_by_external_id("G1")

        assert found is not None
        assert found.name == "nsg"
        assert store.find_by_external_id("G2") is None

    def test_duplicate_local_name(self, store: SqlGroupStore) -> None:
        """Test that local names are unique within a scope."""
        store.insert_group(SecurityGroup(name="web", project_id="p1"))

        with pytest.raises(DuplicateNameError):
            store.insert_group(SecurityGroup(name="web", project_id="p1"))

    def test_same_name_in_other_scope(self, store: SqlGroupStore) -> None:
        """Test that name uniqueness is per scope."""
        store.insert_group(SecurityGroup(name="web", project_id="p1"))
        store.insert_group(SecurityGroup(name="web", project_id="p2"))

        assert store.count_by_name("p1", "web") == 1
        assert store.count_by_name("p2", "web") == 1

    def test_external_groups_may_share_names(self, store: SqlGroupStore) -> None:
        """Test that synced groups are exempt from name uniqueness."""
        store.insert_group(SecurityGroup(name="web", project_id="p1"))
        store.insert_group(SecurityGroup(name="web", project_id="p1", external_id="G1"))
        store.insert_group(SecurityGroup(name="web", project_id="p1", external_id="G2"))

        assert store.count_by_name("p1", "web") == 1
        assert len(store.list_all()) == 3

    def test_duplicate_external_id(self, store: SqlGroupStore) -> None:
        """Test that an external id maps to one local group."""
        store.insert_group(SecurityGroup(name="a", project_id="p1", external_id="G1"))

        with pytest.raises(IdentityConflictError):
            store.insert_group(SecurityGroup(name="b", project_id="p1", external_id="G1"))

    def test_update(self, store: SqlGroupStore) -> None:
        """Test applying a patch."""
        created = store.insert_group(SecurityGroup(name="web", project_id="p1"))
        assert created.id is not None

        updated = store.update(created.id, SecurityGroupPatch(description="web tier", is_dirty=True))

        assert updated.name == "web"
        assert updated.description == "web tier"
        assert updated.is_dirty is True
        assert store.get(created.id).is_dirty is True

    def test_update_missing(self, store: SqlGroupStore) -> None:
        """Test that patching an unknown group raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.update("missing", SecurityGroupPatch(is_dirty=True))


class TestRules:
    """Tests for rule records."""

    def test_rules_keep_insertion_order(
        self, store: SqlGroupStore, web_rules: list[SecurityGroupRule]
    ) -> None:
        """Test that rules come back in the order they were added."""
        group = store.insert_group(SecurityGroup(name="web", project_id="p1"))
        assert group.id is not None
        for rule in reversed(web_rules):
            store.insert_rule(rule.copy_to(group.id))

        rules = store.list_rules(group.id)

        assert [r.description for r in rules] == [
            "default deny",
            "ssh from office",
            "https",
        ]
        assert all(r.id for r in rules)
        assert all(r.secgroup_id == group.id for r in rules)

    def test_insert_rule_missing_group(self, store: SqlGroupStore) -> None:
        """Test that a rule needs an existing owner."""
        with pytest.raises(NotFoundError):
            store.insert_rule(SecurityGroupRule(secgroup_id="missing"))

    def test_insert_rule_without_owner(self, store: SqlGroupStore) -> None:
        """Test that an unowned rule is rejected."""
        with pytest.raises(NotFoundError):
            store.insert_rule(SecurityGroupRule())

    def test_delete_group_removes_rules(
        self, store: SqlGroupStore, web_rules: list[SecurityGroupRule]
    ) -> None:
        """Test that deleting a group deletes its rules."""
        group = store.insert_group(SecurityGroup(name="web", project_id="p1"))
        assert group.id is not None
        for rule in web_rules:
            store.insert_rule(rule.copy_to(group.id))

        store.delete_group(group.id)

        assert store.list_rules(group.id) == []
        with pytest.raises(NotFoundError):
            store.get(group.id)

    def test_delete_missing(self, store: SqlGroupStore) -> None:
        """Test that deleting an unknown group raises NotFoundError."""
        with pytest.raises(NotFoundError):
            store.delete_group("missing")


class TestTransaction:
    """Tests for multi-call transactions."""

    def test_commit(self, store: SqlGroupStore) -> None:
        """Test that calls inside a transaction are committed together."""
        with store.transaction():
            group = store.insert_group(SecurityGroup(name="web", project_id="p1"))
            assert group.id is not None
            store.insert_rule(SecurityGroupRule(secgroup_id=group.id))

        assert len(store.list_rules(group.id)) == 1

    def test_rollback_on_error(self, store: SqlGroupStore) -> None:
        """Test that an error undoes every call in the transaction."""
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_group(SecurityGroup(name="web", project_id="p1"))
                raise RuntimeError("boom")

        assert store.list_all() == []

    def test_rollback_on_integrity_error(self, store: SqlGroupStore) -> None:
        """Test that a constraint violation rolls back earlier writes."""
        store.insert_group(SecurityGroup(name="taken", project_id="p1"))

        with pytest.raises(DuplicateNameError):
            with store.transaction():
                store.insert_group(SecurityGroup(name="fresh", project_id="p1"))
                store.insert_group(SecurityGroup(name="taken", project_id="p1"))

        assert [g.name for g in store.list_all()] == ["taken"]


class TestSchema:
    """Tests for store construction."""

    def test_file_database(self, tmp_path) -> None:
        """Test that a file-backed store persists across instances."""
        url = f"sqlite:///{tmp_path / 'groups.db'}"
        first = SqlGroupStore(url)
        first.insert_group(SecurityGroup(name="web", project_id="p1"))
        first.dispose()

        second = SqlGroupStore(url)
        try:
            assert [g.name for g in second.list_all()] == ["web"]
        finally:
            second.dispose()

    def test_unreachable_database(self, tmp_path) -> None:
        """Test that schema creation failures become PersistenceError."""
        url = f"sqlite:///{tmp_path / 'missing-dir' / 'groups.db'}"

        with pytest.raises(PersistenceError):
            SqlGroupStore(url)

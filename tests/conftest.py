"""Pytest configuration and fixtures."""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from secgroups.config import Config  # noqa: E402
from secgroups.models import (  # noqa: E402
    RuleAction,
    RuleDirection,
    RuleProtocol,
    SecurityGroupRule,
)
from secgroups.store import SqlGroupStore  # noqa: E402

TEST_SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"
TEST_PROJECT_ID = "project-a"


@pytest.fixture
def store() -> Generator[SqlGroupStore, None, None]:
    """Fresh in-memory group store."""
    group_store = SqlGroupStore("sqlite://")
    yield group_store
    group_store.dispose()


@pytest.fixture
def test_config() -> Config:
    """Configuration pointing at the mock subscription."""
    return Config(project_id=TEST_PROJECT_ID, subscription_id=TEST_SUBSCRIPTION_ID)


@pytest.fixture
def web_rules() -> list[SecurityGroupRule]:
    """Ordered rule set of a typical web tier group."""
    return [
        SecurityGroupRule(
            priority=10,
            protocol=RuleProtocol.TCP,
            ports="443",
            direction=RuleDirection.IN,
            cidr="0.0.0.0/0",
            action=RuleAction.ALLOW,
            description="https",
        ),
        SecurityGroupRule(
            priority=20,
            protocol=RuleProtocol.TCP,
            ports="22",
            direction=RuleDirection.IN,
            cidr="10.0.0.0/8",
            action=RuleAction.ALLOW,
            description="ssh from office",
        ),
        SecurityGroupRule(
            priority=100,
            protocol=RuleProtocol.ANY,
            direction=RuleDirection.IN,
            action=RuleAction.DENY,
            description="default deny",
        ),
    ]

"""Pydantic models for security groups, their rules and provider records.

These models provide:
1. Validation at the boundary (fail fast, fail loudly)
2. Canonical rule rendering for a group's policy string
3. Explicit patch objects for group updates
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import MAX_DESCRIPTION_LENGTH, MAX_NAME_LENGTH, SECURITY_GROUP_SEPARATOR

# Single port, port range, or comma separated list of either
VALID_PORTS_PATTERN = r"^\d{1,5}(-\d{1,5})?(,\d{1,5}(-\d{1,5})?)*$"
MAX_PORT = 65535


class RuleDirection(str, Enum):
    """Traffic direction a rule applies to."""

    IN = "in"
    OUT = "out"


class RuleAction(str, Enum):
    """Verdict of a matching rule."""

    ALLOW = "allow"
    DENY = "deny"


class RuleProtocol(str, Enum):
    """Protocols a rule can match."""

    ANY = "any"
    TCP = "tcp"
    UDP = "udp"
    ICMP = "icmp"


# =============================================================================
# Rules
# =============================================================================


class SecurityGroupRule(BaseModel):
    """A single ordered rule owned by one security group."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    secgroup_id: str | None = None
    priority: Annotated[int, Field(ge=0)] = 1
    protocol: RuleProtocol = RuleProtocol.ANY
    ports: str = ""
    direction: RuleDirection = RuleDirection.IN
    cidr: str = ""
    action: RuleAction = RuleAction.ALLOW
    description: Annotated[str, Field(max_length=MAX_DESCRIPTION_LENGTH)] = ""

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: str) -> str:
        v = v.strip()
        if not v:
            return v
        if not re.match(VALID_PORTS_PATTERN, v):
            raise ValueError(f"ports must be a port, range or comma list: {v}")
        for part in v.split(","):
            bounds = [int(p) for p in part.split("-")]
            if any(p < 1 or p > MAX_PORT for p in bounds):
                raise ValueError(f"port out of range 1-{MAX_PORT}: {part}")
            if len(bounds) == 2 and bounds[0] > bounds[1]:
                raise ValueError(f"port range start exceeds end: {part}")
        return v

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        v = v.strip()
        if not v:
            return v
        try:
            ipaddress.ip_network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"cidr is not a valid network: {v}") from e
        return v

    def to_rule_string(self) -> str:
        """Render the rule in canonical form, e.g. ``in:allow 10.0.0.0/8 tcp 22``."""
        parts = [f"{self.direction.value}:{self.action.value}"]
        if self.cidr:
            parts.append(self.cidr)
        parts.append(self.protocol.value)
        if self.ports and self.protocol in (RuleProtocol.TCP, RuleProtocol.UDP):
            parts.append(self.ports)
        return " ".join(parts)

    def policy_fields(self) -> tuple[int, str, str, str, str, str, str]:
        """Fields that define the rule's effect, independent of ownership."""
        return (
            self.priority,
            self.protocol.value,
            self.ports,
            self.direction.value,
            self.cidr,
            self.action.value,
            self.description,
        )

    def copy_to(self, secgroup_id: str) -> SecurityGroupRule:
        """Return an unsaved copy of this rule owned by another group."""
        return self.model_copy(update={"id": None, "secgroup_id": secgroup_id})


def render_rules(rules: Iterable[SecurityGroupRule]) -> str:
    """Join rendered rules, in order, into a group policy string."""
    return SECURITY_GROUP_SEPARATOR.join(rule.to_rule_string() for rule in rules)


# =============================================================================
# Groups
# =============================================================================


def check_group_name(v: str) -> str:
    """Reject names that are empty once surrounding whitespace is removed."""
    if not v.strip():
        raise ValueError("name must not be empty")
    return v


class SecurityGroup(BaseModel):
    """A security group record as held by the group store."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    name: Annotated[str, Field(min_length=1, max_length=MAX_NAME_LENGTH)]
    description: Annotated[str, Field(max_length=MAX_DESCRIPTION_LENGTH)] = ""
    project_id: str = ""
    external_id: str | None = None
    is_dirty: bool = False
    created_at: datetime | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return check_group_name(v)

    @property
    def is_external(self) -> bool:
        """True for groups synced from a provider."""
        return self.external_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary suitable for API responses."""
        return self.model_dump(mode="json")


class SecurityGroupPatch(BaseModel):
    """Explicit set of group fields to change in one update.

    Only fields that are set (not None) are written.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str | None, Field(max_length=MAX_NAME_LENGTH)] = None
    description: Annotated[str | None, Field(max_length=MAX_DESCRIPTION_LENGTH)] = None
    is_dirty: bool | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        return v if v is None else check_group_name(v)

    def changes(self) -> dict[str, Any]:
        """Fields this patch writes."""
        return self.model_dump(exclude_none=True)

    def is_empty(self) -> bool:
        return not self.changes()

    def differs_from(self, group: SecurityGroup) -> bool:
        """Whether applying this patch would change the group."""
        return any(getattr(group, key) != value for key, value in self.changes().items())


# =============================================================================
# Provider records
# =============================================================================


class RemoteSecurityGroup(BaseModel):
    """A security group as reported by the external provider.

    Only identity is required here. Whether the name is usable locally is
    decided per record during reconciliation, so one bad record cannot
    fail a whole listing.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    global_id: Annotated[str, Field(min_length=1, alias="globalId")]
    name: Annotated[str, Field(min_length=1, max_length=MAX_NAME_LENGTH)]
    description: Annotated[str, Field(max_length=MAX_DESCRIPTION_LENGTH)] = ""

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

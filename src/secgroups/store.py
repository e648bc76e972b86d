"""Persistence for security groups and their rules.

GroupStore is the repository contract the reconciler, cloner and service
depend on. SqlGroupStore implements it on SQLAlchemy so that any engine
SQLAlchemy supports can back it; tests use in-memory SQLite.

INVARIANTS enforced by the schema (not by check-then-act code):
- (project_id, name) is unique among groups without an external id
- external_id is unique across the whole store
- rules are deleted together with their group
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from .config import MAX_DESCRIPTION_LENGTH, MAX_NAME_LENGTH
from .errors import (
    DuplicateNameError,
    IdentityConflictError,
    NotFoundError,
    PersistenceError,
)
from .models import SecurityGroup, SecurityGroupPatch, SecurityGroupRule

logger = logging.getLogger(__name__)


class GroupStore(Protocol):
    """Repository contract over group and rule records."""

    def list_all(self) -> list[SecurityGroup]: ...

    def list_by_scope(self, project_id: str) -> list[SecurityGroup]: ...

    def get(self, group_id: str) -> SecurityGroup: ...

    def find_by_external_id(self, external_id: str) -> SecurityGroup | None: ...

    def count_by_name(self, project_id: str, name: str) -> int: ...

    def list_rules(self, group_id: str) -> list[SecurityGroupRule]: ...

    def insert_group(self, group: SecurityGroup) -> SecurityGroup: ...

    def insert_rule(self, rule: SecurityGroupRule) -> SecurityGroupRule: ...

    def update(self, group_id: str, patch: SecurityGroupPatch) -> SecurityGroup: ...

    def delete_group(self, group_id: str) -> None: ...

    def transaction(self) -> Any: ...


# =============================================================================
# Schema
# =============================================================================


class Base(DeclarativeBase):
    pass


class SecurityGroupRow(Base):
    """ORM model for the security groups table."""

    __tablename__ = "secgroups_tbl"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False)
    description: Mapped[str] = mapped_column(
        String(MAX_DESCRIPTION_LENGTH), nullable=False, default=""
    )
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    external_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_dirty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    rules: Mapped[list[SecurityGroupRuleRow]] = relationship(
        back_populates="secgroup",
        cascade="all, delete-orphan",
        order_by="SecurityGroupRuleRow.seq",
    )

    __table_args__ = (
        UniqueConstraint("external_id", name="uq_secgroups_external_id"),
        Index(
            "ix_secgroups_project_name_local",
            "project_id",
            "name",
            unique=True,
            sqlite_where=text("external_id IS NULL"),
            postgresql_where=text("external_id IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<SecurityGroupRow(id={self.id}, name={self.name}, external_id={self.external_id})>"


class SecurityGroupRuleRow(Base):
    """ORM model for the security group rules table.

    ``seq`` preserves insertion order, which is the evaluation order of
    the group's policy string.
    """

    __tablename__ = "secgrouprules_tbl"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    secgroup_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("secgroups_tbl.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    protocol: Mapped[str] = mapped_column(String(16), nullable=False)
    ports: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    cidr: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    action: Mapped[str] = mapped_column(String(8), nullable=False)
    description: Mapped[str] = mapped_column(
        String(MAX_DESCRIPTION_LENGTH), nullable=False, default=""
    )

    secgroup: Mapped[SecurityGroupRow] = relationship(back_populates="rules")


def _to_group(row: SecurityGroupRow) -> SecurityGroup:
    return SecurityGroup.model_validate(row, from_attributes=True)


def _to_rule(row: SecurityGroupRuleRow) -> SecurityGroupRule:
    return SecurityGroupRule.model_validate(row, from_attributes=True)


# =============================================================================
# SQL store
# =============================================================================


class SqlGroupStore:
    """GroupStore backed by a SQLAlchemy engine.

    Every public call runs in its own transaction unless it is made inside
    ``with store.transaction():``, in which case all calls share one
    session and commit or roll back together.
    """

    def __init__(self, database_url: str, create_schema: bool = True) -> None:
        """Initialize the store.

        Args:
            database_url: SQLAlchemy database URL.
            create_schema: Create missing tables on startup.
        """
        engine_kwargs: dict[str, Any] = {}
        if database_url.startswith("sqlite") and (
            ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"
        ):
            # One shared connection, otherwise each session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self._engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._active_session: ContextVar[Session | None] = ContextVar(
            "secgroups_active_session", default=None
        )

        if create_schema:
            try:
                Base.metadata.create_all(self._engine)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to create group store schema: {e}") from e

        logger.info(
            "Group store initialized",
            extra={"dialect": self._engine.dialect.name},
        )

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several store calls into one atomic unit."""
        with self._session_scope():
            yield

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._active_session.get()
        if session is not None:
            # Joined an outer transaction; it owns commit and rollback
            yield session
            return

        session = self._session_factory()
        token = self._active_session.set(session)
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise self._translate_integrity_error(e) from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Store operation failed", extra={"error": str(e)})
            raise PersistenceError(f"Store operation failed: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            self._active_session.reset(token)
            session.close()

    @staticmethod
    def _translate_integrity_error(error: IntegrityError) -> Exception:
        message = str(error.orig)
        if "external_id" in message:
            return IdentityConflictError(f"External id already present in store: {message}")
        if "name" in message:
            return DuplicateNameError(f"Duplicate security group name: {message}")
        return PersistenceError(f"Integrity violation: {message}")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_all(self) -> list[SecurityGroup]:
        with self._session_scope() as session:
            rows = session.scalars(
                select(SecurityGroupRow).order_by(SecurityGroupRow.created_at, SecurityGroupRow.id)
            ).all()
            return [_to_group(row) for row in rows]

    def list_by_scope(self, project_id: str) -> list[SecurityGroup]:
        with self._session_scope() as session:
            rows = session.scalars(
                select(SecurityGroupRow)
                .where(SecurityGroupRow.project_id == project_id)
                .order_by(SecurityGroupRow.created_at, SecurityGroupRow.id)
            ).all()
            return [_to_group(row) for row in rows]

    def get(self, group_id: str) -> SecurityGroup:
        with self._session_scope() as session:
            row = session.get(SecurityGroupRow, group_id)
            if row is None:
                raise NotFoundError(f"Security group not found: {group_id}")
            return _to_group(row)

    def find_by_external_id(self, external_id: str) -> SecurityGroup | None:
        with self._session_scope() as session:
            row = session.scalars(
                select(SecurityGroupRow).where(SecurityGroupRow.external_id == external_id)
            ).first()
            return _to_group(row) if row is not None else None

    def count_by_name(self, project_id: str, name: str) -> int:
        """Count groups without an external id named ``name`` in a scope."""
        with self._session_scope() as session:
            return session.scalar(
                select(func.count())
                .select_from(SecurityGroupRow)
                .where(
                    SecurityGroupRow.project_id == project_id,
                    SecurityGroupRow.name == name,
                    SecurityGroupRow.external_id.is_(None),
                )
            ) or 0

    def list_rules(self, group_id: str) -> list[SecurityGroupRule]:
        with self._session_scope() as session:
            rows = session.scalars(
                select(SecurityGroupRuleRow)
                .where(SecurityGroupRuleRow.secgroup_id == group_id)
                .order_by(SecurityGroupRuleRow.seq)
            ).all()
            return [_to_rule(row) for row in rows]

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def insert_group(self, group: SecurityGroup) -> SecurityGroup:
        """Persist a new group and return it with its assigned id."""
        with self._session_scope() as session:
            row = SecurityGroupRow(
                id=group.id or str(uuid.uuid4()),
                name=group.name,
                description=group.description,
                project_id=group.project_id,
                external_id=group.external_id,
                is_dirty=group.is_dirty,
                created_at=group.created_at or datetime.now(UTC),
            )
            session.add(row)
            session.flush()
            return _to_group(row)

    def insert_rule(self, rule: SecurityGroupRule) -> SecurityGroupRule:
        """Append a rule to its owning group."""
        if not rule.secgroup_id:
            raise NotFoundError("Rule has no owning security group")

        with self._session_scope() as session:
            if session.get(SecurityGroupRow, rule.secgroup_id) is None:
                raise NotFoundError(f"Security group not found: {rule.secgroup_id}")
            row = SecurityGroupRuleRow(
                id=rule.id or str(uuid.uuid4()),
                secgroup_id=rule.secgroup_id,
                priority=rule.priority,
                protocol=rule.protocol.value,
                ports=rule.ports,
                direction=rule.direction.value,
                cidr=rule.cidr,
                action=rule.action.value,
                description=rule.description,
            )
            session.add(row)
            session.flush()
            return _to_rule(row)

    def update(self, group_id: str, patch: SecurityGroupPatch) -> SecurityGroup:
        """Apply a patch to a group in one transaction."""
        with self._session_scope() as session:
            row = session.get(SecurityGroupRow, group_id, with_for_update=True)
            if row is None:
                raise NotFoundError(f"Security group not found: {group_id}")
            for key, value in patch.changes().items():
                setattr(row, key, value)
            session.flush()
            return _to_group(row)

    def delete_group(self, group_id: str) -> None:
        """Delete a group together with all of its rules."""
        with self._session_scope() as session:
            row = session.get(SecurityGroupRow, group_id)
            if row is None:
                raise NotFoundError(f"Security group not found: {group_id}")
            session.delete(row)

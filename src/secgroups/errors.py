"""Error kinds raised by the security group core.

Callers distinguish validation problems (InvalidArgumentError,
DuplicateNameError, NotFoundError) from infrastructure failures
(PersistenceError, ProviderError) and data-integrity violations
(IdentityConflictError), which abort a whole reconciliation run.
"""

from __future__ import annotations


class SecurityGroupError(Exception):
    """Base class for all security group errors."""

    pass


class InvalidArgumentError(SecurityGroupError):
    """Raised when input is empty or malformed."""

    pass


class DuplicateNameError(SecurityGroupError):
    """Raised when a group name is already taken within its scope."""

    pass


class NotFoundError(SecurityGroupError):
    """Raised when a referenced group does not exist."""

    pass


class PersistenceError(SecurityGroupError):
    """Raised when an underlying store operation fails."""

    pass


class IdentityConflictError(SecurityGroupError):
    """Raised when two records map to the same external id."""

    pass


class ProviderError(SecurityGroupError):
    """Raised when the remote provider cannot be listed."""

    pass


class SyncInProgressError(SecurityGroupError):
    """Raised when another run holds the lock for the same scope."""

    pass

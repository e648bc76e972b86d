"""Credential handling for the provider adapter.

The sync process reads security groups with a Managed Identity only.
Service principal secrets in the environment would let a leaked container
image list every security group in the tenant, so their presence blocks
startup.

INVARIANTS:
1. No client secret, certificate or password variables in the environment
2. ManagedIdentityCredential is the only credential type handed out
"""

from __future__ import annotations

import logging
import os

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)


class SecretlessViolationError(Exception):
    """Raised when a credential secret is found in the environment.

    This is fatal: the sync process must not start.
    """

    pass


def enforce_secretless_environment() -> None:
    """Refuse to continue when credential secrets are present.

    Raises:
        SecretlessViolationError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Credential secret detected in environment",
                extra={"security_event": "credential_detected", "env_var": env_var},
            )
            raise SecretlessViolationError(
                f"{env_var} is set. Remove credential variables and assign a "
                "managed identity with Reader access to the subscription."
            )


def get_managed_identity_credential(client_id: str | None = None) -> ManagedIdentityCredential:
    """Return a ManagedIdentityCredential after checking the environment.

    Args:
        client_id: Client ID of a user-assigned identity. None selects the
            system-assigned identity.

    Raises:
        SecretlessViolationError: If credential secrets are present.
    """
    enforce_secretless_environment()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()

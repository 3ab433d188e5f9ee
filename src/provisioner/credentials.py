"""Session credential handling for a secretless provisioning run.

The run reuses the operator's existing Azure CLI login. Nothing it creates
carries a secret, and the run itself refuses to authenticate with one:

SECURITY INVARIANTS:
1. No client secret, certificate or password may be present in the environment
2. AzureCliCredential is the only credential type used
3. Every mutating platform call is recorded as a structured audit event
"""

from __future__ import annotations

import logging
import os

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import AzureCliCredential, CredentialUnavailableError

from .config import ARM_TOKEN_SCOPE

logger = logging.getLogger(__name__)

# Environment variables that indicate secret-based authentication
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = """
Secret-based credentials detected in the environment: {env_var}

This tool provisions credential-less (federated) trust and only runs on an
interactive Azure CLI session. Remove the variable and run 'az login' first.
"""

SESSION_REQUIRED_MESSAGE = (
    "No usable Azure CLI session. Run 'az login' (optionally with --tenant) and retry."
)


class SecretlessViolationError(Exception):
    """Raised when secret-bearing credentials are found in the environment."""

    pass


class SessionError(Exception):
    """Raised when no authenticated session is available."""

    pass


def enforce_secretless_environment() -> None:
    """Refuse to run when credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless environment violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "run_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))


def get_session_credential(tenant_id: str | None = None) -> AzureCliCredential:
    """Get the Azure CLI session credential after verifying the environment.

    Args:
        tenant_id: Optional tenant to request tokens from.

    Raises:
        SecretlessViolationError: If credential environment variables are detected.
    """
    enforce_secretless_environment()

    if tenant_id:
        logger.info("Using Azure CLI session", extra={"tenant_id": tenant_id})
        return AzureCliCredential(tenant_id=tenant_id)

    logger.info("Using Azure CLI session for the default tenant")
    return AzureCliCredential()


def verify_session(credential: TokenCredential) -> None:
    """Acquire a management token once so a missing login fails before any entry.

    Raises:
        SessionError: If no token can be acquired.
    """
    try:
        credential.get_token(ARM_TOKEN_SCOPE)
    except (CredentialUnavailableError, ClientAuthenticationError) as e:
        logger.error("Session verification failed", extra={"error": str(e)})
        raise SessionError(SESSION_REQUIRED_MESSAGE) from e


def log_audit_event(
    event_type: str,
    target_resource: str,
    action: str,
    result: str = "success",
    **details: str | None,
) -> None:
    """Log a provisioning audit event with structured data."""
    logger.info(
        f"Audit: {event_type} {action} {target_resource}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
            **{k: v for k, v in details.items() if v is not None},
        },
    )

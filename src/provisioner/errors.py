"""Provisioning error taxonomy.

Errors raised here are fatal for the entry being provisioned, never for the
whole run. Azure SDK exceptions (HttpResponseError, AzureError) are not
wrapped; the orchestrator handles both families at the entry boundary.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """A precondition or conflict that stops provisioning of one entry."""

    pass


class SubscriptionNotFoundError(ProvisioningError):
    """No subscription visible to the session matches the entry."""


class SubscriptionDisabledError(ProvisioningError):
    """The subscription exists but is not in an enabled state."""


class AmbiguousSubscriptionError(ProvisioningError):
    """More than one subscription carries the requested display name."""


class AmbiguousIdentityError(ProvisioningError):
    """More than one application registration carries the display name."""


class PermissionGrantError(ProvisioningError):
    """One or more API permissions could not be added to the application."""

    def __init__(self, message: str, failures: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or {}


class ProjectNotFoundError(ProvisioningError):
    """The CI/CD project does not exist in the organization."""


class EndpointConflictError(ProvisioningError):
    """An endpoint with the connection name exists but cannot be reused."""


class IssuerNotAvailableError(ProvisioningError):
    """The created endpoint did not report a federation issuer URL."""


class FederatedCredentialConflictError(ProvisioningError):
    """A federated credential with the same name binds a different trust."""

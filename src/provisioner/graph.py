"""Directory graph client for application registrations and service principals.

Covers the directory objects the provisioning workflow touches:
applications (lookup, create, password removal, required permissions,
federated credentials), service principals (lookup, create) and app role
assignments (admin consent for application permissions).
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core.credentials import TokenCredential

from .config import DEFAULT_GRAPH_BASE_URL, GRAPH_TOKEN_SCOPE
from .rest import RestClient, SupportsSendRequest

logger = logging.getLogger(__name__)

APPLICATION_FIELDS = "id,appId,displayName,passwordCredentials,requiredResourceAccess"
SERVICE_PRINCIPAL_FIELDS = "id,appId,displayName,appOwnerOrganizationId,appRoles"


def odata_quote(value: str) -> str:
    """Quote a string literal for an OData $filter expression."""
    return "'" + value.replace("'", "''") + "'"


class GraphClient:
    """Directory graph REST client.

    Every method maps to one REST call (collection reads may page).
    Errors propagate as azure-core exceptions.
    """

    def __init__(
        self,
        credential: TokenCredential | None,
        base_url: str = DEFAULT_GRAPH_BASE_URL,
        *,
        pipeline_client: SupportsSendRequest | None = None,
    ) -> None:
        self._rest = RestClient(
            credential, GRAPH_TOKEN_SCOPE, base_url, pipeline_client=pipeline_client
        )

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    def find_applications(self, display_name: str) -> list[dict[str, Any]]:
        """Applications whose display name equals ``display_name`` exactly."""
        return self._rest.list(
            "applications",
            params={
                "$filter": f"displayName eq {odata_quote(display_name)}",
                "$select": APPLICATION_FIELDS,
            },
        )

    def get_application(self, application_id: str) -> dict[str, Any]:
        """Application addressed by its application (client) id."""
        return self._rest.get(
            f"applications(appId='{application_id}')",
            params={"$select": APPLICATION_FIELDS},
        )

    def create_application(self, display_name: str) -> dict[str, Any]:
        return self._rest.post(
            "applications",
            {"displayName": display_name, "signInAudience": "AzureADMyOrg"},
        )

    def remove_password(self, application_object_id: str, key_id: str) -> None:
        self._rest.post(f"applications/{application_object_id}/removePassword", {"keyId": key_id})

    def set_required_resource_access(
        self,
        application_id: str,
        required_resource_access: list[dict[str, Any]],
    ) -> None:
        self._rest.patch(
            f"applications(appId='{application_id}')",
            {"requiredResourceAccess": required_resource_access},
        )

    # -------------------------------------------------------------------------
    # Service principals
    # -------------------------------------------------------------------------

    def find_service_principal(self, application_id: str) -> dict[str, Any] | None:
        """Service principal for an application id, or None."""
        principals = self._rest.list(
            "servicePrincipals",
            params={
                "$filter": f"appId eq {odata_quote(application_id)}",
                "$select": SERVICE_PRINCIPAL_FIELDS,
            },
        )
        return principals[0] if principals else None

    def create_service_principal(self, application_id: str) -> dict[str, Any]:
        return self._rest.post("servicePrincipals", {"appId": application_id})

    # -------------------------------------------------------------------------
    # App role assignments (admin consent for application permissions)
    # -------------------------------------------------------------------------

    def list_app_role_assignments(self, service_principal_id: str) -> list[dict[str, Any]]:
        """App roles granted to a service principal."""
        return self._rest.list(f"servicePrincipals/{service_principal_id}/appRoleAssignments")

    def grant_app_role(
        self,
        resource_service_principal_id: str,
        principal_id: str,
        app_role_id: str,
    ) -> dict[str, Any]:
        return self._rest.post(
            f"servicePrincipals/{resource_service_principal_id}/appRoleAssignedTo",
            {
                "principalId": principal_id,
                "resourceId": resource_service_principal_id,
                "appRoleId": app_role_id,
            },
        )

    # -------------------------------------------------------------------------
    # Federated identity credentials
    # -------------------------------------------------------------------------

    def list_federated_credentials(self, application_object_id: str) -> list[dict[str, Any]]:
        return self._rest.list(f"applications/{application_object_id}/federatedIdentityCredentials")

    def create_federated_credential(
        self,
        application_object_id: str,
        credential: dict[str, Any],
    ) -> dict[str, Any]:
        return self._rest.post(
            f"applications/{application_object_id}/federatedIdentityCredentials",
            credential,
        )

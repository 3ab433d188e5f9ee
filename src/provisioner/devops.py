"""CI/CD platform client for projects and service connections.

Service connections (service endpoints) are created with the federated
identity scheme, so the platform stores no secret. The platform generates the
OIDC issuer for the connection at creation time; it is read back from the
created endpoint and never constructed client-side.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any
from urllib.parse import quote

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ResourceNotFoundError

from .config import (
    ARM_ENDPOINT_URL,
    DEFAULT_DEVOPS_API_VERSION,
    DEFAULT_DEVOPS_BASE_URL,
    DEVOPS_TOKEN_SCOPE,
    FEDERATION_SCHEME,
)
from .credentials import log_audit_event
from .errors import EndpointConflictError, ProjectNotFoundError
from .models import ProjectReference, ServiceEndpoint
from .rest import RestClient, SupportsSendRequest

logger = logging.getLogger(__name__)

ENDPOINT_TYPE = "AzureRM"
ENDPOINT_ENVIRONMENT = "AzureCloud"


class ConnectionState(str, Enum):
    """Progress of one service connection through provisioning."""

    REQUESTED = "Requested"
    PROJECT_RESOLVED = "ProjectResolved"
    CREATED = "Created"
    ISSUER_RETRIEVED = "IssuerRetrieved"
    FEDERATION_BOUND = "FederationBound"


def endpoint_definition(
    name: str,
    subscription_id: str,
    subscription_name: str,
    tenant_id: str,
    service_principal_id: str,
    project: ProjectReference,
) -> dict[str, Any]:
    """Request body for a subscription-scoped, federated service connection."""
    return {
        "data": {
            "subscriptionId": subscription_id,
            "subscriptionName": subscription_name,
            "environment": ENDPOINT_ENVIRONMENT,
            "scopeLevel": "Subscription",
            "creationMode": "Manual",
        },
        "name": name,
        "type": ENDPOINT_TYPE,
        "url": ARM_ENDPOINT_URL,
        "authorization": {
            "parameters": {
                "tenantid": tenant_id,
                "serviceprincipalid": service_principal_id,
            },
            "scheme": FEDERATION_SCHEME,
        },
        "isShared": False,
        "isReady": True,
        "serviceEndpointProjectReferences": [
            {
                "projectReference": {"id": project.id, "name": project.name},
                "name": name,
            }
        ],
    }


class DevOpsClient:
    """REST client for one CI/CD platform host.

    Every request carries a bearer token for the platform's fixed resource id.
    """

    def __init__(
        self,
        credential: TokenCredential | None,
        base_url: str = DEFAULT_DEVOPS_BASE_URL,
        api_version: str = DEFAULT_DEVOPS_API_VERSION,
        *,
        pipeline_client: SupportsSendRequest | None = None,
    ) -> None:
        self._rest = RestClient(
            credential, DEVOPS_TOKEN_SCOPE, base_url, pipeline_client=pipeline_client
        )
        self._api_version = api_version

    def _params(self, **extra: str) -> dict[str, str]:
        return {**extra, "api-version": self._api_version}

    @staticmethod
    def _segment(value: str) -> str:
        return quote(value, safe="")

    def resolve_project(self, org: str, project: str) -> ProjectReference:
        """Look up a project by name (or id).

        Raises:
            ProjectNotFoundError: The project does not exist in the organization.
        """
        path = f"{self._segment(org)}/_apis/projects/{self._segment(project)}"
        try:
            data = self._rest.get(path, params=self._params())
        except ResourceNotFoundError as e:
            raise ProjectNotFoundError(
                f"Project '{project}' not found in organization '{org}'"
            ) from e

        if not data or not data.get("id"):
            raise ProjectNotFoundError(f"Project '{project}' not found in organization '{org}'")

        reference = ProjectReference(id=data["id"], name=data.get("name") or project)
        logger.info(f"Resolved project '{org}/{reference.name}'", extra={"project_id": reference.id})
        return reference

    def find_endpoint(self, org: str, project: str, name: str) -> ServiceEndpoint | None:
        """Service connection named ``name`` in the project, or None.

        Raises:
            EndpointConflictError: Several connections match the name.
        """
        path = f"{self._segment(org)}/{self._segment(project)}/_apis/serviceendpoint/endpoints"
        # Failed connections are hidden from name lookups unless asked for
        data = self._rest.get(path, params=self._params(endpointNames=name, includeFailed="true")) or {}
        matches = [
            item for item in data.get("value") or [] if (item.get("name") or "").lower() == name.lower()
        ]
        if len(matches) > 1:
            raise EndpointConflictError(
                f"{len(matches)} service connections are named '{name}' in '{org}/{project}'"
            )
        return ServiceEndpoint.from_api(matches[0]) if matches else None

    def create_endpoint(
        self,
        org: str,
        project: str,
        name: str,
        subscription_id: str,
        subscription_name: str,
        tenant_id: str,
        service_principal_id: str,
        project_ref: ProjectReference | None = None,
    ) -> ServiceEndpoint:
        """Create a federated service connection scoped to one subscription.

        No existence check happens here; callers look the name up first.

        Args:
            org: Organization name.
            project: Project name.
            name: Connection name.
            subscription_id: Subscription the connection targets.
            subscription_name: Subscription display name.
            tenant_id: Directory tenant of the workload identity.
            service_principal_id: Application (client) id of the workload identity.
            project_ref: Already resolved project; looked up when omitted.

        Returns:
            The created endpoint as reported by the platform.
        """
        if project_ref is None:
            project_ref = self.resolve_project(org, project)

        body = endpoint_definition(
            name, subscription_id, subscription_name, tenant_id, service_principal_id, project_ref
        )
        data = self._rest.post(
            f"{self._segment(org)}/_apis/serviceendpoint/endpoints", body, params=self._params()
        )
        endpoint = ServiceEndpoint.from_api(data or {}, project_ref)

        log_audit_event(
            "service_connection",
            f"{org}/{project_ref.name}/{name}",
            "create",
            endpoint_id=endpoint.id,
            subscription_id=subscription_id,
        )
        logger.info(f"Created service connection '{name}' in '{org}/{project_ref.name}'")
        return endpoint

    def get_endpoint(self, org: str, project: str, endpoint_id: str, name: str) -> ServiceEndpoint:
        """Read back a service connection, including its federation issuer.

        Raises:
            ResourceNotFoundError: The endpoint does not exist.
            EndpointConflictError: The id resolves to a connection with another name.
        """
        path = (
            f"{self._segment(org)}/{self._segment(project)}"
            f"/_apis/serviceendpoint/endpoints/{self._segment(endpoint_id)}"
        )
        data = self._rest.get(path, params=self._params())
        # The platform answers an unknown id with 200 and an empty body
        if not data:
            raise ResourceNotFoundError(
                message=f"Service connection '{name}' ({endpoint_id}) not found in '{org}/{project}'"
            )

        endpoint = ServiceEndpoint.from_api(data)
        if endpoint.name and endpoint.name.lower() != name.lower():
            raise EndpointConflictError(
                f"Service connection {endpoint_id} is named '{endpoint.name}', expected '{name}'"
            )
        return endpoint

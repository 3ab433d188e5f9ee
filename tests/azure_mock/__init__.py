"""Azure API Mock for Integration Testing.

In-memory implementations of the platforms the provisioner talks to, so the
whole workflow runs without Azure connectivity.

Key Features:
- Directory graph simulation (applications, service principals, app role
  assignments, federated identity credentials) behind the HTTP pipeline seam
- CI/CD organization simulation (projects, service endpoints, platform
  generated federation issuer) behind the HTTP pipeline seam
- Authorization and subscription client simulation
- Error injection for testing failure scenarios

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as ctx:
        report = ctx.provisioner().run(load_entries(path))

        assert ctx.authorization.create_calls
"""

from .authorization import (
    OWNER_ROLE_ID,
    MockAuthorizationClient,
    MockAuthorizationState,
    MockRoleAssignment,
    MockRoleDefinition,
)
from .context import (
    DEV_SUBSCRIPTION_ID,
    PROD_SUBSCRIPTION_ID,
    MockAzureContext,
    mock_azure_context,
)
from .credential import MockCliCredential, create_mock_credential
from .devops import DEVOPS_BASE_URL, MockDevOpsOrganization
from .graph import DIRECTORY_READ_ALL_ID, GRAPH_BASE_URL, MOCK_TENANT_ID, MS_GRAPH_APP_ID, MockDirectory
from .http import (
    MockHttpResponse,
    MockPipeline,
    ScriptedService,
    devops_error,
    graph_error,
    json_response,
)
from .subscriptions import MockSubscription, MockSubscriptionClient

__all__ = [
    "DEVOPS_BASE_URL",
    "DEV_SUBSCRIPTION_ID",
    "DIRECTORY_READ_ALL_ID",
    "GRAPH_BASE_URL",
    "MOCK_TENANT_ID",
    "MS_GRAPH_APP_ID",
    "OWNER_ROLE_ID",
    "PROD_SUBSCRIPTION_ID",
    "MockAuthorizationClient",
    "MockAuthorizationState",
    "MockAzureContext",
    "MockCliCredential",
    "MockDevOpsOrganization",
    "MockDirectory",
    "MockHttpResponse",
    "MockPipeline",
    "MockRoleAssignment",
    "MockRoleDefinition",
    "MockSubscription",
    "MockSubscriptionClient",
    "ScriptedService",
    "create_mock_credential",
    "devops_error",
    "graph_error",
    "json_response",
    "mock_azure_context",
]

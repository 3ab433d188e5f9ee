"""Tests for the CI/CD platform client."""

from __future__ import annotations

import pytest
from azure.core.exceptions import ClientAuthenticationError, ResourceNotFoundError

from azure_mock import MockDevOpsOrganization, MockPipeline, devops_error
from provisioner.devops import DevOpsClient, endpoint_definition
from provisioner.errors import EndpointConflictError, ProjectNotFoundError
from provisioner.models import ProjectReference


class TestEndpointDefinition:
    def test_federated_subscription_scope(self) -> None:
        body = endpoint_definition(
            "conn-app-Prod-devops",
            "sub-id",
            "Prod",
            "tenant",
            "client",
            ProjectReference("p-1", "infra"),
        )

        assert body["authorization"]["scheme"] == "WorkloadIdentityFederation"
        assert body["authorization"]["parameters"] == {
            "tenantid": "tenant",
            "serviceprincipalid": "client",
        }
        assert body["data"]["scopeLevel"] == "Subscription"
        assert body["data"]["subscriptionId"] == "sub-id"
        assert body["serviceEndpointProjectReferences"][0]["projectReference"]["id"] == "p-1"


class TestResolveProject:
    """Tests for project lookup."""

    def test_found(
        self,
        devops: DevOpsClient,
        organization: MockDevOpsOrganization,
        devops_pipeline: MockPipeline,
    ) -> None:
        project = devops.resolve_project("contoso", "infra")

        assert project == ProjectReference(organization.projects["infra"]["id"], "infra")
        assert devops_pipeline.requests[0].query["api-version"] == "7.1"

    def test_missing(self, devops: DevOpsClient) -> None:
        with pytest.raises(ProjectNotFoundError) as exc_info:
            devops.resolve_project("contoso", "payments")
        assert "payments" in str(exc_info.value)

    def test_project_name_with_space_is_encoded(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization
    ) -> None:
        organization.add_project("Platform Infra")

        assert devops.resolve_project("contoso", "Platform Infra").name == "Platform Infra"

    def test_rejected_token(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization
    ) -> None:
        organization.fail(
            "GET",
            r"contoso/_apis/projects/.*",
            devops_error(401, "UnauthorizedRequestException", "TF400813: not authorized"),
        )
        with pytest.raises(ClientAuthenticationError):
            devops.resolve_project("contoso", "infra")


class TestEndpoints:
    """Tests for service endpoint lookup, creation and read-back."""

    def test_find_absent(self, devops: DevOpsClient) -> None:
        assert devops.find_endpoint("contoso", "infra", "conn-app-Prod-devops") is None

    def test_find_is_case_insensitive(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization
    ) -> None:
        seeded = organization.add_endpoint("infra", "conn-app-Prod-devops", service_principal_id="client")

        found = devops.find_endpoint("contoso", "infra", "CONN-app-prod-devops")

        assert found is not None
        assert found.id == seeded["id"]
        assert found.service_principal_id == "client"

    def test_find_includes_failed_connections(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization, devops_pipeline: MockPipeline
    ) -> None:
        seeded = organization.add_endpoint("infra", "conn-app-Prod-devops", failed=True)

        found = devops.find_endpoint("contoso", "infra", "conn-app-Prod-devops")

        assert devops_pipeline.requests[-1].query["includeFailed"] == "true"
        assert found is not None
        assert found.id == seeded["id"]
        assert found.failed

    def test_find_ambiguous(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization
    ) -> None:
        organization.add_endpoint("infra", "conn-app-Prod-devops")
        organization.add_endpoint("infra", "conn-app-Prod-devops")

        with pytest.raises(EndpointConflictError):
            devops.find_endpoint("contoso", "infra", "conn-app-Prod-devops")

    def test_create_then_read_back_issuer(
        self,
        devops: DevOpsClient,
        organization: MockDevOpsOrganization,
        devops_pipeline: MockPipeline,
    ) -> None:
        """Test that the issuer only appears on the read-back."""
        created = devops.create_endpoint(
            "contoso", "infra", "conn-app-Prod-devops", "sub-id", "Prod", "tenant", "client"
        )

        assert created.issuer is None
        assert created.project_reference is not None
        assert created.project_reference.name == "infra"
        assert len(devops_pipeline.calls("POST")) == 1

        fetched = devops.get_endpoint("contoso", "infra", created.id, "conn-app-Prod-devops")

        assert fetched.issuer == organization.issuer
        assert fetched.subject == "sc://contoso/infra/conn-app-Prod-devops"

    def test_create_with_resolved_project_skips_lookup(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization, devops_pipeline: MockPipeline
    ) -> None:
        project = ProjectReference(organization.projects["infra"]["id"], "infra")

        devops.create_endpoint(
            "contoso", "infra", "conn", "sub-id", "Prod", "tenant", "client", project_ref=project
        )

        assert [r.method for r in devops_pipeline.requests] == ["POST"]

    def test_get_unknown_endpoint(self, devops: DevOpsClient) -> None:
        with pytest.raises(ResourceNotFoundError):
            devops.get_endpoint("contoso", "infra", "00000000-0000-0000-0000-000000000000", "conn")

    def test_get_endpoint_with_other_name(
        self, devops: DevOpsClient, organization: MockDevOpsOrganization
    ) -> None:
        seeded = organization.add_endpoint("infra", "conn-other")

        with pytest.raises(EndpointConflictError):
            devops.get_endpoint("contoso", "infra", seeded["id"], "conn-app-Prod-devops")

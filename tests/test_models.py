"""Tests for provisioning entry models and naming conventions."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from provisioner.config import FEDERATION_AUDIENCE
from provisioner.models import (
    DIRECTORY_READ_ALL,
    ApiPermission,
    FederatedCredential,
    ProjectReference,
    ProvisioningEntry,
    ServiceEndpoint,
    SubscriptionContext,
    connection_name,
    federated_credential_name,
    federation_subject,
    identity_display_name,
)


class TestNamingConventions:
    """Tests for derived names."""

    def test_identity_name(self) -> None:
        assert identity_display_name("Prod") == "app-Prod-devops"

    def test_connection_name(self) -> None:
        assert connection_name("app-Prod-devops") == "conn-app-Prod-devops"

    def test_federation_subject(self) -> None:
        """Test the subject matches the service connection convention."""
        assert (
            federation_subject("contoso", "infra", "conn-app-Prod-devops")
            == "sc://contoso/infra/conn-app-Prod-devops"
        )

    def test_federated_credential_name_is_sanitized(self) -> None:
        """Test that characters outside [A-Za-z0-9_-] are replaced."""
        name = federated_credential_name("contoso", "Platform Infra", "conn-app-Prod.EU-devops")
        assert name == "contoso-Platform-Infra-conn-app-Prod-EU-devops"

    def test_federated_credential_name_is_truncated(self) -> None:
        name = federated_credential_name("contoso", "p" * 200, "conn")
        assert len(name) == 120


class TestProvisioningEntry:
    """Tests for ProvisioningEntry validation."""

    def test_entry_without_connection(self) -> None:
        """Test that org and project may be omitted without a connection."""
        entry = ProvisioningEntry.model_validate(
            {"SubscriptionName": "Dev", "CreateServiceConnection": "false"}
        )

        assert entry.subscription_name == "Dev"
        assert entry.create_service_connection is False
        assert entry.org_name == ""
        assert entry.identity_name == "app-Dev-devops"

    def test_entry_with_connection(self) -> None:
        entry = ProvisioningEntry.model_validate(
            {
                "SubscriptionName": "Prod",
                "CreateServiceConnection": "true",
                "OrgName": "contoso",
                "ProjectName": "infra",
            }
        )

        assert entry.create_service_connection is True
        assert entry.connection_name == "conn-app-Prod-devops"
        assert entry.federation_subject == "sc://contoso/infra/conn-app-Prod-devops"
        assert entry.federated_credential_name == "contoso-infra-conn-app-Prod-devops"

    def test_snake_case_fields_accepted(self) -> None:
        entry = ProvisioningEntry.model_validate(
            {"subscription_name": "Dev", "create_service_connection": False}
        )
        assert entry.subscription_name == "Dev"

    def test_whitespace_is_stripped(self) -> None:
        entry = ProvisioningEntry.model_validate(
            {"SubscriptionName": "  Dev ", "CreateServiceConnection": False}
        )
        assert entry.identity_name == "app-Dev-devops"

    def test_missing_field(self) -> None:
        """Test that CreateServiceConnection is required."""
        with pytest.raises(ValidationError) as exc_info:
            ProvisioningEntry.model_validate({"SubscriptionName": "Dev"})
        assert "CreateServiceConnection" in str(exc_info.value)

    def test_wrong_type(self) -> None:
        with pytest.raises(ValidationError):
            ProvisioningEntry.model_validate(
                {"SubscriptionName": "Dev", "CreateServiceConnection": "maybe"}
            )

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ProvisioningEntry.model_validate(
                {"SubscriptionName": "Dev", "CreateServiceConnection": False, "Owner": "me"}
            )
        assert "Owner" in str(exc_info.value)

    def test_connection_requires_org_and_project(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ProvisioningEntry.model_validate(
                {"SubscriptionName": "Prod", "CreateServiceConnection": True, "OrgName": "contoso"}
            )
        assert "ProjectName" in str(exc_info.value)

    def test_blank_subscription_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ProvisioningEntry.model_validate(
                {"SubscriptionName": "   ", "CreateServiceConnection": False}
            )

    def test_invalid_org_name(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            ProvisioningEntry.model_validate(
                {
                    "SubscriptionName": "Prod",
                    "CreateServiceConnection": True,
                    "OrgName": "contoso/evil",
                    "ProjectName": "infra",
                }
            )
        assert "OrgName" in str(exc_info.value)

    def test_entry_is_immutable(self) -> None:
        entry = ProvisioningEntry.model_validate(
            {"SubscriptionName": "Dev", "CreateServiceConnection": False}
        )
        with pytest.raises(ValidationError):
            entry.subscription_name = "Prod"  # type: ignore[misc]


class TestPlatformRecords:
    """Tests for platform record helpers."""

    def test_subscription_scope(self) -> None:
        context = SubscriptionContext("aaaa", "Dev", "tenant")
        assert context.scope == "/subscriptions/aaaa"

    def test_permission_identity_ignores_label(self) -> None:
        """Test that permissions compare by api, permission and type only."""
        unlabeled = ApiPermission(DIRECTORY_READ_ALL.api_id, DIRECTORY_READ_ALL.permission_id)
        assert unlabeled == DIRECTORY_READ_ALL
        assert len({unlabeled, DIRECTORY_READ_ALL}) == 1
        assert str(DIRECTORY_READ_ALL) == "Directory.Read.All"

    def test_permission_type_matters(self) -> None:
        delegated = ApiPermission(DIRECTORY_READ_ALL.api_id, DIRECTORY_READ_ALL.permission_id, "Scope")
        assert delegated != DIRECTORY_READ_ALL

    def test_endpoint_from_api(self) -> None:
        endpoint = ServiceEndpoint.from_api(
            {
                "id": "ep-1",
                "name": "conn-app-Prod-devops",
                "isReady": True,
                "authorization": {
                    "scheme": "WorkloadIdentityFederation",
                    "parameters": {
                        "tenantid": "tenant",
                        "serviceprincipalid": "client",
                        "workloadIdentityFederationIssuer": "https://vstoken.dev.azure.com/org",
                        "workloadIdentityFederationSubject": "sc://contoso/infra/conn-app-Prod-devops",
                    },
                },
                "serviceEndpointProjectReferences": [
                    {"projectReference": {"id": "p-1", "name": "infra"}, "name": "conn-app-Prod-devops"}
                ],
            }
        )

        assert endpoint.scheme == "WorkloadIdentityFederation"
        assert endpoint.issuer == "https://vstoken.dev.azure.com/org"
        assert endpoint.subject == "sc://contoso/infra/conn-app-Prod-devops"
        assert endpoint.service_principal_id == "client"
        assert endpoint.project_reference == ProjectReference("p-1", "infra")

    def test_endpoint_without_issuer(self) -> None:
        endpoint = ServiceEndpoint.from_api(
            {"id": "ep-1", "name": "c", "authorization": {"scheme": "WorkloadIdentityFederation"}}
        )
        assert endpoint.issuer is None

    def test_federated_credential_to_api(self) -> None:
        credential = FederatedCredential(name="n", issuer="https://issuer", subject="sc://a/b/c")
        body = credential.to_api()

        assert body["audiences"] == [FEDERATION_AUDIENCE]
        assert "description" not in body

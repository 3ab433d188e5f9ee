"""Models for provisioning entries and the platform records they produce.

Provisioning entries are pydantic models so the input file is validated at
the boundary (fail fast, fail loudly). Platform records returned by the
clients are plain dataclasses.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import (
    CONNECTION_NAME_TEMPLATE,
    DIRECTORY_READ_ALL_ROLE_ID,
    FEDERATION_AUDIENCE,
    IDENTITY_NAME_TEMPLATE,
    MAX_FEDERATED_CREDENTIAL_NAME_LENGTH,
    MS_GRAPH_API_ID,
    SUBJECT_TEMPLATE,
)

# Organization names: letters, digits and hyphens, no leading/trailing hyphen
VALID_ORG_NAME_PATTERN = r"^[A-Za-z0-9]([A-Za-z0-9-]{0,48}[A-Za-z0-9])?$"
FEDERATED_CREDENTIAL_NAME_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


# =============================================================================
# Naming conventions
# =============================================================================


def identity_display_name(subscription_name: str) -> str:
    """Display name of the workload identity for a subscription."""
    return IDENTITY_NAME_TEMPLATE.format(subscription_name=subscription_name)


def connection_name(identity_name: str) -> str:
    """Name of the service connection bound to a workload identity."""
    return CONNECTION_NAME_TEMPLATE.format(identity_name=identity_name)


def federation_subject(org: str, project: str, connection: str) -> str:
    """Subject the CI/CD platform embeds in tokens for a service connection.

    Must match the platform's convention exactly; a mismatch only surfaces
    when a pipeline tries to exchange its token.
    """
    return SUBJECT_TEMPLATE.format(org=org, project=project, connection_name=connection)


def federated_credential_name(org: str, project: str, connection: str) -> str:
    """Directory-safe name for the federated credential record."""
    raw = f"{org}-{project}-{connection}"
    safe = FEDERATED_CREDENTIAL_NAME_INVALID_CHARS.sub("-", raw)
    return safe[:MAX_FEDERATED_CREDENTIAL_NAME_LENGTH]


# =============================================================================
# Input entries
# =============================================================================


class ProvisioningEntry(BaseModel):
    """One subscription to bootstrap.

    Field names follow the input file (PascalCase); snake_case is accepted
    as well. Unknown keys are rejected.
    """

    model_config = {"extra": "forbid", "populate_by_name": True, "frozen": True}

    subscription_name: Annotated[str, Field(min_length=1, max_length=128, alias="SubscriptionName")]
    create_service_connection: bool = Field(alias="CreateServiceConnection")
    org_name: str = Field("", alias="OrgName")
    project_name: str = Field("", alias="ProjectName")

    @field_validator("subscription_name", "org_name", "project_name")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    @field_validator("org_name")
    @classmethod
    def validate_org_name(cls, v: str) -> str:
        if v and not re.match(VALID_ORG_NAME_PATTERN, v):
            raise ValueError(f"OrgName is not a valid organization name: '{v}'")
        return v

    @model_validator(mode="after")
    def require_target_for_connection(self) -> ProvisioningEntry:
        if not self.subscription_name:
            raise ValueError("SubscriptionName must not be blank")
        if self.create_service_connection:
            missing = [
                alias
                for alias, value in (("OrgName", self.org_name), ("ProjectName", self.project_name))
                if not value
            ]
            if missing:
                raise ValueError(
                    f"{' and '.join(missing)} required when CreateServiceConnection is true"
                )
        return self

    @property
    def identity_name(self) -> str:
        return identity_display_name(self.subscription_name)

    @property
    def connection_name(self) -> str:
        return connection_name(self.identity_name)

    @property
    def federation_subject(self) -> str:
        return federation_subject(self.org_name, self.project_name, self.connection_name)

    @property
    def federated_credential_name(self) -> str:
        return federated_credential_name(self.org_name, self.project_name, self.connection_name)


# =============================================================================
# Platform records
# =============================================================================


@dataclass(frozen=True)
class SubscriptionContext:
    """Explicit subscription scope threaded through every per-entry call.

    Replaces an ambient "active subscription" selection: nothing is read from
    or written to a session-wide default.
    """

    subscription_id: str
    display_name: str
    tenant_id: str

    @property
    def scope(self) -> str:
        return f"/subscriptions/{self.subscription_id}"


@dataclass(frozen=True)
class WorkloadIdentity:
    """Application registration plus its service principal."""

    display_name: str
    application_id: str
    application_object_id: str
    service_principal_id: str
    tenant_id: str


@dataclass(frozen=True)
class ApiPermission:
    """An API permission on an application registration.

    Grants form a set keyed by (api_id, permission_id, type); the label is
    informational only.
    """

    api_id: str
    permission_id: str
    type: str = "Role"
    label: str = field(default="", compare=False)

    def __str__(self) -> str:
        return self.label or f"{self.api_id}/{self.permission_id}={self.type}"


DIRECTORY_READ_ALL = ApiPermission(
    api_id=MS_GRAPH_API_ID,
    permission_id=DIRECTORY_READ_ALL_ROLE_ID,
    type="Role",
    label="Directory.Read.All",
)


@dataclass(frozen=True)
class ProjectReference:
    """CI/CD project identity."""

    id: str
    name: str


@dataclass
class ServiceEndpoint:
    """A service connection as reported by the CI/CD platform."""

    id: str
    name: str
    scheme: str
    project_reference: ProjectReference | None = None
    tenant_id: str | None = None
    service_principal_id: str | None = None
    issuer: str | None = None
    subject: str | None = None
    is_ready: bool | None = None
    operation_state: str | None = None

    @property
    def failed(self) -> bool:
        return (self.operation_state or "").lower() == "failed"

    @classmethod
    def from_api(cls, data: dict[str, Any], project: ProjectReference | None = None) -> ServiceEndpoint:
        """Build from a serviceendpoint REST payload."""
        authorization = data.get("authorization") or {}
        parameters = authorization.get("parameters") or {}
        if project is None:
            for reference in data.get("serviceEndpointProjectReferences") or []:
                project_data = reference.get("projectReference") or {}
                if project_data.get("id"):
                    project = ProjectReference(id=project_data["id"], name=project_data.get("name", ""))
                    break
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            scheme=authorization.get("scheme", ""),
            project_reference=project,
            tenant_id=parameters.get("tenantid"),
            service_principal_id=parameters.get("serviceprincipalid"),
            issuer=parameters.get("workloadIdentityFederationIssuer") or None,
            subject=parameters.get("workloadIdentityFederationSubject") or None,
            is_ready=data.get("isReady"),
            operation_state=(data.get("operationStatus") or {}).get("state"),
        )


@dataclass(frozen=True)
class FederatedCredential:
    """Trust record binding an external token issuer to an application."""

    name: str
    issuer: str
    subject: str
    audiences: tuple[str, ...] = (FEDERATION_AUDIENCE,)
    id: str | None = field(default=None, compare=False)
    description: str | None = field(default=None, compare=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> FederatedCredential:
        return cls(
            name=data.get("name", ""),
            issuer=data.get("issuer", ""),
            subject=data.get("subject", ""),
            audiences=tuple(data.get("audiences") or ()),
            id=data.get("id"),
            description=data.get("description"),
        )

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "name": self.name,
            "issuer": self.issuer,
            "subject": self.subject,
            "audiences": list(self.audiences),
        }
        if self.description:
            body["description"] = self.description
        return body

"""Per-subscription provisioning workflow.

For every entry, strictly in order:
1. Resolve the subscription into an explicit SubscriptionContext
2. Resolve or create the workload identity, then strip its passwords
3. Ensure the Owner role assignment at subscription scope
4. Ensure the directory-read API permission and request admin consent
5. Emit the identity summary
6. Optionally create the federated service connection and bind the
   federated credential

Every step checks for existing state first, so a re-run reuses what an
earlier run created. A fatal error aborts only the current entry; nothing is
rolled back and nothing is retried.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, HttpResponseError

from .config import FEDERATION_AUDIENCE, FEDERATION_SCHEME, ROLE_NAME, Config
from .devops import ConnectionState, DevOpsClient
from .entries import EntryLoadResult
from .errors import (
    EndpointConflictError,
    IssuerNotAvailableError,
    PermissionGrantError,
    ProvisioningError,
)
from .federation import FederatedCredentialBinder
from .graph import GraphClient
from .identity import IdentityProvider
from .models import (
    DIRECTORY_READ_ALL,
    ApiPermission,
    ProvisioningEntry,
    SubscriptionContext,
    WorkloadIdentity,
)
from .permissions import PermissionGrantor
from .role_assignments import RoleAssigner
from .subscriptions import SubscriptionResolver

logger = logging.getLogger(__name__)

REQUESTED_PERMISSIONS: frozenset[ApiPermission] = frozenset({DIRECTORY_READ_ALL})

SUBJECT_RISK_CAVEAT = (
    "Federation subject '{subject}' is only verified when a pipeline exchanges its token"
)


class StepStatus(str, Enum):
    """Outcome of one workflow step."""

    CREATED = "created"
    REUSED = "reused"
    SKIPPED = "skipped"
    DONE = "done"
    UNVERIFIED = "unverified"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of a single step for one entry."""

    name: str
    status: StepStatus
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "status": self.status.value, "detail": self.detail}


@dataclass
class EntryResult:
    """Structured outcome of provisioning one entry."""

    index: int
    subscription_name: str
    steps: list[StepResult] = field(default_factory=list)
    caveats: list[str] = field(default_factory=list)
    subscription: SubscriptionContext | None = None
    identity: WorkloadIdentity | None = None
    connection_state: ConnectionState | None = None
    endpoint_id: str | None = None
    issuer: str | None = None
    federation_subject: str | None = None
    error: str | None = None
    failed_step: str | None = None
    duration_seconds: float = 0.0
    current_step: str = field(default="", repr=False)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def skipped_steps(self) -> list[str]:
        return [s.name for s in self.steps if s.status == StepStatus.SKIPPED]

    def begin(self, name: str) -> str:
        """Mark ``name`` as the step in progress; failures are attributed to it."""
        self.current_step = name
        return name

    def record(self, name: str, status: StepStatus, detail: str = "") -> StepResult:
        step = StepResult(name=name, status=status, detail=detail)
        self.steps.append(step)
        return step

    def fail(self, step: str, error: str) -> None:
        self.error = error
        self.failed_step = step
        self.record(step, StepStatus.FAILED, error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "subscriptionName": self.subscription_name,
            "success": self.success,
            "steps": [s.to_dict() for s in self.steps],
            "skippedSteps": self.skipped_steps,
            "caveats": list(self.caveats),
            "error": self.error,
            "failedStep": self.failed_step,
            "durationSeconds": round(self.duration_seconds, 3),
        }
        if self.subscription is not None:
            data["subscriptionId"] = self.subscription.subscription_id
            data["tenantId"] = self.subscription.tenant_id
        if self.identity is not None:
            data["identity"] = {
                "displayName": self.identity.display_name,
                "applicationId": self.identity.application_id,
                "applicationObjectId": self.identity.application_object_id,
                "servicePrincipalId": self.identity.service_principal_id,
                "tenantId": self.identity.tenant_id,
            }
        if self.connection_state is not None:
            data["connection"] = {
                "state": self.connection_state.value,
                "endpointId": self.endpoint_id,
                "issuer": self.issuer,
                "subject": self.federation_subject,
            }
        return data


@dataclass
class RunReport:
    """Outcome of one run over all entries."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    entries: list[EntryResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(e.success for e in self.entries)

    @property
    def succeeded(self) -> int:
        return sum(1 for e in self.entries if e.success)

    @property
    def failed(self) -> int:
        return len(self.entries) - self.succeeded

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "startTime": self.start_time.isoformat().replace("+00:00", "Z"),
            "endTime": self.end_time.isoformat().replace("+00:00", "Z") if self.end_time else None,
            "durationSeconds": round(self.duration_seconds, 3),
            "success": self.success,
            "total": len(self.entries),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "entries": [e.to_dict() for e in self.entries],
        }

    def log_summary(self) -> None:
        for entry in self.entries:
            if entry.success:
                logger.info(
                    f"Entry '{entry.subscription_name}': ok",
                    extra={"skipped_steps": entry.skipped_steps, "caveats": len(entry.caveats)},
                )
            else:
                logger.error(
                    f"Entry '{entry.subscription_name}': failed at {entry.failed_step}",
                    extra={"error": entry.error},
                )
            for caveat in entry.caveats:
                logger.warning(f"Entry '{entry.subscription_name}': {caveat}")

        logger.info(
            f"Provisioning complete: {self.succeeded} succeeded, {self.failed} failed, "
            f"duration={self.duration_seconds:.1f}s"
        )


class Provisioner:
    """Drives the provisioning workflow over a list of entries."""

    def __init__(
        self,
        config: Config,
        *,
        subscriptions: SubscriptionResolver,
        graph: GraphClient,
        devops: DevOpsClient,
        role_assigner: RoleAssigner,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the provisioner.

        Args:
            config: Run configuration.
            subscriptions: Resolves subscription names into contexts.
            graph: Directory graph client shared by the identity steps.
            devops: CI/CD platform client.
            role_assigner: Role assignment client.
            sleep: Delay function used before admin consent.
        """
        self._config = config
        self._subscriptions = subscriptions
        self._identities = IdentityProvider(graph)
        self._role_assigner = role_assigner
        self._permissions = PermissionGrantor(
            graph,
            consent_delay_seconds=config.admin_consent_delay_seconds,
            sleep=sleep,
        )
        self._devops = devops
        self._federation = FederatedCredentialBinder(graph)

    @classmethod
    def from_credential(
        cls,
        config: Config,
        credential: TokenCredential,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Provisioner:
        """Build a provisioner talking to the real platforms."""
        return cls(
            config,
            subscriptions=SubscriptionResolver(credential),
            graph=GraphClient(credential, config.graph_base_url),
            devops=DevOpsClient(credential, config.devops_base_url, config.devops_api_version),
            role_assigner=RoleAssigner(credential),
            sleep=sleep,
        )

    def run(self, load_results: Iterable[EntryLoadResult]) -> RunReport:
        """Provision every entry in order. Failures never cross entries."""
        report = RunReport()

        for loaded in load_results:
            if loaded.entry is None:
                result = EntryResult(index=loaded.index, subscription_name=loaded.label)
                result.fail("validate_entry", f"Invalid entry: {loaded.error}")
            else:
                result = self.provision_entry(loaded.entry, loaded.index)
            report.entries.append(result)

        report.end_time = datetime.now(UTC)
        report.log_summary()
        return report

    def provision_entry(self, entry: ProvisioningEntry, index: int = 0) -> EntryResult:
        """Provision one entry, converting any failure into the result."""
        result = EntryResult(index=index, subscription_name=entry.subscription_name)
        started = time.monotonic()
        logger.info(
            f"Provisioning subscription '{entry.subscription_name}'",
            extra={"entry_index": index, "create_service_connection": entry.create_service_connection},
        )

        step = result.begin("resolve_subscription")
        try:
            context = self._subscriptions.resolve(entry.subscription_name)
            result.subscription = context
            result.record(step, StepStatus.DONE, context.subscription_id)

            step = result.begin("workload_identity")
            identity, created = self._identities.resolve_or_create_identity(
                entry.identity_name, context.tenant_id
            )
            result.identity = identity
            result.record(
                step, StepStatus.CREATED if created else StepStatus.REUSED, identity.application_id
            )

            step = result.begin("strip_passwords")
            removed = self._identities.strip_password_credentials(entry.identity_name)
            result.record(step, StepStatus.DONE, f"{removed} removed")

            step = result.begin("role_assignment")
            assigned = self._role_assigner.ensure_role_assignment(
                context, identity.service_principal_id, ROLE_NAME
            )
            result.record(
                step,
                StepStatus.CREATED if assigned else StepStatus.SKIPPED,
                f"{ROLE_NAME} at {context.scope}",
            )

            result.begin("api_permissions")
            self._ensure_permissions(identity, result)

            self._emit_summary(entry, context, identity)

            step = result.begin("service_connection")
            if entry.create_service_connection:
                self._provision_connection(entry, context, identity, result)
            else:
                logger.info(
                    f"Service connection not requested for '{entry.subscription_name}', skipping"
                )
                result.record(step, StepStatus.SKIPPED, "CreateServiceConnection is false")

        except ProvisioningError as e:
            logger.error(
                f"Entry '{entry.subscription_name}' failed at {result.current_step}: {e}",
                extra={"error_type": type(e).__name__},
            )
            result.fail(result.current_step, str(e))
        except HttpResponseError as e:
            error_code = e.error.code if e.error else None
            logger.error(
                f"Entry '{entry.subscription_name}' failed at {result.current_step} "
                f"with Azure API error: {e}",
                extra={"status_code": e.status_code, "error_code": error_code},
            )
            result.fail(result.current_step, f"Azure API error ({e.status_code}): {e.message}")
        except AzureError as e:
            logger.error(
                f"Entry '{entry.subscription_name}' failed at {result.current_step} "
                f"with Azure error: {e}"
            )
            result.fail(result.current_step, f"Azure error: {e}")
        except Exception as e:
            logger.exception(
                f"Entry '{entry.subscription_name}' failed unexpectedly at {result.current_step}",
                extra={"error": str(e)},
            )
            result.fail(result.current_step, f"Unexpected error: {e}")

        result.duration_seconds = time.monotonic() - started
        return result

    def _ensure_permissions(self, identity: WorkloadIdentity, result: EntryResult) -> None:
        grant_report = self._permissions.ensure_permissions(
            identity.application_id, REQUESTED_PERMISSIONS
        )
        if grant_report.granted:
            result.record(
                "api_permissions",
                StepStatus.CREATED if grant_report.added else StepStatus.SKIPPED,
                ", ".join(
                    [f"added {p}" for p in grant_report.added]
                    + [f"present {p}" for p in grant_report.skipped]
                ),
            )

        outcome = self._permissions.grant_admin_consent(identity, grant_report.granted)
        if outcome.requested:
            result.record(
                "admin_consent",
                StepStatus.UNVERIFIED,
                f"{len(outcome.assigned)} requested, {len(outcome.already_assigned)} already assigned",
            )
            result.caveats.extend(outcome.caveats)

        if grant_report.failed:
            raise PermissionGrantError(
                f"{len(grant_report.failed)} permission(s) could not be added: "
                + "; ".join(f"{p}: {error}" for p, error in grant_report.failed.items()),
                failures={str(p): error for p, error in grant_report.failed.items()},
            )

    def _emit_summary(
        self,
        entry: ProvisioningEntry,
        context: SubscriptionContext,
        identity: WorkloadIdentity,
    ) -> None:
        logger.info(
            f"Workload identity ready for subscription '{entry.subscription_name}'",
            extra={
                "identity_name": identity.display_name,
                "application_id": identity.application_id,
                "service_principal_id": identity.service_principal_id,
                "tenant_id": identity.tenant_id or context.tenant_id,
                "subscription_id": context.subscription_id,
            },
        )

    def _provision_connection(
        self,
        entry: ProvisioningEntry,
        context: SubscriptionContext,
        identity: WorkloadIdentity,
        result: EntryResult,
    ) -> None:
        """Run the service connection state machine."""
        org, name = entry.org_name, entry.connection_name
        result.connection_state = ConnectionState.REQUESTED

        step = result.begin("resolve_project")
        project = self._devops.resolve_project(org, entry.project_name)
        result.connection_state = ConnectionState.PROJECT_RESOLVED
        result.record(step, StepStatus.DONE, project.id)

        step = result.begin("service_connection")
        endpoint = self._devops.find_endpoint(org, project.name, name)
        if endpoint is not None:
            if endpoint.failed:
                raise EndpointConflictError(
                    f"Service connection '{name}' exists in a failed state ({endpoint.id}); "
                    "delete or repair it before re-running"
                )
            if endpoint.scheme != FEDERATION_SCHEME:
                raise EndpointConflictError(
                    f"Service connection '{name}' exists with scheme '{endpoint.scheme}', "
                    f"expected '{FEDERATION_SCHEME}'"
                )
            if (
                endpoint.service_principal_id
                and endpoint.service_principal_id.lower() != identity.application_id.lower()
            ):
                raise EndpointConflictError(
                    f"Service connection '{name}' is bound to another identity "
                    f"({endpoint.service_principal_id})"
                )
            logger.warning(
                f"Service connection '{name}' already exists, reused",
                extra={"endpoint_id": endpoint.id},
            )
            result.record(step, StepStatus.REUSED, endpoint.id)
        else:
            endpoint = self._devops.create_endpoint(
                org,
                project.name,
                name,
                context.subscription_id,
                context.display_name,
                identity.tenant_id or context.tenant_id,
                identity.application_id,
                project_ref=project,
            )
            result.record(step, StepStatus.CREATED, endpoint.id)
        result.connection_state = ConnectionState.CREATED
        result.endpoint_id = endpoint.id

        step = result.begin("retrieve_issuer")
        fetched = self._devops.get_endpoint(org, project.name, endpoint.id, name)
        if not fetched.issuer:
            raise IssuerNotAvailableError(
                f"Service connection '{name}' ({endpoint.id}) did not report a federation issuer"
            )
        result.connection_state = ConnectionState.ISSUER_RETRIEVED
        result.issuer = fetched.issuer
        result.record(step, StepStatus.DONE, fetched.issuer)

        step = result.begin("federated_credential")
        subject = entry.federation_subject
        result.federation_subject = subject
        if fetched.subject and fetched.subject != subject:
            result.caveats.append(
                f"Platform reports federation subject '{fetched.subject}', "
                f"bound subject is '{subject}'"
            )

        _, created = self._federation.bind_federated_credential(
            identity.application_object_id,
            fetched.issuer,
            subject,
            FEDERATION_AUDIENCE,
            entry.federated_credential_name,
        )
        result.connection_state = ConnectionState.FEDERATION_BOUND
        result.record(step, StepStatus.CREATED if created else StepStatus.REUSED, subject)
        result.caveats.append(SUBJECT_RISK_CAVEAT.format(subject=subject))

"""API permission grants and admin consent for workload identities.

Grants are a set keyed by (api id, permission id, type). Each missing grant is
added with its own update so one rejected permission does not block the
others.

Admin consent is processed asynchronously by the directory. The workflow
waits a fixed delay before requesting it and never reports it as confirmed:
the outcome always carries an "unverified" caveat for the operator.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from azure.core.exceptions import AzureError

from .credentials import log_audit_event
from .graph import GraphClient
from .models import ApiPermission, WorkloadIdentity

logger = logging.getLogger(__name__)

CONSENT_UNVERIFIED_CAVEAT = (
    "Admin consent was requested but cannot be confirmed synchronously; "
    "verify 'Granted' status on the app registration's API permissions"
)


def _grant_key(api_id: str, permission_id: str, permission_type: str) -> tuple[str, str, str]:
    return (api_id.lower(), permission_id.lower(), permission_type)


def _permission_key(permission: ApiPermission) -> tuple[str, str, str]:
    return _grant_key(permission.api_id, permission.permission_id, permission.type)


def existing_grants(required_resource_access: list[dict[str, Any]]) -> set[tuple[str, str, str]]:
    """Grant keys currently declared on an application."""
    grants = set()
    for resource in required_resource_access:
        for access in resource.get("resourceAccess") or []:
            grants.add(_grant_key(resource["resourceAppId"], access["id"], access["type"]))
    return grants


def with_permission(
    required_resource_access: list[dict[str, Any]],
    permission: ApiPermission,
) -> list[dict[str, Any]]:
    """Return a copy of the declaration with ``permission`` added."""
    updated = copy.deepcopy(required_resource_access)
    access = {"id": permission.permission_id, "type": permission.type}
    for resource in updated:
        if resource["resourceAppId"].lower() == permission.api_id.lower():
            resource.setdefault("resourceAccess", []).append(access)
            return updated
    updated.append({"resourceAppId": permission.api_id, "resourceAccess": [access]})
    return updated


@dataclass
class PermissionGrantReport:
    """Per-permission outcome of ensure_permissions."""

    added: list[ApiPermission] = field(default_factory=list)
    skipped: list[ApiPermission] = field(default_factory=list)
    failed: dict[ApiPermission, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def granted(self) -> list[ApiPermission]:
        """Permissions now declared on the application."""
        return self.skipped + self.added


@dataclass
class ConsentOutcome:
    """Best-effort admin consent result. Never a confirmed terminal state."""

    requested: list[ApiPermission] = field(default_factory=list)
    assigned: list[ApiPermission] = field(default_factory=list)
    already_assigned: list[ApiPermission] = field(default_factory=list)
    manual: list[ApiPermission] = field(default_factory=list)
    errors: dict[ApiPermission, str] = field(default_factory=dict)
    verified: bool = False

    @property
    def caveats(self) -> list[str]:
        caveats = [CONSENT_UNVERIFIED_CAVEAT]
        for permission in self.manual:
            caveats.append(f"Delegated permission {permission} needs manual admin consent")
        for permission, error in self.errors.items():
            caveats.append(f"Admin consent for {permission} failed: {error}; grant it manually")
        return caveats


class PermissionGrantor:
    """Adds API permissions to an application and requests admin consent."""

    def __init__(
        self,
        graph: GraphClient,
        *,
        consent_delay_seconds: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._graph = graph
        self._consent_delay_seconds = consent_delay_seconds
        self._sleep = sleep

    def ensure_permissions(
        self,
        application_id: str,
        requested_permissions: Iterable[ApiPermission],
    ) -> PermissionGrantReport:
        """Add every requested permission the application does not declare yet.

        Args:
            application_id: Application (client) id.
            requested_permissions: Permissions to ensure; duplicates collapse.

        Returns:
            Report listing added, skipped (already present) and failed permissions.
        """
        report = PermissionGrantReport()
        application = self._graph.get_application(application_id)
        current = application.get("requiredResourceAccess") or []
        present = existing_grants(current)

        for permission in sorted(set(requested_permissions), key=str):
            if _permission_key(permission) in present:
                logger.info(f"Permission {permission} already present on {application_id}, skipping")
                report.skipped.append(permission)
                continue

            candidate = with_permission(current, permission)
            try:
                self._graph.set_required_resource_access(application_id, candidate)
            except AzureError as e:
                logger.error(
                    f"Failed to add permission {permission} to {application_id}: {e}",
                    extra={"application_id": application_id, "permission": str(permission)},
                )
                report.failed[permission] = str(e)
                continue

            current = candidate
            present.add(_permission_key(permission))
            report.added.append(permission)
            log_audit_event(
                "api_permission",
                application_id,
                "add",
                permission=str(permission),
            )
            logger.info(f"Added permission {permission} to {application_id}")

        return report

    def grant_admin_consent(
        self,
        identity: WorkloadIdentity,
        permissions: Iterable[ApiPermission],
    ) -> ConsentOutcome:
        """Request tenant-wide admin consent for application permissions.

        Waits the configured delay (directory replication) only when some
        application permission is not assigned yet. Failures are collected
        as caveats; none of them is raised.
        """
        outcome = ConsentOutcome(requested=sorted(set(permissions), key=str))
        if not outcome.requested:
            return outcome

        try:
            assigned: set[tuple[str, str]] | None = self._assigned_app_roles(identity)
        except AzureError as e:
            # A new service principal may not be readable before replication
            logger.info(f"App role assignments for '{identity.display_name}' not readable yet: {e}")
            assigned = None

        resource_principals: dict[str, str | None] = {}
        pending: list[tuple[ApiPermission, str]] = []

        for permission in outcome.requested:
            if permission.type != "Role":
                outcome.manual.append(permission)
                continue

            try:
                if permission.api_id not in resource_principals:
                    resource = self._graph.find_service_principal(permission.api_id)
                    resource_principals[permission.api_id] = resource["id"] if resource else None
            except AzureError as e:
                logger.warning(f"Admin consent for {permission} failed: {e}")
                outcome.errors[permission] = str(e)
                continue

            resource_id = resource_principals[permission.api_id]
            if resource_id is None:
                outcome.errors[permission] = f"API {permission.api_id} has no service principal in the tenant"
            elif assigned is not None and (resource_id.lower(), permission.permission_id.lower()) in assigned:
                outcome.already_assigned.append(permission)
            else:
                pending.append((permission, resource_id))

        if pending and self._consent_delay_seconds > 0:
            logger.info(
                f"Waiting {self._consent_delay_seconds}s for directory replication "
                "before admin consent..."
            )
            self._sleep(self._consent_delay_seconds)

        if pending and assigned is None:
            try:
                assigned = self._assigned_app_roles(identity)
            except AzureError as e:
                logger.warning(f"Could not read app role assignments for '{identity.display_name}': {e}")
                for permission, _ in pending:
                    outcome.errors[permission] = str(e)
                pending = []

        for permission, resource_id in pending:
            if assigned is not None and (resource_id.lower(), permission.permission_id.lower()) in assigned:
                outcome.already_assigned.append(permission)
                continue

            try:
                self._graph.grant_app_role(
                    resource_id, identity.service_principal_id, permission.permission_id
                )
            except AzureError as e:
                logger.warning(f"Admin consent for {permission} failed: {e}")
                outcome.errors[permission] = str(e)
                continue

            outcome.assigned.append(permission)
            log_audit_event(
                "admin_consent",
                identity.display_name,
                "grant_app_role",
                result="unverified",
                permission=str(permission),
            )

        logger.warning(
            f"Admin consent requested for '{identity.display_name}' (unverified)",
            extra={
                "assigned": [str(p) for p in outcome.assigned],
                "already_assigned": [str(p) for p in outcome.already_assigned],
                "errors": len(outcome.errors),
            },
        )
        return outcome

    def _assigned_app_roles(self, identity: WorkloadIdentity) -> set[tuple[str, str]]:
        assignments = self._graph.list_app_role_assignments(identity.service_principal_id)
        return {
            ((a.get("resourceId") or "").lower(), (a.get("appRoleId") or "").lower())
            for a in assignments
        }

"""Workload identity lookup, creation and password removal.

A workload identity is an application registration plus its service
principal, addressed by display name. Lookup always happens before create so
a re-run reuses what an earlier run created.
"""

from __future__ import annotations

import logging
from typing import Any

from .credentials import log_audit_event
from .errors import AmbiguousIdentityError
from .graph import GraphClient
from .models import WorkloadIdentity

logger = logging.getLogger(__name__)


class IdentityProvider:
    """Creates or reuses workload identities in the directory."""

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    def _find_application(self, display_name: str) -> dict[str, Any] | None:
        applications = self._graph.find_applications(display_name)
        if len(applications) > 1:
            ids = ", ".join(app.get("appId", "?") for app in applications)
            raise AmbiguousIdentityError(
                f"{len(applications)} applications are named '{display_name}' ({ids}); "
                "remove the duplicates before re-running"
            )
        return applications[0] if applications else None

    def resolve_or_create_identity(
        self,
        display_name: str,
        tenant_id: str = "",
    ) -> tuple[WorkloadIdentity, bool]:
        """Return the identity named ``display_name``, creating it when absent.

        An existing identity is reused with a warning, never recreated. An
        application that exists without a service principal gets one.

        Args:
            display_name: Exact display name of the identity.
            tenant_id: Fallback tenant when the directory does not report one.

        Returns:
            The identity and whether a new application was created.

        Raises:
            AmbiguousIdentityError: Several applications share the name.
        """
        application = self._find_application(display_name)
        created = application is None

        if application is None:
            application = self._graph.create_application(display_name)
            log_audit_event(
                "identity",
                display_name,
                "create_application",
                application_id=application.get("appId"),
            )
            logger.info(f"Created application '{display_name}' ({application.get('appId')})")
        else:
            logger.warning(
                f"Identity '{display_name}' already exists, reused",
                extra={"application_id": application.get("appId")},
            )

        application_id = application["appId"]
        service_principal = self._graph.find_service_principal(application_id)
        if service_principal is None:
            service_principal = self._graph.create_service_principal(application_id)
            log_audit_event(
                "identity",
                display_name,
                "create_service_principal",
                service_principal_id=service_principal.get("id"),
            )
            logger.info(f"Created service principal for '{display_name}'")

        identity = WorkloadIdentity(
            display_name=display_name,
            application_id=application_id,
            application_object_id=application["id"],
            service_principal_id=service_principal["id"],
            tenant_id=service_principal.get("appOwnerOrganizationId") or tenant_id,
        )
        return identity, created

    def strip_password_credentials(self, display_name: str) -> int:
        """Remove every password credential from the identity's application.

        Returns:
            Number of passwords removed.
        """
        application = self._find_application(display_name)
        if application is None:
            logger.warning(f"Identity '{display_name}' not found, no passwords to remove")
            return 0

        passwords = application.get("passwordCredentials") or []
        for password in passwords:
            self._graph.remove_password(application["id"], password["keyId"])
            log_audit_event(
                "identity",
                display_name,
                "remove_password",
                key_id=password["keyId"],
            )

        if passwords:
            logger.info(f"Removed {len(passwords)} password credential(s) from '{display_name}'")
        else:
            logger.info(f"No password credentials on '{display_name}'")
        return len(passwords)

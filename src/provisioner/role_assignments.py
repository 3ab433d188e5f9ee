"""Subscription-scope role assignment for workload identities.

Role assignment creation is not reliably idempotent on the platform, so the
presence check always runs first. The assignment name is derived from
principal, role and scope, which makes a concurrent duplicate collide with
a 409 instead of creating a second assignment.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ResourceExistsError
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

from .config import VALID_GUID_PATTERN
from .credentials import log_audit_event
from .models import SubscriptionContext

logger = logging.getLogger(__name__)

# Well-known built-in role GUIDs (identical in every tenant)
BUILTIN_ROLES: dict[str, str] = {
    "Owner": "8e3af657-a8ff-443c-a75c-2fe8c4bcb635",
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "User Access Administrator": "18d7d88d-d35e-4fb5-a5c3-7773c20a72d9",
}

ROLE_DEFINITION_PATH = "{scope}/providers/Microsoft.Authorization/roleDefinitions/{role_id}"

AuthorizationClientFactory = Callable[[SubscriptionContext], Any]


class RoleAssigner:
    """Ensures a principal holds a role at a scope inside one subscription."""

    def __init__(
        self,
        credential: TokenCredential | None = None,
        *,
        client_factory: AuthorizationClientFactory | None = None,
    ) -> None:
        """Initialize the assigner.

        Args:
            credential: Session credential for the authorization client.
            client_factory: Builds an authorization client for a subscription
                context (tests inject an in-memory client).
        """
        if client_factory is None:
            if credential is None:
                raise ValueError("credential is required when no client_factory is given")

            def build_client(context: SubscriptionContext) -> Any:
                return AuthorizationManagementClient(
                    credential, context.subscription_id, retry_total=0
                )

            client_factory = build_client

        self._client_factory = client_factory

    def _role_definition_id(self, client: Any, role_name: str, scope: str) -> str:
        """Resolve a role name to its full role definition id at ``scope``."""
        if role_name in BUILTIN_ROLES:
            return ROLE_DEFINITION_PATH.format(scope=scope, role_id=BUILTIN_ROLES[role_name])

        if re.match(VALID_GUID_PATTERN, role_name.lower()):
            return ROLE_DEFINITION_PATH.format(scope=scope, role_id=role_name.lower())

        escaped = role_name.replace("'", "''")
        definitions = list(client.role_definitions.list(scope, filter=f"roleName eq '{escaped}'"))
        if not definitions:
            raise ValueError(f"Role '{role_name}' is not defined at scope {scope}")
        return definitions[0].id

    def ensure_role_assignment(
        self,
        context: SubscriptionContext,
        principal_id: str,
        role_name: str,
        scope: str | None = None,
    ) -> bool:
        """Assign ``role_name`` to ``principal_id`` at ``scope`` unless present.

        Args:
            context: Subscription the scope belongs to.
            principal_id: Service principal object id.
            role_name: Built-in role name, custom role name or role GUID.
            scope: Assignment scope (defaults to the subscription).

        Returns:
            True if an assignment was created, False if it already existed.
        """
        scope = scope or context.scope
        client = self._client_factory(context)
        role_definition_id = self._role_definition_id(client, role_name, scope)
        role_guid = role_definition_id.rsplit("/", 1)[-1].lower()

        existing = client.role_assignments.list_for_scope(
            scope, filter=f"principalId eq '{principal_id}'"
        )
        for assignment in existing:
            if (
                (assignment.role_definition_id or "").lower().endswith(role_guid)
                and (assignment.scope or "").lower() == scope.lower()
                and (assignment.principal_id or "").lower() == principal_id.lower()
            ):
                logger.info(
                    f"Role '{role_name}' already assigned at {scope}, skipping",
                    extra={"principal_id": principal_id, "assignment_id": assignment.id},
                )
                return False

        assignment_name = str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{principal_id}:{role_guid}:{scope}"))
        try:
            client.role_assignments.create(
                scope,
                assignment_name,
                RoleAssignmentCreateParameters(
                    role_definition_id=role_definition_id,
                    principal_id=principal_id,
                    principal_type="ServicePrincipal",
                ),
            )
        except ResourceExistsError:
            logger.info(
                f"Role assignment {role_name} already exists at {scope}",
                extra={"principal_id": principal_id},
            )
            return False

        log_audit_event(
            "role_assignment",
            scope,
            "create",
            role=role_name,
            principal_id=principal_id,
        )
        logger.info(f"Assigned role '{role_name}' at {scope}", extra={"principal_id": principal_id})
        return True

"""Federated credential binding on application registrations."""

from __future__ import annotations

import logging

from .config import FEDERATION_AUDIENCE
from .credentials import log_audit_event
from .errors import FederatedCredentialConflictError
from .graph import GraphClient
from .models import FederatedCredential

logger = logging.getLogger(__name__)


def same_trust(existing: FederatedCredential, desired: FederatedCredential) -> bool:
    """True when two credentials bind the same issuer, subject and audiences."""
    return (
        existing.issuer == desired.issuer
        and existing.subject == desired.subject
        and set(existing.audiences) == set(desired.audiences)
    )


class FederatedCredentialBinder:
    """Creates the trust record letting the CI/CD issuer act as the identity."""

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    def find_federated_credential(
        self, application_object_id: str, name: str
    ) -> FederatedCredential | None:
        for item in self._graph.list_federated_credentials(application_object_id):
            if item.get("name") == name:
                return FederatedCredential.from_api(item)
        return None

    def bind_federated_credential(
        self,
        application_object_id: str,
        issuer: str,
        subject: str,
        audience: str = FEDERATION_AUDIENCE,
        name: str = "",
    ) -> tuple[FederatedCredential, bool]:
        """Bind ``issuer``/``subject`` to the application.

        A credential with the same name and the same trust is reused.

        Returns:
            The bound credential and whether it was created.

        Raises:
            FederatedCredentialConflictError: A credential with this name binds
                a different issuer, subject or audience.
        """
        desired = FederatedCredential(
            name=name,
            issuer=issuer,
            subject=subject,
            audiences=(audience,),
            description=f"Service connection federation for {subject}",
        )

        existing = self.find_federated_credential(application_object_id, name)
        if existing is not None:
            if not same_trust(existing, desired):
                raise FederatedCredentialConflictError(
                    f"Federated credential '{name}' already binds issuer '{existing.issuer}' "
                    f"and subject '{existing.subject}', expected '{issuer}' and '{subject}'"
                )
            logger.info(f"Federated credential '{name}' already present, skipping")
            return existing, False

        data = self._graph.create_federated_credential(application_object_id, desired.to_api())
        log_audit_event(
            "federated_credential",
            application_object_id,
            "create",
            credential_name=name,
            issuer=issuer,
            subject=subject,
        )
        logger.info(f"Bound federated credential '{name}'", extra={"subject": subject})
        return FederatedCredential.from_api(data or desired.to_api()), True

"""Subscription resolution into an explicit per-entry context."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from azure.core.credentials import TokenCredential
from azure.mgmt.subscription import SubscriptionClient

from .config import VALID_GUID_PATTERN
from .errors import (
    AmbiguousSubscriptionError,
    SubscriptionDisabledError,
    SubscriptionNotFoundError,
)
from .models import SubscriptionContext

logger = logging.getLogger(__name__)

# Subscription states in which resources can still be managed
USABLE_SUBSCRIPTION_STATES = frozenset({"enabled", "warned", "pastdue"})


class SupportsSubscriptionList(Protocol):
    """The part of SubscriptionClient the resolver relies on."""

    @property
    def subscriptions(self) -> Any: ...


def _state_name(state: Any) -> str:
    value = getattr(state, "value", state)
    return str(value or "").lower()


class SubscriptionResolver:
    """Resolves a subscription name (or id) visible to the session."""

    def __init__(
        self,
        credential: TokenCredential | None = None,
        *,
        client: SupportsSubscriptionList | None = None,
    ) -> None:
        if client is None:
            if credential is None:
                raise ValueError("credential is required when no client is given")
            client = SubscriptionClient(credential, retry_total=0)
        self._client = client

    def resolve(self, name_or_id: str) -> SubscriptionContext:
        """Resolve a subscription into a SubscriptionContext.

        A GUID-shaped value matches the subscription id; anything else must
        match exactly one subscription display name.

        Raises:
            SubscriptionNotFoundError: No visible subscription matches.
            AmbiguousSubscriptionError: Several subscriptions share the name.
            SubscriptionDisabledError: The match is disabled or deleted.
        """
        subscriptions = list(self._client.subscriptions.list())

        if re.match(VALID_GUID_PATTERN, name_or_id.lower()):
            matches = [s for s in subscriptions if (s.subscription_id or "").lower() == name_or_id.lower()]
        else:
            matches = [s for s in subscriptions if s.display_name == name_or_id]

        if not matches:
            raise SubscriptionNotFoundError(
                f"Subscription '{name_or_id}' not found among {len(subscriptions)} "
                "subscriptions visible to the current session"
            )
        if len(matches) > 1:
            ids = ", ".join(s.subscription_id for s in matches)
            raise AmbiguousSubscriptionError(
                f"Subscription name '{name_or_id}' is ambiguous ({ids}); use the subscription id"
            )

        subscription = matches[0]
        state = _state_name(subscription.state)
        if state and state not in USABLE_SUBSCRIPTION_STATES:
            raise SubscriptionDisabledError(
                f"Subscription '{name_or_id}' ({subscription.subscription_id}) is {state}"
            )

        context = SubscriptionContext(
            subscription_id=subscription.subscription_id,
            display_name=subscription.display_name,
            tenant_id=getattr(subscription, "tenant_id", None) or "",
        )
        logger.info(
            f"Resolved subscription '{name_or_id}'",
            extra={"subscription_id": context.subscription_id, "tenant_id": context.tenant_id},
        )
        return context

"""Mock subscription client."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any


@dataclass
class MockSubscription:
    """Mimics azure.mgmt.subscription.models.Subscription."""

    subscription_id: str
    display_name: str
    tenant_id: str | None = None
    state: str = "Enabled"


class _SubscriptionOperations:
    def __init__(self, subscriptions: list[MockSubscription]) -> None:
        self._subscriptions = subscriptions
        self.list_calls = 0

    def list(self, **kwargs: Any) -> Iterator[MockSubscription]:
        self.list_calls += 1
        return iter(list(self._subscriptions))


class MockSubscriptionClient:
    """Lists the subscriptions visible to the session."""

    def __init__(self, subscriptions: list[MockSubscription] | None = None) -> None:
        self.visible: list[MockSubscription] = list(subscriptions or [])
        self.subscriptions = _SubscriptionOperations(self.visible)

    def add(self, subscription_id: str, display_name: str, **kwargs: Any) -> MockSubscription:
        subscription = MockSubscription(subscription_id, display_name, **kwargs)
        self.visible.append(subscription)
        return subscription

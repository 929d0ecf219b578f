"""Shared pytest fixtures for waiver-sync tests."""

import itertools
from typing import Any
from unittest.mock import AsyncMock

import pytest

from waiver_sync.config import SyncConfig
from waiver_sync.pipeline import Pipeline
from waiver_sync.smartwaiver import SmartwaiverClient
from waiver_sync.tags import parse_tags


class InMemoryShopify:
    """Stateful stand-in for ShopifyClient.

    Records every call so tests can assert on payloads, and keeps customers
    in a dict so replays see the effect of earlier writes.
    """

    def __init__(self) -> None:
        self.customers: dict[int, dict[str, Any]] = {}
        self.metafields: list[dict[str, Any]] = []
        self.consents: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Any]] = []
        self._ids = itertools.count(1001)

    def add_customer(self, **fields: Any) -> dict[str, Any]:
        customer = {"id": next(self._ids), "tags": "", "note": None, "phone": None, **fields}
        self.customers[customer["id"]] = customer
        return customer

    async def search_customers_by_email(self, email: str) -> list[dict[str, Any]]:
        self.calls.append(("search", email))
        return [dict(c) for c in self.customers.values() if c.get("email") == email]

    async def create_customer(self, fields: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create", fields))
        customer = self.add_customer(**fields)
        return dict(customer)

    async def update_customer(self, customer_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update", (customer_id, fields)))
        self.customers[customer_id].update(fields)
        return dict(self.customers[customer_id])

    async def create_metafield(self, owner_id, namespace, key, value, value_type):
        metafield = {
            "owner_id": owner_id,
            "namespace": namespace,
            "key": key,
            "value": value,
            "type": value_type,
        }
        self.calls.append(("metafield", metafield))
        self.metafields.append(metafield)
        return metafield

    async def update_marketing_consent(
        self, customer_id, email_consent, sms_consent, consent_updated_at
    ):
        consent = {
            "customer_id": customer_id,
            "email_consent": email_consent,
            "sms_consent": sms_consent,
            "consent_updated_at": consent_updated_at,
        }
        self.calls.append(("consent", consent))
        self.consents.append(consent)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def tags_for(self, email: str) -> set[str]:
        for customer in self.customers.values():
            if customer.get("email") == email:
                return set(parse_tags(customer.get("tags")))
        return set()


def make_waiver(
    waiver_id: str = "abc123",
    template_id: str | None = "qfyohqaysnfk4ybccqhyzk",
    created_on: str = "2024-01-01T00:00:00Z",
    participant: dict | None = None,
    **top_level: Any,
) -> dict[str, Any]:
    """Build a Smartwaiver waiver object."""
    waiver: dict[str, Any] = {
        "waiverId": waiver_id,
        "templateId": template_id,
        "createdOn": created_on,
        "participant": participant if participant is not None else {},
    }
    waiver.update(top_level)
    return waiver


@pytest.fixture
def config():
    return SyncConfig()


@pytest.fixture
def shopify():
    return InMemoryShopify()


@pytest.fixture
def smartwaiver():
    """Smartwaiver client with every API method mocked."""
    return AsyncMock(spec=SmartwaiverClient)


@pytest.fixture
def pipeline(config, smartwaiver, shopify):
    return Pipeline(config, smartwaiver, shopify)


@pytest.fixture
def scenario_waiver():
    """The action-sports waiver used across the scenario tests."""
    return make_waiver(
        participant={
            "email": "a@x.com",
            "firstName": "A",
            "lastName": "B",
            "dateOfBirth": "1990-01-01",
        }
    )

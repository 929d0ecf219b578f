"""
Shopify Admin API client for waiver-sync.

Customer search/create/update and metafield writes go through the REST
Admin API; marketing consent goes through GraphQL, which is the only place
Shopify accepts a structured, timestamped consent state.
"""

import logging
from datetime import datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

CUSTOMER_FIELDS = "id,email,tags,note,phone,accepts_marketing"

CONSENT_MUTATION = """
mutation waiverSyncConsent(
  $emailInput: CustomerEmailMarketingConsentUpdateInput!
  $smsInput: CustomerSmsMarketingConsentUpdateInput!
) {
  emailConsent: customerEmailMarketingConsentUpdate(input: $emailInput) {
    userErrors { field message }
  }
  smsConsent: customerSmsMarketingConsentUpdate(input: $smsInput) {
    userErrors { field message }
  }
}
"""


class ShopifyGraphQLError(Exception):
    """Top-level GraphQL errors (bad query, throttling, access scope)."""

    def __init__(self, errors: list[dict[str, Any]]):
        self.errors = errors
        messages = "; ".join(str(e.get("message", e)) for e in errors)
        super().__init__(f"GraphQL error: {messages}")


class ShopifyUserError(Exception):
    """Field-level validation errors returned in a mutation's userErrors.

    `rejected` names the consent channels ("email", "sms") whose mutation
    reported errors; mutations in the same document that are not listed
    were applied.
    """

    def __init__(
        self,
        user_errors: list[dict[str, Any]],
        rejected: tuple[str, ...] = (),
    ):
        self.user_errors = user_errors
        self.rejected = rejected
        messages = "; ".join(
            f"{'.'.join(e.get('field') or []) or '-'}: {e.get('message')}"
            for e in user_errors
        )
        super().__init__(f"Shopify rejected the update: {messages}")


def customer_gid(customer_id: int | str) -> str:
    return f"gid://shopify/Customer/{customer_id}"


def consent_state(accepted: bool) -> str:
    return "SUBSCRIBED" if accepted else "NOT_SUBSCRIBED"


class ShopifyClient:
    """Client for one shop's Admin API."""

    def __init__(
        self,
        api_base: str,
        access_token: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Shopify client.

        Args:
            api_base: e.g. https://example.myshopify.com/admin/api/2024-01
            access_token: Admin API access token
            timeout_seconds: Request timeout in seconds
            transport: Optional httpx transport (for testing)
        """
        self.api_base = api_base.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def search_customers_by_email(self, email: str) -> list[dict[str, Any]]:
        """Return every customer whose email matches, in Shopify's order."""
        async with self._client() as client:
            response = await client.get(
                "/customers/search.json",
                params={"query": f"email:{email}", "fields": CUSTOMER_FIELDS},
            )
            response.raise_for_status()
            data = response.json()
        return data.get("customers") or []

    async def create_customer(self, fields: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post("/customers.json", json={"customer": fields})
            response.raise_for_status()
            data = response.json()
        return data["customer"]

    async def update_customer(self, customer_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        payload = {"customer": {"id": customer_id, **fields}}
        async with self._client() as client:
            response = await client.put(f"/customers/{customer_id}.json", json=payload)
            response.raise_for_status()
            data = response.json()
        return data.get("customer") or {}

    async def create_metafield(
        self,
        owner_id: int,
        namespace: str,
        key: str,
        value: str,
        value_type: str,
    ) -> dict[str, Any]:
        """Attach a typed metafield to a customer."""
        payload = {
            "metafield": {
                "namespace": namespace,
                "key": key,
                "value": value,
                "type": value_type,
                "owner_id": owner_id,
                "owner_resource": "customer",
            }
        }
        async with self._client() as client:
            response = await client.post("/metafields.json", json=payload)
            response.raise_for_status()
            data = response.json()
        return data.get("metafield") or {}

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run a GraphQL Admin API document and return its `data`."""
        async with self._client() as client:
            response = await client.post(
                "/graphql.json",
                json={"query": query, "variables": variables},
            )
            response.raise_for_status()
            body = response.json()

        if body.get("errors"):
            raise ShopifyGraphQLError(body["errors"])
        return body.get("data") or {}

    async def update_marketing_consent(
        self,
        customer_id: int,
        email_consent: bool,
        sms_consent: bool,
        consent_updated_at: datetime,
    ) -> None:
        """
        Set structured email and SMS marketing consent for a customer.

        Raises:
            ShopifyUserError: if Shopify rejects either channel (e.g. SMS
                consent on a customer without a phone); `rejected` says which
        """
        timestamp = consent_updated_at.isoformat()
        gid = customer_gid(customer_id)
        variables = {
            "emailInput": {
                "customerId": gid,
                "emailMarketingConsent": {
                    "marketingState": consent_state(email_consent),
                    "marketingOptInLevel": "SINGLE_OPT_IN",
                    "consentUpdatedAt": timestamp,
                },
            },
            "smsInput": {
                "customerId": gid,
                "smsMarketingConsent": {
                    "marketingState": consent_state(sms_consent),
                    "marketingOptInLevel": "SINGLE_OPT_IN",
                    "consentUpdatedAt": timestamp,
                },
            },
        }

        data = await self.graphql(CONSENT_MUTATION, variables)

        user_errors: list[dict[str, Any]] = []
        rejected: list[str] = []
        for channel, alias in (("email", "emailConsent"), ("sms", "smsConsent")):
            errors = (data.get(alias) or {}).get("userErrors") or []
            if errors:
                rejected.append(channel)
                user_errors.extend(errors)
        if user_errors:
            raise ShopifyUserError(user_errors, rejected=tuple(rejected))

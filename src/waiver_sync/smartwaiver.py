"""
Smartwaiver API client for waiver-sync.

Read-only access to the waiver source: list waivers in a time window, pull
one message from the account webhook queue, and fetch a full waiver.

API Documentation: https://api.smartwaiver.com/docs/v4/
"""

import logging
from datetime import datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SW_API_BASE = "https://api.smartwaiver.com"

# Smartwaiver expects ISO 8601 without offset, interpreted as UTC
SW_DTS_FORMAT = "%Y-%m-%dT%H:%M:%S"


def format_dts(moment: datetime) -> str:
    return moment.strftime(SW_DTS_FORMAT)


class SmartwaiverClient:
    """
    Client for the Smartwaiver v4 REST API.

    Errors (transport or non-2xx) propagate as httpx exceptions; the feed
    readers decide what a failure means for the batch.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = SW_API_BASE,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Smartwaiver client.

        Args:
            api_key: Account API key, sent as the sw-api-key header
            base_url: API root (overridable for the fake server)
            timeout_seconds: Request timeout in seconds
            transport: Optional httpx transport (for testing)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"sw-api-key": self.api_key, "Accept": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def list_waivers(
        self,
        from_dts: datetime,
        to_dts: datetime,
        limit: int = 100,
    ) -> list[str]:
        """
        List identifiers of waivers created in [from_dts, to_dts].

        Returns:
            Waiver identifiers in the order Smartwaiver returns them
        """
        params = {
            "fromDts": format_dts(from_dts),
            "toDts": format_dts(to_dts),
            "limit": limit,
        }
        logger.debug(f"Listing waivers {params['fromDts']} .. {params['toDts']}")

        async with self._client() as client:
            response = await client.get("/v4/waivers", params=params)
            response.raise_for_status()
            data = response.json()

        waivers = data.get("waivers") or []
        if len(waivers) >= limit:
            # The API has no cursor; anything past `limit` in this window is not returned
            logger.warning(
                f"Waiver listing hit the limit of {limit} for "
                f"{params['fromDts']} .. {params['toDts']}; some waivers may be missing. "
                f"Shorten the schedule or raise sync.list_limit."
            )
        return [str(w["waiverId"]) for w in waivers if w.get("waiverId")]

    async def pull_queue_message(self) -> dict[str, Any] | None:
        """
        Dequeue the next message from the account webhook queue.

        The message is deleted from the queue as part of the read.

        Returns:
            The message dict (with messageId and payload), or None if the
            queue is empty
        """
        async with self._client() as client:
            response = await client.get(
                "/v4/webhooks/queues/account",
                params={"delete": "true"},
            )
            response.raise_for_status()
            data = response.json()

        message = data.get("api_webhook_account_message_get")
        if not message:
            return None
        return message

    async def get_waiver(self, waiver_id: str) -> dict[str, Any]:
        """
        Fetch a full waiver record by identifier.

        Returns:
            The `waiver` object from the response
        """
        logger.debug(f"Fetching waiver {waiver_id}")

        async with self._client() as client:
            response = await client.get(
                f"/v4/waivers/{waiver_id}",
                params={"pdf": "false"},
            )
            response.raise_for_status()
            data = response.json()

        waiver = data.get("waiver")
        if not isinstance(waiver, dict):
            raise ValueError(f"Smartwaiver response for {waiver_id} has no waiver object")
        return waiver

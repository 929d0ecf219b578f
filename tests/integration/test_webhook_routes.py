"""Integration tests for the waiver-sync HTTP routes.

These tests verify that:
- The webhook rejects deliveries without unique_id (400) or with a bad credential (403)
- A valid delivery syncs one waiver and returns the run report
- Feed failures surface as 500 with the failure message
- The poll and queue triggers run one batch each, for a bearer token or permitted actor
- The routes are exempt from CSRF
"""

import hashlib
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from datasette.app import Datasette

WEBHOOK_SECRET = "hook-secret"
TRIGGER_TOKEN = "trigger-secret"
AUTH = {"Authorization": f"Bearer {TRIGGER_TOKEN}"}

SCENARIO_WAIVER = {
    "waiverId": "abc123",
    "templateId": "qfyohqaysnfk4ybccqhyzk",
    "createdOn": "2024-01-01T00:00:00Z",
    "participant": {
        "email": "a@x.com",
        "firstName": "A",
        "lastName": "B",
        "dateOfBirth": "1990-01-01",
    },
}


def credential_for(unique_id: str) -> str:
    return hashlib.md5(f"{WEBHOOK_SECRET}{unique_id}".encode()).hexdigest()


@pytest.fixture
def datasette():
    """Create a Datasette instance with the plugin configured."""
    return Datasette(
        [],
        metadata={
            "plugins": {
                "datasette-waiver-sync": {
                    "smartwaiver": {
                        "api_base": "http://fake-smartwaiver:9010",
                        "api_key": "sw-test-key",
                        "webhook_secret": WEBHOOK_SECRET,
                    },
                    "shopify": {
                        "shop_domain": "http://fake-shopify:9010",
                        "access_token": "shpat_test",
                    },
                    "sync": {
                        "trigger_token": TRIGGER_TOKEN,
                        "trigger_allow": {"id": ["ops"]},
                    },
                }
            }
        },
    )


@pytest.fixture
def mock_shopify_api():
    """Patch every Shopify call; a brand-new customer is created."""
    with (
        patch(
            "waiver_sync.shopify.ShopifyClient.search_customers_by_email",
            new_callable=AsyncMock,
            return_value=[],
        ) as search,
        patch(
            "waiver_sync.shopify.ShopifyClient.create_customer",
            new_callable=AsyncMock,
            return_value={"id": 7000001, "phone": None},
        ) as create,
        patch(
            "waiver_sync.shopify.ShopifyClient.update_customer",
            new_callable=AsyncMock,
        ) as update,
        patch(
            "waiver_sync.shopify.ShopifyClient.create_metafield",
            new_callable=AsyncMock,
        ) as metafield,
        patch(
            "waiver_sync.shopify.ShopifyClient.update_marketing_consent",
            new_callable=AsyncMock,
        ) as consent,
    ):
        yield {
            "search": search,
            "create": create,
            "update": update,
            "metafield": metafield,
            "consent": consent,
        }


class TestWebhook:
    """Smartwaiver push deliveries."""

    async def test_missing_unique_id(self, datasette):
        response = await datasette.client.post(
            "/-/waiver-sync/webhook",
            data={"event": "new-waiver"},
        )
        assert response.status_code == 400
        assert response.json() == {"ok": False, "message": "Missing unique_id"}

    async def test_bad_credential(self, datasette):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.get_waiver",
            new_callable=AsyncMock,
        ) as get_waiver:
            response = await datasette.client.post(
                "/-/waiver-sync/webhook",
                data={"unique_id": "abc123", "event": "new-waiver", "credential": "nope"},
            )

        assert response.status_code == 403
        get_waiver.assert_not_awaited()

    async def test_get_not_allowed(self, datasette):
        response = await datasette.client.get("/-/waiver-sync/webhook")
        assert response.status_code == 405

    async def test_valid_delivery_syncs_waiver(self, datasette, mock_shopify_api):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.get_waiver",
            new_callable=AsyncMock,
            return_value=SCENARIO_WAIVER,
        ) as get_waiver:
            response = await datasette.client.post(
                "/-/waiver-sync/webhook",
                data={
                    "unique_id": "abc123",
                    "event": "new-waiver",
                    "credential": credential_for("abc123"),
                },
            )

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["message"].startswith("Synced 1 waivers.")
        get_waiver.assert_awaited_once_with("abc123")

        fields = mock_shopify_api["create"].await_args.args[0]
        assert fields["tags"] == "Signed Waiver, Action Sports Waiver"
        assert mock_shopify_api["metafield"].await_args.kwargs["value"] == "1990-01-01"
        mock_shopify_api["consent"].assert_awaited_once()

    async def test_json_delivery_accepted(self, datasette, mock_shopify_api):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.get_waiver",
            new_callable=AsyncMock,
            return_value=SCENARIO_WAIVER,
        ):
            response = await datasette.client.post(
                "/-/waiver-sync/webhook",
                json={"unique_id": "abc123", "credential": credential_for("abc123")},
            )

        assert response.status_code == 200

    async def test_fetch_failure_returns_500(self, datasette, mock_shopify_api):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.get_waiver",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("smartwaiver down"),
        ):
            response = await datasette.client.post(
                "/-/waiver-sync/webhook",
                data={"unique_id": "abc123", "credential": credential_for("abc123")},
            )

        assert response.status_code == 500
        body = response.json()
        assert body["ok"] is False
        assert body["message"].startswith("Error syncing waivers:")
        mock_shopify_api["search"].assert_not_awaited()


class TestTriggers:
    """Poll and queue triggers."""

    async def test_empty_queue(self, datasette, mock_shopify_api):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.pull_queue_message",
            new_callable=AsyncMock,
            return_value=None,
        ):
            response = await datasette.client.post("/-/waiver-sync/queue", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["report"]["processed"] == 0
        mock_shopify_api["search"].assert_not_awaited()

    async def test_poll_syncs_window(self, datasette, mock_shopify_api):
        with (
            patch(
                "waiver_sync.smartwaiver.SmartwaiverClient.list_waivers",
                new_callable=AsyncMock,
                return_value=["abc123"],
            ),
            patch(
                "waiver_sync.smartwaiver.SmartwaiverClient.get_waiver",
                new_callable=AsyncMock,
                return_value=SCENARIO_WAIVER,
            ),
        ):
            response = await datasette.client.post("/-/waiver-sync/sync", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["report"]["synced"] == 1

    async def test_poll_list_failure(self, datasette):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.list_waivers",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("refused"),
        ):
            response = await datasette.client.post("/-/waiver-sync/sync", headers=AUTH)

        assert response.status_code == 500


class TestTriggerAccess:
    """Who may start a poll or queue run."""

    @pytest.fixture
    def empty_queue(self):
        with patch(
            "waiver_sync.smartwaiver.SmartwaiverClient.pull_queue_message",
            new_callable=AsyncMock,
            return_value=None,
        ) as pull:
            yield pull

    @pytest.mark.parametrize("path", ["/-/waiver-sync/sync", "/-/waiver-sync/queue"])
    async def test_anonymous_rejected(self, datasette, path):
        with (
            patch(
                "waiver_sync.smartwaiver.SmartwaiverClient.list_waivers",
                new_callable=AsyncMock,
            ) as list_waivers,
            patch(
                "waiver_sync.smartwaiver.SmartwaiverClient.pull_queue_message",
                new_callable=AsyncMock,
            ) as pull,
        ):
            response = await datasette.client.post(path)

        assert response.status_code == 403
        assert response.json() == {"ok": False, "message": "Forbidden"}
        list_waivers.assert_not_awaited()
        pull.assert_not_awaited()

    async def test_wrong_token_rejected(self, datasette, empty_queue):
        response = await datasette.client.post(
            "/-/waiver-sync/queue",
            headers={"Authorization": "Bearer not-the-token"},
        )

        assert response.status_code == 403
        empty_queue.assert_not_awaited()

    async def test_allowed_actor(self, datasette, empty_queue):
        cookie = datasette.sign({"a": {"id": "ops"}}, "actor")

        response = await datasette.client.post(
            "/-/waiver-sync/queue",
            cookies={"ds_actor": cookie},
        )

        assert response.status_code == 200
        empty_queue.assert_awaited_once()

    async def test_other_actor_rejected(self, datasette, empty_queue):
        cookie = datasette.sign({"a": {"id": "visitor"}}, "actor")

        response = await datasette.client.post(
            "/-/waiver-sync/queue",
            cookies={"ds_actor": cookie},
        )

        assert response.status_code == 403

    async def test_no_token_configured_rejects_bearer(self, monkeypatch, empty_queue):
        monkeypatch.delenv("WAIVER_SYNC_TRIGGER_TOKEN", raising=False)
        ds = Datasette([], metadata={"plugins": {"datasette-waiver-sync": {}}})

        response = await ds.client.post(
            "/-/waiver-sync/queue",
            headers={"Authorization": "Bearer "},
        )

        assert response.status_code == 403

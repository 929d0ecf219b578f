"""
Datasette plugin exposing waiver-sync over HTTP.

- Smartwaiver webhook push endpoint (one waiver per delivery)
- Manual trigger for a windowed poll (for schedulers that can only call URLs)
- Manual trigger for one webhook-queue pull

The triggers need a bearer token or the waiver_sync_trigger permission.
"""

import hashlib
import hmac
import json
import logging
import weakref
from typing import Any
from urllib.parse import parse_qs

from datasette import Response, hookimpl
from datasette.utils import actor_matches_allow
from datasette.utils.asgi import Request

from waiver_sync.config import PLUGIN_NAME, SyncConfig
from waiver_sync.feeds import build_feed
from waiver_sync.models import FeedMode, SyncReport
from waiver_sync.pipeline import EmailLocks, build_pipeline

logger = logging.getLogger(__name__)

TRIGGER_PERMISSION = "waiver_sync_trigger"

# One lock registry per Datasette instance, so concurrent deliveries for the
# same email are serialized within the process
_app_locks: "weakref.WeakKeyDictionary[Any, EmailLocks]" = weakref.WeakKeyDictionary()


# -----------------------------------------------------------------------------
# Plugin Configuration
# -----------------------------------------------------------------------------


def get_sync_config(datasette) -> SyncConfig:
    """Build SyncConfig from the plugin section of datasette.yaml."""
    config = datasette.plugin_config(PLUGIN_NAME) or {}
    return SyncConfig.from_dict(config)


def get_locks(datasette) -> EmailLocks:
    locks = _app_locks.get(datasette)
    if locks is None:
        locks = EmailLocks()
        _app_locks[datasette] = locks
    return locks


# -----------------------------------------------------------------------------
# Webhook Helpers
# -----------------------------------------------------------------------------


async def read_webhook_fields(request: Request) -> dict[str, Any]:
    """Parse a Smartwaiver webhook body, form-encoded or JSON."""
    body = await request.post_body()
    if not body:
        return {}

    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = json.loads(body)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    parsed = parse_qs(body.decode("utf-8", errors="replace"))
    return {key: values[0] for key, values in parsed.items() if values}


def expected_credential(secret: str, unique_id: str) -> str:
    """Smartwaiver signs webhooks with md5(webhook key + unique_id)."""
    return hashlib.md5(f"{secret}{unique_id}".encode()).hexdigest()


def credential_valid(secret: str, unique_id: str, credential: str | None) -> bool:
    if not credential:
        return False
    return hmac.compare_digest(expected_credential(secret, unique_id), credential)


async def trigger_allowed(request: Request, datasette) -> bool:
    """
    Check access to the poll and queue triggers.

    A scheduler presents the configured token as `Authorization: Bearer ...`;
    a signed-in user needs the waiver_sync_trigger permission.
    """
    token = get_sync_config(datasette).sync.get_trigger_token()
    auth = request.headers.get("authorization", "")
    if token and auth.startswith("Bearer "):
        if hmac.compare_digest(auth[len("Bearer "):].strip(), token):
            return True
    return await datasette.permission_allowed(
        request.actor, TRIGGER_PERMISSION, default=False
    )


def forbidden_response() -> Response:
    return Response.json({"ok": False, "message": "Forbidden"}, status=403)


def report_response(report: SyncReport) -> Response:
    return Response.json(
        {"ok": report.ok, "message": report.summary(), "report": report.to_dict()},
        status=200 if report.ok else 500,
    )


async def run_mode(datasette, mode: FeedMode, waiver_id: str | None = None) -> Response:
    config = get_sync_config(datasette)
    pipeline = build_pipeline(config, locks=get_locks(datasette))
    feed = build_feed(mode, pipeline.smartwaiver, config.sync, waiver_id=waiver_id)
    report = await pipeline.run_feed(feed)
    return report_response(report)


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


async def waiver_webhook(request: Request, datasette) -> Response:
    """Smartwaiver push delivery: one waiver identifier per request."""
    if request.method != "POST":
        return Response.text("Method not allowed", status=405)

    fields = await read_webhook_fields(request)
    unique_id = str(fields.get("unique_id") or "").strip()
    if not unique_id:
        return Response.json({"ok": False, "message": "Missing unique_id"}, status=400)

    config = get_sync_config(datasette)
    secret = config.smartwaiver.get_webhook_secret()
    if secret and not credential_valid(secret, unique_id, fields.get("credential")):
        logger.warning(f"Rejected webhook for {unique_id}: bad credential")
        return Response.json({"ok": False, "message": "Invalid credential"}, status=403)

    logger.info(f"Webhook received for waiver {unique_id} (event={fields.get('event')})")
    return await run_mode(datasette, FeedMode.PUSH, waiver_id=unique_id)


async def waiver_sync_poll(request: Request, datasette) -> Response:
    """Manual or scheduled trigger for one windowed poll."""
    if request.method != "POST":
        return Response.text("Method not allowed", status=405)
    if not await trigger_allowed(request, datasette):
        return forbidden_response()
    return await run_mode(datasette, FeedMode.POLL)


async def waiver_sync_queue(request: Request, datasette) -> Response:
    """Manual or scheduled trigger for one webhook-queue pull."""
    if request.method != "POST":
        return Response.text("Method not allowed", status=405)
    if not await trigger_allowed(request, datasette):
        return forbidden_response()
    return await run_mode(datasette, FeedMode.QUEUE)


# -----------------------------------------------------------------------------
# Datasette Hooks
# -----------------------------------------------------------------------------


@hookimpl
def register_routes():
    """Register plugin routes with Datasette."""
    return [
        (r"^/-/waiver-sync/webhook$", waiver_webhook),
        (r"^/-/waiver-sync/sync$", waiver_sync_poll),
        (r"^/-/waiver-sync/queue$", waiver_sync_queue),
    ]


@hookimpl
def skip_csrf(datasette, scope):
    """
    Skip CSRF for the sync routes.

    Smartwaiver and schedulers post without a prior page to obtain a token.
    """
    path = scope.get("path", "")
    if path.startswith("/-/waiver-sync/"):
        return True
    return None



@hookimpl
def permission_allowed(datasette, actor, action):
    """
    Grant the trigger permission to actors matching sync.trigger_allow.

    The allow block uses Datasette's usual syntax, e.g. {"id": ["ops"]}.
    """
    if action != TRIGGER_PERMISSION or not actor:
        return None
    allow = get_sync_config(datasette).sync.trigger_allow
    if not allow:
        return None
    return actor_matches_allow(actor, allow)

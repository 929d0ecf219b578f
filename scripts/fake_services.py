#!/usr/bin/env python3
"""
Fake Smartwaiver + Shopify API server for local development and testing.

Implements the endpoints waiver-sync calls:
- Smartwaiver: list waivers, get waiver, pull from the account webhook queue
- Shopify REST: customer search/create/update, metafield create
- Shopify GraphQL: marketing consent mutations

Run with: python scripts/fake_services.py --port 9010
Then configure:
    smartwaiver.api_base: "http://127.0.0.1:9010"
    shopify.shop_domain: "http://127.0.0.1:9010"
"""

import argparse
import json
import re
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

SHOPIFY_PREFIX = re.compile(r"^/admin/api/[^/]+")


def _now_created_on() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


# Fake waiver store, keyed by waiverId
FAKE_WAIVERS = {
    "Wv1000001": {
        "waiverId": "Wv1000001",
        "templateId": "qfyohqaysnfk4ybccqhyzk",
        "createdOn": _now_created_on(),
        "participant": {
            "email": "rider@example.com",
            "firstName": "Riley",
            "lastName": "Rider",
            "phone": "+15555550101",
            "dateOfBirth": "1990-01-01",
        },
    },
    "Wv1000002": {
        "waiverId": "Wv1000002",
        "templateId": "rwaatviecns3lrzbavotxg",
        "createdOn": _now_created_on(),
        "firstName": "Sam",
        "lastName": "Spectator",
        "participant": {},
    },
    "Wv1000003": {
        "waiverId": "Wv1000003",
        "templateId": "61xznzj5qj3dkb2rj68kbn",
        "createdOn": _now_created_on(),
        "email": "driver@example.com",
        "participant": {"firstName": "Dana", "mobile": "+15555550103"},
    },
}

# Account webhook queue (unique_id payloads)
FAKE_QUEUE: list[dict] = [
    {"messageId": "m-1", "payload": {"unique_id": "Wv1000003", "event": "new-waiver"}},
]

# Shopify state
FAKE_CUSTOMERS: dict[int, dict] = {
    7000001: {
        "id": 7000001,
        "email": "rider@example.com",
        "first_name": "Riley",
        "last_name": "Rider",
        "tags": "VIP, Signed Waiver, Spectator Waiver",
        "note": None,
        "phone": "+15555550101",
        "accepts_marketing": False,
    },
}
FAKE_METAFIELDS: list[dict] = []
NEXT_CUSTOMER_ID = [7000100]


def _normalize_dts(value: str) -> str:
    return value.replace("T", " ")[:19]


class FakeServicesHandler(BaseHTTPRequestHandler):
    """HTTP handler for both fake APIs."""

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        """Log requests to stdout."""
        print(f"[FakeServices] {args[0]}")

    def send_json(self, data: dict, status: int = 200) -> None:
        """Send a JSON response."""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(data).encode())

    def read_json(self) -> dict | None:
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length).decode() if length else ""
        try:
            return json.loads(body) if body else {}
        except json.JSONDecodeError:
            self.send_json({"errors": "Invalid JSON body"}, status=400)
            return None

    def do_GET(self) -> None:
        """Handle GET requests."""
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        path = parsed.path

        if path.startswith("/v4/"):
            if not self.headers.get("sw-api-key"):
                self.send_json({"type": "error", "message": "Missing sw-api-key"}, status=401)
                return
            if path == "/v4/waivers":
                self.handle_list_waivers(params)
            elif path == "/v4/webhooks/queues/account":
                self.handle_queue_pull()
            elif path.startswith("/v4/waivers/"):
                self.handle_get_waiver(path.split("/")[-1])
            else:
                self.send_json({"type": "error", "message": f"Unknown endpoint: {path}"}, 404)
            return

        shop_path = SHOPIFY_PREFIX.sub("", path)
        if shop_path == "/customers/search.json":
            self.handle_customer_search(params)
        else:
            self.send_json({"errors": "Not Found"}, status=404)

    def do_POST(self) -> None:
        """Handle POST requests."""
        shop_path = SHOPIFY_PREFIX.sub("", urlparse(self.path).path)
        body = self.read_json()
        if body is None:
            return

        if shop_path == "/customers.json":
            self.handle_customer_create(body)
        elif shop_path == "/metafields.json":
            self.handle_metafield_create(body)
        elif shop_path == "/graphql.json":
            self.handle_graphql(body)
        else:
            self.send_json({"errors": "Not Found"}, status=404)

    def do_PUT(self) -> None:
        """Handle PUT requests."""
        shop_path = SHOPIFY_PREFIX.sub("", urlparse(self.path).path)
        match = re.match(r"^/customers/(\d+)\.json$", shop_path)
        body = self.read_json()
        if body is None:
            return
        if not match:
            self.send_json({"errors": "Not Found"}, status=404)
            return
        self.handle_customer_update(int(match.group(1)), body)

    # --- Smartwaiver ---------------------------------------------------------

    def handle_list_waivers(self, params: dict) -> None:
        from_dts = _normalize_dts(params.get("fromDts", [""])[0])
        to_dts = _normalize_dts(params.get("toDts", ["9999"])[0])
        limit = int(params.get("limit", ["20"])[0])

        matching = [
            {"waiverId": w["waiverId"], "templateId": w["templateId"]}
            for w in FAKE_WAIVERS.values()
            if from_dts <= w["createdOn"] <= to_dts
        ]
        self.send_json({"type": "waivers", "waivers": matching[:limit]})

    def handle_get_waiver(self, waiver_id: str) -> None:
        waiver = FAKE_WAIVERS.get(waiver_id)
        if waiver is None:
            self.send_json({"type": "error", "message": "Waiver not found"}, status=404)
            return
        self.send_json({"type": "waiver", "waiver": waiver})

    def handle_queue_pull(self) -> None:
        message = FAKE_QUEUE.pop(0) if FAKE_QUEUE else None
        self.send_json({"type": "api_webhook_account_message_get",
                        "api_webhook_account_message_get": message})

    # --- Shopify -------------------------------------------------------------

    def handle_customer_search(self, params: dict) -> None:
        query = params.get("query", [""])[0]
        email = query.split("email:", 1)[-1].strip().lower()
        matches = [c for c in FAKE_CUSTOMERS.values() if (c["email"] or "").lower() == email]
        self.send_json({"customers": matches})

    def handle_customer_create(self, body: dict) -> None:
        fields = body.get("customer", {})
        email = (fields.get("email") or "").lower()
        if any((c["email"] or "").lower() == email for c in FAKE_CUSTOMERS.values()):
            self.send_json({"errors": {"email": ["has already been taken"]}}, status=422)
            return

        customer_id = NEXT_CUSTOMER_ID[0]
        NEXT_CUSTOMER_ID[0] += 1
        customer = {"id": customer_id, "phone": None, "note": None, **fields}
        FAKE_CUSTOMERS[customer_id] = customer
        self.send_json({"customer": customer}, status=201)

    def handle_customer_update(self, customer_id: int, body: dict) -> None:
        customer = FAKE_CUSTOMERS.get(customer_id)
        if customer is None:
            self.send_json({"errors": "Not Found"}, status=404)
            return
        customer.update(body.get("customer", {}))
        self.send_json({"customer": customer})

    def handle_metafield_create(self, body: dict) -> None:
        metafield = body.get("metafield", {})
        if metafield.get("owner_id") not in FAKE_CUSTOMERS:
            self.send_json({"errors": {"owner_id": ["not found"]}}, status=422)
            return
        metafield = {"id": len(FAKE_METAFIELDS) + 1, **metafield}
        FAKE_METAFIELDS.append(metafield)
        self.send_json({"metafield": metafield}, status=201)

    def handle_graphql(self, body: dict) -> None:
        variables = body.get("variables", {})
        data = {}
        for alias, key in (("emailConsent", "emailInput"), ("smsConsent", "smsInput")):
            consent_input = variables.get(key) or {}
            customer_id = int(str(consent_input.get("customerId", "0")).rsplit("/", 1)[-1])
            customer = FAKE_CUSTOMERS.get(customer_id)
            user_errors = []
            if customer is None:
                user_errors.append({"field": ["customerId"], "message": "Customer not found"})
            elif alias == "smsConsent" and not customer.get("phone"):
                state = consent_input.get("smsMarketingConsent", {}).get("marketingState")
                if state == "SUBSCRIBED":
                    user_errors.append({
                        "field": ["smsMarketingConsent"],
                        "message": "Phone number is required",
                    })
            data[alias] = {"userErrors": user_errors}
        self.send_json({"data": data})


def main() -> None:
    parser = argparse.ArgumentParser(description="Run fake Smartwaiver + Shopify API server")
    parser.add_argument(
        "--port",
        type=int,
        default=9010,
        help="Port to listen on (default: 9010)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    args = parser.parse_args()

    server = HTTPServer((args.host, args.port), FakeServicesHandler)
    print(f"Fake Smartwaiver + Shopify API running at http://{args.host}:{args.port}")
    print("Waivers:")
    for waiver_id, waiver in FAKE_WAIVERS.items():
        print(f"  {waiver_id}: template {waiver['templateId']}")
    print()

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down...")
        server.shutdown()


if __name__ == "__main__":
    main()

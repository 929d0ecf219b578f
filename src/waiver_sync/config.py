"""
Configuration for waiver-sync.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

PLUGIN_NAME = "datasette-waiver-sync"

DEFAULT_TEMPLATE_CATEGORIES: dict[str, str] = {
    "qfyohqaysnfk4ybccqhyzk": "Action Sports Waiver",
    "rwaatviecns3lrzbavotxg": "Spectator Waiver",
    "61xznzj5qj3dkb2rj68kbn": "Power Sports Waiver",
}


def _resolve_secret(value: str | None, env_name: str | None) -> str:
    """Literal value wins, then the named environment variable."""
    if value:
        return value
    if env_name:
        return os.environ.get(env_name, "")
    return ""


@dataclass
class SmartwaiverConfig:
    """Smartwaiver API connection configuration."""

    api_base: str = "https://api.smartwaiver.com"
    api_key: str | None = None
    api_key_env: str | None = "SMARTWAIVER_API_KEY"
    webhook_secret: str | None = None
    webhook_secret_env: str | None = "SMARTWAIVER_WEBHOOK_SECRET"

    def get_api_key(self) -> str:
        return _resolve_secret(self.api_key, self.api_key_env)

    def get_webhook_secret(self) -> str:
        return _resolve_secret(self.webhook_secret, self.webhook_secret_env)


@dataclass
class ShopifyConfig:
    """Shopify Admin API connection configuration."""

    shop_domain: str = ""
    api_version: str = "2024-01"
    access_token: str | None = None
    access_token_env: str | None = "SHOPIFY_ACCESS_TOKEN"

    def get_access_token(self) -> str:
        return _resolve_secret(self.access_token, self.access_token_env)

    @property
    def api_base(self) -> str:
        domain = self.shop_domain.rstrip("/")
        if not domain.startswith(("http://", "https://")):
            domain = f"https://{domain}"
        return f"{domain}/admin/api/{self.api_version}"


@dataclass
class SyncOptions:
    """Feed and reconciliation behaviour."""

    window_minutes: int = 5
    feed_domain: str = "smartwaiver.com"
    synthesize_placeholder_email: bool = True
    on_duplicate_match: str = "first"  # first, error
    list_limit: int = 100
    timeout_seconds: float = 30.0
    schedule: str = "*/5 * * * *"  # Every 5 minutes
    dry_run: bool = False
    # Access to the HTTP poll/queue triggers: bearer token or Datasette actor
    trigger_token: str | None = None
    trigger_token_env: str | None = "WAIVER_SYNC_TRIGGER_TOKEN"
    trigger_allow: dict[str, Any] | None = None

    def get_trigger_token(self) -> str:
        return _resolve_secret(self.trigger_token, self.trigger_token_env)


@dataclass
class EnrichmentConfig:
    """Enable/disable the secondary customer writes."""

    date_of_birth: bool = True
    marketing_consent: bool = True
    dob_namespace: str = "custom"
    dob_key: str = "dob"


@dataclass
class SyncConfig:
    """Complete waiver-sync configuration."""

    smartwaiver: SmartwaiverConfig = field(default_factory=SmartwaiverConfig)
    shopify: ShopifyConfig = field(default_factory=ShopifyConfig)
    sync: SyncOptions = field(default_factory=SyncOptions)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    templates: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_TEMPLATE_CATEGORIES)
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncConfig":
        """Create config from a dictionary (e.g., from YAML)."""
        config = cls()

        if "smartwaiver" in data:
            sw = data["smartwaiver"]
            config.smartwaiver = SmartwaiverConfig(
                api_base=sw.get("api_base", config.smartwaiver.api_base),
                api_key=sw.get("api_key"),
                api_key_env=sw.get("api_key_env", config.smartwaiver.api_key_env),
                webhook_secret=sw.get("webhook_secret"),
                webhook_secret_env=sw.get(
                    "webhook_secret_env", config.smartwaiver.webhook_secret_env
                ),
            )

        if "shopify" in data:
            shop = data["shopify"]
            config.shopify = ShopifyConfig(
                shop_domain=shop.get("shop_domain", ""),
                api_version=str(shop.get("api_version", config.shopify.api_version)),
                access_token=shop.get("access_token"),
                access_token_env=shop.get(
                    "access_token_env", config.shopify.access_token_env
                ),
            )

        if "sync" in data:
            sync = data["sync"]
            on_duplicate = sync.get("on_duplicate_match", "first")
            if on_duplicate not in ("first", "error"):
                raise ValueError(
                    f"on_duplicate_match must be 'first' or 'error', got {on_duplicate!r}"
                )
            config.sync = SyncOptions(
                window_minutes=int(sync.get("window_minutes", 5)),
                feed_domain=sync.get("feed_domain", "smartwaiver.com"),
                synthesize_placeholder_email=sync.get("synthesize_placeholder_email", True),
                on_duplicate_match=on_duplicate,
                list_limit=int(sync.get("list_limit", 100)),
                timeout_seconds=float(sync.get("timeout_seconds", 30.0)),
                schedule=sync.get("schedule", "*/5 * * * *"),
                dry_run=sync.get("dry_run", False),
                trigger_token=sync.get("trigger_token"),
                trigger_token_env=sync.get(
                    "trigger_token_env", config.sync.trigger_token_env
                ),
                trigger_allow=sync.get("trigger_allow"),
            )

        if "enrichment" in data:
            en = data["enrichment"]
            config.enrichment = EnrichmentConfig(
                date_of_birth=en.get("date_of_birth", True),
                marketing_consent=en.get("marketing_consent", True),
                dob_namespace=en.get("dob_namespace", "custom"),
                dob_key=en.get("dob_key", "dob"),
            )

        if "templates" in data:
            # Replaces the defaults; an empty mapping means base tag only
            config.templates = {
                str(template_id): str(category)
                for template_id, category in (data["templates"] or {}).items()
            }

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "SyncConfig":
        """Load config from a YAML file (datasette.yaml format)."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Look for config under plugins.datasette-waiver-sync
        plugin_config = data.get("plugins", {}).get(PLUGIN_NAME, {})
        return cls.from_dict(plugin_config or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for logging. Secrets are omitted."""
        return {
            "smartwaiver": {"api_base": self.smartwaiver.api_base},
            "shopify": {
                "shop_domain": self.shopify.shop_domain,
                "api_version": self.shopify.api_version,
            },
            "sync": {
                "window_minutes": self.sync.window_minutes,
                "feed_domain": self.sync.feed_domain,
                "synthesize_placeholder_email": self.sync.synthesize_placeholder_email,
                "on_duplicate_match": self.sync.on_duplicate_match,
                "list_limit": self.sync.list_limit,
                "timeout_seconds": self.sync.timeout_seconds,
                "schedule": self.sync.schedule,
                "dry_run": self.sync.dry_run,
                "trigger_allow": self.sync.trigger_allow,
            },
            "enrichment": {
                "date_of_birth": self.enrichment.date_of_birth,
                "marketing_consent": self.enrichment.marketing_consent,
                "dob_namespace": self.enrichment.dob_namespace,
                "dob_key": self.enrichment.dob_key,
            },
            "templates": dict(self.templates),
        }

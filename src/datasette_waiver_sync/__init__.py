"""Datasette plugin exposing Smartwaiver to Shopify sync endpoints."""

from datasette_waiver_sync.plugin import (
    permission_allowed,
    register_routes,
    skip_csrf,
)

__all__ = [
    "permission_allowed",
    "register_routes",
    "skip_csrf",
]

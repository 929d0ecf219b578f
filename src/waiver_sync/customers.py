"""
Customer resolution and merge for waiver-sync.

Email is the only join key between a waiver and a Shopify customer. The
resolver finds the customer; the merger decides between a create payload
and a partial update that only ever adds tags.
"""

import logging
from typing import Any

from .models import (
    AmbiguousCustomerError,
    CanonicalProfile,
    CustomerAction,
    CustomerHandle,
    ShopifyCustomer,
)
from .shopify import ShopifyClient
from .tags import join_tags, merge_tags, parse_tags

logger = logging.getLogger(__name__)


def waiver_note(created_on: str | None, waiver_id: str) -> str:
    """Customer note describing the most recent waiver."""
    return f"Signed waiver on {created_on} (Waiver ID: {waiver_id})"


class CustomerResolver:
    """Looks up the Shopify customer for an email address."""

    def __init__(self, shopify: ShopifyClient, on_duplicate_match: str = "first"):
        self.shopify = shopify
        self.on_duplicate_match = on_duplicate_match

    async def resolve(self, email: str) -> ShopifyCustomer | None:
        """
        Find the customer with this email.

        Returns the first match, or None. Shopify errors propagate.

        Raises:
            AmbiguousCustomerError: if several customers share the email and
                on_duplicate_match is "error"
        """
        matches = await self.shopify.search_customers_by_email(email)
        if not matches:
            return None

        if len(matches) > 1:
            ids = [m.get("id") for m in matches]
            if self.on_duplicate_match == "error":
                raise AmbiguousCustomerError(
                    f"{len(matches)} customers share email {email}: {ids}"
                )
            logger.warning(
                f"{len(matches)} customers share email {email}, using {ids[0]}"
            )

        return ShopifyCustomer.from_dict(matches[0])


class CustomerMerger:
    """Builds and commits the customer write for one waiver."""

    def __init__(self, shopify: ShopifyClient):
        self.shopify = shopify

    def build_create(
        self,
        profile: CanonicalProfile,
        tags: list[str],
        created_on: str | None,
        waiver_id: str,
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "email": profile.email,
            "tags": join_tags(tags),
            "note": waiver_note(created_on, waiver_id),
            "accepts_marketing": True,
        }
        # Shopify rejects an empty phone string
        if profile.phone:
            fields["phone"] = profile.phone
        return fields

    def build_update(
        self,
        existing: ShopifyCustomer,
        tags: list[str],
        created_on: str | None,
        waiver_id: str,
    ) -> dict[str, Any]:
        """Partial update: tags only grow, note and marketing flag overwrite."""
        merged = merge_tags(parse_tags(existing.tags), tags)
        return {
            "tags": join_tags(merged),
            "note": waiver_note(created_on, waiver_id),
            "accepts_marketing": True,
        }

    async def commit(
        self,
        existing: ShopifyCustomer | None,
        profile: CanonicalProfile,
        tags: list[str],
        created_on: str | None,
        waiver_id: str,
        dry_run: bool = False,
    ) -> CustomerHandle | None:
        """
        Issue the create or update call.

        Returns a handle for the enricher. In dry-run mode nothing is
        written; an update returns a handle for the existing customer and a
        create returns None.
        """
        if existing is not None:
            fields = self.build_update(existing, tags, created_on, waiver_id)
            if dry_run:
                logger.info(f"[dry-run] Would update customer {existing.id}: {fields}")
            else:
                await self.shopify.update_customer(existing.id, fields)
                logger.info(f"Updated customer {existing.id} ({profile.email})")
            return CustomerHandle(
                customer_id=existing.id,
                phone=existing.phone,
                action=CustomerAction.UPDATED,
            )

        fields = self.build_create(profile, tags, created_on, waiver_id)
        if dry_run:
            logger.info(f"[dry-run] Would create customer: {fields}")
            return None

        created = await self.shopify.create_customer(fields)
        logger.info(f"Created customer {created['id']} ({profile.email})")
        return CustomerHandle(
            customer_id=created["id"],
            phone=created.get("phone"),
            action=CustomerAction.CREATED,
        )

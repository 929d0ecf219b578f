"""
Secondary customer writes: date-of-birth metafield and marketing consent.

Both run after the customer create/update has already been committed. They
are independent of each other and best-effort: a failure is logged and
recorded in the EnrichmentResult, never raised.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from .config import EnrichmentConfig
from .models import CanonicalProfile, CustomerHandle, EnrichmentResult, EnrichmentStatus
from .shopify import ShopifyClient, ShopifyUserError

logger = logging.getLogger(__name__)

CONSENT_CHANNELS = ("email", "sms")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AttributeEnricher:
    """Writes date of birth and marketing consent for a resolved customer."""

    def __init__(
        self,
        shopify: ShopifyClient,
        config: EnrichmentConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.shopify = shopify
        self.config = config or EnrichmentConfig()
        self.clock = clock

    async def enrich(
        self,
        handle: CustomerHandle,
        profile: CanonicalProfile,
    ) -> EnrichmentResult:
        result = EnrichmentResult()

        if self.config.date_of_birth and profile.date_of_birth:
            try:
                await self.shopify.create_metafield(
                    owner_id=handle.customer_id,
                    namespace=self.config.dob_namespace,
                    key=self.config.dob_key,
                    value=profile.date_of_birth,
                    value_type="date",
                )
                result.date_of_birth = EnrichmentStatus.WRITTEN
            except Exception as e:
                logger.exception(f"DOB metafield failed for customer {handle.customer_id}")
                result.date_of_birth = EnrichmentStatus.FAILED
                result.errors["date_of_birth"] = str(e)

        if self.config.marketing_consent:
            try:
                await self.shopify.update_marketing_consent(
                    customer_id=handle.customer_id,
                    email_consent=True,
                    sms_consent=handle.has_phone,
                    consent_updated_at=self.clock(),
                )
                result.email_consent = EnrichmentStatus.WRITTEN
                result.sms_consent = EnrichmentStatus.WRITTEN
            except ShopifyUserError as e:
                # Email and SMS are separate mutations; only the rejected ones failed
                rejected = set(e.rejected) or set(CONSENT_CHANNELS)
                logger.warning(
                    f"Shopify rejected {', '.join(sorted(rejected))} consent "
                    f"for customer {handle.customer_id}: {e}"
                )
                for channel in CONSENT_CHANNELS:
                    attr = f"{channel}_consent"
                    if channel in rejected:
                        setattr(result, attr, EnrichmentStatus.FAILED)
                        result.errors[attr] = str(e)
                    else:
                        setattr(result, attr, EnrichmentStatus.WRITTEN)
            except Exception as e:
                logger.exception(
                    f"Marketing consent update failed for customer {handle.customer_id}"
                )
                result.email_consent = EnrichmentStatus.FAILED
                result.sms_consent = EnrichmentStatus.FAILED
                result.errors["email_consent"] = str(e)
                result.errors["sms_consent"] = str(e)

        return result

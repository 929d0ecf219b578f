"""
Processing pipeline for waiver-sync.

Each waiver runs through fetch, extract, classify, resolve, merge and
enrich. Waivers in a batch are processed one at a time in feed order, and a
failure in one waiver never stops the rest of the batch. Only a failure to
read the feed aborts a batch.
"""

import asyncio
import logging
import weakref

import httpx

from .config import SyncConfig
from .customers import CustomerMerger, CustomerResolver
from .enrich import AttributeEnricher
from .extract import extract_profile
from .feeds import FeedReader
from .models import (
    FeedUnavailableError,
    RunStatus,
    SyncReport,
    WaiverOutcome,
    WaiverRecord,
    WaiverStatus,
)
from .shopify import ShopifyClient
from .smartwaiver import SmartwaiverClient
from .tags import TagClassifier

logger = logging.getLogger(__name__)


def describe_error(error: Exception) -> str:
    """One-line error text, including the response body for HTTP errors."""
    if isinstance(error, httpx.HTTPStatusError):
        body = error.response.text[:500]
        return f"HTTP {error.response.status_code}: {body}"
    return str(error) or type(error).__name__


class EmailLocks:
    """Per-email locks so resolve-then-write never races for one address.

    Locks are dropped once no coroutine holds a reference to them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, email: str) -> asyncio.Lock:
        key = email.strip().lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class Pipeline:
    """
    The reconciliation pipeline.

    Clients are passed in explicitly; build_pipeline() wires them from
    configuration.
    """

    def __init__(
        self,
        config: SyncConfig,
        smartwaiver: SmartwaiverClient,
        shopify: ShopifyClient,
        classifier: TagClassifier | None = None,
        enricher: AttributeEnricher | None = None,
        locks: EmailLocks | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Sync configuration
            smartwaiver: Waiver source client
            shopify: Commerce platform client
            classifier: Optional tag classifier (defaults to config.templates)
            enricher: Optional attribute enricher (for testing)
            locks: Optional shared per-email lock registry
        """
        self.config = config
        self.smartwaiver = smartwaiver
        self.shopify = shopify
        self.classifier = classifier or TagClassifier(config.templates)
        self.resolver = CustomerResolver(shopify, config.sync.on_duplicate_match)
        self.merger = CustomerMerger(shopify)
        self.enricher = enricher or AttributeEnricher(shopify, config.enrichment)
        self.locks = locks or EmailLocks()

    async def fetch(self, waiver_id: str) -> WaiverRecord:
        """Fetch the full waiver. Failures abort the batch."""
        try:
            data = await self.smartwaiver.get_waiver(waiver_id)
        except Exception as e:
            raise FeedUnavailableError(
                f"Could not fetch waiver {waiver_id}: {describe_error(e)}"
            ) from e
        return WaiverRecord.from_api(data, waiver_id)

    async def process_waiver(self, waiver: WaiverRecord) -> WaiverOutcome:
        """
        Run one fetched waiver through extract, classify, resolve, merge and
        enrich.

        Never raises: customer write failures come back as a FAILED outcome.
        """
        profile = extract_profile(
            waiver,
            feed_domain=self.config.sync.feed_domain,
            synthesize_placeholder=self.config.sync.synthesize_placeholder_email,
        )
        if profile is None:
            logger.info(f"Skipping waiver {waiver.waiver_id}: no email")
            return WaiverOutcome(
                waiver_id=waiver.waiver_id,
                status=WaiverStatus.SKIPPED,
                error="no email on waiver",
            )

        tags = self.classifier.classify(waiver.template_id)
        dry_run = self.config.sync.dry_run

        async with self.locks.get(profile.email):
            try:
                existing = await self.resolver.resolve(profile.email)
                handle = await self.merger.commit(
                    existing,
                    profile,
                    tags,
                    created_on=waiver.created_on,
                    waiver_id=waiver.waiver_id,
                    dry_run=dry_run,
                )
            except Exception as e:
                error = describe_error(e)
                logger.error(
                    f"Shopify error for {profile.email} (waiver {waiver.waiver_id}): {error}"
                )
                return WaiverOutcome(
                    waiver_id=waiver.waiver_id,
                    status=WaiverStatus.FAILED,
                    email=profile.email,
                    error=error,
                    dry_run=dry_run,
                )

            if dry_run or handle is None:
                return WaiverOutcome(
                    waiver_id=waiver.waiver_id,
                    status=WaiverStatus.SYNCED,
                    email=profile.email,
                    action=handle.action if handle else None,
                    customer_id=handle.customer_id if handle else None,
                    dry_run=dry_run,
                )

            enrichment = await self.enricher.enrich(handle, profile)

        logger.info(f"Synced waiver {waiver.waiver_id} for {profile.email}")
        return WaiverOutcome(
            waiver_id=waiver.waiver_id,
            status=WaiverStatus.SYNCED,
            email=profile.email,
            action=handle.action,
            customer_id=handle.customer_id,
            enrichment=enrichment,
        )

    async def run_feed(self, feed: FeedReader) -> SyncReport:
        """
        Read one batch from the feed and process it in order.

        Returns a report; a feed failure marks the report FAILED instead of
        raising.
        """
        report = SyncReport(mode=feed.mode)
        try:
            waiver_ids = await feed.read_batch()
            for waiver_id in waiver_ids:
                waiver = await self.fetch(waiver_id)
                report.outcomes.append(await self.process_waiver(waiver))
        except FeedUnavailableError as e:
            logger.error(f"Sync failed: {e}")
            report.status = RunStatus.FAILED
            report.error = str(e)
            return report

        logger.info(
            f"{feed.mode.value} batch complete: {report.synced} synced, "
            f"{report.skipped} skipped, {report.failed} failed"
        )
        return report


def build_pipeline(config: SyncConfig, locks: EmailLocks | None = None) -> Pipeline:
    """Construct clients from configuration and wire the pipeline."""
    timeout = config.sync.timeout_seconds
    smartwaiver = SmartwaiverClient(
        api_key=config.smartwaiver.get_api_key(),
        base_url=config.smartwaiver.api_base,
        timeout_seconds=timeout,
    )
    shopify = ShopifyClient(
        api_base=config.shopify.api_base,
        access_token=config.shopify.get_access_token(),
        timeout_seconds=timeout,
    )
    return Pipeline(config, smartwaiver, shopify, locks=locks)

"""
Feed readers: where a batch of waiver identifiers comes from.

All three modes yield identifiers only. The pipeline fetches each waiver in
full before processing, since list, queue and push payloads do not carry
participant data.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from .config import SyncOptions
from .models import FeedMode, FeedUnavailableError, MalformedPushError
from .smartwaiver import SmartwaiverClient

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FeedReader(ABC):
    """Base class for waiver feeds. One read_batch() call is one invocation."""

    mode: FeedMode

    @abstractmethod
    async def read_batch(self) -> list[str]:
        """Return the waiver identifiers to process, in feed order.

        Raises:
            FeedUnavailableError: if the waiver source cannot be reached
        """


class WindowedPollFeed(FeedReader):
    """Waivers created in the last `window`.

    A reader that is reused across ticks starts each window where the
    previous successful listing ended (or earlier, if the window reaches
    further back), so time spent processing a batch never opens a gap.
    Consecutive windows may overlap and return the same waiver twice.
    """

    mode = FeedMode.POLL

    def __init__(
        self,
        client: SmartwaiverClient,
        window: timedelta = DEFAULT_WINDOW,
        limit: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.window = window
        self.limit = limit
        self.clock = clock
        self.last_to_dts: datetime | None = None

    async def read_batch(self) -> list[str]:
        to_dts = self.clock()
        from_dts = to_dts - self.window
        if self.last_to_dts is not None and self.last_to_dts < from_dts:
            from_dts = self.last_to_dts
        try:
            waiver_ids = await self.client.list_waivers(from_dts, to_dts, limit=self.limit)
        except Exception as e:
            raise FeedUnavailableError(f"Could not list waivers: {e}") from e

        # Only advance on success; a failed listing is retried from the same start
        self.last_to_dts = to_dts
        logger.info(f"Found {len(waiver_ids)} new waiver(s) since {from_dts.isoformat()}")
        return waiver_ids


class QueuePullFeed(FeedReader):
    """At most one waiver from the Smartwaiver account webhook queue."""

    mode = FeedMode.QUEUE

    def __init__(self, client: SmartwaiverClient):
        self.client = client

    async def read_batch(self) -> list[str]:
        try:
            message = await self.client.pull_queue_message()
        except Exception as e:
            raise FeedUnavailableError(f"Could not pull queue message: {e}") from e

        if message is None:
            logger.info("Webhook queue is empty")
            return []

        payload = message.get("payload") or {}
        waiver_id = str(payload.get("unique_id") or "").strip()
        if not waiver_id:
            logger.warning(
                f"Queue message {message.get('messageId')} has no unique_id, dropping"
            )
            return []

        logger.info(f"Dequeued waiver {waiver_id} (message {message.get('messageId')})")
        return [waiver_id]


class PushFeed(FeedReader):
    """A single waiver delivered by a webhook."""

    mode = FeedMode.PUSH

    def __init__(self, waiver_id: str | None):
        waiver_id = str(waiver_id or "").strip()
        if not waiver_id:
            raise MalformedPushError("Push delivery is missing unique_id")
        self.waiver_id = waiver_id

    async def read_batch(self) -> list[str]:
        return [self.waiver_id]


def build_feed(
    mode: FeedMode | str,
    client: SmartwaiverClient,
    options: SyncOptions,
    waiver_id: str | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> FeedReader:
    """Construct the feed reader for an invocation mode."""
    mode = FeedMode(mode)
    if mode == FeedMode.POLL:
        return WindowedPollFeed(
            client,
            window=timedelta(minutes=options.window_minutes),
            limit=options.list_limit,
            clock=clock,
        )
    if mode == FeedMode.QUEUE:
        return QueuePullFeed(client)
    return PushFeed(waiver_id)

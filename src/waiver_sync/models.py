"""
Data models for waiver-sync.

Nothing here is persisted: waivers are fetched per run, customers live in
Shopify, and outcomes only travel back to the caller in a SyncReport.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class WaiverSyncError(Exception):
    """Base class for waiver-sync errors."""


class FeedUnavailableError(WaiverSyncError):
    """Raised when the waiver source cannot be listed, pulled or fetched.

    Aborts the current batch.
    """


class MalformedPushError(WaiverSyncError):
    """Raised when a push delivery carries no waiver identifier."""


class AmbiguousCustomerError(WaiverSyncError):
    """Raised when an email search returns more than one customer and the
    configuration asks for duplicates to be treated as an error."""


class FeedMode(str, Enum):
    """How a batch of waiver identifiers was acquired."""

    POLL = "poll"
    QUEUE = "queue"
    PUSH = "push"


class RunStatus(str, Enum):
    """Status of a sync run."""

    COMPLETED = "completed"
    FAILED = "failed"


class WaiverStatus(str, Enum):
    """Per-waiver result."""

    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class CustomerAction(str, Enum):
    """Which customer write the merger issued."""

    CREATED = "created"
    UPDATED = "updated"


class EnrichmentStatus(str, Enum):
    """Result of one enrichment sub-operation."""

    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class WaiverRecord:
    """A waiver as returned by Smartwaiver's get-waiver call."""

    waiver_id: str
    template_id: str | None
    created_on: str | None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any], waiver_id: str | None = None) -> "WaiverRecord":
        """Build from the `waiver` object of the API response.

        `waiver_id` is the identifier the record was fetched by; it is used
        when the payload itself omits `waiverId`.
        """
        return cls(
            waiver_id=str(data.get("waiverId") or waiver_id or ""),
            template_id=data.get("templateId"),
            created_on=data.get("createdOn"),
            raw=data,
        )

    @property
    def participant(self) -> dict[str, Any]:
        participant = self.raw.get("participant")
        return participant if isinstance(participant, dict) else {}

    @property
    def participants(self) -> list[dict[str, Any]]:
        participants = self.raw.get("participants")
        if not isinstance(participants, list):
            return []
        return [p for p in participants if isinstance(p, dict)]


@dataclass
class CanonicalProfile:
    """Normalized participant identity extracted from a waiver."""

    email: str
    first_name: str
    last_name: str
    phone: str = ""
    date_of_birth: str | None = None
    email_is_placeholder: bool = False


@dataclass
class ShopifyCustomer:
    """The subset of a Shopify customer resource that the sync reads."""

    id: int
    email: str | None = None
    tags: str = ""
    note: str | None = None
    accepts_marketing: bool = False
    phone: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShopifyCustomer":
        return cls(
            id=data["id"],
            email=data.get("email"),
            tags=data.get("tags") or "",
            note=data.get("note"),
            accepts_marketing=bool(data.get("accepts_marketing", False)),
            phone=data.get("phone"),
        )


@dataclass
class CustomerHandle:
    """What the enricher needs to know about the written customer."""

    customer_id: int
    phone: str | None
    action: CustomerAction

    @property
    def has_phone(self) -> bool:
        return bool(self.phone and self.phone.strip())


@dataclass
class EnrichmentResult:
    """Outcome of the date-of-birth and marketing-consent writes."""

    date_of_birth: EnrichmentStatus = EnrichmentStatus.SKIPPED
    email_consent: EnrichmentStatus = EnrichmentStatus.SKIPPED
    sms_consent: EnrichmentStatus = EnrichmentStatus.SKIPPED
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def has_failures(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "date_of_birth": self.date_of_birth.value,
            "email_consent": self.email_consent.value,
            "sms_consent": self.sms_consent.value,
        }
        if self.errors:
            result["errors"] = dict(self.errors)
        return result


@dataclass
class WaiverOutcome:
    """Result of running one waiver through the pipeline."""

    waiver_id: str
    status: WaiverStatus
    email: str | None = None
    action: CustomerAction | None = None
    customer_id: int | None = None
    enrichment: EnrichmentResult | None = None
    error: str | None = None
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "waiver_id": self.waiver_id,
            "status": self.status.value,
        }
        if self.email:
            result["email"] = self.email
        if self.action:
            result["action"] = self.action.value
        if self.customer_id is not None:
            result["customer_id"] = self.customer_id
        if self.enrichment:
            result["enrichment"] = self.enrichment.to_dict()
        if self.error:
            result["error"] = self.error
        if self.dry_run:
            result["dry_run"] = True
        return result


@dataclass
class SyncReport:
    """Aggregate result of one batch (one tick, one queue pull, one push)."""

    mode: FeedMode
    started_utc: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    status: RunStatus = RunStatus.COMPLETED
    outcomes: list[WaiverOutcome] = field(default_factory=list)
    error: str | None = None

    def _count(self, status: WaiverStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def synced(self) -> int:
        return self._count(WaiverStatus.SYNCED)

    @property
    def skipped(self) -> int:
        return self._count(WaiverStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(WaiverStatus.FAILED)

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def summary(self) -> str:
        """Human-readable summary for the driving surface."""
        if not self.ok:
            return f"Error syncing waivers: {self.error}"
        return (
            f"Synced {self.processed} waivers. "
            f"({self.synced} synced, {self.skipped} skipped, {self.failed} failed)"
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "mode": self.mode.value,
            "started_utc": self.started_utc,
            "status": self.status.value,
            "processed": self.processed,
            "synced": self.synced,
            "skipped": self.skipped,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
        if self.error:
            result["error"] = self.error
        return result

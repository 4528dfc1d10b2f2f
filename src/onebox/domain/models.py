"""Domain models for OneBox."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# Namespace for deterministic record ids derived from the natural key
RECORD_ID_NAMESPACE = uuid.UUID("6f1c2d4e-9a57-4b8e-8d0a-3c5f7e21b9a4")

# Confidence at or below this is "we don't really know"
LOW_CONFIDENCE_THRESHOLD = 0.3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_id_for(account_id: str, message_id: str) -> str:
    """System id for the (account, message id) natural key."""
    return str(uuid.uuid5(RECORD_ID_NAMESPACE, f"{account_id}:{message_id}"))


class EmailCategory(str, Enum):
    """Closed set of categories the enrichment step can assign."""

    INTERESTED = "interested"
    MEETING_BOOKED = "meeting_booked"
    NOT_INTERESTED = "not_interested"
    SPAM = "spam"
    OUT_OF_OFFICE = "out_of_office"

    @classmethod
    def parse(cls, value: str) -> "EmailCategory":
        """Accept the usual spellings (``meeting-booked``, ``Meeting Booked``)."""
        normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
        return cls(normalized)


class ConnectionState(str, Enum):
    """Per-account connection state, owned by that account's supervisor."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LISTENING = "listening"
    POLLING = "polling"
    REFRESHING = "refreshing"
    ERROR = "error"


class EventType(str, Enum):
    """Live-update event types."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    EMAIL_INGESTED = "email.ingested"


class Account(BaseModel):
    """A configured remote mailbox."""

    id: str
    email: str
    password: str = Field(repr=False)
    imap_host: str
    imap_port: int = 993
    is_active: bool = True
    last_sync: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class EnrichmentResult(BaseModel):
    """Category assigned by the enrichment step."""

    category: EmailCategory
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return max(0.0, min(1.0, float(value)))


class EmailRecord(BaseModel):
    """The durable, searchable unit stored in the search index."""

    id: str
    account_id: str
    message_id: str
    subject: str = ""
    sender: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    date: datetime
    body: str = ""
    html_body: str | None = None
    folder: str = "INBOX"
    is_read: bool = False
    is_flagged: bool = False
    category: EmailCategory | None = None
    ai_confidence: float | None = None
    ai_rationale: str | None = None
    suggested_reply: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Fields a partial update may touch
UPDATABLE_FIELDS = frozenset(
    {
        "subject",
        "sender",
        "to",
        "cc",
        "bcc",
        "body",
        "html_body",
        "folder",
        "is_read",
        "is_flagged",
        "category",
        "ai_confidence",
        "ai_rationale",
        "suggested_reply",
    }
)


class SearchFilters(BaseModel):
    """Filters for searching the email index."""

    account_id: str | None = None
    folder: str | None = None
    category: EmailCategory | None = None
    is_read: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    query: str | None = None


class SearchPage(BaseModel):
    """One page of search results."""

    items: list[EmailRecord]
    total: int
    offset: int
    limit: int

    @property
    def page(self) -> int:
        return self.offset // self.limit + 1 if self.limit else 1

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


# Failures worth another attempt on the next run; the rest are final for that message
RETRYABLE_STAGES = frozenset({"fetch", "index"})


class IngestError(BaseModel):
    """A failure isolated to a single message."""

    uid: int | None = None
    message_id: str | None = None
    stage: str
    error: str


class IngestResult(BaseModel):
    """Outcome of one ingestion run."""

    account_id: str
    processed_count: int = 0
    new_count: int = 0
    skipped_existing: int = 0
    skipped_too_old: int = 0
    errors: list[IngestError] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    aborted: bool = False

    @property
    def retry_uids(self) -> list[int]:
        """UIDs that failed in a retryable stage, lowest first."""
        return sorted({e.uid for e in self.errors if e.uid is not None and e.stage in RETRYABLE_STAGES})


class AccountStatus(BaseModel):
    """Connection-level view of one account, as seen by its supervisor."""

    account_id: str
    state: ConnectionState
    strategy: ConnectionState | None = None
    connected: bool = False
    idle: bool = False
    last_error: str | None = None
    consecutive_failures: int = 0
    last_sync_result: IngestResult | None = None


class DomainEvent(BaseModel):
    """Event published for live-update subscribers."""

    type: EventType
    account_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class NotificationEvent(BaseModel):
    """Payload sent to chat/webhook destinations."""

    event_type: str
    account_id: str
    email_id: str
    sender: str
    subject: str
    category: EmailCategory
    confidence: float
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_record(cls, record: EmailRecord, event_type: str = "email.interested") -> "NotificationEvent":
        return cls(
            event_type=event_type,
            account_id=record.account_id,
            email_id=record.id,
            sender=record.sender,
            subject=record.subject,
            category=record.category or EmailCategory.SPAM,
            confidence=record.ai_confidence or 0.0,
        )

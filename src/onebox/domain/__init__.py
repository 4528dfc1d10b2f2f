"""Domain models and entities."""

from onebox.domain.entities import ParsedEmail
from onebox.domain.errors import (
    AccountNotFoundError,
    AccountRegistryError,
    MailAuthError,
    MailTransportError,
    MessageParseError,
    OneBoxError,
    SearchIndexError,
)
from onebox.domain.models import (
    LOW_CONFIDENCE_THRESHOLD,
    Account,
    AccountStatus,
    ConnectionState,
    DomainEvent,
    EmailCategory,
    EmailRecord,
    EnrichmentResult,
    EventType,
    IngestError,
    IngestResult,
    NotificationEvent,
    SearchFilters,
    SearchPage,
    record_id_for,
)

__all__ = [
    "LOW_CONFIDENCE_THRESHOLD",
    "Account",
    "AccountStatus",
    "ConnectionState",
    "DomainEvent",
    "EmailCategory",
    "EmailRecord",
    "EnrichmentResult",
    "EventType",
    "IngestError",
    "IngestResult",
    "NotificationEvent",
    "ParsedEmail",
    "SearchFilters",
    "SearchPage",
    "record_id_for",
    # Errors
    "OneBoxError",
    "MailTransportError",
    "MailAuthError",
    "MessageParseError",
    "SearchIndexError",
    "AccountNotFoundError",
    "AccountRegistryError",
]

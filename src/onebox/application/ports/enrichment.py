from __future__ import annotations
from typing import Protocol

from onebox.domain.models import EmailRecord, EnrichmentResult

class EnrichmentGateway(Protocol):
    """Never raises: failures come back as the fallback result."""

    async def classify(self, record: EmailRecord) -> EnrichmentResult: ...
    async def suggest_reply(self, record: EmailRecord) -> str: ...
    async def classify_many(self, records: list[EmailRecord]) -> list[EnrichmentResult]: ...

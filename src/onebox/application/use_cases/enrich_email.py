"""Re-run categorization or reply drafting on records already in the index."""

from __future__ import annotations

from loguru import logger

from onebox.application.ports.enrichment import EnrichmentGateway
from onebox.application.ports.search_index import SearchIndex
from onebox.domain.models import EmailRecord, SearchFilters

PAGE_SIZE = 100


class EnrichEmailUseCase:
    def __init__(self, index: SearchIndex, enrichment: EnrichmentGateway) -> None:
        self.index = index
        self.enrichment = enrichment

    async def recategorize(self, email_id: str) -> EmailRecord | None:
        """Classify one stored record again. Returns None when it does not exist."""
        record = await self.index.get(email_id)
        if record is None:
            return None
        result = await self.enrichment.classify(record)
        return await self.index.update(
            email_id,
            {
                "category": result.category,
                "ai_confidence": result.confidence,
                "ai_rationale": result.rationale,
            },
        )

    async def suggest_reply(self, email_id: str) -> EmailRecord | None:
        record = await self.index.get(email_id)
        if record is None:
            return None
        reply = await self.enrichment.suggest_reply(record)
        return await self.index.update(email_id, {"suggested_reply": reply})

    async def recategorize_account(self, account_id: str) -> int:
        """Classify every record of an account in rate-capped batches. Returns the number updated."""
        records: list[EmailRecord] = []
        offset = 0
        while True:
            page = await self.index.search(SearchFilters(account_id=account_id), offset=offset, limit=PAGE_SIZE)
            records.extend(page.items)
            offset += len(page.items)
            if not page.items or offset >= page.total:
                break

        logger.info(f"[{account_id}] Re-categorizing {len(records)} record(s)")
        results = await self.enrichment.classify_many(records)

        updated = 0
        for record, result in zip(records, results, strict=True):
            changed = await self.index.update(
                record.id,
                {
                    "category": result.category,
                    "ai_confidence": result.confidence,
                    "ai_rationale": result.rationale,
                },
            )
            if changed is not None:
                updated += 1
        logger.info(f"[{account_id}] Re-categorized {updated}/{len(records)} record(s)")
        return updated

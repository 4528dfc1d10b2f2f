"""Shared behaviour for enrichment gateways: fallback results and batch pacing."""

from __future__ import annotations

import asyncio

from loguru import logger

from onebox.domain.models import EmailCategory, EmailRecord, EnrichmentResult

FALLBACK_CONFIDENCE = 0.1

# Body excerpt sizes sent upstream
CLASSIFY_BODY_CHARS = 1000
REPLY_BODY_CHARS = 1500


def fallback_result(reason: str) -> EnrichmentResult:
    """Conservative result used whenever classification cannot be trusted."""
    return EnrichmentResult(
        category=EmailCategory.SPAM,
        confidence=FALLBACK_CONFIDENCE,
        rationale=f"Fallback: {reason}",
    )


def fallback_reply(product_context: str) -> str:
    return f"Thank you for your email. I appreciate you taking the time to reach out. {product_context}".strip()


class BatchingGateway:
    """
    classify_many in fixed-size batches: at most ``concurrency`` requests in
    flight, ``batch_delay`` seconds of pause between batches.

    Subclasses implement ``classify`` and ``suggest_reply``.
    """

    name = "base"

    def __init__(self, concurrency: int, batch_delay: float):
        self.concurrency = max(1, concurrency)
        self.batch_delay = batch_delay

    async def classify(self, record: EmailRecord) -> EnrichmentResult:
        raise NotImplementedError

    async def suggest_reply(self, record: EmailRecord) -> str:
        raise NotImplementedError

    async def classify_many(self, records: list[EmailRecord]) -> list[EnrichmentResult]:
        results: list[EnrichmentResult] = []
        for start in range(0, len(records), self.concurrency):
            if start:
                await asyncio.sleep(self.batch_delay)
            batch = records[start : start + self.concurrency]
            results.extend(await asyncio.gather(*(self.classify(r) for r in batch)))
            logger.debug(f"{self.name}: classified {len(results)}/{len(records)}")
        return results

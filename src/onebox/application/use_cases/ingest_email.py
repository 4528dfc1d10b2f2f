"""Ingest new messages for one account: parse, dedup, enrich, index, notify."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from onebox.application.ports.account_registry import AccountRegistry
from onebox.application.ports.enrichment import EnrichmentGateway
from onebox.application.ports.events import EventPublisher
from onebox.application.ports.mail_source import MailConnection, RawMessage
from onebox.application.ports.notifier import Notifier
from onebox.application.ports.search_index import SearchIndex
from onebox.domain.entities.email_message import ParsedEmail
from onebox.domain.errors import MailTransportError, MessageParseError, OneBoxError
from onebox.domain.models import (
    DomainEvent,
    EmailCategory,
    EmailRecord,
    EventType,
    IngestError,
    IngestResult,
    NotificationEvent,
    record_id_for,
    utcnow,
)
from onebox.infrastructure.email.rfc822 import parse_rfc822

DEFAULT_CHUNK_SIZE = 10
DEFAULT_FETCH_TIMEOUT = 120.0


class IngestEmailUseCase:
    """Turn candidate message ids into enriched, indexed records.

    Flow per chunk:
    1. Fetch raw messages (bounded by ``fetch_timeout``)
    2. Parse; skip what is already indexed, then what is older than the lookback
    3. Classify; draft a reply for interested mail
    4. Upsert the complete record
    5. Notify (interested only) and publish ``email.ingested``

    Failures of a single message are recorded and the run moves on. A
    transport failure while fetching ends the run with ``aborted=True`` so
    the caller can reconnect. ``last_sync`` only advances when the run was
    not aborted and no message is left in a retryable stage (fetch, index).
    """

    def __init__(
        self,
        index: SearchIndex,
        enrichment: EnrichmentGateway,
        notifier: Notifier,
        events: EventPublisher,
        registry: AccountRegistry,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.index = index
        self.enrichment = enrichment
        self.notifier = notifier
        self.events = events
        self.registry = registry
        self.chunk_size = max(1, chunk_size)
        self.fetch_timeout = fetch_timeout
        self.clock = clock

    async def run(
        self,
        account_id: str,
        candidate_uids: list[int],
        lookback: timedelta,
        source: MailConnection,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> IngestResult:
        result = IngestResult(account_id=account_id, started_at=self.clock())
        horizon = result.started_at - lookback
        uids = sorted(set(candidate_uids))

        logger.info(f"[{account_id}] Ingesting {len(uids)} candidate(s), horizon {horizon:%Y-%m-%d %H:%M}")

        for start in range(0, len(uids), self.chunk_size):
            if should_continue is not None and not should_continue():
                logger.info(f"[{account_id}] Ingestion stopped after {result.processed_count} message(s)")
                result.aborted = True
                break

            chunk = uids[start : start + self.chunk_size]
            try:
                raw_messages = await self._fetch(source, chunk)
            except MailTransportError as e:
                logger.warning(f"[{account_id}] Fetch failed, aborting run: {e}")
                result.errors.append(IngestError(uid=chunk[0], stage="fetch", error=str(e)))
                result.aborted = True
                break

            fetched = {raw.uid for raw in raw_messages}
            for uid in chunk:
                if uid not in fetched:
                    result.errors.append(IngestError(uid=uid, stage="vanished", error="message not returned"))

            for raw in raw_messages:
                await self._ingest_one(account_id, raw, horizon, source.folder, result)
            result.processed_count += len(chunk)
            # Chunk goes out of scope here; only one chunk of raw bytes is held at a time
            del raw_messages

        result.finished_at = self.clock()

        if result.retry_uids and not result.aborted:
            logger.warning(f"[{account_id}] {len(result.retry_uids)} message(s) left for retry, last_sync kept")
        elif not result.aborted:
            try:
                await self.registry.update_last_sync(account_id, result.started_at)
            except OneBoxError as e:
                logger.error(f"[{account_id}] Could not record last_sync: {e}")
                result.errors.append(IngestError(stage="registry", error=str(e)))

        logger.info(
            f"[{account_id}] Ingest done: processed={result.processed_count} new={result.new_count} "
            f"existing={result.skipped_existing} too_old={result.skipped_too_old} "
            f"errors={len(result.errors)}{' (aborted)' if result.aborted else ''}"
        )
        return result

    async def _fetch(self, source: MailConnection, uids: list[int]) -> list[RawMessage]:
        try:
            return await asyncio.wait_for(source.fetch(uids), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise MailTransportError(f"fetch of {len(uids)} message(s) timed out after {self.fetch_timeout}s") from e

    async def _ingest_one(
        self,
        account_id: str,
        raw: RawMessage,
        horizon: datetime,
        folder: str,
        result: IngestResult,
    ) -> None:
        try:
            parsed = parse_rfc822(raw.rfc822_bytes, raw.internal_date)
        except MessageParseError as e:
            logger.warning(f"[{account_id}] UID {raw.uid}: parse failed: {e}")
            result.errors.append(IngestError(uid=raw.uid, stage="parse", error=str(e)))
            return

        try:
            if await self.index.exists_by_natural_key(account_id, parsed.message_id):
                result.skipped_existing += 1
                return
        except OneBoxError as e:
            logger.error(f"[{account_id}] UID {raw.uid}: existence check failed: {e}")
            result.errors.append(
                IngestError(uid=raw.uid, message_id=parsed.message_id, stage="index", error=str(e))
            )
            return

        if parsed.date < horizon:
            result.skipped_too_old += 1
            return

        try:
            record = await self._enrich(self._build_record(account_id, parsed, folder))
            await self.index.upsert(record)
        except OneBoxError as e:
            logger.error(f"[{account_id}] UID {raw.uid}: indexing failed: {e}")
            result.errors.append(
                IngestError(uid=raw.uid, message_id=parsed.message_id, stage="index", error=str(e))
            )
            return
        except Exception as e:
            logger.exception(f"[{account_id}] UID {raw.uid}: unexpected failure")
            result.errors.append(
                IngestError(uid=raw.uid, message_id=parsed.message_id, stage="process", error=str(e))
            )
            return

        result.new_count += 1
        logger.info(
            f"[{account_id}] Indexed: {record.subject[:50]} "
            f"({record.category.value if record.category else 'uncategorized'})"
        )
        self._announce(record)

    def _build_record(self, account_id: str, parsed: ParsedEmail, folder: str) -> EmailRecord:
        now = self.clock()
        return EmailRecord(
            id=record_id_for(account_id, parsed.message_id),
            account_id=account_id,
            message_id=parsed.message_id,
            subject=parsed.subject,
            sender=parsed.sender,
            to=list(parsed.to),
            cc=list(parsed.cc),
            bcc=list(parsed.bcc),
            date=parsed.date,
            body=parsed.text,
            html_body=parsed.html,
            folder=folder,
            created_at=now,
            updated_at=now,
        )

    async def _enrich(self, record: EmailRecord) -> EmailRecord:
        enrichment = await self.enrichment.classify(record)
        record = record.model_copy(
            update={
                "category": enrichment.category,
                "ai_confidence": enrichment.confidence,
                "ai_rationale": enrichment.rationale,
            }
        )
        if enrichment.category is EmailCategory.INTERESTED:
            reply = await self.enrichment.suggest_reply(record)
            record = record.model_copy(update={"suggested_reply": reply or None})
        return record

    def _announce(self, record: EmailRecord) -> None:
        if record.category is EmailCategory.INTERESTED:
            self.notifier.dispatch(NotificationEvent.for_record(record))

        self.events.publish(
            DomainEvent(
                type=EventType.EMAIL_INGESTED,
                account_id=record.account_id,
                payload={
                    "email_id": record.id,
                    "message_id": record.message_id,
                    "subject": record.subject,
                    "sender": record.sender,
                    "date": record.date.isoformat(),
                    "category": record.category.value if record.category else None,
                    "confidence": record.ai_confidence,
                },
            )
        )

"""Milvus implementation of the email SearchIndex."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from loguru import logger
from pymilvus import MilvusException

from onebox.application.ports.search_index import SearchIndex
from onebox.domain.errors import SearchIndexError
from onebox.domain.models import (
    UPDATABLE_FIELDS,
    EmailRecord,
    SearchFilters,
    SearchPage,
    record_id_for,
    utcnow,
)
from onebox.infrastructure.embeddings.factory import Embedder, email_embedding_text
from onebox.infrastructure.milvus_client import MilvusClientWrapper

COLLECTION_NAME = "emails"

# Milvus caps query/search windows at 16384 rows; listings page through an iterator instead
QUERY_WINDOW = 16384
QUERY_BATCH = 1000
SEMANTIC_WINDOW = 200

# Recency boost added to cosine similarity, halving every 30 days
RECENCY_WEIGHT = 0.1
RECENCY_HALF_LIFE_DAYS = 30.0

EMBEDDED_FIELDS = frozenset({"subject", "sender", "body"})
_RECORD_FIELDS = frozenset(EmailRecord.model_fields)

T = TypeVar("T")


def _quote(value: str) -> str:
    return json.dumps(value)


def build_filter(filters: SearchFilters) -> str:
    """Translate SearchFilters into a Milvus boolean expression."""
    clauses: list[str] = []
    if filters.account_id:
        clauses.append(f"account_id == {_quote(filters.account_id)}")
    if filters.folder:
        clauses.append(f"folder == {_quote(filters.folder)}")
    if filters.category is not None:
        clauses.append(f"category == {_quote(filters.category.value)}")
    if filters.is_read is not None:
        clauses.append(f"is_read == {'true' if filters.is_read else 'false'}")
    if filters.date_from is not None:
        clauses.append(f"date_ts >= {int(filters.date_from.timestamp())}")
    if filters.date_to is not None:
        clauses.append(f"date_ts <= {int(filters.date_to.timestamp())}")
    return " and ".join(clauses) if clauses else 'id != ""'


def _to_row(record: EmailRecord, embedding: list[float]) -> dict[str, Any]:
    data = record.model_dump(mode="json", exclude_none=True)
    data["embedding"] = embedding
    data["date_ts"] = int(record.date.timestamp())
    return data


def _from_row(row: dict[str, Any]) -> EmailRecord:
    return EmailRecord.model_validate({k: v for k, v in row.items() if k in _RECORD_FIELDS})


class MilvusEmailIndex(SearchIndex):
    """Store, update and search email records in Milvus.

    The primary key is the deterministic record id, so an upsert of the same
    (account, message id) always lands on the same row.
    """

    def __init__(
        self,
        client: MilvusClientWrapper,
        embedder: Embedder,
        collection_name: str = COLLECTION_NAME,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.embedder = embedder
        self.collection_name = collection_name
        self._clock = clock
        self._ensure_collection()

    def _ensure_collection(self) -> None:
        try:
            self.client.ensure_collection(self.collection_name, dimension=self.embedder.dimension)
        except MilvusException as e:
            raise SearchIndexError(f"Cannot prepare collection {self.collection_name}: {e}") from e

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except MilvusException as e:
            raise SearchIndexError(f"Milvus {getattr(fn, '__name__', 'call')} failed: {e}") from e

    def _embed(self, record: EmailRecord) -> list[float]:
        return self.embedder.embed(email_embedding_text(record.subject, record.sender, record.body))

    # =========================================================================
    # Reads
    # =========================================================================

    def _get_rows(self, ids: list[str], output_fields: list[str] | None = None) -> list[dict]:
        return self.client.client.get(
            collection_name=self.collection_name,
            ids=ids,
            output_fields=output_fields or ["*"],
        )

    async def exists_by_natural_key(self, account_id: str, message_id: str) -> bool:
        rows = await self._call(self._get_rows, [record_id_for(account_id, message_id)], ["id"])
        return bool(rows)

    async def get(self, email_id: str) -> Optional[EmailRecord]:
        rows = await self._call(self._get_rows, [email_id])
        return _from_row(rows[0]) if rows else None

    # =========================================================================
    # Writes
    # =========================================================================

    def _upsert_row(self, row: dict[str, Any]) -> None:
        self.client.client.upsert(collection_name=self.collection_name, data=[row])

    async def upsert(self, record: EmailRecord) -> None:
        embedding = await asyncio.to_thread(self._embed, record)
        await self._call(self._upsert_row, _to_row(record, embedding))
        logger.debug(f"Upserted email {record.id} ({record.account_id}:{record.message_id})")

    async def update(self, email_id: str, fields: dict[str, Any]) -> Optional[EmailRecord]:
        """Merge ``fields`` into the stored record; untouched fields keep their values."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        rows = await self._call(self._get_rows, [email_id], ["*", "embedding"])
        if not rows:
            return None
        row = rows[0]

        merged = _from_row(row).model_copy(update={**fields, "updated_at": self._clock()})
        # Round-trip through validation so enum/str coercion matches a fresh record
        merged = EmailRecord.model_validate(merged.model_dump())

        embedding = row.get("embedding")
        if embedding is None or EMBEDDED_FIELDS & set(fields):
            embedding = await asyncio.to_thread(self._embed, merged)

        await self._call(self._upsert_row, _to_row(merged, list(embedding)))
        logger.debug(f"Updated email {email_id}: {sorted(fields)}")
        return merged

    def _delete_ids(self, ids: list[str]) -> None:
        self.client.client.delete(collection_name=self.collection_name, ids=ids)

    async def delete(self, email_id: str) -> bool:
        rows = await self._call(self._get_rows, [email_id], ["id"])
        if not rows:
            return False
        await self._call(self._delete_ids, [email_id])
        return True

    # =========================================================================
    # Search
    # =========================================================================

    def _query_all(self, expr: str, output_fields: list[str]) -> list[dict]:
        iterator = self.client.client.query_iterator(
            collection_name=self.collection_name,
            batch_size=QUERY_BATCH,
            filter=expr,
            output_fields=output_fields,
        )
        rows: list[dict] = []
        try:
            while True:
                batch = iterator.next()
                if not batch:
                    break
                rows.extend(batch)
        finally:
            iterator.close()
        return rows

    def _semantic(self, vector: list[float], expr: str, limit: int) -> list[dict]:
        results = self.client.client.search(
            collection_name=self.collection_name,
            data=[vector],
            filter=expr,
            limit=limit,
            output_fields=["*"],
            search_params={"metric_type": "COSINE"},
        )
        return list(results[0]) if results else []

    def _recency_boost(self, date_ts: int | None) -> float:
        if date_ts is None:
            return 0.0
        age_days = max(0.0, (self._clock().timestamp() - date_ts) / 86400)
        return RECENCY_WEIGHT * 0.5 ** (age_days / RECENCY_HALF_LIFE_DAYS)

    async def search(self, filters: SearchFilters, offset: int = 0, limit: int = 20) -> SearchPage:
        """Newest-first listing, or semantic ranking with a recency boost when a query is set."""
        expr = build_filter(filters)

        if not filters.query:
            keys = await self._call(self._query_all, expr, ["id", "date_ts"])
            keys.sort(key=lambda r: r.get("date_ts") or 0, reverse=True)
            page_ids = [r["id"] for r in keys[offset : offset + limit]]
            rows = await self._call(self._get_rows, page_ids) if page_ids else []
            by_id = {r["id"]: r for r in rows}
            items = [_from_row(by_id[i]) for i in page_ids if i in by_id]
            return SearchPage(items=items, total=len(keys), offset=offset, limit=limit)

        vector = await asyncio.to_thread(self.embedder.embed, filters.query)
        window = min(max(offset + limit, SEMANTIC_WINDOW), QUERY_WINDOW)
        hits = await self._call(self._semantic, vector, expr, window)

        scored = []
        for hit in hits:
            entity = dict(hit.get("entity") or {})
            entity.setdefault("id", hit.get("id"))
            score = float(hit.get("distance", 0.0)) + self._recency_boost(entity.get("date_ts"))
            scored.append((score, entity))
        scored.sort(key=lambda pair: pair[0], reverse=True)

        items = [_from_row(entity) for _, entity in scored[offset : offset + limit]]
        return SearchPage(items=items, total=len(scored), offset=offset, limit=limit)

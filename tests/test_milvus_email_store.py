from datetime import timedelta

import pytest

from onebox.domain.models import EmailCategory, SearchFilters, record_id_for
from onebox.infrastructure.stores import milvus_email_store
from onebox.infrastructure.stores.milvus_email_store import MilvusEmailIndex, build_filter

from tests.fakes import NOW, FakeEmbedder, FakeMilvusWrapper, FixedClock, make_record


@pytest.fixture
def embedder():
    return FakeEmbedder(dimension=64)


@pytest.fixture
def store(embedder):
    return MilvusEmailIndex(FakeMilvusWrapper(), embedder, collection_name="emails_test", clock=FixedClock(NOW + timedelta(hours=1)))


async def _seed(store, count, account_id="acct-1", **overrides):
    records = []
    for i in range(count):
        record = make_record(account_id, f"<{account_id}-{i}@example.com>", date=NOW - timedelta(days=i), **overrides)
        await store.upsert(record)
        records.append(record)
    return records


def test_build_filter_quotes_values():
    expr = build_filter(
        SearchFilters(account_id='a"b', category=EmailCategory.SPAM, is_read=False, date_from=NOW)
    )

    assert expr == (
        'account_id == "a\\"b" and category == "spam" and is_read == false '
        f"and date_ts >= {int(NOW.timestamp())}"
    )
    assert build_filter(SearchFilters()) == 'id != ""'


@pytest.mark.asyncio
async def test_upsert_get_and_exists(store):
    record = make_record("acct-1", "<a@example.com>", category=EmailCategory.INTERESTED, to=["x@example.com"])

    await store.upsert(record)

    assert await store.exists_by_natural_key("acct-1", "<a@example.com>")
    assert not await store.exists_by_natural_key("acct-2", "<a@example.com>")
    fetched = await store.get(record.id)
    assert fetched == record


@pytest.mark.asyncio
async def test_upsert_same_natural_key_keeps_one_row(store):
    await store.upsert(make_record("acct-1", "<a@example.com>", subject="first"))
    await store.upsert(make_record("acct-1", "<a@example.com>", subject="second"))

    page = await store.search(SearchFilters(account_id="acct-1"))

    assert page.total == 1
    assert page.items[0].subject == "second"


@pytest.mark.asyncio
async def test_update_merges_fields_and_bumps_updated_at(store, embedder):
    record = make_record("acct-1", "<a@example.com>", ai_rationale="keep me")
    await store.upsert(record)
    calls = embedder.calls

    updated = await store.update(record.id, {"is_read": True, "category": "meeting_booked"})

    assert updated.is_read is True
    assert updated.category is EmailCategory.MEETING_BOOKED
    assert updated.ai_rationale == "keep me"
    assert updated.subject == record.subject
    assert updated.updated_at == NOW + timedelta(hours=1)
    assert embedder.calls == calls
    assert (await store.get(record.id)).is_read is True


@pytest.mark.asyncio
async def test_update_of_embedded_field_re_embeds(store, embedder):
    record = make_record("acct-1", "<a@example.com>")
    await store.upsert(record)
    calls = embedder.calls

    await store.update(record.id, {"subject": "Completely different words"})

    assert embedder.calls == calls + 1


@pytest.mark.asyncio
async def test_update_unknown_id_and_bad_field(store):
    assert await store.update(record_id_for("acct-1", "<missing@example.com>"), {"is_read": True}) is None
    with pytest.raises(ValueError):
        await store.update("whatever", {"account_id": "other"})


@pytest.mark.asyncio
async def test_delete(store):
    record = make_record("acct-1", "<a@example.com>")
    await store.upsert(record)

    assert await store.delete(record.id) is True
    assert await store.delete(record.id) is False
    assert await store.get(record.id) is None


@pytest.mark.asyncio
async def test_listing_is_newest_first_with_pagination(store):
    records = await _seed(store, 5)
    await _seed(store, 2, account_id="acct-2")

    first = await store.search(SearchFilters(account_id="acct-1"), offset=0, limit=2)
    last = await store.search(SearchFilters(account_id="acct-1"), offset=4, limit=2)

    assert first.total == 5
    assert [r.id for r in first.items] == [records[0].id, records[1].id]
    assert [r.id for r in last.items] == [records[4].id]
    assert first.total_pages == 3


@pytest.mark.asyncio
async def test_listing_reads_every_iterator_batch(store, monkeypatch):
    monkeypatch.setattr(milvus_email_store, "QUERY_BATCH", 2)
    records = await _seed(store, 5)

    page = await store.search(SearchFilters(account_id="acct-1"), offset=4, limit=2)

    assert page.total == 5
    assert [r.id for r in page.items] == [records[4].id]
    assert store.client.client.iterator_batches == 3


@pytest.mark.asyncio
async def test_listing_filters(store):
    await _seed(store, 3)
    await _seed(store, 2, account_id="acct-2", category=EmailCategory.INTERESTED)

    interested = await store.search(SearchFilters(category=EmailCategory.INTERESTED))
    recent = await store.search(SearchFilters(account_id="acct-1", date_from=NOW - timedelta(days=1)))

    assert interested.total == 2
    assert {r.account_id for r in interested.items} == {"acct-2"}
    assert recent.total == 2


@pytest.mark.asyncio
async def test_semantic_search_ranks_by_similarity(store):
    await store.upsert(make_record("acct-1", "<a@example.com>", subject="invoice overdue payment", body="pay the invoice"))
    await store.upsert(make_record("acct-1", "<b@example.com>", subject="team lunch friday", body="pizza at noon"))

    page = await store.search(SearchFilters(account_id="acct-1", query="invoice payment"))

    assert page.items[0].message_id == "<a@example.com>"


@pytest.mark.asyncio
async def test_semantic_search_prefers_recent_on_equal_similarity(store):
    same = {"subject": "quarterly report", "body": "numbers attached", "sender": "cfo@example.com"}
    await store.upsert(make_record("acct-1", "<old@example.com>", date=NOW - timedelta(days=200), **same))
    await store.upsert(make_record("acct-1", "<new@example.com>", date=NOW - timedelta(days=1), **same))

    page = await store.search(SearchFilters(query="quarterly report"))

    assert [r.message_id for r in page.items] == ["<new@example.com>", "<old@example.com>"]

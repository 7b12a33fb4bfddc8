import asyncio
from datetime import datetime, timezone

import pytest

from journalens.cache import (
    CachedSummary,
    SummaryCache,
    SummaryWriter,
    content_hash,
    parse_summary_filename,
    summary_filename,
)
from journalens.store import JsonFileStore, StoreError
from journalens.tiers import period_key

from conftest import make_entry


def week_batch():
    return [
        make_entry(datetime(2024, 5, 6, 8, 0), "Monday run"),
        make_entry(datetime(2024, 5, 8, 21, 0), "Argued with Sam"),
    ]


def cached_for(batch, summary_type="weekly", text="A calm week.") -> CachedSummary:
    return CachedSummary(
        period_key=period_key(batch, summary_type),
        period_label="Week of May 6, 2024",
        type=summary_type,
        summary=text,
        entry_count=len(batch),
        content_hash=content_hash(batch),
        created_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


class FailingStore(JsonFileStore):
    """File store whose operations can be made to fail."""

    def __init__(self, root, fail_on=()):
        super().__init__(root, "failing")
        self.fail_on = set(fail_on)

    async def list(self, prefix):
        if "list" in self.fail_on:
            raise StoreError("list failed")
        return await super().list(prefix)

    async def get(self, object_id):
        if "get" in self.fail_on:
            raise StoreError("get failed")
        return await super().get(object_id)

    async def create(self, name, blob):
        if "create" in self.fail_on:
            raise StoreError("create failed")
        return await super().create(name, blob)


def test_content_hash_is_deterministic_and_sensitive():
    batch = week_batch()
    digest = content_hash(batch)

    assert len(digest) == 16 and all(c in "0123456789abcdef" for c in digest)
    assert content_hash(week_batch()) == digest
    assert content_hash(list(reversed(batch))) != digest
    assert content_hash([batch[0], make_entry(batch[1].date, "Made up with Sam")]) != digest
    assert content_hash([batch[0], make_entry(datetime(2024, 5, 8, 21, 1), batch[1].text)]) != digest


def test_summary_filename_sanitizes_period():
    assert summary_filename("weekly", "2024-W19", "0123456789abcdef") == "summary-weekly-2024-W19-0123456789abcdef.json"
    assert summary_filename("monthly", "2024/05 x", "0123456789abcdef") == "summary-monthly-2024_05_x-0123456789abcdef.json"


def test_parse_summary_filename():
    assert parse_summary_filename("summary-weekly-2024-W19-0123456789abcdef.json") == ("2024-W19", "0123456789abcdef")
    assert parse_summary_filename("summary-weekly-2024-W19.json") is None
    assert parse_summary_filename("report-abc.json") is None


def test_cached_summary_serializes_camel_case():
    blob = cached_for(week_batch()).to_blob()
    assert set(blob) == {"periodKey", "periodLabel", "type", "summary", "entryCount", "contentHash", "createdAt"}
    assert CachedSummary.model_validate(blob) == cached_for(week_batch())


@pytest.mark.asyncio
async def test_no_store_reports_everything_uncached():
    cache = SummaryCache(None)
    lookup = await cache.find_uncached([week_batch(), week_batch()], "weekly")
    assert lookup.cached == {}
    assert lookup.uncached_indices == [0, 1]
    assert await cache.save_summary(cached_for(week_batch())) is False


@pytest.mark.asyncio
async def test_save_then_find_round_trip(tmp_path):
    cache = SummaryCache(JsonFileStore(tmp_path, "alice"))
    batch = week_batch()
    other = [make_entry(datetime(2024, 5, 14), "Tuesday")]
    summary = cached_for(batch)

    assert await cache.save([summary]) == 1
    lookup = await cache.find_uncached([other, batch], "weekly")

    assert lookup.uncached_indices == [0]
    assert lookup.cached == {summary.period_key: summary}


@pytest.mark.asyncio
async def test_changed_content_is_a_miss(tmp_path):
    cache = SummaryCache(JsonFileStore(tmp_path, "alice"))
    batch = week_batch()
    await cache.save([cached_for(batch)])

    edited = [batch[0], make_entry(batch[1].date, "Argued with Sam, then made up")]
    lookup = await cache.find_uncached([edited], "weekly")
    assert lookup.uncached_indices == [0]


@pytest.mark.asyncio
async def test_other_type_is_not_matched(tmp_path):
    cache = SummaryCache(JsonFileStore(tmp_path, "alice"))
    batch = week_batch()
    await cache.save([cached_for(batch, "monthly")])
    lookup = await cache.find_uncached([batch], "weekly")
    assert lookup.uncached_indices == [0]


@pytest.mark.asyncio
async def test_saving_twice_keeps_one_object(tmp_path):
    store = JsonFileStore(tmp_path, "alice")
    cache = SummaryCache(store)
    batch = week_batch()

    await cache.save_summary(cached_for(batch, text="first"))
    await cache.save_summary(cached_for(batch, text="second"))

    objects = await store.list("summary-weekly-")
    assert len(objects) == 1
    summaries = await cache.list_summaries("weekly")
    assert [s.summary for s in summaries] == ["second"]


@pytest.mark.asyncio
async def test_corrupted_record_is_a_miss(tmp_path):
    store = JsonFileStore(tmp_path, "alice")
    cache = SummaryCache(store)
    batch = week_batch()
    name = summary_filename("weekly", period_key(batch, "weekly"), content_hash(batch))
    await store.create(name, {"periodKey": period_key(batch, "weekly"), "summary": 42})

    lookup = await cache.find_uncached([batch], "weekly")
    assert lookup.uncached_indices == [0]


@pytest.mark.asyncio
async def test_undecodable_record_is_skipped(tmp_path):
    store = JsonFileStore(tmp_path, "alice")
    cache = SummaryCache(store)
    good = cached_for(week_batch())
    await cache.save([good])
    (store.user_dir / "summary-weekly-2024-W01-0123456789abcdef.json").write_text("{not json")

    assert await cache.list_summaries("weekly") == [good]


@pytest.mark.asyncio
async def test_listing_failure_degrades_to_miss(tmp_path):
    cache = SummaryCache(FailingStore(tmp_path, fail_on={"list"}))
    lookup = await cache.find_uncached([week_batch()], "weekly")
    assert lookup.uncached_indices == [0]


@pytest.mark.asyncio
async def test_write_failure_is_not_raised(tmp_path):
    cache = SummaryCache(FailingStore(tmp_path, fail_on={"create"}))
    assert await cache.save([cached_for(week_batch())]) == 0


@pytest.mark.asyncio
async def test_cleanup_deletes_superseded_hashes_only(tmp_path):
    store = JsonFileStore(tmp_path, "alice")
    cache = SummaryCache(store)
    batch = week_batch()
    old = cached_for(batch)
    unrelated = cached_for([make_entry(datetime(2024, 4, 2), "April")])
    await cache.save([old, unrelated])

    edited = [batch[0], make_entry(batch[1].date, "edited")]
    deleted = await cache.cleanup("weekly", {period_key(edited, "weekly"): content_hash(edited)})

    assert deleted == 1
    remaining = await cache.list_summaries("weekly")
    assert remaining == [unrelated]


@pytest.mark.asyncio
async def test_cleanup_keeps_current_hash(tmp_path):
    cache = SummaryCache(JsonFileStore(tmp_path, "alice"))
    batch = week_batch()
    await cache.save([cached_for(batch)])
    assert await cache.cleanup("weekly", {period_key(batch, "weekly"): content_hash(batch)}) == 0


@pytest.mark.asyncio
async def test_writer_persists_in_background(tmp_path):
    cache = SummaryCache(JsonFileStore(tmp_path, "alice"))
    writer = SummaryWriter(cache, workers=2)
    summaries = [cached_for(week_batch()), cached_for([make_entry(datetime(2024, 4, 2), "April")])]

    assert writer.submit(summaries) == 2
    await writer.close()

    assert writer.written == 2
    assert len(await cache.list_summaries("weekly")) == 2


@pytest.mark.asyncio
async def test_writer_drops_when_queue_full(tmp_path):
    cache = SummaryCache(JsonFileStore(tmp_path, "alice"))
    writer = SummaryWriter(cache, workers=1, max_pending=1)
    summaries = [cached_for(week_batch(), text=str(i)) for i in range(3)]

    queued = writer.submit(summaries)
    await writer.close()

    assert queued == 1
    assert writer.dropped == 2


@pytest.mark.asyncio
async def test_writer_survives_store_failures(tmp_path):
    cache = SummaryCache(FailingStore(tmp_path, fail_on={"create"}))
    writer = SummaryWriter(cache)
    writer.submit([cached_for(week_batch())])
    await asyncio.wait_for(writer.close(), timeout=5)
    assert writer.written == 0

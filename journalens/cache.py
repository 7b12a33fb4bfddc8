#!/usr/bin/env python3
"""
Content-addressed cache of batch summaries.

Key format: summary-{weekly|monthly}-{periodKey}-{contentHash}.json

The content hash covers every (timestamp, text) pair of a batch in order,
so editing, adding or reordering entries yields a new key and the stale
summary is simply never matched again. Caching is strictly best-effort:
store failures are reported on the console and treated as misses or
dropped writes.
"""

import asyncio
import hashlib
import re
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from rich.console import Console

from .entries import Entry
from .store import DocumentStore, StoreError
from .tiers import period_key

console = Console()

SAFE_PERIOD_RE = re.compile(r"[^a-zA-Z0-9-]")
SUMMARY_FILE_RE = re.compile(r"^summary-(?:weekly|monthly)-(.+)-([a-f0-9]{16})\.json$")


class CachedSummary(BaseModel):
    """Persisted summary record. Serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    period_key: str
    period_label: str
    type: Literal["weekly", "monthly"]
    summary: str
    entry_count: int = Field(ge=1)
    content_hash: str = Field(pattern=r"^[0-9a-f]{16}$")
    created_at: datetime

    def to_blob(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CacheLookup(BaseModel):
    cached: Dict[str, CachedSummary] = Field(default_factory=dict)
    uncached_indices: List[int] = Field(default_factory=list)


def iso_timestamp(date: datetime) -> str:
    """UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    return date.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def content_hash(batch: List[Entry]) -> str:
    """16-hex-char fingerprint of a batch's ordered (timestamp, text) pairs."""
    content = "\n".join(f"{iso_timestamp(e.date)}|{e.text}" for e in batch)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def summary_filename(summary_type: str, period: str, digest: str) -> str:
    safe_period = SAFE_PERIOD_RE.sub("_", period)
    return f"summary-{summary_type}-{safe_period}-{digest}.json"


def parse_summary_filename(name: str) -> Optional[tuple]:
    """Split a summary filename back into (period_key, content_hash)."""
    match = SUMMARY_FILE_RE.match(name)
    if not match:
        return None
    return match.group(1), match.group(2)


class SummaryCache:
    """
    Summary lookups and writes against one user's durable store.

    With no store (anonymous use) every batch is reported uncached and
    writes are no-ops.
    """

    def __init__(self, store: Optional[DocumentStore], save_batch_size: int = 5):
        self.store = store
        self.save_batch_size = max(1, save_batch_size)

    async def list_summaries(self, summary_type: str) -> List[CachedSummary]:
        """Load every persisted summary of a type, skipping unreadable records."""
        if self.store is None:
            return []

        try:
            objects = await self.store.list(f"summary-{summary_type}-")
        except StoreError as e:
            console.print(f"[yellow]⚠️  Could not list cached {summary_type} summaries: {e}[/yellow]")
            return []

        summaries = []
        for obj in objects:
            if not obj.name.endswith(".json"):
                continue
            try:
                blob = await self.store.get(obj.id)
                summaries.append(CachedSummary.model_validate(blob))
            except StoreError as e:
                console.print(f"[yellow]⚠️  Skipping unreadable cache record {obj.name}: {e}[/yellow]")
            except ValidationError as e:
                console.print(
                    f"[yellow]⚠️  Skipping corrupted cache record {obj.name} "
                    f"({e.error_count()} validation errors)[/yellow]"
                )
        return summaries

    async def find_uncached(self, batches: List[List[Entry]], summary_type: str) -> CacheLookup:
        """
        Split batches into cache hits and misses.

        A hit needs both the period and the exact content hash to match.

        Returns:
            CacheLookup with hits keyed by period key and the indices of misses
        """
        if self.store is None:
            return CacheLookup(uncached_indices=list(range(len(batches))))

        index = {
            f"{s.period_key}:{s.content_hash}": s
            for s in await self.list_summaries(summary_type)
            if s.type == summary_type
        }

        lookup = CacheLookup()
        for i, batch in enumerate(batches):
            key = period_key(batch, summary_type)
            hit = index.get(f"{key}:{content_hash(batch)}")
            if hit:
                lookup.cached[key] = hit
            else:
                lookup.uncached_indices.append(i)
        return lookup

    async def save_summary(self, summary: CachedSummary) -> bool:
        """Create or update one summary. Never raises; returns False on failure."""
        if self.store is None:
            return False

        name = summary_filename(summary.type, summary.period_key, summary.content_hash)
        try:
            # Not atomic: two writers racing on one name may both create
            existing = [o for o in await self.store.list(name) if o.name == name]
            if existing:
                await self.store.update(existing[0].id, summary.to_blob())
            else:
                await self.store.create(name, summary.to_blob())
        except StoreError as e:
            console.print(f"[yellow]⚠️  Could not cache summary {name}: {e}[/yellow]")
            return False
        return True

    async def save(self, summaries: List[CachedSummary]) -> int:
        """Save summaries a few at a time. Returns how many were written."""
        saved = 0
        for i in range(0, len(summaries), self.save_batch_size):
            chunk = summaries[i:i + self.save_batch_size]
            results = await asyncio.gather(*(self.save_summary(s) for s in chunk))
            saved += sum(1 for ok in results if ok)
        return saved

    async def cleanup(self, summary_type: str, current: Dict[str, str]) -> int:
        """
        Delete summaries superseded by new content.

        Args:
            summary_type: 'weekly' or 'monthly'
            current: period key -> content hash of the journal as it is now

        Returns:
            Number of deleted records
        """
        if self.store is None:
            return 0

        try:
            objects = await self.store.list(f"summary-{summary_type}-")
        except StoreError as e:
            console.print(f"[yellow]⚠️  Could not list {summary_type} summaries for cleanup: {e}[/yellow]")
            return 0

        deleted = 0
        for obj in objects:
            parsed = parse_summary_filename(obj.name)
            if not parsed:
                continue
            period, digest = parsed
            current_hash = current.get(period)
            if current_hash and current_hash != digest:
                try:
                    await self.store.delete(obj.id)
                    deleted += 1
                except StoreError as e:
                    console.print(f"[yellow]⚠️  Could not delete {obj.name}: {e}[/yellow]")
        return deleted


class SummaryWriter:
    """
    Background persistence of fresh summaries.

    `submit` queues and returns immediately; a bounded set of worker tasks
    drains the queue through the cache. Writes are best effort and not
    observed by the caller. When the queue is full, new summaries are
    dropped with a warning.
    """

    def __init__(self, cache: SummaryCache, workers: int = 2, max_pending: int = 100):
        self.cache = cache
        self.num_workers = max(1, workers)
        self.max_pending = max_pending
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self.written = 0
        self.dropped = 0

    def _ensure_workers(self):
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.max_pending)
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker()) for _ in range(self.num_workers)
            ]

    async def _worker(self):
        while True:
            summary = await self._queue.get()
            try:
                if await self.cache.save_summary(summary):
                    self.written += 1
            except Exception as e:
                console.print(f"[red]✗ Background cache write failed for {summary.period_key}: {e}[/red]")
            finally:
                self._queue.task_done()

    def submit(self, summaries: List[CachedSummary]) -> int:
        """Queue summaries for writing. Must be called from a running loop."""
        if self.cache.store is None or not summaries:
            return 0
        self._ensure_workers()
        queued = 0
        for summary in summaries:
            try:
                self._queue.put_nowait(summary)
                queued += 1
            except asyncio.QueueFull:
                self.dropped += 1
                console.print(f"[yellow]⚠️  Cache write queue full, dropping {summary.period_key}[/yellow]")
        return queued

    async def drain(self):
        """Wait until every queued write has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self):
        await self.drain()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

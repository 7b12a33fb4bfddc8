#!/usr/bin/env python3
"""
Batch summarization with the cheap model.

Batches are processed by a fixed pool of workers pulling from a shared
queue, so at most `max_parallel` upstream calls are in flight regardless
of how many batches there are. Results keep the input order.

Transient failures (rate limits, overload, timeouts) are retried with
exponential backoff. Anything else, or running out of retries, degrades
to a fallback built from the batch's own entries; a failed batch never
aborts the run.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, TypeVar

from rich.console import Console
from rich.markup import escape

from config import AppConfig, PromptSet
from .cache import CachedSummary, content_hash
from .entries import Entry, entries_to_xml
from .llm import ModelCallError, ModelClient
from .tiers import period_key, period_label

console = Console()

T = TypeVar("T")
R = TypeVar("R")

FALLBACK_HEADER = "[Summary unavailable - showing recent entries from this period]"


class BatchSummary(CachedSummary):
    """A summary as used at runtime; only non-fallback ones are persisted."""
    input_tokens: int = 0
    output_tokens: int = 0
    from_cache: bool = False
    fallback: bool = False

    @classmethod
    def from_cached(cls, cached: CachedSummary) -> "BatchSummary":
        return cls(**cached.model_dump(), from_cache=True)

    def to_cached(self) -> CachedSummary:
        return CachedSummary(**self.model_dump(include=set(CachedSummary.model_fields)))


async def run_with_concurrency(
    items: List[T],
    processor: Callable[[T, int], Awaitable[R]],
    concurrency: int,
) -> List[R]:
    """Run `processor` over items with at most `concurrency` in flight, keeping order."""
    results: List[Optional[R]] = [None] * len(items)
    queue: asyncio.Queue = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    async def worker():
        while True:
            try:
                index, item = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            results[index] = await processor(item, index)
            queue.task_done()

    num_workers = min(max(1, concurrency), len(items))
    await asyncio.gather(*(worker() for _ in range(num_workers)))
    return results


class BatchSummarizer:
    """Summarizes weekly/monthly batches with retries and fallback."""

    def __init__(self, client: ModelClient, config: AppConfig, prompts: PromptSet, verbose: bool = False):
        self.client = client
        self.config = config
        self.prompts = prompts
        self.verbose = verbose

    def _max_tokens(self, summary_type: str) -> int:
        model = self.config.models.summarizer
        return model.weekly_max_tokens if summary_type == "weekly" else model.monthly_max_tokens

    def _retry_delay(self, attempt: int) -> float:
        delays = self.config.summarizer.retry_delays
        if not delays:
            return 0.0
        return delays[min(attempt, len(delays) - 1)]

    def build_request(self, batch: List[Entry], summary_type: str) -> str:
        label = period_label(batch, summary_type)
        framing = "weekly summary" if summary_type == "weekly" else "monthly summary"
        return (
            f"<period>{label}</period>\n"
            f"<type>{framing}</type>\n"
            f"<entries>\n{entries_to_xml(batch)}\n</entries>"
        )

    def fallback_text(self, batch: List[Entry]) -> str:
        """Placeholder from the last few raw entries, each truncated."""
        settings = self.config.summarizer
        limit = settings.fallback_char_limit
        lines = []
        for entry in batch[-settings.fallback_entries:]:
            text = entry.text[:limit] + ("..." if len(entry.text) > limit else "")
            lines.append(f"[{entry.date.strftime('%Y-%m-%d')}] {text}")
        return f"{FALLBACK_HEADER}\n\n" + "\n\n".join(lines)

    async def summarize_batch(self, batch: List[Entry], summary_type: str) -> BatchSummary:
        """Summarize one batch. Never raises for upstream failures."""
        label = period_label(batch, summary_type)
        base = dict(
            period_key=period_key(batch, summary_type),
            period_label=label,
            type=summary_type,
            entry_count=len(batch),
            content_hash=content_hash(batch),
            created_at=datetime.now(timezone.utc),
        )
        request = self.build_request(batch, summary_type)
        max_retries = self.config.summarizer.retries

        for attempt in range(max_retries + 1):
            try:
                response = await self.client.complete(
                    model=self.config.models.summarizer.name,
                    system=self.prompts.summarize_batch,
                    messages=[{"role": "user", "content": request}],
                    max_tokens=self._max_tokens(summary_type),
                    timeout=self.config.models.summarizer.timeout_seconds,
                )
            except Exception as e:
                retryable = isinstance(e, ModelCallError) and e.retryable
                if retryable and attempt < max_retries:
                    wait_time = self._retry_delay(attempt)
                    console.print(
                        f"[yellow]    ⚠️  {label} attempt {attempt + 1}/{max_retries + 1} failed ({escape(str(e))}), "
                        f"retrying in {wait_time:g}s...[/yellow]"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                console.print(f"[red]    ✗ Failed to summarize {label}: {escape(str(e))}[/red]")
                break

            if self.verbose:
                console.print(f"[dim]    ✓ Summarized {label} ({len(batch)} entries)[/dim]")
            return BatchSummary(
                **base,
                summary=response.text,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            )

        return BatchSummary(**base, summary=self.fallback_text(batch), fallback=True)

    async def summarize_batches(
        self,
        batches: List[List[Entry]],
        summary_type: str,
        concurrency: Optional[int] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[BatchSummary]:
        """
        Summarize batches with bounded concurrency.

        Args:
            batches: Non-empty entry batches
            summary_type: 'weekly' or 'monthly'
            concurrency: Worker count (config default if None)
            on_progress: Called with (completed, total) after each batch

        Returns:
            One BatchSummary per batch, result[i] matching batches[i]
        """
        if not batches:
            return []

        completed = 0

        async def process(batch: List[Entry], _index: int) -> BatchSummary:
            nonlocal completed
            summary = await self.summarize_batch(batch, summary_type)
            completed += 1
            if on_progress:
                on_progress(completed, len(batches))
            return summary

        return await run_with_concurrency(
            batches, process, concurrency or self.config.summarizer.max_parallel
        )

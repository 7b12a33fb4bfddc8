#!/usr/bin/env python3
"""
Tiered report pipeline.

    journal text
    ↓
    parse → partition (tier 1 / weekly batches / monthly batches)
    ↓
    weekly:  cache lookup → summarize misses → queue cache writes   ┐ concurrent
    monthly: cache lookup → summarize misses → queue cache writes   ┘
    ↓
    assemble report (tier 1 full text + all summaries)

Cache writes go to a background writer and are never awaited by
`generate`; call `close()` before the process exits to let them finish.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from rich.console import Console

from config import AppConfig, PromptSet
from .cache import SummaryCache, SummaryWriter, content_hash
from .costs import CostEstimate, estimate_cost, estimate_single_pass_cost
from .entries import Entry, parse_journal
from .llm import ModelClient
from .prompter import ReportAssembler, estimate_text_tokens
from .store import DocumentStore
from .summarizer import BatchSummarizer, BatchSummary
from .tiers import TierStats, partition, period_key

console = Console()


class UsageStats(BaseModel):
    summary_input_tokens: int = 0
    summary_output_tokens: int = 0
    report_input_tokens: int = 0
    report_output_tokens: int = 0
    cached_weekly: int = 0
    cached_monthly: int = 0
    new_weekly: int = 0
    new_monthly: int = 0
    fallback_batches: int = 0


class PipelineResult(BaseModel):
    report: str
    tiered: bool = True
    truncated: bool = False
    stats: TierStats = Field(default_factory=TierStats)
    usage: UsageStats = Field(default_factory=UsageStats)


class TieredReportPipeline:
    """
    One user's report generation.

    Args:
        client: Model client for both summaries and the report
        config: Application configuration
        prompts: Prompt texts
        store: The user's durable store, or None to run without a cache
        verbose: Show per-batch progress
    """

    def __init__(
        self,
        client: ModelClient,
        config: AppConfig,
        prompts: PromptSet,
        store: Optional[DocumentStore] = None,
        verbose: bool = False,
    ):
        self.config = config
        if not config.cache.enabled:
            store = None
        self.cache = SummaryCache(store, save_batch_size=config.cache.save_batch_size)
        self.writer = SummaryWriter(
            self.cache,
            workers=config.cache.write_workers,
            max_pending=config.cache.max_pending_writes,
        )
        self.summarizer = BatchSummarizer(client, config, prompts, verbose=verbose)
        self.assembler = ReportAssembler(client, config, prompts)
        self.verbose = verbose

    async def process_tier(
        self,
        batches: List[List[Entry]],
        summary_type: str,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[BatchSummary]:
        """Cache lookup, summarize misses, queue fresh summaries for writing."""
        if not batches:
            return []

        lookup = await self.cache.find_uncached(batches, summary_type)
        uncached = [batches[i] for i in lookup.uncached_indices]

        if self.verbose:
            console.print(
                f"[dim]  {summary_type}: {len(lookup.cached)} cached, {len(uncached)} to summarize[/dim]"
            )

        fresh = await self.summarizer.summarize_batches(uncached, summary_type, on_progress=on_progress)
        fresh_by_index = dict(zip(lookup.uncached_indices, fresh))

        results = []
        for i, batch in enumerate(batches):
            if i in fresh_by_index:
                results.append(fresh_by_index[i])
            else:
                results.append(BatchSummary.from_cached(lookup.cached[period_key(batch, summary_type)]))

        self.writer.submit([s.to_cached() for s in fresh if not s.fallback])
        return results

    async def generate(
        self,
        journal_text: str,
        formatted_date: str,
        now: Optional[datetime] = None,
        custom_topics: Sequence[str] = (),
        custom_topics_only: bool = False,
        on_progress: Optional[Callable[[str, int, int], None]] = None,
    ) -> PipelineResult:
        """
        Generate one report.

        Journals without any dated entries (plain text) go through the
        legacy single-call path.

        Raises:
            ValueError: missing journal text or date
            ReportGenerationError: the report model call failed
        """
        if not journal_text or not journal_text.strip():
            raise ValueError("Journal content is required")
        if not formatted_date:
            raise ValueError("Formatted date is required")

        entries = parse_journal(journal_text)
        if not entries:
            result = await self.assembler.generate_legacy(
                journal_text, formatted_date, custom_topics, custom_topics_only
            )
            return PipelineResult(
                report=result.report,
                tiered=False,
                truncated=result.truncated,
                usage=UsageStats(
                    report_input_tokens=result.input_tokens,
                    report_output_tokens=result.output_tokens,
                ),
            )

        tiered = partition(entries, now or datetime.now(timezone.utc))

        def tier_progress(summary_type):
            if on_progress is None:
                return None
            return lambda done, total: on_progress(summary_type, done, total)

        # Weekly and monthly tiers are independent
        weekly, monthly = await asyncio.gather(
            self.process_tier(tiered.tier2_batches, "weekly", tier_progress("weekly")),
            self.process_tier(tiered.tier3_batches, "monthly", tier_progress("monthly")),
        )

        result = await self.assembler.assemble(
            tiered.tier1, weekly, monthly, formatted_date, custom_topics, custom_topics_only
        )

        summaries = weekly + monthly
        usage = UsageStats(
            summary_input_tokens=sum(s.input_tokens for s in summaries),
            summary_output_tokens=sum(s.output_tokens for s in summaries),
            report_input_tokens=result.input_tokens,
            report_output_tokens=result.output_tokens,
            cached_weekly=sum(1 for s in weekly if s.from_cache),
            cached_monthly=sum(1 for s in monthly if s.from_cache),
            new_weekly=sum(1 for s in weekly if not s.from_cache and not s.fallback),
            new_monthly=sum(1 for s in monthly if not s.from_cache and not s.fallback),
            fallback_batches=sum(1 for s in summaries if s.fallback),
        )
        return PipelineResult(
            report=result.report,
            truncated=result.truncated,
            stats=tiered.stats,
            usage=usage,
        )

    async def estimate(self, journal_text: str, now: Optional[datetime] = None) -> CostEstimate:
        """Pre-flight cost using real cache hits. Makes no model calls."""
        entries = parse_journal(journal_text)
        if not entries:
            # Plain text takes the single-call path, trimmed to the input budget
            journal_tokens = min(
                estimate_text_tokens(journal_text) if journal_text and journal_text.strip() else 0,
                self.config.report.input_token_budget,
            )
            return estimate_single_pass_cost(journal_tokens)

        tiered = partition(entries, now or datetime.now(timezone.utc))
        weekly = await self.cache.find_uncached(tiered.tier2_batches, "weekly")
        monthly = await self.cache.find_uncached(tiered.tier3_batches, "monthly")
        return estimate_cost(
            tiered.tier1,
            tiered.tier2_batches,
            tiered.tier3_batches,
            cached_weekly=len(weekly.cached),
            cached_monthly=len(monthly.cached),
        )

    async def cleanup(self, journal_text: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Delete cached summaries superseded by the journal's current content."""
        tiered = partition(parse_journal(journal_text), now or datetime.now(timezone.utc))
        deleted = {}
        for summary_type, batches in (("weekly", tiered.tier2_batches), ("monthly", tiered.tier3_batches)):
            current = {period_key(b, summary_type): content_hash(b) for b in batches}
            deleted[summary_type] = await self.cache.cleanup(summary_type, current)
        return deleted

    async def close(self):
        """Let queued cache writes finish."""
        await self.writer.close()

#!/usr/bin/env python3
"""
Cost estimation for hierarchical journal summarization.

Pricing (USD per million tokens):
- Haiku (batch summaries): $1.00 input, $5.00 output
- Opus (final report): $15 input, $75 output

Pure arithmetic over character counts; no network calls.
"""

import math
from typing import List, Sequence

from pydantic import BaseModel

from .entries import Entry


HAIKU_INPUT_PRICE = 1.0
HAIKU_OUTPUT_PRICE = 5.0
OPUS_INPUT_PRICE = 15.0
OPUS_OUTPUT_PRICE = 75.0

# Expected output sizes
WEEKLY_SUMMARY_OUTPUT_TOKENS = 500
MONTHLY_SUMMARY_OUTPUT_TOKENS = 800
OPUS_REPORT_OUTPUT_TOKENS = 4000

# Prompt + formatting overhead per call
SUMMARIZATION_OVERHEAD_TOKENS = 500


class CostEstimate(BaseModel):
    tier1_tokens: int = 0
    tier2_input_tokens: int = 0
    tier2_output_tokens: int = 0
    tier3_input_tokens: int = 0
    tier3_output_tokens: int = 0
    opus_input_tokens: int = 0
    opus_output_tokens: int = 0
    haiku_cost: float = 0.0
    opus_cost: float = 0.0
    total_cost: float = 0.0
    cached_batches: int = 0
    total_batches: int = 0
    single_pass: bool = False


def estimate_tokens_from_chars(chars: int) -> int:
    return math.ceil(chars / 4)


def estimate_batch_tokens(entries: Sequence[Entry]) -> int:
    return estimate_tokens_from_chars(sum(len(e.text) for e in entries))


def calculate_cost(input_tokens: int, output_tokens: int, input_price: float, output_price: float) -> float:
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


def _summary_tokens(batches: List[List[Entry]], cached: int, output_per_batch: int):
    # Cache hits are counted, not located: the first N batches are
    # priced as the uncached ones.
    uncached = max(0, len(batches) - cached)
    input_tokens = sum(
        estimate_batch_tokens(batch) + SUMMARIZATION_OVERHEAD_TOKENS
        for batch in batches[:uncached]
    )
    return input_tokens, uncached * output_per_batch


def estimate_cost(
    tier1_entries: Sequence[Entry],
    tier2_batches: List[List[Entry]],
    tier3_batches: List[List[Entry]],
    cached_weekly: int = 0,
    cached_monthly: int = 0,
) -> CostEstimate:
    """
    Project the cost of one tiered report run.

    Haiku is charged only for uncached batches. Opus reads tier 1 in full
    plus every summary, cached or new, so its input includes the expected
    output of all batches.
    """
    if not tier1_entries and not tier2_batches and not tier3_batches:
        return CostEstimate()

    tier1_tokens = estimate_batch_tokens(tier1_entries)

    tier2_input, tier2_output = _summary_tokens(tier2_batches, cached_weekly, WEEKLY_SUMMARY_OUTPUT_TOKENS)
    tier3_input, tier3_output = _summary_tokens(tier3_batches, cached_monthly, MONTHLY_SUMMARY_OUTPUT_TOKENS)

    haiku_cost = calculate_cost(
        tier2_input + tier3_input,
        tier2_output + tier3_output,
        HAIKU_INPUT_PRICE,
        HAIKU_OUTPUT_PRICE,
    )

    summary_tokens = (
        len(tier2_batches) * WEEKLY_SUMMARY_OUTPUT_TOKENS
        + len(tier3_batches) * MONTHLY_SUMMARY_OUTPUT_TOKENS
    )
    opus_input = tier1_tokens + summary_tokens + SUMMARIZATION_OVERHEAD_TOKENS
    opus_cost = calculate_cost(opus_input, OPUS_REPORT_OUTPUT_TOKENS, OPUS_INPUT_PRICE, OPUS_OUTPUT_PRICE)

    return CostEstimate(
        tier1_tokens=tier1_tokens,
        tier2_input_tokens=tier2_input,
        tier2_output_tokens=tier2_output,
        tier3_input_tokens=tier3_input,
        tier3_output_tokens=tier3_output,
        opus_input_tokens=opus_input,
        opus_output_tokens=OPUS_REPORT_OUTPUT_TOKENS,
        haiku_cost=haiku_cost,
        opus_cost=opus_cost,
        total_cost=haiku_cost + opus_cost,
        cached_batches=cached_weekly + cached_monthly,
        total_batches=len(tier2_batches) + len(tier3_batches),
    )


def estimate_single_pass_cost(journal_tokens: int) -> CostEstimate:
    """Cost of the non-tiered path: one report call over the raw journal."""
    if journal_tokens <= 0:
        return CostEstimate(single_pass=True)

    opus_input = journal_tokens + SUMMARIZATION_OVERHEAD_TOKENS
    opus_cost = calculate_cost(opus_input, OPUS_REPORT_OUTPUT_TOKENS, OPUS_INPUT_PRICE, OPUS_OUTPUT_PRICE)
    return CostEstimate(
        tier1_tokens=journal_tokens,
        opus_input_tokens=opus_input,
        opus_output_tokens=OPUS_REPORT_OUTPUT_TOKENS,
        opus_cost=opus_cost,
        total_cost=opus_cost,
        single_pass=True,
    )


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return "<$0.01"
    return f"${cost:.2f}"


def cost_breakdown(estimate: CostEstimate) -> str:
    """Human-readable multi-line breakdown."""
    lines = []

    if estimate.tier1_tokens > 0:
        label = "Journal, single pass" if estimate.single_pass else "Recent entries"
        lines.append(f"{label} ({estimate.tier1_tokens:,} tokens): sent to Opus")

    if estimate.total_batches > 0:
        uncached = estimate.total_batches - estimate.cached_batches
        if uncached > 0:
            lines.append(f"Summarization: {uncached} batches via Haiku ({format_cost(estimate.haiku_cost)})")
        if estimate.cached_batches > 0:
            lines.append(f"Cached summaries: {estimate.cached_batches} batches")

    lines.append(f"Report generation via Opus: {format_cost(estimate.opus_cost)}")
    lines.append(f"Total: {format_cost(estimate.total_cost)}")
    return "\n".join(lines)

#!/usr/bin/env python3
"""
Journal tier partitioning for hierarchical summarization.

Tiers:
- Tier 1 (age < 14 days): full text sent to the report model
- Tier 2 (14 <= age < 90 days): weekly batches, summarized by the cheap model
- Tier 3 (age >= 90 days): monthly batches, summarized by the cheap model

`now` is always injected so partitioning is deterministic.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, List, Tuple

from pydantic import BaseModel

from .entries import Entry, to_utc


TIER1_DAYS = 14
TIER2_DAYS = 90

SUMMARY_TYPES = ("weekly", "monthly")


class TierStats(BaseModel):
    total_entries: int = 0
    tier1_entries: int = 0
    tier2_entries: int = 0
    tier3_entries: int = 0
    estimated_tokens: int = 0


class TieredJournal(BaseModel):
    tier1: List[Entry]
    tier2_batches: List[List[Entry]]
    tier3_batches: List[List[Entry]]
    stats: TierStats


def estimate_tokens(entries: List[Entry]) -> int:
    """Rough token count for entries (4 chars per token)."""
    return math.ceil(sum(len(e.text) for e in entries) / 4)


def week_key(date: datetime) -> str:
    """
    Week key in YYYY-Www form.

    Weeks start on Sunday and week 1 is the week containing January 1st:
    week = ceil((day_of_year + weekday_of_jan_1) / 7), with Sunday = 0.
    This is not ISO-8601 week numbering.
    """
    year = date.year
    day_of_year = date.timetuple().tm_yday
    first_weekday = (datetime(year, 1, 1).weekday() + 1) % 7
    week = math.ceil((day_of_year + first_weekday) / 7)
    return f"{year}-W{week:02d}"


def month_key(date: datetime) -> str:
    return f"{date.year}-{date.month:02d}"


def _group(entries: List[Entry], key_fn) -> List[List[Entry]]:
    """Group by period key in first-seen order, then sort batches by key."""
    groups: Dict[str, List[Entry]] = {}
    for entry in entries:
        groups.setdefault(key_fn(entry.date), []).append(entry)
    return [groups[key] for key in sorted(groups)]


def group_by_week(entries: List[Entry]) -> List[List[Entry]]:
    return _group(entries, week_key)


def group_by_month(entries: List[Entry]) -> List[List[Entry]]:
    return _group(entries, month_key)


def partition(entries: List[Entry], now: datetime) -> TieredJournal:
    """
    Partition entries into tiers based on age relative to `now`.

    An entry whose age is below a cutoff stays in the newer tier; an entry
    exactly 90 days old goes to tier 3.
    """
    now = to_utc(now)
    tier1_age = timedelta(days=TIER1_DAYS)
    tier2_age = timedelta(days=TIER2_DAYS)

    tier1: List[Entry] = []
    tier2: List[Entry] = []
    tier3: List[Entry] = []

    for entry in sorted(entries, key=lambda e: e.date):
        age = now - entry.date
        if age < tier1_age:
            tier1.append(entry)
        elif age < tier2_age:
            tier2.append(entry)
        else:
            tier3.append(entry)

    tier2_batches = group_by_week(tier2)
    tier3_batches = group_by_month(tier3)

    estimated = (
        estimate_tokens(tier1)
        + sum(estimate_tokens(batch) for batch in tier2_batches)
        + sum(estimate_tokens(batch) for batch in tier3_batches)
    )

    return TieredJournal(
        tier1=tier1,
        tier2_batches=tier2_batches,
        tier3_batches=tier3_batches,
        stats=TierStats(
            total_entries=len(entries),
            tier1_entries=len(tier1),
            tier2_entries=len(tier2),
            tier3_entries=len(tier3),
            estimated_tokens=estimated,
        ),
    )


def _check_type(summary_type: str):
    if summary_type not in SUMMARY_TYPES:
        raise ValueError(f"Unknown summary type: {summary_type}")


def batch_date_range(batch: List[Entry]) -> Tuple[datetime, datetime]:
    if not batch:
        raise ValueError("Cannot get date range for empty batch")
    dates = [e.date for e in batch]
    return min(dates), max(dates)


def period_key(batch: List[Entry], summary_type: str) -> str:
    """Period key of a batch, derived from its earliest date."""
    _check_type(summary_type)
    start, _ = batch_date_range(batch)
    if summary_type == "weekly":
        return week_key(start)
    return month_key(start)


def period_label(batch: List[Entry], summary_type: str) -> str:
    """Display label, e.g. "Week of Jan 1, 2024" or "January 2024"."""
    _check_type(summary_type)
    start, _ = batch_date_range(batch)
    if summary_type == "weekly":
        return f"Week of {start.strftime('%b')} {start.day}, {start.year}"
    return start.strftime("%B %Y")

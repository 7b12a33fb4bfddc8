#!/usr/bin/env python3
"""
Journal entry parsing.

Turns the normalized, entry-tagged journal document into dated entries:

    <entry date="2024-03-01">
      <journal>Personal</journal>
      <location>Lisbon</location>
      <text>...</text>
    </entry>

A malformed entry is skipped; it never blocks extraction of the rest.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


ENTRY_RE = re.compile(
    r"<(?:entry|journal_entry)[^>]*>([\s\S]*?)</(?:entry|journal_entry)>",
    re.IGNORECASE,
)
DATE_TAG_RE = re.compile(r"<date>([^<]+)</date>", re.IGNORECASE)
DATE_ATTR_RE = re.compile(r"""date=["']([^"']+)["']""", re.IGNORECASE)
TIMESTAMP_TAG_RE = re.compile(
    r"<(?:created|created_at|timestamp)>([^<]+)</(?:created|created_at|timestamp)>",
    re.IGNORECASE,
)
TEXT_TAG_RE = re.compile(
    r"<(?:text|content|body)>([\s\S]*?)</(?:text|content|body)>", re.IGNORECASE
)
JOURNAL_TAG_RE = re.compile(r"<journal>([^<]+)</journal>", re.IGNORECASE)
LOCATION_TAG_RE = re.compile(r"<(?:location|loc)>([^<]+)</(?:location|loc)>", re.IGNORECASE)

# Fallback date shapes, tried after the direct ISO parse
ISO_DAY_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
US_DAY_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})")
DAY_MONTH_YEAR_RE = re.compile(r"(\d{1,2})\s+([A-Za-z]+)\.?\s+(\d{4})")


class Entry(BaseModel):
    """One dated journal entry. Dates are always timezone-aware UTC."""
    model_config = ConfigDict(frozen=True)

    date: datetime
    text: str
    journal: Optional[str] = None
    location: Optional[str] = None


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_month_name(day: str, month: str, year: str) -> Optional[datetime]:
    for fmt in ("%d %B %Y", "%d %b %Y"):
        try:
            return datetime.strptime(f"{int(day)} {month} {year}", fmt)
        except ValueError:
            continue
    return None


def parse_date(value: str) -> Optional[datetime]:
    """
    Parse a journal date string.

    Tries a direct ISO-8601 parse first, then falls back to pattern
    matching for YYYY-MM-DD, MM/DD/YYYY and "D Month YYYY" forms.

    Returns:
        Aware UTC datetime, or None if nothing matched
    """
    value = value.strip()
    if not value:
        return None

    # Direct parse (accepts the trailing "Z" older interpreters reject)
    candidate = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        parsed = None
    if parsed is not None:
        try:
            return to_utc(parsed)
        except OverflowError:
            # Offset pushes the instant outside the representable range
            return None

    match = ISO_DAY_RE.search(value)
    if match:
        year, month, day = match.groups()
        try:
            return to_utc(datetime(int(year), int(month), int(day)))
        except ValueError:
            pass

    match = US_DAY_RE.search(value)
    if match:
        month, day, year = match.groups()
        try:
            return to_utc(datetime(int(year), int(month), int(day)))
        except ValueError:
            pass

    match = DAY_MONTH_YEAR_RE.search(value)
    if match:
        parsed = _parse_month_name(*match.groups())
        if parsed:
            return to_utc(parsed)

    return None


def _entry_date(block: str, content: str) -> Optional[datetime]:
    """Resolve an entry's date from <date>, a date attribute, then timestamp tags."""
    match = DATE_TAG_RE.search(content)
    if match:
        date = parse_date(match.group(1))
        if date:
            return date

    # The attribute lives on the opening tag, so search the whole block
    match = DATE_ATTR_RE.search(block)
    if match:
        date = parse_date(match.group(1))
        if date:
            return date

    match = TIMESTAMP_TAG_RE.search(content)
    if match:
        return parse_date(match.group(1))

    return None


def parse_entry(block: str, content: str) -> Optional[Entry]:
    """Build one Entry from a matched block, or None if it has no date or text."""
    date = _entry_date(block, content)
    if not date:
        return None

    match = TEXT_TAG_RE.search(content)
    text = match.group(1).strip() if match else content.strip()
    if not text:
        return None

    journal = JOURNAL_TAG_RE.search(content)
    location = LOCATION_TAG_RE.search(content)

    return Entry(
        date=date,
        text=text,
        journal=journal.group(1).strip() if journal else None,
        location=location.group(1).strip() if location else None,
    )


def parse_journal(raw_text: str) -> List[Entry]:
    """
    Parse an entry-tagged journal document.

    Args:
        raw_text: Normalized journal text with <entry> or <journal_entry> blocks

    Returns:
        Entries sorted ascending by date (oldest first)
    """
    entries = []
    for match in ENTRY_RE.finditer(raw_text or ""):
        try:
            entry = parse_entry(match.group(0), match.group(1))
        except (ValueError, OverflowError):
            # Corrupt record (bad date arithmetic, failed validation)
            continue
        if entry:
            entries.append(entry)

    entries.sort(key=lambda e: e.date)
    return entries


def entries_to_xml(entries: List[Entry]) -> str:
    """Render entries back to the tagged form sent to the models."""
    blocks = []
    for entry in entries:
        xml = f'<entry date="{entry.date.strftime("%Y-%m-%d")}">'
        if entry.journal:
            xml += f"\n  <journal>{entry.journal}</journal>"
        if entry.location:
            xml += f"\n  <location>{entry.location}</location>"
        xml += f"\n  <text>{entry.text}</text>"
        xml += "\n</entry>"
        blocks.append(xml)
    return "\n\n".join(blocks)

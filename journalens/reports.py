#!/usr/bin/env python3
"""
Saved reports, kept in the same per-user store as the summary cache.

Stored as report-{id}.json. Store failures propagate here: unlike the
cache, losing a report the user asked to keep is not silent.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from rich.console import Console

from .store import DocumentStore

console = Console()

MARKDOWN_CHARS_RE = re.compile(r"[#*_]")
PREVIEW_CHARS = 150


class SavedReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    title: str
    content: str


class ReportMetadata(BaseModel):
    id: str
    created_at: datetime
    title: str
    preview: str


def report_filename(report_id: str) -> str:
    return f"report-{report_id}.json"


def report_preview(content: str) -> str:
    return MARKDOWN_CHARS_RE.sub("", content[:PREVIEW_CHARS]).strip()


class ReportArchive:
    """List, fetch, save and delete a user's saved reports."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def _find(self, report_id: str) -> Optional[str]:
        name = report_filename(report_id)
        matches = [o for o in await self.store.list(name) if o.name == name]
        return matches[0].id if matches else None

    async def save_report(self, report: SavedReport) -> str:
        await self.store.create(report_filename(report.id), report.model_dump(mode="json", by_alias=True))
        return report.id

    async def get_report(self, report_id: str) -> Optional[SavedReport]:
        object_id = await self._find(report_id)
        if object_id is None:
            return None
        return SavedReport.model_validate(await self.store.get(object_id))

    async def list_reports(self) -> List[ReportMetadata]:
        """Metadata for every readable report, newest first."""
        reports = []
        for obj in await self.store.list("report-"):
            try:
                report = SavedReport.model_validate(await self.store.get(obj.id))
            except ValidationError:
                console.print(f"[yellow]⚠️  Skipping unreadable report {obj.name}[/yellow]")
                continue
            reports.append(ReportMetadata(
                id=report.id,
                created_at=report.created_at,
                title=report.title,
                preview=report_preview(report.content),
            ))
        reports.sort(key=lambda r: r.created_at, reverse=True)
        return reports

    async def delete_report(self, report_id: str) -> bool:
        object_id = await self._find(report_id)
        if object_id is None:
            return False
        await self.store.delete(object_id)
        return True

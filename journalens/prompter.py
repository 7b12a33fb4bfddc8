#!/usr/bin/env python3
"""
Report assembly with the expensive model.

The journal is presented oldest to newest, each section stating how
faithful it is: monthly summaries, then weekly summaries, then the full
text of recent entries. The report title is pre-supplied as an assistant
turn so every report starts with the same parseable header.

Unlike batch summaries, a failed report call has no degraded substitute:
it is raised as ReportGenerationError.
"""

import math
from typing import List, Sequence, Tuple

from pydantic import BaseModel

from config import AppConfig, PromptSet
from .entries import Entry, entries_to_xml
from .llm import ModelCallError, ModelClient
from .summarizer import BatchSummary


TRUNCATION_MARKER = "[Earlier journal entries were truncated to fit the context limit]"

TIERED_SYSTEM_NOTE = """

Note: The journal content you receive is structured in tiers:
1. Monthly summaries (90+ days old) - AI-generated summaries of older entries
2. Weekly summaries (14-90 days old) - AI-generated summaries of recent entries
3. Recent entries (0-14 days old) - Complete, unmodified journal text

Summaries are lossy and were written by another model; the full-text entries are authoritative. Give appropriate weight to each tier: recent entries are most detailed and relevant for immediate advice, while summaries provide important historical context for patterns and long-term trends."""


class ReportGenerationError(Exception):
    """The final report could not be generated."""


class ReportResult(BaseModel):
    report: str
    input_tokens: int = 0
    output_tokens: int = 0
    truncated: bool = False


def estimate_text_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def fit_to_token_budget(text: str, max_tokens: int) -> Tuple[str, bool]:
    """
    Trim the oldest content so the text fits `max_tokens` (4 chars per token).

    Keeps the newest tail, starting at an entry boundary when one is
    available, behind a visible truncation marker.

    Returns:
        (text, truncated)
    """
    if estimate_text_tokens(text) <= max_tokens:
        return text, False

    prefix = f"{TRUNCATION_MARKER}\n\n"
    keep_chars = max(0, max_tokens * 4 - len(prefix))
    tail = text[len(text) - keep_chars:] if keep_chars else ""

    # Don't open on half an entry
    boundary = tail.find("<entry")
    if boundary > 0:
        tail = tail[boundary:]

    return prefix + tail, True


def _format_summary_block(tag: str, description: str, summaries: List[BatchSummary]) -> str:
    output = f"<{tag}>\n{description}\n\n"
    for s in summaries:
        output += f'<summary period="{s.period_label}" entries="{s.entry_count}">\n'
        output += s.summary
        output += "\n</summary>\n\n"
    output += f"</{tag}>\n\n"
    return output


def format_summaries_for_prompt(summaries: List[BatchSummary]) -> str:
    """Render summaries, monthly before weekly, for the report prompt."""
    monthly = [s for s in summaries if s.type == "monthly"]
    weekly = [s for s in summaries if s.type == "weekly"]

    output = ""
    if monthly:
        output += _format_summary_block(
            "monthly_summaries",
            "The following are AI-generated summaries of older journal entries (90+ days old), organized by month.",
            monthly,
        )
    if weekly:
        output += _format_summary_block(
            "weekly_summaries",
            "The following are AI-generated summaries of recent journal entries (14-90 days old), organized by week.",
            weekly,
        )
    return output


def build_custom_topics_prompt(topics: Sequence[str], topics_only: bool = False) -> str:
    """Extra report sections for user-requested topics."""
    if not topics:
        return ""

    sections = "\n\n".join(
        f'<section heading="Custom Topic {i}: {topic}">\n'
        f"Address this specific question or topic based on my journal entries. "
        f"Provide thoughtful analysis and actionable advice.\n</section>"
        for i, topic in enumerate(topics, 1)
    )

    if topics_only:
        return f"""

<custom_topics_only>
IMPORTANT: The user has requested ONLY the following {len(topics)} custom topic(s). Do NOT include the standard report sections (Executive Summary, General Insights, etc.). ONLY address the custom topics below.

{sections}

Remember: ONLY output sections for the custom topics above. Do not include any standard report sections.
</custom_topics_only>"""

    return f"""

<custom_topics>
IMPORTANT: The user has requested {len(topics)} custom topic(s) below. You MUST address ALL of them - do not skip any.

Add these as separate sections BEFORE the "Context for JournaLens" section:

{sections}

Remember: Every custom topic above MUST have its own dedicated section in your response. These are specifically requested by the user and are a priority.
</custom_topics>"""


class ReportAssembler:
    """Builds the report prompt and calls the report model."""

    def __init__(self, client: ModelClient, config: AppConfig, prompts: PromptSet):
        self.client = client
        self.config = config
        self.prompts = prompts

    def title_prefill(self, formatted_date: str) -> str:
        return f"# {self.config.report.title} for {formatted_date}"

    def build_tiered_journal(
        self,
        recent: List[Entry],
        weekly: List[BatchSummary],
        monthly: List[BatchSummary],
    ) -> str:
        content = ""
        if monthly:
            content += format_summaries_for_prompt(monthly)
        if weekly:
            content += format_summaries_for_prompt(weekly)
        if recent:
            content += "<recent_entries>\n"
            content += "The following are complete journal entries from the past 14 days.\n\n"
            content += entries_to_xml(recent)
            content += "\n</recent_entries>"
        return content

    def fit_tiered_journal(
        self,
        recent: List[Entry],
        weekly: List[BatchSummary],
        monthly: List[BatchSummary],
        max_tokens: int,
    ) -> Tuple[str, bool]:
        """
        Build the tiered journal within `max_tokens`.

        Oldest material goes first: monthly summaries, then weekly
        summaries, then the oldest recent entries. The newest entry is
        always kept, cut to a tail if it alone is too large.

        Returns:
            (journal, truncated)
        """
        journal = self.build_tiered_journal(recent, weekly, monthly)
        if estimate_text_tokens(journal) <= max_tokens:
            return journal, False

        recent, weekly, monthly = list(recent), list(weekly), list(monthly)
        prefix = f"{TRUNCATION_MARKER}\n\n"
        while estimate_text_tokens(prefix + journal) > max_tokens:
            if monthly:
                monthly.pop(0)
            elif weekly:
                weekly.pop(0)
            elif len(recent) > 1:
                recent.pop(0)
            else:
                break
            journal = self.build_tiered_journal(recent, weekly, monthly)

        journal = prefix + journal
        if estimate_text_tokens(journal) > max_tokens:
            journal, _ = fit_to_token_budget(journal, max_tokens)
        return journal, True

    def _instructions(self, topics: Sequence[str], topics_only: bool) -> str:
        base = "" if topics_only and topics else self.prompts.create_report
        return base + build_custom_topics_prompt(topics, topics_only)

    async def _call(self, system: str, journal: str, instructions: str, prefill: str) -> Tuple[str, int, int]:
        model = self.config.models.report
        try:
            response = await self.client.complete(
                model=model.name,
                system=system,
                messages=[
                    {"role": "user", "content": f"<journal>\n{journal}\n</journal>"},
                    {"role": "user", "content": instructions},
                    {"role": "assistant", "content": prefill},
                ],
                max_tokens=model.max_tokens,
                timeout=model.timeout_seconds,
            )
        except ModelCallError as e:
            raise ReportGenerationError(f"Could not generate report: {e}") from e
        return prefill + response.text, response.input_tokens, response.output_tokens

    async def assemble(
        self,
        recent: List[Entry],
        weekly: List[BatchSummary],
        monthly: List[BatchSummary],
        formatted_date: str,
        custom_topics: Sequence[str] = (),
        custom_topics_only: bool = False,
    ) -> ReportResult:
        """
        Generate the report from tier 1 text and tier 2/3 summaries.

        Raises:
            ReportGenerationError: the report model call failed
        """
        journal, truncated = self.fit_tiered_journal(
            recent, weekly, monthly, self.config.report.input_token_budget
        )
        report, input_tokens, output_tokens = await self._call(
            system=self.prompts.role + TIERED_SYSTEM_NOTE,
            journal=journal,
            instructions=self._instructions(custom_topics, custom_topics_only),
            prefill=self.title_prefill(formatted_date),
        )
        return ReportResult(
            report=report,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            truncated=truncated,
        )

    async def generate_legacy(
        self,
        journal_text: str,
        formatted_date: str,
        custom_topics: Sequence[str] = (),
        custom_topics_only: bool = False,
    ) -> ReportResult:
        """Non-tiered path: send the raw journal, trimmed to the input budget."""
        journal, truncated = fit_to_token_budget(journal_text, self.config.report.input_token_budget)
        report, input_tokens, output_tokens = await self._call(
            system=self.prompts.role,
            journal=journal,
            instructions=self._instructions(custom_topics, custom_topics_only),
            prefill=self.title_prefill(formatted_date),
        )
        return ReportResult(
            report=report,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            truncated=truncated,
        )

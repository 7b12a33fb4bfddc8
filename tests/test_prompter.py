from datetime import datetime

import pytest

from journalens.llm import ModelCallError
from journalens.prompter import (
    TIERED_SYSTEM_NOTE,
    TRUNCATION_MARKER,
    ReportAssembler,
    ReportGenerationError,
    build_custom_topics_prompt,
    fit_to_token_budget,
    format_summaries_for_prompt,
)
from journalens.summarizer import BatchSummary

from conftest import FakeModelClient, make_entry


def summary(summary_type, label, text):
    return BatchSummary(
        period_key=label,
        period_label=label,
        type=summary_type,
        summary=text,
        entry_count=2,
        content_hash="0123456789abcdef",
        created_at=datetime(2024, 6, 1),
    )


WEEKLY = [summary("weekly", "Week of May 5, 2024", "Busy week at work.")]
MONTHLY = [summary("monthly", "January 2024", "A quiet month.")]
RECENT = [make_entry(datetime(2024, 6, 28), "Slept badly, walked the dog.")]


@pytest.mark.asyncio
async def test_sections_ordered_oldest_first(config, prompts):
    client = FakeModelClient(default="\n\n## Executive Summary\nAll good.")
    result = await ReportAssembler(client, config, prompts).assemble(RECENT, WEEKLY, MONTHLY, "June 30, 2024")

    journal = client.calls[0]["messages"][0]["content"]
    monthly_at = journal.index("<monthly_summaries>")
    weekly_at = journal.index("<weekly_summaries>")
    recent_at = journal.index("<recent_entries>")
    assert monthly_at < weekly_at < recent_at
    assert journal.startswith("<journal>\n") and journal.endswith("\n</journal>")
    assert '<summary period="January 2024" entries="2">\nA quiet month.\n</summary>' in journal
    assert "Slept badly, walked the dog." in journal

    assert result.report.startswith("# JournaLens Advice for June 30, 2024\n\n## Executive Summary")
    assert (result.input_tokens, result.output_tokens) == (100, 20)
    assert not result.truncated


@pytest.mark.asyncio
async def test_report_call_shape(config, prompts):
    client = FakeModelClient()
    await ReportAssembler(client, config, prompts).assemble(RECENT, [], [], "June 30, 2024")

    call = client.calls[0]
    assert call["model"] == config.models.report.name
    assert call["max_tokens"] == config.models.report.max_tokens
    assert call["system"] == prompts.role + TIERED_SYSTEM_NOTE
    roles = [m["role"] for m in call["messages"]]
    assert roles == ["user", "user", "assistant"]
    assert call["messages"][1]["content"] == prompts.create_report
    assert call["messages"][2]["content"] == "# JournaLens Advice for June 30, 2024"


@pytest.mark.asyncio
async def test_missing_tiers_are_omitted(config, prompts):
    client = FakeModelClient()
    await ReportAssembler(client, config, prompts).assemble(RECENT, [], [], "June 30, 2024")
    journal = client.calls[0]["messages"][0]["content"]
    assert "<monthly_summaries>" not in journal
    assert "<weekly_summaries>" not in journal


@pytest.mark.asyncio
async def test_custom_topics_are_appended(config, prompts):
    client = FakeModelClient()
    await ReportAssembler(client, config, prompts).assemble(
        RECENT, [], [], "June 30, 2024", custom_topics=["Sleep", "Running"]
    )
    instructions = client.calls[0]["messages"][1]["content"]
    assert instructions.startswith(prompts.create_report)
    assert 'heading="Custom Topic 1: Sleep"' in instructions
    assert 'heading="Custom Topic 2: Running"' in instructions
    assert 'BEFORE the "Context for JournaLens" section' in instructions


@pytest.mark.asyncio
async def test_custom_topics_only_replaces_standard_sections(config, prompts):
    client = FakeModelClient()
    await ReportAssembler(client, config, prompts).assemble(
        RECENT, [], [], "June 30, 2024", custom_topics=["Sleep"], custom_topics_only=True
    )
    instructions = client.calls[0]["messages"][1]["content"]
    assert prompts.create_report not in instructions
    assert "<custom_topics_only>" in instructions
    assert "ONLY the following 1 custom topic(s)" in instructions


def test_custom_topics_empty():
    assert build_custom_topics_prompt([]) == ""
    assert build_custom_topics_prompt([], topics_only=True) == ""


def test_format_summaries_puts_monthly_first():
    text = format_summaries_for_prompt(WEEKLY + MONTHLY)
    assert text.index("<monthly_summaries>") < text.index("<weekly_summaries>")
    assert format_summaries_for_prompt([]) == ""


@pytest.mark.asyncio
async def test_report_failure_raises(config, prompts):
    client = FakeModelClient(script=[ModelCallError("HTTP 529: overloaded", retryable=True, status_code=529)])
    with pytest.raises(ReportGenerationError):
        await ReportAssembler(client, config, prompts).assemble(RECENT, WEEKLY, [], "June 30, 2024")
    assert len(client.calls) == 1


def test_fit_to_token_budget_passthrough():
    text = "<entry><text>short</text></entry>"
    assert fit_to_token_budget(text, 100) == (text, False)


def test_fit_to_token_budget_keeps_newest_at_entry_boundary():
    entries = "\n".join(f"<entry><text>entry number {i:03d}</text></entry>" for i in range(200))
    fitted, truncated = fit_to_token_budget(entries, 500)

    assert truncated
    assert fitted.startswith(f"{TRUNCATION_MARKER}\n\n<entry")
    assert fitted.endswith("entry number 199</text></entry>")
    assert "entry number 000" not in fitted
    assert len(fitted) <= 500 * 4


@pytest.mark.asyncio
async def test_legacy_sends_raw_text(config, prompts):
    client = FakeModelClient()
    result = await ReportAssembler(client, config, prompts).generate_legacy("Dear diary, today...", "June 30, 2024")

    call = client.calls[0]
    assert call["system"] == prompts.role
    assert call["messages"][0]["content"] == "<journal>\nDear diary, today...\n</journal>"
    assert not result.truncated
    assert result.report.startswith("# JournaLens Advice for June 30, 2024")


@pytest.mark.asyncio
async def test_legacy_truncates_oversized_journal(config, prompts):
    config.report.context_tokens = 1100
    config.report.response_reserve_tokens = 100
    client = FakeModelClient()
    journal = "<entry><text>" + "word " * 2000 + "</text></entry>\n" + "<entry><text>newest</text></entry>"

    result = await ReportAssembler(client, config, prompts).generate_legacy(journal, "June 30, 2024")

    sent = client.calls[0]["messages"][0]["content"]
    assert result.truncated
    assert TRUNCATION_MARKER in sent
    assert "newest" in sent


def sent_journal(client):
    content = client.calls[-1]["messages"][0]["content"]
    return content[len("<journal>\n"):-len("\n</journal>")]


@pytest.mark.asyncio
async def test_tiered_journal_is_capped_to_budget(config, prompts):
    config.report.context_tokens = 1100
    config.report.response_reserve_tokens = 100
    recent = [make_entry(datetime(2024, 6, 17 + i), f"day {i} " + "x" * 2000) for i in range(10)]
    client = FakeModelClient()

    result = await ReportAssembler(client, config, prompts).assemble(recent, [], [], "June 30, 2024")

    journal = sent_journal(client)
    assert result.truncated
    assert journal.startswith(TRUNCATION_MARKER)
    assert len(journal) <= 1000 * 4
    assert "day 9 " in journal
    assert "day 0 " not in journal


@pytest.mark.asyncio
async def test_tiered_trim_drops_monthly_before_weekly_and_recent(config, prompts):
    config.report.context_tokens = 1100
    config.report.response_reserve_tokens = 100
    monthly = [summary("monthly", "January 2024", "m" * 4500)]
    weekly = [summary("weekly", "Week of May 6, 2024", "Busy week at work.")]
    client = FakeModelClient()

    result = await ReportAssembler(client, config, prompts).assemble(RECENT, weekly, monthly, "June 30, 2024")

    journal = sent_journal(client)
    assert result.truncated
    assert "<monthly_summaries>" not in journal
    assert "Busy week at work." in journal
    assert "Slept badly, walked the dog." in journal


@pytest.mark.asyncio
async def test_tiered_trim_drops_weekly_before_recent(config, prompts):
    config.report.context_tokens = 1100
    config.report.response_reserve_tokens = 100
    weekly = [summary("weekly", f"Week {i}", f"week {i} " + "w" * 1500) for i in range(3)]
    client = FakeModelClient()

    await ReportAssembler(client, config, prompts).assemble(RECENT, weekly, MONTHLY, "June 30, 2024")

    journal = sent_journal(client)
    assert "A quiet month." not in journal
    assert "week 0 " not in journal
    assert "week 2 " in journal
    assert "Slept badly, walked the dog." in journal
    assert len(journal) <= 1000 * 4


def test_fit_tiered_journal_untouched_when_it_fits(config, prompts):
    assembler = ReportAssembler(FakeModelClient(), config, prompts)
    journal, truncated = assembler.fit_tiered_journal(RECENT, WEEKLY, MONTHLY, 10_000)
    assert not truncated
    assert journal == assembler.build_tiered_journal(RECENT, WEEKLY, MONTHLY)

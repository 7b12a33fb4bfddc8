#!/usr/bin/env python3
"""
JournaLens Report CLI

Generates one insight report from an entry-tagged journal file:
    Entries → Tiers → Weekly/Monthly summaries (cached) → Report

Usage:
    uv run generate_report.py journal.xml                  # Write report to stdout
    uv run generate_report.py journal.xml -o report.md     # Write report to file
    uv run generate_report.py journal.xml --estimate       # Cost estimate only
    uv run generate_report.py journal.xml --cleanup        # Drop stale cached summaries
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from config import AppConfig, PromptSet
from journalens.costs import cost_breakdown
from journalens.entries import parse_date
from journalens.llm import OpenRouterClient
from journalens.pipeline import TieredReportPipeline
from journalens.prompter import ReportGenerationError
from journalens.reports import ReportArchive, SavedReport
from journalens.store import JsonFileStore

console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a JournaLens report from a journal file",
        epilog="Summaries are cached per user under --store-dir. Use --no-cache to bypass.",
    )
    parser.add_argument("journal_file", type=Path, help="Entry-tagged journal file")
    parser.add_argument("-o", "--output", type=Path, help="Write the report here instead of stdout")
    parser.add_argument("--date", help="Date shown in the report title (default: today)")
    parser.add_argument("--now", help="Reference time for tiering, ISO-8601 (default: current time)")
    parser.add_argument(
        "--topic", action="append", default=[], help="Custom topic to cover (repeatable)"
    )
    parser.add_argument(
        "--topics-only", action="store_true", help="Only cover the custom topics"
    )
    parser.add_argument("--user", help="User id scoping the cache and saved reports")
    parser.add_argument("--store-dir", type=Path, help="Root directory of the durable store")
    parser.add_argument("--no-cache", action="store_true", help="Do not read or write cached summaries")
    parser.add_argument("--estimate", action="store_true", help="Print a cost estimate and exit")
    parser.add_argument("--cleanup", action="store_true", help="Delete superseded cached summaries and exit")
    parser.add_argument("--save-report", action="store_true", help="Keep the report in the user's archive")
    parser.add_argument("--api-key", help="OpenRouter API key (or set OPENROUTER_API_KEY env var)")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--verbose", action="store_true", help="Show detailed progress messages")
    return parser


def print_summary(result, elapsed: float):
    """Completion table: tiers, cache usage, tokens."""
    stats, usage = result.stats, result.usage

    table = Table(show_header=False, box=None, padding=(0, 2))
    if result.tiered:
        table.add_row("  • Entries:", f"[cyan]{stats.total_entries:,}[/cyan]")
        table.add_row(
            "  • Tiers:",
            f"[dim]{stats.tier1_entries} full text / {stats.tier2_entries} weekly / {stats.tier3_entries} monthly[/dim]",
        )
        table.add_row(
            "  • Summaries:",
            f"[cyan]{usage.cached_weekly + usage.cached_monthly}[/cyan] cached, "
            f"[cyan]{usage.new_weekly + usage.new_monthly}[/cyan] new",
        )
        if usage.fallback_batches:
            table.add_row("  • Fallbacks:", f"[yellow]{usage.fallback_batches}[/yellow]")
        table.add_row(
            "  • Summary tokens:",
            f"[dim]{usage.summary_input_tokens:,} in / {usage.summary_output_tokens:,} out[/dim]",
        )
    else:
        table.add_row("  • Mode:", "[dim]single pass (no dated entries)[/dim]")
    if result.truncated:
        table.add_row("  • Journal:", "[yellow]truncated to fit context[/yellow]")
    table.add_row(
        "  • Report tokens:",
        f"[dim]{usage.report_input_tokens:,} in / {usage.report_output_tokens:,} out[/dim]",
    )
    table.add_row("  • Elapsed:", f"[dim]{elapsed:.1f}s[/dim]")

    console.print()
    console.print("═" * 70, style="cyan")
    console.print("✓ REPORT COMPLETE", style="bold green")
    console.print("═" * 70, style="cyan")
    console.print(table)
    console.print()


async def main_async() -> int:
    args = build_parser().parse_args()

    config = AppConfig.load(args.config)
    prompts = PromptSet.load()

    if not args.journal_file.exists():
        console.print(f"[red]❌ Journal file not found: {args.journal_file}[/red]")
        return 1
    journal_text = args.journal_file.read_text(encoding="utf-8")
    if not journal_text.strip():
        console.print("[red]❌ Journal file is empty[/red]")
        return 1

    now = datetime.now(timezone.utc)
    if args.now:
        now = parse_date(args.now)
        if now is None:
            console.print(f"[red]❌ Could not parse --now: {args.now}[/red]")
            return 1
    formatted_date = args.date or now.strftime("%B %d, %Y")

    store = None
    if not args.no_cache:
        store = JsonFileStore(
            args.store_dir or Path(config.store.root),
            args.user or config.store.default_user,
        )

    api_key = args.api_key or os.environ.get("OPENROUTER_API_KEY")
    needs_model = not (args.estimate or args.cleanup)
    if needs_model and not api_key:
        console.print("[red]❌ No API key provided. Set OPENROUTER_API_KEY or use --api-key[/red]")
        return 1

    client = OpenRouterClient(api_key or "", network=config.network)
    pipeline = TieredReportPipeline(client, config, prompts, store=store, verbose=args.verbose)

    try:
        if args.estimate:
            estimate = await pipeline.estimate(journal_text, now=now)
            console.print(cost_breakdown(estimate))
            return 0

        if args.cleanup:
            deleted = await pipeline.cleanup(journal_text, now=now)
            console.print(
                f"[green]✓[/green] Removed {deleted['weekly']} weekly and "
                f"{deleted['monthly']} monthly stale summaries"
            )
            return 0

        started = datetime.now()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("({task.completed}/{task.total})"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            tasks = {}

            def on_progress(summary_type: str, done: int, total: int):
                if summary_type not in tasks:
                    tasks[summary_type] = progress.add_task(
                        f"[yellow]Summarizing {summary_type} batches", total=total
                    )
                progress.update(tasks[summary_type], completed=done)

            report_task = progress.add_task("[cyan]Generating report", total=None)
            try:
                result = await pipeline.generate(
                    journal_text,
                    formatted_date,
                    now=now,
                    custom_topics=args.topic,
                    custom_topics_only=args.topics_only,
                    on_progress=on_progress,
                )
            except ReportGenerationError as e:
                console.print(f"[red]❌ {e}[/red]")
                return 2
            progress.update(report_task, visible=False)

        if args.output:
            args.output.write_text(result.report + "\n", encoding="utf-8")
            console.print(f"[green]✓[/green] Report: {args.output}")
        else:
            sys.stdout.write(result.report + "\n")

        if args.save_report and store is None:
            console.print("[yellow]⚠️  --save-report ignored with --no-cache[/yellow]")
        elif args.save_report:
            report_id = await ReportArchive(store).save_report(
                SavedReport(title=result.report.splitlines()[0].lstrip("# "), content=result.report)
            )
            console.print(f"[green]✓[/green] Saved report {report_id}")

        print_summary(result, (datetime.now() - started).total_seconds())
        return 0
    finally:
        await pipeline.close()
        await client.aclose()


def main():
    """Entry point."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Interactive terminal client for the spending assistant.

Type a question to run a chat turn. Prepared CSV exports are listed as
numbered tickets; ``/download N`` runs ticket N and writes the file to the
output directory. ``/tickets`` lists them again, ``/log LEVEL`` changes the
console log level and ``/quit`` exits.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rich.console import Console  # noqa: E402
from rich.panel import Panel  # noqa: E402
from rich.table import Table  # noqa: E402

from spending_analyst.ai_chatbot.bulk_download import (  # noqa: E402
    BulkExporter,
    DownloadState,
    DownloadTracker,
)
from spending_analyst.ai_chatbot.chatbot_core import SpendingAnalystChatbot  # noqa: E402
from spending_analyst.ai_chatbot.schemas import BulkDownloadTicket, ToolInvocation  # noqa: E402
from spending_analyst.core.config import get_settings  # noqa: E402
from spending_analyst.core.formatting import humanize_number  # noqa: E402
from spending_analyst.core.logger import get_logger, init_logging, progress_manager, set_level  # noqa: E402
from spending_analyst.db.rpc import DatabaseRPC  # noqa: E402

logger = get_logger(__name__)
console = Console()

TABLE_PREVIEW_ROWS = 10


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--model", default=None, help="LLM provider, e.g. gpt-4o or claude-haiku-4.5")
    parser.add_argument("--output-dir", type=Path, default=Path("downloads"), help="Where CSV files are written")
    parser.add_argument("--log-level", default="WARNING", help="Console logging level")
    parser.add_argument("question", nargs="*", help="Ask a single question and exit")
    return parser.parse_args()


def render_rows(title: str, rows: List[Dict[str, Any]]) -> None:
    if not rows:
        return
    table = Table(title=title, show_lines=False)
    columns = list(rows[0].keys())
    for column in columns:
        table.add_column(column)
    for row in rows[:TABLE_PREVIEW_ROWS]:
        table.add_row(*(str(row.get(column, "")) for column in columns))
    if len(rows) > TABLE_PREVIEW_ROWS:
        table.caption = f"{len(rows) - TABLE_PREVIEW_ROWS} more rows not shown"
    console.print(table)


def render_invocation(invocation: ToolInvocation, tracker: DownloadTracker) -> None:
    result = invocation.result
    if invocation.state == "error":
        console.print(f"[red]✗ {invocation.tool_name}[/]: {result.get('error')}")
        return

    console.print(f"[dim]• {invocation.tool_name}[/]")
    if invocation.tool_name == "executeQuery":
        render_rows(f"{result.get('rowCount', 0)} rows", result.get("rows") or [])
        if result.get("hasMoreResults"):
            console.print("[yellow]More rows exist than the display limit; ask for a CSV export.[/]")
    elif invocation.tool_name == "generateChart" and result.get("chartConfig"):
        chart = result["chartConfig"]
        console.print(
            Panel(
                "\n".join(f"• {insight}" for insight in chart.get("businessInsights", [])) or chart.get("description", ""),
                title=f"{chart.get('type', 'chart')} chart: {chart.get('title', '')}",
            )
        )
    elif invocation.tool_name == "prepareBulkDownload" and result.get("prepared"):
        ticket = BulkDownloadTicket.model_validate(result)
        tracker.register(invocation.tool_call_id, ticket)
        number = len(tracker.tickets())
        console.print(
            f"[green]CSV ready[/] #{number}: {ticket.filename}.csv "
            f"(~{humanize_number(ticket.estimated_rows)} rows, {result.get('estimatedSize')}). "
            f"Type /download {number} to fetch it."
        )
    elif invocation.tool_name == "prepareBulkDownload":
        console.print(f"[red]Export not prepared[/]: {result.get('error')} {result.get('suggestion', '')}")


def list_tickets(tracker: DownloadTracker) -> None:
    tickets = tracker.tickets()
    if not tickets:
        console.print("No prepared downloads yet.")
        return
    table = Table(title="Prepared downloads")
    for column in ("#", "File", "Rows (est.)", "State"):
        table.add_column(column)
    for number, tracked in enumerate(tickets, start=1):
        state = tracked.state.value
        if tracked.state is DownloadState.FAILED:
            state = f"failed: {tracked.error}"
        elif tracked.state is DownloadState.COMPLETE:
            state = f"complete ({humanize_number(tracked.row_count or 0)} rows)"
        table.add_row(str(number), tracked.ticket.filename, humanize_number(tracked.ticket.estimated_rows), state)
    console.print(table)


def run_download(tracker: DownloadTracker, exporter: BulkExporter, argument: str, output_dir: Path) -> None:
    tickets = tracker.tickets()
    try:
        tracked = tickets[int(argument) - 1]
    except (ValueError, IndexError):
        console.print(f"[red]No download #{argument}[/]")
        return

    try:
        with progress_manager.spinner(f"Downloading {tracked.ticket.filename}.csv"):
            export = tracker.download(tracked.tool_call_id, exporter.export)
    except KeyboardInterrupt:
        console.print(f"[yellow]Download abandoned[/]. Type /download {argument} to start it again.")
        return

    if export is None:
        console.print(f"[red]Download failed[/]: {tracked.error}. Type /download {argument} to retry.")
        return

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / export.filename
    path.write_text(export.content, encoding="utf-8")
    console.print(f"[green]✅ Wrote {humanize_number(export.row_count)} rows to {path}[/]")


async def ask(
    chatbot: SpendingAnalystChatbot,
    tracker: DownloadTracker,
    question: str,
    model: str | None,
    history: List[Dict[str, str]],
) -> None:
    with progress_manager.spinner("Thinking"):
        result = await chatbot.process_query(question, provider_name=model, conversation_history=history)

    for invocation in result.tool_invocations:
        render_invocation(invocation, tracker)
    console.print(Panel(result.reply, title="Assistant", border_style="red" if result.error else "blue"))

    history.append({"role": "user", "content": question})
    history.append({"role": "assistant", "content": result.reply})


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_logging(level=args.log_level, log_dir=settings.log_dir)
    progress_manager.use_console(console)

    rpc = DatabaseRPC()
    chatbot = SpendingAnalystChatbot(rpc)
    exporter = BulkExporter(rpc)
    tracker = DownloadTracker()
    history: List[Dict[str, str]] = []

    if args.question:
        asyncio.run(ask(chatbot, tracker, " ".join(args.question), args.model, history))
        return

    console.print("[bold]Texas DOGE spending analyst[/] (/tickets, /download N, /log LEVEL, /quit)")
    while True:
        try:
            line = console.input("[bold cyan]> [/]").strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not line:
            continue
        if line in {"/quit", "/exit"}:
            break
        if line == "/tickets":
            list_tickets(tracker)
            continue
        if line.startswith("/log "):
            set_level(line[len("/log "):].strip())
            continue
        if line.startswith("/download"):
            run_download(tracker, exporter, line[len("/download"):].strip(), args.output_dir)
            continue
        asyncio.run(ask(chatbot, tracker, line, args.model, history))


if __name__ == "__main__":
    main()

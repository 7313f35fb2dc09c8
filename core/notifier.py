"""
Run summary notifications

Delivers the per-run :class:`~core.orchestrator.RunSummary` and, when some
accounts failed, a failure alert.  Sinks:

- ``LogNotifier``: summary lines in the application log.
- ``RichConsoleNotifier``: a rich table on the terminal.
- ``WebhookNotifier``: a Discord-compatible embed POSTed with aiohttp.
- ``CompositeNotifier``: fans out to several sinks.

A failing sink is logged and never breaks the run.
"""

import asyncio
from abc import ABC, abstractmethod
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import aiohttp
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from core.config import ClaimerSettings
    from core.orchestrator import AccountResult, RunSummary

logger = logging.getLogger(__name__)

COLOR_OK = 0x00FF00
COLOR_PARTIAL = 0xFFA500
COLOR_FAILED = 0xFF0000
WEBHOOK_TIMEOUT_SECONDS = 10


def format_result_line(result: "AccountResult") -> str:
    """One summary line per account, e.g. ``✅ alice (123): 2 item(s)``."""
    name = result.username or result.account_id
    label = name if name == result.account_id else f"{name} ({result.account_id})"
    if result.success:
        return f"✅ {label}: {len(result.items)} item(s)"
    return f"❌ {label}: {result.error or 'unknown error'}"


def _capped_lines(results: Sequence["AccountResult"], limit: int) -> List[str]:
    lines = [format_result_line(r) for r in results[:limit]]
    if len(results) > limit:
        lines.append(f"... and {len(results) - limit} more users")
    return lines


class SummaryNotifier(ABC):
    """Interface for run summary sinks."""

    @abstractmethod
    async def send_summary(self, summary: "RunSummary") -> None:
        """Deliver *summary*."""

    async def send_failure_alert(self, summary: "RunSummary") -> None:
        """Called after ``send_summary`` when the run had failures."""
        return None


class LogNotifier(SummaryNotifier):
    """Writes the summary to the application log."""

    async def send_summary(self, summary: "RunSummary") -> None:
        if summary.skipped:
            logger.warning("⏭️ Claim run skipped: a run is already in progress")
            return
        logger.info(
            f"📊 Run {summary.run_id}: attempted={summary.attempted} "
            f"succeeded={summary.succeeded} failed={summary.failed}"
        )
        for result in summary.results:
            logger.info("  %s", format_result_line(result))

    async def send_failure_alert(self, summary: "RunSummary") -> None:
        failed = [r.account_id for r in summary.results if not r.success]
        logger.warning(f"⚠️ {len(failed)} account(s) failed: {', '.join(failed)}")


class RichConsoleNotifier(SummaryNotifier):
    """Renders the summary as a rich table."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def build_table(self, summary: "RunSummary") -> Table:
        table = Table(title=f"Claim Run {summary.run_id}", box=box.ROUNDED)
        table.add_column("Account", style="cyan", no_wrap=True)
        table.add_column("User")
        table.add_column("Status", justify="center")
        table.add_column("Items", justify="right")
        table.add_column("Details")

        for result in summary.results:
            status = "[green]OK[/green]" if result.success else "[red]FAIL[/red]"
            details = ", ".join(result.items) if result.success else (result.error or "")
            table.add_row(
                result.account_id,
                result.username or "",
                status,
                str(len(result.items)),
                details,
            )
        return table

    async def send_summary(self, summary: "RunSummary") -> None:
        if summary.skipped:
            self.console.print("[yellow]Run skipped: previous run still in progress[/yellow]")
            return
        self.console.print(self.build_table(summary))
        style = "green" if summary.failed == 0 else "yellow"
        self.console.print(
            Panel(
                f"Attempted: {summary.attempted}  "
                f"Succeeded: {summary.succeeded}  Failed: {summary.failed}",
                title="Run Summary",
                border_style=style,
            )
        )


class WebhookNotifier(SummaryNotifier):
    """
    Posts Discord-style embeds to a webhook URL.

    Args:
        url: Webhook endpoint.
        max_entries: Per-account lines included before truncating with
            "... and N more users".
    """

    def __init__(self, url: str, max_entries: int = 10):
        self.url = url
        self.max_entries = max_entries

    def build_summary_payload(self, summary: "RunSummary") -> Dict[str, Any]:
        color = COLOR_PARTIAL if summary.failed else COLOR_OK
        timestamp = (summary.finished_at or summary.started_at).astimezone(timezone.utc)
        embed: Dict[str, Any] = {
            "title": "⏰ Scheduler Run Summary",
            "color": color,
            "fields": [
                {"name": "Total Attempted", "value": str(summary.attempted), "inline": True},
                {"name": "Successful", "value": str(summary.succeeded), "inline": True},
                {"name": "Failed", "value": str(summary.failed), "inline": True},
                {
                    "name": "UTC Timestamp",
                    "value": timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"),
                    "inline": False,
                },
            ],
            "timestamp": timestamp.isoformat(),
        }
        lines = _capped_lines(summary.results, self.max_entries)
        if lines:
            embed["description"] = "\n".join(lines)
        return {"embeds": [embed]}

    def build_failure_payload(self, summary: "RunSummary") -> Dict[str, Any]:
        failures = [r for r in summary.results if not r.success]
        return {
            "embeds": [{
                "title": f"❌ {len(failures)} Claim Failure(s)",
                "color": COLOR_FAILED,
                "description": "\n".join(_capped_lines(failures, self.max_entries)),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }]
        }

    async def _post(self, payload: Dict[str, Any]) -> bool:
        try:
            timeout = aiohttp.ClientTimeout(total=WEBHOOK_TIMEOUT_SECONDS)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload) as resp:
                    if resp.status >= 300:
                        logger.warning(f"Webhook returned status {resp.status}")
                        return False
            logger.info("Sent webhook notification")
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to send webhook notification: {e}")
            return False

    async def send_summary(self, summary: "RunSummary") -> None:
        if summary.skipped:
            return
        await self._post(self.build_summary_payload(summary))

    async def send_failure_alert(self, summary: "RunSummary") -> None:
        await self._post(self.build_failure_payload(summary))


class CompositeNotifier(SummaryNotifier):
    """Forwards to every wrapped sink, isolating their failures."""

    def __init__(self, notifiers: Sequence[SummaryNotifier]):
        self.notifiers = list(notifiers)

    async def send_summary(self, summary: "RunSummary") -> None:
        for notifier in self.notifiers:
            try:
                await notifier.send_summary(summary)
            except Exception as e:
                logger.error(f"{type(notifier).__name__} failed to send summary: {e}")

    async def send_failure_alert(self, summary: "RunSummary") -> None:
        for notifier in self.notifiers:
            try:
                await notifier.send_failure_alert(summary)
            except Exception as e:
                logger.error(f"{type(notifier).__name__} failed to send alert: {e}")


def build_notifier(
    settings: "ClaimerSettings", console: Optional[Console] = None
) -> CompositeNotifier:
    """Assemble the sinks enabled by *settings*.

    The log sink is always present; the console sink is added when a
    ``console`` is given, the webhook sink when ``alert_webhook_url`` is set.
    """
    notifiers: List[SummaryNotifier] = [LogNotifier()]
    if console is not None:
        notifiers.append(RichConsoleNotifier(console))
    if settings.alert_webhook_url:
        notifiers.append(
            WebhookNotifier(settings.alert_webhook_url, settings.summary_max_entries)
        )
    return CompositeNotifier(notifiers)

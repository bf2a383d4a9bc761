"""Live terminal progress for crawls and scans.

The panel shows one bar of finished units, the streams (or id batches)
currently being fetched with their page counts, and a totals line.

Example:
    >>> from vodspine.reporter import RichProgressReporter
    >>> engine = CrawlEngine(state, store, progress=RichProgressReporter(unit="channels"))

    # ┌──────────────────────────── Crawl ─────────────────────────────┐
    # │ ⠋ channels ━━━━━━━━━━━━━━━━━━━━━━━━  45/120  38%  0:04:12  0:06:51 │
    # │   channel/31   12 pages                                          │
    # │   channel/44    3 pages                                          │
    # │ Pages 1,204 · New 98,345 · Seen 1,234 · Failed 2 · 4.8 pages/s   │
    # └──────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from vodspine.protocols.progress import ProgressEvent, ProgressStage, ProgressTally

# Streams listed in the panel at once; the rest are summarised.
MAX_ACTIVE_ROWS = 8


class RichProgressReporter:
    """Rich live panel reporter.

    Args:
        console: Console to draw on.
        title: Panel title.
        show_stats: Show the totals line.
        refresh_per_second: Live refresh rate.
        unit: What the bar counts, e.g. "streams" or "batches".
    """

    def __init__(
        self,
        console: Console | None = None,
        title: str = "Crawl",
        show_stats: bool = True,
        refresh_per_second: int = 4,
        unit: str = "streams",
    ):
        self.console = console or Console()
        self.title = title
        self.show_stats = show_stats
        self.refresh_per_second = refresh_per_second
        self.unit = unit

        self._tally = ProgressTally()
        self._active: dict[str, int] = {}
        self._marker: int | None = None
        self._bar: Progress | None = None
        self._task: TaskID | None = None
        self._live: Live | None = None

    def start(self) -> None:
        self._tally = ProgressTally()
        self._active.clear()
        self._marker = None
        self._bar = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )
        self._task = self._bar.add_task(self.unit, total=None)
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=self.refresh_per_second,
        )
        self._live.start()

    def report(self, event: ProgressEvent) -> None:
        if self._bar is None or self._task is None:
            return
        self._tally.update(event)
        if event.marker is not None:
            self._marker = event.marker

        if event.stage is ProgressStage.STARTING:
            self._active.setdefault(event.stream, 0)
        elif event.stage is ProgressStage.FETCHING and event.stream in self._active:
            self._active[event.stream] += 1
        elif event.stage.ends_unit:
            self._active.pop(event.stream, None)
        if event.stage is ProgressStage.FAILED:
            self.console.print(f"[red]✗ {event.stream}[/red] {event.message}")

        self._bar.update(self._task, completed=event.current, total=event.total or None)
        if self._live is not None:
            self._live.update(self._render())

    def finish(self, success: bool) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None
        self._bar = None
        self._task = None

        outcome = "[green]✓ Finished[/green]" if success else "[yellow]■ Drained[/yellow]"
        summary = Table.grid(padding=(0, 2))
        summary.add_row("[dim]Pages[/dim]", f"{self._tally.pages:,}")
        summary.add_row("[dim]New items[/dim]", f"{self._tally.items_new:,}")
        summary.add_row("[dim]Already seen[/dim]", f"{self._tally.items_seen:,}")
        summary.add_row("[dim]Failed units[/dim]", f"{self._tally.failed:,}")
        if self._marker is not None:
            summary.add_row("[dim]Marker[/dim]", f"{self._marker:,}")
        summary.add_row("[dim]Duration[/dim]", f"{self._tally.elapsed:.1f}s")
        self.console.print(
            Panel.fit(
                Group(Text.from_markup(outcome), summary),
                title=f"{self.title} summary",
                border_style="green" if success else "yellow",
            )
        )

    def _render(self) -> Panel:
        parts: list = [self._bar] if self._bar is not None else []

        if self._active:
            rows = Table.grid(padding=(0, 2))
            shown = list(self._active.items())[:MAX_ACTIVE_ROWS]
            for stream, pages in shown:
                rows.add_row(f"  [cyan]{stream}[/cyan]", f"{pages:>4} pages")
            hidden = len(self._active) - len(shown)
            if hidden > 0:
                rows.add_row(f"  [dim]+{hidden} more[/dim]", "")
            parts.append(rows)

        if self.show_stats:
            t = self._tally
            stats = (
                f"[bold]Pages[/bold] {t.pages:,} · [bold]New[/bold] {t.items_new:,} · "
                f"[bold]Seen[/bold] {t.items_seen:,} · [bold]Failed[/bold] {t.failed:,} · "
                f"{t.rate:,.1f} pages/s"
            )
            if self._marker is not None:
                stats += f" · [bold]Marker[/bold] {self._marker:,}"
            parts.append(Text.from_markup(stats))

        return Panel(Group(*parts), title=f"[bold]{self.title}[/bold]", border_style="blue")


__all__ = ["RichProgressReporter"]

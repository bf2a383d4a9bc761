"""CLI entry point."""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="vodspine",
    help="Resumable, rate-limited crawler for video and channel ids",
    no_args_is_help=True,
)
console = Console()

STYLES = ("link", "page", "token")
PROGRESS = ("rich", "simple", "none")
PHASES = ("discovery", "runs", "series")


def _parse_params(pairs: list[str]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--param")
        params[key] = value
    return params


def _reporter(kind: str, unit: str):
    from vodspine.protocols.progress import NullProgressReporter
    from vodspine.reporter import RichProgressReporter, SimpleProgressReporter

    if kind == "rich":
        return RichProgressReporter(console=console, unit=unit)
    if kind == "simple":
        return SimpleProgressReporter()
    return NullProgressReporter()


def _setup(log_level: str | None, data_dir: str | None):
    from vodspine.core.checkpoint import FileCheckpointStore
    from vodspine.core.config import get_settings
    from vodspine.core.logging import configure_logging

    overrides: dict[str, Any] = {}
    if log_level:
        overrides["log_level"] = log_level
    if data_dir:
        overrides["data_dir"] = data_dir
    settings = get_settings(**overrides)
    configure_logging(settings.log_level, settings.log_format)
    return settings, FileCheckpointStore(settings.data_dir)


@app.command()
def version() -> None:
    """Show version."""
    from vodspine import __version__

    console.print(f"vodspine {__version__}")


@app.command()
def crawl(
    urls: list[str] = typer.Argument(..., help="First-page URL of each stream"),
    name: str = typer.Option(..., "--name", "-n", help="State name for checkpoints"),
    style: str = typer.Option("link", help="Pagination style: link, page or token"),
    field: list[str] = typer.Option(["data"], "--field", "-f", help="Item list field(s)"),
    key: str = typer.Option("id", help="Item identity key"),
    param: list[str] = typer.Option([], "--param", "-p", help="Query parameter key=value"),
    encoded: bool = typer.Option(False, help="Send parameters base64-encoded in _r (page style)"),
    endpoint: str | None = typer.Option(None, help="Endpoint class for rate limiting"),
    auth: bool = typer.Option(False, help="Use client-credentials auth from settings"),
    stop_on_seen: bool = typer.Option(False, help="Stop a stream at a page with only known items"),
    phase: str | None = typer.Option(None, help="Crawl the URLs as the entities of this phase"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", min=0),
    progress: str = typer.Option("rich", help="Progress output: rich, simple or none"),
    control: bool = typer.Option(True, help="Read control commands from stdin"),
    data_dir: str | None = typer.Option(None, help="Checkpoint directory"),
    log_level: str | None = typer.Option(None, help="Logging level"),
) -> None:
    """Crawl one or more paginated streams into a checkpointed id set."""
    if style not in STYLES:
        raise typer.BadParameter(f"Choose one of {', '.join(STYLES)}", param_hint="--style")
    if progress not in PROGRESS:
        raise typer.BadParameter(f"Choose one of {', '.join(PROGRESS)}", param_hint="--progress")
    if phase is not None and phase not in PHASES:
        raise typer.BadParameter(f"Choose one of {', '.join(PHASES)}", param_hint="--phase")

    settings, store = _setup(log_level, data_dir)
    asyncio.run(
        _crawl(
            settings,
            store,
            urls,
            name=name,
            style=style,
            fields=field,
            key=key,
            params=_parse_params(param),
            encoded=encoded,
            endpoint=endpoint,
            auth=auth,
            stop_on_seen=stop_on_seen,
            phase=phase,
            concurrency=concurrency,
            progress=progress,
            control=control and sys.stdin.isatty(),
        )
    )


async def _crawl(
    settings,
    store,
    urls: list[str],
    *,
    name: str,
    style: str,
    fields: list[str],
    key: str,
    params: dict[str, Any],
    encoded: bool,
    endpoint: str | None,
    auth: bool,
    stop_on_seen: bool,
    phase: str | None,
    concurrency: int | None,
    progress: str,
    control: bool,
) -> None:
    from vodspine.control import ControlChannel
    from vodspine.core.exceptions import InvalidPhaseTransitionError
    from vodspine.core.phases import CrawlPhase
    from vodspine.core.state import DISCOVERED, CrawlState
    from vodspine.engine.crawl import CancelToken, CrawlEngine
    from vodspine.http import ClientCredentialsAuth, RetryingFetcher
    from vodspine.models.crawl_run import CrawlRun
    from vodspine.models.page import Page, PageRequest
    from vodspine.pagination import (
        AppendMerge,
        EncodedParamCodec,
        LinkCursor,
        PageCursor,
        PageNumberCursor,
        TokenCursor,
    )

    state = await CrawlState.load(store, name)
    known = state.ids(DISCOVERED)

    def only_known(page: Page) -> bool:
        items = [item for item in page.all_new() if isinstance(item, dict) and key in item]
        return bool(items) and all(str(item[key]) in known for item in items)

    stopper = only_known if stop_on_seen else None
    cancel = CancelToken()
    run = CrawlRun(name=name, metadata={"urls": urls, "style": style}).start()

    async with RetryingFetcher.from_settings(settings) as fetcher:
        if auth:
            auth_provider = ClientCredentialsAuth.from_settings(fetcher, settings)
            fetcher.register_auth(endpoint or fetcher.limiter.classify(urls[0]), auth_provider)

        def make_cursor(url: str) -> PageCursor:
            if style == "page":
                codec = EncodedParamCodec() if encoded else None
                first = (
                    codec.first_request(url, params, endpoint=endpoint)
                    if codec is not None
                    else PageRequest(url, params=dict(params), endpoint=endpoint)
                )
                return PageNumberCursor(fetcher, first, fields=fields, key=key, codec=codec, stopper=stopper)
            first = PageRequest(url, params=dict(params), endpoint=endpoint)
            cursor_type = LinkCursor if style == "link" else TokenCursor
            return cursor_type(fetcher, first, merge=AppendMerge(fields, keep=False), stopper=stopper)

        engine = CrawlEngine.from_settings(
            state,
            store,
            settings,
            cancel=cancel,
            progress=_reporter(progress, "streams"),
            id_key=key,
        )
        if concurrency is not None:
            engine.concurrency = concurrency

        def describe() -> str:
            r = engine.result
            return (
                f"{r.pages} pages, {r.new_items} new, {len(r.completed)} completed, "
                f"{len(r.failed)} failed, concurrency {engine.concurrency}"
            )

        channel = ControlChannel(cancel, status=describe)
        channel.register("crawl", engine.set_concurrency)
        channel.start(read_input=control)
        try:
            if phase is None:
                result = await engine.run([make_cursor(url) for url in urls])
            else:
                entities = {url: (lambda u=url: make_cursor(u)) for url in urls}
                result = await engine.run_phase(CrawlPhase(phase), entities)
        except InvalidPhaseTransitionError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(code=1) from e
        finally:
            await channel.stop()

    run = run.finish_crawl(result)
    await store.save(f"{name}.run.json", run.to_dict())
    console.print(
        f"[bold]{run.status.value}[/bold]: {result.pages} pages, {result.new_items} new ids, "
        f"{len(known)} known, {len(result.failed)} failed"
    )


@app.command()
def scan(
    url: str = typer.Argument(..., help="Batch endpoint URL"),
    ranges: str = typer.Option(..., "--ranges", "-r", help='Id ranges, e.g. "1-1000,5000-6000"'),
    name: str = typer.Option(..., "--name", "-n", help="State name for checkpoints"),
    id_param: str = typer.Option("id", help="Query parameter repeated once per id"),
    field: list[str] = typer.Option(["data"], "--field", "-f", help="Item list field(s)"),
    key: str = typer.Option("id", help="Item identity key"),
    page_size: int = typer.Option(100, min=1, help="Ids per batch"),
    concurrency: int = typer.Option(25, "--concurrency", "-c", min=0),
    endpoint: str | None = typer.Option(None, help="Endpoint class for rate limiting"),
    auth: bool = typer.Option(False, help="Use client-credentials auth from settings"),
    progress: str = typer.Option("rich", help="Progress output: rich, simple or none"),
    control: bool = typer.Option(True, help="Read control commands from stdin"),
    data_dir: str | None = typer.Option(None, help="Checkpoint directory"),
    log_level: str | None = typer.Option(None, help="Logging level"),
) -> None:
    """Scan numeric id ranges against a batch lookup endpoint."""
    from vodspine.engine.ranges import parse_ranges

    if progress not in PROGRESS:
        raise typer.BadParameter(f"Choose one of {', '.join(PROGRESS)}", param_hint="--progress")
    try:
        id_ranges = parse_ranges(ranges)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--ranges") from e

    settings, store = _setup(log_level, data_dir)
    asyncio.run(
        _scan(
            settings,
            store,
            url,
            id_ranges,
            name=name,
            id_param=id_param,
            fields=field,
            key=key,
            page_size=page_size,
            concurrency=concurrency,
            endpoint=endpoint,
            auth=auth,
            progress=progress,
            control=control and sys.stdin.isatty(),
        )
    )


async def _scan(
    settings,
    store,
    url: str,
    id_ranges,
    *,
    name: str,
    id_param: str,
    fields: list[str],
    key: str,
    page_size: int,
    concurrency: int,
    endpoint: str | None,
    auth: bool,
    progress: str,
    control: bool,
) -> None:
    from vodspine.control import ControlChannel
    from vodspine.core.state import DISCOVERED, CrawlState
    from vodspine.engine.crawl import CancelToken
    from vodspine.engine.ranges import IdBatch, RangeScanner
    from vodspine.http import ClientCredentialsAuth, RetryingFetcher
    from vodspine.models.crawl_run import CrawlRun
    from vodspine.models.page import PageRequest
    from vodspine.pagination.merge import AppendMerge

    state = await CrawlState.load(store, name)
    cancel = CancelToken()
    merge = AppendMerge(fields, keep=False)
    run = CrawlRun(name=name, kind="scan", metadata={"url": url, "ranges": [str(r) for r in id_ranges]}).start()

    async with RetryingFetcher.from_settings(settings) as fetcher:
        if auth:
            fetcher.register_auth(
                endpoint or fetcher.limiter.classify(url),
                ClientCredentialsAuth.from_settings(fetcher, settings),
            )

        async def fetch_batch(batch: IdBatch) -> int:
            response = await fetcher.fetch(
                PageRequest(url, params={id_param: batch.ids()}, endpoint=endpoint)
            )
            items = [
                item[key]
                for values in merge.extract(response.data).values()
                for item in values
                if isinstance(item, dict) and key in item
            ]
            return len(state.add(DISCOVERED, items))

        scanner = RangeScanner(
            id_ranges,
            fetch_batch,
            state,
            store,
            page_size=page_size,
            concurrency=concurrency,
            checkpoint_interval=settings.checkpoint_interval,
            cancel=cancel,
            progress=_reporter(progress, "batches"),
        )

        def describe() -> str:
            return (
                f"marker {scanner.marker}, {scanner.ranges.in_flight} batches in flight, "
                f"{len(state.ids(DISCOVERED))} ids found"
            )

        channel = ControlChannel(cancel, status=describe)
        channel.register("scan", scanner.set_concurrency)
        channel.start(read_input=control)
        try:
            result = await scanner.run()
        finally:
            await channel.stop()

    run = run.finish_scan(result)
    await store.save(f"{name}.run.json", run.to_dict())
    console.print(
        f"[bold]{run.status.value}[/bold]: scanned through {result.marker}, "
        f"{result.batches} batches, {len(result.failed)} failed"
    )


@app.command()
def status(
    name: str = typer.Argument(..., help="State name"),
    data_dir: str | None = typer.Option(None, help="Checkpoint directory"),
) -> None:
    """Show a saved crawl state and its last run."""
    _, store = _setup("WARNING", data_dir)
    asyncio.run(_status(store, name))


async def _status(store, name: str) -> None:
    from vodspine.core.state import CrawlState
    from vodspine.models.crawl_run import CrawlRun

    if not await store.exists(f"{name}.json"):
        console.print(f"[red]No saved state named {name!r}[/red]")
        raise typer.Exit(code=1)

    state = await CrawlState.load(store, name)
    summary = state.summary()

    table = Table(title=f"State {name}", show_header=False)
    table.add_row("Phase", f"{summary['phase']} (resume key: {summary['resume_key'] or '-'})")
    for set_name, count in summary["sets"].items():
        table.add_row(f"Set {set_name}", f"{count:,}")
    table.add_row("Open streams", str(summary["open_streams"]))
    table.add_row("Completed streams", str(summary["completed_streams"]))
    for marker, value in summary["markers"].items():
        table.add_row(f"Marker {marker}", str(value))

    last = await store.load_or(f"{name}.run.json")
    if isinstance(last, dict):
        run = CrawlRun.from_dict(last)
        duration = run.duration_seconds
        table.add_row("Last run", f"{run.kind} {run.status.value}, {run.started_at:%Y-%m-%d %H:%M}")
        table.add_row("Last run counts", f"{run.pages:,} pages, {run.items_new:,} new, {len(run.failed_units)} failed")
        if duration is not None:
            table.add_row("Last run duration", f"{duration:.1f}s")

    console.print(table)


if __name__ == "__main__":
    app()

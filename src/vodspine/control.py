"""Line-oriented control channel for running crawls.

While a crawl runs, commands can be typed on stdin:

- ``exit``: drain gracefully (finish in-flight work, save, stop).
- ``concurrency <target> <n>``: resize a registered pool; 0 pauses it.
- ``status``: print current counters.

SIGINT and SIGTERM take the same path as ``exit``. Only the first signal is
handled; a second one gets the default behaviour, so a stuck drain can
still be killed with another Ctrl-C.

Example:
    >>> channel = ControlChannel(cancel)
    >>> channel.register("crawl", engine.set_concurrency)
    >>> async with channel:
    ...     await engine.run(cursors, on_page)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import sys
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import IO, Any

from rich.console import Console

from vodspine.engine.crawl import CancelToken

logger = logging.getLogger("vodspine.control")

USAGE = "Commands: exit | concurrency <target> <n> | status"

Setter = Callable[[int], Awaitable[None] | None]


@dataclass(frozen=True)
class Command:
    """A parsed control command."""

    name: str
    target: str | None = None
    value: int | None = None


def parse_command(line: str) -> Command | None:
    """Parse one input line.

    Returns None for a blank line.

    Example:
        >>> parse_command("concurrency crawl 8")
        Command(name='concurrency', target='crawl', value=8)
        >>> parse_command("  EXIT ")
        Command(name='exit', target=None, value=None)

    Raises:
        ValueError: For anything that is not a valid command.
    """
    parts = line.split()
    if not parts:
        return None
    name = parts[0].lower()

    if name in ("exit", "status"):
        if len(parts) != 1:
            raise ValueError(f"{name} takes no arguments")
        return Command(name)

    if name == "concurrency":
        if len(parts) != 3:
            raise ValueError("usage: concurrency <target> <n>")
        target, raw = parts[1], parts[2]
        if not raw.isdigit():
            raise ValueError(f"concurrency must be a non-negative integer, got {raw!r}")
        return Command(name, target=target, value=int(raw))

    raise ValueError(f"Unknown command {parts[0]!r}")


class ControlChannel:
    """Reads commands from a stream and dispatches them.

    Args:
        cancel: Token set by ``exit`` and by signals.
        stream: Input stream (default: stdin).
        console: Where replies are printed.
        status: Returns a one-line status for the ``status`` command.
        signals: Install SIGINT/SIGTERM handlers while running.
    """

    def __init__(
        self,
        cancel: CancelToken,
        *,
        stream: IO[str] | None = None,
        console: Console | None = None,
        status: Callable[[], str] | None = None,
        signals: bool = True,
    ) -> None:
        self.cancel = cancel
        self.stream = stream if stream is not None else sys.stdin
        self.console = console or Console(stderr=True)
        self.status = status
        self.signals = signals
        self._targets: dict[str, Setter] = {}
        self._task: asyncio.Task[None] | None = None
        self._installed: list[signal.Signals] = []

    def register(self, target: str, setter: Setter) -> None:
        """Make ``concurrency <target> <n>`` call ``setter(n)``."""
        self._targets[target] = setter

    @property
    def targets(self) -> list[str]:
        return sorted(self._targets)

    async def handle(self, line: str) -> Command | None:
        """Parse and run one line. Never raises for bad input."""
        try:
            command = parse_command(line)
        except ValueError as e:
            self.console.print(f"[red]{e}[/red]")
            self.console.print(USAGE)
            return None
        if command is None:
            return None

        if command.name == "exit":
            self.cancel.cancel("exit command")
            self.console.print("Will exit at nearest convenience")
        elif command.name == "status":
            self.console.print(self.status() if self.status else "No status available")
        elif command.name == "concurrency":
            setter = self._targets.get(command.target or "")
            if setter is None:
                self.console.print(
                    f"[red]Unknown target {command.target!r}[/red]; "
                    f"known: {', '.join(self.targets) or 'none'}"
                )
                return None
            try:
                outcome = setter(command.value or 0)
                if inspect.isawaitable(outcome):
                    await outcome
            except ValueError as e:
                self.console.print(f"[red]{e}[/red]")
                return None
            self.console.print(f"Set {command.target} concurrency to {command.value}")
        return command

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _on_signal(self, signum: signal.Signals) -> None:
        logger.warning(f"Received {signum.name}, will exit at nearest convenience")
        self.cancel.cancel(signum.name)
        self._remove_signal_handlers()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.debug(f"Cannot handle {signum.name} here: {e}")
                continue
            self._installed.append(signum)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._installed:
            loop.remove_signal_handler(signum)
        self._installed.clear()

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def _read_pipe(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        transport, _ = await loop.connect_read_pipe(lambda: protocol, self.stream)
        try:
            while line := await reader.readline():
                await self.handle(line.decode("utf-8", errors="replace"))
        finally:
            transport.close()

    async def _read_thread(self) -> None:
        # Daemon thread so a blocked readline never holds up interpreter exit.
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue[str | None] = asyncio.Queue()

        def pump() -> None:
            for raw in iter(self.stream.readline, ""):
                loop.call_soon_threadsafe(lines.put_nowait, raw)
            loop.call_soon_threadsafe(lines.put_nowait, None)

        threading.Thread(target=pump, name="vodspine-control", daemon=True).start()
        while (line := await lines.get()) is not None:
            await self.handle(line)

    async def _read(self) -> None:
        try:
            await self._read_pipe()
        except (OSError, ValueError, NotImplementedError, AttributeError) as e:
            logger.debug(f"Pipe reader unavailable ({e!r}); reading in a thread")
            await self._read_thread()
        logger.debug("Control input closed")

    def start(self, read_input: bool = True) -> None:
        """Install signal handlers and, if ``read_input``, start reading lines."""
        if self.signals:
            self._install_signal_handlers()
        if read_input and self._task is None:
            self._task = asyncio.create_task(self._read(), name="control-channel")

    async def stop(self) -> None:
        self._remove_signal_handlers()
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> ControlChannel:
        self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()


__all__ = [
    "USAGE",
    "Command",
    "parse_command",
    "ControlChannel",
]

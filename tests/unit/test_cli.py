"""Tests for vodspine.cli."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest
from typer.testing import CliRunner

from vodspine import __version__
from vodspine.cli import app
from vodspine.core.checkpoint import FileCheckpointStore
from vodspine.core.state import DISCOVERED, CrawlState
from vodspine.http.client import RetryingFetcher
from vodspine.utils.params import query_params
from vodspine.utils.retry import RetryPolicy

runner = CliRunner()


def serve(handler):
    """Make every fetcher the CLI builds answer with ``handler``."""

    def from_settings(cls, settings, **kwargs):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return cls(policy=RetryPolicy(max_retries=0), client=client)

    return classmethod(from_settings)


def linked(request: httpx.Request) -> httpx.Response:
    n = int(request.url.path.rsplit("/", 1)[-1])
    links = [{"rel": "next", "uri": f"https://api.test/s/{n + 1}"}] if n < 3 else []
    return httpx.Response(200, json={"data": [{"id": f"v{n}"}], "pagination": {"links": links}})


class TestCli:
    """CLI command tests."""

    def test_version(self) -> None:
        """version prints the package version."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_crawl_and_status(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """crawl saves discovered ids and status reports them."""
        monkeypatch.setattr(RetryingFetcher, "from_settings", serve(linked))
        result = runner.invoke(
            app,
            [
                "crawl", "https://api.test/s/1",
                "--name", "chan",
                "--data-dir", str(tmp_path),
                "--progress", "none",
                "--log-level", "WARNING",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "success" in result.stdout

        state = asyncio.run(CrawlState.load(FileCheckpointStore(tmp_path), "chan"))
        assert state.ids(DISCOVERED) == {"v1", "v2", "v3"}
        assert (tmp_path / "chan.run.json.gz").exists()

        status = runner.invoke(app, ["status", "chan", "--data-dir", str(tmp_path)])
        assert status.exit_code == 0, status.output
        assert "Set discovered" in status.stdout
        assert "crawl success" in status.stdout

    def test_crawl_phase(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """--phase records the phase and the last finished URL."""
        monkeypatch.setattr(RetryingFetcher, "from_settings", serve(linked))
        args = ["--data-dir", str(tmp_path), "--progress", "none", "--log-level", "WARNING"]
        result = runner.invoke(app, ["crawl", "https://api.test/s/1", "--name", "games", "--phase", "runs", *args])
        assert result.exit_code == 0, result.output

        state = asyncio.run(CrawlState.load(FileCheckpointStore(tmp_path), "games"))
        assert state.phase.phase.value == "runs"
        assert state.phase.key == "https://api.test/s/1"

        jump = runner.invoke(app, ["crawl", "https://api.test/s/1", "--name", "fresh", "--phase", "series", *args])
        assert jump.exit_code == 1
        assert "Cannot move from discovery to series" in jump.stdout

        bad = runner.invoke(app, ["crawl", "https://api.test/s/1", "--name", "x", "--phase", "done", *args])
        assert bad.exit_code != 0

    def test_scan(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """scan looks up every batch and keeps the ids found."""

        def lookup(request: httpx.Request) -> httpx.Response:
            ids = request.url.params.get_list("id")
            return httpx.Response(200, json={"data": [{"id": i} for i in ids if int(i) % 2 == 0]})

        monkeypatch.setattr(RetryingFetcher, "from_settings", serve(lookup))
        result = runner.invoke(
            app,
            [
                "scan", "https://api.test/videos",
                "--ranges", "1-10",
                "--name", "ids",
                "--page-size", "4",
                "--data-dir", str(tmp_path),
                "--progress", "none",
                "--log-level", "WARNING",
            ],
        )
        assert result.exit_code == 0, result.output
        state = asyncio.run(CrawlState.load(FileCheckpointStore(tmp_path), "ids"))
        assert state.ids(DISCOVERED) == {"2", "4", "6", "8", "10"}
        assert state.marker("scan") == 10

    def test_bad_ranges(self, tmp_path: Path) -> None:
        """Malformed ranges are rejected before anything runs."""
        result = runner.invoke(
            app, ["scan", "https://api.test/v", "--ranges", "x-y", "--name", "n", "--data-dir", str(tmp_path)]
        )
        assert result.exit_code != 0

    def test_status_missing(self, tmp_path: Path) -> None:
        """status fails for an unknown state."""
        result = runner.invoke(app, ["status", "nothing", "--data-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "No saved state" in result.stdout

    def test_params_encoded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """--encoded page crawls carry parameters in _r."""
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(query_params(str(request.url))["_r"])
            return httpx.Response(200, json={"data": [{"id": 1}], "pagination": {"page": 1, "pages": 1}})

        monkeypatch.setattr(RetryingFetcher, "from_settings", serve(handler))
        result = runner.invoke(
            app,
            [
                "crawl", "https://api.test/GetGameList",
                "--name", "games",
                "--style", "page",
                "--encoded",
                "--param", "gameId=abc",
                "--data-dir", str(tmp_path),
                "--progress", "none",
                "--log-level", "WARNING",
            ],
        )
        assert result.exit_code == 0, result.output
        assert len(seen) == 1

"""
Tests for src/main.py - Application lifecycle and interaction feed.

Covers:
- setup() with config loading, zone index and health server wiring
- start()/stop() lifecycle with enable/disable logging
- handle_line() JSON replies for gated, ungated and invalid lines
- process_stream() / run() over in-memory streams
- setup_logging() renderer selection
"""

from __future__ import annotations

import io
import json
import os
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog
import yaml

from main import Application, setup_logging
from utils.rate_limiting import Decision
from zone_index import Zone, ZoneIndex
from utils.rate_limiting import QuotaTracker
from event_handler import InteractionHandler


INSIDE_LINE = '{"player": "steve", "x": 5, "y": 70, "z": -10}'
OUTSIDE_LINE = '{"player": "steve", "x": 500, "y": 70, "z": -10}'


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Point CONFIG_DIR at an empty temp dir and disable the health server."""
    for key in list(os.environ.keys()):
        if key.startswith(("CONFIG_", "LOG_", "HEALTH_", "USE_DEFAULT_")):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("HEALTH_CHECK_PORT", "0")


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo setup_logging() between tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def pyramids_yml(tmp_path: Path) -> Path:
    path = tmp_path / "pyramids.yml"
    with open(path, "w") as f:
        yaml.dump({
            "pyramids": {
                "desert": {"minX": 0, "maxX": 10, "minY": 60, "maxY": 80, "minZ": -20, "maxZ": -5},
            }
        }, f)
    return path


@pytest.fixture
def wired_app(t0: datetime) -> Application:
    """Application with components wired manually and a fixed clock."""
    app = Application()
    app.zone_index = ZoneIndex([Zone(0, 10, 60, 80, -20, -5)])
    app.tracker = QuotaTracker()
    app.handler = InteractionHandler(app.zone_index, app.tracker, clock=lambda: t0)
    return app


# ============================================================================
# setup() Tests
# ============================================================================

class TestSetup:
    """Application.setup() wiring."""

    @pytest.mark.asyncio
    async def test_setup_loads_zones(self, pyramids_yml: Path) -> None:
        app = Application()
        await app.setup()

        assert app.config is not None
        assert app.zone_index is not None and len(app.zone_index) == 1
        assert app.tracker is not None
        assert app.handler is not None
        assert app.health_server is None

    @pytest.mark.asyncio
    async def test_setup_without_pyramids_file(self) -> None:
        app = Application()
        await app.setup()

        assert app.zone_index is not None
        assert len(app.zone_index) == 0

    @pytest.mark.asyncio
    async def test_setup_creates_health_server(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEALTH_CHECK_PORT", "9123")
        app = Application()
        await app.setup()

        assert app.health_server is not None
        assert app.health_server.port == 9123
        assert app.health_server.stats_provider == app.stats

    @pytest.mark.asyncio
    async def test_setup_config_error_propagates(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "loud")
        app = Application()
        with pytest.raises(ValueError, match="Invalid log_level"):
            await app.setup()


# ============================================================================
# handle_line() Tests
# ============================================================================

class TestHandleLine:
    """Replies written back to the host."""

    def test_gated_allow(self, wired_app: Application) -> None:
        reply = json.loads(wired_app.handle_line(INSIDE_LINE + "\n"))  # type: ignore[arg-type]
        assert reply == {
            "player": "steve",
            "decision": "allow",
            "cancelled": False,
            "message": "",
        }

    def test_gated_deny(self, wired_app: Application) -> None:
        for _ in range(3):
            wired_app.handle_line(INSIDE_LINE)

        reply = json.loads(wired_app.handle_line(INSIDE_LINE))  # type: ignore[arg-type]

        assert reply["decision"] == Decision.DENY_COOLDOWN_PERIOD.value
        assert reply["cancelled"] is True
        assert reply["message"] == Decision.DENY_COOLDOWN_PERIOD.message

    def test_ungated_passes_through(self, wired_app: Application) -> None:
        reply = json.loads(wired_app.handle_line(OUTSIDE_LINE))  # type: ignore[arg-type]
        assert reply == {
            "player": "steve",
            "decision": None,
            "cancelled": False,
            "message": "",
        }
        assert wired_app.tracker is not None
        assert wired_app.tracker.tracked_players() == 0

    @pytest.mark.parametrize("line", ["", "   \n", "garbage", '{"player": "steve"}'])
    def test_blank_or_invalid_lines_skipped(self, wired_app: Application, line: str) -> None:
        assert wired_app.handle_line(line) is None

    def test_stats(self, wired_app: Application) -> None:
        wired_app.handle_line(INSIDE_LINE)
        assert wired_app.stats() == {"zones": 1, "tracked_players": 1}

    def test_stats_before_setup(self) -> None:
        assert Application().stats() == {"zones": 0, "tracked_players": 0}


# ============================================================================
# Stream processing Tests
# ============================================================================

class TestProcessStream:
    """process_stream() and run() over StringIO."""

    @pytest.mark.asyncio
    async def test_process_stream_until_eof(self, wired_app: Application) -> None:
        source = io.StringIO("\n".join([INSIDE_LINE, "garbage", OUTSIDE_LINE]) + "\n")
        sink = io.StringIO()

        await wired_app.process_stream(source, sink)
        await wired_app.stop()

        replies = [json.loads(line) for line in sink.getvalue().splitlines()]
        assert [r["decision"] for r in replies] == ["allow", None]

    @pytest.mark.asyncio
    async def test_process_stream_stops_on_shutdown(self, wired_app: Application) -> None:
        wired_app.shutdown_event.set()
        sink = io.StringIO()

        await wired_app.process_stream(io.StringIO(INSIDE_LINE + "\n"), sink)

        assert sink.getvalue() == ""

    @pytest.mark.asyncio
    async def test_run_end_to_end(self, pyramids_yml: Path) -> None:
        lines = [INSIDE_LINE] * 4
        source = io.StringIO("\n".join(lines) + "\n")
        sink = io.StringIO()

        app = Application()
        await app.run(source, sink)

        decisions = [json.loads(line)["decision"] for line in sink.getvalue().splitlines()]
        assert decisions == ["allow", "allow", "allow", "deny_cooldown_period"]

    @pytest.mark.asyncio
    async def test_run_stops_on_error(self) -> None:
        app = Application()
        app.stop = AsyncMock()  # type: ignore[method-assign]

        with patch("main.load_config", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                await app.run(io.StringIO(""), io.StringIO())

        app.stop.assert_awaited_once()


# ============================================================================
# start()/stop() Tests
# ============================================================================

class TestLifecycle:
    """Health server start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop_health_server(self, wired_app: Application) -> None:
        wired_app.config = MagicMock(zones=[])
        wired_app.health_server = MagicMock()
        wired_app.health_server.start = AsyncMock()
        wired_app.health_server.stop = AsyncMock()

        await wired_app.start()
        await wired_app.stop()

        wired_app.health_server.start.assert_awaited_once()
        wired_app.health_server.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_survives_health_server_error(self, wired_app: Application) -> None:
        wired_app.health_server = MagicMock()
        wired_app.health_server.stop = AsyncMock(side_effect=RuntimeError("port gone"))

        await wired_app.stop()


# ============================================================================
# setup_logging() Tests
# ============================================================================

class TestSetupLogging:
    """Renderer selection."""

    def test_json_renderer(self) -> None:
        setup_logging("debug", "json")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer(self) -> None:
        setup_logging("info", "console")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


# ============================================================================
# Feed robustness Tests
# ============================================================================

class TestFeedRobustness:
    """Raw byte feeds, undecodable lines and stdout hygiene."""

    @pytest.mark.asyncio
    async def test_undecodable_line_skipped(
        self, wired_app: Application, capsys: pytest.CaptureFixture[str]
    ) -> None:
        setup_logging("info", "json")
        source = io.BytesIO(b"\xff\xfe garbage\n" + INSIDE_LINE.encode() + b"\n")
        sink = io.StringIO()

        await wired_app.process_stream(source, sink)

        replies = [json.loads(line) for line in sink.getvalue().splitlines()]
        assert [r["decision"] for r in replies] == ["allow"]
        assert "interaction_line_invalid" in capsys.readouterr().err

    def test_handle_line_accepts_bytes(self, wired_app: Application) -> None:
        reply = json.loads(wired_app.handle_line(INSIDE_LINE.encode() + b"\n"))  # type: ignore[arg-type]
        assert reply["decision"] == "allow"

    @pytest.mark.asyncio
    async def test_run_keeps_logs_off_stdout(
        self, pyramids_yml: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Config loading logs, including debug lines, never reach stdout."""
        monkeypatch.setenv("LOG_LEVEL", "debug")
        sink = io.StringIO()

        await Application().run(io.StringIO(INSIDE_LINE + "\n"), sink)

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "application_starting" in captured.err
        assert "pyramid_limiter_disabled" in captured.err
        assert [json.loads(line)["decision"] for line in sink.getvalue().splitlines()] == ["allow"]


# ============================================================================
# Readiness Tests
# ============================================================================

class TestReadiness:
    """Using the application before setup() is an error."""

    @pytest.mark.asyncio
    async def test_start_before_setup_raises(self) -> None:
        with pytest.raises(RuntimeError, match="setup"):
            await Application().start()

    def test_handle_line_before_setup_raises(self) -> None:
        with pytest.raises(RuntimeError, match="setup"):
            Application().handle_line(INSIDE_LINE)

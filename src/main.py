# Copyright (c) 2025 Stephen Clau
#
# This file is part of Pyramid Limiter.
#
# Pyramid Limiter is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Pyramid Limiter - Main Entry Point

Gates pyramid chest interactions with daily and cooldown quotas.

The host plugin streams one JSON interaction per line on stdin and reads one
JSON reply per gated-or-not interaction on stdout. Logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import stat
import sys
from typing import Awaitable, Callable, Optional, Any, TextIO, Union

import structlog

# Import helpers with support for package vs. flat layout
try:
    # Package-style imports (python -m src.main)
    from .config import Config, load_config  # type: ignore
    from .health import HealthCheckServer  # type: ignore
    from .zone_index import ZoneIndex  # type: ignore
    from .utils.rate_limiting import QuotaTracker  # type: ignore
    from .event_handler import InteractionHandler, parse_interaction_line  # type: ignore
except ImportError:
    # Flat layout (tests and direct execution)
    from config import Config, load_config  # type: ignore
    from health import HealthCheckServer  # type: ignore
    from zone_index import ZoneIndex  # type: ignore
    from utils.rate_limiting import QuotaTracker  # type: ignore
    from event_handler import InteractionHandler, parse_interaction_line  # type: ignore

logger = structlog.get_logger()

FeedLine = Union[str, bytes]
FeedReader = Callable[[], Awaitable[FeedLine]]


def setup_logging(log_level: str, log_format: str) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_format: Output format ("json" or "console")
    """
    level_map: dict[str, int] = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    min_level = level_map.get(log_level.lower(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    # stdout carries interaction replies, so logs go to stderr. Loggers are
    # not cached: setup() configures twice (bootstrap, then from config).
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logger.debug("logging_configured", level=log_level, format=log_format)


def _is_pipe(stream: Any) -> bool:
    """True if stream is backed by a FIFO or socket the event loop can watch."""
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (AttributeError, OSError, ValueError):
        return False
    return stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode)


class Application:
    """Main application orchestrator."""

    def __init__(self) -> None:
        """Initialize application components."""
        self.config: Optional[Config] = None
        self.zone_index: Optional[ZoneIndex] = None
        self.tracker: Optional[QuotaTracker] = None
        self.handler: Optional[InteractionHandler] = None
        self.health_server: Optional[HealthCheckServer] = None
        self.shutdown_event: asyncio.Event = asyncio.Event()
        self._feed_transport: Optional[asyncio.ReadTransport] = None

    async def setup(self) -> None:
        """Load configuration and initialize core components."""
        # Until the config is read, log to stderr at info
        setup_logging("info", "console")
        logger.info("application_starting")

        try:
            self.config = load_config()
        except Exception as e:
            logger.error("config_load_failed", error=str(e))
            raise

        setup_logging(self.config.log_level, self.config.log_format)

        self.zone_index = ZoneIndex(self.config.zones)
        self.tracker = QuotaTracker()
        self.handler = InteractionHandler(self.zone_index, self.tracker)

        if not self.config.zones:
            logger.warning(
                "no_pyramid_zones",
                path=str(self.config.pyramids_path),
                message="Chest interactions will not be gated",
            )

        if self.config.health_check_port:
            self.health_server = HealthCheckServer(
                host=self.config.health_check_host,
                port=self.config.health_check_port,
                stats_provider=self.stats,
            )

        logger.info(
            "application_configured",
            zones=len(self.zone_index),
            health_port=self.config.health_check_port,
        )

    def stats(self) -> dict[str, Any]:
        """Engine stats reported by the health endpoint."""
        return {
            "zones": len(self.zone_index) if self.zone_index is not None else 0,
            "tracked_players": self.tracker.tracked_players() if self.tracker is not None else 0,
        }

    async def start(self) -> None:
        """Start all application components."""
        if self.config is None or self.handler is None:
            raise RuntimeError("Application.setup() must run before start()")

        if self.health_server is not None:
            await self.health_server.start()

        logger.info("pyramid_limiter_enabled", zones=len(self.config.zones))

    def handle_line(self, line: FeedLine) -> Optional[str]:
        """
        Process one interaction line from the host.

        Args:
            line: JSON interaction record, as text or raw bytes

        Returns:
            JSON reply, or None if the line was blank or invalid
        """
        if self.handler is None:
            raise RuntimeError("Application.setup() must run before handling lines")

        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")

        line = line.strip()
        if not line:
            return None

        try:
            event = parse_interaction_line(line)
        except ValueError as e:
            logger.warning("interaction_line_invalid", error=str(e), line=line[:100])
            return None

        outcome = self.handler.handle(event)
        if outcome is None:
            reply: dict[str, Any] = {
                "player": event.player_id,
                "decision": None,
                "cancelled": False,
                "message": "",
            }
        else:
            reply = outcome.to_dict(event.player_id)

        return json.dumps(reply)

    async def _open_feed(self, stream: Any) -> FeedReader:
        """
        Return a coroutine function yielding one raw line per call.

        Pipes and sockets are read through the event loop so a signal can
        interrupt an idle feed. Other streams (files, in-memory buffers)
        are finite and are read in the default executor.
        """
        loop = asyncio.get_running_loop()

        if _is_pipe(stream):
            reader = asyncio.StreamReader()
            transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), stream
            )
            self._feed_transport = transport
            return reader.readline

        source = getattr(stream, "buffer", stream)

        async def read_line() -> FeedLine:
            return await loop.run_in_executor(None, source.readline)

        return read_line

    async def _read_line(self, read: FeedReader) -> Optional[FeedLine]:
        """Wait for the next line or shutdown. None on shutdown."""
        read_task = asyncio.ensure_future(read())
        shutdown = asyncio.ensure_future(self.shutdown_event.wait())

        done, _ = await asyncio.wait({read_task, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        if read_task in done:
            shutdown.cancel()
            return read_task.result()

        read_task.cancel()
        return None

    async def process_stream(self, input_stream: Any, output_stream: TextIO) -> None:
        """Answer interactions from input_stream until EOF or shutdown."""
        read = await self._open_feed(input_stream)

        while not self.shutdown_event.is_set():
            try:
                line = await self._read_line(read)
            except UnicodeDecodeError as e:
                logger.warning("interaction_line_invalid", error=str(e))
                continue
            except ValueError as e:
                # StreamReader drops an over-long line and raises
                logger.warning("interaction_line_invalid", error=str(e))
                continue

            if not line:
                logger.debug("interaction_feed_closed")
                break

            reply = self.handle_line(line)
            if reply is not None:
                output_stream.write(reply + "\n")
                output_stream.flush()

    async def stop(self) -> None:
        """Gracefully stop all components."""
        logger.info("application_stopping")

        if self.health_server is not None:
            try:
                await self.health_server.stop()
            except Exception as e:
                logger.error("health_server_stop_failed", error=str(e))

            logger.debug("health_server_stopped")

        if self._feed_transport is not None:
            self._feed_transport.close()
            self._feed_transport = None

        logger.info("pyramid_limiter_disabled")

    async def run(
        self,
        input_stream: Optional[Any] = None,
        output_stream: Optional[TextIO] = None,
    ) -> None:
        """Main application run loop."""
        try:
            await self.setup()
            await self.start()
            await self.process_stream(
                input_stream if input_stream is not None else sys.stdin,
                output_stream if output_stream is not None else sys.stdout,
            )
        except KeyboardInterrupt:
            logger.info("received_keyboard_interrupt")
        except Exception as e:
            logger.error("application_error", error=str(e), exc_info=True)
            raise
        finally:
            await self.stop()


async def main() -> None:
    """Main async entry point."""
    app = Application()
    loop = asyncio.get_running_loop()

    def _on_signal(signum: signal.Signals) -> None:
        logger.info("received_signal", signal=signum.name)
        app.shutdown_event.set()

    # Loop-level handlers wake the selector; not available on Windows
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _on_signal, signum)
        except (NotImplementedError, RuntimeError):
            logger.debug("signal_handler_unavailable", signal=signum.name)

    try:
        await app.run()
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        sys.exit(1)


def cli() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    cli()

"""Main application entry point."""

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web, web_runner

from .api_clients import GoogleDriveStore
from .auth import ServiceAccountAuthorizer
from .config import ConfigLoader, ConfigurationError, get_settings, load_config_from_env
from .core import Reconciler, SyncOutcome, SyncResult
from .performance import AsyncRateLimiter
from .scheduler import SyncScheduler
from .utils.logging import get_logger, setup_logging

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_BUSY = 2

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_HTTP_STATUS = {
    SyncOutcome.SUCCESS: 200,
    SyncOutcome.BUSY: 409,
}


def build_reconciler(config_file: Optional[str] = None) -> Reconciler:
    """Create a reconciler that re-reads its configuration on every pass."""
    settings = get_settings()
    logger = get_logger("drivemirror")

    if config_file:
        loader = ConfigLoader()

        def config_provider():
            return loader.load_from_file(config_file)
    else:
        config_provider = load_config_from_env

    # One limiter for the life of the process so the quota spans passes
    rate_limiter = AsyncRateLimiter(
        max_calls=settings.drive.rate_limit_calls,
        time_window=settings.drive.rate_limit_window
    )

    def store_factory(client, config):
        return GoogleDriveStore.from_authorized_client(
            client,
            request_timeout=config.request_timeout_seconds,
            rate_limiter=rate_limiter
        )

    return Reconciler(
        config=config_provider,
        authorizer=ServiceAccountAuthorizer(cache_tokens=settings.sync.cache_tokens),
        store_factory=store_factory,
        notifier=lambda notice: logger.info(notice)
    )


class DriveMirrorApp:
    """Long running host: periodic sync plus an HTTP status/trigger surface."""

    def __init__(self, reconciler: Reconciler, interval_minutes: Optional[int] = None):
        self.settings = get_settings()
        self.logger = get_logger("DriveMirror")
        self.reconciler = reconciler
        self.scheduler = SyncScheduler(
            reconciler,
            interval_minutes=(
                self.settings.scheduling.sync_interval_minutes
                if interval_minutes is None else interval_minutes
            )
        )
        self.running = False
        self.started_at: Optional[datetime] = None
        self.web_app = self._build_web_app()
        self.web_runner: Optional[web_runner.AppRunner] = None

    def _build_web_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/status', self._status_handler)
        app.router.add_post('/sync', self._sync_handler)
        return app

    async def startup(self):
        """Application startup."""
        self.logger.info(
            "Starting drivemirror",
            version=self.settings.version,
            environment=self.settings.environment
        )

        self.web_runner = web_runner.AppRunner(self.web_app)
        await self.web_runner.setup()
        site = web_runner.TCPSite(self.web_runner, self.settings.server.host, self.settings.server.port)
        await site.start()
        self.logger.info(
            "Web server started",
            host=self.settings.server.host,
            port=self.settings.server.port
        )

        await self.scheduler.start()

        self.running = True
        self.started_at = datetime.now(timezone.utc)
        self.logger.info("drivemirror started")

    async def shutdown(self):
        """Application shutdown."""
        self.logger.info("Shutting down drivemirror")
        self.running = False

        if self.scheduler.is_running:
            await self.scheduler.stop()

        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            self.logger.info("Web server stopped")

        self.logger.info("drivemirror stopped")

    async def run(self):
        """Run until a shutdown signal arrives."""
        await self.startup()

        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.shutdown()

    async def _health_handler(self, request):
        """Health check endpoint."""
        uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds() if self.started_at else 0
        health_data = {
            "status": "healthy" if self.running else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "uptime_seconds": uptime
        }

        return web.json_response(health_data, status=200 if self.running else 503)

    async def _status_handler(self, request):
        """Busy/idle signal, last result and scheduler statistics."""
        last_result = self.reconciler.last_result
        status_data = {
            "state": "busy" if self.reconciler.is_busy else "idle",
            "last_result": last_result.to_dict() if last_result else None,
            "scheduler": self.scheduler.get_stats(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        return web.json_response(status_data)

    async def _sync_handler(self, request):
        """Run one pass and report it."""
        result = await self.reconciler.sync()
        return web.json_response(result.to_dict(), status=_HTTP_STATUS.get(result.outcome, 502))


def setup_signal_handlers(app: DriveMirrorApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        app.logger.info("Received signal", signum=signum)
        app.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def exit_code_for(result: SyncResult) -> int:
    if result.success:
        return EXIT_SUCCESS
    if result.outcome == SyncOutcome.BUSY:
        return EXIT_BUSY
    return EXIT_FAILURE


async def run_once(config_file: Optional[str] = None) -> SyncResult:
    reconciler = build_reconciler(config_file)
    return await reconciler.sync()


async def serve(config_file: Optional[str] = None, interval_minutes: Optional[int] = None):
    app = DriveMirrorApp(build_reconciler(config_file), interval_minutes=interval_minutes)
    setup_signal_handlers(app)
    await app.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drivemirror",
        description="Mirror a local directory onto a Google Drive folder"
    )
    parser.add_argument("-c", "--config", help="YAML or JSON configuration file")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Override the configured log level"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("sync", help="Run a single reconciliation pass")

    serve_parser = subparsers.add_parser("serve", help="Sync periodically and serve /status")
    serve_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Minutes between runs (0 disables the schedule)"
    )

    return parser


def cli(argv=None) -> int:
    """Console script entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(log_level=args.log_level)
    logger = get_logger("main")

    if args.config:
        # Fail before starting anything if the file is unusable
        try:
            ConfigLoader().load_from_file(args.config)
        except ConfigurationError as e:
            logger.error("Invalid configuration", error=str(e))
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_FAILURE

    if args.command == "sync":
        result = asyncio.run(run_once(args.config))
        print(result.notice)
        return exit_code_for(result)

    try:
        asyncio.run(serve(args.config, args.interval))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
    return EXIT_SUCCESS


def main():
    sys.exit(cli())


if __name__ == "__main__":
    main()

"""
Funding-Rate Arbitrage Autopilot - Main Entry Point

Wires the database, audit sinks, market data reader, execution port
and scheduler together, then runs the control loop and the API.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .api import create_app, run_server
from .audit import BufferedDatabaseAuditSink, LoggingAuditSink, MultiAuditSink
from .config import Config, load_config
from .database import DatabaseSessionManager
from .engine import CycleReport, Scheduler
from .errors import AutopilotError
from .exchanges import create_execution_port
from .market import DatabaseMarketDataReader
from .store import SqlStateStore
from .utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


class Application:
    """Main application class managing all components."""

    def __init__(self, config: Config, run_api: bool = True):
        self.config = config
        self.run_api = run_api and config.api.enabled
        self._shutdown_event = asyncio.Event()
        self._running = False

        # Components (initialized in start())
        self.db: Optional[DatabaseSessionManager] = None
        self.audit: Optional[MultiAuditSink] = None
        self.scheduler: Optional[Scheduler] = None
        self._api_task: Optional[asyncio.Task] = None

    async def start(self, start_loop: bool = True) -> None:
        """
        Initialize all components.

        Args:
            start_loop: Start the scheduler's background ticks
        """
        logger.info(
            "starting_application",
            dry_run=self.config.execution.dry_run,
            venue=self.config.execution.venue,
            exchanges=self.config.get_exchange_names(),
        )

        try:
            # Create data directory if needed
            if self.config.database.driver == "sqlite" and not self.config.database.is_memory:
                Path(self.config.database.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

            # Initialize database
            self.db = DatabaseSessionManager()
            await self.db.init(self.config.database)

            # Audit trail goes to the log and the database
            self.audit = MultiAuditSink(LoggingAuditSink(), BufferedDatabaseAuditSink(self.db))
            await self.audit.start()

            store = SqlStateStore(self.db)
            reader = DatabaseMarketDataReader(self.db)
            port = create_execution_port(self.config, reader)

            self.scheduler = Scheduler(self.config, store, reader, port, self.audit)
            await self.scheduler.initialize()

            if start_loop:
                await self.scheduler.start()

            # Start API server
            if self.run_api:
                app = create_app(self.config, self.scheduler, self.db)
                self._api_task = asyncio.create_task(run_server(app, self.config.api))
                logger.info("api_server_started", host=self.config.api.host, port=self.config.api.port)

            self._running = True

        except Exception as e:
            logger.exception("startup_failed", error=str(e))
            raise

    async def run_once(self) -> Optional[CycleReport]:
        """Run a single cycle."""
        return await self.scheduler.tick()

    async def stop(self) -> None:
        """Gracefully stop all components."""
        if not self._running:
            return

        logger.info("stopping_application")
        self._running = False

        try:
            # Let an in-flight cycle finish before tearing anything down
            if self.scheduler:
                await self.scheduler.stop()

            if self._api_task:
                self._api_task.cancel()
                try:
                    await self._api_task
                except asyncio.CancelledError:
                    pass
                logger.info("api_server_stopped")

            if self.audit:
                await self.audit.close()

            if self.db:
                await self.db.close()

        except Exception as e:
            logger.exception("shutdown_error", error=str(e))

        logger.info("application_stopped")

    async def run_forever(self) -> None:
        """Run until shutdown signal received."""
        await self._shutdown_event.wait()

    def trigger_shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self._shutdown_event.set()


def setup_signal_handlers(app: Application, loop: asyncio.AbstractEventLoop) -> None:
    """Set up signal handlers for graceful shutdown."""

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=sig.name)
        app.trigger_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


async def async_main(config_path: str, once: bool = False, run_api: bool = True) -> None:
    """Async main entry point."""

    # Load configuration
    try:
        config = load_config(config_path)
    except FileNotFoundError:
        logger.error("config_not_found", path=config_path)
        print(f"Error: Configuration file not found: {config_path}")
        print("Copy config/config.example.yaml to config/config.yaml and adjust it.")
        sys.exit(1)
    except ValidationError as e:
        logger.error("config_error", error=str(e))
        print(f"Error: {e}")
        sys.exit(1)

    # Set up logging based on config
    setup_logging(
        level=config.logging.level,
        json_output=config.logging.json_output,
        log_file=config.logging.log_file,
    )

    if once:
        app = Application(config, run_api=False)
        try:
            await app.start(start_loop=False)
            report = await app.run_once()
            if report is not None:
                print(report.to_dict())
        finally:
            await app.stop()
        return

    # Create and run application
    app = Application(config, run_api=run_api)

    # Set up signal handlers
    loop = asyncio.get_running_loop()
    setup_signal_handlers(app, loop)

    try:
        await app.start()
        await app.run_forever()
    finally:
        await app.stop()


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Funding-Rate Arbitrage Autopilot")
    parser.add_argument(
        "-c", "--config",
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit"
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the status and control API"
    )

    args = parser.parse_args()

    # Set up basic logging for startup
    setup_logging(level="INFO")

    logger.info("starting", config_path=args.config)

    try:
        asyncio.run(async_main(args.config, once=args.once, run_api=not args.no_api))
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
    except AutopilotError as e:
        logger.error("fatal_error", error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("fatal_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()

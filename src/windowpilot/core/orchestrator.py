"""Main daemon orchestrator running the scheduler and the adaptive learner."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from windowpilot.core.config import Config, ConfigStore, get_config
from windowpilot.planning.adaptive import AdaptiveLearner
from windowpilot.scheduler.active_window import UsageCacheProbe
from windowpilot.scheduler.launcher import CommandSessionLauncher
from windowpilot.scheduler.notifier import DesktopNotifier
from windowpilot.scheduler.tick import SchedulerTick
from windowpilot.storage.database import Database, init_database

logger = logging.getLogger(__name__)


class Orchestrator:
    """Daemon coordinator.

    Owns the database connection and two periodic loops: the scheduler
    tick and the adaptive adjustment check.
    """

    def __init__(self, config: Config | None = None, config_store: ConfigStore | None = None):
        self.config = config or get_config()
        self.config_store = config_store or ConfigStore(self.config.config_file)
        self._running = False

        self.db: Database | None = None
        self.scheduler: SchedulerTick | None = None
        self.learner: AdaptiveLearner | None = None

        self._tasks: list[asyncio.Task] = []
        self._pid_file = self.config.data_dir / "daemon.pid"

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the daemon loops."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        logger.info("Starting windowpilot daemon...")

        try:
            self.config.ensure_directories()
            self._write_pid_file()

            self.db = await init_database(self.config.db_path)

            probe = UsageCacheProbe(
                cache_path=self.config.usage.cache_path,
                ttl_seconds=self.config.usage.cache_ttl_seconds,
                refresh_command=self.config.usage.refresh_command,
                refresh_timeout=self.config.usage.refresh_timeout_seconds,
            )
            launcher = CommandSessionLauncher(
                command=self.config.autostart.command,
                timeout_seconds=self.config.autostart.timeout_seconds,
            )
            self.scheduler = SchedulerTick(
                config_provider=self.config_store.load,
                state=self.db,
                probe=probe,
                launcher=launcher,
                notifier=DesktopNotifier(),
            )
            self.learner = AdaptiveLearner(
                history=self.db,
                baseline=self.db,
                config_store=self.config_store,
            )

            self._running = True

            self._setup_signal_handlers()

            self._tasks.append(asyncio.create_task(self._tick_loop()))
            self._tasks.append(asyncio.create_task(self._adjustment_loop()))

            logger.info(
                f"windowpilot daemon started (tick every {self.config.scheduler.tick_interval_seconds}s)"
            )

        except Exception as e:
            logger.error(f"Failed to start daemon: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the loops and release resources."""
        if not self._running and self.db is None:
            return

        logger.info("Stopping windowpilot daemon...")

        self._running = False

        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        if self.scheduler:
            await self.scheduler.wait_pending()
            self.scheduler = None
        self.learner = None

        if self.db:
            await self.db.close()
            self.db = None

        self._remove_pid_file()

        logger.info("windowpilot daemon stopped")

    async def _tick_loop(self) -> None:
        """Run the scheduler tick at a fixed interval."""
        while self._running:
            try:
                result = await self.scheduler.tick()
                if result.auto_started:
                    logger.info(f"Auto-start fired for trigger {result.trigger}")
                if result.warned_minutes is not None:
                    logger.info(f"Warned: window ends in {result.warned_minutes} min")

                await asyncio.sleep(self.config.scheduler.tick_interval_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in scheduler tick: {e}")
                await asyncio.sleep(self.config.scheduler.tick_interval_seconds)

    async def _adjustment_loop(self) -> None:
        """Periodically run the adaptive adjustment when it is due."""
        while self._running:
            try:
                if await self.learner.should_run_adjustment():
                    result = await self.learner.run_adaptive_adjustment()
                    logger.info(f"Adaptive adjustment: {result.reason}")

                await asyncio.sleep(self.config.adaptive.check_interval_minutes * 60)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in adaptive adjustment: {e}")
                await asyncio.sleep(self.config.adaptive.check_interval_minutes * 60)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        asyncio.create_task(self.stop())

    def _write_pid_file(self) -> None:
        self._pid_file.parent.mkdir(parents=True, exist_ok=True)
        self._pid_file.write_text(str(os.getpid()))
        logger.debug(f"PID file written: {self._pid_file}")

    def _remove_pid_file(self) -> None:
        if self._pid_file.exists():
            self._pid_file.unlink()
            logger.debug("PID file removed")

    @classmethod
    def get_daemon_pid(cls, config: Config | None = None) -> int | None:
        """Get the PID of a running daemon from PID file."""
        config = config or get_config()
        pid_file = config.data_dir / "daemon.pid"

        if not pid_file.exists():
            return None

        try:
            pid = int(pid_file.read_text().strip())
            os.kill(pid, 0)
            return pid
        except (ValueError, OSError):
            # Stale or invalid PID file
            pid_file.unlink(missing_ok=True)
            return None

    @classmethod
    def is_daemon_running(cls, config: Config | None = None) -> bool:
        return cls.get_daemon_pid(config) is not None


async def run_daemon(config: Config | None = None) -> None:
    """Run the daemon until stopped."""
    orchestrator = Orchestrator(config)

    try:
        await orchestrator.start()
        while orchestrator.is_running:
            await asyncio.sleep(1)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        await orchestrator.stop()

"""
Scanner Daemon

Owns the recurring strategy tick and publishes its status to disk:
- One owner process runs the interval job; every other process observes
- Status is rewritten atomically after every tick
- Stop (explicit or on SIGINT/SIGTERM) persists a final stopped status and
  removes the liveness marker
- Observers detect a crashed owner and clean up its files
"""

import asyncio
import atexit
import os
import signal
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import config, ScannerConfig
from .monitoring import get_logger
from .scheduler_state import StatusStore, get_default_status, is_pid_alive
from .strategy.tick import StrategyTick, Reading

logger = get_logger("scheduler")


class DaemonState(Enum):
    UNSTARTED = "unstarted"
    RUNNING = "running"
    STOPPED = "stopped"


class DaemonAlreadyRunningError(RuntimeError):
    """Another live process owns the scanner."""

    def __init__(self, pid: int):
        super().__init__(f"Weather arb scanner already running (PID {pid})")
        self.pid = pid


class ScannerDaemon:
    """
    Single-owner scanner process.

    Construct one per process. Instances that never call start() act as
    observers of whichever process owns the status files.
    """

    def __init__(
        self,
        tick: Optional[StrategyTick],
        scanner_config: Optional[ScannerConfig] = None,
        store: Optional[StatusStore] = None,
    ):
        """
        Initialize daemon.

        Args:
            tick: Strategy tick run on every firing (None for observers)
            scanner_config: Interval, locations and staleness window
            store: Status/marker file store (default: under the data dir)
        """
        self.tick = tick
        self.config = scanner_config or config.scanner
        self.store = store or StatusStore(self.config.data_dir)

        self.state = DaemonState.UNSTARTED
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._tick_lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self._tick_task: Optional[asyncio.Future] = None
        self._signals: list[signal.Signals] = []
        self._hook_loop: Optional[asyncio.AbstractEventLoop] = None

        self._last_readings: list[Reading] = []
        self._last_check_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self.state == DaemonState.RUNNING

    @property
    def is_owner(self) -> bool:
        return self.state != DaemonState.UNSTARTED

    def build_status(self) -> Dict[str, Any]:
        """Status from this process's in-memory state."""
        status = get_default_status(self.config.locations, self.config.interval_seconds, self.config.dry_run)
        status.update({
            "running": self.running,
            "pid": os.getpid() if self.running else None,
            "last_check_at": self._last_check_at.isoformat() if self._last_check_at else None,
            "last_readings": [r.to_dict() for r in self._last_readings],
        })
        return status

    def _persist(self):
        self.store.write_status(self.build_status())

    # ── Lifecycle ────────────────────────────────────────────────────────

    def _claim_ownership(self):
        """
        Create the liveness marker, taking over from a dead owner if needed.

        Raises:
            DaemonAlreadyRunningError: if another live process holds the marker
        """
        pid = os.getpid()
        if self.store.claim_marker(pid):
            return

        owner = self.store.live_owner_pid()
        if owner is not None and owner != pid:
            raise DaemonAlreadyRunningError(owner)

        logger.warning("Replacing liveness marker left by a stopped or dead owner")
        self.store.remove_marker()
        if not self.store.claim_marker(pid):
            owner = self.store.read_marker()
            raise DaemonAlreadyRunningError(owner if owner is not None else -1)

    def _install_shutdown_hooks(self):
        """Route SIGINT/SIGTERM and interpreter exit to stop()."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                logger.warning(f"Cannot handle {sig.name} in this context: {e}")
                continue
            self._signals.append(sig)
        self._hook_loop = loop
        atexit.register(self.stop)

    def _remove_shutdown_hooks(self):
        loop, self._hook_loop = self._hook_loop, None
        if loop is None:
            return
        signals, self._signals = self._signals, []
        if not loop.is_closed():
            for sig in signals:
                loop.remove_signal_handler(sig)
        atexit.unregister(self.stop)

    async def start(self):
        """
        Become the owner, publish status, run one tick, then tick on an interval.

        Shutdown hooks are live before the first tick, so a termination
        signal at any point after the marker exists still cleans up.

        Raises:
            DaemonAlreadyRunningError: if another live process holds the marker
        """
        if self.running:
            logger.warning("Scanner already running")
            return
        if self.tick is None:
            raise ValueError("An observer without a tick cannot start the scanner")

        self._claim_ownership()

        self.state = DaemonState.RUNNING
        self._stopped.clear()
        self._install_shutdown_hooks()
        self._persist()

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_tick,
            IntervalTrigger(seconds=self.config.interval_seconds),
            id="weather_arb_tick",
            name="Weather Arb Tick",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()

        logger.info(
            f"Scanner started (PID {os.getpid()}): {', '.join(self.config.locations)} "
            f"every {self.config.interval_seconds}s, dry_run={self.config.dry_run}"
        )

        await self.run_tick()

    async def run_tick(self) -> bool:
        """
        Run one tick and publish its readings.

        A firing that arrives while a tick is in progress is skipped. A tick
        cut short by stop() publishes nothing.

        Returns:
            True if the tick ran to completion
        """
        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping this firing")
            return False

        async with self._tick_lock:
            self._tick_task = asyncio.ensure_future(self.tick.run())
            try:
                readings = await self._tick_task
            except asyncio.CancelledError:
                if self.running:
                    raise
                logger.info("Tick cancelled by shutdown")
                return False
            except Exception as e:
                logger.error(f"Tick failed: {e}")
                readings = []
            finally:
                self._tick_task = None

            self._last_readings = readings
            self._last_check_at = datetime.now(timezone.utc)
            if self.running:
                self._persist()

        return True

    def stop(self):
        """
        Stop ticking, publish a stopped status and drop the marker.

        Idempotent and safe to call from a signal handler. A tick in
        progress is cancelled.
        """
        if not self.running:
            return

        self.state = DaemonState.STOPPED
        if self._tick_task is not None and not self._tick_task.done():
            self._tick_task.cancel()
        self._remove_shutdown_hooks()

        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            try:
                scheduler.shutdown(wait=False)
            except Exception as e:
                logger.warning(f"Scheduler shutdown failed: {e}")

        self._persist()
        self.store.remove_marker()
        self._stopped.set()
        logger.info("Scanner stopped")

    async def run_forever(self):
        """Run until stopped or interrupted, then release the tick's clients."""
        try:
            await self.start()
            logger.info("Running scanner... Press Ctrl+C to stop")
            await self._stopped.wait()
        except asyncio.CancelledError:
            pass
        finally:
            self.stop()
            if self.tick is not None:
                await self.tick.close()

    # ── Observers ────────────────────────────────────────────────────────

    def status(self) -> Dict[str, Any]:
        """
        Scanner status as seen from this process.

        The owner reports live memory. Observers read the shared file and
        cross-check the liveness marker; a "running" file whose owner is
        gone is deleted together with the marker and reported as stopped.
        """
        if self.is_owner:
            return {**self.build_status(), "_source": "live"}

        defaults = get_default_status(self.config.locations, self.config.interval_seconds, self.config.dry_run)

        data = self.store.read_status()
        if data is None:
            return {**defaults, "_source": "default"}

        if data.get("running"):
            pid = self.store.read_marker()
            if pid is None or not is_pid_alive(pid):
                logger.warning("Status file says RUNNING but daemon PID is dead. Cleaning up.")
                self.store.remove_status()
                self.store.remove_marker()
                return {**defaults, "_source": "dead_daemon_cleanup"}

        age = self.store.status_age_seconds(data)
        return {
            **data,
            "_stale": age is not None and age > self.config.stale_after_seconds,
            "_source": "file",
        }


def stop_remote(store: StatusStore) -> Optional[int]:
    """
    Ask the owning process to stop.

    Sends SIGTERM to a live owner. A dead owner's files are cleaned up.

    Returns:
        The signalled pid, or None if no live owner was found
    """
    pid = store.read_marker()
    if pid is not None and is_pid_alive(pid):
        os.kill(pid, signal.SIGTERM)
        logger.info(f"Sent SIGTERM to scanner (PID {pid})")
        return pid

    status = store.read_status() or {}
    if pid is not None or status.get("running"):
        logger.warning("Scanner owner is not alive. Cleaning up stale status files.")
        store.remove_status()
        store.remove_marker()
    return None

import logging
import threading
import time
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

from .config import DaemonConfig, ScanResult, make_scan_marker
from .events import EventBus, EventType
from ..memory.store import ElementStore
from ..memory.sync import CacheSync
from ..perception.normalizer import ElementNormalizer
from ..perception.scanner import PlatformScanner

logger = logging.getLogger(__name__)

UNKNOWN_APP = "Unknown"


class DaemonState(Enum):
    IDLE = auto()
    RUNNING = auto()


class IndexingDaemon:
    """
    Keeps the element index warm by rescanning the foreground window on a
    fixed period. Periodic cycles run on one background thread and never
    overlap each other; a cycle that outruns its period skips the missed
    ticks instead of queueing them. On-demand scans run on the caller's
    thread, independent of the loop.
    """

    def __init__(self,
                 scanner: PlatformScanner,
                 store: ElementStore,
                 sync: Optional[CacheSync] = None,
                 events: Optional[EventBus] = None,
                 config: Optional[DaemonConfig] = None,
                 normalizer: Optional[ElementNormalizer] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.scanner = scanner
        self.store = store
        self.sync = sync
        self.events = events or EventBus()
        self.config = config or DaemonConfig()
        self.normalizer = normalizer or ElementNormalizer()
        self._clock = clock

        self._state = DaemonState.IDLE
        self._initialized = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()

        self.cycles = 0
        self.scan_errors = 0
        self.skipped_ticks = 0
        self.last_scan: Optional[ScanResult] = None

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == DaemonState.RUNNING

    def initialize(self) -> None:
        """Scanner failures are fatal; a missing cache is not."""
        if self._initialized:
            return
        self.scanner.initialize()
        self.store.initialize()
        if self.sync is not None:
            self.sync.initialize()
        self._initialized = True

    def start(self) -> None:
        with self._state_lock:
            if self._state == DaemonState.RUNNING:
                logger.warning("Indexing daemon is already running")
                return
            self.initialize()
            self._state = DaemonState.RUNNING
            self._stop_event.clear()

        logger.info("Starting indexing daemon (every %.1fs)", self.config.scan_interval_seconds)
        self.perform_scan()

        self._thread = threading.Thread(target=self._run_loop, name="uindex-daemon", daemon=True)
        self._thread.start()
        self.events.emit_simple(EventType.DAEMON_STARTED, source="IndexingDaemon",
                                interval_seconds=self.config.scan_interval_seconds)

    def stop(self) -> None:
        with self._state_lock:
            if self._state != DaemonState.RUNNING:
                return
            self._state = DaemonState.IDLE
            self._stop_event.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.stop_timeout_seconds)
        self._thread = None

        self.scanner.cleanup()
        logger.info("Indexing daemon stopped after %d cycles", self.cycles)
        self.events.emit_simple(EventType.DAEMON_STOPPED, source="IndexingDaemon", cycles=self.cycles)

    def _run_loop(self) -> None:
        interval = self.config.scan_interval_seconds
        cleanup_interval = self.config.cleanup_interval_seconds
        next_tick = time.monotonic() + interval
        next_cleanup = time.monotonic() + cleanup_interval

        while not self._stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.perform_scan()

            now = time.monotonic()
            if cleanup_interval > 0 and now >= next_cleanup:
                self.cleanup_stale()
                next_cleanup = now + cleanup_interval

            next_tick += interval
            if next_tick <= now:
                missed = int((now - next_tick) // interval) + 1
                self.skipped_ticks += missed
                next_tick += missed * interval
                logger.debug("Scan overran its period; skipped %d tick(s)", missed)

    def _scan(self) -> Optional[ScanResult]:
        app = self.scanner.get_active_application()
        if app is None or not app.name or app.name == UNKNOWN_APP:
            logger.debug("No active application to scan")
            return None

        now = self._clock()
        raws = self.scanner.scan_active_window()
        elements = self.normalizer.normalize_all(raws, app, now)
        return ScanResult(
            app_name=app.name,
            window_title=app.window_title,
            elements=elements,
            raw_count=len(raws),
            rejected_count=len(raws) - len(elements),
            timestamp=now,
        )

    def _persist(self, result: ScanResult) -> None:
        self.store.store_elements(result.elements)
        synced = False
        if self.sync is not None:
            synced = self.sync.sync_elements(result.elements)
        self.events.emit_simple(EventType.ELEMENTS_STORED, source="IndexingDaemon",
                                app_name=result.app_name, window_title=result.window_title,
                                count=len(result.elements), synced=synced)
        if synced:
            self.events.emit_simple(EventType.ELEMENTS_SYNCED, source="IndexingDaemon",
                                    app_name=result.app_name, window_title=result.window_title,
                                    count=len(result.elements))

    def _report_error(self, error: Exception, on_demand: bool) -> None:
        self.scan_errors += 1
        logger.error("UI scan failed: %s", error, exc_info=logger.isEnabledFor(logging.DEBUG))
        self.events.emit_simple(EventType.SCAN_ERROR, source="IndexingDaemon",
                                error=str(error), on_demand=on_demand)

    def perform_scan(self) -> Optional[ScanResult]:
        """One periodic cycle. Empty scans are not persisted."""
        self.cycles += 1
        try:
            result = self._scan()
            if result is None:
                return None
            if result.elements:
                self._persist(result)
                self.events.emit_simple(EventType.SCAN_COMPLETED, source="IndexingDaemon",
                                        app_name=result.app_name, window_title=result.window_title,
                                        count=len(result.elements), on_demand=False)
            self.last_scan = result
            return result
        except Exception as e:
            self._report_error(e, on_demand=False)
            return None

    def scan_current_application(self) -> Optional[ScanResult]:
        """
        Synchronous scan used before planning. An empty result is recorded
        as a scan marker so callers can tell "scanned, nothing there" from
        "never scanned".
        """
        if not self.is_running:
            logger.warning("Indexing daemon is not running")
            return None

        try:
            result = self._scan()
            if result is None:
                return None

            if result.elements:
                self._persist(result)
            else:
                marker = make_scan_marker(result.app_name, result.window_title, result.timestamp)
                self.store.store_elements([marker])
                result.elements = [marker]
                self.events.emit_simple(EventType.SCAN_EMPTY, source="IndexingDaemon",
                                        app_name=result.app_name, window_title=result.window_title)

            self.events.emit_simple(EventType.SCAN_COMPLETED, source="IndexingDaemon",
                                    app_name=result.app_name, window_title=result.window_title,
                                    count=len(result.elements), on_demand=True)
            self.last_scan = result
            return result
        except Exception as e:
            self._report_error(e, on_demand=True)
            return None

    def cleanup_stale(self) -> int:
        try:
            deleted = self.store.cleanup_stale_elements()
        except Exception as e:
            logger.error("Stale element sweep failed: %s", e)
            return 0
        if deleted:
            self.events.emit_simple(EventType.INDEX_CLEANED, source="IndexingDaemon", deleted=deleted)
        return deleted

    def get_status(self) -> Dict[str, Any]:
        last = self.last_scan
        return {
            'running': self.is_running,
            'platform': getattr(self.scanner, 'platform', ''),
            'scan_interval_seconds': self.config.scan_interval_seconds,
            'cycles': self.cycles,
            'scan_errors': self.scan_errors,
            'skipped_ticks': self.skipped_ticks,
            'last_scan': {
                'app_name': last.app_name,
                'window_title': last.window_title,
                'elements': len(last.elements),
                'timestamp': last.timestamp.isoformat(),
            } if last else None,
        }

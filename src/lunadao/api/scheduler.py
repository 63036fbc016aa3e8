"""Background status sweep."""

import logging
import threading
import time
from typing import Callable, List, Optional

from ..errors.exceptions import ConfigurationError, GovernanceError
from ..governance.engine import GovernanceEngine

logger = logging.getLogger(__name__)


class StatusSweeper:
    """Calls ``engine.advance_time`` every ``interval`` seconds on a daemon thread."""

    def __init__(
        self,
        engine: GovernanceEngine,
        interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        if interval <= 0:
            raise ConfigurationError("Sweep interval must be positive", "interval", interval)
        self.engine = engine
        self.interval = interval
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> List[str]:
        ended = self.engine.advance_time(self.clock())
        self.sweeps += 1
        return ended

    def _run(self) -> None:
        logger.info("Status sweeper started (interval %.1fs)", self.interval)
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except GovernanceError as e:
                logger.error("Status sweep failed: %s", e.message)
            self._stop_event.wait(self.interval)
        logger.info("Status sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="lunadao-status-sweeper", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

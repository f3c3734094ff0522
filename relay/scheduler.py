"""Background runner for periodic jobs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicRunner:
    """Calls ``job`` every ``interval`` seconds on a daemon thread.

    :meth:`stop` sets the cancellation flag and waits for the thread; a job
    already running is allowed to finish.
    """

    def __init__(self, name: str, interval: float, job: Callable[[], object]) -> None:
        self.name = name
        self.interval = interval
        self.job = job
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> None:
        try:
            self.job()
        except Exception:
            logger.exception("periodic job %s failed", self.name)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

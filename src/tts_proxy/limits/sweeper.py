"""
Fixed-interval background sweeper.

Runs a cleanup callable on a daemon thread every ``interval_s`` seconds,
independent of request traffic. A failing sweep is logged and the next tick
still runs.

Usage:
    sweeper = PeriodicSweeper("rate-limit-ip", limiter.sweep, interval_s=60)
    sweeper.start()
    ...
    sweeper.stop()
"""
from __future__ import annotations

import threading
from typing import Callable, Optional

from tts_proxy.core.logging import error, get_logger, verbose

_LOG = get_logger("tts-proxy.sweeper")


class PeriodicSweeper:
    """Owns one daemon thread that calls ``task`` on a fixed interval."""

    def __init__(self, name: str, task: Callable[[], int], interval_s: float):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self.name = name
        self.interval_s = float(interval_s)
        self._task = task
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        """Start the sweep thread. Calling start twice is a no-op."""
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run,
                daemon=True,
                name=f"sweep-{self.name}",
            )
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the thread to exit and wait for it."""
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop.set()
        if thread is not None:
            thread.join(timeout=timeout)

    def run_once(self) -> int:
        """Run one sweep on the calling thread; returns entries removed."""
        try:
            removed = self._task()
        except Exception as e:
            error(_LOG, "sweep_failed", sweeper=self.name, error=str(e), exc_info=True)
            return 0
        if removed:
            verbose(_LOG, "sweep_done", sweeper=self.name, removed=removed)
        return removed

    def _run(self) -> None:
        # Event.wait doubles as an interruptible sleep
        while not self._stop.wait(self.interval_s):
            self.run_once()

"""Sender that retries its next sender with exponential backoff."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from metricchute.core import Container


@dataclass(eq=False)
class Backoff:
    """Send to ``next``, retrying up to ``retries`` times.

    The delay starts at ``base`` seconds and doubles after every failure.
    While earlier sends are still failing, new sends wait ``base`` first.
    """

    next: Any = None
    base: float = 0.0
    retries: int = 0
    _holdoff: int = field(default=0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def send(self, container: Container) -> None:
        delay = self.base
        with self._lock:
            holdoff = self._holdoff
        if holdoff > 0:
            time.sleep(delay)
        error: Exception | None = None
        for attempt in range(1, self.retries + 1):
            try:
                self.next.send(container)
            except Exception as err:
                error = err
                with self._lock:
                    self._holdoff += 1
                time.sleep(delay)
                delay *= 2
                continue
            if attempt > 1:
                with self._lock:
                    self._holdoff -= attempt - 1
            return
        if error is not None:
            raise error
"""Receiver that forwards internal statistics metrics to a handler."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

from metricchute.core import Container, Handler, MissingArgumentError

log = logging.getLogger("metricchute.receiver.stats")

DEFAULT_CHAN_SIZE = 100

_POLL = 0.05
_STOP = object()


@dataclass(eq=False)
class Stats:
    """Forward each metric from a stats source to ``handler`` as its own container.

    Metrics are queued internally (``chan_size`` deep); when that queue is
    full, new metrics are dropped so the source never blocks.
    """

    handler: Handler | None = None
    chan_size: int = 0

    def verify(self) -> None:
        if self.handler is None:
            raise MissingArgumentError("Handler")

    def _run(self, pending: queue.Queue) -> None:
        while True:
            metric = pending.get()
            if metric is _STOP:
                return
            try:
                self.handler.transform_and_send(Container(metrics=[metric]))
            except Exception as err:
                log.error("failed to send stats: %s", err)

    def start(self, source: Any, stop: threading.Event | None = None) -> None:
        """Read metrics from ``source`` until it yields None or ``stop`` is set.

        ``source`` is a queue of metrics; None marks that it is closed.
        """
        if self.chan_size == 0:
            self.chan_size = DEFAULT_CHAN_SIZE
        pending: queue.Queue = queue.Queue(maxsize=self.chan_size)
        runner = threading.Thread(target=self._run, args=(pending,), name="stats-runner", daemon=True)
        runner.start()
        try:
            while stop is None or not stop.is_set():
                try:
                    metric = source.get(timeout=_POLL)
                except queue.Empty:
                    continue
                if metric is None:
                    break
                try:
                    pending.put_nowait(metric)
                except queue.Full:
                    log.debug("dropping stats because the queue is full")
        finally:
            pending.put(_STOP)
            runner.join()
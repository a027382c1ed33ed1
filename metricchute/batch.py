"""Sender that gathers metrics into larger containers before passing them on."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from metricchute.core import Container, MissingArgumentError

log = logging.getLogger("metricchute.sender.batch")

_STOP = object()


@dataclass(eq=False)
class Batch:
    """Collect metrics into one container and forward it in bulk.

    A batch is forwarded when it holds at least ``threshold`` metrics, or
    when ``interval`` seconds pass without reaching that. Forwarding runs on
    ``threads`` worker threads, so downstream errors are logged, not raised.
    If the workers are all busy and ``burner`` is set, overflowing batches go
    there instead of blocking.
    """

    next: Any = None
    interval: float = 0.0
    threshold: int = 0
    threads: int = 0
    burner: Any = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _started: bool = field(default=False, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)
    _inbox: Any = field(default=None, init=False, repr=False)
    _out: Any = field(default=None, init=False, repr=False)
    _burn: Any = field(default=None, init=False, repr=False)
    _current: Container | None = field(default=None, init=False, repr=False)
    _runner: Any = field(default=None, init=False, repr=False)
    _flushers: list = field(default_factory=list, init=False, repr=False)

    def verify(self) -> None:
        if self.next is None:
            raise MissingArgumentError("Next")

    def _setup(self) -> None:
        if self.threads == 0:
            self.threads = os.cpu_count() or 1
        if self.threshold == 0:
            self.threshold = 10
        if self.interval == 0:
            self.interval = 1.0
        self._inbox = queue.Queue(maxsize=10)
        self._out = queue.Queue(maxsize=self.threads)
        for _ in range(self.threads):
            self._spawn_flusher(self._out, self.next)
        if self.burner is not None:
            self._burn = queue.Queue(maxsize=self.threads)
            self._spawn_flusher(self._burn, self.burner)
        else:
            self._burn = self._out
        self._runner = threading.Thread(target=self._run, name="batch-run", daemon=True)
        self._runner.start()
        self._started = True

    def _spawn_flusher(self, source: queue.Queue, sender: Any) -> None:
        worker = threading.Thread(
            target=self._flusher, args=(source, sender), name="batch-flush", daemon=True
        )
        worker.start()
        self._flushers.append(worker)

    def _flusher(self, source: queue.Queue, sender: Any) -> None:
        while True:
            container = source.get()
            if container is _STOP:
                return
            try:
                sender.send(container)
            except Exception as err:
                log.error("batch sender failed due to down stream error: %s", err)

    def _add(self, container: Container) -> None:
        if self._current is None:
            self._current = Container()
        self._current.metrics.extend(container.metrics)

    def _flush(self) -> None:
        try:
            self._out.put_nowait(self._current)
        except queue.Full:
            self._burn.put(self._current)
        self._current = None

    def _run(self) -> None:
        deadline = time.monotonic() + self.interval
        while True:
            try:
                item = self._inbox.get(timeout=max(deadline - time.monotonic(), 0))
            except queue.Empty:
                deadline = time.monotonic() + self.interval
                if self._current is not None:
                    self._flush()
                continue
            if item is _STOP:
                break
            self._add(item)
            if len(self._current.metrics) >= self.threshold:
                self._flush()
                deadline = time.monotonic() + self.interval
        if self._current is not None:
            self._out.put(self._current)
            self._current = None
        for _ in range(self.threads):
            self._out.put(_STOP)
        if self._burn is not self._out:
            self._burn.put(_STOP)

    def send(self, container: Container) -> None:
        """Queue a container for batching. Never reports downstream errors."""
        with self._lock:
            if self._closed:
                raise RuntimeError("batch sender is closed")
            if not self._started:
                self._setup()
        self._inbox.put(container)

    def close(self) -> None:
        """Flush pending metrics and stop all worker threads."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._started
        if not started:
            return
        self._inbox.put(_STOP)
        self._runner.join()
        for worker in self._flushers:
            worker.join()

    def __enter__(self) -> "Batch":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
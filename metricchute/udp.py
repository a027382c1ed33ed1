"""Receiver that treats every UDP datagram as one container."""

from __future__ import annotations

import logging
import os
import queue
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from metricchute.core import Metric, MissingArgumentError, get_log_level
from metricchute.tcpline import _Listener

log = logging.getLogger("metricchute.receiver.udp")

UDP_MAX_READ_SIZE = 65535
DEFAULT_STATS_INTERVAL = 10.0

_STOP = object()


def _fresh_counts() -> dict:
    return {"received": 0, "errors": 0, "sent": 0}


@dataclass(eq=False)
class UDP(_Listener):
    """Listen on ``address`` and hand each datagram to a pool of workers."""

    backlog: int = 0
    threads: int = 0
    packet_size: int = 0
    failure_level: str = ""
    buffer: int = 0
    emit_stats: float = 0.0
    name: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _counts: dict = field(default_factory=_fresh_counts, init=False, repr=False)
    _level: int = field(default=logging.ERROR, init=False, repr=False)

    def verify(self) -> None:
        if self.handler is None:
            raise MissingArgumentError("Handler")
        if not self.address:
            raise MissingArgumentError("Address")
        if self.packet_size < 0 or self.packet_size > UDP_MAX_READ_SIZE:
            raise ValueError(
                "invalid udp packet size, maximum udp read size is between 0 and "
                f"{UDP_MAX_READ_SIZE}"
            )

    def _bump(self, key: str) -> None:
        with self._lock:
            self._counts[key] += 1

    def _process(self, inbox: queue.Queue) -> None:
        while (payload := inbox.get()) is not _STOP:
            self._bump("received")
            try:
                self.handler.handle(payload)
            except Exception as err:
                self._bump("errors")
                log.log(self._level, "unable to handle UDP message: %s", err)
            else:
                self._bump("sent")

    def _set_buffer(self, sock: socket.socket) -> None:
        if self.buffer > 0:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, self.buffer)

    def start(self) -> None:
        """Receive datagrams until stopped."""
        self.packet_size = self.packet_size or 9000
        self.backlog = self.backlog or 100
        self.threads = self.threads or max(os.cpu_count() or 1, 20)
        self.emit_stats = self.emit_stats or DEFAULT_STATS_INTERVAL
        self._level = get_log_level(self.failure_level) if self.failure_level else logging.ERROR
        with self._lock:
            self._counts = _fresh_counts()

        inbox: queue.Queue = queue.Queue(maxsize=self.backlog)
        workers = [
            threading.Thread(target=self._process, args=(inbox,), name="udp-worker", daemon=True)
            for _ in range(self.threads)
        ]
        for worker in workers:
            worker.start()
        try:
            with self._bound_socket(socket.SOCK_DGRAM, self._set_buffer) as sock:
                for payload in self._incoming(lambda: sock.recv(self.packet_size), log, "read UDP message"):
                    if not payload:
                        log.error("unable to read UDP message: 0 bytes")
                        continue
                    inbox.put(payload)
        finally:
            for _ in workers:
                inbox.put(_STOP)
            for worker in workers:
                worker.join()

    def stop(self) -> None:
        """Ask the running ``start`` to return."""
        self._stop.set()

    def get_stats(self) -> Metric:
        """Return the receiver's counters as a metric."""
        with self._lock:
            counts = dict(self._counts)
        return Metric(
            time=datetime.now(timezone.utc),
            metadata={"component": "receiver", "type": "UDP", "identity": self.name},
            data=counts,
        )
"""Receiver that accepts one collection per line over TCP."""

from __future__ import annotations

import logging
import socket
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from metricchute.core import Handler
from metricchute.linefile import _feed_lines, _Stoppable

log = logging.getLogger("metricchute.receiver.tcp")

_POLL = 0.2


def _resolve(address: str, socktype: int) -> tuple[int, Any]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise OSError(f"unable to resolve address {address}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        infos = socket.getaddrinfo(host or None, port or "0", type=socktype, flags=socket.AI_PASSIVE)
    except socket.gaierror as err:
        raise OSError(f"unable to resolve address {address}: {err}") from err
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


@dataclass(eq=False)
class _Listener(_Stoppable):
    """A receiver bound to ``address`` that polls its socket until stopped."""

    address: str = ""
    handler: Handler | None = None
    bound_address: Any = field(default=None, init=False)
    ready: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    @contextmanager
    def _bound_socket(
        self, socktype: int, prepare: Callable[[socket.socket], None] | None = None
    ) -> Iterator[socket.socket]:
        family, sockaddr = _resolve(self.address, socktype)
        with socket.socket(family, socktype) as sock:
            if prepare is not None:
                prepare(sock)
            sock.bind(sockaddr)
            if socktype == socket.SOCK_STREAM:
                sock.listen()
            sock.settimeout(_POLL)
            self.bound_address = sock.getsockname()
            self.ready.set()
            yield sock

    def _incoming(self, receive: Callable[[], Any], logger: logging.Logger, what: str) -> Iterator[Any]:
        """Yield what ``receive`` returns until stopped, logging failures."""
        while not self._stop.is_set():
            try:
                item = receive()
            except TimeoutError:
                continue
            except OSError as err:
                if self._stop.is_set():
                    break
                logger.error("unable to %s: %s", what, err)
                continue
            yield item


def _reuse_address(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)


@dataclass(eq=False)
class TCPLine(_Listener):
    """Listen on ``address`` and hand every received line to the handler.

    The write side of each connection is closed at once; the peer is left
    to finish up.
    """

    def start(self) -> None:
        """Accept connections until stopped."""
        with self._bound_socket(socket.SOCK_STREAM, _reuse_address) as listener:
            for conn, _ in self._incoming(listener.accept, log, "accept connection"):
                conn.settimeout(None)
                threading.Thread(
                    target=self._handle_connection, args=(conn,), name="tcpline-conn", daemon=True
                ).start()

    def stop(self) -> None:
        """Ask the running ``start`` to return."""
        self._stop.set()

    def _handle_connection(self, conn: socket.socket) -> None:
        with conn:
            try:
                conn.shutdown(socket.SHUT_WR)
            except OSError:
                pass
            try:
                with conn.makefile("rb") as stream:
                    _feed_lines(stream, self.handler, log, "unable to parse JSON")
            except OSError as err:
                log.error("error reading line: %s", err)
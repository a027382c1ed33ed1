"""Receivers that read collections from files, fifos and standard input."""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable

from metricchute.core import Handler

log = logging.getLogger("metricchute.receiver.linefile")


@dataclass(eq=False)
class _Stoppable:
    """Gives a long-running receiver an event that ends its loop."""

    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)


def _feed_lines(
    stream: Iterable[bytes],
    handler: Handler,
    logger: logging.Logger = log,
    failure: str = "failed to send metric",
) -> int:
    """Pass every line of ``stream`` to ``handler``, logging failures.

    Returns the number of lines handled without error.
    """
    handled = 0
    for raw in stream:
        line = raw.removesuffix(b"\n").removesuffix(b"\r")
        try:
            handler.handle(line)
        except Exception as err:
            logger.error("%s: %s", failure, err)
        else:
            handled += 1
    return handled


@dataclass(eq=False)
class LineFile(_Stoppable):
    """Read ``file`` over and over, one collection per line.

    Best suited for a fifo: every time the writer closes it, the file is
    re-opened, after waiting ``delay`` seconds if that is set.
    """

    file: str = ""
    handler: Handler | None = None
    delay: float = 0.0

    def read_once(self) -> int:
        """Read the file to its end, handling each line; return how many succeeded."""
        with open(self.file, "rb") as stream:
            return _feed_lines(stream, self.handler)

    def start(self) -> None:
        """Keep reading the file until stopped."""
        while not self._stop.is_set():
            try:
                self.read_once()
            except OSError as err:
                log.error("unable to read file %s: %s", self.file, err)
            if self.delay > 0:
                self._stop.wait(self.delay)

    def stop(self) -> None:
        """Ask the running ``start`` to return."""
        self._stop.set()


@dataclass(eq=False)
class File:
    """Read a file once, one collection per line, then return."""

    file: str = ""
    handler: Handler | None = None

    def start(self) -> int:
        """Read the file once; return how many lines were handled."""
        return LineFile(file=self.file, handler=self.handler).read_once()


@dataclass(eq=False)
class Stdin:
    """Read standard input (or ``stream``) until end of file, one collection per line."""

    handler: Handler | None = None
    stream: BinaryIO | None = None

    def start(self) -> int:
        """Read until end of file; return how many lines were handled."""
        stream = self.stream if self.stream is not None else sys.stdin.buffer
        return _feed_lines(stream, self.handler)


@dataclass(eq=False)
class WholeFile(_Stoppable):
    """Read an entire file as a single container, optionally every ``frequency`` seconds."""

    file: str = ""
    handler: Handler | None = None
    frequency: float = 0.0

    def read_once(self) -> None:
        """Read the whole file and hand it to the handler."""
        self.handler.handle(Path(self.file).read_bytes())

    def start(self) -> None:
        """Read the file, repeating on ``frequency`` if it is positive, until stopped."""
        while not self._stop.is_set():
            try:
                self.read_once()
            except Exception as err:
                log.error("whole file reader %s: %s", self.file, err)
            self._stop.wait(self.frequency if self.frequency > 0 else None)

    def stop(self) -> None:
        """Ask the running ``start`` to return."""
        self._stop.set()
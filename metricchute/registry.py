"""Named registries of receivers and senders, for building components from configuration."""

from __future__ import annotations

from typing import Any

from metricchute.backoff import Backoff
from metricchute.batch import Batch
from metricchute.core import Module, ModuleMap
from metricchute.http import HTTP, HTTPAuth
from metricchute.linefile import File, LineFile, Stdin, WholeFile
from metricchute.logreceiver import LogReceiver
from metricchute.stats import Stats
from metricchute.tcpline import TCPLine
from metricchute.tester import Tester
from metricchute.udp import UDP

RECEIVERS = ModuleMap()
SENDERS = ModuleMap()

RECEIVERS.add(
    Module(
        name="http",
        aliases=("https",),
        alloc=HTTP,
        help=(
            "Listen for metrics on HTTP or HTTPS. Optionally requiring authentication. "
            "Each request received is passed to a handler, and a single HTTP receiver can "
            "listen for multiple formats depending on URL used."
        ),
        extras=(HTTPAuth,),
    )
)
RECEIVERS.add(
    Module(
        name="file",
        alloc=File,
        help=(
            "Reads from a file, then stops. Assumes one collection per line. E.g.: If the "
            "file has json data, the each line has to be a self-contained document/container."
        ),
    )
)
RECEIVERS.add(
    Module(
        name="wholefile",
        aliases=("wfile",),
        alloc=WholeFile,
        help="Reads an entire file and parses it as a single container, optionally repeatedly.",
    )
)
RECEIVERS.add(
    Module(
        name="fifo",
        alloc=LineFile,
        help=(
            "Reads continuously from a file. Can technically read from any file, but since it "
            "will re-open and re-read the file upon EOF, it is best suited for reading a fifo. "
            "Assumes one collection per line."
        ),
    )
)
RECEIVERS.add(
    Module(
        name="logrus",
        aliases=("log",),
        alloc=LogReceiver,
        help="Attaches to the internal logging and diverts log messages.",
    )
)
RECEIVERS.add(
    Module(
        name="stats",
        alloc=Stats,
        help=(
            "Gather internal metrics and send them on to the specified handler. Metrics "
            "gathered depends on modules used, and verbosity and completeness also depends on "
            "the modules. Examples of metrics gathered are: parse errors, send errors, number "
            "of received messages."
        ),
    )
)
RECEIVERS.add(
    Module(
        name="stdin",
        alloc=Stdin,
        help=(
            "Reads from standard input, one collection per line, allowing you to pipe "
            "collections in on a command line or similar."
        ),
    )
)
RECEIVERS.add(
    Module(
        name="test",
        alloc=Tester,
        help=(
            "Generate dummy-data. Useful for testing, including in combination with the http "
            "sender to send dummy-data to an other instance."
        ),
    )
)
RECEIVERS.add(
    Module(
        name="tcp",
        alloc=TCPLine,
        help="Listen for data on a tcp socket, reading one collection per line.",
    )
)
RECEIVERS.add(
    Module(
        name="udp",
        alloc=UDP,
        help=(
            "Accept UDP messages, one UDP message is one container. Combine with protobuf "
            "parser to receive Juniper telemetry."
        ),
    )
)

SENDERS.add(
    Module(
        name="backoff",
        aliases=("retry",),
        alloc=Backoff,
        help=(
            "Forwards data to the next sender, retrying after a delay upon failure. For each "
            "retry, the delay is doubled. Gives up after the set number of retries."
        ),
    )
)
SENDERS.add(
    Module(
        name="batch",
        aliases=("batcher",),
        alloc=Batch,
        help=(
            "Accepts metrics and puts them in a shared container. When the container either "
            "has a set number of metrics (Threshold), or a timeout occurs, the entire container "
            "is forwarded. This allows down-stream senders to work with larger batches of "
            "metrics at a time, which is frequently more efficient. A side effect of this is "
            "that down-stream errors are not propogated upstream. That means any errors need "
            "to be dealt with down stream, or they will be ignored."
        ),
    )
)


def _make(registry: ModuleMap, name: str, options: dict[str, Any]) -> Any:
    module = registry.lookup(name)
    try:
        return module.alloc(**options)
    except TypeError as err:
        raise TypeError(f"invalid option for {module.name!r}: {err}") from err


def make_receiver(name: str, **kwargs: Any) -> Any:
    """Build a fresh receiver by name or alias, configured with ``kwargs``."""
    return _make(RECEIVERS, name, kwargs)


def make_sender(name: str, **kwargs: Any) -> Any:
    """Build a fresh sender by name or alias, configured with ``kwargs``."""
    return _make(SENDERS, name, kwargs)
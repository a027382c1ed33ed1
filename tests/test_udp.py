import queue
import socket
import threading
import time
from types import SimpleNamespace

import pytest

from metricchute.core import Handler, MissingArgumentError
from metricchute.udp import UDP

P_JSON = (
    b'{"metrics":[{"timestamp":"2019-03-15T11:08:02+01:00","metadata":{"key":"value"},'
    b'"data":{"string":"text","float":1.11,"integer":5}}]}'
)

NO_OP = Handler(sender=SimpleNamespace(send=lambda container: None))


def launch(**options):
    sink = queue.Queue()
    rcv = UDP(address="127.0.0.1:0", handler=Handler(sender=SimpleNamespace(send=sink.put)), **options)
    worker = threading.Thread(target=rcv.start, daemon=True)
    worker.start()
    assert rcv.ready.wait(5)
    return rcv, sink, worker


@pytest.fixture
def running():
    rcv, sink, worker = launch(threads=2, name="udp1")
    yield rcv, sink
    rcv.stop()
    worker.join(timeout=5)


def send_datagram(address, payload):
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.sendto(payload, address[:2])


def test_udp_receives_json(running):
    rcv, sink = running
    send_datagram(rcv.bound_address, P_JSON)
    metric = sink.get(timeout=5).metrics[0]
    assert metric.metadata == {"key": "value"}
    assert metric.data == {"string": "text", "float": 1.11, "integer": 5}


def test_udp_stats_count_errors_and_sent(running):
    rcv, sink = running
    send_datagram(rcv.bound_address, P_JSON)
    send_datagram(rcv.bound_address, b"not json")
    sink.get(timeout=5)
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        counts = rcv.get_stats().data
        if counts["sent"] + counts["errors"] == 2:
            break
        time.sleep(0.005)
    stats = rcv.get_stats()
    assert stats.data == {"received": 2, "errors": 1, "sent": 1}
    assert stats.metadata == {"component": "receiver", "type": "UDP", "identity": "udp1"}


def test_udp_start_applies_defaults(running):
    rcv, _ = running
    assert (rcv.packet_size, rcv.backlog, rcv.threads, rcv.emit_stats) == (9000, 100, 2, 10.0)


def test_udp_default_threads_at_least_twenty():
    rcv, _, worker = launch()
    rcv.stop()
    worker.join(timeout=5)
    assert rcv.threads >= 20
    assert not worker.is_alive()


@pytest.mark.parametrize(
    "options, missing",
    [({"address": "127.0.0.1:1939"}, "Handler"), ({"handler": NO_OP}, "Address")],
)
def test_verify_missing_argument(options, missing):
    with pytest.raises(MissingArgumentError) as info:
        UDP(**options).verify()
    assert info.value.argument == missing


@pytest.mark.parametrize(
    "size, accepted",
    [(-1, False), (65536, False), (0, True), (9000, True), (65535, True)],
)
def test_verify_packet_size(size, accepted):
    rcv = UDP(address="127.0.0.1:1939", handler=NO_OP, packet_size=size)
    if accepted:
        assert rcv.verify() is None
        assert rcv.packet_size == size
    else:
        with pytest.raises(ValueError, match="65535"):
            rcv.verify()
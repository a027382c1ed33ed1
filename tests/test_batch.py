import threading
import time

import pytest

from metricchute.batch import Batch
from metricchute.core import Container, Metric, MissingArgumentError


class Recorder:
    def __init__(self):
        self._lock = threading.Lock()
        self.containers = []

    def send(self, container):
        with self._lock:
            self.containers.append(container)

    @property
    def received(self):
        with self._lock:
            return len(self.containers)

    def reset(self):
        with self._lock:
            self.containers.clear()


class Failing:
    def __init__(self):
        self.calls = 0

    def send(self, container):
        self.calls += 1
        raise RuntimeError("down stream broken")


class Blocking:
    def __init__(self):
        self.release = threading.Event()

    def send(self, container):
        self.release.wait(5)


def wait_for(predicate, timeout=2.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def quick(recorder, batch, container, expected):
    recorder.reset()
    batch.send(container)
    if expected:
        wait_for(lambda: recorder.received >= expected)
    else:
        time.sleep(0.05)
    assert recorder.received == expected


def test_batch():
    metric = Metric()
    container = Container(metrics=[metric])
    one = Recorder()
    batch = Batch(next=one, threads=2)
    try:
        for _ in range(9):
            quick(one, batch, container, 0)
        quick(one, batch, container, 1)
        assert len(one.containers[0].metrics) == 10

        for _ in range(9):
            quick(one, batch, container, 0)
        quick(one, batch, container, 1)

        quick(one, batch, container, 0)
        time.sleep(1)
        assert one.received == 1

        container = Container(metrics=[metric] * 9)
        quick(one, batch, container, 0)
        quick(one, batch, container, 1)
        assert len(one.containers[0].metrics) == 18
    finally:
        batch.close()


def test_verify_requires_next():
    with pytest.raises(MissingArgumentError) as info:
        Batch().verify()
    assert info.value.argument == "Next"


def test_close_flushes_pending_metrics():
    recorder = Recorder()
    with Batch(next=recorder, threshold=100, threads=1, interval=60) as batch:
        for _ in range(3):
            batch.send(Container(metrics=[Metric()]))
    assert recorder.received == 1
    assert len(recorder.containers[0].metrics) == 3


def test_send_after_close_raises():
    batch = Batch(next=Recorder())
    batch.close()
    with pytest.raises(RuntimeError):
        batch.send(Container())


def test_downstream_errors_are_swallowed():
    failing = Failing()
    batch = Batch(next=failing, threshold=1, threads=1)
    assert batch.send(Container(metrics=[Metric()])) is None
    assert wait_for(lambda: failing.calls == 1)
    batch.close()


def test_overflow_goes_to_burner():
    blocking = Blocking()
    burner = Recorder()
    sent = [Metric(data={"n": n}) for n in range(3)]
    batch = Batch(next=blocking, burner=burner, threshold=1, threads=1, interval=60)
    try:
        for metric in sent:
            batch.send(Container(metrics=[metric]))
        assert wait_for(lambda: burner.received >= 1)
        burned = burner.containers[0].metrics
        assert len(burned) == 1
        assert burned[0] in sent
    finally:
        blocking.release.set()
        batch.close()
"""Receiver that synthesises dummy data."""

from __future__ import annotations

import logging
import os
import random
import threading
from dataclasses import dataclass
from datetime import datetime

from metricchute.core import Container, Handler, Metric
from metricchute.linefile import _Stoppable

log = logging.getLogger("metricchute.receiver.tester")


@dataclass(eq=False)
class Tester(_Stoppable):
    """Generate containers of random metrics on ``threads`` threads."""

    metrics: int = 0
    values: int = 0
    threads: int = 0
    delay: float = 0.0
    handler: Handler | None = None
    name: str = ""

    def generate(self, timestamp: datetime) -> Container:
        """Build one container of ``metrics`` metrics with ``values`` random fields each."""
        return Container(
            metrics=[
                Metric(
                    time=timestamp,
                    metadata={"id": self.name, "key1": index},
                    data={f"metric{key}": random.getrandbits(63) for key in range(self.values)},
                )
                for index in range(self.metrics)
            ]
        )

    def start(self) -> None:
        """Generate data until stopped."""
        if self.threads == 0:
            self.threads = os.cpu_count() or 1
            log.debug("no threads set, defaulting to %d", self.threads)
        if self.metrics < 1:
            self.metrics = 10
            log.debug("no metrics specified for testing, defaulting to %d", self.metrics)
        if self.values < 1:
            self.values = 50
            log.debug("no values specified for testing, defaulting to %d", self.values)
        workers = [
            threading.Thread(target=self._run, name="tester", daemon=True)
            for _ in range(1, self.threads)
        ]
        for worker in workers:
            worker.start()
        self._run()
        for worker in workers:
            worker.join()

    def stop(self) -> None:
        """Ask the running ``start`` to return."""
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            container = self.generate(datetime.now().astimezone())
            try:
                self.handler.transform_and_send(container)
            except Exception as err:
                log.error("failed to transform and send metrics: %s", err)
            self._stop.wait(self.delay)
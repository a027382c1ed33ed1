# metricchute

metricchute is a library of building blocks for moving metrics from where
they are produced to where they are stored. A chain has three parts:

* a **receiver** accepts raw data: a file, a FIFO, standard input, a TCP
  socket, UDP datagrams, HTTP requests, the application's own log records
  or a queue of internal statistics;
* a **handler** (`metricchute.core.Handler`) parses that data into a
  `Container` of `Metric` objects, runs its transformers over it and gives
  it to a sender;
* a **sender** passes containers on. Anything with a `send(container)`
  method will do; the package itself provides `Backoff` and `Batch`.

## Data model

A `Container` holds a list of `Metric` objects. Each metric has an optional
`time`, a `metadata` dict (what the measurement is about) and a `data` dict
(the measured values). Containers convert to and from plain dictionaries;
the timestamp travels under the key `"timestamp"` as an ISO 8601 string:

```python
from metricchute.core import Container, parse_json

container = Container.from_dict({
    "metrics": [
        {
            "timestamp": "2019-03-15T11:08:02+01:00",
            "metadata": {"key": "value"},
            "data": {"string": "text", "float": 1.11, "integer": 5},
        }
    ]
})
assert container.to_dict()["metrics"][0]["data"]["integer"] == 5
assert parse_json(b'{"metrics": []}').metrics == []
```

Helpers in `metricchute.core`:

* `parse_json(data)` turns bytes or text into a `Container`, raising
  `ValueError` on malformed input;
* `parse_duration(text)` reads durations such as `"10ms"`, `"1.5s"` or
  `"1h30m"` and returns seconds as a float;
* `get_log_level(name)` maps `"trace"`, `"debug"`, `"info"`, `"warn"`,
  `"warning"`, `"error"`, `"fatal"` or `"panic"` (any case) to a
  `logging` level;
* `MissingArgumentError` (a `ValueError`) is raised by `verify()` methods
  when a required option is unset.

## Handlers

```python
from metricchute.core import Handler

class Collect:
    def __init__(self):
        self.containers = []

    def send(self, container):
        self.containers.append(container)

sink = Collect()
handler = Handler(sender=sink)          # parser defaults to parse_json
handler.handle(b'{"metrics": [{"data": {"value": 1}}]}')
assert sink.containers[0].metrics[0].data == {"value": 1}
```

`Handler.parse`, `Handler.transform_and_send` and `Handler.handle` can be
used separately. Transformers are callables that modify a container in
place.

## Receivers

| Module                    | Class                | What it does                                                          |
|---------------------------|----------------------|-----------------------------------------------------------------------|
| `metricchute.linefile`    | `File`               | Reads a file once, one container per line; returns lines handled.     |
| `metricchute.linefile`    | `LineFile`           | Re-reads a file (typically a FIFO) until stopped, one container per line, waiting `delay` seconds between reads. |
| `metricchute.linefile`    | `WholeFile`          | Parses a whole file as one container, again every `frequency` seconds if positive. |
| `metricchute.linefile`    | `Stdin`              | Reads standard input (or a given binary `stream`), one container per line. |
| `metricchute.tcpline`     | `TCPLine`            | Listens on TCP `address`, one container per line.                     |
| `metricchute.udp`         | `UDP`                | One datagram is one container, handled by a pool of worker threads.   |
| `metricchute.http`        | `HTTP`, `HTTPAuth`   | Per-path handlers over HTTP or HTTPS, optional basic or client-certificate authentication. |
| `metricchute.logreceiver` | `LogReceiver`        | Attaches a `LogForwardingHandler` to a `logging.Logger` and sends each record on as a metric. |
| `metricchute.stats`       | `Stats`              | Forwards metrics from a queue to a handler, dropping them instead of blocking when its own queue is full. |
| `metricchute.tester`      | `Tester`             | Generates containers of random metrics for load testing.              |

Long-running receivers (`LineFile`, `WholeFile`, `TCPLine`, `UDP`, `HTTP`,
`Tester`) block in `start()` until `stop()` is called from another thread.
`TCPLine`, `UDP` and `HTTP` set their `ready` event and `bound_address`
once listening, so an address with port `0` can be used.

`UDP` and `HTTP` keep counters and return them as a `Metric` from
`get_stats()`. `UDP.verify()`, `HTTP.verify()` and `Stats.verify()` check
configuration and raise `MissingArgumentError` or `ValueError`.

### HTTP

Each key of `HTTP.handlers` is a path; a path ending in `/` also matches
everything below it, and the longest match wins. A successful request gets
status 204; failures get a JSON body `{"Message": "..."}` with 400 (bad or
empty body, handler error), 401 (failed authentication) or 404 (no
matching path, reported as 401 when any path requires authentication).
`HTTPAuth` accepts either `username` and `password` (basic auth) or
`san_dns_name`, which must appear among the SAN DNS names of the client's
certificate; the latter needs `client_certificate_cas` and a
`certfile`/`keyfile` pair.

`HTTP.dispatch(path, authorization, body)` serves one request without a
network and returns the status code and response body:

```python
from metricchute.http import HTTP

receiver = HTTP(address="localhost:0", handlers={"/": handler})
code, body = receiver.dispatch("/", None, b'{"metrics": []}')
assert code == 204
```

### Stats

`Stats.start(source, stop=None)` reads metrics from `source` (a
`queue.Queue`) until it yields `None` or the `stop` event is set, sending
each metric to the handler in a container of its own.

## Senders

`metricchute.backoff.Backoff` forwards to `next` and retries on failure up
to `retries` times, starting with a delay of `base` seconds and doubling
it after every failure. Once its retries are spent it raises the last
error.

`metricchute.batch.Batch` gathers metrics from many `send()` calls into one
container and forwards it when it holds `threshold` metrics (default 10) or
when `interval` seconds (default 1) pass without a flush. Forwarding runs
on `threads` worker threads (default: the number of CPUs), so errors from
the next sender are logged, not raised. If the workers are busy and a
`burner` sender is set, overflowing batches go there instead. `close()`
flushes what is pending and stops the threads; a `Batch` can also be used
as a context manager. `send()` after `close()` raises `RuntimeError`.

## Building by name

`metricchute.registry` maps type names and aliases, case-insensitively, to
implementations. `make_receiver(name, **kwargs)` and
`make_sender(name, **kwargs)` build a configured component:

```python
from metricchute.registry import make_receiver, make_sender

batch = make_sender("batcher", next=sink, threshold=100)
reader = make_receiver("fifo", file="/tmp/metrics.fifo", handler=handler)
```

Receivers: `http` (`https`), `file`, `wholefile` (`wfile`), `fifo`,
`logrus` (`log`), `stats`, `stdin`, `test`, `tcp`, `udp`.
Senders: `backoff` (`retry`), `batch` (`batcher`).
The `RECEIVERS` and `SENDERS` maps hold each entry's help text.

## What this package does not do

metricchute is a library only. It has no command-line program and no
loader for configuration files; chains are put together in Python code.
It provides no senders that store or publish data (databases, time-series
stores, message brokers, files or the network), and no parsers other than
JSON: a handler's final sender is something you supply.
import io
import json
import queue
import threading
import time
from types import SimpleNamespace

import pytest

from metricchute.core import Handler
from metricchute.linefile import File, LineFile, Stdin, WholeFile

VALID = json.dumps(
    {"metrics": [{"timestamp": "2019-03-15T11:08:02+01:00", "metadata": {"foo": "bar"}, "data": {"tall": 5}}]}
)


@pytest.fixture
def sink():
    return queue.Queue()


@pytest.fixture
def handler(sink):
    return Handler(sender=SimpleNamespace(send=sink.put))


def run_in_thread(receiver):
    worker = threading.Thread(target=receiver.start, daemon=True)
    worker.start()
    return worker


def test_read_once_handles_each_line_and_skips_bad(tmp_path, sink, handler):
    path = tmp_path / "data"
    path.write_text(f"{VALID}\n{VALID}\nbad idea\u2665\n", encoding="utf-8")
    handled = LineFile(file=str(path), handler=handler).read_once()
    assert handled == 2
    first = sink.get_nowait()
    sink.get_nowait()
    assert sink.empty()
    assert first.metrics[0].metadata == {"foo": "bar"}
    assert first.metrics[0].data == {"tall": 5}


def test_read_once_strips_crlf_and_last_line_without_newline(tmp_path, sink, handler):
    path = tmp_path / "data"
    path.write_bytes(f"{VALID}\r\n{VALID}".encode())
    handled = LineFile(file=str(path), handler=handler).read_once()
    assert handled == 2
    assert sink.qsize() == 2


def test_read_once_missing_file_raises(tmp_path, handler):
    with pytest.raises(FileNotFoundError):
        LineFile(file=str(tmp_path / "missing"), handler=handler).read_once()


def test_linefile_start_rereads_until_stopped(tmp_path, sink, handler):
    path = tmp_path / "data"
    path.write_text(VALID + "\n", encoding="utf-8")
    lf = LineFile(file=str(path), handler=handler, delay=0.01)
    worker = run_in_thread(lf)
    first, second = sink.get(timeout=5), sink.get(timeout=5)
    lf.stop()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert first.metrics[0].data == second.metrics[0].data == {"tall": 5}


def test_file_reads_once(tmp_path, sink, handler):
    path = tmp_path / "data"
    path.write_text(f"{VALID}\n" * 3, encoding="utf-8")
    handled = File(file=str(path), handler=handler).start()
    assert handled == 3
    assert sink.qsize() == 3


def test_stdin_reads_stream(sink, handler):
    stream = io.BytesIO(f"{VALID}\nnot json\n".encode())
    handled = Stdin(handler=handler, stream=stream).start()
    assert handled == 1
    assert sink.get_nowait().metrics[0].data == {"tall": 5}
    assert sink.empty()


def test_wholefile_parses_single_container(tmp_path, sink, handler):
    path = tmp_path / "whole.json"
    path.write_text(json.dumps(json.loads(VALID), indent=2), encoding="utf-8")
    WholeFile(file=str(path), handler=handler).read_once()
    container = sink.get_nowait()
    assert sink.empty()
    assert container.metrics[0].data == {"tall": 5}
    expected = handler.parse(VALID.encode())
    assert container.to_dict() == expected.to_dict()


def test_wholefile_bad_content_raises(tmp_path, sink, handler):
    path = tmp_path / "whole.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        WholeFile(file=str(path), handler=handler).read_once()
    assert sink.empty()


def test_wholefile_missing_raises(tmp_path, handler):
    with pytest.raises(FileNotFoundError):
        WholeFile(file=str(tmp_path / "nope"), handler=handler).read_once()


def test_wholefile_without_frequency_reads_once(tmp_path, sink, handler):
    path = tmp_path / "whole.json"
    path.write_text(VALID, encoding="utf-8")
    wf = WholeFile(file=str(path), handler=handler)
    worker = run_in_thread(wf)
    first = sink.get(timeout=5)
    time.sleep(0.05)
    wf.stop()
    worker.join(timeout=5)
    assert first.metrics[0].metadata == {"foo": "bar"}
    assert sink.empty()
    assert not worker.is_alive()


def test_wholefile_with_frequency_repeats(tmp_path, sink, handler):
    path = tmp_path / "whole.json"
    path.write_text(VALID, encoding="utf-8")
    wf = WholeFile(file=str(path), handler=handler, frequency=0.01)
    worker = run_in_thread(wf)
    reads = [sink.get(timeout=5) for _ in range(3)]
    wf.stop()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert [c.metrics[0].metadata for c in reads] == [{"foo": "bar"}] * 3
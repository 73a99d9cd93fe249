import io
import logging

import pytest

from clocksync.logger import NodeContextFilter, setup_logger
from clocksync.trace import EventTrace, TraceEvent, load_trace


@pytest.fixture
def clean_logger():
    yield
    logger = logging.getLogger("clocksync")
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def test_record_keeps_order_and_filters():
    trace = EventTrace()
    trace.record(0, "local", 1, iteration=0)
    trace.record(1, "idle", 0, iteration=0)
    trace.record(0, "send", 2, iteration=1, peer=1, payload="1")
    assert [e.seq for e in trace.events] == [0, 1, 2]
    assert [e.kind for e in trace.for_node(0)] == ["local", "send"]
    assert len(trace.of_kind("idle")) == 1


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        EventTrace().record(0, "teleport", 1)


def test_jsonl_round_trip_restores_vectors(tmp_path):
    trace = EventTrace(log_dir=str(tmp_path))
    trace.record(2, "recv", (1, 0, 3), peer=0, payload="4", sent_clock=(1, 0, 0))
    loaded = load_trace(tmp_path / "trace.jsonl")
    assert loaded == trace.events
    assert loaded[0].clock == (1, 0, 3)


def test_new_trace_truncates_old_file(tmp_path):
    EventTrace(log_dir=str(tmp_path)).record(0, "local", 1)
    EventTrace(log_dir=str(tmp_path))
    assert (tmp_path / "trace.jsonl").read_text() == ""


def test_listener_errors_do_not_stop_recording():
    seen = []

    def broken(record):
        raise RuntimeError("listener gone")

    trace = EventTrace()
    trace.register_listener(broken)
    trace.register_listener(seen.append)
    trace.register_listener(seen.append)
    trace.record(0, "local", (1, 0))
    trace.unregister_listener(seen.append)
    trace.record(0, "local", (2, 0))
    assert seen == [{"seq": 0, "node": 0, "kind": "local", "clock": [1, 0], "iteration": None,
                     "peer": None, "payload": None, "sent_clock": None}]
    assert len(trace.events) == 2


@pytest.mark.parametrize(
    "event, text",
    [
        (TraceEvent(0, 1, "local", 3, iteration=4), "Generated local event 4"),
        (TraceEvent(0, 1, "send", 3, iteration=4, peer=2, payload="4"), "Sending message 4 to node 2"),
        (TraceEvent(0, 1, "recv", (2, 1), peer=0, payload="7", sent_clock=(2, 0)),
         "Received message 7 from node 0 with timestamp [2, 0]"),
        (TraceEvent(0, 1, "idle", 3), "Doing nothing"),
        (TraceEvent(0, 1, "drop", 3, peer=2, payload="4"), "Failed to deliver message 4 to node 2"),
    ],
)
def test_describe(event, text):
    assert event.describe() == text


def test_events_are_logged_with_node_context(caplog):
    with caplog.at_level(logging.INFO, logger="clocksync"):
        EventTrace().record(1, "local", (0, 1), iteration=0)
        EventTrace().record(1, "drop", (0, 2), iteration=1, peer=0, payload="1")
    assert caplog.records[0].node_id == 1
    assert caplog.records[0].logical_clock == [0, 1]
    assert caplog.records[1].levelno == logging.WARNING


def test_setup_logger_formats_node_lines(tmp_path, clean_logger):
    stream = io.StringIO()
    logger = setup_logger(log_dir=str(tmp_path), stream=stream)
    EventTrace().record(1, "local", 5, iteration=2)
    logger.info("simulation done")
    for handler in logger.handlers:
        handler.flush()
    lines = stream.getvalue().splitlines()
    assert lines[0].startswith("Node 1 | Local Time: 5 | Generated local event 2")
    assert lines[1].startswith("Node - | Local Time: - | simulation done")
    assert "Generated local event 2" in (tmp_path / "clocksync.log").read_text()


def test_setup_logger_does_not_duplicate_handlers(tmp_path, clean_logger):
    setup_logger(stream=io.StringIO())
    logger = setup_logger(stream=io.StringIO())
    assert len(logger.handlers) == 1


def test_node_context_filter_keeps_existing_fields():
    record = logging.LogRecord("clocksync", logging.INFO, "", 0, "msg", (), None)
    record.node_id = 3
    assert NodeContextFilter().filter(record)
    assert record.node_id == 3
    assert record.logical_clock == "-"

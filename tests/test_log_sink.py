import logging
import threading

import pytest

from gpconnect.log.handler import LogSinkHandler
from gpconnect.log.sink import NO_LOGS_MESSAGE, LogSink
from gpconnect.local.errors import LogIOError


def test_tail_without_file(sink):
    assert sink.tail(1024) == NO_LOGS_MESSAGE


def test_directory_created_on_first_write(sink):
    assert not sink.path.parent.exists()
    sink.append("hello")
    assert sink.path.exists()


def test_append_is_timestamped_and_single_line(sink):
    sink.append("first\nsecond\r\n")
    lines = sink.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("first second")


def test_mark_writes_banner(sink):
    sink.mark("Connection Attempt")
    assert "\n--- Connection Attempt: " in sink.path.read_text(encoding="utf-8")


def test_tail_starts_on_line_boundary(tmp_path):
    sink = LogSink(tmp_path / "vpn.log")
    sink.path.write_text("aaaa\nbbbb\ncccc\n", encoding="utf-8")

    assert sink.tail(7) == "cccc\n"
    # Cut exactly after a newline keeps the whole next line.
    assert sink.tail(10) == "bbbb\ncccc\n"
    assert sink.tail(1000) == "aaaa\nbbbb\ncccc\n"


def test_clear_truncates(sink):
    sink.append("something")
    sink.clear()
    assert sink.tail(1024) == ""


def test_clear_without_file_is_noop(sink):
    sink.clear()
    assert not sink.path.exists()


def test_concurrent_appends_do_not_interleave(sink):
    def writer(n):
        for i in range(50):
            sink.append(f"writer-{n} line-{i} " + "x" * 200)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    lines = sink.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 200
    assert all(line.endswith("x" * 200) for line in lines)


def test_write_failure_raises_log_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(LogIOError):
        LogSink(blocker / "vpn.log").append("nope")


def test_handler_writes_records(sink):
    logger = logging.getLogger("gpconnect.test.sink")
    handler = LogSinkHandler(sink)
    logger.addHandler(handler)
    try:
        logger.warning("Reconnect scheduled")
        logger.debug("below threshold")
    finally:
        logger.removeHandler(handler)

    text = sink.path.read_text(encoding="utf-8")
    assert "WARNING [gpconnect.test.sink] Reconnect scheduled" in text
    assert "below threshold" not in text

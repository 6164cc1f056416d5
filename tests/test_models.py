from __future__ import annotations

import threading

from mission_control.session.models import OutputLog, ProgressState


def test_output_log_keeps_at_most_max_chunks() -> None:
    log = OutputLog()

    for index in range(1500):
        log.append(f"chunk-{index}\n")

    chunks = log.snapshot()
    assert len(chunks) == 1000
    assert chunks[0] == "chunk-500\n"
    assert chunks[-1] == "chunk-1499\n"


def test_output_log_evicts_by_bytes_but_keeps_newest() -> None:
    log = OutputLog(max_chunks=100, max_bytes=10)

    log.append("12345")
    log.append("67890")
    log.append("abc")
    assert log.snapshot() == ["67890", "abc"]
    assert log.total_bytes == 8

    log.append("x" * 50)
    assert log.snapshot() == ["x" * 50]


def test_output_log_counts_utf8_bytes() -> None:
    log = OutputLog(max_bytes=6)

    log.append("éé")
    log.append("é")

    assert log.snapshot() == ["éé", "é"]
    assert log.total_bytes == 6


def test_snapshot_is_a_copy() -> None:
    log = OutputLog(["a"])

    snapshot = log.snapshot()
    log.append("b")

    assert snapshot == ["a"]
    assert log.text() == "ab"


def test_concurrent_reads_during_appends() -> None:
    log = OutputLog(max_chunks=50)
    errors: list[Exception] = []

    def reader() -> None:
        try:
            for _ in range(2000):
                "".join(log.snapshot())
        except Exception as exc:  # pragma: no cover - failure path
            errors.append(exc)

    thread = threading.Thread(target=reader)
    thread.start()
    for index in range(5000):
        log.append(str(index))
    thread.join()

    assert errors == []
    assert len(log) == 50


def test_progress_started_and_copy() -> None:
    progress = ProgressState.started()

    assert progress.is_active is True
    assert progress.phase == "thinking"
    assert progress.start_time == progress.last_output_time

    clone = progress.copy()
    clone.phase = "complete"
    assert progress.phase == "thinking"

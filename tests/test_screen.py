from __future__ import annotations

from mission_control.utils.screen import TerminalScreen, render_transcript


def test_render_applies_escape_sequences() -> None:
    chunks = ["\x1b[32mgreen\x1b[0m line\r\n", "progress 10%\rprogress 99%\r\n"]

    assert render_transcript(chunks, cols=40, rows=5) == "green line\nprogress 99%"


def test_scrollback_is_kept() -> None:
    screen = TerminalScreen(cols=20, rows=3)

    for index in range(10):
        screen.feed(f"line {index}\r\n")

    lines = screen.lines()
    assert lines[0] == "line 0"
    assert lines[-1] == "line 9"

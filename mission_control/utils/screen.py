"""Render raw PTY transcripts through a virtual terminal."""

from __future__ import annotations

from typing import Iterable

import pyte


class TerminalScreen:
    """pyte-backed screen with scrollback, fed with raw PTY chunks."""

    def __init__(self, cols: int = 80, rows: int = 30, history: int = 5000) -> None:
        self._screen = pyte.HistoryScreen(cols, rows, history=history)
        self._screen.set_mode(pyte.modes.LNM)
        self._stream = pyte.Stream(self._screen)

    def feed(self, data: str) -> None:
        self._stream.feed(data)

    def resize(self, cols: int, rows: int) -> None:
        self._screen.resize(rows, cols)

    def lines(self) -> list[str]:
        """Scrollback plus visible display, trailing blank lines dropped."""
        lines = [self._history_line_to_text(line) for line in self._screen.history.top]
        lines.extend(line.rstrip() for line in self._screen.display)
        while lines and lines[-1] == "":
            lines.pop()
        return lines

    def _history_line_to_text(self, line: object) -> str:
        if isinstance(line, dict):
            cols = self._screen.columns
            return "".join(line[x].data if x in line else " " for x in range(cols)).rstrip()
        return str(line).rstrip()


def render_transcript(chunks: Iterable[str], cols: int = 80, rows: int = 30) -> str:
    screen = TerminalScreen(cols, rows)
    for chunk in chunks:
        screen.feed(chunk)
    return "\n".join(screen.lines())

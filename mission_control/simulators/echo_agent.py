"""Deterministic echo agent: ``Received: <line>`` for every input line.

Run with ``python -m mission_control.simulators.echo_agent``.
"""

from __future__ import annotations

import sys

READY_LINE = "Echo agent ready. Type something and press Enter."


def main() -> int:
    print(READY_LINE, flush=True)
    for raw in sys.stdin:
        line = raw.rstrip("\r\n")
        print(f"Received: {line}", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Stand-in for the real agent: banner, scripted progress, raw-mode echo.

Run with ``python -m mission_control.simulators.claude_sim``.
"""

from __future__ import annotations

import os
import signal
import sys
import time

CYAN = "\x1b[36m"
GREEN = "\x1b[32m"
RED = "\x1b[31m"
BOLD = "\x1b[1m"
RESET = "\x1b[0m"

STARTUP_MESSAGES = (
    f"{GREEN}✓{RESET} Initializing...",
    "\x1b[33m→\x1b[0m Processing request...",
    "\x1b[34m•\x1b[0m Analyzing code...",
    "\x1b[35m♦\x1b[0m Generating response...",
)

STEP_DELAY_S = 0.5
RESPONSE_DELAY_S = 0.5
DONE_DELAY_S = 1.0


def _write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _line(text: str = "") -> None:
    # Raw mode disables output post-processing, so emit CRLF explicitly.
    _write(text + "\r\n")


def banner() -> None:
    _write("\x1b[2J\x1b[H")
    _line(CYAN + "=" * 80 + RESET)
    _line(f"{BOLD}Claude Test Simulator{RESET}")
    _line(CYAN + "=" * 80 + RESET)
    _line()
    _line("This is a safe test script to help debug PTY issues.")
    _line("It will output data in a controlled manner.")
    _line()


def interact(read_byte) -> int:
    """Echo keystrokes; answer each CR. Returns the exit status."""
    while True:
        data = read_byte()
        if not data or data in (b"\x03", b"\x04"):
            _line()
            _line(f"{RED}Exiting...{RESET}")
            return 0
        _write(data.decode("utf-8", errors="replace"))
        if data in (b"\r", b"\n"):
            _line()
            time.sleep(RESPONSE_DELAY_S)
            _line(f"{CYAN}Processing your request...{RESET}")
            time.sleep(DONE_DELAY_S)
            _line(f"{GREEN}Done!{RESET}")
            _line()
            _line(f"{GREEN}Ready for input:{RESET}")


def _on_sigterm(signum, frame) -> None:
    _line()
    _line(f"{RED}Received SIGTERM, exiting...{RESET}")
    sys.exit(0)


def main() -> int:
    signal.signal(signal.SIGTERM, _on_sigterm)
    banner()
    for message in STARTUP_MESSAGES:
        time.sleep(STEP_DELAY_S)
        _line(message)
    _line()
    _line(f"{GREEN}Ready for input:{RESET}")

    fd = sys.stdin.fileno()
    if os.name != "nt" and os.isatty(fd):
        import termios
        import tty

        saved = termios.tcgetattr(fd)
        tty.setraw(fd)
        try:
            return interact(lambda: os.read(fd, 1))
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
    return interact(lambda: sys.stdin.buffer.read(1))


if __name__ == "__main__":
    sys.exit(main())

"""Heuristic activity classification for unstructured agent terminal output.

The classifier is a policy table: an ordered tuple of ``PhaseRule`` entries,
first match wins. The runtime never inspects patterns itself, so a different
table can be swapped in per classifier instance.
"""

from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass
from typing import Iterable, Sequence

from mission_control.session.models import Phase

# ── ANSI / control character patterns ────────────────────────────────────────

ANSI_FULL_RE = re.compile(
    r"\x1b\[[0-9;?]*[ -/]*[@-~]"  # CSI
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC
    r"|\x1bP[^\x1b]*\x1b\\"  # DCS
    r"|\x1b[()][0-9A-Za-z]"  # charset select
    r"|\x1b[@-_]"  # bare two-byte escapes
)
CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def strip_ansi(text: str) -> str:
    """Strip all ANSI escape sequences from text."""
    return ANSI_FULL_RE.sub("", text)


def clean_text(raw: str) -> str:
    """ANSI-strip raw PTY text, normalise line endings, drop control chars."""
    cleaned = strip_ansi(raw)
    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    return CONTROL_CHAR_RE.sub("", cleaned)


def last_statement(text: str) -> str:
    """Return the last non-blank line of cleaned text, stripped."""
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return ""


# ── Policy table ─────────────────────────────────────────────────────────────


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass(frozen=True)
class PhaseRule:
    """One pattern -> phase rule.

    ``status`` may contain ``{object}``, filled from the first group of
    ``object_re`` when it matches, else ``default_object``.
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    phase: Phase
    status: str
    object_re: re.Pattern[str] | None = None
    default_object: str = ""
    max_object_len: int = 60

    def matches(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.patterns)

    def describe(self, text: str) -> str:
        if "{object}" not in self.status:
            return self.status
        what = self.default_object
        if self.object_re is not None:
            match = self.object_re.search(text)
            if match and match.group(1).strip():
                what = match.group(1).strip()
                if len(what) > self.max_object_len:
                    what = what[: self.max_object_len - 1] + "…"
        return self.status.format(object=what)


WAITING_RULE = PhaseRule(
    name="waiting",
    patterns=_compile(
        r"\?$",
        r"Would you like",
        r"Should I",
        r"Do you want",
        r"Is that",
        r"Does that",
    ),
    phase="waiting",
    status="Waiting for your response...",
)

COMPLETE_RULE = PhaseRule(
    name="complete",
    patterns=_compile(
        r"completed",
        r"done",
        r"finished",
        r"successfully",
        r"ready",
        r"that should",
        r"you can now",
    ),
    phase="complete",
    status="Task completed",
)

ERROR_RULE = PhaseRule(
    name="error",
    patterns=_compile(r"error", r"failed", r"issue", r"problem", r"unable to", r"cannot"),
    phase="working",
    status="Handling error...",
)

STARTING_RULE = PhaseRule(
    name="starting",
    patterns=_compile(
        r"^Let me",
        r"^I'll",
        r"^I will",
        r"^First,?\s+I",
        r"^Starting",
        r"^Okay,?\s+I",
        r"^Sure,?\s+I",
    ),
    phase="thinking",
    status="Starting task...",
)

CREATING_RULE = PhaseRule(
    name="creating",
    patterns=_compile(r"creating", r"writing", r"adding", r"implementing", r"building", r"generating"),
    phase="working",
    status="Creating {object}...",
    object_re=re.compile(
        r"(?:creating|writing|adding|implementing|building)\s+(.+?)(?:\.|$)", re.IGNORECASE
    ),
    default_object="files",
)

EXECUTING_RULE = PhaseRule(
    name="executing",
    patterns=_compile(r"running", r"executing", r"checking", r"testing", r"compiling", r"installing"),
    phase="working",
    status="Running {object}...",
    object_re=re.compile(r"(?:running|executing|testing|compiling)\s+(.+?)(?:\.|$)", re.IGNORECASE),
    default_object="commands",
)

ANALYZING_RULE = PhaseRule(
    name="analyzing",
    patterns=_compile(
        r"analyzing",
        r"looking at",
        r"examining",
        r"reading",
        r"investigating",
        r"understanding",
        r"checking the",
    ),
    phase="thinking",
    status="Analyzing code...",
)

THINKING_RULE = PhaseRule(
    name="thinking",
    patterns=_compile(r"thinking", r"considering", r"planning", r"Let me think"),
    phase="thinking",
    status="Thinking...",
)

DEFAULT_RULES: tuple[PhaseRule, ...] = (
    WAITING_RULE,
    COMPLETE_RULE,
    ERROR_RULE,
    STARTING_RULE,
    CREATING_RULE,
    EXECUTING_RULE,
    ANALYZING_RULE,
    THINKING_RULE,
)


@dataclass(frozen=True)
class Classification:
    phase: Phase
    status: str
    rule: str = ""


@dataclass(frozen=True)
class OutputSample:
    """Characters received at a monotonic timestamp (seconds)."""

    timestamp: float
    chars: int


class OutputClassifier:
    """Stateless mapping from cleaned text to ``Classification``."""

    def __init__(
        self,
        rules: Sequence[PhaseRule] = DEFAULT_RULES,
        silence_threshold_s: float = 30.0,
        rate_window_s: float = 5.0,
        terminal_rules: Iterable[str] = ("waiting", "complete"),
        still_deciding_rules: Iterable[str] = ("starting", "thinking"),
    ) -> None:
        self.rules = tuple(rules)
        self.silence_threshold_s = silence_threshold_s
        self.rate_window_s = rate_window_s
        self._by_name = {rule.name: rule for rule in self.rules}
        self._terminal = tuple(self._by_name[n] for n in terminal_rules if n in self._by_name)
        self._deciding = tuple(self._by_name[n] for n in still_deciding_rules if n in self._by_name)

    def classify(self, text: str) -> Classification:
        cleaned = text.strip()
        if not cleaned:
            return Classification(phase="idle", status="")
        for rule in self.rules:
            if rule.matches(cleaned):
                return Classification(phase=rule.phase, status=rule.describe(cleaned), rule=rule.name)
        return Classification(phase="working", status="Working...")

    def output_rate(
        self,
        samples: Iterable[OutputSample],
        window_seconds: float | None = None,
        now: float | None = None,
    ) -> int:
        """Characters per second over the trailing window, rounded half up."""
        window = window_seconds if window_seconds is not None else self.rate_window_s
        if window <= 0:
            return 0
        current = time.monotonic() if now is None else now
        window_start = current - window
        total = sum(sample.chars for sample in samples if sample.timestamp > window_start)
        return int(math.floor(total / window + 0.5))

    def is_still_active(self, last_output: str, millis_since_last_output: float) -> bool:
        """Decide whether a session still counts as working.

        Waiting or completion text ends activity. Past the silence threshold
        only "starting"/"thinking" text keeps the session active.
        """
        text = last_output.strip()
        if any(rule.matches(text) for rule in self._terminal):
            return False
        if millis_since_last_output > self.silence_threshold_s * 1000:
            return any(rule.matches(text) for rule in self._deciding)
        return True


_DEFAULT = OutputClassifier()


def classify(text: str) -> Classification:
    return _DEFAULT.classify(text)


def output_rate(samples: Iterable[OutputSample], window_seconds: float = 5.0, now: float | None = None) -> int:
    return _DEFAULT.output_rate(samples, window_seconds=window_seconds, now=now)


def is_still_active(last_output: str, millis_since_last_output: float) -> bool:
    return _DEFAULT.is_still_active(last_output, millis_since_last_output)

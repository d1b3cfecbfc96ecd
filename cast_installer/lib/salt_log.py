from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

_PREFIX = r"(?:\[[A-Z]+\s*\]\s*)?"
STATE_BEGIN_RE = re.compile(_PREFIX + r"Running state \[(.+?)\] at time (.+)$")
EXECUTING_RE = re.compile(_PREFIX + r"Executing state \[(.*)\] for \[(.*)\]$")
STATE_END_RE = re.compile(
    _PREFIX + r"Completed state \[(.*)\] at time (.*?) \(?duration_in_ms=([\d.]+)\)?$"
)
FAILURE_MARKER = "Failure!"


class Phase(enum.Enum):
    IDLE = "idle"
    IN_STATE = "in_state"


@dataclass(frozen=True)
class ParserState:
    phase: Phase = Phase.IDLE
    state_name: str = ""
    started: str = ""
    failure_seen: bool = False


INITIAL = ParserState()


class EventKind(enum.Enum):
    RAW = "raw"
    STATE_BEGIN = "state_begin"
    EXECUTING = "executing"
    FAILURE = "failure"
    RESULT = "result"
    STATE_END = "state_end"


@dataclass(frozen=True)
class LogEvent:
    kind: EventKind
    line: str = ""
    state: str = ""
    start: str = ""
    end: str = ""
    duration: float = 0.0
    failed: bool = False


def _clean(line: str) -> str:
    line = line.rstrip("\r\n")
    if line.startswith("# "):
        line = line[2:]
    return line


def transition(state: ParserState, line: str) -> Tuple[ParserState, Optional[LogEvent]]:
    """Advance the stderr parser by one line.

    Pure: returns the next state and at most one event to emit.
    """

    text = _clean(line)

    if state.phase is Phase.IDLE:
        m = STATE_BEGIN_RE.search(text)
        if m:
            nxt = ParserState(phase=Phase.IN_STATE, state_name=m.group(1), started=m.group(2).strip())
            return nxt, LogEvent(EventKind.STATE_BEGIN, line=text, state=nxt.state_name, start=nxt.started)
        return state, LogEvent(EventKind.RAW, line=text)

    if not text.strip():
        return state, None

    m = EXECUTING_RE.search(text)
    if m:
        return state, LogEvent(EventKind.EXECUTING, line=text, state=m.group(1))

    m = STATE_END_RE.search(text)
    if m:
        event = LogEvent(
            EventKind.STATE_END,
            line=text,
            state=state.state_name or m.group(1),
            start=state.started,
            end=m.group(2).strip(),
            duration=float(m.group(3)),
            failed=state.failure_seen,
        )
        return INITIAL, event

    if text.rstrip().endswith(FAILURE_MARKER):
        return (
            ParserState(Phase.IN_STATE, state.state_name, state.started, failure_seen=True),
            LogEvent(EventKind.FAILURE, line=text, state=state.state_name),
        )

    return state, LogEvent(EventKind.RESULT, line=text, state=state.state_name)


def log_event(log: logging.Logger, event: Optional[LogEvent]) -> None:
    if event is None:
        return
    if event.kind is EventKind.RAW:
        log.info("%s", event.line)
    elif event.kind is EventKind.STATE_BEGIN:
        log.debug("Running state %s (start=%s)", event.state, event.start)
    elif event.kind is EventKind.EXECUTING:
        log.info("Executing %s", event.line)
    elif event.kind is EventKind.FAILURE:
        log.warning("%s", event.line)
    elif event.kind is EventKind.RESULT:
        log.debug("%s", event.line)
    else:
        log.info(
            "Completed state %s (start=%s, end=%s, duration=%s, failed=%s)",
            event.state,
            event.start,
            event.end,
            event.duration,
            event.failed,
        )

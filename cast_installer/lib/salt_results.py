from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..errors import ExecutionError, PartialFailureError, TerminatedError, UnexpectedExitError

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
# salt-call --retcode-passthrough reports failed states with 2.
EXIT_PARTIAL_FAILURE = 2
EXIT_KILLED = -1


class ExitClass(enum.Enum):
    SUCCESS = "success"
    EXECUTION_ERROR = "execution_error"
    PARTIAL_FAILURE = "partial_failure"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class StateOutcome:
    id: str
    name: str = ""
    sls: str = ""
    run_number: int = 0
    result: Optional[bool] = None
    comment: str = ""
    duration_ms: float = 0.0
    start_time: str = ""
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionResult:
    exit_class: ExitClass
    exit_code: int
    outcomes: Tuple[StateOutcome, ...] = ()
    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    first_failure: Optional[StateOutcome] = None
    errors: Tuple[str, ...] = ()
    raw_output: str = ""
    unexpected: bool = False


def _duration(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = re.match(r"\s*([\d.]+)", value)
        if m:
            return float(m.group(1))
    return 0.0


def _outcome(key: str, raw: Dict[str, Any]) -> StateOutcome:
    warnings = raw.get("warnings") or ()
    if isinstance(warnings, str):
        warnings = (warnings,)
    result = raw.get("result")
    comment = raw.get("comment")
    if isinstance(comment, list):
        comment = "\n".join(str(c) for c in comment)
    return StateOutcome(
        id=str(raw.get("__id__") or key),
        name=str(raw.get("name") or ""),
        sls=str(raw.get("__sls__") or ""),
        run_number=int(raw.get("__run_num__") or 0),
        result=result if isinstance(result, bool) else None,
        comment=str(comment or ""),
        duration_ms=_duration(raw.get("duration")),
        start_time=str(raw.get("start_time") or ""),
        warnings=tuple(str(w) for w in warnings),
    )


def parse_local_results(stdout: str) -> List[StateOutcome]:
    """Parse ``{local: {<state id>: {...}}}`` into outcomes sorted by run order."""

    try:
        doc = yaml.safe_load(stdout)
    except yaml.YAMLError as e:
        raise ExecutionError(f"unable to parse salt results: {e}") from e

    local = doc.get("local") if isinstance(doc, dict) else None
    if not isinstance(local, dict):
        raise ExecutionError("unable to parse salt results: missing 'local' mapping")

    outcomes = [_outcome(str(k), v) for k, v in local.items() if isinstance(v, dict)]
    outcomes.sort(key=lambda o: o.run_number)
    return outcomes


def _parse_errors(stdout: str) -> Tuple[str, ...]:
    try:
        doc = yaml.safe_load(stdout)
    except yaml.YAMLError:
        logger.debug("Error output is not yaml")
        return ()
    local = doc.get("local") if isinstance(doc, dict) else None
    if isinstance(local, list):
        return tuple(str(x) for x in local)
    if isinstance(local, str):
        return (local,)
    return ()


def classify(exit_code: int, stdout: str) -> ExecutionResult:
    if exit_code < 0:
        return ExecutionResult(ExitClass.TERMINATED, exit_code, raw_output=stdout)

    if exit_code in (EXIT_SUCCESS, EXIT_PARTIAL_FAILURE):
        outcomes = parse_local_results(stdout)
        success = sum(1 for o in outcomes if o.result is True)
        failed = [o for o in outcomes if o.result is False]
        return ExecutionResult(
            ExitClass.SUCCESS if exit_code == EXIT_SUCCESS else ExitClass.PARTIAL_FAILURE,
            exit_code,
            outcomes=tuple(outcomes),
            total_count=len(outcomes),
            success_count=success,
            failed_count=len(failed),
            first_failure=failed[0] if failed else None,
            raw_output=stdout,
        )

    return ExecutionResult(
        ExitClass.EXECUTION_ERROR,
        exit_code,
        errors=_parse_errors(stdout),
        raw_output=stdout,
        unexpected=exit_code != EXIT_ERROR,
    )


def log_summary(result: ExecutionResult) -> None:
    if result.exit_class is ExitClass.TERMINATED:
        logger.error("salt-call was terminated before it finished")
        return
    if result.exit_class is ExitClass.EXECUTION_ERROR:
        for err in result.errors:
            logger.error("salt-call error: %s", err)
        if not result.errors and result.raw_output.strip():
            logger.error("salt-call output: %s", result.raw_output.strip())
        return

    if result.first_failure is not None:
        ff = result.first_failure
        logger.error(
            "First failed state: id=%s sls=%s run_num=%s comment=%s",
            ff.id,
            ff.sls,
            ff.run_number,
            " ".join(ff.comment.split()),
        )
    logger.info(
        "Statistics: total=%d success=%d failure=%d",
        result.total_count,
        result.success_count,
        result.failed_count,
    )


def raise_for_result(result: ExecutionResult) -> None:
    if result.exit_class is ExitClass.SUCCESS:
        return
    if result.exit_class is ExitClass.PARTIAL_FAILURE:
        raise PartialFailureError(
            f"{result.failed_count} of {result.total_count} states failed", result
        )
    if result.exit_class is ExitClass.TERMINATED:
        raise TerminatedError("salt-call was terminated", result)
    if result.unexpected:
        raise UnexpectedExitError(f"salt-call exited with unexpected code {result.exit_code}", result)
    raise ExecutionError("salt-call execution error", result)

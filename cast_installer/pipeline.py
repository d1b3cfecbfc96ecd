from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .config import InstallConfig
from .errors import OperationCancelled
from .lib.cache import Cache
from .lib.github import GitHubClient
from .lib.registry import DistroRegistry
from .state_store import InstallationStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallCtx:
    """Everything a step needs that does not change during a run."""

    cfg: InstallConfig
    registry: DistroRegistry
    cancel: threading.Event
    cache: Cache
    store: InstallationStateStore
    client: Optional[GitHubClient] = None


class Step(Protocol):
    """A single pipeline step; it reads and returns the run state dict."""

    step_id: str

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]


def run_pipeline(
    ctx: InstallCtx,
    *,
    steps: Sequence[Step],
    state: Optional[Dict[str, Any]] = None,
) -> PipelineResult:
    """Run steps in order; the first failing step aborts the run."""

    state = state if state is not None else {}
    ran: List[str] = []

    for step in steps:
        if ctx.cancel.is_set():
            raise OperationCancelled(f"cancelled before step {step.step_id}")
        state["current_step"] = step.step_id
        logger.info("Running step %s", step.step_id)
        state = step.run(ctx, state)
        ran.append(step.step_id)

    state["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran)

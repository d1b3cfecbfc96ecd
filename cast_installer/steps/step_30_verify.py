from __future__ import annotations

import logging
from typing import Any, Dict

from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class VerifyStep:
    step_id = "30_verify"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        state["distro"].verify(state["distro_dir"])
        logger.info("Distro verified successfully")
        return state

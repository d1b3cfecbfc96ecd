from __future__ import annotations

import logging
from typing import Any, Dict

from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class ExtractStep:
    step_id = "40_extract"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        distro = state["distro"]
        distro.extract(state["distro_dir"])
        state["source_dir"] = state["distro_dir"] / distro.source_path
        logger.info("Distro extracted to %s", state["source_dir"])
        return state

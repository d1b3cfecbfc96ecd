from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..lib.salt_results import raise_for_result
from ..lib.salt_runner import SaltRunner
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class ApplyStatesStep:
    step_id = "60_apply_states"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        distro = state["distro"]

        salt_state = cfg.saltstack_state
        if salt_state:
            logger.info("Installing using state: %s", salt_state)
        else:
            logger.info("Installing using mode: %s", state.get("mode") or "default")
            salt_state = distro.get_mode_state(state.get("mode"))

        file_root = Path(cfg.saltstack_file_root) if cfg.saltstack_file_root else state["distro_dir"] / "source"

        runner = SaltRunner(
            binary=state["salt_binary"],
            config_dir=state["salt_config_dir"],
            file_root=file_root,
            state=salt_state,
            log_file=state["log_file"],
            results_file=state["results_file"],
            log_level=cfg.saltstack_log_level,
            pillars=distro.pillars,
            test=cfg.saltstack_test,
        )
        result = runner.run(ctx.cancel)
        state["result"] = result
        raise_for_result(result)
        logger.info("salt-call completed successfully")
        return state

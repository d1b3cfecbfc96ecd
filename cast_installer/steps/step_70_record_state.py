from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import PersistenceError
from ..pipeline import InstallCtx
from ..state_store import InstallRecord

logger = logging.getLogger(__name__)


class RecordStateStep:
    step_id = "70_record_state"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        ctx.store.set(
            cfg.distro_key,
            InstallRecord(distro_name=cfg.distro, version=cfg.version or "", mode=state.get("mode")),
        )
        try:
            ctx.store.save()
        except PersistenceError as e:
            logger.warning("Failed to save installation state: %s", e)
        return state

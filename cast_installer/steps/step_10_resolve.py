from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.distro import new_distro
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class ResolveDistroStep:
    step_id = "10_resolve"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg

        # An explicit --mode wins; otherwise reuse the mode of the last install.
        mode = cfg.mode
        if mode is None:
            saved = ctx.store.get(cfg.distro_key)
            if saved is not None and saved.mode:
                mode = saved.mode
                logger.info("Using saved mode from previous installation: %s", mode)
        state["mode"] = mode

        logger.debug("Detected distro information (name=%s, version=%s)", cfg.distro, cfg.version)
        distro = new_distro(
            cfg.kind,
            cfg.distro,
            version=cfg.version,
            include_prereleases=cfg.pre_release,
            template_data=cfg.template_data(),
            registry=ctx.registry,
            client=ctx.client,
            skip_os_check=cfg.no_os_check,
        )
        state["distro"] = distro
        logger.info("Distro validated successfully (%s %s)", distro.name, distro.release_name)
        return state

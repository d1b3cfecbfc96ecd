from __future__ import annotations

import logging
from typing import Any, Dict

from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)


class DownloadStep:
    step_id = "20_download"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        distro = state["distro"]
        distro_cache = ctx.cache.subpath(distro.cache_path)
        logger.debug("Distro cache path %s", distro_cache.path)

        distro.download(distro_cache.path)
        state["distro_dir"] = distro_cache.path
        logger.info("Distro downloaded successfully")
        return state

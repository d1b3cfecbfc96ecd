from __future__ import annotations

import logging
import os
from typing import Any, Dict

from ..errors import ConfigError
from ..lib.pkg import ensure_salt_call
from ..pipeline import InstallCtx

logger = logging.getLogger(__name__)

MINION_CONFIG = "enable_fqdns_grains: False\n"


def check_user(*, user: str, skip: bool) -> None:
    if skip:
        logger.info("Skipping root check")
        return
    if os.geteuid() != 0:
        raise ConfigError("install must be run as root (or pass --no-root-check)")
    if not user and not os.environ.get("SUDO_USER"):
        raise ConfigError("--user was not provided, or install was not ran with sudo")


class PrepareSaltStep:
    step_id = "50_prepare_salt"

    def run(self, ctx: InstallCtx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        logger.info("Checking if install can progress")
        check_user(user=cfg.user, skip=cfg.no_root_check)

        installer = ctx.cache.subpath("installer")
        salt_dir = installer.subpath("salt").path
        logs_dir = installer.subpath("logs").path
        try:
            (salt_dir / "minion").write_text(MINION_CONFIG, encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"unable to write minion config: {e}") from e

        state["salt_config_dir"] = salt_dir
        state["log_file"] = logs_dir / "saltstack.log"
        state["results_file"] = logs_dir / "results.yaml"
        state["salt_binary"] = ensure_salt_call(install=not cfg.no_dependency_install)
        logger.info("Installing as user: %s", cfg.user or os.environ.get("SUDO_USER", ""))
        return state

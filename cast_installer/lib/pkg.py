from __future__ import annotations

import logging
import shutil
from typing import Optional

from ..errors import ConfigError
from .command import run_cmd
from .sysinfo import OSInfo, get_os_info

logger = logging.getLogger(__name__)

SALT_BINARIES = ("salt-call", "salt")
APT_VENDORS = {"ubuntu", "debian"}
SALT_PACKAGES = ["salt-common"]


def find_salt_binary() -> Optional[str]:
    for name in SALT_BINARIES:
        path = shutil.which(name)
        if path:
            return path
    return None


def apt_install(packages: list[str]) -> None:
    if not packages:
        return
    env = {"DEBIAN_FRONTEND": "noninteractive"}
    run_cmd(["apt-get", "update"], env=env)
    run_cmd(["apt-get", "install", "-y", "--no-install-recommends", *packages], env=env)


def ensure_salt_call(*, install: bool = True, os_info: Optional[OSInfo] = None) -> str:
    """Return the salt-call path, installing it with apt when allowed.

    The repository setup for salt itself is left to the host; we only pull
    the packaged ``salt-common`` when nothing is on PATH.
    """

    found = find_salt_binary()
    if found:
        logger.info("Using salt binary %s", found)
        return found

    if not install:
        raise ConfigError("salt-call not found and dependency installation is disabled")

    host = os_info or get_os_info()
    if host.vendor.lower() not in APT_VENDORS:
        raise ConfigError(f"unable to install salt automatically on {host.vendor or 'unknown OS'}")

    logger.info("Installing salt dependencies: %s", ", ".join(SALT_PACKAGES))
    apt_install(SALT_PACKAGES)

    found = find_salt_binary()
    if not found:
        raise ConfigError("salt-call still not found after installing dependencies")
    return found

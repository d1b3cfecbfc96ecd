from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_CENTOS_RE = re.compile(r"^CentOS( Linux)? release ([\d.]+) ")
_REDHAT_RE = re.compile(r"[( ]([\d.]+)")


@dataclass(frozen=True)
class OSInfo:
    vendor: str = ""
    release: str = ""
    codename: str = ""


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def _unquote(value: str) -> str:
    return value.strip().strip('"').strip("'")


def parse_os_release(text: str) -> dict:
    fields = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        fields[key.strip()] = _unquote(value)
    return fields


def get_os_info(root: Path = Path("/")) -> OSInfo:
    """Collect host OS identity (best-effort).

    ``root`` lets tests point the probe at a fake filesystem.
    """

    fields = parse_os_release(_read_text(root / "etc/os-release") or "")

    vendor = fields.get("ID", "")
    release = fields.get("VERSION_ID", "")
    codename = fields.get("VERSION_CODENAME", "")

    if vendor == "debian":
        release = _read_text(root / "etc/debian_version") or release
    elif vendor == "centos":
        txt = _read_text(root / "etc/centos-release")
        m = _CENTOS_RE.match(txt or "")
        if m:
            release = m.group(2)
    elif vendor == "rhel":
        txt = _read_text(root / "etc/redhat-release")
        m = _REDHAT_RE.search(txt or "") or _REDHAT_RE.search(fields.get("PRETTY_NAME", ""))
        if m:
            release = m.group(1)

    info = OSInfo(vendor=vendor, release=release, codename=codename)
    logger.debug("Host OS: vendor=%s release=%s codename=%s", info.vendor, info.release, info.codename)
    return info

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "~/.config/cast/state.yaml"


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext == "json":
        return "json"
    # YAML unless the file explicitly asks for JSON.
    return "yaml"


@dataclass(frozen=True)
class InstallRecord:
    distro_name: str
    version: str
    mode: Optional[str] = None


def _record_from_dict(data: Dict[str, Any]) -> InstallRecord:
    return InstallRecord(
        distro_name=str(data.get("distro_name") or ""),
        version=str(data.get("version") or ""),
        mode=data.get("mode") or None,
    )


class InstallationStateStore:
    """Remembers which distro/version/mode was last installed, per distro."""

    def __init__(self, path: str | Path = DEFAULT_STATE_PATH) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self._installations: Dict[str, InstallRecord] = {}

    def load(self) -> None:
        with self._lock:
            self._installations = {}
            if not self.path.exists():
                return
            try:
                text = self.path.read_text(encoding="utf-8")
                if _detect_format(self.path) == "json":
                    data = json.loads(text) if text.strip() else {}
                else:
                    data = yaml.safe_load(text) or {}
                if not isinstance(data, dict):
                    raise ValueError(f"state file must be a mapping, got {type(data).__name__}")
                raw = data.get("installations") or {}
                if not isinstance(raw, dict):
                    raise ValueError("'installations' must be a mapping")
                self._installations = {
                    str(k): _record_from_dict(v) for k, v in raw.items() if isinstance(v, dict)
                }
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
                self._installations = {}

    def save(self) -> None:
        with self._lock:
            state = {"installations": {k: asdict(v) for k, v in sorted(self._installations.items())}}
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                if _detect_format(self.path) == "json":
                    self.path.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
                else:
                    self.path.write_text(yaml.safe_dump(state, sort_keys=False), encoding="utf-8")
            except OSError as e:
                raise PersistenceError(f"unable to save state to {self.path}: {e}") from e

    def get(self, key: str) -> Optional[InstallRecord]:
        with self._lock:
            return self._installations.get(key)

    def set(self, key: str, record: InstallRecord) -> None:
        with self._lock:
            self._installations[key] = record

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import ConfigError


@dataclass(frozen=True)
class Cache:
    path: Path

    @classmethod
    def create(cls, path: str | Path) -> "Cache":
        p = Path(path).expanduser()
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"unable to create cache directory {p}: {e}") from e
        return cls(path=p)

    def subpath(self, rel: str | Path) -> "Cache":
        return Cache.create(self.path / rel)

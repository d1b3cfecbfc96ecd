from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from ..errors import ConfigError
from .manifests import Manifest, Mode, OSConstraint


@dataclass(frozen=True)
class DistroAlias:
    owner: str
    repo: str
    alias: str


@dataclass
class DistroRegistry:
    """Known distro aliases, their fallback manifests and the v1 signing key.

    Built once at startup and handed to the resolver.
    """

    aliases: Dict[str, DistroAlias] = field(default_factory=dict)
    manifests: Dict[str, Manifest] = field(default_factory=dict)
    pgp_public_key: Optional[str] = None

    def lookup(self, identifier: str) -> Optional[DistroAlias]:
        return self.aliases.get(identifier)

    def fallback_manifest(self, alias: str) -> Optional[Manifest]:
        return self.manifests.get(alias)

    def register(self, alias: DistroAlias, *names: str, manifest: Optional[Manifest] = None) -> None:
        for n in (alias.alias, f"{alias.owner}/{alias.repo}", *names):
            self.aliases[n] = alias
        if manifest is not None:
            self.manifests[alias.alias] = manifest


SIFT_MANIFEST = Manifest(
    version=1,
    modes=[
        Mode(name="desktop", state="sift.desktop"),
        Mode(name="server", state="sift.server", default=True),
        Mode(name="complete", state="sift.desktop", deprecated=True, replacement="desktop"),
        Mode(name="packages-only", state="sift.server", deprecated=True, replacement="server"),
    ],
    supported_os=[OSConstraint(id="ubuntu", release="20.04", codename="focal")],
)

REMNUX_MANIFEST = Manifest(
    version=1,
    modes=[
        Mode(name="dedicated", state="remnux.dedicated", default=True),
        Mode(name="addon", state="remnux.addon"),
        Mode(name="cloud", state="remnux.cloud"),
    ],
)


def default_registry(pgp_key_file: Optional[str] = None) -> DistroRegistry:
    reg = DistroRegistry()
    reg.register(DistroAlias(owner="teamdfir", repo="sift-saltstack", alias="sift"), manifest=SIFT_MANIFEST)
    reg.register(DistroAlias(owner="remnux", repo="salt-states", alias="remnux"), manifest=REMNUX_MANIFEST)
    if pgp_key_file:
        try:
            reg.pgp_public_key = Path(pgp_key_file).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"unable to read pgp public key {pgp_key_file}: {e}") from e
    return reg

from __future__ import annotations

import enum
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import yaml

from ..errors import (
    DistroFormatError,
    ExtractionError,
    ManifestError,
    ManifestNotFoundError,
    NoReleasesError,
    UnsupportedOSError,
    VersionNotFoundError,
)
from .archive import extract_tarball
from .github import GitHubClient, ReleaseDescriptor
from .manifests import Manifest, manifest_from_dict, parse_manifest
from .registry import DistroRegistry
from .sysinfo import OSInfo, get_os_info
from .verify import verify_release

logger = logging.getLogger(__name__)

MANIFEST_ASSET = "manifest.yml"
LOCAL_CONFIG_FILE = ".cast.yml"


class DistroKind(enum.Enum):
    GITHUB = "github"
    LOCAL = "local"


class Distro(Protocol):
    """What the install pipeline needs from a distro, wherever it comes from."""

    manifest: Manifest

    @property
    def name(self) -> str: ...

    @property
    def release_name(self) -> str: ...

    @property
    def cache_path(self) -> str: ...

    @property
    def source_path(self) -> str: ...

    @property
    def pillars(self) -> Dict[str, str]: ...

    @property
    def success_message(self) -> str: ...

    @property
    def failure_message(self) -> str: ...

    def get_mode_state(self, mode: Optional[str]) -> str: ...

    def download(self, dir: Path) -> None: ...

    def verify(self, dir: Path) -> None: ...

    def extract(self, dir: Path) -> None: ...


def parse_identifier(identifier: str, registry: DistroRegistry) -> Tuple[str, str, Optional[str]]:
    """Return ``(owner, repo, alias)`` for an alias or a literal ``owner/repo``."""

    alias = registry.lookup(identifier)
    if alias is not None:
        return alias.owner, alias.repo, alias.alias

    parts = identifier.split("/")
    if len(parts) != 2 or not all(parts):
        raise DistroFormatError("incorrect distro format, expect owner/repo")
    return parts[0], parts[1], None


def select_release(
    releases: list, version: Optional[str], include_prereleases: bool
) -> ReleaseDescriptor:
    candidates = [r for r in releases if include_prereleases or not r.is_prerelease]
    if not candidates:
        logger.error("Repository has no releases")
        raise NoReleasesError("repository has no releases")

    # Newest first; the sort is stable so API order breaks ties.
    candidates = sorted(candidates, key=lambda r: r.created_at, reverse=True)

    if version:
        for r in candidates:
            if r.tag == version:
                return r
        logger.error("Unable to find release %s", version)
        raise VersionNotFoundError(f"unable to find release: {version}")
    return candidates[0]


def check_os_support(manifest: Manifest, host: OSInfo) -> None:
    if not manifest.supported_os:
        return
    logger.info("Checking operating system support")
    if not manifest.is_supported(host):
        raise UnsupportedOSError(
            f"operating system is not supported ({host.vendor} {host.release} {host.codename})".strip()
        )
    logger.info("Operating system is supported")


def resolve(
    identifier: str,
    version: Optional[str],
    include_prereleases: bool,
    client: GitHubClient,
    template_data: Mapping[str, Any],
    *,
    registry: DistroRegistry,
    skip_os_check: bool = False,
    os_info: Optional[OSInfo] = None,
) -> Tuple[ReleaseDescriptor, Manifest]:
    """Turn a distro identifier into a selected release and its rendered manifest."""

    owner, repo, alias = parse_identifier(identifier, registry)

    release = select_release(client.list_releases(owner, repo), version, include_prereleases)
    logger.info("Selected release %s/%s %s", owner, repo, release.tag)

    manifest: Optional[Manifest] = None
    asset = release.find_asset(MANIFEST_ASSET)
    if asset is not None:
        manifest = parse_manifest(client.fetch_asset_bytes(owner, repo, asset.id))
    elif alias is not None:
        manifest = registry.fallback_manifest(alias)
        if manifest is None:
            raise ManifestNotFoundError(f"unable to resolve a manifest for: {owner}_{repo}")
    else:
        raise ManifestNotFoundError("no manifest found for release")

    if not skip_os_check:
        check_os_support(manifest, os_info or get_os_info())

    data = dict(template_data)
    data.setdefault("Version", version or release.tag)
    logger.info("Rendering manifest")
    return release, manifest.render(data)


def source_subdir(manifest: Manifest) -> str:
    return os.path.join("source", manifest.name) if manifest.name else "source"


class GitHubDistro:
    def __init__(
        self,
        release: ReleaseDescriptor,
        manifest: Manifest,
        client: GitHubClient,
        *,
        pgp_public_key: Optional[str] = None,
    ) -> None:
        self.release = release
        self.manifest = manifest
        self.client = client
        self.pgp_public_key = pgp_public_key
        self.archive_path: Optional[Path] = None

    @property
    def name(self) -> str:
        return f"{self.release.owner}_{self.release.repo}"

    @property
    def release_name(self) -> str:
        return self.release.tag

    @property
    def cache_path(self) -> str:
        return os.path.join(self.name, self.release_name)

    @property
    def source_path(self) -> str:
        return source_subdir(self.manifest)

    @property
    def pillars(self) -> Dict[str, str]:
        return dict(self.manifest.pillars)

    @property
    def success_message(self) -> str:
        return self.manifest.success_message

    @property
    def failure_message(self) -> str:
        return self.manifest.failure_message

    def get_mode_state(self, mode: Optional[str]) -> str:
        return self.manifest.get_mode_state(mode)

    def _archive_source(self) -> Tuple[str, str]:
        r = self.release
        if self.manifest.version == 1:
            name = f"{r.repo}-{r.tag}.tar.gz"
            if r.owner == "remnux" and r.repo == "salt-states":
                name = f"{r.owner}-{r.repo}-{r.tag}.tar.gz"
            return f"https://github.com/{r.owner}/{r.repo}/archive/{r.tag}.tar.gz", name
        return r.tarball_url, f"{r.tag}.tar.gz"

    def download(self, dir: Path) -> None:
        url, default_name = self._archive_source()
        logger.debug("Tarball url %s", url)
        logger.info("Downloading archive file (version=%s)", self.release_name)
        self.archive_path = self.client.download(url, Path(dir), default_name=default_name)

        for asset in self.release.assets:
            self.client.download_asset(self.release, asset, Path(dir))

    def verify(self, dir: Path) -> None:
        archive_name = self.archive_path.name if self.archive_path else self._archive_source()[1]
        verify_release(
            self.release,
            self.manifest.version,
            Path(dir),
            archive_name=archive_name,
            pgp_public_key=self.pgp_public_key,
        )

    def extract(self, dir: Path) -> None:
        if self.archive_path is None:
            raise ExtractionError("archive has not been downloaded")
        dst = Path(dir) / self.source_path
        logger.info("Extracting archive file (version=%s)", self.release_name)
        extract_tarball(self.archive_path, dst, self.manifest.base_dir or None)


def load_local_manifest(distro_dir: Path) -> Manifest:
    path = Path(distro_dir) / LOCAL_CONFIG_FILE
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ManifestNotFoundError(f"unable to read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ManifestError(f"unable to parse {path}: {e}") from e
    if not isinstance(raw, dict) or not isinstance(raw.get("manifest"), dict):
        raise ManifestNotFoundError(f"{path} has no manifest section")
    return manifest_from_dict(raw["manifest"])


def resolve_local(
    distro_dir: Path,
    template_data: Mapping[str, Any],
    *,
    version: Optional[str] = None,
    skip_os_check: bool = False,
    os_info: Optional[OSInfo] = None,
) -> Manifest:
    manifest = load_local_manifest(distro_dir)
    if not skip_os_check:
        check_os_support(manifest, os_info or get_os_info())
    data = dict(template_data)
    data.setdefault("Version", version or "local")
    logger.info("Rendering manifest")
    return manifest.render(data)


class LocalDistro:
    def __init__(self, distro_dir: Path, manifest: Manifest) -> None:
        self.dir = Path(distro_dir).resolve()
        self.manifest = manifest

    @property
    def name(self) -> str:
        return f"local_{self.dir.name}"

    @property
    def release_name(self) -> str:
        return "local"

    @property
    def cache_path(self) -> str:
        return os.path.join(self.name, self.release_name)

    @property
    def source_path(self) -> str:
        return source_subdir(self.manifest)

    @property
    def pillars(self) -> Dict[str, str]:
        return dict(self.manifest.pillars)

    @property
    def success_message(self) -> str:
        return self.manifest.success_message

    @property
    def failure_message(self) -> str:
        return self.manifest.failure_message

    def get_mode_state(self, mode: Optional[str]) -> str:
        return self.manifest.get_mode_state(mode)

    def download(self, dir: Path) -> None:
        logger.debug("Local distro %s needs no download", self.dir)

    def verify(self, dir: Path) -> None:
        logger.debug("Local distro %s needs no verification", self.dir)

    def extract(self, dir: Path) -> None:
        src = self.dir / self.manifest.base_dir if self.manifest.base_dir else self.dir
        dst = Path(dir) / self.source_path
        logger.info("Copying local distro %s -> %s", src, dst)
        try:
            shutil.copytree(src, dst, dirs_exist_ok=True, symlinks=True, ignore=shutil.ignore_patterns(".git"))
        except (OSError, shutil.Error) as e:
            raise ExtractionError(f"unable to copy local distro {src}: {e}") from e


def new_distro(
    kind: DistroKind,
    identifier: str,
    *,
    version: Optional[str],
    include_prereleases: bool,
    template_data: Mapping[str, Any],
    registry: DistroRegistry,
    client: Optional[GitHubClient] = None,
    skip_os_check: bool = False,
    os_info: Optional[OSInfo] = None,
) -> Distro:
    if kind is DistroKind.LOCAL:
        manifest = resolve_local(
            Path(identifier), template_data, version=version, skip_os_check=skip_os_check, os_info=os_info
        )
        return LocalDistro(Path(identifier), manifest)

    if client is None:
        raise ValueError("a GitHubClient is required for github distros")
    release, manifest = resolve(
        identifier,
        version,
        include_prereleases,
        client,
        template_data,
        registry=registry,
        skip_os_check=skip_os_check,
        os_info=os_info,
    )
    return GitHubDistro(release, manifest, client, pgp_public_key=registry.pgp_public_key)

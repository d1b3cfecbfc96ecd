from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from email.message import Message
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests

from ..errors import DownloadError, OperationCancelled, ResolutionError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = (10.0, 60.0)
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ReleaseAsset:
    name: str
    id: int
    size: int = 0


@dataclass(frozen=True)
class ReleaseDescriptor:
    owner: str
    repo: str
    tag: str
    is_prerelease: bool = False
    assets: Tuple[ReleaseAsset, ...] = field(default_factory=tuple)
    tarball_url: str = ""
    created_at: str = ""

    def find_asset(self, name: str) -> Optional[ReleaseAsset]:
        for a in self.assets:
            if a.name == name:
                return a
        return None


def release_from_api(owner: str, repo: str, raw: Mapping[str, Any]) -> ReleaseDescriptor:
    assets = tuple(
        ReleaseAsset(name=str(a.get("name") or ""), id=int(a.get("id") or 0), size=int(a.get("size") or 0))
        for a in (raw.get("assets") or [])
    )
    return ReleaseDescriptor(
        owner=owner,
        repo=repo,
        tag=str(raw.get("tag_name") or ""),
        is_prerelease=bool(raw.get("prerelease", False)),
        assets=assets,
        tarball_url=str(raw.get("tarball_url") or ""),
        created_at=str(raw.get("created_at") or ""),
    )


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    msg = Message()
    msg["content-disposition"] = header
    name = msg.get_filename()
    if not name:
        return None
    return os.path.basename(name)


class GitHubClient:
    """Minimal release-hosting API client.

    All requests go through one ``requests.Session`` (which honours the usual
    proxy environment variables). Streaming downloads check ``cancel`` between
    chunks so a fired cancellation aborts the transfer.
    """

    def __init__(
        self,
        *,
        token: str = "",
        api_url: str = DEFAULT_API_URL,
        session: Optional[requests.Session] = None,
        cancel: Optional[threading.Event] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.cancel = cancel or threading.Event()
        self.timeout = timeout
        self.token = token
        if token:
            logger.debug("Using authenticated github client")
        else:
            logger.warning("Using unauthenticated github client, could result in API rate limiting")

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = {"User-Agent": "cast-installer"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        headers.update(extra or {})
        return headers

    def _check_cancel(self) -> None:
        if self.cancel.is_set():
            raise OperationCancelled("operation cancelled")

    def _get(self, url: str, *, headers: Optional[Mapping[str, str]] = None, stream: bool = False, **kw: Any):
        self._check_cancel()
        try:
            resp = self.session.get(url, headers=self._headers(headers), stream=stream, timeout=self.timeout, **kw)
        except requests.RequestException as e:
            raise DownloadError(f"request to {url} failed: {e}") from e
        if resp.status_code > 399:
            resp.close()
            raise DownloadError(f"received error code {resp.status_code} attempting to download {url}")
        return resp

    def asset_url(self, owner: str, repo: str, asset_id: int) -> str:
        return f"{self.api_url}/repos/{owner}/{repo}/releases/assets/{asset_id}"

    def list_releases(self, owner: str, repo: str) -> List[ReleaseDescriptor]:
        logger.debug("Fetching releases for %s/%s", owner, repo)
        url = f"{self.api_url}/repos/{owner}/{repo}/releases"
        try:
            resp = self._get(url, headers={"Accept": "application/vnd.github+json"}, params={"per_page": 100})
        except DownloadError as e:
            logger.error("Error listing releases from github: %s", e)
            raise ResolutionError(f"unable to list releases for {owner}/{repo}: {e}") from e
        try:
            data = resp.json()
        except ValueError as e:
            raise ResolutionError(f"invalid releases payload for {owner}/{repo}: {e}") from e
        if not isinstance(data, list):
            raise ResolutionError(f"unexpected releases payload for {owner}/{repo}")
        return [release_from_api(owner, repo, r) for r in data]

    def fetch_asset_bytes(self, owner: str, repo: str, asset_id: int) -> bytes:
        url = self.asset_url(owner, repo, asset_id)
        resp = self._get(url, headers={"Accept": "application/octet-stream"}, stream=True)
        chunks: List[bytes] = []
        with resp:
            try:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    self._check_cancel()
                    chunks.append(chunk)
            except requests.RequestException as e:
                raise DownloadError(f"download of {url} failed: {e}") from e
        return b"".join(chunks)

    def download(
        self,
        url: str,
        dest_dir: Path,
        *,
        default_name: str,
        headers: Optional[Mapping[str, str]] = None,
        use_disposition: bool = True,
    ) -> Path:
        """Stream ``url`` into ``dest_dir`` and return the written path."""

        resp = self._get(url, headers=headers, stream=True)
        with resp:
            name = default_name
            if use_disposition:
                name = filename_from_disposition(resp.headers.get("content-disposition")) or default_name
            dst = Path(dest_dir) / name
            logger.debug("Writing %s -> %s", url, dst)
            try:
                with open(dst, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        self._check_cancel()
                        if chunk:
                            f.write(chunk)
            except requests.RequestException as e:
                raise DownloadError(f"download of {url} failed: {e}") from e
            except OSError as e:
                raise DownloadError(f"unable to write {dst}: {e}") from e
        return dst

    def download_asset(self, release: ReleaseDescriptor, asset: ReleaseAsset, dest_dir: Path) -> Path:
        logger.info("Downloading release file %s", asset.name)
        return self.download(
            self.asset_url(release.owner, release.repo, asset.id),
            dest_dir,
            default_name=asset.name,
            headers={"Accept": "application/octet-stream"},
            use_disposition=False,
        )

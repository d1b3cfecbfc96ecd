"""
Tests for the release API client.
"""

import threading
from pathlib import Path

import pytest
import requests

from conftest import FakeResponse, FakeSession
from cast_installer.errors import DownloadError, OperationCancelled, ResolutionError
from cast_installer.lib.github import GitHubClient, ReleaseAsset, ReleaseDescriptor, filename_from_disposition

API = "https://api.github.com"


def test_filename_from_disposition():
    assert filename_from_disposition('attachment; filename="x-1.tar.gz"') == "x-1.tar.gz"
    assert filename_from_disposition("attachment; filename=../../evil") == "evil"
    assert filename_from_disposition(None) is None
    assert filename_from_disposition("inline") is None


def test_list_releases_parses_payload():
    payload = [
        {
            "tag_name": "v1",
            "prerelease": False,
            "created_at": "2024-01-01T00:00:00Z",
            "tarball_url": f"{API}/repos/o/r/tarball/v1",
            "assets": [{"name": "manifest.yml", "id": 5, "size": 10}],
        }
    ]
    session = FakeSession({f"{API}/repos/o/r/releases": FakeResponse(json_data=payload)})
    releases = GitHubClient(session=session).list_releases("o", "r")
    assert releases[0].tag == "v1"
    assert releases[0].find_asset("manifest.yml") == ReleaseAsset("manifest.yml", 5, 10)
    assert session.calls[0]["params"] == {"per_page": 100}
    assert "Authorization" not in session.calls[0]["headers"]


def test_list_releases_http_error():
    with pytest.raises(ResolutionError):
        GitHubClient(session=FakeSession()).list_releases("o", "r")


def test_download_prefers_content_disposition(tmp_path: Path):
    url = f"{API}/repos/o/r/tarball/v1"
    resp = FakeResponse(b"x" * 200_000, headers={"content-disposition": "attachment; filename=o-r-abc.tar.gz"})
    client = GitHubClient(session=FakeSession({url: resp}))
    path = client.download(url, tmp_path, default_name="v1.tar.gz")
    assert path == tmp_path / "o-r-abc.tar.gz"
    assert path.stat().st_size == 200_000
    assert resp.closed


def test_download_asset_uses_asset_name(tmp_path: Path):
    release = ReleaseDescriptor("o", "r", "v1")
    url = f"{API}/repos/o/r/releases/assets/3"
    session = FakeSession({url: FakeResponse(b"sum", headers={"content-disposition": "attachment; filename=other"})})
    path = GitHubClient(session=session).download_asset(release, ReleaseAsset("x.sha256", 3), tmp_path)
    assert path.name == "x.sha256"
    assert session.calls[0]["headers"]["Accept"] == "application/octet-stream"


def test_download_404(tmp_path: Path):
    with pytest.raises(DownloadError, match="404"):
        GitHubClient(session=FakeSession()).download(f"{API}/missing", tmp_path, default_name="x")


def test_connection_error_is_download_error(tmp_path: Path):
    class Broken(FakeSession):
        def get(self, *a, **kw):
            raise requests.ConnectionError("no route")

    with pytest.raises(DownloadError):
        GitHubClient(session=Broken()).download(f"{API}/x", tmp_path, default_name="x")


def test_cancelled_before_request(tmp_path: Path):
    cancel = threading.Event()
    cancel.set()
    session = FakeSession()
    with pytest.raises(OperationCancelled):
        GitHubClient(session=session, cancel=cancel).download(f"{API}/x", tmp_path, default_name="x")
    assert session.calls == []


def test_cancelled_mid_download(tmp_path: Path):
    cancel = threading.Event()

    class Cancelling(FakeResponse):
        def iter_content(self, chunk_size=1):
            yield b"first"
            cancel.set()
            yield b"second"

    url = f"{API}/x"
    client = GitHubClient(session=FakeSession({url: Cancelling()}), cancel=cancel)
    with pytest.raises(OperationCancelled):
        client.download(url, tmp_path, default_name="x")

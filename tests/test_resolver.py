"""
Tests for distro resolution: identifiers, release selection, manifest lookup.
"""

import textwrap

import pytest

from conftest import FakeResponse, FakeSession
from cast_installer.errors import (
    DistroFormatError,
    ManifestNotFoundError,
    NoReleasesError,
    UnsupportedOSError,
    VersionNotFoundError,
)
from cast_installer.lib.distro import resolve, select_release
from cast_installer.lib.github import GitHubClient, ReleaseDescriptor
from cast_installer.lib.registry import default_registry
from cast_installer.lib.sysinfo import OSInfo

API = "https://api.github.com"
JAMMY = OSInfo(vendor="ubuntu", release="22.04", codename="jammy")

MANIFEST = textwrap.dedent("""\
    version: 2
    name: demo
    modes:
      - {name: server, state: demo.server, default: true}
    supported_os:
      - {id: ubuntu, release: "22.04", codename: jammy}
    saltstack:
      pillars:
        demo_user_template: "{{ .User }}"
        demo_version_template: "{{ .Version }}"
""")


def _release(tag, *, created="2024-01-01T00:00:00Z", prerelease=False, assets=()):
    return {
        "tag_name": tag,
        "prerelease": prerelease,
        "created_at": created,
        "tarball_url": f"{API}/repos/o/r/tarball/{tag}",
        "assets": [{"name": n, "id": i, "size": 1} for i, n in assets],
    }


def _client(releases, *, owner="o", repo="r", extra=None):
    routes = {f"{API}/repos/{owner}/{repo}/releases": FakeResponse(json_data=releases)}
    routes.update(extra or {})
    session = FakeSession(routes)
    return GitHubClient(token="t0k", session=session), session


@pytest.mark.parametrize("identifier", ["", "noslash", "a/b/c", "/repo", "owner/"])
def test_malformed_identifier_makes_no_network_calls(identifier):
    client, session = _client([])
    with pytest.raises(DistroFormatError):
        resolve(identifier, None, False, client, {}, registry=default_registry(), skip_os_check=True)
    assert session.calls == []


def test_latest_non_prerelease_with_manifest_asset():
    releases = [
        _release("v3", created="2024-03-01T00:00:00Z", prerelease=True),
        _release("v2", created="2024-02-01T00:00:00Z", assets=[(7, "manifest.yml")]),
        _release("v1", created="2024-01-01T00:00:00Z"),
    ]
    client, session = _client(
        releases, extra={f"{API}/repos/o/r/releases/assets/7": FakeResponse(MANIFEST.encode())}
    )
    release, manifest = resolve("o/r", None, False, client, {"User": "bob"}, registry=default_registry(), os_info=JAMMY)

    assert release.tag == "v2"
    assert manifest.pillars == {"demo_user": "bob", "demo_version": "v2"}
    asset_call = session.calls[-1]
    assert asset_call["headers"]["Accept"] == "application/octet-stream"
    assert asset_call["headers"]["Authorization"] == "token t0k"


def test_prereleases_included_when_requested():
    releases = [
        _release("v3", created="2024-03-01T00:00:00Z", prerelease=True, assets=[(9, "manifest.yml")]),
        _release("v2", created="2024-02-01T00:00:00Z"),
    ]
    client, _ = _client(releases, extra={f"{API}/repos/o/r/releases/assets/9": FakeResponse(MANIFEST.encode())})
    release, _ = resolve("o/r", None, True, client, {"User": "u"}, registry=default_registry(), skip_os_check=True)
    assert release.tag == "v3"


def test_releases_sorted_newest_first():
    releases = [
        _release("old", created="2023-01-01T00:00:00Z"),
        _release("new", created="2024-01-01T00:00:00Z"),
    ]
    client, _ = _client(releases)
    parsed = client.list_releases("o", "r")
    assert select_release(parsed, None, False).tag == "new"


def test_equal_timestamps_keep_api_order():
    rels = [ReleaseDescriptor("o", "r", "first"), ReleaseDescriptor("o", "r", "second")]
    assert select_release(rels, None, False).tag == "first"


def test_exact_version_match():
    releases = [_release("v2", assets=[(1, "manifest.yml")]), _release("v1", assets=[(2, "manifest.yml")])]
    client, _ = _client(
        releases,
        extra={
            f"{API}/repos/o/r/releases/assets/1": FakeResponse(MANIFEST.encode()),
            f"{API}/repos/o/r/releases/assets/2": FakeResponse(MANIFEST.encode()),
        },
    )
    release, manifest = resolve("o/r", "v1", False, client, {"User": "u"}, registry=default_registry(), os_info=JAMMY)
    assert release.tag == "v1"
    assert manifest.pillars["demo_version"] == "v1"


def test_unknown_version_fails():
    client, _ = _client([_release("v1")])
    with pytest.raises(VersionNotFoundError):
        resolve("o/r", "v9", False, client, {}, registry=default_registry(), skip_os_check=True)


def test_only_prereleases_means_no_releases():
    client, _ = _client([_release("v1", prerelease=True)])
    with pytest.raises(NoReleasesError):
        resolve("o/r", None, False, client, {}, registry=default_registry(), skip_os_check=True)


def test_no_manifest_for_plain_repo():
    client, _ = _client([_release("v1")])
    with pytest.raises(ManifestNotFoundError, match="no manifest found for release"):
        resolve("o/r", None, False, client, {}, registry=default_registry(), skip_os_check=True)


def test_alias_falls_back_to_builtin_manifest():
    client, session = _client([_release("v2024.1")], owner="teamdfir", repo="sift-saltstack")
    release, manifest = resolve("sift", None, False, client, {}, registry=default_registry(), skip_os_check=True)
    assert (release.owner, release.repo) == ("teamdfir", "sift-saltstack")
    assert manifest.version == 1
    assert manifest.get_mode_state(None) == "sift.server"
    assert session.calls[0]["url"].endswith("/repos/teamdfir/sift-saltstack/releases")


def test_unsupported_os_rejected():
    client, _ = _client([_release("v1")], owner="teamdfir", repo="sift-saltstack")
    with pytest.raises(UnsupportedOSError):
        resolve("sift", None, False, client, {}, registry=default_registry(), os_info=JAMMY)


def test_supported_os_accepted():
    focal = OSInfo(vendor="ubuntu", release="20.04", codename="focal")
    client, _ = _client([_release("v1")], owner="teamdfir", repo="sift-saltstack")
    release, _ = resolve("sift", None, False, client, {}, registry=default_registry(), os_info=focal)
    assert release.tag == "v1"

"""
Shared pytest fixtures for the installer tests.

Keys are generated on the fly with ``cryptography``; HTTP goes through a fake
session and salt-call is replaced by a small script.
"""

import base64
import io
import json
import os
import stat
import struct
import sys
import tarfile
import textwrap
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519, padding, rsa, utils

from cast_installer.lib.openpgp import crc24


# --- HTTP -----------------------------------------------------------------


class FakeResponse:
    def __init__(self, body=b"", *, status_code=200, headers=None, json_data=None):
        self.body = body
        self.status_code = status_code
        self.headers = headers or {}
        self._json = json_data
        self.closed = False

    def json(self):
        if self._json is None:
            return json.loads(self.body)
        return self._json

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i : i + chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeSession:
    """Routes ``get`` calls by exact URL; unknown URLs answer 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, headers=None, stream=False, timeout=None, params=None):
        self.calls.append({"url": url, "headers": dict(headers or {}), "params": params})
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(b"not found", status_code=404)
        if callable(route):
            return route()
        return route


@pytest.fixture()
def fake_session():
    return FakeSession()


# --- archives -------------------------------------------------------------


def make_tarball(path: Path, files, *, prefix="owner-repo-abc123", mode="w:gz", symlinks=None):
    """Write a release style tarball (everything under ``prefix/``)."""

    with tarfile.open(path, mode) as tf:
        root = tarfile.TarInfo(prefix)
        root.type = tarfile.DIRTYPE
        root.mode = 0o755
        tf.addfile(root)
        for name, content in files.items():
            if isinstance(content, tuple):
                content, perm = content
            else:
                perm = 0o644
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{prefix}/{name}")
            info.size = len(data)
            info.mode = perm
            tf.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(f"{prefix}/{name}")
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tf.addfile(info)
    return path


# --- OpenPGP --------------------------------------------------------------


def _mpi(value: int) -> bytes:
    bits = value.bit_length()
    return struct.pack(">H", bits) + value.to_bytes((bits + 7) // 8, "big")


def _old_packet(tag: int, body: bytes) -> bytes:
    return bytes([0x80 | (tag << 2) | 1]) + struct.pack(">H", len(body)) + body


def armor(block_type: str, data: bytes) -> str:
    b64 = base64.b64encode(data).decode()
    lines = [b64[i : i + 64] for i in range(0, len(b64), 64)]
    crc = base64.b64encode(crc24(data).to_bytes(3, "big")).decode()
    return (
        f"-----BEGIN {block_type}-----\n"
        "Version: test\n\n" + "\n".join(lines) + f"\n={crc}\n-----END {block_type}-----\n"
    )


ED25519_OID = bytes.fromhex("2b06010401da470f01")
CREATED = struct.pack(">I", 1700000000)


class PGPKey:
    """A throwaway signing key that emits armored keys and detached signatures."""

    def __init__(self, kind="rsa"):
        self.kind = kind
        if kind == "rsa":
            self.private = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            nums = self.private.public_key().public_numbers()
            self.algo = 1
            self.key_body = b"\x04" + CREATED + bytes([1]) + _mpi(nums.n) + _mpi(nums.e)
        else:
            self.private = ed25519.Ed25519PrivateKey.generate()
            raw = self.private.public_key().public_bytes_raw()
            self.algo = 22
            self.key_body = (
                b"\x04" + CREATED + bytes([22, len(ED25519_OID)]) + ED25519_OID
                + _mpi(int.from_bytes(b"\x40" + raw, "big"))
            )

    @property
    def public_armored(self) -> str:
        return armor("PGP PUBLIC KEY BLOCK", _old_packet(6, self.key_body))

    def sign(self, data: bytes, *, sig_type=0x00, tamper=False) -> str:
        subpackets = b"\x05\x02" + CREATED
        hashed = b"\x04" + bytes([sig_type, self.algo, 8]) + struct.pack(">H", len(subpackets)) + subpackets
        h = hashes.Hash(hashes.SHA256())
        if sig_type == 0x01:
            data = data.replace(b"\r\n", b"\n").replace(b"\n", b"\r\n")
        h.update(data)
        h.update(hashed)
        h.update(b"\x04\xff" + struct.pack(">I", len(hashed)))
        digest = h.finalize()

        if self.kind == "rsa":
            raw = self.private.sign(digest, padding.PKCS1v15(), utils.Prehashed(hashes.SHA256()))
            if tamper:
                raw = raw[:-1] + bytes([raw[-1] ^ 0x01])
            values = _mpi(int.from_bytes(raw, "big"))
        else:
            raw = self.private.sign(digest)
            if tamper:
                raw = raw[:-1] + bytes([raw[-1] ^ 0x01])
            values = _mpi(int.from_bytes(raw[:32], "big")) + _mpi(int.from_bytes(raw[32:], "big"))

        body = hashed + struct.pack(">H", 0) + digest[:2] + values
        return armor("PGP SIGNATURE", _old_packet(2, body))


@pytest.fixture(scope="session")
def rsa_pgp_key():
    return PGPKey("rsa")


@pytest.fixture(scope="session")
def ed25519_pgp_key():
    return PGPKey("ed25519")


# --- salt-call --------------------------------------------------------------


SUCCESS_STDOUT = textwrap.dedent("""\
    local:
      pkg_|-git_|-git_|-installed:
        __id__: git
        __run_num__: 0
        __sls__: demo.packages
        comment: All specified packages are already installed
        duration: 12.5
        name: git
        result: true
        start_time: '10:00:00.000000'
""")


def write_fake_salt(directory: Path, *, stdout=SUCCESS_STDOUT, stderr_lines=(), exit_code=0, sleep=0.0):
    """Create an executable ``salt-call`` that replays canned output.

    The argv it was called with is written to ``argv.json`` beside it.
    """

    directory.mkdir(parents=True, exist_ok=True)
    script = directory / "salt-call"
    argv_file = directory / "argv.json"
    script.write_text(
        f"#!{sys.executable}\n"
        + textwrap.dedent(f"""\
            import json, sys, time
            with open({str(argv_file)!r}, "w") as f:
                json.dump(sys.argv[1:], f)
            for line in {list(stderr_lines)!r}:
                sys.stderr.write(line + "\\n")
                sys.stderr.flush()
            time.sleep({sleep!r})
            sys.stdout.write({stdout!r})
            sys.exit({exit_code!r})
        """),
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture()
def fake_salt_dir(tmp_path, monkeypatch):
    """A PATH directory for a fake ``salt-call``; call ``write_fake_salt`` on it."""

    d = tmp_path / "bin"
    d.mkdir()
    monkeypatch.setenv("PATH", f"{d}{os.pathsep}{os.environ.get('PATH', '')}")
    return d


@pytest.fixture()
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("CAST_") or key in {"GITHUB_TOKEN", "SUDO_USER", "LOGLEVEL"}:
            monkeypatch.delenv(key, raising=False)

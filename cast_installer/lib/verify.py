from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, Optional

from ..errors import ChecksumManifestError, DigestMismatchError, SignatureError, VerificationError
from .cosign import verify_blob
from .github import ReleaseDescriptor
from .openpgp import verify_detached

logger = logging.getLogger(__name__)

VALID_SUFFIX = ".valid"
CHECKSUMS_FILE = "checksums.txt"
CHECKSUMS_SIG_FILE = "checksums.txt.sig"
COSIGN_KEY_FILE = "cosign.pub"


def _sentinel(path: Path) -> Path:
    return path.with_name(path.name + VALID_SUFFIX)


def _mark_valid(path: Path) -> None:
    try:
        _sentinel(path).touch()
    except OSError as e:
        raise VerificationError(f"unable to mark {path.name} as valid: {e}") from e


def file_digest(path: Path, algorithm: str) -> str:
    h = hashlib.new(algorithm)
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                h.update(chunk)
    except OSError as e:
        raise VerificationError(f"unable to read {path}: {e}") from e
    return h.hexdigest()


def validate_checksum(download_dir: Path, filename: str, checksum_filename: str) -> None:
    """SHA-256 check of ``filename`` against the first token of ``checksum_filename``."""

    target = Path(download_dir) / filename
    logger.info("Validating file checksum %s", filename)
    if _sentinel(target).exists():
        logger.debug("Checksum already validated for %s", filename)
        return

    actual = file_digest(target, "sha256")
    try:
        tokens = (Path(download_dir) / checksum_filename).read_text(encoding="utf-8").split()
    except OSError as e:
        raise VerificationError(f"unable to read checksum file {checksum_filename}: {e}") from e
    expected = tokens[0].lower() if tokens else ""

    if actual != expected:
        raise DigestMismatchError(filename, expected, actual)
    _mark_valid(target)


def validate_pgp_signature(
    download_dir: Path, filename: str, signature_filename: str, public_key: Optional[str]
) -> None:
    target = Path(download_dir) / filename
    sig_path = Path(download_dir) / signature_filename
    logger.info("Validating file pgp signature %s", filename)
    if _sentinel(sig_path).exists():
        logger.debug("Signature already validated for %s", filename)
        return
    if not public_key:
        raise SignatureError(
            f"no pgp public key configured to verify {signature_filename}; "
            "pass --pgp-key-file or set CAST_PGP_KEY_FILE"
        )

    try:
        content = target.read_bytes()
        armored = sig_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SignatureError(f"error reading signature material for {filename}: {e}") from e

    verify_detached(content, armored, public_key)
    _mark_valid(sig_path)


def parse_checksums(text: str) -> Dict[str, str]:
    """Parse ``<digest> <filename>`` lines into ``{filename: digest}``."""

    out: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        parts = line.split()
        if not parts:
            continue
        if len(parts) != 2:
            raise ChecksumManifestError(f"{CHECKSUMS_FILE}:{lineno}: expected '<digest> <filename>'")
        digest, name = parts
        out[name.lstrip("*")] = digest.lower()
    return out


def validate_checksums(download_dir: Path) -> int:
    logger.info("Validating checksums")
    path = Path(download_dir) / CHECKSUMS_FILE
    try:
        hash_by_name = parse_checksums(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ChecksumManifestError(f"unable to read {CHECKSUMS_FILE}: {e}") from e

    count = len(hash_by_name)
    logger.debug("Found %d checksums to validate", count)
    if count < 2:
        raise ChecksumManifestError(f"validation failed: expected at least 2 files to validate, found: {count}")

    for name, expected in hash_by_name.items():
        actual = file_digest(Path(download_dir) / name, "sha512")
        if actual != expected:
            raise DigestMismatchError(name, expected, actual)
        logger.info("Checksum validated %s", name)
    return count


def verify_release(
    release: ReleaseDescriptor,
    manifest_version: int,
    download_dir: Path,
    *,
    archive_name: Optional[str] = None,
    pgp_public_key: Optional[str] = None,
) -> None:
    """Verify every downloaded artifact of ``release``; the first failure raises.

    Legacy (v1) releases check each ``.sha256`` and ``.asc`` asset against
    ``archive_name``, the archive file as it was saved on disk.
    """

    download_dir = Path(download_dir)

    if manifest_version == 1:
        if not archive_name:
            raise VerificationError("no archive file to verify legacy release assets against")
        for a in release.assets:
            if a.name.endswith(".sha256"):
                validate_checksum(download_dir, archive_name, a.name)
        for a in release.assets:
            if a.name.endswith(".asc") and not a.name.endswith(".sha256.asc"):
                validate_pgp_signature(download_dir, archive_name, a.name, pgp_public_key)
    elif manifest_version == 2:
        verify_blob(
            download_dir / COSIGN_KEY_FILE,
            download_dir / CHECKSUMS_SIG_FILE,
            download_dir / CHECKSUMS_FILE,
        )
        validate_checksums(download_dir)
    else:
        raise VerificationError(f"unsupported manifest version for verification: {manifest_version}")

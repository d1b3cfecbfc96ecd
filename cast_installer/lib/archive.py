from __future__ import annotations

import logging
import lzma
import os
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import List, Optional

from ..errors import ExtractionError

logger = logging.getLogger(__name__)


def strip_member_path(name: str, base_dir: Optional[str] = None) -> List[str]:
    """Drop the wrapper directory (and optionally ``base_dir``) from a member name.

    Release tarballs wrap everything in an ``owner-repo-sha/`` directory.
    """

    parts = [p for p in name.split("/")[1:] if p not in ("", ".")]
    if base_dir and parts and parts[0].startswith(base_dir):
        parts = parts[1:]
    return parts


def _safe_target(dest: Path, parts: List[str]) -> Path:
    target = dest.joinpath(*parts)
    root = os.path.abspath(dest)
    resolved = os.path.abspath(target)
    if os.path.commonpath([root, resolved]) != root:
        raise ExtractionError(f"archive entry escapes destination: {'/'.join(parts)}")
    return target


def _write_file(tf: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
    src = tf.extractfile(member)
    if src is None:
        raise ExtractionError(f"unable to read archive entry {member.name}")
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_symlink() or (target.exists() and not os.access(target, os.W_OK)):
        target.unlink()
    # One entry open at a time: both handles close before the next member.
    with src, open(target, "wb") as out:
        shutil.copyfileobj(src, out)
    os.chmod(target, member.mode & 0o7777)


def _write_symlink(member: tarfile.TarInfo, target: Path, dest: Path) -> None:
    link_dir = target.parent
    link_dir.mkdir(parents=True, exist_ok=True)
    resolved = os.path.normpath(os.path.join(link_dir, member.linkname))
    root = os.path.abspath(dest)
    if os.path.commonpath([root, os.path.abspath(resolved)]) != root:
        raise ExtractionError(f"symlink {member.name} points outside destination")
    relative = os.path.relpath(resolved, link_dir)
    if target.is_symlink() or target.exists():
        target.unlink()
    os.symlink(relative, target)


def extract_tarball(archive: Path, dest: Path, base_dir: Optional[str] = None) -> int:
    """Extract a (gz/xz/bz2 compressed) tarball into ``dest``.

    Returns the number of entries written.
    """

    archive = Path(archive)
    dest = Path(dest)
    logger.info("Extracting %s -> %s", archive.name, dest)

    written = 0
    try:
        dest.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive, "r:*") as tf:
            for member in tf:
                parts = strip_member_path(member.name, base_dir)
                if not parts:
                    continue
                target = _safe_target(dest, parts)

                if member.isdir():
                    logger.debug("Extracting directory %s", target)
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isreg():
                    logger.debug("Extracting file %s", target)
                    _write_file(tf, member, target)
                elif member.issym():
                    logger.debug("Creating symlink %s -> %s", target, member.linkname)
                    _write_symlink(member, target, dest)
                else:
                    logger.debug("Skipping unsupported entry %s", member.name)
                    continue
                written += 1
    except ExtractionError:
        raise
    except (tarfile.TarError, lzma.LZMAError, zlib.error, EOFError, OSError) as e:
        raise ExtractionError(f"unable to extract {archive}: {e}") from e

    return written

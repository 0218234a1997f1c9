"""Archive hashing and scoped extraction into a temporary directory."""

from __future__ import annotations

import base64
import hashlib
import io
import logging
import shutil
import tempfile
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from codemapper.errors import ValidationError

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    """Commit surrogate: short SHA-1 over the base64 form of the archive bytes.

    Not a VCS commit id. Repacking identical content changes the hash.
    """
    encoded = base64.b64encode(data)
    return hashlib.sha1(encoded).hexdigest()[:10]


def _effective_root(temp_root: Path) -> Path:
    """A zipball wrapping everything in one directory uses that directory as root."""
    children = sorted(temp_root.iterdir(), key=lambda p: p.name)
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return temp_root


def _extract(data: bytes, dest: Path) -> None:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ValidationError("Archive is not a valid .zip file.") from e

    dest_resolved = dest.resolve()
    with archive:
        for member in archive.infolist():
            target = (dest / member.filename).resolve()
            if target != dest_resolved and dest_resolved not in target.parents:
                raise ValidationError(f"Archive entry escapes extraction root: {member.filename}")
        archive.extractall(dest)


@contextmanager
def extracted_archive(data: bytes) -> Iterator[tuple[Path, Path]]:
    """Unpack `data` into a fresh temp dir, yielding (temp_root, repo_root).

    The temp dir is removed on every exit path.
    """
    temp_root = Path(tempfile.mkdtemp(prefix="codemapper-"))
    logger.debug("Extracting %d bytes into %s", len(data), temp_root)
    try:
        _extract(data, temp_root)
        yield temp_root, _effective_root(temp_root)
    finally:
        shutil.rmtree(temp_root, ignore_errors=True)
        logger.debug("Removed %s", temp_root)

"""
Content-addressed local cache for pulled and pushed artifacts.

Layout under the cache root::

    manifests/<registry>/<repository>/<tag>/manifest.json
    manifests/<registry>/<repository>/<tag>/config.json
    wasm/<digest>
    data/<digest>

Blobs are keyed by digest and immutable once written. Manifest and config
files are keyed by reference and overwritten on every pull.
"""
from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ..path_safety import safe_digest
from .oci_errors import CacheIOError, DigestMismatch, NotFoundError, ParseError
from .oci_media_types import BlobCategory
from .reference import Reference

__all__ = ["ContentCache", "compute_digest", "MANIFEST_FILE", "CONFIG_FILE"]

logger = logging.getLogger(__name__)

MANIFESTS_DIR = "manifests"
MANIFEST_FILE = "manifest.json"
CONFIG_FILE = "config.json"

CHUNK_SIZE = 1024 * 1024  # 1 MiB


def compute_digest(data: bytes, algorithm: str = "sha256") -> str:
    """Compute the ``<algorithm>:<hex>`` digest of ``data``."""
    return f"{algorithm}:{_hasher(algorithm, data).hexdigest()}"


def _hasher(algorithm: str, data: bytes = b""):
    try:
        return hashlib.new(algorithm, data)
    except ValueError as e:
        raise ParseError(f"Unsupported digest algorithm: {algorithm}") from e


def _file_matches_digest(path: Path, digest: str) -> bool:
    algorithm, expected = digest.split(":", 1)
    hash_obj = _hasher(algorithm)
    with open(path, "rb") as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            hash_obj.update(chunk)
    return hash_obj.hexdigest() == expected


class ContentCache:
    """
    Digest-keyed blob storage plus reference-keyed manifest metadata.

    The cache is the only component that writes below its root. All writes
    go through a temporary file in the target directory followed by
    ``os.replace``, so an interrupted write never leaves a partial file at a
    digest path.
    """

    def __init__(self, root: str | Path, *, verify_on_hit: bool = True):
        """
        Initialize the cache and create its directory layout.

        Args:
            root: Cache root directory
            verify_on_hit: Re-hash existing blobs in has_blob() and discard
                files whose content no longer matches their digest

        Raises:
            CacheIOError: If the layout cannot be created
        """
        self.root = Path(root)
        self.verify_on_hit = verify_on_hit
        self.ensure_layout()

    @property
    def manifests_dir(self) -> Path:
        return self.root / MANIFESTS_DIR

    @property
    def wasm_dir(self) -> Path:
        return self.root / BlobCategory.MODULE.value

    @property
    def data_dir(self) -> Path:
        return self.root / BlobCategory.DATA.value

    def ensure_layout(self) -> None:
        """
        Create the manifests, wasm and data directories if missing.

        Idempotent.

        Raises:
            CacheIOError: If the root or one of the directories exists but is
                not a directory, or cannot be created
        """
        logger.debug(f"Using cache root directory {self.root}")
        if self.root.exists() and not self.root.is_dir():
            raise CacheIOError(f"Cache root exists and is not a directory: {self.root}")

        for directory in (self.manifests_dir, self.wasm_dir, self.data_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except FileExistsError as e:
                raise CacheIOError(f"Cache path exists and is not a directory: {directory}") from e
            except OSError as e:
                raise CacheIOError(f"Failed to create cache directory {directory}: {e}") from e

    # Reference-keyed metadata

    def path_for_reference(self, reference: Reference) -> Path:
        """
        Directory holding the manifest and config for a reference.

        Created if absent.
        """
        path = self.manifests_dir / reference.registry / reference.repository / (reference.tag or "latest")
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f"Failed to create manifest directory {path}: {e}") from e
        return path

    def manifest_path(self, reference: Reference) -> Path:
        return self.path_for_reference(reference) / MANIFEST_FILE

    def config_path(self, reference: Reference) -> Path:
        return self.path_for_reference(reference) / CONFIG_FILE

    def write_manifest(self, reference: Reference, payload: bytes) -> Path:
        """Write (overwrite) the manifest for a reference."""
        target = self.manifest_path(reference)
        self._write_atomically(target, payload)
        return target

    def write_config(self, reference: Reference, payload: bytes) -> Path:
        """Write (overwrite) the config object for a reference."""
        target = self.config_path(reference)
        self._write_atomically(target, payload)
        return target

    # Digest-keyed blobs

    def blob_path(self, digest: str, category: BlobCategory) -> Path:
        """Path where a blob of the given category is stored."""
        try:
            name = safe_digest(digest)
        except ValueError as e:
            raise ParseError(str(e)) from e
        return self.root / BlobCategory(category).value / name

    def find_blob(self, digest: str) -> Optional[Path]:
        """Return the stored path for a digest in either category, or None."""
        for category in BlobCategory:
            path = self.blob_path(digest, category)
            if path.is_file():
                return path
        return None

    def has_blob(self, digest: str) -> bool:
        """
        Check whether a blob is cached in either category.

        With ``verify_on_hit`` enabled an existing file is re-hashed; if its
        content does not match the digest (truncated or corrupted earlier
        write) it is removed and the blob is reported missing.
        """
        for category in BlobCategory:
            path = self.blob_path(digest, category)
            if not path.is_file():
                continue
            if not self.verify_on_hit:
                return True
            try:
                if _file_matches_digest(path, digest):
                    return True
            except ParseError:
                # Algorithm we cannot hash; presence is all we can check
                return True
            except OSError as e:
                raise CacheIOError(f"Failed to read cached blob {path}: {e}") from e

            logger.warning(f"Cached blob {path} does not match its digest, discarding")
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise CacheIOError(f"Failed to remove corrupted blob {path}: {e}") from e
        return False

    def write_blob(self, data: bytes, digest: str, category: BlobCategory) -> Path:
        """
        Store blob content under its digest.

        The first write verifies ``data`` against ``digest``. Writing a digest
        that already exists is a no-op: content at a digest never changes, so
        repeat writes are not re-verified.

        Args:
            data: Blob bytes
            digest: Digest the bytes are stored under
            category: Module or data storage category

        Returns:
            Path of the stored blob

        Raises:
            DigestMismatch: If data does not hash to digest
            ParseError: If digest is malformed
            CacheIOError: If the write fails
        """
        target = self.blob_path(digest, category)
        if target.is_file():
            logger.debug(f"Blob {digest} already cached at {target}")
            return target

        algorithm = digest.split(":", 1)[0]
        actual = compute_digest(data, algorithm)
        if actual != digest:
            raise DigestMismatch(
                f"Digest mismatch for blob: expected {digest}, got {actual}",
                expected=digest,
                actual=actual,
            )

        self._write_atomically(target, data)
        logger.debug(f"Wrote blob {digest} ({len(data)} bytes) to {target}")
        return target

    def read(self, path: str | Path) -> bytes:
        """
        Read a file owned by the cache.

        Raises:
            NotFoundError: If the file does not exist
            CacheIOError: If the path is outside the cache root or unreadable
        """
        path = Path(path)
        resolved_root = self.root.resolve()
        resolved = path.resolve()
        if resolved != resolved_root and resolved_root not in resolved.parents:
            raise CacheIOError(f"Path is outside the cache root: {path}")
        try:
            return resolved.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"Cache file not found: {path}") from e
        except OSError as e:
            raise CacheIOError(f"Failed to read cache file {path}: {e}") from e

    def _write_atomically(self, target: Path, data: bytes) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=".tmp.", dir=target.parent)
        except OSError as e:
            raise CacheIOError(f"Failed to prepare write of {target}: {e}") from e

        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                out.write(data)
                out.flush()
                os.fsync(out.fileno())
            os.replace(temp_path, target)
        except OSError as e:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            raise CacheIOError(f"Failed to write {target}: {e}") from e

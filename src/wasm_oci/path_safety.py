"""
Path safety utilities for wasm-oci.

Validates guest paths coming from application descriptors and digests that
end up as file names inside the cache, so neither can escape their
directory.
"""
from __future__ import annotations

import re
from pathlib import PurePosixPath

_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")


def safe_relpath(path: str) -> str:
    """
    Validate and normalize a guest path.

    This function enforces the following safety rules:
    - No empty strings or "." (a file must be mounted at a file path)
    - No absolute paths (starting with '/')
    - No parent directory references ('..' components)
    - No backslashes

    Args:
        path: Guest path string

    Returns:
        Normalized relative POSIX path

    Raises:
        ValueError: If path violates safety rules

    Examples:
        >>> safe_relpath("assets/index.html")
        'assets/index.html'

        >>> safe_relpath("../etc/passwd")
        ValueError: unsafe path: ../etc/passwd
    """
    rel = PurePosixPath(path)
    s = str(rel)
    if not s or s == ".":
        raise ValueError(f"unsafe path: {path}")
    if "\\" in s:
        raise ValueError(f"unsafe path: {path}")
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"unsafe path: {path}")
    return s


def safe_digest(digest: str) -> str:
    """
    Validate a digest before it is used as a file name.

    Digests have the form ``<algorithm>:<encoded>``, e.g. ``sha256:ab12...``.

    Raises:
        ValueError: If digest is not a well-formed digest string
    """
    if not digest or not _DIGEST_RE.match(digest):
        raise ValueError(f"invalid digest: {digest}")
    return digest

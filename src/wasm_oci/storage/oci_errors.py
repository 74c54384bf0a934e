"""
Distribution error classes.

Provides a clear taxonomy of errors that can occur while pushing, pulling
and caching Wasm applications. HTTP status codes, JSON decoding failures and
filesystem errors are all mapped onto this hierarchy so callers can handle
failures consistently regardless of where they originated.
"""
from __future__ import annotations

from typing import List, Optional


class DistributionError(Exception):
    """
    Base class for all distribution errors.

    Nothing in this package retries on its own (unless retries are explicitly
    configured), so every subclass reaches the caller unchanged.
    """
    pass


class ParseError(DistributionError, ValueError):
    """
    Input could not be parsed.

    Raised when:
    - A reference string is malformed (missing repository, invalid characters)
    - A manifest or config body is not valid JSON
    - A manifest does not have the expected shape or layer layout
    """
    pass


class RegistryError(DistributionError):
    """
    The registry rejected a request or could not be reached.

    Raised when:
    - HTTP 4xx/5xx other than 404 (401 and 403 included)
    - Network failures talking to the registry

    ``errors`` holds the messages the registry reported in its error body,
    if any.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 errors: Optional[List[str]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class DigestMismatch(RegistryError):
    """
    Content digest validation failed.

    Raised when:
    - push_blob/push_manifest: server digest != locally computed digest
    - write_blob: bytes do not hash to the digest they are stored under
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class NotFoundError(DistributionError):
    """
    Manifest or blob does not exist.

    Raised when:
    - HTTP 404 from the registry for a manifest or blob
    - A cache file is read that was never written
    """
    pass


class CacheIOError(DistributionError):
    """
    Filesystem failure inside the local cache.

    Raised when:
    - The cache root exists but is not a directory
    - A path outside the cache root is requested
    - Reading or writing a cache file fails at the OS level
    """
    pass


class AuthError(DistributionError):
    """
    Credential lookup failed.

    Raised when:
    - A Docker credential helper is configured but cannot be run
    - A credential helper returns an unexpected error

    Rejected credentials (401/403 responses) surface as RegistryError instead.
    """
    pass


__all__ = [
    "DistributionError",
    "ParseError",
    "RegistryError",
    "DigestMismatch",
    "NotFoundError",
    "CacheIOError",
    "AuthError",
]

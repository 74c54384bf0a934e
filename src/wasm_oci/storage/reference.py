"""
Registry reference parsing.

Provides parsing and validation of ``registry/repository:tag`` references
and derives the transport endpoint for a reference's registry.
"""
from __future__ import annotations

from dataclasses import dataclass
import re

from .oci_errors import ParseError

__all__ = ["Reference", "parse_reference", "DEFAULT_TAG"]

DEFAULT_TAG = "latest"

_REGISTRY_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9.-]*[a-zA-Z0-9])?(?::[0-9]+)?$")
_REPOSITORY_RE = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]{0,127}$")

# Registries whose API endpoint differs from the name used in references
_REGISTRY_ENDPOINTS = {
    "docker.io": "index.docker.io",
}


@dataclass(frozen=True)
class Reference:
    """
    Parsed components of a registry reference.

    Attributes:
        registry: Registry host, optionally with port (e.g. "localhost:5000")
        repository: Repository path (e.g. "myorg/myapp")
        tag: Tag, "latest" when the reference omitted it
    """
    registry: str
    repository: str
    tag: str = DEFAULT_TAG

    def __str__(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"

    def resolve_registry(self) -> str:
        """Registry host used for transport and credential lookup."""
        registry = self.registry.rstrip("/")
        return _REGISTRY_ENDPOINTS.get(registry, registry)

    def base_url(self, insecure: bool = False) -> str:
        """Base URL for the registry API; the protocol is never negotiated."""
        scheme = "http" if insecure else "https"
        return f"{scheme}://{self.resolve_registry()}"


def parse_reference(reference: str) -> Reference:
    """
    Parse and validate a registry reference.

    Accepts references in the form: registry/repository[:tag]

    Validation:
    - Requires a registry segment and a non-empty repository
    - Registry must be host[:port]
    - Repository must follow OCI naming (lowercase path components)
    - Tag must follow OCI tag grammar, defaults to "latest"
    - Digest references (repository@sha256:...) are rejected

    Args:
        reference: Reference string to parse

    Returns:
        Reference with validated components

    Raises:
        ParseError: If the reference is malformed

    Examples:
        >>> parse_reference("registry.example.com/myapp:1.0")
        Reference(registry='registry.example.com', repository='myapp', tag='1.0')

        >>> parse_reference("localhost:5000/org/app")
        Reference(registry='localhost:5000', repository='org/app', tag='latest')
    """
    if not reference or not reference.strip():
        raise ParseError("Reference cannot be empty")

    text = reference.strip()
    if "@" in text:
        raise ParseError(f"Digest references are not supported, use registry/repository:tag: {reference}")

    if "/" not in text:
        raise ParseError(f"Reference is missing a repository, expected registry/repository[:tag]: {reference}")

    registry, remainder = text.split("/", 1)

    # A colon after the last slash separates the tag; colons before it belong to the registry port
    tag = DEFAULT_TAG
    last_segment = remainder.rsplit("/", 1)[-1]
    if ":" in last_segment:
        remainder, tag = remainder.rsplit(":", 1)

    if not registry or not _REGISTRY_RE.match(registry):
        raise ParseError(f"Invalid registry in reference: {reference}")

    if not remainder:
        raise ParseError(f"Reference is missing a repository: {reference}")

    if not _REPOSITORY_RE.match(remainder):
        raise ParseError(f"Invalid repository in reference: {reference}. Must follow OCI naming conventions.")

    if not _TAG_RE.match(tag):
        raise ParseError(f"Invalid tag in reference: {reference}")

    return Reference(registry=registry, repository=remainder, tag=tag)

"""
Registry HTTP transport for the OCI Distribution API.

Async client for the four operations distribution needs (resolve manifest,
fetch blob, push blob, push manifest) plus a blob existence check. Handles
the Docker Registry v2 token challenge transparently.
"""
from __future__ import annotations

import base64
import json
import logging
import re
import time
from typing import Dict, List, Optional, Tuple

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models import Manifest
from .cache import compute_digest
from .docker_auth import Anonymous, BasicAuth, BearerToken, Credential
from .oci_errors import DigestMismatch, DistributionError, NotFoundError, ParseError, RegistryError
from .oci_media_types import ACCEPTED_MANIFEST_TYPES
from .reference import Reference

__all__ = ["RegistryTransport", "USER_AGENT"]

logger = logging.getLogger(__name__)

USER_AGENT = "wasm-oci/0.1.0"

# Errors worth retrying when the caller asked for retries
RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.ConnectError)


def _pull_scope(reference: Reference) -> str:
    return f"repository:{reference.repository}:pull"


def _push_scope(reference: Reference) -> str:
    return f"repository:{reference.repository}:pull,push"


class RegistryTransport:
    """
    Async HTTP client for one registry and one credential.

    The credential is resolved once by the caller and matched here when
    building the Authorization header. HTTP vs HTTPS is fixed by the
    ``insecure`` flag at construction.
    """

    def __init__(self, registry: str, credential: Optional[Credential] = None, *,
                 insecure: bool = False, timeout_s: float = 30.0, retries: int = 0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize registry transport.

        Args:
            registry: Registry host (e.g. "localhost:5000", "ghcr.io"), no scheme
            credential: Credential variant (defaults to anonymous)
            insecure: Use plain HTTP
            timeout_s: Read/write timeout per request
            retries: Extra attempts for timed out or refused connections
            transport: Optional httpx transport (used to inject fakes)
        """
        self.registry = registry.rstrip("/")
        self.credential = credential or Anonymous()
        self.insecure = insecure
        self.retries = retries
        self.base_url = f"{'http' if insecure else 'https'}://{self.registry}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_s, connect=5.0),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

        # Token cache: {scope: (token, expiry_timestamp)}
        self._token_cache: Dict[str, Tuple[str, float]] = {}
        self._retry_wait = wait_exponential(multiplier=1, min=1, max=10)

    @classmethod
    def for_reference(cls, reference: Reference, credential: Optional[Credential] = None,
                      **kwargs) -> RegistryTransport:
        """Create a transport for the registry a reference points at."""
        return cls(reference.resolve_registry(), credential, **kwargs)

    # Manifests

    async def resolve_manifest(self, reference: Reference) -> Tuple[Manifest, str]:
        """
        Fetch and parse the manifest for a reference.

        Returns:
            (manifest, canonical_digest)

        Raises:
            NotFoundError: If the manifest does not exist
            RegistryError: For other HTTP or network errors
            ParseError: If the body is not a valid manifest
        """
        path = f"/v2/{reference.repository}/manifests/{reference.tag}"
        response = await self._request(
            "GET", path,
            scope=_pull_scope(reference),
            what=f"manifest {reference}",
            headers={"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)},
        )
        body = response.content

        manifest = Manifest.from_bytes(body)
        if manifest.media_type and manifest.media_type not in ACCEPTED_MANIFEST_TYPES:
            raise ParseError(
                f"Unsupported manifest media type: {manifest.media_type}. "
                f"Expected one of: {', '.join(ACCEPTED_MANIFEST_TYPES)}"
            )

        digest = response.headers.get("Docker-Content-Digest") or compute_digest(body)
        logger.debug(f"Resolved {reference} to {digest}")
        return manifest, digest

    async def push_manifest(self, reference: Reference, manifest: Manifest) -> str:
        """
        Upload a manifest under the reference's tag.

        Returns:
            Manifest digest

        Raises:
            DigestMismatch: If the registry reports a different digest
            RegistryError: If the registry rejects the manifest
        """
        payload = manifest.to_bytes()
        digest = compute_digest(payload)
        path = f"/v2/{reference.repository}/manifests/{reference.tag}"
        response = await self._request(
            "PUT", path,
            scope=_push_scope(reference),
            what=f"manifest {reference}",
            headers={"Content-Type": manifest.media_type or ACCEPTED_MANIFEST_TYPES[0]},
            content=payload,
        )
        self._check_digest(response, digest)
        logger.debug(f"Pushed manifest {reference} ({digest})")
        return digest

    # Blobs

    async def fetch_blob(self, reference: Reference, digest: str) -> bytes:
        """
        Stream a blob into memory.

        Raises:
            NotFoundError: If the registry does not know the digest
            RegistryError: For other HTTP or network errors
        """
        path = f"/v2/{reference.repository}/blobs/{digest}"
        what = f"blob {reference.repository}@{digest}"
        response = await self._request("GET", path, scope=_pull_scope(reference), what=what, stream=True)
        chunks: List[bytes] = []
        try:
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
        except httpx.HTTPError as e:
            raise RegistryError(f"Network error fetching {what}: {e}") from e
        finally:
            await response.aclose()
        return b"".join(chunks)

    async def blob_exists(self, reference: Reference, digest: str) -> bool:
        """
        Check whether the registry already has a blob.

        Never raises: any failure is reported as "does not exist".
        """
        path = f"/v2/{reference.repository}/blobs/{digest}"
        try:
            await self._request("HEAD", path, scope=_push_scope(reference),
                                what=f"blob {reference.repository}@{digest}")
            return True
        except DistributionError as e:
            logger.debug(f"Blob {digest} not confirmed on registry: {e}")
            return False

    async def push_blob(self, reference: Reference, data: bytes, media_type: str) -> str:
        """
        Upload blob content with a monolithic POST + PUT upload.

        Returns:
            Blob digest

        Raises:
            DigestMismatch: If the registry computed a different digest
            RegistryError: If the upload is rejected
        """
        digest = compute_digest(data)
        what = f"blob {reference.repository}@{digest}"
        scope = _push_scope(reference)

        start = await self._request(
            "POST", f"/v2/{reference.repository}/blobs/uploads/",
            scope=scope, what=what,
        )
        location = start.headers.get("Location")
        if not location:
            raise RegistryError(f"Registry did not return an upload location for {what}",
                                status_code=start.status_code)

        response = await self._request(
            "PUT", location,
            scope=scope, what=what,
            params={"digest": digest},
            headers={"Content-Type": "application/octet-stream"},
            content=data,
        )
        self._check_digest(response, digest)
        logger.debug(f"Pushed {media_type} blob {digest} ({len(data)} bytes)")
        return digest

    # Request plumbing

    async def _request(self, method: str, url: str, *, scope: str, what: str,
                       headers: Optional[dict] = None, stream: bool = False,
                       **kwargs) -> httpx.Response:
        """
        Make an HTTP request with transparent Bearer token auth flow.

        Handles 401 responses by:
        1. Parsing WWW-Authenticate header for Bearer realm/service/scope
        2. Exchanging the credential (or nothing, for anonymous) for a token
        3. Retrying the original request once with the token
        4. Caching tokens per scope

        Raises:
            NotFoundError: On 404
            RegistryError: On other error statuses and network failures
        """
        request_headers = dict(headers or {})
        authorization = self._authorization(scope)
        if authorization:
            request_headers["Authorization"] = authorization

        try:
            response = await self._send(method, url, request_headers, stream, **kwargs)

            if response.status_code == 401:
                challenge = response.headers.get("WWW-Authenticate", "")
                if challenge.lower().startswith("bearer "):
                    token = await self._fetch_token(challenge, scope)
                    if token:
                        await response.aclose()
                        request_headers["Authorization"] = f"Bearer {token}"
                        response = await self._send(method, url, request_headers, stream, **kwargs)
        except httpx.RequestError as e:
            raise RegistryError(f"Network error for {what}: {e}") from e

        if response.is_error:
            await self._raise_for_status(response, what)
        return response

    async def _send(self, method: str, url: str, headers: dict, stream: bool,
                    **kwargs) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=self._retry_wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True,
        ):
            with attempt:
                request = self.client.build_request(method, url, headers=headers, **kwargs)
                return await self.client.send(request, stream=stream)

    def _authorization(self, scope: str) -> Optional[str]:
        cached = self._token_cache.get(scope)
        if cached and time.time() < cached[1] - 30:  # 30s buffer before expiry
            return f"Bearer {cached[0]}"

        credential = self.credential
        if isinstance(credential, BearerToken):
            return f"Bearer {credential.token}"
        if isinstance(credential, BasicAuth):
            encoded = base64.b64encode(f"{credential.username}:{credential.password}".encode()).decode()
            return f"Basic {encoded}"
        return None

    async def _fetch_token(self, www_authenticate: str, scope: str) -> Optional[str]:
        """
        Exchange the credential for a registry token.

        Returns None when no exchange is possible (no realm, or the caller
        already supplied a bearer token that the registry rejected).
        """
        if isinstance(self.credential, BearerToken):
            return None

        # Format: Bearer realm="...",service="...",scope="..."
        params = dict(re.findall(r'(\w+)="([^"]*)"', www_authenticate))
        realm = params.get("realm")
        if not realm:
            return None

        query = {"scope": params.get("scope") or scope}
        if params.get("service"):
            query["service"] = params["service"]

        auth = None
        if isinstance(self.credential, BasicAuth):
            auth = (self.credential.username, self.credential.password)

        response = await self.client.get(realm, params=query, auth=auth)
        if response.is_error:
            raise RegistryError(
                f"Token request to {realm} failed with {response.status_code}",
                status_code=response.status_code,
            )

        try:
            token_data = response.json()
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON from token endpoint {realm}: {e}") from e
        if not isinstance(token_data, dict):
            raise ParseError(f"Token endpoint {realm} did not return a JSON object")

        token = token_data.get("token") or token_data.get("access_token")
        if not token:
            return None

        # Cache with expiry (default 60s per the registry token protocol if not specified)
        expires_in = token_data.get("expires_in", 60)
        self._token_cache[scope] = (token, time.time() + expires_in)
        return token

    async def _raise_for_status(self, response: httpx.Response, what: str) -> None:
        await response.aread()
        await response.aclose()

        messages = _error_messages(response)
        detail = f": {'; '.join(messages)}" if messages else ""
        status = response.status_code

        if status == 404:
            raise NotFoundError(f"Not found: {what}{detail}")
        if status in (401, 403):
            raise RegistryError(f"Authentication failed for {what}{detail}",
                                status_code=status, errors=messages)
        raise RegistryError(f"Registry error {status} for {what}{detail}",
                            status_code=status, errors=messages)

    def _check_digest(self, response: httpx.Response, expected: str) -> None:
        actual = response.headers.get("Docker-Content-Digest")
        if actual and actual != expected:
            raise DigestMismatch(
                f"Registry digest {actual} does not match local digest {expected}",
                expected=expected,
                actual=actual,
            )

    async def aclose(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


def _error_messages(response: httpx.Response) -> List[str]:
    """Extract registry error messages from an OCI error body."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return []
    if not isinstance(body, dict):
        return []
    messages = []
    for error in body.get("errors") or []:
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message")
            messages.append(f"{code}: {message}" if code else str(message))
    return messages

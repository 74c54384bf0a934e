"""
Tests for the registry HTTP transport.

Runs RegistryTransport against the in-memory fake registry to cover
manifest resolution, blob transfer, error mapping, the bearer token
challenge and retries.
"""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from tenacity import wait_none

from wasm_oci.models import Descriptor, Manifest
from wasm_oci.storage.docker_auth import BasicAuth, BearerToken
from wasm_oci.storage.oci_errors import DigestMismatch, NotFoundError, ParseError, RegistryError
from wasm_oci.storage.oci_media_types import DATA_LAYER, WASM_CONFIG, WASM_LAYER
from wasm_oci.storage.reference import parse_reference
from wasm_oci.storage.registry_http import RegistryTransport

from ..fakes.fake_registry import FAKE_TOKEN, FakeRegistry
from ..helpers.apps import digest_of

REF = parse_reference("registry.example.com/org/app:1.0")
REPO = "org/app"


def _transport(registry: FakeRegistry, credential=None, **kwargs) -> RegistryTransport:
    return RegistryTransport("registry.example.com", credential, insecure=True,
                             transport=registry.transport(), **kwargs)


def _run(registry: FakeRegistry, operation, credential=None, **kwargs):
    """Run ``operation(transport)`` against the fake and close the transport."""
    async def _go():
        async with _transport(registry, credential, **kwargs) as transport:
            return await operation(transport)
    return asyncio.run(_go())


def _seed_app(registry: FakeRegistry) -> dict:
    config = registry.seed_blob(REPO, b"{}")
    module = registry.seed_blob(REPO, b"module")
    manifest = {
        "schemaVersion": 2,
        "mediaType": "application/vnd.oci.image.manifest.v1+json",
        "config": {"mediaType": WASM_CONFIG, "digest": config, "size": 2},
        "layers": [{"mediaType": WASM_LAYER, "digest": module, "size": 6}],
    }
    registry.seed_manifest(REPO, "1.0", manifest)
    return manifest


class TestManifests:
    """Test manifest resolution and upload."""

    def test_resolve_manifest(self, fake_registry):
        seeded = _seed_app(fake_registry)

        manifest, digest = _run(fake_registry, lambda t: t.resolve_manifest(REF))

        assert manifest.config.digest == seeded["config"]["digest"]
        assert [layer.digest for layer in manifest.layers] == [seeded["layers"][0]["digest"]]
        assert digest == digest_of(json.dumps(seeded).encode())
        assert ("GET", "/v2/org/app/manifests/1.0") in fake_registry.calls

    def test_resolve_manifest_not_found(self, fake_registry):
        with pytest.raises(NotFoundError, match="MANIFEST_UNKNOWN"):
            _run(fake_registry, lambda t: t.resolve_manifest(REF))

    def test_resolve_manifest_invalid_json(self, fake_registry):
        fake_registry.seed_manifest(REPO, "1.0", b"this is not json")

        with pytest.raises(ParseError):
            _run(fake_registry, lambda t: t.resolve_manifest(REF))

    def test_resolve_manifest_missing_config(self, fake_registry):
        fake_registry.seed_manifest(REPO, "1.0", {"schemaVersion": 2, "layers": []})

        with pytest.raises(ParseError):
            _run(fake_registry, lambda t: t.resolve_manifest(REF))

    def test_resolve_image_index_rejected(self, fake_registry):
        fake_registry.seed_manifest(REPO, "1.0", {
            "schemaVersion": 2,
            "mediaType": "application/vnd.oci.image.index.v1+json",
            "config": {"mediaType": WASM_CONFIG, "digest": digest_of(b"{}"), "size": 2},
            "manifests": [],
        })

        with pytest.raises(ParseError, match="Unsupported manifest media type"):
            _run(fake_registry, lambda t: t.resolve_manifest(REF))

    def test_push_manifest(self, fake_registry):
        manifest = Manifest(
            config=Descriptor(media_type=WASM_CONFIG, digest=digest_of(b"{}"), size=2),
            layers=[Descriptor(media_type=DATA_LAYER, digest=digest_of(b"x"), size=1)],
        )

        digest = _run(fake_registry, lambda t: t.push_manifest(REF, manifest))

        assert digest == digest_of(manifest.to_bytes())
        assert fake_registry.manifest(REPO, "1.0")["layers"][0]["digest"] == digest_of(b"x")
        assert fake_registry.pushes == ["manifest:1.0"]


class TestBlobs:
    """Test blob fetch, upload and existence checks."""

    def test_fetch_blob(self, fake_registry):
        digest = fake_registry.seed_blob(REPO, b"blob content")

        assert _run(fake_registry, lambda t: t.fetch_blob(REF, digest)) == b"blob content"
        assert fake_registry.blob_fetches[digest] == 1

    def test_fetch_missing_blob(self, fake_registry):
        with pytest.raises(NotFoundError, match="BLOB_UNKNOWN"):
            _run(fake_registry, lambda t: t.fetch_blob(REF, digest_of(b"missing")))

    def test_fetch_blob_server_error(self, fake_registry):
        digest = fake_registry.seed_blob(REPO, b"content")
        fake_registry.broken_blobs[digest] = 500

        with pytest.raises(RegistryError) as exc_info:
            _run(fake_registry, lambda t: t.fetch_blob(REF, digest))

        assert exc_info.value.status_code == 500
        assert exc_info.value.errors == ["UNKNOWN: injected failure"]
        assert "Registry error 500" in str(exc_info.value)

    def test_push_blob(self, fake_registry):
        digest = _run(fake_registry, lambda t: t.push_blob(REF, b"new blob", DATA_LAYER))

        assert digest == digest_of(b"new blob")
        assert fake_registry.blob(REPO, digest) == b"new blob"
        assert fake_registry.pushes == [f"blob:{digest}"]
        assert ("POST", "/v2/org/app/blobs/uploads/") in fake_registry.calls

    def test_push_blob_digest_mismatch(self, fake_registry):
        fake_registry.report_digest = digest_of(b"something else")

        with pytest.raises(DigestMismatch) as exc_info:
            _run(fake_registry, lambda t: t.push_blob(REF, b"new blob", DATA_LAYER))

        assert exc_info.value.expected == digest_of(b"new blob")
        assert exc_info.value.actual == digest_of(b"something else")

    def test_push_blob_without_location(self):
        def handler(request):
            return httpx.Response(202)

        transport = RegistryTransport("registry.example.com", insecure=True,
                                      transport=httpx.MockTransport(handler))

        async def _go():
            async with transport:
                await transport.push_blob(REF, b"data", DATA_LAYER)

        with pytest.raises(RegistryError, match="upload location"):
            asyncio.run(_go())

    def test_blob_exists(self, fake_registry):
        digest = fake_registry.seed_blob(REPO, b"present")

        assert _run(fake_registry, lambda t: t.blob_exists(REF, digest)) is True
        assert _run(fake_registry, lambda t: t.blob_exists(REF, digest_of(b"absent"))) is False

    def test_blob_exists_swallows_registry_errors(self, fake_registry):
        fake_registry.require_token = True
        fake_registry.basic_auth = ("user", "right")

        result = _run(fake_registry, lambda t: t.blob_exists(REF, digest_of(b"x")),
                      credential=BasicAuth("user", "wrong"))

        assert result is False


class TestTokenChallenge:
    """Test the Bearer token challenge flow."""

    def test_anonymous_token(self):
        registry = FakeRegistry(require_token=True)
        digest = registry.seed_blob(REPO, b"content")

        assert _run(registry, lambda t: t.fetch_blob(REF, digest)) == b"content"
        assert registry.token_requests == 1

    def test_basic_credentials_exchanged_for_token(self):
        registry = FakeRegistry(require_token=True, basic_auth=("alice", "pw"))
        digest = registry.seed_blob(REPO, b"content")

        result = _run(registry, lambda t: t.fetch_blob(REF, digest), credential=BasicAuth("alice", "pw"))

        assert result == b"content"
        assert registry.token_requests == 1

    def test_token_cached_per_scope(self):
        registry = FakeRegistry(require_token=True)
        first = registry.seed_blob(REPO, b"one")
        second = registry.seed_blob(REPO, b"two")

        async def fetch_both(transport):
            return [await transport.fetch_blob(REF, first), await transport.fetch_blob(REF, second)]

        assert _run(registry, fetch_both) == [b"one", b"two"]
        assert registry.token_requests == 1

    def test_rejected_credentials(self):
        registry = FakeRegistry(require_token=True, basic_auth=("alice", "pw"))
        digest = registry.seed_blob(REPO, b"content")

        with pytest.raises(RegistryError, match="Token request"):
            _run(registry, lambda t: t.fetch_blob(REF, digest), credential=BasicAuth("alice", "nope"))

    def test_bearer_token_sent_directly(self):
        registry = FakeRegistry(require_token=True)
        digest = registry.seed_blob(REPO, b"content")

        result = _run(registry, lambda t: t.fetch_blob(REF, digest), credential=BearerToken(FAKE_TOKEN))

        assert result == b"content"
        assert registry.token_requests == 0

    def test_rejected_bearer_token(self):
        registry = FakeRegistry(require_token=True)
        digest = registry.seed_blob(REPO, b"content")

        with pytest.raises(RegistryError, match="Authentication failed") as exc_info:
            _run(registry, lambda t: t.fetch_blob(REF, digest), credential=BearerToken("stale"))

        assert exc_info.value.status_code == 401
        assert registry.token_requests == 0

    @pytest.mark.parametrize("body", [["not", "an", "object"], "token-as-string"])
    def test_token_response_not_an_object(self, body):
        def handler(request):
            if request.url.host == "auth.example.com":
                return httpx.Response(200, json=body)
            return httpx.Response(401, headers={"WWW-Authenticate": 'Bearer realm="https://auth.example.com/token"'})

        transport = RegistryTransport("registry.example.com", insecure=True,
                                      transport=httpx.MockTransport(handler))

        async def _go():
            async with transport:
                return await transport.fetch_blob(REF, digest_of(b"x"))

        with pytest.raises(ParseError, match="did not return a JSON object"):
            asyncio.run(_go())


class TestRetries:
    """Test retry behavior for network failures."""

    @staticmethod
    def _flaky(failures: int, registry: FakeRegistry):
        attempts = {"count": 0}

        def handler(request):
            attempts["count"] += 1
            if attempts["count"] <= failures:
                raise httpx.ConnectError("connection refused", request=request)
            return registry.handle(request)
        return handler, attempts

    def _transport(self, handler, retries):
        transport = RegistryTransport("registry.example.com", insecure=True, retries=retries,
                                      transport=httpx.MockTransport(handler))
        transport._retry_wait = wait_none()
        return transport

    def test_no_retry_by_default(self, fake_registry):
        digest = fake_registry.seed_blob(REPO, b"content")
        handler, attempts = self._flaky(1, fake_registry)
        transport = self._transport(handler, retries=0)

        async def _go():
            async with transport:
                return await transport.fetch_blob(REF, digest)

        with pytest.raises(RegistryError, match="Network error"):
            asyncio.run(_go())
        assert attempts["count"] == 1

    def test_retry_recovers(self, fake_registry):
        digest = fake_registry.seed_blob(REPO, b"content")
        handler, attempts = self._flaky(2, fake_registry)
        transport = self._transport(handler, retries=2)

        async def _go():
            async with transport:
                return await transport.fetch_blob(REF, digest)

        assert asyncio.run(_go()) == b"content"
        assert attempts["count"] == 3

"""Root pytest configuration for wasm-oci tests."""
import pytest

from wasm_oci.distribution import DistributionClient
from wasm_oci.settings import Settings
from wasm_oci.storage.cache import ContentCache
from wasm_oci.storage.docker_auth import DockerAuth
from wasm_oci.storage.registry_http import RegistryTransport

from .fakes.fake_registry import FakeRegistry
from .helpers.apps import write_app


# Set up test environment variables
@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Keep tests away from the real Docker config and cache directory."""
    monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "docker"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in (
        "WASM_OCI_CACHE_DIR",
        "WASM_OCI_INSECURE",
        "WASM_OCI_REGISTRY_USERNAME",
        "WASM_OCI_REGISTRY_PASSWORD",
        "WASM_OCI_REGISTRY_TOKEN",
        "WASM_OCI_HTTP_TIMEOUT",
        "WASM_OCI_HTTP_RETRY",
        "WASM_OCI_SKIP_EXISTING_BLOBS",
        "WASM_OCI_VERIFY_CACHE",
    ):
        monkeypatch.delenv(var, raising=False)


# Standardized test fixtures
@pytest.fixture
def settings(tmp_path):
    """Standard test settings."""
    return Settings(cache_root=tmp_path / "cache", insecure=True)


@pytest.fixture
def cache(settings):
    return ContentCache(settings.cache_root)


@pytest.fixture
def fake_registry():
    """In-memory OCI registry."""
    return FakeRegistry()


@pytest.fixture
def make_client(settings, fake_registry, tmp_path):
    """Build a DistributionClient wired to the fake registry."""
    def _make(client_settings=None, registry=None):
        registry = registry or fake_registry
        client_settings = client_settings or settings

        def factory(ref, credential):
            return RegistryTransport.for_reference(
                ref, credential, insecure=True, transport=registry.transport()
            )

        return DistributionClient(
            client_settings,
            transport_factory=factory,
            docker_auth=DockerAuth(tmp_path / "docker" / "config.json"),
        )
    return _make


@pytest.fixture
def client(make_client):
    """Standard distribution client against the fake registry."""
    return make_client()


@pytest.fixture
def app(tmp_path):
    """Application with a module and two mounted files."""
    return write_app(tmp_path / "app")

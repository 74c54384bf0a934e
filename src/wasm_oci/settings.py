"""
Settings and configuration for wasm-oci.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at client construction time.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

__all__ = ["Settings", "create_settings_from_env", "default_cache_root"]

CONFIG_DIR = "fermyon"
REGISTRY_CACHE_DIR = "registry"
OCI_CACHE_DIR = "oci"


def default_cache_root() -> Path:
    """
    Default cache root: ``<config dir>/fermyon/registry/oci``.

    The config dir is ``$XDG_CONFIG_HOME`` or ``~/.config``.
    """
    config_home = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / CONFIG_DIR / REGISTRY_CACHE_DIR / OCI_CACHE_DIR


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for the distribution client.

    Cache Settings:
        cache_root: Root directory of the local content cache
        verify_cache_hits: Re-hash cached blobs before trusting them

    Registry Settings:
        insecure: Use plain HTTP instead of HTTPS
        registry_user: Username for registry authentication
        registry_pass: Password for registry authentication
        registry_token: Bearer token handed in by the caller
        docker_config: Directory containing Docker's config.json
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Number of retries for timed out requests (0=no retry)
        skip_existing_blobs: HEAD blobs before upload and skip those present
    """
    # Cache settings
    cache_root: Path = field(default_factory=default_cache_root)
    verify_cache_hits: bool = True

    # Registry settings
    insecure: bool = False
    registry_user: Optional[str] = None
    registry_pass: Optional[str] = None
    registry_token: Optional[str] = None
    docker_config: Optional[Path] = None
    http_timeout_s: float = 30.0
    http_retry: int = 0
    skip_existing_blobs: bool = True

    def __post_init__(self):
        """Validate settings on construction."""
        if not str(self.cache_root):
            raise ValueError("cache_root is required")

        # Validate timeouts are positive
        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        # Validate retry count is non-negative
        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        # Basic credentials must be complete
        if self.registry_user and not self.registry_pass:
            raise ValueError("registry_user specified but registry_pass is missing")
        if self.registry_pass and not self.registry_user:
            raise ValueError("registry_pass specified but registry_user is missing")

        if self.registry_token and self.registry_user:
            raise ValueError("Specify either registry_token OR (registry_user + registry_pass), not both")

    def with_overrides(self, *, cache_root: Optional[Path] = None,
                       insecure: Optional[bool] = None) -> Settings:
        """Return a copy with CLI overrides applied; None leaves a value unchanged."""
        changes = {}
        if cache_root is not None:
            changes["cache_root"] = Path(cache_root)
        if insecure is not None:
            changes["insecure"] = insecure
        return replace(self, **changes) if changes else self


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        Cache:
        - WASM_OCI_CACHE_DIR (default: $XDG_CONFIG_HOME/fermyon/registry/oci)
        - WASM_OCI_VERIFY_CACHE (default: true)

        Registry:
        - WASM_OCI_INSECURE (default: false)
        - WASM_OCI_REGISTRY_USERNAME (optional)
        - WASM_OCI_REGISTRY_PASSWORD (optional)
        - WASM_OCI_REGISTRY_TOKEN (optional)
        - DOCKER_CONFIG (optional, directory containing config.json)
        - WASM_OCI_HTTP_TIMEOUT (default: 30.0)
        - WASM_OCI_HTTP_RETRY (default: 0)
        - WASM_OCI_SKIP_EXISTING_BLOBS (default: true)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    cache_dir = os.getenv("WASM_OCI_CACHE_DIR")
    docker_config = os.getenv("DOCKER_CONFIG")

    return Settings(
        cache_root=Path(cache_dir) if cache_dir else default_cache_root(),
        verify_cache_hits=str_to_bool(os.getenv("WASM_OCI_VERIFY_CACHE", "true")),
        insecure=str_to_bool(os.getenv("WASM_OCI_INSECURE", "false")),
        registry_user=os.getenv("WASM_OCI_REGISTRY_USERNAME") or None,
        registry_pass=os.getenv("WASM_OCI_REGISTRY_PASSWORD") or None,
        registry_token=os.getenv("WASM_OCI_REGISTRY_TOKEN") or None,
        docker_config=Path(docker_config) if docker_config else None,
        http_timeout_s=get_float("WASM_OCI_HTTP_TIMEOUT", 30.0),
        http_retry=get_int("WASM_OCI_HTTP_RETRY", 0),
        skip_existing_blobs=str_to_bool(os.getenv("WASM_OCI_SKIP_EXISTING_BLOBS", "true")),
    )

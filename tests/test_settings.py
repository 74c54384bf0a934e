"""
Tests for settings module.

Tests settings validation, CLI overrides and environment variable loading.
"""
from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from wasm_oci.settings import Settings, create_settings_from_env, default_cache_root


class TestSettings:
    """Test Settings dataclass validation."""

    def test_defaults(self, tmp_path):
        """Test creating settings with only a cache root."""
        settings = Settings(cache_root=tmp_path)
        assert settings.cache_root == tmp_path
        assert settings.verify_cache_hits is True
        assert settings.insecure is False
        assert settings.http_timeout_s == 30.0
        assert settings.http_retry == 0
        assert settings.skip_existing_blobs is True
        assert settings.registry_user is None
        assert settings.registry_token is None

    def test_default_cache_root(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
        assert default_cache_root() == tmp_path / "config" / "fermyon" / "registry" / "oci"
        assert Settings().cache_root == default_cache_root()

    def test_default_cache_root_without_xdg(self, monkeypatch):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        assert default_cache_root() == Path.home() / ".config" / "fermyon" / "registry" / "oci"

    def test_zero_timeout_raises(self, tmp_path):
        with pytest.raises(ValueError, match="http_timeout_s must be positive"):
            Settings(cache_root=tmp_path, http_timeout_s=0.0)

    def test_negative_retry_raises(self, tmp_path):
        with pytest.raises(ValueError, match="http_retry must be non-negative"):
            Settings(cache_root=tmp_path, http_retry=-1)

    def test_user_without_password_raises(self, tmp_path):
        with pytest.raises(ValueError, match="registry_pass is missing"):
            Settings(cache_root=tmp_path, registry_user="alice")

    def test_password_without_user_raises(self, tmp_path):
        with pytest.raises(ValueError, match="registry_user is missing"):
            Settings(cache_root=tmp_path, registry_pass="pw")

    def test_token_and_basic_raises(self, tmp_path):
        with pytest.raises(ValueError, match="Specify either registry_token OR"):
            Settings(cache_root=tmp_path, registry_user="alice", registry_pass="pw", registry_token="tok")

    def test_settings_are_frozen(self, tmp_path):
        settings = Settings(cache_root=tmp_path)
        with pytest.raises(AttributeError):
            settings.insecure = True  # type: ignore[misc]


class TestOverrides:
    """Test with_overrides."""

    def test_overrides_applied(self, tmp_path):
        settings = Settings(cache_root=tmp_path / "a")
        updated = settings.with_overrides(cache_root=tmp_path / "b", insecure=True)

        assert updated.cache_root == tmp_path / "b"
        assert updated.insecure is True
        assert settings.insecure is False

    def test_none_leaves_values(self, tmp_path):
        settings = Settings(cache_root=tmp_path, insecure=True)
        assert settings.with_overrides() is settings
        assert settings.with_overrides(insecure=None).insecure is True

    def test_explicit_false_override(self, tmp_path):
        settings = Settings(cache_root=tmp_path, insecure=True)
        assert settings.with_overrides(insecure=False).insecure is False


class TestCreateSettingsFromEnv:
    """Test environment variable loading."""

    def test_empty_environment(self, tmp_path):
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}, clear=True):
            settings = create_settings_from_env()

        assert settings.cache_root == tmp_path / "fermyon" / "registry" / "oci"
        assert settings.insecure is False
        assert settings.docker_config is None
        assert settings.verify_cache_hits is True

    def test_all_variables(self, tmp_path):
        env = {
            "WASM_OCI_CACHE_DIR": str(tmp_path / "cache"),
            "WASM_OCI_VERIFY_CACHE": "false",
            "WASM_OCI_INSECURE": "true",
            "WASM_OCI_REGISTRY_USERNAME": "alice",
            "WASM_OCI_REGISTRY_PASSWORD": "pw",
            "DOCKER_CONFIG": str(tmp_path / "docker"),
            "WASM_OCI_HTTP_TIMEOUT": "12.5",
            "WASM_OCI_HTTP_RETRY": "3",
            "WASM_OCI_SKIP_EXISTING_BLOBS": "0",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = create_settings_from_env()

        assert settings.cache_root == tmp_path / "cache"
        assert settings.verify_cache_hits is False
        assert settings.insecure is True
        assert settings.registry_user == "alice"
        assert settings.registry_pass == "pw"
        assert settings.docker_config == tmp_path / "docker"
        assert settings.http_timeout_s == 12.5
        assert settings.http_retry == 3
        assert settings.skip_existing_blobs is False

    def test_token_from_env(self):
        with patch.dict(os.environ, {"WASM_OCI_REGISTRY_TOKEN": "tok"}, clear=True):
            assert create_settings_from_env().registry_token == "tok"

    def test_empty_values_ignored(self):
        with patch.dict(os.environ, {"WASM_OCI_REGISTRY_USERNAME": "", "WASM_OCI_HTTP_TIMEOUT": ""}, clear=True):
            settings = create_settings_from_env()

        assert settings.registry_user is None
        assert settings.http_timeout_s == 30.0

    def test_invalid_values_raise(self):
        with patch.dict(os.environ, {"WASM_OCI_HTTP_RETRY": "-2"}, clear=True):
            with pytest.raises(ValueError, match="http_retry"):
                create_settings_from_env()

    def test_fresh_instance_each_call(self):
        assert create_settings_from_env() is not create_settings_from_env()

"""
Registry credential resolution.

Looks up credentials for a registry host in the Docker configuration
(``auths`` entries and credential helpers) and turns the result into one of
a small closed set of credential variants used by the transport.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .oci_errors import AuthError

__all__ = [
    "Anonymous",
    "BasicAuth",
    "BearerToken",
    "Credential",
    "UsernamePassword",
    "IdentityToken",
    "DockerAuth",
    "CredentialRetrievalError",
    "CredentialConfigNotFound",
    "NoCredentialConfigured",
    "CredentialConfigReadError",
    "CredentialHelperError",
    "CredentialDecodingError",
    "resolve_credential",
]

logger = logging.getLogger(__name__)

HELPER_TIMEOUT_S = 30.0


# Credential variants used for requests


@dataclass(frozen=True)
class Anonymous:
    """No credentials; requests go out unauthenticated."""


@dataclass(frozen=True)
class BasicAuth:
    """Username/password sent as HTTP basic auth or exchanged for a token."""
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class BearerToken:
    """Pre-resolved bearer token handed in by the caller."""
    token: str = field(repr=False)


Credential = Union[Anonymous, BasicAuth, BearerToken]


# Docker lookup results


@dataclass(frozen=True)
class UsernamePassword:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class IdentityToken:
    token: str = field(repr=False)


class CredentialRetrievalError(Exception):
    """Base class for Docker credential lookup failures."""


class CredentialConfigNotFound(CredentialRetrievalError):
    """No Docker config file exists."""


class NoCredentialConfigured(CredentialRetrievalError):
    """The config has no credential for the requested registry."""


class CredentialConfigReadError(CredentialRetrievalError):
    """The Docker config file exists but cannot be read or parsed."""


class CredentialHelperError(CredentialRetrievalError):
    """A credential helper is missing, failed, or returned garbage."""


class CredentialDecodingError(CredentialRetrievalError):
    """An inline ``auths`` entry cannot be decoded."""


class DockerAuth:
    """Look up registry credentials from the Docker config file."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            docker_config_dir = os.getenv("DOCKER_CONFIG", str(Path.home() / ".docker"))
            config_path = Path(docker_config_dir) / "config.json"
        self.config_path = Path(config_path)
        self._config_cache: Optional[dict] = None
        self._config_mtime: Optional[float] = None

    def get_credential(self, registry: str) -> Union[UsernamePassword, IdentityToken]:
        """
        Get the credential configured for a registry host.

        Per-registry credential helpers take precedence, then inline
        ``auths`` entries, then the global credential store.

        Raises:
            CredentialConfigNotFound: If there is no config file
            CredentialConfigReadError: If the config file is unreadable
            NoCredentialConfigured: If nothing is configured for registry
            CredentialHelperError: If a credential helper fails
            CredentialDecodingError: If an inline auth entry is malformed
        """
        config = self._load_config()

        helper = (config.get("credHelpers") or {}).get(registry)
        if helper:
            return self._from_helper(helper, registry)

        auths = config.get("auths") or {}
        for key in (registry, f"https://{registry}", f"http://{registry}", f"https://{registry}/v1/"):
            if key in auths:
                credential = self._from_auth_entry(auths[key], registry)
                if credential is not None:
                    return credential

        store = config.get("credsStore")
        if store:
            return self._from_helper(store, registry)

        raise NoCredentialConfigured(f"No credentials configured for {registry}")

    def _from_auth_entry(self, entry: dict, registry: str) -> Optional[Union[UsernamePassword, IdentityToken]]:
        if entry.get("identitytoken"):
            return IdentityToken(entry["identitytoken"])

        # Handle base64 encoded auth field
        if entry.get("auth"):
            try:
                decoded = base64.b64decode(entry["auth"]).decode()
            except (binascii.Error, UnicodeDecodeError) as e:
                raise CredentialDecodingError(f"Invalid auth entry for {registry}: {e}") from e
            if ":" not in decoded:
                raise CredentialDecodingError(f"Invalid auth entry for {registry}: missing ':' separator")
            username, password = decoded.split(":", 1)
            return UsernamePassword(username, password)

        # Handle username/password fields
        if entry.get("username") and entry.get("password"):
            return UsernamePassword(entry["username"], entry["password"])

        return None

    def _from_helper(self, helper: str, registry: str) -> Union[UsernamePassword, IdentityToken]:
        program = f"docker-credential-{helper}"
        try:
            result = subprocess.run(
                [program, "get"],
                input=registry,
                capture_output=True,
                text=True,
                timeout=HELPER_TIMEOUT_S,
            )
        except FileNotFoundError as e:
            raise CredentialHelperError(f"Credential helper not found: {program}") from e
        except subprocess.TimeoutExpired as e:
            raise CredentialHelperError(f"Credential helper {program} timed out") from e

        if result.returncode != 0:
            output = f"{result.stdout} {result.stderr}".lower()
            if "credentials not found" in output:
                raise NoCredentialConfigured(f"{program} has no credentials for {registry}")
            raise CredentialHelperError(f"{program} failed: {result.stderr.strip() or result.stdout.strip()}")

        try:
            payload = json.loads(result.stdout)
            username = payload["Username"]
            secret = payload["Secret"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise CredentialHelperError(f"{program} returned an invalid response") from e

        if username == "<token>":
            return IdentityToken(secret)
        return UsernamePassword(username, secret)

    def _load_config(self) -> dict:
        """Load Docker config with caching and mtime checking."""
        if not self.config_path.exists():
            raise CredentialConfigNotFound(f"Docker config not found: {self.config_path}")

        try:
            current_mtime = self.config_path.stat().st_mtime

            # Use cached version if file hasn't changed
            if (self._config_cache is not None and
                    self._config_mtime is not None and
                    current_mtime == self._config_mtime):
                return self._config_cache

            with open(self.config_path, 'r') as f:
                config = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CredentialConfigReadError(f"Failed to read Docker config {self.config_path}: {e}") from e

        if not isinstance(config, dict):
            raise CredentialConfigReadError(f"Docker config is not a JSON object: {self.config_path}")

        self._config_cache = config
        self._config_mtime = current_mtime
        return config


def resolve_credential(registry: str, *,
                       username: Optional[str] = None,
                       password: Optional[str] = None,
                       token: Optional[str] = None,
                       docker_auth: Optional[DockerAuth] = None) -> Credential:
    """
    Resolve the credential to use for a registry host.

    Explicit credentials from the caller win. Otherwise the Docker config is
    consulted: username/password becomes basic auth; identity tokens are not
    supported and fall back to anonymous with a warning; a missing or
    unreadable config, or no entry for the host, is anonymous.

    Raises:
        AuthError: For any other lookup failure (e.g. a broken credential helper)
    """
    if token:
        return BearerToken(token)
    if username and password:
        return BasicAuth(username, password)

    docker_auth = docker_auth or DockerAuth()
    try:
        credential = docker_auth.get_credential(registry)
    except (CredentialConfigNotFound, NoCredentialConfigured, CredentialConfigReadError) as e:
        logger.debug(f"No usable Docker credentials for {registry} ({e}), using anonymous auth")
        return Anonymous()
    except CredentialRetrievalError as e:
        raise AuthError(f"Error handling Docker configuration for {registry}: {e}") from e

    if isinstance(credential, UsernamePassword):
        logger.debug(f"Found Docker credentials for {registry}")
        return BasicAuth(credential.username, credential.password)

    logger.warning(
        f"Cannot use Docker credentials for {registry}: identity tokens are not supported. "
        "Using anonymous auth"
    )
    return Anonymous()

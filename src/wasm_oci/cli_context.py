"""
CLI Context for managing application dependencies.

Provides a clean way to manage CLI-level dependencies like settings and the
distribution client, avoiding global state and enabling dependency injection.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .distribution import DistributionClient
from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Holds the settings for one command execution and lazily builds the
    distribution client (and with it the cache) on first use.
    """
    settings: Settings
    _client: Optional[DistributionClient] = None

    @classmethod
    def from_env(cls, *, cache_dir: Optional[Path] = None,
                 insecure: Optional[bool] = None) -> CLIContext:
        """
        Create CLI context from environment variables plus CLI overrides.
        """
        settings = create_settings_from_env().with_overrides(cache_root=cache_dir, insecure=insecure)
        return cls(settings=settings)

    @property
    def client(self) -> DistributionClient:
        """Get or create the distribution client (lazy initialization)."""
        if self._client is None:
            self._client = DistributionClient(self.settings)
        return self._client

"""
wasm-oci: distribute Wasm applications through OCI registries.

Pushes applications to a registry and pulls them into a local,
content-addressed cache.
"""
from .distribution import DistributionClient, PullResult, PushResult
from .settings import Settings, create_settings_from_env
from .storage.cache import ContentCache
from .storage.reference import Reference, parse_reference

__all__ = [
    "DistributionClient",
    "PullResult",
    "PushResult",
    "Settings",
    "create_settings_from_env",
    "ContentCache",
    "Reference",
    "parse_reference",
]

"""
OCI media types and constants.

Single source of truth for all media types, annotation keys and the mapping
from layer media type to cache storage category.
"""
from __future__ import annotations

from enum import Enum

# OCI manifest types
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"

# Manifest types accepted on pull (in order of preference)
ACCEPTED_MANIFEST_TYPES = [
    OCI_IMAGE_MANIFEST,
    DOCKER_MANIFEST_V2,
]

# Wasm artifact types
WASM_CONFIG = "application/vnd.wasm.config.v1+json"
WASM_LAYER = "application/vnd.wasm.content.layer.v1+wasm"
DATA_LAYER = "application/vnd.wasm.content.layer.v1+data"

# Annotations
TITLE_ANNOTATION = "org.opencontainers.image.title"
FILE_DIGEST_ANNOTATION = "dev.wasm-oci.file.digest"


class BlobCategory(str, Enum):
    """Cache storage categories; the value is the cache subdirectory name."""
    MODULE = "wasm"
    DATA = "data"


def category_for_media_type(media_type: str) -> BlobCategory:
    """
    Map a layer media type to the cache category it is stored in.

    Only the Wasm module media type goes to the module directory; every
    other layer (data files, unknown types) is stored as data.
    """
    if media_type == WASM_LAYER:
        return BlobCategory.MODULE
    return BlobCategory.DATA


__all__ = [
    "OCI_IMAGE_MANIFEST",
    "DOCKER_MANIFEST_V2",
    "ACCEPTED_MANIFEST_TYPES",
    "WASM_CONFIG",
    "WASM_LAYER",
    "DATA_LAYER",
    "TITLE_ANNOTATION",
    "FILE_DIGEST_ANNOTATION",
    "BlobCategory",
    "category_for_media_type",
]

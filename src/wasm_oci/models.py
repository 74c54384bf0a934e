"""
Data models for Wasm application distribution.

These Pydantic models describe the application being pushed (parsed from a
YAML descriptor), the locked config object stored in the registry, and the
OCI descriptors and manifest that tie layers together.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .path_safety import safe_digest, safe_relpath
from .storage.oci_errors import ParseError
from .storage.oci_media_types import OCI_IMAGE_MANIFEST


def _canonical_json(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode('utf-8')


def _parse_json(payload: bytes, what: str) -> Any:
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON in {what}: {e}") from e


# Application descriptor (input to push)


class FileMount(BaseModel):
    """A file shipped with the component, mounted at a guest path."""
    source: Path = Field(..., description="Host path of the file")
    guest: str = Field(..., description="Guest-relative mount path")

    @field_validator("guest")
    @classmethod
    def validate_guest(cls, v):
        return safe_relpath(v)


class Component(BaseModel):
    """The single Wasm component of an application."""
    id: str = Field(..., min_length=1, description="Component identifier")
    source: Path = Field(..., description="Path to the compiled Wasm module")
    environment: Dict[str, str] = Field(default_factory=dict, description="Environment variables")
    files: List[FileMount] = Field(default_factory=list, description="Files mounted into the guest")

    @field_validator("files", mode="before")
    @classmethod
    def expand_file_shorthand(cls, v):
        """Allow bare strings, meaning the same path on host and guest."""
        if not isinstance(v, list):
            return v
        return [{"source": item, "guest": item} if isinstance(item, str) else item for item in v]


class Application(BaseModel):
    """
    Application descriptor parsed from an application YAML file.

    Example::

        name: hello
        version: 1.0.0
        component:
          id: hello
          source: target/hello.wasm
          environment:
            GREETING: hi
          files:
            - assets/index.html
            - source: static/logo.png
              guest: assets/logo.png
    """
    name: str = Field(..., min_length=1, description="Application name")
    version: str = Field(..., min_length=1, description="Application version")
    description: Optional[str] = Field(default=None, description="Application description")
    component: Component = Field(..., description="The application's Wasm component")

    @classmethod
    def from_yaml_file(cls, path: Path) -> Application:
        """
        Load an Application from a YAML file.

        Relative source paths are resolved against the YAML file's directory.
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Application descriptor not found: {path}")

        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ParseError(f"Application descriptor must be a mapping: {path}")

        app = cls.model_validate(data)
        return app.relative_to(path.parent)

    def relative_to(self, base_dir: Path) -> Application:
        """Return a copy with relative source paths anchored at base_dir."""
        def anchor(p: Path) -> Path:
            return p if p.is_absolute() else base_dir / p

        component = self.component.model_copy(update={
            "source": anchor(self.component.source),
            "files": [f.model_copy(update={"source": anchor(f.source)}) for f in self.component.files],
        })
        return self.model_copy(update={"component": component})


# Locked config object (stored as the manifest config blob)


class FileMountConfig(BaseModel):
    """Guest path and content digest of one mounted file."""
    guest: str
    digest: str


class ComponentConfig(BaseModel):
    """Runtime configuration for one component."""
    architecture: str = "wasm"
    os: str = "wasi"
    environment: Dict[str, str] = Field(default_factory=dict)
    files: List[FileMountConfig] = Field(default_factory=list)


class OciConfig(BaseModel):
    """
    Locked application descriptor distributed as the OCI config object.

    Components are keyed by component id; the id is also the title
    annotation of the component's module layer.
    """
    name: str
    version: str
    description: Optional[str] = None
    components: Dict[str, ComponentConfig] = Field(default_factory=dict)

    def to_bytes(self) -> bytes:
        return _canonical_json(self.model_dump(exclude_none=True))

    @classmethod
    def from_bytes(cls, payload: bytes) -> OciConfig:
        data = _parse_json(payload, "config")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Invalid config object: {e}") from e


# OCI descriptors and manifest


class Descriptor(BaseModel):
    """OCI content descriptor (used for config and layers)."""
    model_config = ConfigDict(populate_by_name=True)

    media_type: str = Field(..., alias="mediaType")
    digest: str = Field(..., description="Content digest (sha256:...)")
    size: int = Field(..., ge=0, description="Blob size in bytes")
    annotations: Optional[Dict[str, str]] = None

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v):
        # Digests end up in registry URLs and cache file names
        return safe_digest(v)

    def annotation(self, key: str) -> Optional[str]:
        return (self.annotations or {}).get(key)


class Manifest(BaseModel):
    """
    OCI image manifest.

    Layer order is significant and preserved exactly through serialization.
    """
    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: Optional[str] = Field(default=OCI_IMAGE_MANIFEST, alias="mediaType")
    config: Descriptor
    layers: List[Descriptor] = Field(default_factory=list)
    annotations: Optional[Dict[str, str]] = None

    def to_bytes(self) -> bytes:
        return _canonical_json(self.model_dump(by_alias=True, exclude_none=True))

    @classmethod
    def from_bytes(cls, payload: bytes) -> Manifest:
        data = _parse_json(payload, "manifest")
        if not isinstance(data, dict):
            raise ParseError("Manifest must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Invalid manifest: {e}") from e


# Reassembled component (output of DistributionClient.component)


@dataclass(frozen=True)
class MountedFile:
    """A cached data blob and the guest path it is mounted at."""
    guest: str
    digest: str
    source: Path


@dataclass(frozen=True)
class ResolvedComponent:
    """A component rebuilt from a pulled manifest and config."""
    id: str
    source: Path
    environment: Dict[str, str] = field(default_factory=dict)
    files: List[MountedFile] = field(default_factory=list)


@dataclass(frozen=True)
class AppDescriptor:
    """Cached manifest together with its config object."""
    manifest: Manifest
    config: OciConfig


__all__ = [
    "FileMount",
    "Component",
    "Application",
    "FileMountConfig",
    "ComponentConfig",
    "OciConfig",
    "Descriptor",
    "Manifest",
    "MountedFile",
    "ResolvedComponent",
    "AppDescriptor",
]

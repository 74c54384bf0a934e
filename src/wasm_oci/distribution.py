"""
Distribution client for Wasm applications.

Main entry point for pushing applications to an OCI registry and pulling
them back into the local content cache. Orchestrates layer construction,
credential resolution, the registry transport and the cache.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from .models import (
    AppDescriptor,
    Application,
    ComponentConfig,
    Descriptor,
    FileMountConfig,
    Manifest,
    MountedFile,
    OciConfig,
    ResolvedComponent,
)
from .settings import Settings
from .storage.cache import ContentCache, compute_digest
from .storage.docker_auth import Credential, DockerAuth, resolve_credential
from .storage.oci_errors import CacheIOError, DigestMismatch, NotFoundError, ParseError
from .storage.oci_media_types import (
    DATA_LAYER,
    FILE_DIGEST_ANNOTATION,
    TITLE_ANNOTATION,
    WASM_CONFIG,
    WASM_LAYER,
    BlobCategory,
    category_for_media_type,
)
from .storage.reference import Reference, parse_reference
from .storage.registry_http import RegistryTransport

__all__ = ["DistributionClient", "PushResult", "PullResult", "TransportFactory"]

logger = logging.getLogger(__name__)

TransportFactory = Callable[[Reference, Credential], RegistryTransport]


@dataclass(frozen=True)
class PushResult:
    """Outcome of a successful push; the manifest push is the commit point."""
    reference: Reference
    manifest_digest: str
    pushed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PullResult:
    """Outcome of a successful pull."""
    reference: Reference
    manifest_digest: str
    fetched: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Layer:
    descriptor: Descriptor
    data: bytes


def _as_reference(reference: Union[str, Reference]) -> Reference:
    if isinstance(reference, Reference):
        return reference
    return parse_reference(reference)


def _read_source(path: Path, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except FileNotFoundError as e:
        raise NotFoundError(f"{what} not found: {path}") from e
    except OSError as e:
        raise CacheIOError(f"Failed to read {what} {path}: {e}") from e


class DistributionClient:
    """
    Push and pull Wasm applications through an OCI registry.

    Push builds one module layer (first, titled with the component id), one
    data layer per mounted file, and a config blob holding the locked
    application descriptor. Blobs are pushed one at a time in manifest order
    and the manifest goes last.

    Pull writes the manifest and config under the reference (overwriting any
    earlier pull) and fetches only the layers whose digest is not already in
    the cache, so an interrupted pull resumes where it stopped.

    Failures are raised as DistributionError subclasses; nothing is retried
    here.
    """

    def __init__(self, settings: Optional[Settings] = None, *,
                 cache: Optional[ContentCache] = None,
                 transport_factory: Optional[TransportFactory] = None,
                 docker_auth: Optional[DockerAuth] = None):
        """
        Initialize the client.

        Args:
            settings: Settings (loaded from env if None)
            cache: Content cache (created at settings.cache_root if None)
            transport_factory: Builds a transport for a reference and
                credential (defaults to RegistryTransport over HTTP)
            docker_auth: Docker credential lookup (default Docker config)
        """
        if settings is None:
            from .settings import create_settings_from_env
            settings = create_settings_from_env()
        self.settings = settings
        self.cache = cache or ContentCache(settings.cache_root, verify_on_hit=settings.verify_cache_hits)
        self._transport_factory = transport_factory
        self._docker_auth = docker_auth or DockerAuth(
            settings.docker_config / "config.json" if settings.docker_config else None
        )

    # Push

    async def push(self, app: Application, reference: Union[str, Reference]) -> PushResult:
        """
        Push an application to the registry.

        Order: config blob, module blob, data blobs, manifest.

        Returns:
            PushResult with the manifest digest

        Raises:
            ParseError: If the reference is malformed
            NotFoundError: If a source file is missing
            RegistryError: If the registry rejects an upload
            AuthError: If credential lookup fails
        """
        ref = _as_reference(reference)
        credential = self._credential(ref)
        logger.info(f"Pushing {app.name} {app.version} to {ref}")

        layers, config = self._build_layers(app)
        config_bytes = config.to_bytes()
        manifest = Manifest(
            config=Descriptor(
                media_type=WASM_CONFIG,
                digest=compute_digest(config_bytes),
                size=len(config_bytes),
            ),
            layers=[layer.descriptor for layer in layers],
        )

        pushed: List[str] = []
        skipped: List[str] = []
        async with self._transport(ref, credential) as transport:
            await self._push_blob(transport, ref, config_bytes, WASM_CONFIG, pushed, skipped)
            for layer in layers:
                await self._push_blob(transport, ref, layer.data, layer.descriptor.media_type, pushed, skipped)
            manifest_digest = await transport.push_manifest(ref, manifest)

        # Keep what was pushed available locally, as if it had been pulled
        for layer in layers:
            self.cache.write_blob(layer.data, layer.descriptor.digest,
                                  category_for_media_type(layer.descriptor.media_type))
        self.cache.write_config(ref, config_bytes)
        self.cache.write_manifest(ref, manifest.to_bytes())

        logger.info(f"Pushed {ref}@{manifest_digest}")
        return PushResult(reference=ref, manifest_digest=manifest_digest, pushed=pushed, skipped=skipped)

    def _build_layers(self, app: Application) -> Tuple[List[_Layer], OciConfig]:
        component = app.component

        # The module is always the first layer; its title is the component id
        module = _read_source(component.source, "Wasm module")
        layers = [_Layer(
            descriptor=Descriptor(
                media_type=WASM_LAYER,
                digest=compute_digest(module),
                size=len(module),
                annotations={TITLE_ANNOTATION: component.id},
            ),
            data=module,
        )]

        mounts: List[FileMountConfig] = []
        for mount in component.files:
            data = _read_source(mount.source, "Mounted file")
            digest = compute_digest(data)
            layers.append(_Layer(
                descriptor=Descriptor(
                    media_type=DATA_LAYER,
                    digest=digest,
                    size=len(data),
                    annotations={TITLE_ANNOTATION: mount.guest, FILE_DIGEST_ANNOTATION: digest},
                ),
                data=data,
            ))
            mounts.append(FileMountConfig(guest=mount.guest, digest=digest))

        config = OciConfig(
            name=app.name,
            version=app.version,
            description=app.description,
            components={
                component.id: ComponentConfig(environment=dict(component.environment), files=mounts),
            },
        )
        return layers, config

    async def _push_blob(self, transport: RegistryTransport, ref: Reference, data: bytes,
                         media_type: str, pushed: List[str], skipped: List[str]) -> None:
        digest = compute_digest(data)
        if self.settings.skip_existing_blobs and await transport.blob_exists(ref, digest):
            logger.debug(f"Blob {digest} already exists in {ref.repository}, skipping upload")
            skipped.append(digest)
            return
        await transport.push_blob(ref, data, media_type)
        pushed.append(digest)

    # Pull

    async def pull(self, reference: Union[str, Reference]) -> PullResult:
        """
        Pull a reference into the local cache.

        Only image manifests are supported, not image indexes.

        Returns:
            PullResult listing fetched and skipped layer digests

        Raises:
            ParseError: If the reference or manifest is malformed
            NotFoundError: If the manifest or a blob does not exist
            RegistryError: For other registry or network failures
            DigestMismatch: If fetched content does not match its digest
        """
        ref = _as_reference(reference)
        credential = self._credential(ref)
        logger.debug(f"Pulling {ref}")

        fetched: List[str] = []
        skipped: List[str] = []
        async with self._transport(ref, credential) as transport:
            manifest, manifest_digest = await transport.resolve_manifest(ref)

            # Config first, manifest last: a failure before the manifest write
            # leaves the previous pull's pair untouched
            config_bytes = await transport.fetch_blob(ref, manifest.config.digest)
            _verify(config_bytes, manifest.config.digest)
            self.cache.write_config(ref, config_bytes)
            self.cache.write_manifest(ref, manifest.to_bytes())

            for layer in manifest.layers:
                if self.cache.has_blob(layer.digest):
                    logger.debug(f"Layer {layer.digest} already exists in cache")
                    skipped.append(layer.digest)
                    continue
                logger.debug(f"Pulling layer {layer.digest}")
                data = await transport.fetch_blob(ref, layer.digest)
                self.cache.write_blob(data, layer.digest, category_for_media_type(layer.media_type))
                fetched.append(layer.digest)

        logger.info(f"Pulled {ref}@{manifest_digest}")
        return PullResult(reference=ref, manifest_digest=manifest_digest, fetched=fetched, skipped=skipped)

    # Cache access and reassembly

    def cache_manifest_path(self, reference: Union[str, Reference]) -> Path:
        """Path of the cached manifest.json for a reference."""
        return self.cache.manifest_path(_as_reference(reference))

    async def descriptor(self, reference: Union[str, Reference]) -> AppDescriptor:
        """
        Load the cached manifest and config, pulling first if the cached pull
        is incomplete.

        A cached pull is complete when both files exist, the config matches
        the manifest's config digest, and every layer blob is cached. An
        interrupted pull therefore resumes here instead of being trusted.
        """
        ref = _as_reference(reference)
        cached = self._cached_descriptor(ref)
        if cached is not None:
            return cached

        await self.pull(ref)
        return AppDescriptor(
            manifest=Manifest.from_bytes(self.cache.read(self.cache.manifest_path(ref))),
            config=OciConfig.from_bytes(self.cache.read(self.cache.config_path(ref))),
        )

    def _cached_descriptor(self, ref: Reference) -> Optional[AppDescriptor]:
        manifest_path = self.cache.manifest_path(ref)
        config_path = self.cache.config_path(ref)
        if not manifest_path.is_file() or not config_path.is_file():
            return None

        try:
            manifest = Manifest.from_bytes(self.cache.read(manifest_path))
            config_bytes = self.cache.read(config_path)
            _verify(config_bytes, manifest.config.digest)
            config = OciConfig.from_bytes(config_bytes)
        except (ParseError, DigestMismatch) as e:
            logger.warning(f"Cached metadata for {ref} is inconsistent ({e}), pulling again")
            return None

        missing = [layer.digest for layer in manifest.layers if not self.cache.has_blob(layer.digest)]
        if missing:
            logger.info(f"{len(missing)} layer(s) of {ref} missing from the cache, resuming pull")
            return None
        return AppDescriptor(manifest=manifest, config=config)

    async def component(self, reference: Union[str, Reference]) -> ResolvedComponent:
        """
        Rebuild the application's component from a pulled manifest.

        The module layer must be the first layer; its title annotation is the
        component id, which selects the component entry in the config. Each
        file mount in that entry is mapped to its cached data blob.

        Raises:
            ParseError: If the manifest or config does not describe a component
            NotFoundError: If a referenced blob is missing from the cache
        """
        desc = await self.descriptor(reference)
        layers = desc.manifest.layers
        if not layers:
            raise ParseError("Manifest must contain at least one layer for the Wasm module")

        module_layer = layers[0]
        if module_layer.media_type != WASM_LAYER:
            raise ParseError(f"Expected first layer to be a Wasm module, got {module_layer.media_type}")

        component_id = module_layer.annotation(TITLE_ANNOTATION)
        if not component_id:
            raise ParseError("Wasm layer title annotation must be set")

        cfg = desc.config.components.get(component_id)
        if cfg is None:
            raise ParseError(f"Expected OCI config to have an entry for component {component_id}")

        files = [
            MountedFile(guest=f.guest, digest=f.digest, source=self._locate(f.digest, BlobCategory.DATA))
            for f in cfg.files
        ]
        return ResolvedComponent(
            id=component_id,
            source=self._locate(module_layer.digest, BlobCategory.MODULE),
            environment=dict(cfg.environment),
            files=files,
        )

    def _locate(self, digest: str, category: BlobCategory) -> Path:
        path = self.cache.blob_path(digest, category)
        if path.is_file():
            return path
        # Identical content may have been stored under the other category first
        other = self.cache.find_blob(digest)
        if other is None:
            raise NotFoundError(f"Blob {digest} is not in the cache")
        return other

    # Helpers

    def _credential(self, ref: Reference) -> Credential:
        return resolve_credential(
            ref.resolve_registry(),
            username=self.settings.registry_user,
            password=self.settings.registry_pass,
            token=self.settings.registry_token,
            docker_auth=self._docker_auth,
        )

    def _transport(self, ref: Reference, credential: Credential) -> RegistryTransport:
        if self._transport_factory is not None:
            return self._transport_factory(ref, credential)
        return RegistryTransport.for_reference(
            ref,
            credential,
            insecure=self.settings.insecure,
            timeout_s=self.settings.http_timeout_s,
            retries=self.settings.http_retry,
        )


def _verify(data: bytes, digest: str) -> None:
    algorithm = digest.split(":", 1)[0]
    actual = compute_digest(data, algorithm)
    if actual != digest:
        raise DigestMismatch(f"Digest mismatch: expected {digest}, got {actual}",
                             expected=digest, actual=actual)

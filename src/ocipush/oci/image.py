"""Artifact handles: images, image indexes and their layers.

An artifact handle is either an Image or an ImageIndex, distinguished by its
``kind``. Handles expose manifests eagerly (they are small) and layer content
lazily through ``Layer.open()``, a scoped accessor that releases everything it
started when its ``with`` block exits.

Key Components:
    ArtifactKind: IMAGE or INDEX
    Layer: A blob plus its descriptor, with the lazy ``open()`` accessor
    LazyLayer: Layer streamed from an opener, optionally gzipped on the fly
    Image: A single image manifest with config and layers
    ImageIndex: An index manifest whose children are images or indexes
    StoredImage / StoredIndex: Handles backed by a digest-addressed BlobSource

Example:
    >>> index = read_layout("./layout")
    >>> image = index.image(index.index_manifest().manifests[0].digest)
    >>> for layer in image.layers():
    ...     with layer.open() as stream:
    ...         data = stream.read()
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any, BinaryIO, Union

from pydantic import ValidationError

from ocipush.oci.content import BlobSource, Opener, bytes_stream, gzip_stream, hash_stream
from ocipush.oci.errors import InvalidLayoutError, UnsupportedArtifactTypeError
from ocipush.schemas.oci import (
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    Descriptor,
    Hash,
    IndexManifest,
    is_image_media_type,
    is_index_media_type,
)


class ArtifactKind(str, Enum):
    """Kinds of artifact handle."""

    IMAGE = "image"
    INDEX = "index"


# =============================================================================
# Layers
# =============================================================================


class Layer(ABC):
    """A blob referenced by an image manifest (config or filesystem layer)."""

    @property
    @abstractmethod
    def media_type(self) -> str: ...

    @abstractmethod
    def digest(self) -> Hash:
        """Return the digest of the blob as stored in a registry."""
        ...

    @abstractmethod
    def size(self) -> int:
        """Return the size in bytes of the blob as stored in a registry."""
        ...

    @abstractmethod
    def open(self) -> AbstractContextManager[BinaryIO]:
        """Return a scoped reader over the blob's stored bytes.

        Each call starts an independent read; all resources it acquires are
        released when the returned context manager exits.
        """
        ...

    def descriptor(self) -> Descriptor:
        return Descriptor(media_type=self.media_type, digest=str(self.digest()), size=self.size())


class BlobLayer(Layer):
    """A layer whose bytes live in a BlobSource under a known descriptor."""

    def __init__(self, source: BlobSource, descriptor: Descriptor) -> None:
        self._source = source
        self._descriptor = descriptor

    @property
    def media_type(self) -> str:
        return self._descriptor.media_type

    def digest(self) -> Hash:
        return self._descriptor.hash

    def size(self) -> int:
        return self._descriptor.size

    def open(self) -> AbstractContextManager[BinaryIO]:
        return self._source.open(self._descriptor.digest)

    def descriptor(self) -> Descriptor:
        return self._descriptor


class BytesLayer(Layer):
    """A layer held in memory (image configs decoded from tarballs)."""

    def __init__(self, data: bytes, media_type: str) -> None:
        self._data = data
        self._media_type = media_type
        self._digest = Hash.of(data)

    @property
    def media_type(self) -> str:
        return self._media_type

    def digest(self) -> Hash:
        return self._digest

    def size(self) -> int:
        return len(self._data)

    def open(self) -> AbstractContextManager[BinaryIO]:
        return bytes_stream(self._data)


class LazyLayer(Layer):
    """A layer read through an opener, optionally gzip-compressed on the fly.

    Digest and size are computed on first use by streaming the content once
    and cached; the content itself is never cached.

    Args:
        opener: Returns a fresh scoped reader over the source bytes.
        media_type: Media type of the layer as stored in a registry.
        compress: Gzip the source bytes while reading.
    """

    def __init__(self, opener: Opener, media_type: str, compress: bool = False) -> None:
        self._opener = opener
        self._media_type = media_type
        self._compress = compress
        self._digest: Hash | None = None
        self._size: int | None = None
        self._lock = threading.Lock()

    @property
    def media_type(self) -> str:
        return self._media_type

    def _measure(self) -> tuple[Hash, int]:
        with self._lock:
            if self._digest is None or self._size is None:
                with self._open_stream() as stream:
                    self._digest, self._size = hash_stream(stream)
            return self._digest, self._size

    def _open_stream(self, length: int | None = None) -> AbstractContextManager[BinaryIO]:
        if self._compress:
            return gzip_stream(self._opener, length=length)  # type: ignore[return-value]
        return self._opener()

    def digest(self) -> Hash:
        return self._measure()[0]

    def size(self) -> int:
        return self._measure()[1]

    def open(self) -> AbstractContextManager[BinaryIO]:
        return self._open_stream(length=self.size())


# =============================================================================
# Images and Indexes
# =============================================================================


class Image(ABC):
    """A single image: manifest, config blob and layers."""

    kind = ArtifactKind.IMAGE

    @abstractmethod
    def raw_manifest(self) -> bytes: ...

    @property
    def media_type(self) -> str:
        return self.manifest().get("mediaType") or OCI_IMAGE_MANIFEST

    def manifest(self) -> dict[str, Any]:
        manifest: dict[str, Any] = json.loads(self.raw_manifest())
        return manifest

    def digest(self) -> Hash:
        """Return the content digest of the raw manifest."""
        return Hash.of(self.raw_manifest())

    def size(self) -> int:
        return len(self.raw_manifest())

    @abstractmethod
    def config_layer(self) -> Layer: ...

    def config_descriptor(self) -> Descriptor:
        return self.config_layer().descriptor()

    def raw_config(self) -> bytes:
        with self.config_layer().open() as f:
            return f.read()

    @abstractmethod
    def layers(self) -> list[Layer]: ...

    def blobs(self) -> list[Layer]:
        """Return every blob the manifest references, config first."""
        return [self.config_layer(), *self.layers()]


class ImageIndex(ABC):
    """An index manifest whose descriptors point at images or nested indexes."""

    kind = ArtifactKind.INDEX

    @abstractmethod
    def raw_manifest(self) -> bytes: ...

    @abstractmethod
    def index_manifest(self) -> IndexManifest: ...

    @property
    def media_type(self) -> str:
        return self.index_manifest().media_type or OCI_IMAGE_INDEX

    def digest(self) -> Hash:
        """Return the content digest of the raw index manifest."""
        return Hash.of(self.raw_manifest())

    def size(self) -> int:
        return len(self.raw_manifest())

    @abstractmethod
    def image(self, digest: str | Hash) -> Image: ...

    @abstractmethod
    def image_index(self, digest: str | Hash) -> ImageIndex: ...

    def child(self, descriptor: Descriptor) -> Image | ImageIndex:
        """Return the handle for one of this index's descriptors.

        Raises:
            UnsupportedArtifactTypeError: If the descriptor is neither an image
                nor an index.
        """
        if is_image_media_type(descriptor.media_type):
            return self.image(descriptor.digest)
        if is_index_media_type(descriptor.media_type):
            return self.image_index(descriptor.digest)
        raise UnsupportedArtifactTypeError(descriptor.media_type, hint="")


Artifact = Union[Image, ImageIndex]
"""An artifact handle: a single image or an image index."""


# =============================================================================
# BlobSource-backed handles
# =============================================================================


class StoredImage(Image):
    """An image whose manifest and blobs are read from a BlobSource."""

    def __init__(self, source: BlobSource, raw_manifest: bytes, media_type: str | None = None) -> None:
        self._source = source
        self._raw = raw_manifest
        try:
            self._manifest: dict[str, Any] = json.loads(raw_manifest)
            config = Descriptor.model_validate(self._manifest["config"])
            layers = [Descriptor.model_validate(d) for d in self._manifest.get("layers", [])]
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise InvalidLayoutError(source.location, f"invalid image manifest: {e}") from e
        self._media_type = media_type or self._manifest.get("mediaType") or OCI_IMAGE_MANIFEST
        self._config = BlobLayer(source, config)
        self._layers: list[Layer] = [BlobLayer(source, d) for d in layers]

    def raw_manifest(self) -> bytes:
        return self._raw

    @property
    def media_type(self) -> str:
        return self._media_type

    def manifest(self) -> dict[str, Any]:
        return dict(self._manifest)

    def config_layer(self) -> Layer:
        return self._config

    def layers(self) -> list[Layer]:
        return list(self._layers)


class StoredIndex(ImageIndex):
    """An index whose children are read from a BlobSource.

    Args:
        source: Blob storage holding every child manifest and blob.
        manifest: The (possibly filtered) index manifest.
        raw_manifest: Exact bytes of ``manifest``; serialized from it if None.
    """

    def __init__(
        self,
        source: BlobSource,
        manifest: IndexManifest,
        raw_manifest: bytes | None = None,
    ) -> None:
        self._source = source
        self._manifest = manifest
        self._raw = raw_manifest if raw_manifest is not None else manifest.to_json_bytes()

    @classmethod
    def from_raw(cls, source: BlobSource, raw_manifest: bytes) -> StoredIndex:
        """Parse ``raw_manifest`` as an index manifest.

        Raises:
            InvalidLayoutError: If the bytes are not a valid index manifest.
        """
        try:
            manifest = IndexManifest.model_validate_json(raw_manifest)
        except ValidationError as e:
            raise InvalidLayoutError(source.location, f"invalid index manifest: {e}") from e
        return cls(source, manifest, raw_manifest)

    def raw_manifest(self) -> bytes:
        return self._raw

    def index_manifest(self) -> IndexManifest:
        return self._manifest

    def _media_type_of(self, digest: str) -> str | None:
        for desc in self._manifest.manifests:
            if desc.digest == digest:
                return desc.media_type
        return None

    def image(self, digest: str | Hash) -> Image:
        digest = str(digest)
        return StoredImage(self._source, self._source.read(digest), self._media_type_of(digest))

    def image_index(self, digest: str | Hash) -> ImageIndex:
        return StoredIndex.from_raw(self._source, self._source.read(str(digest)))


__all__ = [
    "Artifact",
    "ArtifactKind",
    "BlobLayer",
    "BytesLayer",
    "Image",
    "ImageIndex",
    "Layer",
    "LazyLayer",
    "StoredImage",
    "StoredIndex",
]

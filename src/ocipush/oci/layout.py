"""On-disk OCI image layout reader and writer.

An image layout is a directory holding ``oci-layout``, ``index.json`` and
content-addressed blobs under ``blobs/<algorithm>/<hex>``.

Key Components:
    read_layout: Parse ``index.json`` into an IndexManifest
    read_layout_filtered: View a layout restricted to a given IndexManifest
    write_layout: Initialise a layout directory
    append_image / append_index: Write an artifact's blobs and record it

Blobs are written through a temporary file and renamed into place once their
digest has been verified, so a blob path never holds partial content.

Example:
    >>> write_layout(Path("./layout"))
    >>> append_image(Path("./layout"), image, annotations={ANNOTATION_REF_NAME: "v1"})
    >>> manifest = read_layout(Path("./layout"))
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import IO, cast

import structlog

from ocipush.oci.content import CHUNK_SIZE, LayoutBlobSource
from ocipush.oci.errors import InvalidLayoutError
from ocipush.oci.image import ArtifactKind, Image, ImageIndex, Layer, StoredIndex
from ocipush.schemas.oci import Descriptor, Hash, IndexManifest

logger = structlog.get_logger(__name__)

OCI_LAYOUT_FILE = "oci-layout"
INDEX_FILE = "index.json"
IMAGE_LAYOUT_VERSION = "1.0.0"


# =============================================================================
# Reading
# =============================================================================


def read_layout(path: Path) -> IndexManifest:
    """Read the index manifest of an image layout.

    Raises:
        InvalidLayoutError: If ``path`` is not a directory, ``index.json`` is
            missing, or it is not a valid index manifest.
    """
    return _open_layout(path).index_manifest()


def read_layout_filtered(path: Path, manifest: IndexManifest) -> StoredIndex:
    """Return an index handle over ``path`` restricted to ``manifest``.

    The on-disk ``index.json`` is not modified; the handle's raw manifest is
    the serialization of ``manifest``.
    """
    _check_layout_dir(path)
    return StoredIndex(LayoutBlobSource(path), manifest)


def _open_layout(path: Path) -> StoredIndex:
    _check_layout_dir(path)
    index_path = path / INDEX_FILE
    try:
        raw = index_path.read_bytes()
    except FileNotFoundError as e:
        raise InvalidLayoutError(str(path), f"{INDEX_FILE} not found") from e
    except OSError as e:
        raise InvalidLayoutError(str(path), str(e)) from e
    return StoredIndex.from_raw(LayoutBlobSource(path), raw)


def _check_layout_dir(path: Path) -> None:
    if not path.is_dir():
        raise InvalidLayoutError(str(path), "not a directory")


# =============================================================================
# Writing
# =============================================================================


def write_layout(path: Path, index: IndexManifest | None = None) -> Path:
    """Initialise an image layout at ``path``.

    Creates the directory if needed and writes ``oci-layout`` and
    ``index.json`` (empty unless ``index`` is given).

    Returns:
        The layout path.
    """
    path.mkdir(parents=True, exist_ok=True)
    _write_atomic(
        path / OCI_LAYOUT_FILE,
        json.dumps({"imageLayoutVersion": IMAGE_LAYOUT_VERSION}).encode("utf-8"),
    )
    _write_atomic(path / INDEX_FILE, (index or IndexManifest()).to_json_bytes())
    logger.debug("layout_written", path=str(path))
    return path


def append_image(
    path: Path,
    image: Image,
    annotations: dict[str, str] | None = None,
) -> Descriptor:
    """Write ``image``'s blobs and manifest into the layout and index it.

    Returns:
        The descriptor appended to ``index.json``.
    """
    source = LayoutBlobSource(path)
    _write_image_blobs(source, image)
    descriptor = Descriptor(
        media_type=image.media_type,
        digest=str(image.digest()),
        size=image.size(),
        annotations=annotations,
    )
    _append_descriptor(path, descriptor)
    logger.info("image_appended", path=str(path), digest=descriptor.digest)
    return descriptor


def append_index(
    path: Path,
    index: ImageIndex,
    annotations: dict[str, str] | None = None,
) -> Descriptor:
    """Write ``index`` and every child it references into the layout.

    Returns:
        The descriptor appended to ``index.json``.
    """
    source = LayoutBlobSource(path)
    _write_index_blobs(source, index)
    descriptor = Descriptor(
        media_type=index.media_type,
        digest=str(index.digest()),
        size=index.size(),
        annotations=annotations,
    )
    _append_descriptor(path, descriptor)
    logger.info("index_appended", path=str(path), digest=descriptor.digest)
    return descriptor


def _write_image_blobs(source: LayoutBlobSource, image: Image) -> None:
    for layer in image.blobs():
        _write_layer(source, layer)
    _write_blob_bytes(source, image.digest(), image.raw_manifest())


def _write_index_blobs(source: LayoutBlobSource, index: ImageIndex) -> None:
    for desc in index.index_manifest().manifests:
        child = index.child(desc)
        if child.kind is ArtifactKind.INDEX:
            _write_index_blobs(source, cast(ImageIndex, child))
        else:
            _write_image_blobs(source, cast(Image, child))
    _write_blob_bytes(source, index.digest(), index.raw_manifest())


def _write_layer(source: LayoutBlobSource, layer: Layer) -> None:
    digest = layer.digest()
    if source.exists(str(digest)):
        logger.debug("blob_exists", digest=str(digest))
        return
    with layer.open() as stream:
        _write_blob_stream(source, digest, stream)


def _write_blob_bytes(source: LayoutBlobSource, digest: Hash, data: bytes) -> None:
    if source.exists(str(digest)):
        return
    actual = hashlib.new(digest.algorithm, data).hexdigest()
    if actual != digest.hex:
        raise InvalidLayoutError(
            source.location, f"blob {digest} hashed to {digest.algorithm}:{actual}"
        )
    target = source.path_for(str(digest))
    target.parent.mkdir(parents=True, exist_ok=True)
    _write_atomic(target, data)


def _write_blob_stream(source: LayoutBlobSource, digest: Hash, stream: IO[bytes]) -> None:
    target = source.path_for(str(digest))
    target.parent.mkdir(parents=True, exist_ok=True)
    hasher = hashlib.new(digest.algorithm)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                hasher.update(chunk)
                out.write(chunk)
        if hasher.hexdigest() != digest.hex:
            raise InvalidLayoutError(
                source.location,
                f"blob {digest} hashed to {digest.algorithm}:{hasher.hexdigest()}",
            )
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _append_descriptor(path: Path, descriptor: Descriptor) -> None:
    current = read_layout(path)
    updated = current.with_manifests([*current.manifests, descriptor])
    _write_atomic(path / INDEX_FILE, updated.to_json_bytes())


def _write_atomic(target: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as out:
            out.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


__all__ = [
    "INDEX_FILE",
    "OCI_LAYOUT_FILE",
    "append_image",
    "append_index",
    "read_layout",
    "read_layout_filtered",
    "write_layout",
]

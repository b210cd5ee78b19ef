"""Tarball decoder.

Decodes a single-file artifact into a handle:

- ``docker save`` archives (``manifest.json`` at the root) become an Image
  with a Docker schema 2 manifest. Uncompressed layers are gzipped on the fly
  while they are read; already-gzipped layers are passed through.
- OCI image-layout archives (``index.json`` at the root) become an
  ImageIndex whose blobs are read from the archive.

Nothing is extracted to disk and no archive handle is held between reads.

Example:
    >>> handle = decode_tarball(Path("image.tar"))
    >>> handle.kind
    <ArtifactKind.IMAGE: 'image'>
"""

from __future__ import annotations

import json
from functools import partial
from pathlib import Path
from typing import Any

import structlog

from ocipush.oci.content import GZIP_MAGIC, TarArchive, TarBlobSource
from ocipush.oci.errors import InvalidLayoutError, UnreadableArtifactError
from ocipush.oci.image import Artifact, BytesLayer, Image, LazyLayer, Layer, StoredIndex
from ocipush.schemas.oci import DOCKER_CONFIG, DOCKER_LAYER, DOCKER_MANIFEST_SCHEMA2

logger = structlog.get_logger(__name__)

DOCKER_MANIFEST_FILE = "manifest.json"
OCI_INDEX_FILE = "index.json"


class DockerTarballImage(Image):
    """An image decoded from a ``docker save`` archive.

    Args:
        archive: The archive holding config and layer members.
        config_name: Member name of the image config.
        layer_names: Member names of the layers, base layer first.
    """

    def __init__(self, archive: TarArchive, config_name: str, layer_names: list[str]) -> None:
        self._archive = archive
        self._config = BytesLayer(archive.read_member(config_name), DOCKER_CONFIG)
        self._layers: list[Layer] = [self._layer_for(name) for name in layer_names]
        self._raw_manifest: bytes | None = None

    def _layer_for(self, name: str) -> Layer:
        opener = partial(self._archive.open_member, name)
        with opener() as f:
            compressed = f.read(len(GZIP_MAGIC)) == GZIP_MAGIC
        return LazyLayer(opener, DOCKER_LAYER, compress=not compressed)

    def raw_manifest(self) -> bytes:
        if self._raw_manifest is None:
            manifest: dict[str, Any] = {
                "schemaVersion": 2,
                "mediaType": DOCKER_MANIFEST_SCHEMA2,
                "config": self._config.descriptor().to_dict(),
                "layers": [layer.descriptor().to_dict() for layer in self._layers],
            }
            self._raw_manifest = json.dumps(manifest, separators=(",", ":")).encode("utf-8")
        return self._raw_manifest

    @property
    def media_type(self) -> str:
        return DOCKER_MANIFEST_SCHEMA2

    def config_layer(self) -> Layer:
        return self._config

    def layers(self) -> list[Layer]:
        return list(self._layers)


def decode_tarball(path: Path) -> Artifact:
    """Decode a tarball into an Image or ImageIndex handle.

    Args:
        path: Path to a ``docker save`` archive or an OCI layout archive.

    Returns:
        DockerTarballImage for docker archives, StoredIndex for OCI archives.

    Raises:
        UnreadableArtifactError: If the file is not a readable tarball, or its
            contents do not describe exactly one image or one index.
    """
    archive = TarArchive(path)
    names = archive.member_names()
    log = logger.bind(path=str(path))

    if DOCKER_MANIFEST_FILE in names:
        config_name, layer_names = _read_docker_manifest(archive)
        log.debug("tarball_decoded", format="docker", layers=len(layer_names))
        return DockerTarballImage(archive, config_name, layer_names)

    if OCI_INDEX_FILE in names:
        source = TarBlobSource(archive)
        try:
            index = StoredIndex.from_raw(source, archive.read_member(OCI_INDEX_FILE))
        except InvalidLayoutError as e:
            raise UnreadableArtifactError(str(path), e.reason) from e
        log.debug("tarball_decoded", format="oci", manifests=len(index.index_manifest().manifests))
        return index

    raise UnreadableArtifactError(
        str(path), f"neither {DOCKER_MANIFEST_FILE} nor {OCI_INDEX_FILE} found in archive"
    )


def _read_docker_manifest(archive: TarArchive) -> tuple[str, list[str]]:
    path = str(archive.path)
    try:
        entries = json.loads(archive.read_member(DOCKER_MANIFEST_FILE))
    except ValueError as e:
        raise UnreadableArtifactError(path, f"invalid {DOCKER_MANIFEST_FILE}: {e}") from e

    if not isinstance(entries, list) or len(entries) != 1:
        count = len(entries) if isinstance(entries, list) else 0
        raise UnreadableArtifactError(
            path, f"{DOCKER_MANIFEST_FILE} must describe exactly one image, found {count}"
        )

    entry = entries[0]
    if not isinstance(entry, dict) or not isinstance(entry.get("Config"), str):
        raise UnreadableArtifactError(path, f"{DOCKER_MANIFEST_FILE} entry has no Config")
    layers = entry.get("Layers") or []
    if not all(isinstance(name, str) for name in layers):
        raise UnreadableArtifactError(path, f"{DOCKER_MANIFEST_FILE} entry has invalid Layers")
    return entry["Config"], list(layers)


__all__ = ["DockerTarballImage", "decode_tarball"]

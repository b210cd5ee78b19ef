"""Artifact loader: turn a filesystem path into an artifact handle.

A directory is read as an OCI image layout and filtered with the supplied
matchers; anything else is decoded as a tarball with matchers ignored.

Example:
    >>> matchers = build_matchers(name="v1")
    >>> handle = load_artifact(Path("./layout"), want_index=False, matchers=matchers)
    >>> handle.kind
    <ArtifactKind.IMAGE: 'image'>
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import structlog

from ocipush.oci.errors import (
    AmbiguousSelectionError,
    UnreadableArtifactError,
    UnsupportedArtifactTypeError,
)
from ocipush.oci.image import Artifact
from ocipush.oci.layout import read_layout, read_layout_filtered
from ocipush.oci.match import Matcher, filter_descriptors
from ocipush.oci.tarball import decode_tarball
from ocipush.schemas.oci import is_image_media_type, is_index_media_type

logger = structlog.get_logger(__name__)


def load_artifact(
    path: Path,
    want_index: bool = False,
    matchers: Sequence[Matcher] = (),
) -> Artifact:
    """Load the artifact at ``path``.

    Args:
        path: Image-layout directory or tarball file.
        want_index: Return the filtered index even if it holds one (or zero)
            descriptors.
        matchers: Conjunctive descriptor filter, applied to layouts only.

    Returns:
        An Image or ImageIndex handle.

    Raises:
        UnreadableArtifactError: If ``path`` does not exist or is not a
            decodable tarball.
        InvalidLayoutError: If the directory is not a valid image layout.
        AmbiguousSelectionError: If single-artifact mode selects zero or
            several descriptors.
        UnsupportedArtifactTypeError: If the selected descriptor is neither an
            image nor an index.
    """
    log = logger.bind(path=str(path), want_index=want_index, matchers=len(matchers))

    if not path.exists():
        raise UnreadableArtifactError(str(path), "no such file or directory")

    if not path.is_dir():
        handle = decode_tarball(path)
        log.info("artifact_loaded", source="tarball", kind=handle.kind.value)
        return handle

    manifest = read_layout(path)
    kept = filter_descriptors(manifest.manifests, matchers)
    log.debug("descriptors_filtered", total=len(manifest.manifests), kept=len(kept))
    index = read_layout_filtered(path, manifest.with_manifests(kept))

    if want_index:
        log.info("artifact_loaded", source="layout", kind=index.kind.value, manifests=len(kept))
        return index

    if len(kept) != 1:
        raise AmbiguousSelectionError(str(path), len(kept))

    desc = kept[0]
    handle: Artifact
    if is_image_media_type(desc.media_type):
        handle = index.image(desc.digest)
    elif is_index_media_type(desc.media_type):
        handle = index.image_index(desc.digest)
    else:
        raise UnsupportedArtifactTypeError(desc.media_type)
    log.info("artifact_loaded", source="layout", kind=handle.kind.value, digest=desc.digest)
    return handle


__all__ = ["load_artifact"]

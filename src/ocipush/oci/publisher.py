"""Publisher: write an artifact handle to a destination reference.

Dispatches on the handle's kind to the transport's image or index write,
then forms the digest-qualified reference of what was written.

Failures from the transport propagate unchanged; the publisher never
retries and never reports partial success.

Example:
    >>> handle = load_artifact(Path("./layout"), want_index=True)
    >>> result = publish(handle, parse_reference("ghcr.io/acme/app:v1"), client)
    >>> str(result.reference)
    'ghcr.io/acme/app@sha256:...'
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import cast

import structlog

from ocipush.oci.client import RegistryTransport
from ocipush.oci.errors import DigestMismatchError, UnsupportedArtifactTypeError
from ocipush.oci.image import Artifact, ArtifactKind, Image, ImageIndex
from ocipush.oci.reference import DigestReference, Reference
from ocipush.schemas.oci import Hash

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PublishResult:
    """Outcome of a successful publish.

    Attributes:
        digest: Content digest of the written manifest.
        reference: Destination repository qualified by ``digest``.
        kind: Whether an image or an index was written.
    """

    digest: Hash
    reference: DigestReference
    kind: ArtifactKind

    def __str__(self) -> str:
        return str(self.reference)


def publish(
    handle: Artifact,
    destination: Reference,
    transport: RegistryTransport,
    *,
    cancel: threading.Event | None = None,
) -> PublishResult:
    """Write ``handle`` to ``destination``.

    Args:
        handle: Image or ImageIndex produced by the loader.
        destination: Tag or digest reference to publish to.
        transport: Registry transport performing the writes.
        cancel: Optional cancellation signal passed to the transport.

    Returns:
        PublishResult carrying the digest-qualified reference.

    Raises:
        UnsupportedArtifactTypeError: If ``handle`` is neither image nor index.
        DigestMismatchError: If ``destination`` names a digest the written
            artifact does not have.
        OCIError: Any transport failure, unchanged.
    """
    log = logger.bind(destination=str(destination))
    kind = getattr(handle, "kind", None)
    if kind is ArtifactKind.IMAGE:
        log.info("publish_started", kind=kind.value)
        transport.write_image(destination, cast(Image, handle), cancel=cancel)
    elif kind is ArtifactKind.INDEX:
        log.info("publish_started", kind=kind.value)
        transport.write_index(destination, cast(ImageIndex, handle), cancel=cancel)
    else:
        raise UnsupportedArtifactTypeError(type(handle).__name__, hint="")

    digest = handle.digest()
    if isinstance(destination, DigestReference) and destination.digest != digest:
        raise DigestMismatchError(str(destination.digest), str(digest), str(destination))

    result = PublishResult(
        digest=digest,
        reference=destination.repository.digest(digest),
        kind=handle.kind,
    )
    log.info("publish_completed", reference=str(result.reference))
    return result


__all__ = ["PublishResult", "publish"]

"""Image reference parsing and locking.

Parses user-supplied image strings into structured references and resolves
tag references to the digest currently live in a registry.

Key Components:
    Repository: Registry host plus repository path
    TagReference: Repository plus mutable tag
    DigestReference: Repository plus immutable content hash
    parse_reference: Parse ``[registry/]repository[:tag][@digest]``
    lock: Resolve any reference to a DigestReference via one registry lookup

Normalization:
    - A first path component containing ``.`` or ``:`` (or ``localhost``) is
      the registry; otherwise the default registry applies.
    - ``docker.io`` is rewritten to ``index.docker.io``.
    - Single-component Docker Hub repositories get a ``library/`` prefix.
    - A missing tag defaults to ``latest`` (unless strict).

Example:
    >>> ref = parse_reference("ubuntu")
    >>> str(ref)
    'index.docker.io/library/ubuntu:latest'
    >>> str(ref.repository)
    'index.docker.io/library/ubuntu'
"""

from __future__ import annotations

import re
import threading
from typing import TYPE_CHECKING, Union

import structlog
from pydantic import BaseModel, ConfigDict

from ocipush.oci.errors import InvalidDigestError, MalformedReferenceError
from ocipush.schemas.oci import Hash

if TYPE_CHECKING:
    from ocipush.oci.client import RegistryTransport

logger = structlog.get_logger(__name__)


# =============================================================================
# Grammar
# =============================================================================

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_DOCKER_HUB_ALIASES = frozenset({"docker.io", "index.docker.io"})

REGISTRY_PATTERN = re.compile(r"[a-zA-Z0-9](?:[a-zA-Z0-9.-]*[a-zA-Z0-9])?(?::[0-9]+)?")
"""Registry host with optional port."""

REPOSITORY_COMPONENT_PATTERN = re.compile(r"[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*")
"""One ``/``-separated component of a repository path."""

TAG_PATTERN = re.compile(r"[\w][\w.-]{0,127}", re.ASCII)

MAX_REPOSITORY_LENGTH = 255


# =============================================================================
# Reference Types
# =============================================================================


class Repository(BaseModel):
    """A repository inside a registry.

    Example:
        >>> repo = Repository(registry="ghcr.io", path="acme/app")
        >>> str(repo.tag("v1"))
        'ghcr.io/acme/app:v1'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    registry: str
    path: str

    @property
    def name(self) -> str:
        """Return the fully qualified repository name."""
        return f"{self.registry}/{self.path}"

    def tag(self, tag: str) -> TagReference:
        """Return a tag reference in this repository."""
        return TagReference(repository=self, tag=tag)

    def digest(self, digest: Hash | str) -> DigestReference:
        """Return a digest reference in this repository."""
        if isinstance(digest, str):
            digest = Hash.parse(digest)
        return DigestReference(repository=self, digest=digest)

    def __str__(self) -> str:
        return self.name


class TagReference(BaseModel):
    """A repository plus a mutable tag."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository: Repository
    tag: str

    @property
    def identifier(self) -> str:
        """Return the manifest identifier used in registry URLs."""
        return self.tag

    @property
    def name(self) -> str:
        """Return the fully qualified reference name."""
        return f"{self.repository.name}:{self.tag}"

    def __str__(self) -> str:
        return self.name


class DigestReference(BaseModel):
    """A repository plus an immutable content hash."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository: Repository
    digest: Hash

    @property
    def identifier(self) -> str:
        """Return the manifest identifier used in registry URLs."""
        return str(self.digest)

    @property
    def name(self) -> str:
        """Return the fully qualified reference name."""
        return f"{self.repository.name}@{self.digest}"

    def __str__(self) -> str:
        return self.name


Reference = Union[TagReference, DigestReference]


# =============================================================================
# Parsing
# =============================================================================


def parse_reference(
    value: str,
    *,
    default_registry: str = DEFAULT_REGISTRY,
    strict: bool = False,
) -> Reference:
    """Parse an image string into a TagReference or DigestReference.

    When both a tag and a digest are present the digest wins; the tag is still
    validated.

    Args:
        value: Raw reference, e.g. ``ghcr.io/acme/app:v1`` or ``app@sha256:...``.
        default_registry: Registry used when ``value`` names none.
        strict: Require an explicit tag or digest.

    Returns:
        The parsed reference.

    Raises:
        MalformedReferenceError: If ``value`` does not conform to the grammar.
    """
    if not value:
        raise MalformedReferenceError(value, "reference is empty")

    base = value
    digest: Hash | None = None
    if "@" in base:
        base, digest_str = base.split("@", 1)
        try:
            digest = Hash.parse(digest_str)
        except InvalidDigestError as e:
            raise MalformedReferenceError(value, e.reason) from e

    tag: str | None = None
    colon = base.rfind(":")
    if colon > base.rfind("/"):
        base, tag = base[:colon], base[colon + 1 :]
        if not TAG_PATTERN.fullmatch(tag):
            raise MalformedReferenceError(value, f"invalid tag {tag!r}")

    repository = _parse_repository(value, base, default_registry)

    if digest is not None:
        return DigestReference(repository=repository, digest=digest)
    if tag is None:
        if strict:
            raise MalformedReferenceError(value, "strict mode requires an explicit tag or digest")
        tag = DEFAULT_TAG
    return TagReference(repository=repository, tag=tag)


def _parse_repository(value: str, base: str, default_registry: str) -> Repository:
    """Split ``base`` into registry and repository path and validate both."""
    registry = default_registry
    path = base
    parts = base.split("/", 1)
    if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        registry, path = parts

    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
    if not REGISTRY_PATTERN.fullmatch(registry):
        raise MalformedReferenceError(value, f"invalid registry {registry!r}")

    if not path:
        raise MalformedReferenceError(value, "repository is empty")
    if registry == DEFAULT_REGISTRY and "/" not in path:
        path = f"library/{path}"
    if len(path) > MAX_REPOSITORY_LENGTH:
        raise MalformedReferenceError(
            value, f"repository is longer than {MAX_REPOSITORY_LENGTH} characters"
        )
    for component in path.split("/"):
        if not REPOSITORY_COMPONENT_PATTERN.fullmatch(component):
            raise MalformedReferenceError(
                value,
                f"invalid repository component {component!r} "
                "(lowercase letters, digits and separators only)",
            )

    return Repository(registry=registry, path=path)


# =============================================================================
# Locking
# =============================================================================


def lock(
    reference: Reference,
    transport: RegistryTransport,
    *,
    cancel: threading.Event | None = None,
) -> DigestReference:
    """Resolve ``reference`` to the digest currently live in the registry.

    Performs exactly one registry lookup, even for digest references, and
    never falls back to the tag form.

    Args:
        reference: Tag or digest reference to resolve.
        transport: Registry transport performing the lookup.
        cancel: Optional cancellation signal.

    Returns:
        DigestReference combining the repository with the fetched digest.

    Raises:
        NotFoundError: If the registry has no such manifest.
        RegistryUnavailableError: If the registry cannot be reached.
    """
    log = logger.bind(reference=str(reference))
    log.debug("lock_started")
    digest = transport.resolve_digest(reference, cancel=cancel)
    locked = reference.repository.digest(digest)
    log.info("lock_completed", digest=str(digest))
    return locked


__all__ = [
    "DEFAULT_REGISTRY",
    "DEFAULT_TAG",
    "DigestReference",
    "Reference",
    "Repository",
    "TagReference",
    "lock",
    "parse_reference",
]

"""Descriptor matchers for selecting artifacts out of an image index.

Each matcher is an independent predicate over a Descriptor. A set of
matchers combines by logical AND through ``matches_all``; an empty set
accepts every descriptor.

Key Components:
    Matcher: Protocol implemented by every predicate
    DigestMatcher: Exact content-hash equality
    NameMatcher: ``org.opencontainers.image.ref.name`` annotation equality
    AnnotationMatcher: Exact annotation key/value pair
    build_matchers: Compile CLI match criteria into matchers
    filter_descriptors: Order-preserving filter using matches_all

Example:
    >>> matchers = build_matchers(annotations=["os=linux", "arch=amd64"])
    >>> kept = filter_descriptors(index.manifests, matchers)
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ocipush.oci.errors import InvalidMatchSpecError
from ocipush.schemas.oci import ANNOTATION_REF_NAME, Descriptor, Hash


@runtime_checkable
class Matcher(Protocol):
    """A predicate over a Descriptor."""

    def __call__(self, descriptor: Descriptor) -> bool: ...


@dataclass(frozen=True)
class DigestMatcher:
    """Accepts descriptors whose digest equals one of ``digests``."""

    digests: tuple[Hash, ...]

    def __call__(self, descriptor: Descriptor) -> bool:
        return any(descriptor.digest == str(digest) for digest in self.digests)


@dataclass(frozen=True)
class AnnotationMatcher:
    """Accepts descriptors carrying the exact ``key=value`` annotation."""

    key: str
    value: str

    def __call__(self, descriptor: Descriptor) -> bool:
        if not descriptor.annotations:
            return False
        return descriptor.annotations.get(self.key) == self.value


@dataclass(frozen=True)
class NameMatcher(AnnotationMatcher):
    """Accepts descriptors whose ref-name annotation equals ``value``."""

    key: str = ANNOTATION_REF_NAME
    value: str = ""


def digest_matcher(*digests: Hash | str) -> DigestMatcher:
    """Build a DigestMatcher, parsing string digests.

    Raises:
        InvalidDigestError: If a string digest is not a well-formed hash.
    """
    return DigestMatcher(
        tuple(Hash.parse(d) if isinstance(d, str) else d for d in digests)
    )


def parse_annotation_spec(spec: str) -> AnnotationMatcher:
    """Parse a ``key=value`` argument into an AnnotationMatcher.

    Only the first ``=`` separates key from value, so values may contain ``=``.

    Raises:
        InvalidMatchSpecError: If ``spec`` contains no ``=``.
    """
    key, sep, value = spec.partition("=")
    if not sep:
        raise InvalidMatchSpecError(spec)
    return AnnotationMatcher(key=key, value=value)


def build_matchers(
    *,
    digest: str | None = None,
    name: str | None = None,
    annotations: Iterable[str] = (),
) -> list[Matcher]:
    """Compile independent match criteria into a list of matchers.

    Args:
        digest: Content hash a descriptor must have.
        name: Value the ref-name annotation must have.
        annotations: ``key=value`` pairs; each adds one more required pair.

    Returns:
        Matchers in criteria order (digest, name, annotations).

    Raises:
        InvalidDigestError: If ``digest`` is not a well-formed content hash.
        InvalidMatchSpecError: If an annotation pair is missing its ``=``.
    """
    matchers: list[Matcher] = []
    if digest:
        matchers.append(digest_matcher(digest))
    if name:
        matchers.append(NameMatcher(value=name))
    for spec in annotations:
        matchers.append(parse_annotation_spec(spec))
    return matchers


def matches_all(descriptor: Descriptor, matchers: Iterable[Matcher]) -> bool:
    """Return True iff every matcher accepts ``descriptor``.

    Stops at the first rejection. An empty matcher set accepts everything.
    """
    return all(matcher(descriptor) for matcher in matchers)


def filter_descriptors(
    descriptors: Sequence[Descriptor],
    matchers: Sequence[Matcher],
) -> list[Descriptor]:
    """Return the descriptors accepted by every matcher, in original order."""
    return [d for d in descriptors if matches_all(d, matchers)]


__all__ = [
    "AnnotationMatcher",
    "DigestMatcher",
    "Matcher",
    "NameMatcher",
    "build_matchers",
    "digest_matcher",
    "filter_descriptors",
    "matches_all",
    "parse_annotation_spec",
]

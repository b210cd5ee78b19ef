"""Reference resolution, artifact loading and registry publishing.

Pipeline: parse the destination reference, compile matchers, load the
artifact at a path (filtering layouts with the matchers), publish it through
the registry transport and optionally record the published reference.

Key Components:
- parse_reference / lock: Reference Resolver
- build_matchers / matches_all / filter_descriptors: Matcher Engine
- load_artifact: Artifact Loader (layout directories and tarballs)
- publish / PublishResult: Publisher
- record_reference: Result Recorder
- RegistryClient: Registry transport on the ORAS SDK

Example:
    >>> from ocipush.oci import load_artifact, parse_reference, publish, RegistryClient
    >>> ref = parse_reference("ghcr.io/acme/app:v1")
    >>> handle = load_artifact(Path("./layout"), want_index=True)
    >>> result = publish(handle, ref, RegistryClient())
"""

from __future__ import annotations

import importlib
from typing import Any

_EXPORTS: dict[str, str] = {
    # Reference Resolver
    "DigestReference": "ocipush.oci.reference",
    "Reference": "ocipush.oci.reference",
    "Repository": "ocipush.oci.reference",
    "TagReference": "ocipush.oci.reference",
    "lock": "ocipush.oci.reference",
    "parse_reference": "ocipush.oci.reference",
    # Matcher Engine
    "AnnotationMatcher": "ocipush.oci.match",
    "DigestMatcher": "ocipush.oci.match",
    "Matcher": "ocipush.oci.match",
    "NameMatcher": "ocipush.oci.match",
    "build_matchers": "ocipush.oci.match",
    "filter_descriptors": "ocipush.oci.match",
    "matches_all": "ocipush.oci.match",
    # Artifact handles and loading
    "Artifact": "ocipush.oci.image",
    "ArtifactKind": "ocipush.oci.image",
    "Image": "ocipush.oci.image",
    "ImageIndex": "ocipush.oci.image",
    "Layer": "ocipush.oci.image",
    "decode_tarball": "ocipush.oci.tarball",
    "append_image": "ocipush.oci.layout",
    "append_index": "ocipush.oci.layout",
    "read_layout": "ocipush.oci.layout",
    "read_layout_filtered": "ocipush.oci.layout",
    "write_layout": "ocipush.oci.layout",
    "load_artifact": "ocipush.oci.loader",
    # Publishing
    "RegistryClient": "ocipush.oci.client",
    "RegistryTransport": "ocipush.oci.client",
    "PublishResult": "ocipush.oci.publisher",
    "publish": "ocipush.oci.publisher",
    "record_reference": "ocipush.oci.recorder",
    # Errors
    "OCIError": "ocipush.oci.errors",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazy import of pipeline components."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    return getattr(importlib.import_module(module_name), name)

"""ocipush: resolve image references and publish local images to OCI registries.

This package provides:
- Reference parsing and tag-to-digest locking (ocipush.oci.reference)
- Descriptor matchers for selecting artifacts from an index (ocipush.oci.match)
- Loading of OCI image layouts and tarballs (ocipush.oci.loader)
- Publishing images and indexes to a registry (ocipush.oci.publisher)
- The ``ocipush`` command line (ocipush.cli)

Example:
    >>> from ocipush.oci import parse_reference
    >>> str(parse_reference("ubuntu"))
    'index.docker.io/library/ubuntu:latest'
"""

from __future__ import annotations

__version__ = "0.1.0"

"""``ocipush push``: publish a local layout or tarball to a registry.

Example:
    $ ocipush push ./layout ghcr.io/acme/app:v1 --match-name v1
    $ ocipush push ./layout ghcr.io/acme/app:v1 --index --image-refs ref.txt
    $ ocipush push image.tar ghcr.io/acme/app:v1

Environment Variables:
    OCIPUSH_REGISTRY_USERNAME: Registry username for basic auth
    OCIPUSH_REGISTRY_PASSWORD: Registry password for basic auth
    OCIPUSH_REGISTRY_TOKEN: Bearer token for token auth
"""

from __future__ import annotations

from pathlib import Path

import click
import structlog

from ocipush.cli.utils import fail
from ocipush.oci.client import RegistryClient
from ocipush.oci.errors import OCIError
from ocipush.oci.loader import load_artifact
from ocipush.oci.match import build_matchers, digest_matcher
from ocipush.oci.publisher import publish
from ocipush.oci.recorder import record_reference
from ocipush.oci.reference import DigestReference, parse_reference
from ocipush.schemas.oci import RegistryConfig

logger = structlog.get_logger(__name__)


@click.command(
    name="push",
    help="""\b
Push local image contents to a remote registry.

If PATH is a directory it is read as an OCI image layout; otherwise
PATH is read as a tarball (docker save or OCI layout archive).

All match options must apply for an image to be included. They
only apply to layout directories.
""",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.argument("path", type=click.Path(path_type=Path))
@click.argument("image")
@click.option(
    "--index",
    "want_index",
    is_flag=True,
    default=False,
    help="Push a collection of images as a single index; required if PATH holds several.",
)
@click.option(
    "--image-refs",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="File to write the published digest reference to.",
)
@click.option(
    "--match-digest",
    type=str,
    default=None,
    help="Digest of the image to select.",
)
@click.option(
    "--match-name",
    type=str,
    default=None,
    help='Select the image whose "org.opencontainers.image.ref.name" annotation matches.',
)
@click.option(
    "--match-annotation",
    type=str,
    multiple=True,
    help='Select images carrying this key=value annotation (repeatable, e.g. "original=busybox").',
)
@click.pass_context
def push_command(
    ctx: click.Context,
    path: Path,
    image: str,
    want_index: bool,
    image_refs: Path | None,
    match_digest: str | None,
    match_name: str | None,
    match_annotation: tuple[str, ...],
) -> None:
    """Publish PATH to IMAGE."""
    config: RegistryConfig = ctx.obj["config"]
    try:
        destination = parse_reference(
            image, default_registry=config.default_registry, strict=config.strict
        )
        matchers = build_matchers(
            digest=match_digest, name=match_name, annotations=match_annotation
        )
        # A digest destination only ever publishes the manifest with that digest
        if isinstance(destination, DigestReference):
            matchers.append(digest_matcher(destination.digest))

        handle = load_artifact(path, want_index=want_index, matchers=matchers)
        result = publish(handle, destination, RegistryClient(config))
        record_reference(image_refs, result.reference)
    except OCIError as e:
        fail(e)

    logger.info("push_completed", path=str(path), reference=str(result.reference))


__all__: list[str] = ["push_command"]

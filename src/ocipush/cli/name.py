"""``ocipush name``: print the canonical form of an image reference."""

from __future__ import annotations

import click

from ocipush.cli.utils import fail, success
from ocipush.oci.client import RegistryClient
from ocipush.oci.errors import OCIError
from ocipush.oci.reference import Reference, lock, parse_reference
from ocipush.schemas.oci import RegistryConfig


@click.command(
    name="name",
    help="""\b
Print the fully qualified name of IMAGE.

With --lock the tag is resolved against the registry and the
digest-qualified reference is printed instead.

Examples:
    $ ocipush name ubuntu
    index.docker.io/library/ubuntu:latest

    $ ocipush name --lock ghcr.io/acme/app:v1
    ghcr.io/acme/app@sha256:...
""",
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.argument("image")
@click.option(
    "--lock",
    "lock_ref",
    is_flag=True,
    default=False,
    help="Resolve the reference to the digest currently in the registry.",
)
@click.pass_context
def name_command(ctx: click.Context, image: str, lock_ref: bool) -> None:
    """Print the canonical or digest-locked name of IMAGE."""
    config: RegistryConfig = ctx.obj["config"]
    try:
        ref: Reference = parse_reference(
            image, default_registry=config.default_registry, strict=config.strict
        )
        if lock_ref:
            ref = lock(ref, RegistryClient(config))
    except OCIError as e:
        fail(e)
    success(str(ref))


__all__: list[str] = ["name_command"]

"""OCI schemas for ocipush.

This module defines the Pydantic v2 schemas for content hashes, descriptors,
index manifests and registry configuration.

Key Components:
    Hash: Validated content-addressable hash (algorithm:hex)
    Descriptor: Metadata for one artifact inside an index
    IndexManifest: Ordered descriptors plus index-level annotations
    RegistryConfig: Registry access configuration (auth, retry, naming)

Descriptors and index manifests are frozen once loaded. Filtering an index
produces a new IndexManifest via ``model_copy``; the loaded instance is never
mutated.
"""

from __future__ import annotations

import hashlib
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ocipush.oci.errors import InvalidDigestError, OCIError

# =============================================================================
# Media Types
# =============================================================================

OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"

DOCKER_MANIFEST_SCHEMA2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"

IMAGE_MEDIA_TYPES = frozenset({OCI_IMAGE_MANIFEST, DOCKER_MANIFEST_SCHEMA2})
INDEX_MEDIA_TYPES = frozenset({OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST})

ANNOTATION_REF_NAME = "org.opencontainers.image.ref.name"
"""Annotation holding the name of a manifest inside an image layout."""


def is_image_media_type(media_type: str | None) -> bool:
    """Return True for single-image manifest media types."""
    return media_type in IMAGE_MEDIA_TYPES


def is_index_media_type(media_type: str | None) -> bool:
    """Return True for image index (manifest list) media types."""
    return media_type in INDEX_MEDIA_TYPES


# =============================================================================
# Content Hash
# =============================================================================

_HASH_HEX_LENGTHS: dict[str, int] = {"sha256": 64, "sha512": 128}
HASH_PATTERN = re.compile(r"(sha256|sha512):([a-f0-9]+)")


class Hash(BaseModel):
    """A validated content-addressable hash.

    Examples:
        >>> h = Hash.parse("sha256:" + "a" * 64)
        >>> h.algorithm
        'sha256'
        >>> str(h) == "sha256:" + "a" * 64
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    algorithm: str
    hex: str

    @classmethod
    def parse(cls, value: str) -> Hash:
        """Parse an ``algorithm:hex`` string.

        Raises:
            InvalidDigestError: If the algorithm is unknown or the hex part is
                not the right length for it.
        """
        match = HASH_PATTERN.fullmatch(value)
        if match is None:
            raise InvalidDigestError(value, "expected <algorithm>:<lowercase hex>")
        algorithm, hex_value = match.groups()
        expected = _HASH_HEX_LENGTHS[algorithm]
        if len(hex_value) != expected:
            raise InvalidDigestError(
                value, f"{algorithm} digests have {expected} hex characters, got {len(hex_value)}"
            )
        return cls(algorithm=algorithm, hex=hex_value)

    @classmethod
    def of(cls, content: bytes) -> Hash:
        """Compute the sha256 hash of ``content``."""
        return cls(algorithm="sha256", hex=hashlib.sha256(content).hexdigest())

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.hex}"


def _validate_digest_string(value: str) -> str:
    try:
        Hash.parse(value)
    except InvalidDigestError as e:
        raise ValueError(str(e)) from e
    return value


# =============================================================================
# Descriptors and Index Manifests
# =============================================================================


class Platform(BaseModel):
    """Platform a manifest inside an index was built for."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    architecture: str
    os: str
    os_version: str | None = Field(default=None, alias="os.version")
    os_features: list[str] | None = Field(default=None, alias="os.features")
    variant: str | None = None


class Descriptor(BaseModel):
    """Metadata about one artifact: digest, size, media type and annotations.

    Examples:
        >>> desc = Descriptor.model_validate({
        ...     "mediaType": "application/vnd.oci.image.manifest.v1+json",
        ...     "digest": "sha256:" + "0" * 64,
        ...     "size": 7,
        ...     "annotations": {"org.opencontainers.image.ref.name": "v1"},
        ... })
        >>> desc.ref_name
        'v1'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    media_type: str = Field(..., alias="mediaType")
    digest: str
    size: int = Field(..., ge=0)
    annotations: dict[str, str] | None = None
    platform: Platform | None = None
    urls: list[str] | None = None
    artifact_type: str | None = Field(default=None, alias="artifactType")

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v: str) -> str:
        """Validate the digest is a well-formed content hash."""
        return _validate_digest_string(v)

    @property
    def hash(self) -> Hash:
        """Return the digest as a Hash."""
        return Hash.parse(self.digest)

    @property
    def ref_name(self) -> str | None:
        """Return the ``org.opencontainers.image.ref.name`` annotation, if any."""
        if not self.annotations:
            return None
        return self.annotations.get(ANNOTATION_REF_NAME)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using wire (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class IndexManifest(BaseModel):
    """An ordered sequence of descriptors plus index-level annotations."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str | None = Field(default=OCI_IMAGE_INDEX, alias="mediaType")
    manifests: list[Descriptor] = Field(default_factory=list)
    annotations: dict[str, str] | None = None

    def with_manifests(self, manifests: list[Descriptor]) -> IndexManifest:
        """Return a copy of this index restricted to ``manifests``."""
        return self.model_copy(update={"manifests": list(manifests)})

    def to_json_bytes(self) -> bytes:
        """Serialize to the JSON bytes stored on disk or pushed to a registry."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


# =============================================================================
# Registry Configuration
# =============================================================================


class AuthType(str, Enum):
    """Authentication types for OCI registries."""

    ANONYMOUS = "anonymous"
    BASIC = "basic"
    TOKEN = "token"


class RegistryAuth(BaseModel):
    """Authentication configuration for registry access.

    Credentials are never stored in configuration; the config names the
    environment variables they are read from.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: AuthType = Field(
        default=AuthType.ANONYMOUS,
        description="Authentication type for registry access",
    )
    username_env: str = Field(
        default="OCIPUSH_REGISTRY_USERNAME",
        description="Environment variable holding the basic-auth username",
    )
    password_env: str = Field(
        default="OCIPUSH_REGISTRY_PASSWORD",
        description="Environment variable holding the basic-auth password",
    )
    token_env: str = Field(
        default="OCIPUSH_REGISTRY_TOKEN",
        description="Environment variable holding the bearer token",
    )


class RetryConfig(BaseModel):
    """Retry policy configuration for transient registry failures.

    Examples:
        >>> config = RetryConfig(max_attempts=5, initial_delay_ms=500)
        >>> config.initial_delay_ms
        500
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of attempts per request",
    )
    initial_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Initial delay between retries in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(
        default=True,
        description="Add random jitter to delays",
    )


class RegistryConfig(BaseModel):
    """Registry access configuration.

    Examples:
        >>> config = RegistryConfig()
        >>> config.default_registry
        'index.docker.io'
        >>> config.insecure
        False
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_registry: str = Field(
        default="index.docker.io",
        min_length=1,
        description="Registry used when a reference names none",
    )
    insecure: bool = Field(
        default=False,
        description="Talk plain HTTP and skip TLS verification (local testing only)",
    )
    strict: bool = Field(
        default=False,
        description="Require references to carry an explicit tag or digest",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout for registry calls",
    )
    auth: RegistryAuth = Field(
        default_factory=RegistryAuth,
        description="Authentication configuration",
    )
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry policy for transient failures",
    )

    @field_validator("default_registry")
    @classmethod
    def validate_default_registry(cls, v: str) -> str:
        """Reject registries carrying a scheme or path."""
        if "://" in v or "/" in v:
            raise ValueError("default_registry must be a bare host[:port]")
        return v

    @classmethod
    def from_file(cls, path: str | Path) -> RegistryConfig:
        """Load configuration from the ``registry`` section of a YAML file.

        Raises:
            OCIError: If the file cannot be read or the section is invalid.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise OCIError(f"Config file not found: {config_path}")

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise OCIError(f"Failed to parse config YAML: {e}") from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise OCIError(f"Config file must contain a mapping: {config_path}")

        section = data.get("registry", {})
        try:
            return cls.model_validate(section)
        except Exception as e:
            raise OCIError(f"Invalid registry configuration: {e}") from e

    @classmethod
    def from_env(cls, **overrides: Any) -> RegistryConfig:
        """Build configuration with auth selected from the environment.

        ``OCIPUSH_REGISTRY_TOKEN`` selects token auth; ``OCIPUSH_REGISTRY_USERNAME``
        plus ``OCIPUSH_REGISTRY_PASSWORD`` select basic auth; otherwise anonymous.
        """
        defaults = RegistryAuth()
        if os.environ.get(defaults.token_env):
            auth = RegistryAuth(type=AuthType.TOKEN)
        elif os.environ.get(defaults.username_env) and os.environ.get(defaults.password_env):
            auth = RegistryAuth(type=AuthType.BASIC)
        else:
            auth = RegistryAuth(type=AuthType.ANONYMOUS)
        return cls(auth=auth, **overrides)


__all__ = [
    "ANNOTATION_REF_NAME",
    "DOCKER_CONFIG",
    "DOCKER_LAYER",
    "DOCKER_MANIFEST_LIST",
    "DOCKER_MANIFEST_SCHEMA2",
    "HASH_PATTERN",
    "INDEX_MEDIA_TYPES",
    "IMAGE_MEDIA_TYPES",
    "OCI_IMAGE_CONFIG",
    "OCI_IMAGE_INDEX",
    "OCI_IMAGE_MANIFEST",
    "OCI_LAYER_GZIP",
    "AuthType",
    "Descriptor",
    "Hash",
    "IndexManifest",
    "Platform",
    "RegistryAuth",
    "RegistryConfig",
    "RetryConfig",
    "is_image_media_type",
    "is_index_media_type",
]

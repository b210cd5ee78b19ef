"""Unit tests for OCI schemas and registry configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ocipush.oci.errors import InvalidDigestError, OCIError
from ocipush.schemas.oci import (
    ANNOTATION_REF_NAME,
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    AuthType,
    Descriptor,
    Hash,
    IndexManifest,
    RegistryConfig,
    is_image_media_type,
    is_index_media_type,
)

DIGEST = "sha256:" + "a" * 64


class TestHash:
    """Tests for Hash."""

    @pytest.mark.requirement("schema-hash")
    def test_parse_and_str(self) -> None:
        """Test parsing round-trips through str()."""
        h = Hash.parse(DIGEST)

        assert h.algorithm == "sha256"
        assert str(h) == DIGEST

    @pytest.mark.requirement("schema-hash")
    @pytest.mark.parametrize(
        "value",
        [
            "sha256:" + "a" * 63,
            "sha256:" + "A" * 64,
            "sha1:" + "a" * 40,
            "a" * 64,
            "sha512:" + "a" * 64,
            "sha256:" + "a" * 64 + "\n",
        ],
    )
    def test_invalid(self, value: str) -> None:
        """Test malformed digests raise InvalidDigestError."""
        with pytest.raises(InvalidDigestError):
            Hash.parse(value)

    @pytest.mark.requirement("schema-hash")
    def test_of(self) -> None:
        """Test Hash.of computes sha256."""
        assert str(Hash.of(b"")) == (
            "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )


class TestDescriptor:
    """Tests for Descriptor and IndexManifest."""

    @pytest.mark.requirement("schema-descriptor")
    def test_wire_names(self) -> None:
        """Test camelCase wire names parse and serialize."""
        desc = Descriptor.model_validate(
            {
                "mediaType": OCI_IMAGE_MANIFEST,
                "digest": DIGEST,
                "size": 10,
                "annotations": {ANNOTATION_REF_NAME: "v1"},
            }
        )

        assert desc.ref_name == "v1"
        assert desc.hash == Hash.parse(DIGEST)
        assert desc.to_dict() == {
            "mediaType": OCI_IMAGE_MANIFEST,
            "digest": DIGEST,
            "size": 10,
            "annotations": {ANNOTATION_REF_NAME: "v1"},
        }

    @pytest.mark.requirement("schema-descriptor")
    def test_invalid_digest_rejected(self) -> None:
        """Test descriptors validate their digest."""
        with pytest.raises(ValidationError):
            Descriptor(media_type=OCI_IMAGE_MANIFEST, digest="sha256:bad", size=1)

    @pytest.mark.requirement("schema-descriptor")
    def test_unknown_fields_preserved(self) -> None:
        """Test extra descriptor fields survive serialization."""
        desc = Descriptor.model_validate(
            {"mediaType": OCI_IMAGE_MANIFEST, "digest": DIGEST, "size": 1, "data": "e30="}
        )

        assert desc.to_dict()["data"] == "e30="

    @pytest.mark.requirement("schema-index")
    def test_with_manifests_does_not_mutate(self) -> None:
        """Test restricting an index returns a copy."""
        desc = Descriptor(media_type=OCI_IMAGE_MANIFEST, digest=DIGEST, size=1)
        index = IndexManifest(manifests=[desc], annotations={"k": "v"})

        restricted = index.with_manifests([])

        assert index.manifests == [desc]
        assert restricted.manifests == []
        assert restricted.annotations == {"k": "v"}

    @pytest.mark.requirement("schema-index")
    def test_media_type_helpers(self) -> None:
        """Test image and index media types are classified."""
        assert is_image_media_type(OCI_IMAGE_MANIFEST)
        assert is_index_media_type(OCI_IMAGE_INDEX)
        assert not is_image_media_type(OCI_IMAGE_INDEX)
        assert not is_index_media_type(None)


class TestRegistryConfig:
    """Tests for RegistryConfig loading."""

    @pytest.mark.requirement("config")
    def test_defaults(self) -> None:
        """Test default configuration."""
        config = RegistryConfig()

        assert config.default_registry == "index.docker.io"
        assert not config.insecure
        assert not config.strict
        assert config.auth.type is AuthType.ANONYMOUS
        assert config.retry.max_attempts == 3

    @pytest.mark.requirement("config")
    def test_default_registry_must_be_host(self) -> None:
        """Test a URL is rejected as default registry."""
        with pytest.raises(ValidationError):
            RegistryConfig(default_registry="https://ghcr.io")

    @pytest.mark.requirement("config")
    def test_from_file(self, tmp_path: Path) -> None:
        """Test the registry section of a YAML file is loaded."""
        path = tmp_path / "ocipush.yaml"
        path.write_text(
            "registry:\n"
            "  default_registry: registry.local:5000\n"
            "  strict: true\n"
            "  auth:\n"
            "    type: token\n"
            "  retry:\n"
            "    max_attempts: 5\n"
        )

        config = RegistryConfig.from_file(path)

        assert config.default_registry == "registry.local:5000"
        assert config.strict
        assert config.auth.type is AuthType.TOKEN
        assert config.retry.max_attempts == 5

    @pytest.mark.requirement("config")
    def test_from_file_empty(self, tmp_path: Path) -> None:
        """Test an empty file yields defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert RegistryConfig.from_file(path) == RegistryConfig()

    @pytest.mark.requirement("config")
    @pytest.mark.parametrize(
        "content",
        ["registry: [unclosed", "- a\n- b\n", "registry:\n  unknown_field: 1\n"],
    )
    def test_from_file_invalid(self, tmp_path: Path, content: str) -> None:
        """Test invalid files raise OCIError."""
        path = tmp_path / "bad.yaml"
        path.write_text(content)

        with pytest.raises(OCIError):
            RegistryConfig.from_file(path)

    @pytest.mark.requirement("config")
    def test_from_file_missing(self, tmp_path: Path) -> None:
        """Test a missing file raises OCIError."""
        with pytest.raises(OCIError, match="not found"):
            RegistryConfig.from_file(tmp_path / "absent.yaml")

    @pytest.mark.requirement("config")
    @pytest.mark.parametrize(
        ("env", "expected"),
        [
            ({}, AuthType.ANONYMOUS),
            ({"OCIPUSH_REGISTRY_TOKEN": "t"}, AuthType.TOKEN),
            ({"OCIPUSH_REGISTRY_USERNAME": "u", "OCIPUSH_REGISTRY_PASSWORD": "p"}, AuthType.BASIC),
            ({"OCIPUSH_REGISTRY_USERNAME": "u"}, AuthType.ANONYMOUS),
        ],
    )
    def test_from_env(
        self, monkeypatch: pytest.MonkeyPatch, env: dict[str, str], expected: AuthType
    ) -> None:
        """Test auth type is selected from the environment."""
        for name in (
            "OCIPUSH_REGISTRY_TOKEN",
            "OCIPUSH_REGISTRY_USERNAME",
            "OCIPUSH_REGISTRY_PASSWORD",
        ):
            monkeypatch.delenv(name, raising=False)
        for name, value in env.items():
            monkeypatch.setenv(name, value)

        assert RegistryConfig.from_env(insecure=True).auth.type is expected

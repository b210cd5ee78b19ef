"""Unit tests for the error hierarchy and exit codes."""

from __future__ import annotations

import pytest

from ocipush.oci.errors import (
    AmbiguousSelectionError,
    AuthenticationError,
    DigestMismatchError,
    InvalidDigestError,
    InvalidLayoutError,
    InvalidMatchSpecError,
    MalformedReferenceError,
    NotFoundError,
    OCIError,
    OperationCancelledError,
    RecordWriteError,
    RegistryUnavailableError,
    UnreadableArtifactError,
    UnsupportedArtifactTypeError,
    WriteFailureError,
)


class TestExitCodes:
    """Tests that every error carries its documented exit code."""

    @pytest.mark.requirement("errors-exit-codes")
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (OCIError("x"), 1),
            (MalformedReferenceError("r", "bad"), 2),
            (InvalidMatchSpecError("k"), 2),
            (InvalidDigestError("d", "bad"), 2),
            (AmbiguousSelectionError("./layout", 2), 2),
            (AuthenticationError("ghcr.io", "denied"), 3),
            (NotFoundError("ref"), 4),
            (RegistryUnavailableError("ghcr.io", "down"), 5),
            (WriteFailureError("ref", "rejected"), 5),
            (OperationCancelledError("push"), 5),
            (UnreadableArtifactError("a.tar", "bad"), 6),
            (InvalidLayoutError("./layout", "bad"), 6),
            (UnsupportedArtifactTypeError("x"), 6),
            (DigestMismatchError("a", "b", "ref"), 7),
            (RecordWriteError("f", "denied"), 8),
        ],
    )
    def test_exit_code(self, error: OCIError, code: int) -> None:
        """Test the class exit code."""
        assert isinstance(error, OCIError)
        assert error.exit_code == code


class TestMessages:
    """Tests for user-facing messages."""

    @pytest.mark.requirement("errors-messages")
    def test_ambiguous_suggests_index(self) -> None:
        """Test the ambiguous message suggests --index and narrower matchers."""
        message = str(AmbiguousSelectionError("./layout", 3))

        assert message.startswith("layout ./layout contains 3 entries, consider --index")
        assert "--match-digest/--match-name/--match-annotation" in message

    @pytest.mark.requirement("errors-messages")
    def test_unsupported_hint_optional(self) -> None:
        """Test the --index hint can be omitted."""
        assert str(UnsupportedArtifactTypeError("x", hint="")) == "non-image artifact (mediaType: 'x')"

    @pytest.mark.requirement("errors-messages")
    def test_loading_prefixes(self) -> None:
        """Test loader errors name the path and the format attempted."""
        assert str(UnreadableArtifactError("a.tar", "bad")) == "loading a.tar as tarball: bad"
        assert str(InvalidLayoutError("dir", "bad")) == "loading dir as OCI layout: bad"

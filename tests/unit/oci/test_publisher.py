"""Unit tests for the publisher and result recorder."""

from __future__ import annotations

import os
import stat
import threading
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ocipush.oci.errors import (
    DigestMismatchError,
    RecordWriteError,
    UnsupportedArtifactTypeError,
    WriteFailureError,
)
from ocipush.oci.image import ArtifactKind, Image
from ocipush.oci.loader import load_artifact
from ocipush.oci.publisher import PublishResult, publish
from ocipush.oci.recorder import record_reference
from ocipush.oci.reference import parse_reference


@pytest.fixture
def transport() -> MagicMock:
    """Transport double whose writes succeed."""
    return MagicMock()


class TestPublish:
    """Tests for publish()."""

    @pytest.mark.requirement("publish-image")
    def test_image_written_and_digest_reference_returned(
        self, transport: MagicMock, make_image: Callable[..., Image]
    ) -> None:
        """Test an image goes through write_image and yields repo@digest."""
        image = make_image()
        destination = parse_reference("ghcr.io/acme/app:v1")

        result = publish(image, destination, transport)

        transport.write_image.assert_called_once_with(destination, image, cancel=None)
        transport.write_index.assert_not_called()
        assert isinstance(result, PublishResult)
        assert result.kind is ArtifactKind.IMAGE
        assert result.digest == image.digest()
        assert str(result) == f"ghcr.io/acme/app@{image.digest()}"

    @pytest.mark.requirement("publish-index")
    def test_index_written(
        self,
        transport: MagicMock,
        make_layout: Callable[..., Path],
        make_image: Callable[..., Image],
    ) -> None:
        """Test an index goes through write_index."""
        index = load_artifact(
            make_layout([(make_image(seed=1), None), (make_image(seed=2), None)]),
            want_index=True,
        )
        cancel = threading.Event()

        result = publish(index, parse_reference("ghcr.io/acme/app:v1"), transport, cancel=cancel)

        transport.write_index.assert_called_once()
        assert transport.write_index.call_args.kwargs == {"cancel": cancel}
        assert result.kind is ArtifactKind.INDEX
        assert result.digest == index.digest()

    @pytest.mark.requirement("publish-digest")
    def test_matching_digest_destination(
        self, transport: MagicMock, make_image: Callable[..., Image]
    ) -> None:
        """Test a digest destination equal to the artifact's digest succeeds."""
        image = make_image()
        destination = parse_reference(f"ghcr.io/acme/app@{image.digest()}")

        result = publish(image, destination, transport)

        assert result.reference == destination

    @pytest.mark.requirement("publish-digest")
    def test_digest_mismatch(
        self, transport: MagicMock, make_image: Callable[..., Image]
    ) -> None:
        """Test a digest destination that differs from the artifact fails."""
        image = make_image()
        other = "sha256:" + "0" * 64

        with pytest.raises(DigestMismatchError) as exc_info:
            publish(image, parse_reference(f"ghcr.io/acme/app@{other}"), transport)

        assert exc_info.value.expected == other
        assert exc_info.value.actual == str(image.digest())
        assert exc_info.value.exit_code == 7

    @pytest.mark.requirement("publish-errors")
    def test_transport_failure_propagates(
        self, transport: MagicMock, make_image: Callable[..., Image]
    ) -> None:
        """Test transport errors surface unchanged."""
        failure = WriteFailureError("ghcr.io/acme/app:v1", "boom", status_code=500)
        transport.write_image.side_effect = failure

        with pytest.raises(WriteFailureError) as exc_info:
            publish(make_image(), parse_reference("ghcr.io/acme/app:v1"), transport)

        assert exc_info.value is failure

    @pytest.mark.requirement("publish-errors")
    def test_unknown_handle(self, transport: MagicMock) -> None:
        """Test a handle that is neither image nor index is rejected."""
        with pytest.raises(UnsupportedArtifactTypeError, match="object"):
            publish(object(), parse_reference("ghcr.io/acme/app:v1"), transport)  # type: ignore[arg-type]

        transport.write_image.assert_not_called()

    @pytest.mark.requirement("publish-errors")
    def test_unknown_kind(self, transport: MagicMock) -> None:
        """Test dispatch follows the handle kind, rejecting kinds it does not know."""
        handle = MagicMock()
        handle.kind = "layer"

        with pytest.raises(UnsupportedArtifactTypeError):
            publish(handle, parse_reference("ghcr.io/acme/app:v1"), transport)

        transport.write_image.assert_not_called()
        transport.write_index.assert_not_called()


class TestRecordReference:
    """Tests for record_reference()."""

    @pytest.mark.requirement("record")
    def test_writes_reference_without_newline(self, tmp_path: Path) -> None:
        """Test the file holds exactly the reference string."""
        target = tmp_path / "ref.txt"
        ref = parse_reference("ghcr.io/acme/app@sha256:" + "a" * 64)

        record_reference(target, ref)

        assert target.read_text() == str(ref)

    @pytest.mark.requirement("record")
    def test_overwrites_and_restricts_mode(self, tmp_path: Path) -> None:
        """Test existing content is replaced and new files are owner-only."""
        target = tmp_path / "ref.txt"
        target.write_text("a much longer previous value that must disappear")
        target.chmod(0o644)
        new_target = tmp_path / "new.txt"
        ref = parse_reference("ghcr.io/acme/app:v1")

        record_reference(target, ref)
        record_reference(new_target, ref)

        assert target.read_text() == "ghcr.io/acme/app:v1"
        if os.name == "posix":
            assert stat.S_IMODE(new_target.stat().st_mode) & 0o077 == 0

    @pytest.mark.requirement("record")
    def test_none_path_is_noop(self, tmp_path: Path) -> None:
        """Test nothing is written without a path."""
        record_reference(None, parse_reference("ghcr.io/acme/app:v1"))

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.requirement("record")
    def test_unwritable_path(self, tmp_path: Path) -> None:
        """Test a write failure raises RecordWriteError."""
        target = tmp_path / "missing-dir" / "ref.txt"

        with pytest.raises(RecordWriteError) as exc_info:
            record_reference(target, parse_reference("ghcr.io/acme/app:v1"))

        assert exc_info.value.exit_code == 8
        assert exc_info.value.path == str(target)

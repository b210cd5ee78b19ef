"""Shared fixtures for ocipush tests.

Fixtures build real artifacts on ``tmp_path``; nothing talks to a registry.

Key Fixtures:
- make_image: Deterministic random image whose layers are gzipped on the fly
- make_layout: Image layout directory holding given images
- docker_tarball: ``docker save`` style archive with one image
- oci_archive: Tarball of an image layout
- leak_harness: Context manager asserting no reader, thread or file outlives it
"""

from __future__ import annotations

import gc
import gzip
import inspect
import io
import json
import random
import tarfile
import threading
import warnings
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any

import pytest
import structlog

from ocipush.oci.content import ChunkReader, bytes_stream
from ocipush.oci.image import BytesLayer, Image, LazyLayer, Layer
from ocipush.oci.layout import append_image, write_layout
from ocipush.schemas.oci import OCI_IMAGE_CONFIG, OCI_IMAGE_MANIFEST, OCI_LAYER_GZIP, Hash


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test as covering a specific behaviour",
    )


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo logging configuration done by CLI invocations."""
    yield
    structlog.reset_defaults()


# =============================================================================
# Artifact builders
# =============================================================================


def _tar_bytes(name: str, payload: bytes) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tf:
        _add_member(tf, name, payload)
    return buf.getvalue()


def _add_member(tf: tarfile.TarFile, name: str, payload: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(payload)
    info.mtime = 0
    tf.addfile(info, io.BytesIO(payload))


class RandomImage(Image):
    """Image with random uncompressed layers that are gzipped while read."""

    def __init__(self, seed: int, layer_count: int, byte_size: int) -> None:
        rng = random.Random(seed)
        tars = [
            _tar_bytes(f"random_file_{i}.txt", rng.randbytes(byte_size))
            for i in range(layer_count)
        ]
        self._layers: list[Layer] = [
            LazyLayer(partial(bytes_stream, tar), OCI_LAYER_GZIP, compress=True) for tar in tars
        ]
        config = {
            "architecture": "amd64",
            "os": "linux",
            "rootfs": {"type": "layers", "diff_ids": [str(Hash.of(tar)) for tar in tars]},
        }
        self._config = BytesLayer(json.dumps(config, sort_keys=True).encode(), OCI_IMAGE_CONFIG)
        self._raw: bytes | None = None

    def raw_manifest(self) -> bytes:
        if self._raw is None:
            manifest = {
                "schemaVersion": 2,
                "mediaType": OCI_IMAGE_MANIFEST,
                "config": self._config.descriptor().to_dict(),
                "layers": [layer.descriptor().to_dict() for layer in self._layers],
            }
            self._raw = json.dumps(manifest).encode()
        return self._raw

    @property
    def media_type(self) -> str:
        return OCI_IMAGE_MANIFEST

    def config_layer(self) -> Layer:
        return self._config

    def layers(self) -> list[Layer]:
        return list(self._layers)


@pytest.fixture
def make_image() -> Callable[..., Image]:
    """Return a factory for deterministic random images."""

    def _make(seed: int = 1, layers: int = 1, size: int = 1024) -> Image:
        return RandomImage(seed, layers, size)

    return _make


@pytest.fixture
def make_layout(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory writing images into a fresh layout directory.

    Usage:
        path = make_layout([(image, {"org.opencontainers.image.ref.name": "v1"})])
    """

    def _make(
        entries: Sequence[tuple[Image, dict[str, str] | None]],
        name: str = "layout",
    ) -> Path:
        path = write_layout(tmp_path / name)
        for image, annotations in entries:
            append_image(path, image, annotations)
        return path

    return _make


@pytest.fixture
def docker_tarball(tmp_path: Path) -> Path:
    """Write a ``docker save`` archive with one plain and one gzipped layer."""
    config = json.dumps(
        {
            "architecture": "amd64",
            "os": "linux",
            "rootfs": {"type": "layers", "diff_ids": []},
        }
    ).encode()
    plain = _tar_bytes("hello.txt", b"hello world\n")
    compressed = gzip.compress(_tar_bytes("bye.txt", b"bye\n"), mtime=0)
    manifest = [
        {
            "Config": "config.json",
            "RepoTags": ["example.com/app:v1"],
            "Layers": ["aaa/layer.tar", "bbb/layer.tar.gz"],
        }
    ]

    path = tmp_path / "image.tar"
    with tarfile.open(path, "w") as tf:
        _add_member(tf, "config.json", config)
        _add_member(tf, "aaa/layer.tar", plain)
        _add_member(tf, "bbb/layer.tar.gz", compressed)
        _add_member(tf, "manifest.json", json.dumps(manifest).encode())
    return path


@pytest.fixture
def oci_archive(tmp_path: Path, make_layout: Callable[..., Path], make_image: Callable[..., Image]) -> Path:
    """Write a tarball of an image layout holding two images."""
    layout = make_layout([(make_image(seed=1), None), (make_image(seed=2), None)], name="to-archive")
    path = tmp_path / "layout.tar"
    with tarfile.open(path, "w") as tf:
        for child in sorted(layout.rglob("*")):
            if child.is_file():
                tf.add(child, arcname=child.relative_to(layout).as_posix())
    return path


# =============================================================================
# Leak detection
# =============================================================================


@pytest.fixture
def leak_harness(monkeypatch: pytest.MonkeyPatch) -> Callable[[], Any]:
    """Return a context manager that fails if a lazy read outlives its block.

    Inside the block every ChunkReader is tracked. On exit the harness
    asserts each reader is closed with its chunk generator finished, no new
    thread is alive, and garbage collection raises no ResourceWarning for an
    unclosed file.
    """
    readers: list[tuple[ChunkReader, Any]] = []
    original_init = ChunkReader.__init__

    def tracking_init(self: ChunkReader, chunks: Any, length: int | None = None) -> None:
        original_init(self, chunks, length)
        readers.append((self, chunks))

    monkeypatch.setattr(ChunkReader, "__init__", tracking_init)

    @contextmanager
    def _harness() -> Iterator[list[tuple[ChunkReader, Any]]]:
        gc.collect()
        threads_before = set(threading.enumerate())
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ResourceWarning)
            yield readers
            gc.collect()

        leaked_threads = [t for t in threading.enumerate() if t not in threads_before]
        assert leaked_threads == []
        for reader, chunks in readers:
            assert reader.closed
            if inspect.isgenerator(chunks):
                assert inspect.getgeneratorstate(chunks) == inspect.GEN_CLOSED
        resource_warnings = [w for w in caught if issubclass(w.category, ResourceWarning)]
        assert resource_warnings == []

    return _harness

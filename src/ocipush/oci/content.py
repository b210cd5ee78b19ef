"""Lazy blob content with bounded reader lifetime.

Layer and blob bytes are read on demand. Every accessor in this module is a
context manager: the caller obtains a reader inside a ``with`` block and
leaving the block, whether normally, by exception or after consuming only
part of the stream, closes the reader, any streaming compressor feeding it
and the underlying file or archive handle.

Accessors are re-entrant. Opening the same blob N times starts N independent
readers and all N are closed when their blocks exit; nothing is shared
between openings, so an in-memory artifact can be published or appended
repeatedly without accumulating open handles.

Key Components:
    BlobSource: Digest-addressed blob store (layout directory, tar archive)
    LayoutBlobSource: ``blobs/<algorithm>/<hex>`` files under a layout root
    TarArchive: Member access to a tarball, reopened per read
    TarBlobSource: ``blobs/<algorithm>/<hex>`` members inside a tarball
    ChunkReader: File-like view over a chunk generator
    gzip_stream: Scoped streaming gzip compressor over another reader
"""

from __future__ import annotations

import hashlib
import io
import tarfile
import zlib
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import IO, BinaryIO

import structlog

from ocipush.oci.errors import InvalidLayoutError, UnreadableArtifactError
from ocipush.schemas.oci import Hash

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024
"""Read size used by streaming readers and hashers."""

GZIP_MAGIC = b"\x1f\x8b"

Opener = Callable[[], AbstractContextManager[BinaryIO]]
"""Zero-argument callable returning a scoped reader."""


def blob_path(digest: str) -> str:
    """Return the relative ``blobs/<algorithm>/<hex>`` path for a digest."""
    parsed = Hash.parse(digest)
    return f"blobs/{parsed.algorithm}/{parsed.hex}"


def hash_stream(stream: IO[bytes], algorithm: str = "sha256") -> tuple[Hash, int]:
    """Hash a stream to exhaustion.

    Returns:
        Tuple of (hash, number of bytes read).
    """
    hasher = hashlib.new(algorithm)
    size = 0
    while True:
        chunk = stream.read(CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)
        size += len(chunk)
    return Hash(algorithm=algorithm, hex=hasher.hexdigest()), size


# =============================================================================
# Chunked readers
# =============================================================================


class ChunkReader(io.RawIOBase):
    """Read-only file object over an iterator of byte chunks.

    Closing the reader closes the iterator when it is a generator, which runs
    the generator's cleanup immediately instead of at garbage collection.

    Args:
        chunks: Iterator producing the stream's bytes.
        length: Total length if known; exposed through ``len()`` so HTTP
            clients can send a Content-Length instead of chunked encoding.
    """

    def __init__(self, chunks: Iterator[bytes], length: int | None = None) -> None:
        super().__init__()
        self._chunks = chunks
        self._buffer = b""
        self._position = 0
        self._length = length
        self._exhausted = False

    def readable(self) -> bool:
        return True

    def readinto(self, b: bytearray | memoryview) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("I/O operation on closed reader")
        while not self._buffer and not self._exhausted:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                self._exhausted = True
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        self._position += n
        return n

    def tell(self) -> int:
        return self._position

    def __len__(self) -> int:
        if self._length is None:
            raise TypeError("length of stream is unknown")
        return self._length

    def close(self) -> None:
        if not self.closed:
            close = getattr(self._chunks, "close", None)
            if close is not None:
                close()
            self._buffer = b""
        super().close()


def gzip_chunks(source: IO[bytes], level: int = 6) -> Iterator[bytes]:
    """Yield the gzip compression of ``source`` chunk by chunk.

    The gzip header carries mtime 0 and no file name, so output is
    deterministic for identical input.
    """
    compressor = zlib.compressobj(level, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
    while True:
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            break
        out = compressor.compress(chunk)
        if out:
            yield out
    tail = compressor.flush()
    if tail:
        yield tail


@contextmanager
def gzip_stream(opener: Opener, length: int | None = None) -> Iterator[ChunkReader]:
    """Open a fresh source via ``opener`` and yield its gzip-compressed stream.

    The compressor and the source are both released when the block exits,
    even if the stream was abandoned part way.
    """
    with opener() as source:
        reader = ChunkReader(gzip_chunks(source), length=length)
        try:
            yield reader
        finally:
            reader.close()


@contextmanager
def bytes_stream(data: bytes) -> Iterator[BinaryIO]:
    """Yield an in-memory reader over ``data``, closed on exit."""
    stream = io.BytesIO(data)
    try:
        yield stream
    finally:
        stream.close()


# =============================================================================
# Blob sources
# =============================================================================


class BlobSource(ABC):
    """Digest-addressed blob storage."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Human-readable location used in error messages."""
        ...

    @abstractmethod
    def open(self, digest: str) -> AbstractContextManager[BinaryIO]:
        """Return a scoped reader over the blob with ``digest``."""
        ...

    @abstractmethod
    def exists(self, digest: str) -> bool:
        """Return True if the blob is present."""
        ...

    def read(self, digest: str) -> bytes:
        """Read a whole blob into memory (manifests and configs only)."""
        with self.open(digest) as f:
            return f.read()


class LayoutBlobSource(BlobSource):
    """Blobs stored as files under an image-layout directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    @property
    def location(self) -> str:
        return str(self._root)

    def path_for(self, digest: str) -> Path:
        """Return the on-disk path of a blob."""
        return self._root / blob_path(digest)

    @contextmanager
    def open(self, digest: str) -> Iterator[BinaryIO]:
        path = self.path_for(digest)
        try:
            f = path.open("rb")
        except FileNotFoundError as e:
            raise InvalidLayoutError(self.location, f"blob {digest} is missing") from e
        except OSError as e:
            raise InvalidLayoutError(self.location, f"blob {digest}: {e.strerror or e}") from e
        try:
            yield f
        finally:
            f.close()

    def exists(self, digest: str) -> bool:
        return self.path_for(digest).is_file()


class TarArchive:
    """Member access to a tarball on disk.

    The archive is reopened for every member read and closed when the read's
    block exits; no handle is held between reads.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def member_names(self) -> set[str]:
        """Return member names with any leading ``./`` stripped."""
        with self._open_tar() as tf:
            return {_normalize_member(name) for name in tf.getnames()}

    @contextmanager
    def open_member(self, name: str) -> Iterator[BinaryIO]:
        """Yield a reader over one regular-file member."""
        with self._open_tar() as tf:
            member = _find_member(tf, name)
            if member is None:
                raise UnreadableArtifactError(str(self._path), f"member {name!r} not found")
            extracted = tf.extractfile(member)
            if extracted is None:
                raise UnreadableArtifactError(str(self._path), f"member {name!r} is not a file")
            try:
                yield extracted  # type: ignore[misc]
            finally:
                extracted.close()

    def read_member(self, name: str) -> bytes:
        with self.open_member(name) as f:
            return f.read()

    @contextmanager
    def _open_tar(self) -> Iterator[tarfile.TarFile]:
        try:
            tf = tarfile.open(self._path, mode="r:*")
        except (tarfile.TarError, OSError) as e:
            raise UnreadableArtifactError(str(self._path), str(e)) from e
        try:
            yield tf
        finally:
            tf.close()


def _normalize_member(name: str) -> str:
    return name[2:] if name.startswith("./") else name


def _find_member(tf: tarfile.TarFile, name: str) -> tarfile.TarInfo | None:
    for candidate in (name, f"./{name}"):
        try:
            return tf.getmember(candidate)
        except KeyError:
            continue
    return None


class TarBlobSource(BlobSource):
    """Blobs stored as ``blobs/<algorithm>/<hex>`` members of a tarball."""

    def __init__(self, archive: TarArchive) -> None:
        self._archive = archive
        self._names: set[str] | None = None

    @property
    def location(self) -> str:
        return str(self._archive.path)

    def open(self, digest: str) -> AbstractContextManager[BinaryIO]:
        return self._archive.open_member(blob_path(digest))

    def exists(self, digest: str) -> bool:
        if self._names is None:
            self._names = self._archive.member_names()
        return blob_path(digest) in self._names


__all__ = [
    "CHUNK_SIZE",
    "GZIP_MAGIC",
    "BlobSource",
    "ChunkReader",
    "LayoutBlobSource",
    "Opener",
    "TarArchive",
    "TarBlobSource",
    "blob_path",
    "bytes_stream",
    "gzip_chunks",
    "gzip_stream",
    "hash_stream",
]

"""Persist a published reference for downstream tooling."""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from ocipush.oci.errors import RecordWriteError
from ocipush.oci.reference import Reference

logger = structlog.get_logger(__name__)

RECORD_FILE_MODE = 0o600


def record_reference(path: Path | None, reference: Reference) -> None:
    """Overwrite ``path`` with the string form of ``reference``.

    The file holds the reference alone with no trailing newline. Nothing is
    written when ``path`` is None.

    Raises:
        RecordWriteError: If the file cannot be written.
    """
    if path is None:
        return
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, RECORD_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(reference))
    except OSError as e:
        raise RecordWriteError(str(path), e.strerror or str(e)) from e
    logger.info("reference_recorded", path=str(path), reference=str(reference))


__all__ = ["record_reference"]

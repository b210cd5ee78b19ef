"""Exception hierarchy for ocipush.

All exceptions inherit from OCIError, the base exception class. Components
raise these unchanged up to the invocation boundary; the only local handling
is enriching a message with the path, reference or descriptor involved.

Exception Hierarchy:
    OCIError (base)
    ├── MalformedReferenceError       # Image reference does not parse
    ├── InvalidMatchSpecError         # --match-annotation missing "="
    ├── InvalidDigestError            # Digest string is not a content hash
    ├── AmbiguousSelectionError       # Zero or several artifacts selected
    ├── AuthenticationError           # Registry rejected credentials
    ├── NotFoundError                 # Manifest not present in registry
    ├── RegistryUnavailableError      # Registry not reachable
    ├── WriteFailureError             # Registry write rejected
    ├── OperationCancelledError       # Caller cancelled a network operation
    ├── UnreadableArtifactError       # Tarball cannot be decoded
    ├── InvalidLayoutError            # Image layout cannot be parsed
    ├── UnsupportedArtifactTypeError  # Media type is neither image nor index
    ├── DigestMismatchError           # Published digest differs from expected
    └── RecordWriteError              # --image-refs file cannot be written

Exit Codes:
    0 - Success
    1 - General error (OCIError)
    2 - Usage error (reference, matcher, digest, ambiguous selection)
    3 - Authentication error
    4 - Not found
    5 - Network error (unavailable, write failure, cancelled)
    6 - Artifact error (unreadable, invalid layout, unsupported type)
    7 - Digest mismatch
    8 - Result file write failure

Example:
    >>> from ocipush.oci.errors import NotFoundError
    >>> raise NotFoundError("ghcr.io/acme/app:v1")
    Traceback (most recent call last):
        ...
    NotFoundError: Manifest not found: ghcr.io/acme/app:v1
"""

from __future__ import annotations


class OCIError(Exception):
    """Base exception for all ocipush errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).

    Example:
        >>> try:
        ...     publish(handle, ref, client)
        ... except OCIError as e:
        ...     sys.exit(e.exit_code)
    """

    exit_code: int = 1

    pass


class MalformedReferenceError(OCIError):
    """Raised when an image reference does not match the reference grammar.

    Attributes:
        reference: The raw string that failed to parse.
        reason: Which part of the grammar was violated.
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Malformed reference {reference!r}: {reason}")


class InvalidMatchSpecError(OCIError):
    """Raised when a ``key=value`` match argument lacks its separator.

    Attributes:
        spec: The offending argument.
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2

    def __init__(self, spec: str) -> None:
        self.spec = spec
        super().__init__(f'match-annotation "{spec}" is missing a "=" sign')


class InvalidDigestError(OCIError):
    """Raised when a digest string is not a well-formed content hash.

    Attributes:
        digest: The offending digest string.
        reason: Description of the problem.
        exit_code: CLI exit code (2).
    """

    exit_code: int = 2

    def __init__(self, digest: str, reason: str) -> None:
        self.digest = digest
        self.reason = reason
        super().__init__(f"Invalid digest {digest!r}: {reason}")


class AmbiguousSelectionError(OCIError):
    """Raised when single-artifact mode does not select exactly one artifact.

    This is a usage error: the caller should request index mode or narrow
    the selection.

    Attributes:
        path: The layout path that was loaded.
        count: How many descriptors survived filtering.
        exit_code: CLI exit code (2).

    Example:
        >>> raise AmbiguousSelectionError("./layout", 3)
        Traceback (most recent call last):
            ...
        AmbiguousSelectionError: layout ./layout contains 3 entries, consider --index ...
    """

    exit_code: int = 2

    def __init__(self, path: str, count: int) -> None:
        self.path = path
        self.count = count
        super().__init__(
            f"layout {path} contains {count} entries, consider --index "
            "or a narrower --match-digest/--match-name/--match-annotation"
        )


class AuthenticationError(OCIError):
    """Raised when registry authentication fails.

    Attributes:
        registry: The registry host where authentication failed.
        reason: Description of why authentication failed.
        exit_code: CLI exit code (3).
    """

    exit_code: int = 3

    def __init__(self, registry: str, reason: str) -> None:
        self.registry = registry
        self.reason = reason
        super().__init__(f"Authentication failed for {registry}: {reason}")


class NotFoundError(OCIError):
    """Raised when a manifest is not present in the registry.

    Attributes:
        reference: The reference that was looked up.
        exit_code: CLI exit code (4).
    """

    exit_code: int = 4

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Manifest not found: {reference}")


class RegistryUnavailableError(OCIError):
    """Raised when the registry is not reachable.

    The transport retries with exponential backoff before raising this error.

    Attributes:
        registry: The registry host that is unreachable.
        reason: Description of the connectivity failure.
        exit_code: CLI exit code (5).
    """

    exit_code: int = 5

    def __init__(self, registry: str, reason: str) -> None:
        self.registry = registry
        self.reason = reason
        super().__init__(f"Registry unavailable: {registry}: {reason}")


class WriteFailureError(OCIError):
    """Raised when the registry rejects a blob or manifest write.

    Attributes:
        reference: The destination reference being written.
        reason: Description of the failure (usually status and body).
        status_code: HTTP status code, when the failure came from a response.
        exit_code: CLI exit code (5).
    """

    exit_code: int = 5

    def __init__(self, reference: str, reason: str, status_code: int | None = None) -> None:
        self.reference = reference
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Write to {reference} failed: {reason}")


class OperationCancelledError(OCIError):
    """Raised when a caller cancels a network operation.

    Registry state after a cancelled write is unspecified; treat it as a
    failed publish and retry from scratch.

    Attributes:
        operation: The operation that was cancelled.
        exit_code: CLI exit code (5).
    """

    exit_code: int = 5

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation cancelled: {operation}")


class UnreadableArtifactError(OCIError):
    """Raised when a path cannot be read or decoded as a tarball.

    Attributes:
        path: The path that could not be read.
        reason: Description of the failure.
        exit_code: CLI exit code (6).
    """

    exit_code: int = 6

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"loading {path} as tarball: {reason}")


class InvalidLayoutError(OCIError):
    """Raised when a directory cannot be parsed as an OCI image layout.

    Attributes:
        path: The layout directory.
        reason: Description of the failure.
        exit_code: CLI exit code (6).
    """

    exit_code: int = 6

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"loading {path} as OCI layout: {reason}")


class UnsupportedArtifactTypeError(OCIError):
    """Raised when an artifact is neither an image nor an image index.

    Attributes:
        media_type: The unsupported media type (or Python type name).
        exit_code: CLI exit code (6).
    """

    exit_code: int = 6

    def __init__(self, media_type: str, hint: str = "consider --index") -> None:
        self.media_type = media_type
        self.hint = hint
        msg = f"non-image artifact (mediaType: {media_type!r})"
        if hint:
            msg += f", {hint}"
        super().__init__(msg)


class DigestMismatchError(OCIError):
    """Raised when a published digest differs from the one expected.

    Attributes:
        expected: The expected digest.
        actual: The digest that was computed or reported.
        reference: The reference being published.
        exit_code: CLI exit code (7).
    """

    exit_code: int = 7

    def __init__(self, expected: str, actual: str, reference: str) -> None:
        self.expected = expected
        self.actual = actual
        self.reference = reference
        super().__init__(f"Digest mismatch for {reference}: expected {expected}, got {actual}")


class RecordWriteError(OCIError):
    """Raised when the published reference cannot be written to its file.

    Attributes:
        path: The destination file.
        reason: Description of the failure.
        exit_code: CLI exit code (8).
    """

    exit_code: int = 8

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write image reference to {path}: {reason}")


__all__ = [
    "AmbiguousSelectionError",
    "AuthenticationError",
    "DigestMismatchError",
    "InvalidDigestError",
    "InvalidLayoutError",
    "InvalidMatchSpecError",
    "MalformedReferenceError",
    "NotFoundError",
    "OCIError",
    "OperationCancelledError",
    "RecordWriteError",
    "RegistryUnavailableError",
    "UnreadableArtifactError",
    "UnsupportedArtifactTypeError",
    "WriteFailureError",
]

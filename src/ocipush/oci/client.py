"""Registry transport for publishing images and indexes.

This module provides RegistryClient, which writes artifact handles to an
OCI distribution registry and resolves references to digests. Sessions,
login and bearer-token negotiation come from the ORAS Python SDK; requests
follow the distribution API:

    HEAD /v2/<repo>/blobs/<digest>          skip blobs the registry has
    POST /v2/<repo>/blobs/uploads/          start a monolithic upload
    PUT  <location>?digest=<digest>         stream the blob
    PUT  /v2/<repo>/manifests/<ref>         manifest as its exact raw bytes
    HEAD /v2/<repo>/manifests/<ref>         resolve a reference to a digest

Key Features:
    - Blob bytes streamed from ``Layer.open()`` (never held in memory)
    - Index writes push every child manifest by digest before the index
    - Retry with exponential backoff for transient failures
    - Cancellation via ``threading.Event`` checked before every request
    - OpenTelemetry spans and counters

Example:
    >>> client = RegistryClient(RegistryConfig.from_env())
    >>> ref = parse_reference("ghcr.io/acme/app:v1")
    >>> digest = client.write_image(ref, image)
    >>> client.resolve_digest(ref) == digest
    True
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Protocol, cast
from urllib.parse import urljoin

import requests
import structlog
from oras.client import OrasClient
from requests.adapters import HTTPAdapter

from ocipush.oci.auth import AuthProvider, create_auth_provider
from ocipush.oci.errors import (
    AuthenticationError,
    DigestMismatchError,
    NotFoundError,
    OCIError,
    OperationCancelledError,
    RegistryUnavailableError,
    WriteFailureError,
)
from ocipush.oci.image import ArtifactKind, Image, ImageIndex, Layer
from ocipush.oci.metrics import PublishMetrics, get_publish_metrics
from ocipush.oci.resilience import RetryPolicy
from ocipush.schemas.oci import (
    DOCKER_MANIFEST_LIST,
    DOCKER_MANIFEST_SCHEMA2,
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    AuthType,
    Hash,
    RegistryConfig,
)

if TYPE_CHECKING:
    from ocipush.oci.reference import Reference, Repository

logger = structlog.get_logger(__name__)

DIGEST_HEADER = "Docker-Content-Digest"

MANIFEST_ACCEPT = ", ".join(
    [OCI_IMAGE_MANIFEST, OCI_IMAGE_INDEX, DOCKER_MANIFEST_SCHEMA2, DOCKER_MANIFEST_LIST]
)

_TRANSIENT_STATUS = frozenset({429, 500, 502, 503, 504})


class RegistryTransport(Protocol):
    """Remote write and lookup operations used by lock and publish."""

    def write_image(
        self, reference: Reference, image: Image, *, cancel: threading.Event | None = None
    ) -> Hash: ...

    def write_index(
        self, reference: Reference, index: ImageIndex, *, cancel: threading.Event | None = None
    ) -> Hash: ...

    def resolve_digest(
        self, reference: Reference, *, cancel: threading.Event | None = None
    ) -> Hash: ...


class _TimeoutAdapter(HTTPAdapter):
    """HTTPAdapter applying a default timeout to every request."""

    def __init__(self, timeout: float, **kwargs: Any) -> None:
        self._timeout = timeout
        super().__init__(**kwargs)

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self._timeout
        return super().send(request, **kwargs)


class RegistryClient:
    """Registry transport built on the ORAS SDK.

    One ORAS client is created per registry host on first use and logged in
    with the configured credentials.

    Attributes:
        config: The RegistryConfig in use.

    Example:
        >>> client = RegistryClient(RegistryConfig(insecure=True))
        >>> client.resolve_digest(parse_reference("localhost:5000/app:v1"))
    """

    def __init__(
        self,
        config: RegistryConfig | None = None,
        *,
        auth_provider: AuthProvider | None = None,
        retry_policy: RetryPolicy | None = None,
        metrics: PublishMetrics | None = None,
    ) -> None:
        """Initialize RegistryClient with dependency injection.

        Args:
            config: Registry configuration. Uses defaults if None.
            auth_provider: Optional pre-configured auth provider. If None, one
                is created per registry from ``config.auth``.
            retry_policy: Optional retry policy. If None, created from
                ``config.retry``.
            metrics: Optional metrics collector. If None, uses the
                module-level singleton.
        """
        self._config = config or RegistryConfig()
        self._auth_provider = auth_provider
        self._retry_policy = retry_policy or RetryPolicy(self._config.retry)
        self._metrics = metrics
        self._oras_clients: dict[str, OrasClient] = {}

        logger.debug(
            "registry_client_initialized",
            auth_type=self._config.auth.type.value,
            insecure=self._config.insecure,
        )

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def metrics(self) -> PublishMetrics:
        if self._metrics is None:
            self._metrics = get_publish_metrics()
        return self._metrics

    # =========================================================================
    # Public operations
    # =========================================================================

    def resolve_digest(
        self, reference: Reference, *, cancel: threading.Event | None = None
    ) -> Hash:
        """Return the digest of the manifest ``reference`` points at.

        Raises:
            NotFoundError: If the registry has no such manifest.
            AuthenticationError: If the registry rejects the credentials.
            RegistryUnavailableError: If the registry cannot be reached.
            OperationCancelledError: If ``cancel`` is set.
        """
        registry = reference.repository.registry
        url = self._manifest_url(reference.repository, reference.identifier)
        headers = {"Accept": MANIFEST_ACCEPT}
        retry = self._retry_policy.with_cancel(cancel)

        with (
            self.metrics.create_span(PublishMetrics.SPAN_LOCK, {"reference": str(reference)}),
            self.metrics.operation_timer("lock", registry),
        ):

            @retry.wrap
            def _resolve() -> Hash:
                response = self._send("HEAD", url, registry, cancel, headers=headers)
                self._raise_for_status(response, reference, operation="resolve")
                header = response.headers.get(DIGEST_HEADER)
                if header:
                    return Hash.parse(header)
                response = self._send("GET", url, registry, cancel, headers=headers)
                self._raise_for_status(response, reference, operation="resolve")
                return Hash.of(response.content)

            digest = _resolve()

        logger.debug("digest_resolved", reference=str(reference), digest=str(digest))
        return digest

    def write_image(
        self, reference: Reference, image: Image, *, cancel: threading.Event | None = None
    ) -> Hash:
        """Upload ``image``'s blobs and manifest and tag it as ``reference``.

        Returns:
            The digest of the image manifest.
        """
        registry = reference.repository.registry
        with (
            self.metrics.create_span(
                PublishMetrics.SPAN_PUBLISH, {"reference": str(reference), "kind": "image"}
            ),
            self.metrics.operation_timer("publish", registry),
        ):
            return self._write_image(reference, image, cancel)

    def write_index(
        self, reference: Reference, index: ImageIndex, *, cancel: threading.Event | None = None
    ) -> Hash:
        """Upload ``index``, every child it references, and tag it as ``reference``.

        Returns:
            The digest of the index manifest.

        Raises:
            UnsupportedArtifactTypeError: If a child is neither image nor index.
        """
        registry = reference.repository.registry
        with (
            self.metrics.create_span(
                PublishMetrics.SPAN_PUBLISH, {"reference": str(reference), "kind": "index"}
            ),
            self.metrics.operation_timer("publish", registry),
        ):
            return self._write_index(reference, index, cancel)

    # =========================================================================
    # Writes
    # =========================================================================

    def _write_image(
        self, reference: Reference, image: Image, cancel: threading.Event | None
    ) -> Hash:
        for layer in image.blobs():
            self._upload_blob(reference, layer, cancel)
        digest = image.digest()
        self._put_manifest(reference, image.raw_manifest(), image.media_type, digest, cancel)
        return digest

    def _write_index(
        self, reference: Reference, index: ImageIndex, cancel: threading.Event | None
    ) -> Hash:
        repository = reference.repository
        for desc in index.index_manifest().manifests:
            child = index.child(desc)
            child_ref = repository.digest(desc.digest)
            if child.kind is ArtifactKind.INDEX:
                self._write_index(child_ref, cast(ImageIndex, child), cancel)
            else:
                self._write_image(child_ref, cast(Image, child), cancel)
        digest = index.digest()
        self._put_manifest(reference, index.raw_manifest(), index.media_type, digest, cancel)
        return digest

    def _upload_blob(
        self, reference: Reference, layer: Layer, cancel: threading.Event | None
    ) -> None:
        repository = reference.repository
        registry = repository.registry
        digest = str(layer.digest())
        blob_url = self._url(repository, f"blobs/{digest}")
        retry = self._retry_policy.with_cancel(cancel)
        log = logger.bind(reference=str(reference), digest=digest)

        with self.metrics.create_span(
            PublishMetrics.SPAN_UPLOAD_BLOB, {"digest": digest, "size": layer.size()}
        ):

            @retry.wrap
            def _exists() -> bool:
                response = self._send("HEAD", blob_url, registry, cancel)
                if response.status_code == 404:
                    return False
                self._raise_for_status(response, reference, operation="check blob")
                return True

            if _exists():
                log.debug("blob_exists")
                return

            @retry.wrap
            def _upload() -> None:
                start = self._send(
                    "POST", self._url(repository, "blobs/uploads/"), registry, cancel
                )
                self._raise_for_status(start, reference, operation="start upload", write=True)
                location = start.headers.get("Location")
                if not location:
                    raise WriteFailureError(
                        str(reference), "upload response carried no Location header"
                    )
                upload_url = urljoin(self._base_url(registry), location)
                upload_url += ("&" if "?" in upload_url else "?") + f"digest={digest}"
                with layer.open() as stream:
                    response = self._send(
                        "PUT",
                        upload_url,
                        registry,
                        cancel,
                        headers={"Content-Type": "application/octet-stream"},
                        data=stream,
                    )
                self._raise_for_status(response, reference, operation="upload blob", write=True)

            _upload()

        self.metrics.record_blob_size(registry, layer.size())
        log.debug("blob_uploaded", size=layer.size())

    def _put_manifest(
        self,
        reference: Reference,
        raw: bytes,
        media_type: str,
        digest: Hash,
        cancel: threading.Event | None,
    ) -> None:
        registry = reference.repository.registry
        url = self._manifest_url(reference.repository, reference.identifier)
        retry = self._retry_policy.with_cancel(cancel)

        @retry.wrap
        def _put() -> requests.Response:
            response = self._send(
                "PUT", url, registry, cancel, headers={"Content-Type": media_type}, data=raw
            )
            self._raise_for_status(response, reference, operation="put manifest", write=True)
            return response

        response = _put()
        reported = response.headers.get(DIGEST_HEADER)
        if reported and reported != str(digest):
            raise DigestMismatchError(str(digest), reported, str(reference))
        logger.debug("manifest_written", reference=str(reference), digest=str(digest))

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _base_url(self, registry: str) -> str:
        scheme = "http" if self._config.insecure else "https"
        return f"{scheme}://{registry}"

    def _url(self, repository: Repository, suffix: str) -> str:
        return f"{self._base_url(repository.registry)}/v2/{repository.path}/{suffix}"

    def _manifest_url(self, repository: Repository, identifier: str) -> str:
        return self._url(repository, f"manifests/{identifier}")

    def _send(
        self,
        method: str,
        url: str,
        registry: str,
        cancel: threading.Event | None,
        *,
        headers: dict[str, str] | None = None,
        data: Any = None,
    ) -> requests.Response:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(f"{method} {url}")
        oras_client = self._get_oras_client(registry)
        try:
            response: requests.Response = oras_client.remote.do_request(
                url, method, data=data, headers=headers or {}
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RegistryUnavailableError(registry, str(e)) from e
        return response

    def _raise_for_status(
        self,
        response: requests.Response,
        reference: Reference,
        *,
        operation: str,
        write: bool = False,
    ) -> None:
        """Map an unsuccessful response onto the error taxonomy."""
        status = response.status_code
        if status < 400:
            return
        registry = reference.repository.registry
        detail = f"{operation} returned {status}"
        if status in (401, 403):
            raise AuthenticationError(registry, detail)
        if status in _TRANSIENT_STATUS:
            raise RegistryUnavailableError(registry, detail)
        if status == 404 and not write:
            raise NotFoundError(str(reference))
        body = (response.text or "")[:200]
        if write:
            raise WriteFailureError(str(reference), f"{detail}: {body}", status_code=status)
        raise OCIError(f"Unexpected response from {registry}: {detail}: {body}")

    def _get_oras_client(self, registry: str) -> OrasClient:
        if registry not in self._oras_clients:
            self._oras_clients[registry] = self._create_oras_client(registry)
        return self._oras_clients[registry]

    def _create_oras_client(self, registry: str) -> OrasClient:
        """Create and authenticate an ORAS client for ``registry``.

        Raises:
            AuthenticationError: If login fails.
        """
        provider = self._auth_provider or create_auth_provider(registry, self._config.auth)
        auth_backend = "basic" if provider.auth_type == AuthType.BASIC else "token"
        oras_client = OrasClient(insecure=self._config.insecure, auth_backend=auth_backend)

        adapter = _TimeoutAdapter(self._config.timeout_seconds)
        oras_client.remote.session.mount("https://", adapter)
        oras_client.remote.session.mount("http://", adapter)

        credentials = provider.get_credentials()
        # ORAS prompts interactively when login is called with empty credentials
        if not credentials.is_anonymous:
            try:
                oras_client.login(
                    hostname=registry,
                    username=credentials.username,
                    password=credentials.password,
                )
            except Exception as e:
                raise AuthenticationError(
                    registry, f"Failed to authenticate with registry: {e}"
                ) from e

        logger.debug("oras_client_created", registry=registry, auth_type=provider.auth_type.value)
        return oras_client


__all__ = ["RegistryClient", "RegistryTransport"]

"""Registry credential providers.

Credentials are never stored in configuration. ``RegistryAuth`` names the
environment variables holding them and the provider reads those variables
when the registry client first needs credentials.

Key Components:
    Credentials: Username/password pair handed to the ORAS login
    AuthProvider: Abstract base for providers
    AnonymousAuthProvider: No credentials (anonymous token negotiation only)
    BasicAuthProvider: Username and password from the environment
    TokenAuthProvider: Bearer token from the environment
    create_auth_provider: Factory selecting a provider from RegistryAuth

Example:
    >>> provider = create_auth_provider("ghcr.io", RegistryAuth(type=AuthType.TOKEN))
    >>> creds = provider.get_credentials()
    >>> creds.username
    '__token__'
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from ocipush.oci.errors import AuthenticationError
from ocipush.schemas.oci import AuthType, RegistryAuth

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Credentials for registry authentication.

    Empty username and password mean anonymous access.
    """

    username: str
    password: str

    @property
    def is_anonymous(self) -> bool:
        return not (self.username and self.password)


class AuthProvider(ABC):
    """Resolves credentials for one registry host."""

    @abstractmethod
    def get_credentials(self) -> Credentials:
        """Return credentials for the registry.

        Raises:
            AuthenticationError: If required credentials are unavailable.
        """
        ...

    @property
    @abstractmethod
    def auth_type(self) -> AuthType: ...


class AnonymousAuthProvider(AuthProvider):
    """Provider for registries accessed without credentials."""

    @property
    def auth_type(self) -> AuthType:
        return AuthType.ANONYMOUS

    def get_credentials(self) -> Credentials:
        return Credentials(username="", password="")


class BasicAuthProvider(AuthProvider):
    """Username/password read from environment variables.

    Args:
        registry: Registry host, used in error messages.
        username_env: Variable holding the username.
        password_env: Variable holding the password.
        environ: Environment mapping (defaults to ``os.environ``).
    """

    def __init__(
        self,
        registry: str,
        username_env: str,
        password_env: str,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._username_env = username_env
        self._password_env = password_env
        self._environ = environ if environ is not None else os.environ
        self._credentials: Credentials | None = None

    @property
    def auth_type(self) -> AuthType:
        return AuthType.BASIC

    def get_credentials(self) -> Credentials:
        if self._credentials is not None:
            return self._credentials

        username = self._environ.get(self._username_env)
        password = self._environ.get(self._password_env)
        if not username or not password:
            missing = [
                name
                for name, value in ((self._username_env, username), (self._password_env, password))
                if not value
            ]
            raise AuthenticationError(
                self._registry, f"basic auth requires {', '.join(missing)} to be set"
            )

        self._credentials = Credentials(username=username, password=password)
        logger.debug("basic_auth_credentials_loaded", registry=self._registry)
        return self._credentials


class TokenAuthProvider(AuthProvider):
    """Bearer token read from an environment variable.

    The token is presented to the registry login as the password of the
    special ``__token__`` user.
    """

    TOKEN_USERNAME = "__token__"

    def __init__(
        self,
        registry: str,
        token_env: str,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._token_env = token_env
        self._environ = environ if environ is not None else os.environ
        self._credentials: Credentials | None = None

    @property
    def auth_type(self) -> AuthType:
        return AuthType.TOKEN

    def get_credentials(self) -> Credentials:
        if self._credentials is not None:
            return self._credentials

        token = self._environ.get(self._token_env)
        if not token:
            raise AuthenticationError(
                self._registry, f"token auth requires {self._token_env} to be set"
            )

        self._credentials = Credentials(username=self.TOKEN_USERNAME, password=token)
        logger.debug("token_auth_credentials_loaded", registry=self._registry)
        return self._credentials


def create_auth_provider(
    registry: str,
    auth_config: RegistryAuth,
    environ: Mapping[str, str] | None = None,
) -> AuthProvider:
    """Create the provider for ``auth_config.type``.

    Raises:
        ValueError: If the auth type is unknown.
    """
    if auth_config.type == AuthType.ANONYMOUS:
        return AnonymousAuthProvider()
    if auth_config.type == AuthType.BASIC:
        return BasicAuthProvider(
            registry, auth_config.username_env, auth_config.password_env, environ
        )
    if auth_config.type == AuthType.TOKEN:
        return TokenAuthProvider(registry, auth_config.token_env, environ)
    raise ValueError(f"Unknown auth type: {auth_config.type}")


__all__ = [
    "AnonymousAuthProvider",
    "AuthProvider",
    "BasicAuthProvider",
    "Credentials",
    "TokenAuthProvider",
    "create_auth_provider",
]

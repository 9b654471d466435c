"""
Credential providers for source connectors.
Connectors receive credentials through a provider so secrets never reach
the reconciliation logic.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from ..errors import AuthenticationError
from ..processors.inventory import SourceName


@dataclass(frozen=True)
class Credentials:
    """Username/secret pair. Token-only sources leave username empty."""
    username: Optional[str] = None
    secret: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, secret=***)"


class CredentialProvider(ABC):
    """Supplies credentials for a source on demand."""

    @abstractmethod
    def get_credentials(self, source: SourceName) -> Credentials:
        """Return credentials for the source or raise AuthenticationError."""
        pass


class StaticCredentialProvider(CredentialProvider):
    """Serves credentials held in memory."""

    def __init__(self, credentials: Mapping[SourceName, Credentials]):
        self._credentials = dict(credentials)

    def get_credentials(self, source: SourceName) -> Credentials:
        if source not in self._credentials:
            raise AuthenticationError("No credentials configured", source.label)
        return self._credentials[source]


DEFAULT_ENV_VARS: Dict[SourceName, Tuple[Optional[str], str]] = {
    SourceName.DIRECTORY: ("AD_BIND_USER", "AD_BIND_PASSWORD"),
    SourceName.ENDPOINT_PROTECTION: (None, "S1_API_TOKEN"),
    SourceName.RMM: ("NINJA_CLIENT_ID", "NINJA_CLIENT_SECRET"),
}


class EnvironmentCredentialProvider(CredentialProvider):
    """
    Reads credentials from environment variables.

    Args:
        env_vars: Mapping of source to (username variable, secret variable).
            A None username variable means the source only needs a secret.
        environ: Environment mapping (defaults to os.environ)
    """

    def __init__(
        self,
        env_vars: Optional[Mapping[SourceName, Tuple[Optional[str], str]]] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        self.env_vars = dict(env_vars or DEFAULT_ENV_VARS)
        self.environ = environ if environ is not None else os.environ

    def get_credentials(self, source: SourceName) -> Credentials:
        if source not in self.env_vars:
            raise AuthenticationError("No credential variables configured", source.label)

        user_var, secret_var = self.env_vars[source]

        username = None
        if user_var:
            username = self.environ.get(user_var)
            if not username:
                raise AuthenticationError(
                    f"Environment variable '{user_var}' is not set", source.label
                )

        secret = self.environ.get(secret_var)
        if not secret:
            raise AuthenticationError(
                f"Environment variable '{secret_var}' is not set", source.label
            )

        return Credentials(username=username, secret=secret)

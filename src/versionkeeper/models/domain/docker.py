"""Domain models for talking to the Docker API."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Self

from ...constants import DOCKER_HUB_REGISTRY

__all__ = [
    "DockerCredentials",
    "DockerReference",
    "is_valid_digest",
]

# Regex fragments used for Docker reference parsing. These follow the
# grammar of the reference package of the Docker distribution project.
_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_NAME = (
    rf"(?P<repository>(?:{_DOMAIN}/)?{_PATH_COMPONENT}"
    rf"(?:/{_PATH_COMPONENT})*)"
)
_TAG = r"(?::(?P<tag>[\w][\w.-]{0,127}))?"
_DIGEST_VALUE = (
    r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
)
_DIGEST = rf"(?:@(?P<digest>{_DIGEST_VALUE}))?"

# Regex to parse a complete reference.
_REFERENCE_REGEX = re.compile(_NAME + _TAG + _DIGEST + "$")

# Regex matching a bare digest.
_DIGEST_REGEX = re.compile(_DIGEST_VALUE + "$")

# Maximum length of the repository portion of a reference.
_MAX_NAME_LENGTH = 255


def is_valid_digest(digest: str) -> bool:
    """Whether a string is a digest of the form :samp:`{algorithm}:{hex}`."""
    return _DIGEST_REGEX.match(digest) is not None


@dataclass
class DockerReference:
    """Parses a Docker reference.

    References have the form :samp:`{repository}[:{tag}][@{digest}]`, where
    the repository optionally starts with a registry hostname (and port).
    The repository is kept as written. Normalization to Docker Hub only
    happens when computing `registry` and `path` for API calls.
    """

    repository: str
    """Repository including any registry (``example.com/team/image``)."""

    tag: str | None
    """Tag, if present."""

    digest: str | None
    """Digest, if present."""

    @classmethod
    def from_str(cls, reference: str) -> Self:
        """Parse a Docker reference string into its components.

        Parameters
        ----------
        reference
            Reference string.

        Returns
        -------
        DockerReference
            Resulting reference.

        Raises
        ------
        ValueError
            The reference could not be parsed. (Uses `ValueError` so that this
            can be used as a Pydantic validator.)
        """
        match = _REFERENCE_REGEX.match(reference)
        if not match:
            raise ValueError(f'Invalid Docker reference "{reference}"')
        repository = match.group("repository")
        if len(repository) > _MAX_NAME_LENGTH:
            raise ValueError(f'Repository name too long in "{reference}"')
        return cls(
            repository=repository,
            tag=match.group("tag"),
            digest=match.group("digest"),
        )

    @property
    def registry(self) -> str:
        """Registry (Docker API server) hosting the image.

        The first path component is only a registry if it looks like a
        hostname: it contains a dot or a port, or is ``localhost``.
        Otherwise the image is on Docker Hub.
        """
        first, sep, _ = self.repository.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            return first
        return DOCKER_HUB_REGISTRY

    @property
    def path(self) -> str:
        """Repository path on the registry, without the registry hostname."""
        first, sep, rest = self.repository.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            return rest
        if "/" not in self.repository:
            return f"library/{self.repository}"
        return self.repository

    def __str__(self) -> str:
        result = self.repository
        if self.tag is not None:
            result += f":{self.tag}"
        if self.digest is not None:
            result += f"@{self.digest}"
        return result


@dataclass
class DockerCredentials:
    """Holds the credentials for one Docker API server."""

    username: str
    """Authentication username."""

    password: str
    """Authentication password."""

    @property
    def authorization(self) -> str:
        """Authentication string for ``Authorization`` header."""
        return f"Basic {self.credentials}"

    @property
    def credentials(self) -> str:
        """Credentials in encoded form suitable for ``Authorization``."""
        auth_data = f"{self.username}:{self.password}".encode()
        return base64.b64encode(auth_data).decode()

    @classmethod
    def from_config(cls, config: dict[str, str]) -> Self:
        """Create from a Docker config entry (such as a pull secret).

        The ``auth`` field is preferred. If it is missing, the ``username``
        and ``password`` fields are used instead.

        Parameters
        ----------
        config
            The entry for that hostname in the configuration.

        Returns
        -------
        DockerCredentials
            The resulting credentials.

        Raises
        ------
        KeyError
            The entry has neither ``auth`` nor ``username`` and ``password``.
        """
        if "auth" not in config:
            username = config["username"]
            return cls(username=username, password=config["password"])
        basic_auth = base64.b64decode(config["auth"].encode()).decode()
        username, password = basic_auth.split(":", 1)
        return cls(username=username, password=password)

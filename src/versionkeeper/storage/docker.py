"""Client for the Docker v2 API."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Self

from httpx import AsyncClient, HTTPError, Response
from structlog.stdlib import BoundLogger

from ..constants import (
    DEFAULT_TAG,
    DOCKER_HUB_ALIASES,
    DOCKER_HUB_API_HOST,
    DOCKER_HUB_REGISTRY,
)
from ..exceptions import DockerRegistryError, InvalidImageReferenceError
from ..models.domain.docker import DockerCredentials, DockerReference

__all__ = [
    "DockerCredentialStore",
    "DockerStorageClient",
]

_MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json, "
    "application/vnd.docker.distribution.manifest.list.v2+json, "
    "application/vnd.oci.image.manifest.v1+json, "
    "application/vnd.oci.image.index.v1+json, "
    "application/json;q=0.5"
)
"""Accept header for manifest requests, including multi-platform indexes."""


class DockerCredentialStore:
    """Read the ``.dockerconfigjson`` syntax used by Kubernetes."""

    @classmethod
    def from_path(cls, path: Path) -> Self:
        """Load credentials for Docker API hosts from a file.

        Parameters
        ----------
        path
            Path to file containing credentials.

        Returns
        -------
        DockerCredentialStore
            The resulting credential store.
        """
        with path.open("r") as f:
            return cls.from_config(json.load(f))

    @classmethod
    def from_secret_data(cls, data: str) -> Self:
        """Load credentials from the data of a Kubernetes pull secret.

        Parameters
        ----------
        data
            Base64-encoded value of the ``.dockerconfigjson`` key.

        Returns
        -------
        DockerCredentialStore
            The resulting credential store.

        Raises
        ------
        ValueError
            The data is not valid base64-encoded JSON in the expected format.
        """
        try:
            config = json.loads(base64.b64decode(data))
            return cls.from_config(config)
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Invalid Docker configuration: {type(e).__name__}: {e!s}"
            raise ValueError(msg) from e

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Self:
        """Load credentials from a parsed Docker configuration.

        Parameters
        ----------
        config
            Parsed ``.dockerconfigjson`` content.

        Returns
        -------
        DockerCredentialStore
            The resulting credential store.
        """
        credentials = {}
        for host, entry in config["auths"].items():
            credentials[host] = DockerCredentials.from_config(entry)
        return cls(credentials)

    def __init__(self, credentials: dict[str, DockerCredentials]) -> None:
        self._credentials = credentials

    def get(self, host: str) -> DockerCredentials | None:
        """Get credentials for a given host.

        These may be domain credentials, so if there is no exact match, return
        the credentials for any parent domain found. Docker Hub credentials
        are also found under the legacy keys written by ``docker login``.

        Parameters
        ----------
        host
            Host to which to authenticate.

        Returns
        -------
        DockerCredentials or None
            The corresponding credentials or `None` if there are no
            credentials in the store for that host.
        """
        credentials = self._credentials.get(host)
        if credentials:
            return credentials
        if host == DOCKER_HUB_REGISTRY:
            for alias in DOCKER_HUB_ALIASES:
                if alias in self._credentials:
                    return self._credentials[alias]
        for domain, credentials in self._credentials.items():
            if host.endswith(f".{domain}"):
                return credentials
        return None

    def update(self, other: DockerCredentialStore) -> None:
        """Add all credentials from another store, overriding existing ones.

        Parameters
        ----------
        other
            Store whose credentials take precedence.
        """
        self._credentials.update(other._credentials)


class DockerStorageClient:
    """Client to query the Docker API for image digests.

    Parameters
    ----------
    http_client
        Client to use to make requests.
    logger
        Logger for log messages.
    """

    def __init__(
        self, *, http_client: AsyncClient, logger: BoundLogger
    ) -> None:
        self._client = http_client
        self._logger = logger

        # Cached authorization headers by API host, repository path, and
        # username. Bearer tokens are scoped to a repository, so they cannot
        # be shared across repositories on the same host.
        self._authorization: dict[tuple[str, str, str | None], str] = {}

    async def get_image_version(
        self, reference: str, credentials: DockerCredentialStore
    ) -> str:
        """Get the digest of the image a reference points to.

        Parameters
        ----------
        reference
            Image reference. If it has no tag, ``latest`` is assumed.
        credentials
            Credentials to use if the registry asks for authentication.

        Returns
        -------
        str
            The digest, such as ``sha256:abcdef``.

        Raises
        ------
        DockerRegistryError
            Unable to retrieve the digest from the Docker Registry.
        InvalidImageReferenceError
            The reference could not be parsed.
        """
        try:
            parsed = DockerReference.from_str(reference)
        except ValueError as e:
            raise InvalidImageReferenceError(reference) from e
        if parsed.digest:
            return parsed.digest
        return await self.get_image_digest(
            parsed.registry,
            parsed.path,
            parsed.tag or DEFAULT_TAG,
            credentials,
        )

    async def get_image_digest(
        self,
        registry: str,
        repository: str,
        tag: str,
        credentials: DockerCredentialStore,
    ) -> str:
        """Get the digest associated with an image tag.

        Parameters
        ----------
        registry
            Registry holding the image.
        repository
            Repository path within that registry.
        tag
            The tag to inspect.
        credentials
            Credentials to use if the registry asks for authentication.

        Returns
        -------
        str
            The digest, such as ``sha256:abcdef``.

        Raises
        ------
        DockerRegistryError
            Unable to retrieve the digest from the Docker Registry.
        """
        host = self._api_host(registry)
        url = f"https://{host}/v2/{repository}/manifests/{tag}"
        credential = credentials.get(registry)
        username = credential.username if credential else None
        key = (host, repository, username)
        headers = self._build_headers(key)
        try:
            r = await self._client.head(url, headers=headers)
            if r.status_code == 401:
                self._authorization.pop(key, None)
                await self._authenticate(key, credential, r)
                headers = self._build_headers(key)
                r = await self._client.head(url, headers=headers)
            r.raise_for_status()
            digest = r.headers["Docker-Content-Digest"]
        except DockerRegistryError:
            raise
        except HTTPError as e:
            raise DockerRegistryError.from_exception(e) from e
        except Exception as e:
            error = f"{type(e).__name__}: {e!s}"
            msg = f"Cannot get image digest from Docker registry: {error}"
            raise DockerRegistryError(msg, method="HEAD", url=url) from e
        else:
            self._logger.debug(
                "Retrieved image digest for tag",
                registry=registry,
                repository=repository,
                tag=tag,
                digest=digest,
            )
            return digest

    @staticmethod
    def _api_host(registry: str) -> str:
        """Map a registry name to the host serving its API."""
        if registry == DOCKER_HUB_REGISTRY:
            return DOCKER_HUB_API_HOST
        return registry

    async def _authenticate(
        self,
        key: tuple[str, str, str | None],
        credentials: DockerCredentials | None,
        response: Response,
    ) -> None:
        """Authenticate after getting an auth challenge.

        Stores the authorization to use for subsequent requests. The caller
        should then retry the request.

        Parameters
        ----------
        key
            API host, repository, and username the authorization is for.
        credentials
            Credentials for the host, if any. Bearer token challenges are
            attempted anonymously without credentials.
        response
            The response from the server that includes an auth challenge.

        Raises
        ------
        DockerRegistryError
            Some failure in talking to the Docker registry API server.
        """
        host = key[0]
        challenge = response.headers.get("WWW-Authenticate")
        if not challenge:
            msg = f"Docker API 401 response from {host} contains no challenge"
            raise DockerRegistryError(msg)
        challenge_type, _, params = challenge.partition(" ")
        challenge_type = challenge_type.lower()

        if challenge_type == "basic":
            if not credentials:
                msg = f"No Docker API credentials available for {host}"
                raise DockerRegistryError(msg)
            self._authorization[key] = credentials.authorization
            self._logger.info(
                "Authenticated to Docker API with basic auth",
                registry=host,
                username=credentials.username,
            )
        elif challenge_type == "bearer":
            # Bearer is used by Docker's official registry.
            token = await self._get_bearer_token(host, credentials, params)
            self._authorization[key] = f"Bearer {token}"
            self._logger.info(
                "Authenticated to Docker API with bearer token",
                registry=host,
                username=credentials.username if credentials else None,
            )
        else:
            msg = f'Unknown Docker authentication challenge "{challenge_type}"'
            raise DockerRegistryError(msg)

    def _build_headers(
        self, key: tuple[str, str, str | None]
    ) -> dict[str, str]:
        """Construct the headers used for a manifest query.

        Adds the ``Authorization`` header if we have discovered that this host
        requires authentication.

        Parameters
        ----------
        key
            API host, repository, and username of the request.

        Returns
        -------
        dict of str to str
            Headers to pass to this host.
        """
        headers = {"Accept": _MANIFEST_MEDIA_TYPES}
        if key in self._authorization:
            headers["Authorization"] = self._authorization[key]
        return headers

    async def _get_bearer_token(
        self,
        host: str,
        credentials: DockerCredentials | None,
        challenge_params: str,
    ) -> str:
        """Get a bearer token for subsequent API calls.

        Parameters
        ----------
        host
            The host to which we're authenticating.
        credentials
            Authentication credentials, or `None` to request an anonymous
            token.
        challenge_params
            The parameters it sent in the ``WWW-Authenticate`` header.

        Returns
        -------
        str
            The bearer token to use for subsequent calls to that host.

        Raises
        ------
        DockerRegistryError
            Some failure in talking to the Docker registry API server.
        """
        # We need to reflect the challenge parameters back as query
        # parameters when obtaining our bearer token.
        self._logger.debug(
            "Parsing Docker API bearer challenge", params=challenge_params
        )
        params = {}
        for param in challenge_params.split(","):
            key, value = param.split("=", 1)
            params[key.strip()] = value.replace('"', "")
        if "realm" not in params:
            msg = f"Docker API bearer challenge from {host} has no realm"
            raise DockerRegistryError(msg)
        url = params["realm"]

        # Request a bearer token.
        self._logger.info(
            "Obtaining Docker API bearer token",
            registry=host,
            url=url,
            username=credentials.username if credentials else None,
        )
        auth = None
        if credentials:
            auth = (credentials.username, credentials.password)
        try:
            r = await self._client.get(url, auth=auth, params=params)
            r.raise_for_status()
            body = r.json()
            return body.get("token") or body["access_token"]
        except HTTPError as e:
            raise DockerRegistryError.from_exception(e) from e
        except Exception as e:
            error = f"{type(e).__name__}: {e!s}"
            msg = f"Cannot parse Docker registry login response: {error}"
            raise DockerRegistryError(msg, method="GET", url=url) from e

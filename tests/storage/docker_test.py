"""Test for the Docker API client."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import pytest
import respx
from httpx import Response

from versionkeeper.exceptions import (
    DockerRegistryError,
    InvalidImageReferenceError,
)
from versionkeeper.models.domain.docker import DockerCredentials
from versionkeeper.storage.docker import (
    DockerCredentialStore,
    DockerStorageClient,
)

from ..support.docker import make_digest, register_mock_docker


@pytest.mark.asyncio
async def test_basic_auth(
    docker: DockerStorageClient,
    credentials: DockerCredentialStore,
    respx_mock: respx.Router,
) -> None:
    tags = {"1.2.3": make_digest(), "latest": make_digest()}
    mock = register_mock_docker(
        respx_mock,
        host="registry.example.com",
        repository="team/agent",
        tags=tags,
        credentials=credentials.get("registry.example.com"),
    )

    reference = "registry.example.com/team/agent:1.2.3"
    digest = await docker.get_image_version(reference, credentials)
    assert digest == tags["1.2.3"]
    assert mock.manifest_requests == 2

    # The authorization is cached, so no further challenge is needed.
    reference = "registry.example.com/team/agent"
    digest = await docker.get_image_version(reference, credentials)
    assert digest == tags["latest"]
    assert mock.manifest_requests == 3


@pytest.mark.asyncio
async def test_bearer_auth(
    docker: DockerStorageClient,
    credentials: DockerCredentialStore,
    respx_mock: respx.Router,
) -> None:
    tags = {"2.0": make_digest()}
    register_mock_docker(
        respx_mock,
        host="registry.example.com",
        repository="team/agent",
        tags=tags,
        credentials=credentials.get("registry.example.com"),
        require_bearer=True,
    )
    reference = "registry.example.com/team/agent:2.0"
    digest = await docker.get_image_version(reference, credentials)
    assert digest == tags["2.0"]


@pytest.mark.asyncio
async def test_anonymous_docker_hub(
    docker: DockerStorageClient, respx_mock: respx.Router
) -> None:
    tags = {"24.04": make_digest()}
    register_mock_docker(
        respx_mock,
        host="registry-1.docker.io",
        repository="library/ubuntu",
        tags=tags,
        require_bearer=True,
    )
    empty = DockerCredentialStore({})
    digest = await docker.get_image_version("ubuntu:24.04", empty)
    assert digest == tags["24.04"]


@pytest.mark.asyncio
async def test_private_docker_hub(
    docker: DockerStorageClient, respx_mock: respx.Router
) -> None:
    config = {"username": "hubuser", "password": "hubpass"}
    store = DockerCredentialStore.from_config(
        {"auths": {"https://index.docker.io/v1/": config}}
    )
    tags = {"1.0": make_digest()}
    register_mock_docker(
        respx_mock,
        host="registry-1.docker.io",
        repository="myorg/private",
        tags=tags,
        credentials=DockerCredentials(username="hubuser", password="hubpass"),
        require_bearer=True,
    )
    digest = await docker.get_image_version("myorg/private:1.0", store)
    assert digest == tags["1.0"]


@pytest.mark.asyncio
async def test_digest_reference(
    docker: DockerStorageClient,
    credentials: DockerCredentialStore,
    respx_mock: respx.Router,
) -> None:
    digest = make_digest()
    reference = f"registry.example.com/team/agent@{digest}"
    assert await docker.get_image_version(reference, credentials) == digest
    assert not respx_mock.calls


@pytest.mark.asyncio
async def test_errors(
    docker: DockerStorageClient,
    credentials: DockerCredentialStore,
    respx_mock: respx.Router,
) -> None:
    register_mock_docker(
        respx_mock,
        host="registry.example.com",
        repository="team/agent",
        tags={},
        credentials=credentials.get("registry.example.com"),
    )
    reference = "registry.example.com/team/agent:missing"
    with pytest.raises(DockerRegistryError) as excinfo:
        await docker.get_image_version(reference, credentials)
    assert excinfo.value.status == 404

    # Basic auth without credentials cannot succeed.
    empty = DockerCredentialStore({})
    reference = "registry.example.com/team/agent:1.0"
    with pytest.raises(DockerRegistryError, match="No Docker API credentials"):
        await docker.get_image_version(reference, empty)

    with pytest.raises(InvalidImageReferenceError):
        await docker.get_image_version("Not A Reference", credentials)

    # A 401 with no challenge is an error.
    respx_mock.head("https://other.example.com/v2/agent/manifests/1.0").mock(
        return_value=Response(401)
    )
    with pytest.raises(DockerRegistryError, match="no challenge"):
        await docker.get_image_version("other.example.com/agent:1.0", empty)


def test_credential_store(tmp_path: Path) -> None:
    store = DockerCredentialStore({})
    assert store.get("example.com") is None

    credentials = DockerCredentials(username="foo", password="blahblah")
    other_credentials = DockerCredentials(username="u", password="p")
    config = {
        "auths": {
            "example.com": {
                "auth": base64.b64encode(b"foo:blahblah").decode(),
            },
            "example.org": {"username": "u", "password": "p"},
        }
    }
    store_path = tmp_path / "credentials.json"
    with store_path.open("w") as f:
        json.dump(config, f)

    store = DockerCredentialStore.from_path(store_path)
    assert store.get("example.com") == credentials
    assert store.get("foo.example.com") == credentials
    assert store.get("example.org") == other_credentials
    assert store.get("example.net") is None
    assert store.get("docker.io") is None


@pytest.mark.parametrize(
    "key",
    ["https://index.docker.io/v1/", "index.docker.io", "registry-1.docker.io"],
)
def test_credential_store_docker_hub(key: str) -> None:
    config = {"username": "hubuser", "password": "hubpass"}
    store = DockerCredentialStore.from_config({"auths": {key: config}})
    expected = DockerCredentials(username="hubuser", password="hubpass")
    assert store.get("docker.io") == expected


def test_credential_store_secret_data() -> None:
    config = {"auths": {"registry.example.com": {"auth": "dXNlcjpwYXNz"}}}
    data = base64.b64encode(json.dumps(config).encode()).decode()
    store = DockerCredentialStore.from_secret_data(data)
    expected = DockerCredentials(username="user", password="pass")
    assert store.get("registry.example.com") == expected

    other = DockerCredentialStore.from_config(
        {"auths": {"registry.example.com": {"auth": "bmV3OnNlY3JldA=="}}}
    )
    store.update(other)
    assert store.get("registry.example.com") == other.get(
        "registry.example.com"
    )

    with pytest.raises(ValueError, match="Invalid Docker configuration"):
        DockerCredentialStore.from_secret_data("not base64!")
    bad = base64.b64encode(b'{"registry": {}}').decode()
    with pytest.raises(ValueError, match="Invalid Docker configuration"):
        DockerCredentialStore.from_secret_data(bad)

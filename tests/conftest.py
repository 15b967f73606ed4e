"""Test fixtures for versionkeeper tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
import respx
import structlog
from httpx import AsyncClient
from safir.testing.slack import MockSlackWebhook, mock_slack_webhook
from structlog.stdlib import BoundLogger

from versionkeeper.constants import ROOT_LOGGER
from versionkeeper.services.builder.deployment import DeploymentBuilder
from versionkeeper.services.version import VersionReconciler
from versionkeeper.services.workload import WorkloadReconciler
from versionkeeper.storage.docker import (
    DockerCredentialStore,
    DockerStorageClient,
)
from versionkeeper.storage.public import PublicRegistryClient

from .support.clock import FakeClock
from .support.constants import TEST_PUBLIC_REGISTRY_URL, TEST_SLACK_WEBHOOK
from .support.kubernetes import (
    MockDeploymentStorage,
    MockSecretStorage,
    MockWorkloadStorage,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(ROOT_LOGGER)


@pytest_asyncio.fixture
async def http_client() -> AsyncIterator[AsyncClient]:
    async with AsyncClient() as client:
        yield client


@pytest.fixture
def credentials() -> DockerCredentialStore:
    """Default registry credentials for the tenant registry."""
    config = {"username": "tenant", "password": "s3cr3t"}
    return DockerCredentialStore.from_config(
        {"auths": {"registry.example.com": config}}
    )


@pytest.fixture
def docker(
    http_client: AsyncClient, logger: BoundLogger
) -> DockerStorageClient:
    return DockerStorageClient(http_client=http_client, logger=logger)


@pytest.fixture
def public_registry(
    http_client: AsyncClient, logger: BoundLogger
) -> PublicRegistryClient:
    return PublicRegistryClient(
        base_url=TEST_PUBLIC_REGISTRY_URL,
        http_client=http_client,
        logger=logger,
    )


@pytest.fixture
def mock_slack(respx_mock: respx.Router) -> MockSlackWebhook:
    return mock_slack_webhook(TEST_SLACK_WEBHOOK, respx_mock)


@pytest.fixture
def workload_storage() -> MockWorkloadStorage:
    return MockWorkloadStorage()


@pytest.fixture
def deployment_storage() -> MockDeploymentStorage:
    return MockDeploymentStorage()


@pytest.fixture
def secret_storage() -> MockSecretStorage:
    return MockSecretStorage()


@pytest.fixture
def version_reconciler(
    docker: DockerStorageClient,
    public_registry: PublicRegistryClient,
    logger: BoundLogger,
    clock: FakeClock,
) -> VersionReconciler:
    return VersionReconciler(
        hash_func=docker.get_image_version,
        public_registry=public_registry,
        logger=logger,
        clock=clock,
    )


@pytest.fixture
def reconciler(
    workload_storage: MockWorkloadStorage,
    deployment_storage: MockDeploymentStorage,
    secret_storage: MockSecretStorage,
    version_reconciler: VersionReconciler,
    credentials: DockerCredentialStore,
    logger: BoundLogger,
    clock: FakeClock,
) -> WorkloadReconciler:
    return WorkloadReconciler(
        workload_storage=workload_storage,  # type: ignore[arg-type]
        deployment_storage=deployment_storage,  # type: ignore[arg-type]
        secret_storage=secret_storage,  # type: ignore[arg-type]
        version_reconciler=version_reconciler,
        builder=DeploymentBuilder(),
        default_credentials=credentials,
        slack_client=None,
        logger=logger,
        clock=clock,
    )

"""Component factory and process-wide context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client.api_client import ApiClient
from safir.dependencies.http_client import http_client_dependency
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .services.builder.deployment import DeploymentBuilder
from .services.version import VersionReconciler
from .services.workload import WorkloadReconciler
from .storage.docker import DockerCredentialStore, DockerStorageClient
from .storage.kubernetes.creator import SecretStorage
from .storage.kubernetes.deployment import DeploymentStorage
from .storage.kubernetes.workload import WorkloadStorage
from .storage.public import PublicRegistryClient

__all__ = [
    "Factory",
    "ProcessContext",
]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds the per-process singletons. It is used by the
    `Factory` class as a source of dependencies to inject into created
    service and storage objects.
    """

    config: Config
    """Operator configuration."""

    http_client: AsyncClient
    """Shared HTTP client."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the operator configuration.

        The Kubernetes configuration must already have been loaded.

        Parameters
        ----------
        config
            Operator configuration.

        Returns
        -------
        ProcessContext
            Shared context for an operator process.
        """
        return cls(
            config=config,
            http_client=await http_client_dependency(),
            kubernetes_client=ApiClient(),
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()
        await http_client_dependency.aclose()


class Factory:
    """Build operator components.

    Uses the contents of a `ProcessContext` to construct the components of the
    application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for operator components.

        Parameters
        ----------
        config
            Operator configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        await self._context.aclose()

    def create_background_task_manager(self) -> BackgroundTaskManager:
        """Create the scheduler of reconcile passes.

        Returns
        -------
        BackgroundTaskManager
            Newly-created background task manager.
        """
        config = self._context.config
        return BackgroundTaskManager(
            reconciler=self.create_workload_reconciler(),
            workload_storage=self.create_workload_storage(),
            namespace=config.namespace,
            poll_interval=config.poll_interval,
            error_interval=config.error_interval,
            max_concurrent_reconciles=config.max_concurrent_reconciles,
            slack_client=self.create_slack_client(),
            logger=self._logger,
        )

    def create_default_credentials(self) -> DockerCredentialStore:
        """Load the registry credentials shared by every workload.

        Returns
        -------
        DockerCredentialStore
            Credentials from the configured file, or an empty store if that
            file does not exist.
        """
        path = self._context.config.docker_credentials_path
        if not path.exists():
            self._logger.info("No default Docker credentials", path=str(path))
            return DockerCredentialStore({})
        return DockerCredentialStore.from_path(path)

    def create_deployment_storage(self) -> DeploymentStorage:
        """Create Kubernetes storage object for child deployments.

        Returns
        -------
        DeploymentStorage
            Newly-created deployment storage.
        """
        return DeploymentStorage(self._context.kubernetes_client, self._logger)

    def create_docker_storage(self) -> DockerStorageClient:
        """Create a Docker storage client.

        Returns
        -------
        DockerStorageClient
            Newly-created Docker storage client.
        """
        return DockerStorageClient(
            http_client=self._context.http_client, logger=self._logger
        )

    def create_public_registry_client(self) -> PublicRegistryClient | None:
        """Create a client for the public registry image service.

        Returns
        -------
        PublicRegistryClient or None
            Configured client if a public registry URL was configured,
            otherwise `None`.
        """
        url = self._context.config.public_registry_url
        if not url:
            return None
        return PublicRegistryClient(
            base_url=str(url),
            http_client=self._context.http_client,
            logger=self._logger,
        )

    def create_secret_storage(self) -> SecretStorage:
        """Create Kubernetes storage object for pull secrets.

        Returns
        -------
        SecretStorage
            Newly-created secret storage.
        """
        return SecretStorage(self._context.kubernetes_client, self._logger)

    def create_slack_client(self) -> SlackWebhookClient | None:
        """Create a client for sending messages to Slack.

        Returns
        -------
        SlackWebhookClient or None
            Configured Slack client if a Slack webhook was configured,
            otherwise `None`.
        """
        if not self._context.config.slack_webhook:
            return None
        return SlackWebhookClient(
            self._context.config.slack_webhook.get_secret_value(),
            self._context.config.name,
            self._logger,
        )

    def create_version_reconciler(self) -> VersionReconciler:
        """Create the service that updates component version status.

        Returns
        -------
        VersionReconciler
            Newly-created version reconciler.
        """
        docker = self.create_docker_storage()
        return VersionReconciler(
            hash_func=docker.get_image_version,
            public_registry=self.create_public_registry_client(),
            logger=self._logger,
        )

    def create_workload_reconciler(self) -> WorkloadReconciler:
        """Create the service that runs reconcile passes.

        Returns
        -------
        WorkloadReconciler
            Newly-created workload reconciler.
        """
        config = self._context.config
        return WorkloadReconciler(
            workload_storage=self.create_workload_storage(),
            deployment_storage=self.create_deployment_storage(),
            secret_storage=self.create_secret_storage(),
            version_reconciler=self.create_version_reconciler(),
            builder=DeploymentBuilder(),
            default_credentials=self.create_default_credentials(),
            slack_client=self.create_slack_client(),
            logger=self._logger,
            update_interval=config.update_interval,
            error_interval=config.error_interval,
            max_conflict_retries=config.max_conflict_retries,
        )

    def create_workload_storage(self) -> WorkloadStorage:
        """Create Kubernetes storage object for managed workloads.

        Returns
        -------
        WorkloadStorage
            Newly-created workload storage.
        """
        return WorkloadStorage(self._context.kubernetes_client, self._logger)

"""Storage layer for child ``Deployment`` objects."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Deployment
from structlog.stdlib import BoundLogger

from ...constants import ANNOTATION_TEMPLATE_HASH, KUBERNETES_REQUEST_TIMEOUT
from ...exceptions import ApplyError, KubernetesError
from .creator import KubernetesObjectCreator

__all__ = ["DeploymentStorage"]


class DeploymentStorage(KubernetesObjectCreator[V1Deployment]):
    """Storage layer for ``Deployment`` objects.

    Adds create-or-update on top of create and read. The desired object is
    expected to carry a template hash annotation, which is what decides
    whether an existing object is out of date.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.AppsV1Api(api_client)
        super().__init__(
            create_method=self._api.create_namespaced_deployment,
            read_method=self._api.read_namespaced_deployment,
            object_type=V1Deployment,
            kind="Deployment",
            logger=logger,
        )

    async def create_or_update(self, deployment: V1Deployment) -> bool:
        """Create a deployment or replace it if its template hash differs.

        Parameters
        ----------
        deployment
            Desired deployment, including the template hash annotation.

        Returns
        -------
        bool
            `True` if the deployment was created or replaced, `False` if the
            existing deployment was already up to date.

        Raises
        ------
        ApplyError
            Raised if the deployment could not be read, created, or replaced.
        """
        name = deployment.metadata.name
        namespace = deployment.metadata.namespace
        try:
            current = await self.read(name, namespace)
            if not current:
                await self.create(namespace, deployment)
                self._logger.info(
                    "Created deployment", name=name, namespace=namespace
                )
                return True
        except KubernetesError as e:
            raise ApplyError(
                e.message,
                kind=e.kind,
                namespace=e.namespace,
                name=e.name,
                status=e.status,
                body=e.body,
            ) from e

        annotations = current.metadata.annotations or {}
        wanted = deployment.metadata.annotations[ANNOTATION_TEMPLATE_HASH]
        if annotations.get(ANNOTATION_TEMPLATE_HASH) == wanted:
            self._logger.debug(
                "Deployment is up to date", name=name, namespace=namespace
            )
            return False

        resource_version = current.metadata.resource_version
        deployment.metadata.resource_version = resource_version
        try:
            await self._api.replace_namespaced_deployment(
                name,
                namespace,
                deployment,
                _request_timeout=KUBERNETES_REQUEST_TIMEOUT.total_seconds(),
            )
        except ApiException as e:
            raise ApplyError.from_exception(
                "Error replacing object",
                e,
                kind="Deployment",
                namespace=namespace,
                name=name,
            ) from e
        self._logger.info("Updated deployment", name=name, namespace=namespace)
        return True

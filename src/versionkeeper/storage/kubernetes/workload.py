"""Storage layer for ``ManagedWorkload`` custom objects."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from pydantic import ValidationError
from structlog.stdlib import BoundLogger

from ...constants import (
    KUBERNETES_REQUEST_TIMEOUT,
    WORKLOAD_GROUP,
    WORKLOAD_KIND,
    WORKLOAD_PLURAL,
    WORKLOAD_VERSION,
)
from ...exceptions import KubernetesError, StatusConflictError
from ...models.v1.workload import ManagedWorkload

__all__ = ["WorkloadStorage"]


class WorkloadStorage:
    """Storage layer for ``ManagedWorkload`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._logger = logger

    async def list(self, namespace: str) -> list[ManagedWorkload]:
        """List the workloads in a namespace.

        Objects that cannot be parsed are skipped with a warning, since one
        broken object should not stop reconciliation of the others.

        Parameters
        ----------
        namespace
            Namespace in which to list workloads.

        Returns
        -------
        list of ManagedWorkload
            Workloads found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            objs = await self._api.list_namespaced_custom_object(
                WORKLOAD_GROUP,
                WORKLOAD_VERSION,
                namespace,
                WORKLOAD_PLURAL,
                _request_timeout=KUBERNETES_REQUEST_TIMEOUT.total_seconds(),
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=WORKLOAD_KIND,
                namespace=namespace,
            ) from e
        workloads = []
        for obj in objs["items"]:
            try:
                workloads.append(ManagedWorkload.model_validate(obj))
            except ValidationError as e:
                name = obj.get("metadata", {}).get("name")
                msg = f"Ignoring invalid {WORKLOAD_KIND}"
                self._logger.warning(
                    msg, name=name, namespace=namespace, error=str(e)
                )
        return workloads

    async def read(self, name: str, namespace: str) -> ManagedWorkload | None:
        """Read a workload.

        Parameters
        ----------
        name
            Name of the workload.
        namespace
            Namespace of the workload.

        Returns
        -------
        ManagedWorkload or None
            Workload, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server or if the
            object could not be parsed.
        """
        try:
            obj = await self._api.get_namespaced_custom_object(
                WORKLOAD_GROUP,
                WORKLOAD_VERSION,
                namespace,
                WORKLOAD_PLURAL,
                name,
                _request_timeout=KUBERNETES_REQUEST_TIMEOUT.total_seconds(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=WORKLOAD_KIND,
                namespace=namespace,
                name=name,
            ) from e
        return self._parse(obj, name, namespace)

    async def replace_status(self, workload: ManagedWorkload) -> None:
        """Replace the status of a workload.

        The write is conditional on the resource version of the workload, so
        it fails if the object changed since it was read. On success, the
        resource version of ``workload`` is updated to the new one.

        Parameters
        ----------
        workload
            Workload with the new status.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        StatusConflictError
            Raised if the object was modified since it was read.
        """
        name = workload.name
        namespace = workload.namespace
        msg = f"Updating {WORKLOAD_KIND} status"
        self._logger.debug(msg, name=name, namespace=namespace)
        try:
            obj = await self._api.replace_namespaced_custom_object_status(
                WORKLOAD_GROUP,
                WORKLOAD_VERSION,
                namespace,
                WORKLOAD_PLURAL,
                name,
                workload.to_kubernetes(),
                _request_timeout=KUBERNETES_REQUEST_TIMEOUT.total_seconds(),
            )
        except ApiException as e:
            error = StatusConflictError if e.status == 409 else KubernetesError
            raise error.from_exception(
                "Error updating object status",
                e,
                kind=WORKLOAD_KIND,
                namespace=namespace,
                name=name,
            ) from e
        resource_version = obj.get("metadata", {}).get("resourceVersion")
        if resource_version:
            workload.metadata.resource_version = resource_version

    def _parse(
        self, obj: dict[str, Any], name: str, namespace: str
    ) -> ManagedWorkload:
        """Parse a custom object into a workload model."""
        try:
            return ManagedWorkload.model_validate(obj)
        except ValidationError as e:
            raise KubernetesError(
                f"Invalid {WORKLOAD_KIND} object",
                kind=WORKLOAD_KIND,
                namespace=namespace,
                name=name,
                body=str(e),
            ) from e

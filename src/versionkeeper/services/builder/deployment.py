"""Construct the child ``Deployment`` of a managed workload."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1EnvVar,
    V1LabelSelector,
    V1LocalObjectReference,
    V1ObjectMeta,
    V1OwnerReference,
    V1PodSpec,
    V1PodTemplateSpec,
)

from ...constants import (
    ANNOTATION_TEMPLATE_HASH,
    DEFAULT_TAG,
    LABEL_MANAGED_BY,
    LABEL_WORKLOAD,
)
from ...models.v1.workload import ComponentSpec, ManagedWorkload
from ...util import generate_hash

__all__ = ["DeploymentBuilder"]


class DeploymentBuilder:
    """Construct the desired ``Deployment`` for a ``ManagedWorkload``.

    The deployment has one container per enabled component. Containers run
    the image pinned by digest once its version has been probed, and the
    declared reference before that.
    """

    def build(self, workload: ManagedWorkload) -> V1Deployment:
        """Construct the deployment for a workload.

        The result carries a template hash annotation computed over the rest
        of the object, so equal workloads always produce equal annotations.

        Parameters
        ----------
        workload
            Workload to build the deployment for.

        Returns
        -------
        kubernetes_asyncio.client.models.V1Deployment
            Kubernetes ``Deployment`` object to create or replace.
        """
        labels = {
            LABEL_MANAGED_BY: "versionkeeper",
            LABEL_WORKLOAD: workload.name,
        }
        pull_secrets = None
        if workload.spec.pull_secret:
            secret = V1LocalObjectReference(name=workload.spec.pull_secret)
            pull_secrets = [secret]
        deployment = V1Deployment(
            api_version="apps/v1",
            kind="Deployment",
            metadata=V1ObjectMeta(
                name=workload.name,
                namespace=workload.namespace,
                labels=labels,
                owner_references=[self._build_owner_reference(workload)],
            ),
            spec=V1DeploymentSpec(
                replicas=workload.spec.replicas,
                selector=V1LabelSelector(
                    match_labels={LABEL_WORKLOAD: workload.name}
                ),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels=labels),
                    spec=V1PodSpec(
                        containers=self._build_containers(workload),
                        image_pull_secrets=pull_secrets,
                    ),
                ),
            ),
        )
        template_hash = generate_hash(deployment.to_dict())
        deployment.metadata.annotations = {
            ANNOTATION_TEMPLATE_HASH: template_hash
        }
        return deployment

    def _build_containers(
        self, workload: ManagedWorkload
    ) -> list[V1Container]:
        containers = []
        for name, component in sorted(workload.spec.components.items()):
            if not component.enabled:
                continue
            env = None
            if component.env:
                env = [
                    V1EnvVar(name=k, value=v)
                    for k, v in sorted(component.env.items())
                ]
            container = V1Container(
                name=name,
                image=self._build_image(workload, name, component),
                env=env,
            )
            containers.append(container)
        return containers

    def _build_image(
        self, workload: ManagedWorkload, name: str, component: ComponentSpec
    ) -> str:
        """Determine the image reference for one component.

        Uses the probed repository and digest if known. Otherwise falls back
        to the reference the component declares, which the next successful
        probe will replace.
        """
        status = workload.status.versions.get(name)
        if status and status.image_repository and status.image_hash:
            return f"{status.image_repository}@{status.image_hash}"
        if component.image:
            return component.image
        if component.repository:
            repository = component.repository
        else:
            registry = workload.spec.tenant_registry.rstrip("/")
            repository = f"{registry}/{name}"
        return f"{repository}:{component.version or DEFAULT_TAG}"

    def _build_owner_reference(
        self, workload: ManagedWorkload
    ) -> V1OwnerReference:
        return V1OwnerReference(
            api_version=workload.api_version,
            kind=workload.kind,
            name=workload.name,
            uid=workload.metadata.uid,
            block_owner_deletion=True,
            controller=True,
        )

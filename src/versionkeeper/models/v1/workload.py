"""Models for the ``ManagedWorkload`` custom resource.

These models describe the persisted layout of the custom object. They use
camel-case aliases since that is the Kubernetes convention, and always
serialize by alias when writing back to Kubernetes.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...constants import WORKLOAD_GROUP, WORKLOAD_KIND, WORKLOAD_VERSION
from ..domain.version import VersionSource

__all__ = [
    "ComponentSpec",
    "ManagedWorkload",
    "VersionStatus",
    "WorkloadMetadata",
    "WorkloadPhase",
    "WorkloadSpec",
    "WorkloadStatus",
]


class WorkloadPhase(StrEnum):
    """Outcome of the last reconcile pass of a workload."""

    RUNNING = "Running"
    ERROR = "Error"


class VersionStatus(BaseModel):
    """Image version of one component as of the last successful probe.

    The image fields and ``last_probe_timestamp`` are only ever written
    together, after a successful probe.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image_repository: Annotated[
        str | None,
        Field(
            title="Image repository",
            description="Registry and path of the image without tag or digest",
            examples=["registry.example.com/team/agent"],
        ),
    ] = None

    image_tag: Annotated[
        str | None,
        Field(
            title="Image tag",
            description=(
                "Tag of the image, or the digest if the image was pinned by"
                " digest"
            ),
            examples=["1.2.3"],
        ),
    ] = None

    image_hash: Annotated[
        str | None,
        Field(
            title="Image digest",
            description="Content digest of the image",
            examples=["sha256:7ece13a07a20c77a31cc36906a10ebc9"],
        ),
    ] = None

    version: Annotated[
        str | None,
        Field(
            title="Version",
            description="Human-readable version, defaults to the image tag",
        ),
    ] = None

    source: Annotated[
        VersionSource | None,
        Field(
            title="Version source",
            description="Strategy that determined the image",
        ),
    ] = None

    last_probe_timestamp: Annotated[
        datetime | None,
        Field(
            title="Last probe",
            description="When the registry was last successfully probed",
        ),
    ] = None

    def is_empty(self) -> bool:
        """Whether no field of the status has ever been set."""
        return self == VersionStatus()


class ComponentSpec(BaseModel):
    """Declared image source of one component of a workload."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    enabled: Annotated[
        bool,
        Field(
            title="Enabled",
            description="Whether this component is managed at all",
        ),
    ] = True

    image: Annotated[
        str | None,
        Field(
            title="Custom image",
            description=(
                "Full image reference to run. Takes precedence over every"
                " other image setting."
            ),
            examples=["registry.example.com/team/agent:1.2.3"],
        ),
    ] = None

    version: Annotated[
        str | None,
        Field(
            title="Custom version",
            description="Tag to run from the default repository",
            examples=["1.2.3"],
        ),
    ] = None

    auto_update: Annotated[
        bool,
        Field(
            title="Auto-update",
            description=(
                "Whether to re-probe the registry on every pass. If false,"
                " the image is only resolved when the status is empty or the"
                " version source changed."
            ),
        ),
    ] = True

    use_public_registry: Annotated[
        bool,
        Field(
            title="Use public registry",
            description="Whether to run the latest publicly published image",
        ),
    ] = False

    repository: Annotated[
        str | None,
        Field(
            title="Default repository",
            description=(
                "Repository used for custom versions and the default image."
                " Defaults to the component name under the tenant registry."
            ),
        ),
    ] = None

    env: Annotated[
        dict[str, str],
        Field(
            title="Environment",
            description="Environment variables for the component container",
        ),
    ] = {}


class WorkloadSpec(BaseModel):
    """Specification of a ``ManagedWorkload``."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    tenant_registry: Annotated[
        str,
        Field(
            title="Tenant registry",
            description=(
                "Registry host, with optional path prefix, holding the default"
                " images of the components"
            ),
            examples=["registry.example.com/team"],
        ),
    ]

    pull_secret: Annotated[
        str | None,
        Field(
            title="Pull secret",
            description=(
                "Name of a ``kubernetes.io/dockerconfigjson`` secret in the"
                " same namespace holding registry credentials"
            ),
        ),
    ] = None

    replicas: Annotated[
        int, Field(title="Replicas", description="Replicas to run", ge=0)
    ] = 1

    components: Annotated[
        dict[str, ComponentSpec],
        Field(title="Components", description="Components by name"),
    ] = {}


class WorkloadStatus(BaseModel):
    """Status of a ``ManagedWorkload``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    phase: WorkloadPhase | None = None

    updated_timestamp: datetime | None = None

    versions: dict[str, VersionStatus] = {}


class WorkloadMetadata(BaseModel):
    """The parts of the Kubernetes object metadata this operator uses."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    name: str

    namespace: str

    uid: str | None = None

    resource_version: str | None = None

    labels: dict[str, str] | None = None

    annotations: dict[str, str] | None = None


class ManagedWorkload(BaseModel):
    """A ``ManagedWorkload`` custom object."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )

    api_version: str = f"{WORKLOAD_GROUP}/{WORKLOAD_VERSION}"

    kind: str = WORKLOAD_KIND

    metadata: WorkloadMetadata

    spec: WorkloadSpec

    status: WorkloadStatus = Field(default_factory=WorkloadStatus)

    @property
    def name(self) -> str:
        """Name of the workload."""
        return self.metadata.name

    @property
    def namespace(self) -> str:
        """Namespace of the workload."""
        return self.metadata.namespace

    def to_kubernetes(self) -> dict[str, Any]:
        """Serialize to the form expected by the Kubernetes API.

        Returns
        -------
        dict of str to Any
            The custom object body.
        """
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

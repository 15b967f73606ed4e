"""Per-component view used by the version reconciler."""

from __future__ import annotations

from abc import ABC, abstractmethod

from structlog.stdlib import BoundLogger

from ..constants import DEFAULT_TAG
from ..exceptions import InvalidImageReferenceError, PublicRegistryError
from ..models.domain.docker import DockerReference
from ..models.domain.version import LatestImageInfo
from ..models.v1.workload import ComponentSpec, VersionStatus, WorkloadSpec
from ..storage.docker import DockerCredentialStore
from ..storage.public import PublicRegistryClient

__all__ = [
    "ComponentUpdater",
    "Updater",
]


class Updater(ABC):
    """Capabilities of one component, as seen by the version reconciler.

    An updater is a short-lived view built fresh on every reconcile pass. It
    binds the declared configuration of one component to the version status
    record that the reconciler updates.
    """

    @abstractmethod
    def name(self) -> str:
        """Name of the component, used for logging."""

    @abstractmethod
    def is_enabled(self) -> bool:
        """Whether the component is managed at all."""

    @abstractmethod
    def target(self) -> VersionStatus:
        """Version status record of the component."""

    @abstractmethod
    def custom_image(self) -> str:
        """Pinned image reference, or the empty string if none."""

    @abstractmethod
    def custom_version(self) -> str:
        """Pinned tag within the default repository, or the empty string."""

    @abstractmethod
    def is_public_registry_enabled(self) -> bool:
        """Whether to follow the latest image on the public registry."""

    @abstractmethod
    def is_auto_update_enabled(self) -> bool:
        """Whether to re-probe the registry on every pass."""

    @abstractmethod
    def default_repository(self) -> str:
        """Repository used for custom versions and the default image."""

    @abstractmethod
    async def latest_image_info(self) -> LatestImageInfo:
        """Get the latest image published on the public registry.

        Raises
        ------
        ResolutionError
            Raised if the information could not be retrieved.
        """

    @abstractmethod
    async def use_defaults(self, credentials: DockerCredentialStore) -> None:
        """Populate registry-specific defaults before a tenant registry probe.

        Must be safe to call repeatedly.

        Parameters
        ----------
        credentials
            Registry credentials for this pass.

        Raises
        ------
        ResolutionError
            Raised if the defaults could not be determined.
        """

    def default_image(self) -> str:
        """Image reference used when nothing more specific is configured."""
        return f"{self.default_repository()}:{DEFAULT_TAG}"


class ComponentUpdater(Updater):
    """Updater for one component of a ``ManagedWorkload``.

    Parameters
    ----------
    name
        Name of the component.
    component
        Declared configuration of the component.
    workload
        Specification of the workload the component belongs to.
    target
        Version status record of the component.
    public_registry
        Client for the public registry image service, if configured.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        name: str,
        component: ComponentSpec,
        workload: WorkloadSpec,
        target: VersionStatus,
        public_registry: PublicRegistryClient | None,
        logger: BoundLogger,
    ) -> None:
        self._name = name
        self._component = component
        self._workload = workload
        self._target = target
        self._public_registry = public_registry
        self._logger = logger

    def name(self) -> str:
        return self._name

    def is_enabled(self) -> bool:
        return self._component.enabled

    def target(self) -> VersionStatus:
        return self._target

    def custom_image(self) -> str:
        return self._component.image or ""

    def custom_version(self) -> str:
        return self._component.version or ""

    def is_public_registry_enabled(self) -> bool:
        return self._component.use_public_registry

    def is_auto_update_enabled(self) -> bool:
        return self._component.auto_update

    def default_repository(self) -> str:
        if self._component.repository:
            return self._component.repository
        registry = self._workload.tenant_registry.rstrip("/")
        return f"{registry}/{self._name}"

    async def latest_image_info(self) -> LatestImageInfo:
        if not self._public_registry:
            msg = "No public registry image service configured"
            raise PublicRegistryError(msg)
        return await self._public_registry.get_latest_image_info(self._name)

    async def use_defaults(self, credentials: DockerCredentialStore) -> None:
        image = self.default_image()
        try:
            reference = DockerReference.from_str(image)
        except ValueError as e:
            raise InvalidImageReferenceError(image) from e
        if not credentials.get(reference.registry):
            self._logger.debug(
                "No credentials for tenant registry, trying anonymously",
                component=self._name,
                registry=reference.registry,
            )

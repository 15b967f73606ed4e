"""Determine and record the image version of each workload component."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime

from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..constants import DEFAULT_TAG
from ..exceptions import (
    InvalidImageReferenceError,
    ResolutionError,
    VersionProbeError,
)
from ..models.domain.docker import DockerReference, is_valid_digest
from ..models.domain.version import VersionSource
from ..models.v1.workload import ManagedWorkload, VersionStatus
from ..storage.docker import DockerCredentialStore
from ..storage.public import PublicRegistryClient
from .updater import ComponentUpdater, Updater

__all__ = [
    "Clock",
    "HashFunction",
    "VersionReconciler",
    "determine_source",
    "update_version_status",
]

type HashFunction = Callable[[str, DockerCredentialStore], Awaitable[str]]
"""Resolve an image reference to its digest using the given credentials."""

type Clock = Callable[[], datetime]
"""Source of the current time."""


def determine_source(updater: Updater) -> VersionSource:
    """Decide which strategy determines the image of a component.

    The first match wins, regardless of any other settings: a custom image
    beats a custom version, which beats the public registry, which beats the
    tenant registry default.

    Parameters
    ----------
    updater
        Component to decide for.

    Returns
    -------
    VersionSource
        The strategy to use.
    """
    if updater.custom_image():
        return VersionSource.CUSTOM_IMAGE
    if updater.custom_version():
        return VersionSource.CUSTOM_VERSION
    if updater.is_public_registry_enabled():
        return VersionSource.PUBLIC_REGISTRY
    return VersionSource.TENANT_REGISTRY


async def update_version_status(
    status: VersionStatus,
    reference: str,
    hash_func: HashFunction,
    credentials: DockerCredentialStore,
) -> None:
    """Set the image fields of a status from an image reference.

    If the reference already contains a digest, it is used as both the hash
    and the tag and the registry is not contacted. Otherwise the digest is
    looked up with ``hash_func``. No field is modified unless the lookup
    succeeds. The source and probe timestamp are never touched.

    Parameters
    ----------
    status
        Status to update.
    reference
        Image reference of the form :samp:`{repo}[:{tag}][@{digest}]`.
    hash_func
        Function to look up the digest of a reference.
    credentials
        Registry credentials to pass to ``hash_func``.

    Raises
    ------
    InvalidImageReferenceError
        Raised if the reference could not be parsed.
    ResolutionError
        Raised if the digest could not be looked up.
    """
    try:
        parsed = DockerReference.from_str(reference)
    except ValueError as e:
        raise InvalidImageReferenceError(reference) from e

    if parsed.digest:
        digest = parsed.digest
        tag = parsed.digest
    else:
        digest = await hash_func(reference, credentials)
        if not is_valid_digest(digest):
            msg = f'Invalid digest "{digest}" returned for {reference}'
            raise ResolutionError(msg)
        tag = parsed.tag or DEFAULT_TAG

    status.image_repository = parsed.repository
    status.image_tag = tag
    status.image_hash = digest


class VersionReconciler:
    """Keep the version status of every workload component current.

    Parameters
    ----------
    hash_func
        Function to look up the digest of an image reference.
    public_registry
        Client for the public registry image service, if configured.
    logger
        Logger to use.
    clock
        Source of the current time, used for probe timestamps.
    """

    def __init__(
        self,
        *,
        hash_func: HashFunction,
        public_registry: PublicRegistryClient | None,
        logger: BoundLogger,
        clock: Clock = current_datetime,
    ) -> None:
        self._hash_func = hash_func
        self._public_registry = public_registry
        self._logger = logger
        self._clock = clock

    async def reconcile(
        self, workload: ManagedWorkload, credentials: DockerCredentialStore
    ) -> None:
        """Update the version status of every component of a workload.

        A failure for one component does not stop the others from being
        updated. Status for components no longer in the specification is
        dropped.

        Parameters
        ----------
        workload
            Workload whose status is updated in place.
        credentials
            Registry credentials for this workload.

        Raises
        ------
        VersionProbeError
            Raised if the version of any component could not be determined.
        """
        versions = workload.status.versions
        for name in list(versions):
            if name not in workload.spec.components:
                del versions[name]

        errors: dict[str, ResolutionError] = {}
        for name, component in workload.spec.components.items():
            target = versions.get(name) or VersionStatus()
            updater = ComponentUpdater(
                name=name,
                component=component,
                workload=workload.spec,
                target=target,
                public_registry=self._public_registry,
                logger=self._logger,
            )
            try:
                await self.run(updater, credentials)
            except ResolutionError as e:
                self._logger.warning(
                    "Unable to determine image version",
                    name=workload.name,
                    namespace=workload.namespace,
                    component=name,
                    error=str(e),
                )
                errors[name] = e
            if not target.is_empty():
                versions[name] = target

        if errors:
            raise VersionProbeError(
                name=workload.name, namespace=workload.namespace, errors=errors
            )

    async def run(
        self, updater: Updater, credentials: DockerCredentialStore
    ) -> None:
        """Update the version status of one component.

        The registry is not contacted if auto-update is disabled and the
        status was already set by the same version source. Otherwise the
        image is resolved according to the version source and, only if that
        succeeds, all status fields are written together.

        Parameters
        ----------
        updater
            Component to update.
        credentials
            Registry credentials to use.

        Raises
        ------
        ResolutionError
            Raised if the image could not be resolved. The status is left
            unchanged.
        """
        if not updater.is_enabled():
            return
        source = determine_source(updater)
        target = updater.target()
        logger = self._logger.bind(component=updater.name(), source=source)

        if not updater.is_auto_update_enabled():
            if not target.is_empty() and target.source == source:
                logger.debug("Status already set and auto-update disabled")
                return

        # Resolve into a scratch record so that a failure at any step leaves
        # the target untouched.
        probe = VersionStatus()
        match source:
            case VersionSource.CUSTOM_IMAGE:
                reference = updater.custom_image()
                await self._update(probe, reference, credentials)
                taken = VersionSource.CUSTOM_IMAGE
            case VersionSource.CUSTOM_VERSION:
                version = updater.custom_version()
                reference = f"{updater.default_repository()}:{version}"
                await self._update(probe, reference, credentials)
                probe.version = version
                taken = VersionSource.CUSTOM_VERSION
            case VersionSource.PUBLIC_REGISTRY:
                info = await updater.latest_image_info()
                reference = str(info)
                await self._update(probe, reference, credentials)
                probe.version = probe.image_tag
                taken = VersionSource.PUBLIC_REGISTRY
            case _:
                await updater.use_defaults(credentials)
                reference = updater.default_image()
                await self._update(probe, reference, credentials)
                taken = VersionSource.TENANT_REGISTRY

        target.image_repository = probe.image_repository
        target.image_tag = probe.image_tag
        target.image_hash = probe.image_hash
        target.version = probe.version or probe.image_tag
        target.source = taken
        target.last_probe_timestamp = self._clock()
        logger.info(
            "Updated image version",
            image=reference,
            digest=target.image_hash,
            version=target.version,
        )

    async def _update(
        self,
        status: VersionStatus,
        reference: str,
        credentials: DockerCredentialStore,
    ) -> None:
        await update_version_status(
            status, reference, self._hash_func, credentials
        )

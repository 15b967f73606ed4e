"""Reconcile one ``ManagedWorkload`` against its desired state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from safir.datetime import current_datetime
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from ..constants import DEFAULT_ERROR_INTERVAL, DEFAULT_UPDATE_INTERVAL
from ..exceptions import (
    ApplyError,
    KubernetesError,
    MissingSecretError,
    ResolutionError,
    StatusConflictError,
    VersionProbeError,
)
from ..models.v1.workload import ManagedWorkload, WorkloadPhase
from ..storage.docker import DockerCredentialStore
from ..storage.kubernetes.creator import SecretStorage
from ..storage.kubernetes.deployment import DeploymentStorage
from ..storage.kubernetes.workload import WorkloadStorage
from ..util import is_different
from .builder.deployment import DeploymentBuilder
from .version import Clock, VersionReconciler

__all__ = [
    "ReconcileResult",
    "WorkloadReconciler",
]

_PULL_SECRET_KEY = ".dockerconfigjson"
"""Key of the registry credentials in a pull secret."""


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass of a workload."""

    requeue_after: timedelta | None = None
    """When to run the next pass, or `None` if no pass is needed."""

    error: Exception | None = None
    """Failure of the pass, if any. The pass still did all it could."""

    @property
    def requeue(self) -> bool:
        """Whether another pass should be scheduled."""
        return self.requeue_after is not None


class WorkloadReconciler:
    """Run reconcile passes for ``ManagedWorkload`` objects.

    A pass reads the workload, updates the version status of its
    components, applies the child ``Deployment``, and writes the status back
    only if it changed. No failure ends the pass early except failing to
    read the workload. Every failure is logged, reported to Slack if
    configured, and turns into the error requeue interval.

    Parameters
    ----------
    workload_storage
        Storage for ``ManagedWorkload`` objects.
    deployment_storage
        Storage for child ``Deployment`` objects.
    secret_storage
        Storage for pull secrets.
    version_reconciler
        Service that updates the version status of components.
    builder
        Builder for child ``Deployment`` objects.
    default_credentials
        Registry credentials used for every workload, extended by the pull
        secret of the workload if it has one.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    update_interval
        Requeue interval after a successful pass.
    error_interval
        Requeue interval after a failed pass.
    max_conflict_retries
        How many times to redo a pass whose status write conflicted.
    clock
        Source of the current time for ``updatedTimestamp``.
    """

    def __init__(
        self,
        *,
        workload_storage: WorkloadStorage,
        deployment_storage: DeploymentStorage,
        secret_storage: SecretStorage,
        version_reconciler: VersionReconciler,
        builder: DeploymentBuilder,
        default_credentials: DockerCredentialStore,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
        update_interval: timedelta = DEFAULT_UPDATE_INTERVAL,
        error_interval: timedelta = DEFAULT_ERROR_INTERVAL,
        max_conflict_retries: int = 3,
        clock: Clock = current_datetime,
    ) -> None:
        self._workload_storage = workload_storage
        self._deployment_storage = deployment_storage
        self._secret_storage = secret_storage
        self._version_reconciler = version_reconciler
        self._builder = builder
        self._default_credentials = default_credentials
        self._slack = slack_client
        self._logger = logger
        self._update_interval = update_interval
        self._error_interval = error_interval
        self._max_conflict_retries = max_conflict_retries
        self._clock = clock

    async def reconcile(self, name: str, namespace: str) -> ReconcileResult:
        """Run one reconcile pass for a workload.

        If the status write loses a race with another writer, the whole
        pass is redone from a fresh read of the workload.

        Parameters
        ----------
        name
            Name of the workload.
        namespace
            Namespace of the workload.

        Returns
        -------
        ReconcileResult
            When to run the next pass and the failure of this one, if any.
            Never requeues if the workload no longer exists.
        """
        logger = self._logger.bind(name=name, namespace=namespace)
        attempts = self._max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._reconcile_once(name, namespace, logger)
            except StatusConflictError as e:
                if attempt == attempts:
                    msg = "Status write kept conflicting, giving up"
                    logger.warning(msg, attempts=attempts)
                    await self._maybe_post_slack_exception(e)
                    return self._failure(e)
                logger.info("Status write conflicted, redoing pass")
            except KubernetesError as e:
                logger.exception("Error reconciling workload")
                await self._maybe_post_slack_exception(e)
                return self._failure(e)

        # Not reached, since the loop always returns on the final attempt.
        raise RuntimeError("Reconcile loop exited without a result")

    async def _reconcile_once(
        self, name: str, namespace: str, logger: BoundLogger
    ) -> ReconcileResult:
        """Run a single pass without retrying status conflicts.

        Raises
        ------
        KubernetesError
            Raised if the workload could not be read or its status could not
            be written.
        StatusConflictError
            Raised if the workload changed since it was read.
        """
        workload = await self._workload_storage.read(name, namespace)
        if not workload:
            logger.debug("Workload not found, nothing to do")
            return ReconcileResult()
        original = workload.status.model_dump(mode="json")
        error: Exception | None = None

        # Probe component versions.
        try:
            credentials = await self._get_credentials(workload)
            await self._version_reconciler.reconcile(workload, credentials)
        except (KubernetesError, ResolutionError, VersionProbeError) as e:
            logger.warning("Version probe failed", error=str(e))
            await self._maybe_post_slack_exception(e)
            error = e

        # Apply the child deployment.
        deployment = self._builder.build(workload)
        try:
            await self._deployment_storage.create_or_update(deployment)
        except ApplyError as e:
            logger.error("Unable to apply deployment", error=str(e))
            await self._maybe_post_slack_exception(e)
            workload.status.phase = WorkloadPhase.ERROR
            error = error or e
        else:
            workload.status.phase = WorkloadPhase.RUNNING

        # Persist the status if anything changed.
        current = workload.status.model_dump(mode="json")
        if is_different(original, current):
            workload.status.updated_timestamp = self._clock()
            await self._workload_storage.replace_status(workload)
            logger.info("Updated workload status", phase=workload.status.phase)
        else:
            logger.debug("Workload status unchanged")

        if error:
            return self._failure(error)
        return ReconcileResult(requeue_after=self._update_interval)

    async def _get_credentials(
        self, workload: ManagedWorkload
    ) -> DockerCredentialStore:
        """Assemble the registry credentials for a workload.

        Raises
        ------
        KubernetesError
            Raised if the pull secret could not be read.
        MissingSecretError
            Raised if the pull secret does not exist or is malformed.
        """
        credentials = DockerCredentialStore({})
        credentials.update(self._default_credentials)
        secret_name = workload.spec.pull_secret
        if not secret_name:
            return credentials
        namespace = workload.namespace
        secret = await self._secret_storage.read(secret_name, namespace)
        if not secret:
            msg = "Pull secret not found"
            raise MissingSecretError(
                msg, name=secret_name, namespace=namespace
            )
        data = (secret.data or {}).get(_PULL_SECRET_KEY)
        if not data:
            msg = f"Pull secret has no {_PULL_SECRET_KEY} key"
            raise MissingSecretError(
                msg, name=secret_name, namespace=namespace
            )
        try:
            credentials.update(DockerCredentialStore.from_secret_data(data))
        except ValueError as e:
            msg = f"Pull secret is invalid: {e!s}"
            raise MissingSecretError(
                msg, name=secret_name, namespace=namespace
            ) from e
        return credentials

    def _failure(self, error: Exception) -> ReconcileResult:
        return ReconcileResult(requeue_after=self._error_interval, error=error)

    async def _maybe_post_slack_exception(self, exc: Exception) -> None:
        """Post an exception to Slack if Slack reporting is configured.

        Parameters
        ----------
        exc
            Exception to report.
        """
        if not self._slack:
            return
        if isinstance(exc, SlackException):
            await self._slack.post_exception(exc)
        else:
            await self._slack.post_uncaught_exception(exc)

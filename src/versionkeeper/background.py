"""versionkeeper background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .services.version import Clock
from .services.workload import WorkloadReconciler
from .storage.kubernetes.workload import WorkloadStorage

__all__ = ["BackgroundTaskManager"]

type _Identity = tuple[str, str]


def _now() -> datetime:
    return current_datetime(microseconds=True)


class BackgroundTaskManager:
    """Schedule reconcile passes of ``ManagedWorkload`` objects.

    On every poll interval, the workloads in the watched namespace are
    listed. Each workload has a due time, set from the requeue interval of
    its last pass, and a pass is started for every workload that is due.
    Workloads seen for the first time are due immediately. Passes run as
    jobs of a scheduler that bounds how many run at once, and a workload
    never has more than one pass in flight.

    Parameters
    ----------
    reconciler
        Service that runs one reconcile pass.
    workload_storage
        Storage used to list workloads.
    namespace
        Namespace to watch.
    poll_interval
        How frequently to list workloads.
    error_interval
        Requeue interval after a pass raised an uncaught exception.
    max_concurrent_reconciles
        Limit on passes running at the same time.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    clock
        Source of the current time for due times.
    """

    def __init__(
        self,
        *,
        reconciler: WorkloadReconciler,
        workload_storage: WorkloadStorage,
        namespace: str,
        poll_interval: timedelta,
        error_interval: timedelta,
        max_concurrent_reconciles: int,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
        clock: Clock = _now,
    ) -> None:
        self._reconciler = reconciler
        self._workload_storage = workload_storage
        self._namespace = namespace
        self._poll_interval = poll_interval
        self._error_interval = error_interval
        self._max_concurrent = max_concurrent_reconciles
        self._slack = slack_client
        self._logger = logger
        self._clock = clock

        self._due: dict[_Identity, datetime] = {}
        self._running: set[_Identity] = set()
        self._scheduler: Scheduler | None = None
        self._reconcile_scheduler: Scheduler | None = None

    @property
    def busy(self) -> bool:
        """Whether any reconcile pass is in flight."""
        return bool(self._running)

    async def start(self) -> None:
        """Start polling for workloads in the background."""
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        self._reconcile_scheduler = Scheduler(
            limit=self._max_concurrent, pending_limit=0
        )
        self._logger.info("Starting background tasks")
        coro = self._loop(self.poll, self._poll_interval, "polling workloads")
        await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop polling and cancel any reconcile passes in flight."""
        if not self._scheduler or not self._reconcile_scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        await self._scheduler.close()
        await self._reconcile_scheduler.close()
        self._scheduler = None
        self._reconcile_scheduler = None

    async def poll(self) -> None:
        """List workloads and start a pass for each one that is due.

        Raises
        ------
        RuntimeError
            Raised if the background tasks have not been started.
        KubernetesError
            Raised if the workloads could not be listed.
        """
        if not self._reconcile_scheduler:
            raise RuntimeError("Background tasks not running")
        workloads = await self._workload_storage.list(self._namespace)
        now = self._clock()
        seen = set()
        for workload in workloads:
            identity = (workload.namespace, workload.name)
            seen.add(identity)
            if identity in self._running:
                continue
            due = self._due.setdefault(identity, now)
            if due <= now:
                self._running.add(identity)
                coro = self._reconcile(identity)
                await self._reconcile_scheduler.spawn(coro)

        # Forget workloads that have been deleted.
        for identity in list(self._due):
            if identity not in seen and identity not in self._running:
                del self._due[identity]

    async def _reconcile(self, identity: _Identity) -> None:
        """Run one reconcile pass and record when the next one is due."""
        namespace, name = identity
        try:
            result = await self._reconciler.reconcile(name, namespace)
        except asyncio.CancelledError:
            self._logger.info(
                "Reconcile pass cancelled", name=name, namespace=namespace
            )
            self._due[identity] = self._clock() + self._error_interval
            raise
        except Exception as e:
            msg = "Uncaught exception reconciling workload"
            self._logger.exception(msg, name=name, namespace=namespace)
            if self._slack:
                await self._slack.post_uncaught_exception(e)
            self._due[identity] = self._clock() + self._error_interval
        else:
            if result.requeue_after is not None:
                due = self._clock() + result.requeue_after
                self._due[identity] = due
            else:
                self._due.pop(identity, None)
        finally:
            self._running.discard(identity)

    async def _loop(
        self,
        call: Callable[[], Awaitable[None]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run on every interval, starting
        immediately.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                # On failure, log the exception but otherwise continue as
                # normal, including the delay. This will provide some time for
                # whatever the problem was to be resolved.
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg)
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
            delay = interval - (current_datetime(microseconds=True) - start)
            if delay.total_seconds() < 1:
                msg = f"{description.capitalize()} is running continuously"
                self._logger.warning(msg)
            else:
                await asyncio.sleep(delay.total_seconds())

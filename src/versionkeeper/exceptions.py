"""Exceptions for the versionkeeper operator."""

from __future__ import annotations

from typing import Self, override

from kubernetes_asyncio.client import ApiException
from safir.slack.blockkit import (
    SlackCodeBlock,
    SlackException,
    SlackMessage,
    SlackTextBlock,
    SlackTextField,
    SlackWebException,
)
from safir.slack.sentry import SentryEventInfo

__all__ = [
    "ApplyError",
    "DockerRegistryError",
    "InvalidImageReferenceError",
    "KubernetesError",
    "MissingSecretError",
    "PublicRegistryError",
    "ResolutionError",
    "StatusConflictError",
    "VersionProbeError",
]


class ResolutionError(SlackException):
    """Unable to determine the image version of a component.

    This is the base class for every failure that leaves a component's
    version status untouched. All of them are retried on the next pass.
    """


class DockerRegistryError(SlackWebException, ResolutionError):
    """An API call to a Docker Registry failed."""


class PublicRegistryError(SlackWebException, ResolutionError):
    """An API call to the public registry image service failed."""


class InvalidImageReferenceError(ResolutionError):
    """An image reference could not be parsed.

    This is a configuration problem in the workload, so it will keep failing
    until someone edits the resource, but it is retried on the same schedule
    as any other resolution failure.

    Parameters
    ----------
    reference
        The reference that could not be parsed.
    """

    def __init__(self, reference: str) -> None:
        super().__init__(f'Invalid image reference "{reference}"')
        self.reference = reference


class MissingSecretError(ResolutionError):
    """Pull secret named by a workload was not found or is malformed.

    Parameters
    ----------
    message
        Summary of error.
    name
        Name of secret.
    namespace
        Namespace of secret.
    """

    def __init__(self, message: str, *, name: str, namespace: str) -> None:
        super().__init__(message)
        self.name = name
        self.namespace = namespace

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        obj = f"Secret {self.namespace}/{self.name}"
        message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        return message


class VersionProbeError(SlackException):
    """Probing the image version of one or more components failed.

    Parameters
    ----------
    name
        Name of the workload.
    namespace
        Namespace of the workload.
    errors
        Mapping of component name to the failure for that component.
    """

    def __init__(
        self,
        *,
        name: str,
        namespace: str,
        errors: dict[str, ResolutionError],
    ) -> None:
        components = ", ".join(sorted(errors))
        msg = f"Version probe failed for {namespace}/{name} ({components})"
        super().__init__(msg)
        self.name = name
        self.namespace = namespace
        self.errors = errors

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        for component, error in sorted(self.errors.items()):
            error_text = f"{type(error).__name__}: {error!s}"
            block = SlackCodeBlock(heading=component, code=error_text)
            message.blocks.append(block)
        return message


class KubernetesError(SlackException):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of object being acted on.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    @override
    def to_slack(self) -> SlackMessage:
        """Convert to a Slack message for Slack alerting.

        Returns
        -------
        safir.slack.blockkit.SlackMessage
            Slack message suitable for posting as an alert.
        """
        message = super().to_slack()
        message.message = self._summary()
        if self.status:
            field = SlackTextField(heading="Status", text=str(self.status))
            message.fields.append(field)
        if self.name:
            kind = f"{self.kind} " if self.kind else ""
            if self.namespace:
                obj = f"{kind}{self.namespace}/{self.name}"
            else:
                obj = f"{kind}{self.name}"
            message.blocks.append(SlackTextBlock(heading="Object", text=obj))
        if self.body:
            code = SlackCodeBlock(heading="Error", code=self.body)
            message.blocks.append(code)
        return message

    @override
    def to_sentry(self) -> SentryEventInfo:
        """Return a collection of Sentry event metadata about the exception.

        Returns
        -------
        safir.slack.sentry.SentryEventInfo
            Sentry event metadata for use with \
            `~safir.sentry.before_send_handler`
        """
        info = super().to_sentry()
        if self.status:
            info.tags["status"] = str(self.status)
        if self.name:
            info.tags["name"] = self.name
        if self.kind:
            info.tags["kind"] = self.kind
        if self.namespace:
            info.tags["namespace"] = self.namespace
        if self.body:
            info.attachments["body"] = self.body
        return info

    def _summary(self) -> str:
        """Summarize the exception.

        Produces a single-line summary, used for the main part of the Slack
        message and part of the stringification.
        """
        result = self.message
        if self.name or self.kind or self.status:
            result += " ("
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    result += f"{kind}{self.namespace}/{self.name}"
                else:
                    result += f"{kind}{self.name}"
                if self.status:
                    result += ", "
            elif self.kind:
                result += self.kind
                if self.status:
                    result += ", "
            if self.status:
                result += f"status {self.status}"
            result += ")"
        return result


class ApplyError(KubernetesError):
    """Creating or updating a child object of a workload failed."""


class StatusConflictError(KubernetesError):
    """Writing the status of a workload lost an optimistic-concurrency race.

    Someone else updated the object since it was read. The caller should
    re-read the object and redo its work rather than treat this as fatal.
    """

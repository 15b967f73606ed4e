"""Global configuration parsing."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import Field, HttpUrl, SecretStr
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_ERROR_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_UPDATE_INTERVAL,
    DOCKER_CREDENTIALS_PATH,
)

__all__ = ["Config"]


class Config(BaseSettings):
    """versionkeeper operator configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "versionkeeper"

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers or Google Log Explorer."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    namespace: Annotated[
        str,
        Field(
            title="Watched namespace",
            description="Namespace in which ``ManagedWorkload`` objects live",
        ),
    ] = "default"

    update_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Update interval",
            description=(
                "How long to wait after a successful reconcile pass before"
                " checking the workload, and thus the registries, again"
            ),
        ),
    ] = DEFAULT_UPDATE_INTERVAL

    error_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Error retry interval",
            description="How long to wait before retrying a failed pass",
        ),
    ] = DEFAULT_ERROR_INTERVAL

    poll_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Poll interval",
            description=(
                "How frequently to list workloads to find new ones and start"
                " passes that are due"
            ),
        ),
    ] = DEFAULT_POLL_INTERVAL

    max_concurrent_reconciles: Annotated[
        int,
        Field(
            title="Maximum concurrent passes",
            description="Limit on reconcile passes running at the same time",
            ge=1,
        ),
    ] = 4

    max_conflict_retries: Annotated[
        int,
        Field(
            title="Maximum conflict retries",
            description=(
                "How many times to redo a pass whose status write conflicted"
                " with another writer before giving up until the next retry"
            ),
            ge=0,
        ),
    ] = 3

    docker_credentials_path: Annotated[
        Path,
        Field(
            title="Path to Docker API credentials",
            description=(
                "Path to a file in ``.dockerconfigjson`` format with"
                " credentials used for every workload. Credentials from the"
                " pull secret of a workload take precedence. A missing file"
                " means no default credentials."
            ),
        ),
    ] = DOCKER_CREDENTIALS_PATH

    public_registry_url: Annotated[
        HttpUrl | None,
        Field(
            title="Public registry image service",
            description=(
                "Base URL of the service reporting the latest public image"
                " of each component. Required for components that use the"
                " public registry."
            ),
            examples=["https://images.example.com"],
        ),
    ] = None

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failed reconcile passes and any uncaught exceptions"
                " in the operator will be reported to Slack via this webhook"
            ),
            validation_alias="VERSIONKEEPER_SLACK_WEBHOOK",
        ),
    ] = None

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the operator configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f) or {})

"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "ANNOTATION_TEMPLATE_HASH",
    "CONFIG_PATH_ENV_VAR",
    "CONFIGURATION_PATH",
    "DEFAULT_ERROR_INTERVAL",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_TAG",
    "DEFAULT_UPDATE_INTERVAL",
    "DOCKER_CREDENTIALS_PATH",
    "DOCKER_HUB_ALIASES",
    "DOCKER_HUB_API_HOST",
    "DOCKER_HUB_REGISTRY",
    "KUBERNETES_REQUEST_TIMEOUT",
    "LABEL_MANAGED_BY",
    "LABEL_WORKLOAD",
    "ROOT_LOGGER",
    "WORKLOAD_GROUP",
    "WORKLOAD_KIND",
    "WORKLOAD_PLURAL",
    "WORKLOAD_VERSION",
]

ANNOTATION_TEMPLATE_HASH = "versionkeeper.io/template-hash"
"""Annotation holding the content hash of a desired child object.

The hash is computed over the desired object before the annotation is added
and is compared against the annotation on the live object to decide whether
the live object must be replaced.
"""

CONFIG_PATH_ENV_VAR = "VERSIONKEEPER_CONFIG_PATH"
"""Environment variable that overrides the configuration path."""

CONFIGURATION_PATH = Path("/etc/versionkeeper/config.yaml")
"""Default path to operator configuration."""

DEFAULT_ERROR_INTERVAL = timedelta(minutes=1)
"""How soon to retry a reconcile pass after any failure."""

DEFAULT_POLL_INTERVAL = timedelta(seconds=30)
"""How frequently to list workloads to find new or due identities."""

DEFAULT_TAG = "latest"
"""Tag assumed for image references that carry neither tag nor digest."""

DEFAULT_UPDATE_INTERVAL = timedelta(minutes=30)
"""How soon to re-check a workload after a successful reconcile pass.

This is what notices upstream registry changes for components with
auto-update enabled.
"""

DOCKER_CREDENTIALS_PATH = Path("/etc/secrets/.dockerconfigjson")
"""Default path to the Docker API secrets."""

DOCKER_HUB_ALIASES = (
    "https://index.docker.io/v1/",
    "index.docker.io",
    "registry-1.docker.io",
)
"""Keys under which Docker clients store credentials for Docker Hub."""

DOCKER_HUB_API_HOST = "registry-1.docker.io"
"""Host serving the Docker Registry API for Docker Hub."""

DOCKER_HUB_REGISTRY = "docker.io"
"""Registry assumed for references without a registry component."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=30)
"""How long to wait for any single Kubernetes API call."""

LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
"""Standard label marking objects created by this operator."""

LABEL_WORKLOAD = "versionkeeper.io/workload"
"""Label naming the workload that owns a child object."""

ROOT_LOGGER = "versionkeeper"
"""Root logger name."""

WORKLOAD_GROUP = "versionkeeper.io"
"""API group of the ``ManagedWorkload`` custom resource."""

WORKLOAD_KIND = "ManagedWorkload"
"""Kind of the managed custom resource."""

WORKLOAD_PLURAL = "managedworkloads"
"""API plural of the ``ManagedWorkload`` custom resource."""

WORKLOAD_VERSION = "v1alpha1"
"""API version of the ``ManagedWorkload`` custom resource."""

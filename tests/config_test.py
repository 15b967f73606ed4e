"""Tests for configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError
from safir.logging import LogLevel, Profile

from versionkeeper.config import Config
from versionkeeper.constants import (
    DEFAULT_ERROR_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_UPDATE_INTERVAL,
    DOCKER_CREDENTIALS_PATH,
)

CONFIG = """\
namespace: tenants
logLevel: DEBUG
profile: development
updateInterval: 10m
errorInterval: 30s
pollInterval: 15
maxConcurrentReconciles: 2
maxConflictRetries: 0
dockerCredentialsPath: /etc/versionkeeper/docker.json
publicRegistryUrl: https://images.example.com
"""


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    config = Config.from_file(path)
    assert config.namespace == "tenants"
    assert config.log_level == LogLevel.DEBUG
    assert config.profile == Profile.development
    assert config.update_interval == timedelta(minutes=10)
    assert config.error_interval == timedelta(seconds=30)
    assert config.poll_interval == timedelta(seconds=15)
    assert config.max_concurrent_reconciles == 2
    assert config.max_conflict_retries == 0
    assert config.docker_credentials_path == Path(
        "/etc/versionkeeper/docker.json"
    )
    assert str(config.public_registry_url) == "https://images.example.com/"
    assert config.slack_webhook is None


def test_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("")
    config = Config.from_file(path)
    assert config.name == "versionkeeper"
    assert config.namespace == "default"
    assert config.update_interval == DEFAULT_UPDATE_INTERVAL
    assert config.error_interval == DEFAULT_ERROR_INTERVAL
    assert config.poll_interval == DEFAULT_POLL_INTERVAL
    assert config.max_concurrent_reconciles == 4
    assert config.max_conflict_retries == 3
    assert config.docker_credentials_path == DOCKER_CREDENTIALS_PATH
    assert config.public_registry_url is None


def test_invalid(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("namespace: tenants\nunknownSetting: true\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)

    path.write_text("maxConcurrentReconciles: 0\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)

    path.write_text("updateInterval: soon\n")
    with pytest.raises(ValidationError):
        Config.from_file(path)


def test_slack_webhook(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    webhook = "https://slack.example.com/webhook"
    monkeypatch.setenv("VERSIONKEEPER_SLACK_WEBHOOK", webhook)
    path = tmp_path / "config.yaml"
    path.write_text("namespace: tenants\n")
    config = Config.from_file(path)
    assert config.slack_webhook
    assert config.slack_webhook.get_secret_value() == webhook

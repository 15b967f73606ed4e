"""Tests for version determination of workload components."""

from __future__ import annotations

from datetime import timedelta
from itertools import product

import pytest
import respx
from structlog.stdlib import BoundLogger

from versionkeeper.exceptions import (
    DockerRegistryError,
    InvalidImageReferenceError,
    PublicRegistryError,
    ResolutionError,
    VersionProbeError,
)
from versionkeeper.models.domain.version import LatestImageInfo, VersionSource
from versionkeeper.models.v1.workload import VersionStatus
from versionkeeper.services.version import (
    VersionReconciler,
    determine_source,
    update_version_status,
)
from versionkeeper.storage.docker import DockerCredentialStore

from ..support.clock import FakeClock
from ..support.docker import make_digest, register_mock_docker
from ..support.updater import MockUpdater
from ..support.workload import make_workload

DIGEST = (
    "sha256:7ece13a07a20c77a31cc36906a10ebc90bd47970905ee61e8ed491b7f4c5d62f"
)


class MockHasher:
    """Resolve image references from a fixed table, recording every call."""

    def __init__(self, digests: dict[str, str] | None = None) -> None:
        self.digests = digests or {}
        self.calls: list[str] = []

    async def __call__(
        self, reference: str, credentials: DockerCredentialStore
    ) -> str:
        self.calls.append(reference)
        if reference not in self.digests:
            raise DockerRegistryError(f"Unknown image {reference}")
        return self.digests[reference]


@pytest.fixture
def hasher() -> MockHasher:
    return MockHasher()


@pytest.fixture
def reconciler(
    hasher: MockHasher, logger: BoundLogger, clock: FakeClock
) -> VersionReconciler:
    return VersionReconciler(
        hash_func=hasher, public_registry=None, logger=logger, clock=clock
    )


@pytest.mark.parametrize(
    ("image", "version", "public", "auto_update"),
    list(product([True, False], repeat=4)),
)
def test_determine_source(
    *, image: bool, version: bool, public: bool, auto_update: bool
) -> None:
    updater = MockUpdater(
        image="example.com/agent:1.0" if image else "",
        version="1.0" if version else "",
        public=public,
        auto_update=auto_update,
    )
    if image:
        expected = VersionSource.CUSTOM_IMAGE
    elif version:
        expected = VersionSource.CUSTOM_VERSION
    elif public:
        expected = VersionSource.PUBLIC_REGISTRY
    else:
        expected = VersionSource.TENANT_REGISTRY
    assert determine_source(updater) == expected


@pytest.mark.asyncio
async def test_update_version_status(hasher: MockHasher) -> None:
    credentials = DockerCredentialStore({})
    status = VersionStatus()
    reference = f"some.registry.com/image@{DIGEST}"
    await update_version_status(status, reference, hasher, credentials)
    assert hasher.calls == []
    assert status == VersionStatus(
        image_repository="some.registry.com/image",
        image_tag=DIGEST,
        image_hash=DIGEST,
    )

    # A tag and a digest together still use the digest as the tag.
    status = VersionStatus()
    reference = f"example.com/agent:1.0@{DIGEST}"
    await update_version_status(status, reference, hasher, credentials)
    assert status.image_tag == DIGEST
    assert hasher.calls == []

    digest = make_digest()
    hasher.digests["example.com/agent"] = digest
    status = VersionStatus()
    await update_version_status(
        status, "example.com/agent", hasher, credentials
    )
    assert hasher.calls == ["example.com/agent"]
    assert status == VersionStatus(
        image_repository="example.com/agent",
        image_tag="latest",
        image_hash=digest,
    )


@pytest.mark.asyncio
async def test_update_version_status_errors(hasher: MockHasher) -> None:
    credentials = DockerCredentialStore({})
    status = VersionStatus()
    with pytest.raises(InvalidImageReferenceError):
        await update_version_status(
            status, "Not A Reference", hasher, credentials
        )
    with pytest.raises(DockerRegistryError):
        await update_version_status(
            status, "example.com/agent:1.0", hasher, credentials
        )
    hasher.digests["example.com/agent:1.0"] = "bogus"
    with pytest.raises(ResolutionError, match="Invalid digest"):
        await update_version_status(
            status, "example.com/agent:1.0", hasher, credentials
        )
    assert status.is_empty()


@pytest.mark.asyncio
async def test_custom_image(
    reconciler: VersionReconciler, hasher: MockHasher, clock: FakeClock
) -> None:
    digest = make_digest()
    hasher.digests["example.com/other:2.0"] = digest
    updater = MockUpdater(image="example.com/other:2.0", version="1.0")
    await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.status == VersionStatus(
        image_repository="example.com/other",
        image_tag="2.0",
        image_hash=digest,
        version="2.0",
        source=VersionSource.CUSTOM_IMAGE,
        last_probe_timestamp=clock.now,
    )


@pytest.mark.asyncio
async def test_digest_pinned(
    reconciler: VersionReconciler, hasher: MockHasher
) -> None:
    updater = MockUpdater(image=f"some.registry.com/image@{DIGEST}")
    await reconciler.run(updater, DockerCredentialStore({}))
    assert hasher.calls == []
    assert updater.status.image_repository == "some.registry.com/image"
    assert updater.status.image_tag == DIGEST
    assert updater.status.image_hash == DIGEST
    assert updater.status.source == VersionSource.CUSTOM_IMAGE


@pytest.mark.asyncio
async def test_custom_version(
    reconciler: VersionReconciler, hasher: MockHasher, clock: FakeClock
) -> None:
    digest = make_digest()
    hasher.digests["registry.example.com/team/agent:1.2.3"] = digest
    updater = MockUpdater(version="1.2.3", public=True)
    await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.latest_calls == 0
    assert updater.status == VersionStatus(
        image_repository="registry.example.com/team/agent",
        image_tag="1.2.3",
        image_hash=digest,
        version="1.2.3",
        source=VersionSource.CUSTOM_VERSION,
        last_probe_timestamp=clock.now,
    )


@pytest.mark.asyncio
async def test_public_registry(
    reconciler: VersionReconciler, hasher: MockHasher
) -> None:
    digest = make_digest()
    hasher.digests["public.example.com/agent:3.1.0"] = digest
    latest = LatestImageInfo(source="public.example.com/agent", tag="3.1.0")
    updater = MockUpdater(public=True, latest=latest)
    await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.latest_calls == 1
    assert updater.defaults_calls == 0
    assert updater.status.image_repository == "public.example.com/agent"
    assert updater.status.image_tag == "3.1.0"
    assert updater.status.version == "3.1.0"
    assert updater.status.image_hash == digest
    assert updater.status.source == VersionSource.PUBLIC_REGISTRY


@pytest.mark.asyncio
async def test_tenant_registry(
    reconciler: VersionReconciler, hasher: MockHasher, clock: FakeClock
) -> None:
    digest = make_digest()
    hasher.digests["registry.example.com/team/agent:latest"] = digest
    updater = MockUpdater()
    await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.defaults_calls == 1
    assert updater.latest_calls == 0
    assert updater.status == VersionStatus(
        image_repository="registry.example.com/team/agent",
        image_tag="latest",
        image_hash=digest,
        version="latest",
        source=VersionSource.TENANT_REGISTRY,
        last_probe_timestamp=clock.now,
    )


@pytest.mark.asyncio
async def test_disabled(
    reconciler: VersionReconciler, hasher: MockHasher
) -> None:
    updater = MockUpdater(enabled=False, image="example.com/agent:1.0")
    await reconciler.run(updater, DockerCredentialStore({}))
    assert hasher.calls == []
    assert updater.status.is_empty()


@pytest.mark.asyncio
async def test_skip_without_auto_update(
    reconciler: VersionReconciler, hasher: MockHasher, clock: FakeClock
) -> None:
    digest = make_digest()
    hasher.digests["registry.example.com/team/agent:latest"] = digest
    updater = MockUpdater(auto_update=False)

    # An empty status is always resolved.
    await reconciler.run(updater, DockerCredentialStore({}))
    assert hasher.calls == ["registry.example.com/team/agent:latest"]
    expected = updater.status.model_copy()

    # Same source and no auto-update, so the registry is not contacted even
    # though the image changed upstream.
    hasher.digests["registry.example.com/team/agent:latest"] = make_digest()
    clock.advance(timedelta(hours=1))
    await reconciler.run(updater, DockerCredentialStore({}))
    assert len(hasher.calls) == 1
    assert updater.defaults_calls == 1
    assert updater.status == expected

    # A change of source forces a probe.
    hasher.digests["registry.example.com/team/agent:1.0"] = digest
    updater.version = "1.0"
    await reconciler.run(updater, DockerCredentialStore({}))
    assert len(hasher.calls) == 2
    assert hasher.calls[-1] == "registry.example.com/team/agent:1.0"
    assert updater.status.source == VersionSource.CUSTOM_VERSION
    assert updater.status.version == "1.0"
    assert updater.status.last_probe_timestamp == clock.now


@pytest.mark.asyncio
async def test_auto_update(
    reconciler: VersionReconciler, hasher: MockHasher, clock: FakeClock
) -> None:
    reference = "registry.example.com/team/agent:latest"
    hasher.digests[reference] = make_digest()
    updater = MockUpdater()
    await reconciler.run(updater, DockerCredentialStore({}))

    new_digest = make_digest()
    hasher.digests[reference] = new_digest
    clock.advance(timedelta(hours=1))
    await reconciler.run(updater, DockerCredentialStore({}))
    assert hasher.calls == [reference, reference]
    assert updater.status.image_hash == new_digest
    assert updater.status.last_probe_timestamp == clock.now


@pytest.mark.asyncio
async def test_failure_leaves_status(
    reconciler: VersionReconciler, hasher: MockHasher
) -> None:
    updater = MockUpdater(version="9.9.9")
    with pytest.raises(DockerRegistryError):
        await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.status.is_empty()
    assert updater.status.source is None
    assert updater.status.last_probe_timestamp is None

    # An existing status is not partially overwritten either.
    digest = make_digest()
    hasher.digests["registry.example.com/team/agent:latest"] = digest
    updater.version = ""
    await reconciler.run(updater, DockerCredentialStore({}))
    expected = updater.status.model_copy()
    updater.public = True
    with pytest.raises(PublicRegistryError):
        await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.status == expected

    hasher.digests["registry.example.com/team/agent:latest"] = "sha256:"
    updater.public = False
    with pytest.raises(ResolutionError, match="Invalid digest"):
        await reconciler.run(updater, DockerCredentialStore({}))
    assert updater.status == expected


@pytest.mark.asyncio
async def test_reconcile(
    version_reconciler: VersionReconciler,
    credentials: DockerCredentialStore,
    clock: FakeClock,
    respx_mock: respx.Router,
) -> None:
    agent_digest = make_digest()
    register_mock_docker(
        respx_mock,
        host="registry.example.com",
        repository="team/agent",
        tags={"latest": agent_digest},
        credentials=credentials.get("registry.example.com"),
    )
    register_mock_docker(
        respx_mock,
        host="registry.example.com",
        repository="team/sidecar",
        tags={},
        credentials=credentials.get("registry.example.com"),
    )
    workload = make_workload(
        {
            "agent": {},
            "sidecar": {"version": "2.0"},
            "disabled": {"enabled": False},
        },
        status={
            "versions": {
                "removed": {"imageTag": "1.0", "source": "tenant-registry"}
            }
        },
    )

    with pytest.raises(VersionProbeError) as excinfo:
        await version_reconciler.reconcile(workload, credentials)
    assert list(excinfo.value.errors) == ["sidecar"]
    error = excinfo.value.errors["sidecar"]
    assert isinstance(error, DockerRegistryError)
    assert error.status == 404
    assert "app" in str(excinfo.value)

    versions = workload.status.versions
    assert sorted(versions) == ["agent"]
    assert versions["agent"] == VersionStatus(
        image_repository="registry.example.com/team/agent",
        image_tag="latest",
        image_hash=agent_digest,
        version="latest",
        source=VersionSource.TENANT_REGISTRY,
        last_probe_timestamp=clock.now,
    )

"""Shared test fixtures."""

import asyncio
import io
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pairing_broker.adapters.credential_store import (
    CredentialStore,
    FileCredentialStore,
)
from pairing_broker.adapters.pairing_bridge_client import (
    PairingAdapter,
    PairingAdapterFactory,
)
from pairing_broker.app_logging import LOG_FORMAT
from pairing_broker.config import Settings
from pairing_broker.containers import AppContainer
from pairing_broker.domain.linking import AdapterEvent
from pairing_broker.services.linking import LinkingPolicy, LinkingService
from pairing_broker.services.registry import SessionRegistry

FAST_POLICY = LinkingPolicy(
    max_session_age=300,
    sweep_interval=60,
    adapter_settle_delay=0.05,
    code_wait_window=0.5,
    post_connect_teardown_delay=0.01,
    post_retrieval_cleanup_delay=0.05,
)
API_POLICY = replace(FAST_POLICY, post_retrieval_cleanup_delay=5)


@dataclass
class FakeClock:
    """Manually advanced UTC clock."""

    now: datetime = field(default_factory=lambda: datetime(2026, 1, 1, tzinfo=UTC))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class CountingCredentialStore(FileCredentialStore):
    """File store that counts reads and can fail removals."""

    reads: int = 0
    fail_removal_for: set[str] = field(default_factory=set)

    def read_artifact(self, directory: Path) -> bytes:
        self.reads += 1
        return super().read_artifact(directory)

    def remove_directory(self, directory: Path) -> None:
        if directory.name in self.fail_removal_for:
            raise OSError("disk busy")
        super().remove_directory(directory)


@dataclass
class FakePairingAdapter(PairingAdapter):
    """Scripted pairing adapter."""

    target: str
    working_directory: Path
    store: CredentialStore
    code: str = "ABCD-1234"
    ready: bool = True
    registered: bool = False
    code_delay: float = 0
    start_delay: float = 0
    start_error: Exception | None = None
    code_error: Exception | None = None
    teardown_error: Exception | None = None
    events: asyncio.Queue[AdapterEvent] = field(default_factory=asyncio.Queue)
    started: bool = False
    code_requests: list[str] = field(default_factory=list)
    teardowns: int = 0

    async def start(self) -> None:
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def wait_ready(self) -> None:
        if not self.ready:
            await asyncio.Event().wait()

    def is_registered(self) -> bool:
        return self.registered

    async def request_linking_code(self, target: str) -> str:
        self.code_requests.append(target)
        if self.code_delay:
            await asyncio.sleep(self.code_delay)
        if self.code_error is not None:
            raise self.code_error
        return self.code

    async def save_credentials(self, payload: dict[str, object]) -> None:
        self.store.write_credentials(self.working_directory, payload)

    async def teardown(self) -> None:
        self.teardowns += 1
        if self.teardown_error is not None:
            raise self.teardown_error


@dataclass
class FakeAdapterFactory(PairingAdapterFactory):
    """Builds scripted adapters and remembers them."""

    store: CredentialStore
    options: dict[str, object] = field(default_factory=dict)
    adapters: list[FakePairingAdapter] = field(default_factory=list)

    def create(self, target: str, working_directory: Path) -> FakePairingAdapter:
        adapter = FakePairingAdapter(
            target=target,
            working_directory=working_directory,
            store=self.store,
            **self.options,
        )
        self.adapters.append(adapter)
        return adapter


def build_service(
    root: Path,
    policy: LinkingPolicy = FAST_POLICY,
    clock: FakeClock | None = None,
    **adapter_options: object,
) -> tuple[LinkingService, CountingCredentialStore, FakeAdapterFactory]:
    store = CountingCredentialStore(root=root)
    factory = FakeAdapterFactory(store=store, options=dict(adapter_options))
    service = LinkingService(
        registry=SessionRegistry(),
        store=store,
        adapter_factory=factory,
        policy=policy,
    )
    if clock is not None:
        service.clock = clock
    return service, store, factory


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="test",
        sessions_dir=str(tmp_path / "sessions"),
        pairing_bridge_url="http://bridge.test",
    )


@pytest.fixture
def adapter_factory(tmp_path: Path) -> FakeAdapterFactory:
    return FakeAdapterFactory(store=FileCredentialStore(root=tmp_path / "sessions"))


@pytest.fixture
def container(
    settings: Settings, adapter_factory: FakeAdapterFactory
) -> AppContainer:
    linking_service = LinkingService(
        registry=SessionRegistry(),
        store=adapter_factory.store,
        adapter_factory=adapter_factory,
        policy=API_POLICY,
    )

    async def close_resources() -> None:
        await linking_service.shutdown()

    return AppContainer(
        settings=settings,
        linking_service=linking_service,
        close_resources=close_resources,
    )


@pytest.fixture
def log_output() -> Iterator[io.StringIO]:
    """Collect package log lines rendered with the production format."""
    logger = logging.getLogger("pairing_broker")
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    yield stream
    logger.removeHandler(handler)
    logger.setLevel(previous_level)

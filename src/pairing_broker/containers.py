"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from pairing_broker.adapters.credential_store import FileCredentialStore
from pairing_broker.adapters.pairing_bridge_client import HttpxPairingAdapterFactory
from pairing_broker.config import Settings
from pairing_broker.services.linking import LinkingPolicy, LinkingService
from pairing_broker.services.registry import SessionRegistry


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    linking_service: LinkingService
    close_resources: Callable[[], Awaitable[None]]


def build_policy(settings: Settings) -> LinkingPolicy:
    """Translate settings into lifecycle timings."""
    return LinkingPolicy(
        max_session_age=settings.max_session_age_seconds,
        sweep_interval=settings.sweep_interval_seconds,
        adapter_settle_delay=settings.adapter_settle_delay_seconds,
        code_wait_window=settings.code_wait_window_seconds,
        post_connect_teardown_delay=settings.post_connect_teardown_delay_seconds,
        post_retrieval_cleanup_delay=settings.post_retrieval_cleanup_delay_seconds,
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    store = FileCredentialStore(root=Path(resolved_settings.sessions_dir))
    adapter_factory = HttpxPairingAdapterFactory.create_default(
        base_url=resolved_settings.pairing_bridge_url,
        store=store,
        poll_interval=resolved_settings.pairing_bridge_poll_interval_seconds,
    )
    linking_service = LinkingService(
        registry=SessionRegistry(),
        store=store,
        adapter_factory=adapter_factory,
        policy=build_policy(resolved_settings),
    )

    async def close_resources() -> None:
        await linking_service.shutdown()
        await adapter_factory.close()

    return AppContainer(
        settings=resolved_settings,
        linking_service=linking_service,
        close_resources=close_resources,
    )

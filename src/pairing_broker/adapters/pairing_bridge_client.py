"""Pairing bridge adapter driving the external linking handshake."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import httpx

from pairing_broker.adapters.credential_store import CredentialStore
from pairing_broker.domain.linking import (
    AdapterEvent,
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdated,
)

logger = logging.getLogger(__name__)


class PairingAdapter(Protocol):
    """Interface for one in-flight pairing handshake."""

    events: asyncio.Queue[AdapterEvent]

    async def start(self) -> None:
        """Begin the handshake and start emitting events."""

    async def wait_ready(self) -> None:
        """Return once the handshake state is initialized."""

    def is_registered(self) -> bool:
        """Return true when the credential state is already registered."""

    async def request_linking_code(self, target: str) -> str:
        """Request a linking code for the target account."""

    async def save_credentials(self, payload: dict[str, object]) -> None:
        """Persist rotated credential material."""

    async def teardown(self) -> None:
        """Log out and release transport resources."""


class PairingAdapterFactory(Protocol):
    """Builds adapters bound to a target and a working directory."""

    def create(self, target: str, working_directory: Path) -> PairingAdapter:
        """Return a new, not yet started adapter."""


@dataclass
class HttpxPairingAdapter(PairingAdapter):
    """Adapter talking to a pairing bridge over HTTP."""

    target: str
    working_directory: Path
    store: CredentialStore
    base_url: str
    http_client: httpx.AsyncClient
    poll_interval: float = 1.0
    events: asyncio.Queue[AdapterEvent] = field(default_factory=asyncio.Queue)
    bridge_id: str | None = None
    _ready: asyncio.Event = field(default_factory=asyncio.Event)
    _registered: bool = False
    _cursor: int = 0
    _poll_task: asyncio.Task | None = None
    _closed: bool = False

    async def start(self) -> None:
        """Open a bridge session and start polling its event feed."""
        response = await self.http_client.post(
            f"{self.base_url}/sessions", json={"phone": self.target}, timeout=10
        )
        response.raise_for_status()
        payload = response.json()
        bridge_id = payload.get("id")
        if not bridge_id:
            raise RuntimeError("Pairing bridge did not return a session id")
        self.bridge_id = str(bridge_id)
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def wait_ready(self) -> None:
        """Wait until the bridge reports the handshake state is initialized."""
        await self._ready.wait()

    def is_registered(self) -> bool:
        """Return the registration flag last reported by the bridge."""
        return self._registered

    async def request_linking_code(self, target: str) -> str:
        """Ask the bridge for a pairing code."""
        url = f"{self.base_url}/sessions/{self.bridge_id}/pairing-code"
        response = await self.http_client.post(url, json={"phone": target}, timeout=10)
        response.raise_for_status()
        code = response.json().get("code")
        if not code:
            raise RuntimeError("Pairing bridge returned an empty code")
        return str(code)

    async def save_credentials(self, payload: dict[str, object]) -> None:
        """Write credential material into the session directory."""
        self.store.write_credentials(self.working_directory, payload)

    async def teardown(self) -> None:
        """Stop polling and log the bridge session out."""
        if self._closed:
            return
        self._closed = True
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        if self.bridge_id is None:
            return
        url = f"{self.base_url}/sessions/{self.bridge_id}/logout"
        response = await self.http_client.post(url, timeout=10)
        response.raise_for_status()

    async def poll_once(self) -> None:
        """Refresh readiness and forward any new bridge events."""
        base = f"{self.base_url}/sessions/{self.bridge_id}"
        if not self._ready.is_set():
            response = await self.http_client.get(base, timeout=10)
            response.raise_for_status()
            status = response.json()
            self._registered = bool(status.get("registered"))
            if status.get("ready"):
                self._ready.set()
        response = await self.http_client.get(
            f"{base}/events", params={"after": self._cursor}, timeout=10
        )
        response.raise_for_status()
        payload = response.json()
        for raw in payload.get("events", []):
            event = _parse_event(raw)
            if event is not None:
                await self.events.put(event)
        cursor = payload.get("cursor")
        if cursor is not None:
            self._cursor = int(cursor)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except httpx.HTTPError as exc:
                logger.warning(
                    "Pairing bridge poll failed for %s: %s", self.bridge_id, exc
                )
            except Exception:
                logger.exception(
                    "Unreadable pairing bridge reply for %s", self.bridge_id
                )
            await asyncio.sleep(self.poll_interval)


@dataclass
class HttpxPairingAdapterFactory(PairingAdapterFactory):
    """Creates bridge adapters sharing one httpx session."""

    base_url: str
    store: CredentialStore
    http_client: httpx.AsyncClient
    poll_interval: float = 1.0

    @classmethod
    def create_default(
        cls, base_url: str, store: CredentialStore, poll_interval: float = 1.0
    ) -> "HttpxPairingAdapterFactory":
        """Create a factory with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            store=store,
            http_client=httpx.AsyncClient(),
            poll_interval=poll_interval,
        )

    def create(self, target: str, working_directory: Path) -> HttpxPairingAdapter:
        """Return an adapter bound to a target and directory."""
        return HttpxPairingAdapter(
            target=target,
            working_directory=working_directory,
            store=self.store,
            base_url=self.base_url,
            http_client=self.http_client,
            poll_interval=self.poll_interval,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _parse_event(raw: object) -> AdapterEvent | None:
    """Translate a bridge event payload into a domain event."""
    if not isinstance(raw, dict):
        return None
    event_type = raw.get("type")
    if event_type == "creds.update":
        creds = raw.get("creds")
        if isinstance(creds, dict):
            return CredentialsUpdated(payload=creds)
        return None
    if event_type == "connection.update":
        connection = raw.get("connection")
        if connection == ConnectionState.OPEN:
            return ConnectionUpdate(state=ConnectionState.OPEN)
        if connection == ConnectionState.CLOSE:
            reason = raw.get("reason")
            return ConnectionUpdate(
                state=ConnectionState.CLOSE,
                reason=str(reason) if reason is not None else None,
            )
    return None

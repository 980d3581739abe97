"""Domain models for account linking sessions."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pairing_broker.adapters.pairing_bridge_client import PairingAdapter

MIN_TARGET_DIGITS = 8
LOGGED_OUT_REASON = "logged_out"


class LinkingError(Exception):
    """Base error for linking session failures."""


class InvalidInput(LinkingError):
    """Raised when the target identifier is malformed."""


class PairingTimeout(LinkingError):
    """Raised when no pairing code arrives inside the wait window."""


class AdapterFailure(LinkingError):
    """Raised when the pairing adapter errors during the handshake."""


class SessionState(StrEnum):
    """Lifecycle states of a linking session."""

    CREATED = "CREATED"
    PAIRING_REQUESTED = "PAIRING_REQUESTED"
    CODE_ISSUED = "CODE_ISSUED"
    CONNECTED = "CONNECTED"
    DISCLOSED = "DISCLOSED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class ConnectionState(StrEnum):
    """Connection states reported by the pairing adapter."""

    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class ConnectionUpdate:
    """Connection state change reported by the adapter."""

    state: ConnectionState
    reason: str | None = None


@dataclass(frozen=True)
class CredentialsUpdated:
    """Rotated credential material the adapter wants persisted."""

    payload: dict[str, object]


AdapterEvent = ConnectionUpdate | CredentialsUpdated


class RetrievalStatus(StrEnum):
    """Outcome of a credential retrieval attempt."""

    FOUND = "FOUND"
    PENDING = "PENDING"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class RetrievalResult:
    """Result of polling a session for its credential."""

    status: RetrievalStatus
    credential: str | None = None
    target: str | None = None


@dataclass(frozen=True)
class CreatedSession:
    """Handle returned to the caller after a successful creation."""

    token: str
    linking_code: str


@dataclass(eq=False)
class LinkingSession:
    """In-memory record of one linking handshake."""

    token: str
    target: str
    created_at: datetime
    working_directory: Path
    adapter: "PairingAdapter"
    state: SessionState = SessionState.CREATED
    linking_code: str | None = None
    credential: str | None = None
    connected: bool = False
    disclosed: bool = False
    completion_claimed: bool = False
    adapter_released: bool = False
    tasks: set[asyncio.Task] = field(default_factory=set)
    cleanup_task: asyncio.Task | None = None

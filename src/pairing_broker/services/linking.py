"""Lifecycle manager for account linking sessions."""

import asyncio
import base64
import logging
import re
import secrets
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from pairing_broker.adapters.credential_store import CredentialStore
from pairing_broker.adapters.pairing_bridge_client import PairingAdapterFactory
from pairing_broker.domain.linking import (
    LOGGED_OUT_REASON,
    MIN_TARGET_DIGITS,
    AdapterEvent,
    AdapterFailure,
    ConnectionState,
    CreatedSession,
    CredentialsUpdated,
    InvalidInput,
    LinkingError,
    LinkingSession,
    PairingTimeout,
    RetrievalResult,
    RetrievalStatus,
    SessionState,
)
from pairing_broker.services.registry import SessionRegistry

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class LinkingPolicy:
    """Timing knobs for the session lifecycle, in seconds."""

    max_session_age: float = 300
    sweep_interval: float = 60
    adapter_settle_delay: float = 2
    code_wait_window: float = 3
    post_connect_teardown_delay: float = 2
    post_retrieval_cleanup_delay: float = 5


def normalize_target(raw: str | None) -> str:
    """Strip everything but digits and validate the remaining length."""
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) < MIN_TARGET_DIGITS:
        raise InvalidInput("Invalid phone number")
    return digits


def new_token() -> str:
    """Return a session token with a timestamp and a random component."""
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def mask_target(target: str) -> str:
    """Hide all but the last four digits for logging."""
    return f"{'*' * max(len(target) - 4, 0)}{target[-4:]}"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class LinkingService:
    """Owns linking sessions from creation to destruction."""

    registry: SessionRegistry
    store: CredentialStore
    adapter_factory: PairingAdapterFactory
    policy: LinkingPolicy = field(default_factory=LinkingPolicy)
    clock: Callable[[], datetime] = _utcnow
    token_factory: Callable[[], str] = new_token
    _sweep_task: asyncio.Task | None = field(default=None, init=False, repr=False)

    @property
    def active_count(self) -> int:
        """Number of sessions currently registered."""
        return len(self.registry)

    async def create(self, raw_target: str | None) -> CreatedSession:
        """Start a linking session and wait briefly for its pairing code."""
        target = normalize_target(raw_target)
        session = self._register(target)
        logger.info("Generating session %s for %s", session.token, mask_target(target))

        pairing = self._spawn(session, self._pair(session))
        done, _ = await asyncio.wait({pairing}, timeout=self.policy.code_wait_window)

        if not done:
            logger.warning("Pairing code timed out for %s", session.token)
            await self._destroy(session.token, SessionState.FAILED)
            raise PairingTimeout("Failed to generate pairing code")
        if pairing.cancelled():
            raise AdapterFailure("Session was destroyed while pairing")
        error = pairing.exception()
        if error is not None:
            await self._destroy(session.token, SessionState.FAILED)
            if isinstance(error, LinkingError):
                raise error
            raise AdapterFailure(str(error)) from error
        code = pairing.result()
        if code is None:
            await self._destroy(session.token, SessionState.FAILED)
            raise AdapterFailure("Credential state is already registered")
        return CreatedSession(token=session.token, linking_code=code)

    async def handle_event(self, session: LinkingSession, event: AdapterEvent) -> None:
        """Apply one adapter event to its session."""
        if isinstance(event, CredentialsUpdated):
            await session.adapter.save_credentials(event.payload)
            return
        if event.state == ConnectionState.OPEN:
            self._complete(session)
        elif event.reason != LOGGED_OUT_REASON:
            logger.warning(
                "Connection closed for %s: reason=%s", session.token, event.reason
            )

    async def retrieve(self, token: str) -> RetrievalResult:
        """Return the credential once and schedule the session's destruction."""
        session = self.registry.get(token)
        if session is None:
            return RetrievalResult(status=RetrievalStatus.NOT_FOUND)
        if session.credential is None:
            return RetrievalResult(status=RetrievalStatus.PENDING)
        if not session.disclosed:
            session.disclosed = True
            session.state = SessionState.DISCLOSED
            session.cleanup_task = self._spawn(
                session, self._cleanup_after_retrieval(token)
            )
            logger.info("Credential disclosed for %s", token)
        return RetrievalResult(
            status=RetrievalStatus.FOUND,
            credential=session.credential,
            target=session.target,
        )

    async def sweep_expired(self) -> int:
        """Destroy every session older than the maximum age."""
        cutoff = self.clock() - timedelta(seconds=self.policy.max_session_age)
        removed = 0
        for session in self.registry.snapshot():
            if session.created_at >= cutoff:
                continue
            try:
                if await self._destroy(session.token, SessionState.EXPIRED):
                    removed += 1
                    logger.info("Session %s expired and cleaned", session.token)
            except Exception:
                logger.exception("Failed to expire session %s", session.token)
        return removed

    def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def shutdown(self) -> int:
        """Stop the sweep and destroy every live session."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        drained = 0
        for session in self.registry.snapshot():
            try:
                if await self._destroy(session.token):
                    drained += 1
            except Exception:
                logger.exception("Failed to drain session %s", session.token)
        logger.info("Drained %s sessions on shutdown", drained)
        return drained

    def _register(self, target: str) -> LinkingSession:
        token = self.token_factory()
        while token in self.registry:
            token = self.token_factory()
        directory = self.store.create_directory(token)
        try:
            adapter = self.adapter_factory.create(target, directory)
        except Exception:
            self.store.remove_directory(directory)
            raise
        session = LinkingSession(
            token=token,
            target=target,
            created_at=self.clock(),
            working_directory=directory,
            adapter=adapter,
        )
        self.registry.add(session)
        return session

    def _spawn(
        self, session: LinkingSession, coro: Coroutine[object, object, object]
    ) -> asyncio.Task:
        task = asyncio.create_task(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)
        return task

    async def _pair(self, session: LinkingSession) -> str | None:
        adapter = session.adapter
        try:
            await adapter.start()
        except Exception as exc:
            session.state = SessionState.FAILED
            logger.exception("Pairing adapter failed to start for %s", session.token)
            raise AdapterFailure("Failed to start pairing handshake") from exc
        self._spawn(session, self._consume_events(session))
        try:
            await asyncio.wait_for(
                adapter.wait_ready(), timeout=self.policy.adapter_settle_delay
            )
        except TimeoutError:
            logger.info(
                "Adapter for %s not ready after settle delay, requesting anyway",
                session.token,
            )
        if adapter.is_registered():
            return None
        session.state = SessionState.PAIRING_REQUESTED
        try:
            code = await adapter.request_linking_code(session.target)
        except Exception as exc:
            session.state = SessionState.FAILED
            logger.exception("Pairing code request failed for %s", session.token)
            raise AdapterFailure("Pairing code request failed") from exc
        session.linking_code = code
        if session.state == SessionState.PAIRING_REQUESTED:
            session.state = SessionState.CODE_ISSUED
        logger.info("Pairing code issued for %s", session.token)
        return code

    async def _consume_events(self, session: LinkingSession) -> None:
        while True:
            event = await session.adapter.events.get()
            try:
                await self.handle_event(session, event)
            except Exception:
                logger.exception(
                    "Failed to handle adapter event for %s", session.token
                )

    def _complete(self, session: LinkingSession) -> None:
        if session.completion_claimed:
            return
        session.completion_claimed = True
        try:
            raw = self.store.read_artifact(session.working_directory)
        except OSError:
            logger.exception(
                "Failed to read credential artifact for %s", session.token
            )
            return
        session.credential = base64.b64encode(raw).decode("ascii")
        session.connected = True
        session.state = SessionState.CONNECTED
        logger.info("Session %s connected", session.token)
        self._spawn(session, self._teardown_later(session))

    async def _teardown_later(self, session: LinkingSession) -> None:
        await asyncio.sleep(self.policy.post_connect_teardown_delay)
        await self._release_adapter(session)

    async def _cleanup_after_retrieval(self, token: str) -> None:
        await asyncio.sleep(self.policy.post_retrieval_cleanup_delay)
        if await self._destroy(token):
            logger.info("Session %s cleaned after retrieval", token)

    async def _release_adapter(self, session: LinkingSession) -> None:
        if session.adapter_released:
            return
        session.adapter_released = True
        try:
            await session.adapter.teardown()
        except Exception:
            logger.exception("Adapter teardown failed for %s", session.token)

    async def _destroy(self, token: str, state: SessionState | None = None) -> bool:
        session = self.registry.claim(token)
        if session is None:
            return False
        if state is not None:
            session.state = state
        current = asyncio.current_task()
        for task in list(session.tasks):
            if task is not current:
                task.cancel()
        try:
            await self._release_adapter(session)
            self.store.remove_directory(session.working_directory)
        except OSError:
            logger.exception("Failed to remove session directory for %s", token)
        finally:
            self.registry.remove(token)
        return True

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.policy.sweep_interval)
            try:
                await self.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")

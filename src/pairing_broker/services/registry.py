"""Thread-safe registry of live linking sessions."""

import threading

from pairing_broker.domain.linking import LinkingSession


class DuplicateTokenError(KeyError):
    """Raised when a token is already registered."""


class SessionRegistry:
    """Maps session tokens to live sessions.

    A session stays visible until it is claimed for destruction. Claiming is
    exclusive: the first caller gets the session, every later caller gets
    ``None``, so concurrent destruction paths never tear a session down twice.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, LinkingSession] = {}
        self._destroying: set[str] = set()

    def add(self, session: LinkingSession) -> None:
        """Register a new session, rejecting duplicate tokens."""
        with self._lock:
            if session.token in self._sessions:
                raise DuplicateTokenError(session.token)
            self._sessions[session.token] = session

    def get(self, token: str) -> LinkingSession | None:
        """Return a live session that is not being destroyed."""
        with self._lock:
            if token in self._destroying:
                return None
            return self._sessions.get(token)

    def claim(self, token: str) -> LinkingSession | None:
        """Mark a session as being destroyed and return it, once."""
        with self._lock:
            session = self._sessions.get(token)
            if session is None or token in self._destroying:
                return None
            self._destroying.add(token)
            return session

    def remove(self, token: str) -> None:
        """Drop a session entry after its resources are released."""
        with self._lock:
            self._sessions.pop(token, None)
            self._destroying.discard(token)

    def snapshot(self) -> list[LinkingSession]:
        """Return the live sessions at this instant."""
        with self._lock:
            return [
                session
                for token, session in self._sessions.items()
                if token not in self._destroying
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._sessions

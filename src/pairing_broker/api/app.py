"""FastAPI application factory."""

import logging
import resource
import sys
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pairing_broker.api.models import (
    GenerateSessionRequest,
    GenerateSessionResponse,
    SessionReadyResponse,
    SessionWaitingResponse,
)
from pairing_broker.app_logging import configure_logging
from pairing_broker.config import parse_allowed_origins
from pairing_broker.containers import AppContainer
from pairing_broker.domain.linking import InvalidInput, LinkingError, RetrievalStatus

_STATM = Path("/proc/self/statm")


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.container.linking_service.start()
        logger.info("Pairing broker ready")
        yield
        logger.info("Shutting down, cleaning up sessions")
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_allowed_origins(container.settings.cors_allow_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request body"},
        )

    @app.get("/api/health")
    async def health(request: Request) -> dict[str, object]:
        """Report process uptime, live session count and memory usage."""
        state_container: AppContainer = request.app.state.container
        return {
            "status": "ok",
            "uptime": round(time.monotonic() - started_at, 3),
            "activeSessions": state_container.linking_service.active_count,
            "memory": _memory_usage(),
        }

    @app.post("/api/generate-session", response_model=None)
    async def generate_session(
        body: GenerateSessionRequest, request: Request
    ) -> dict[str, object] | JSONResponse:
        """Start a linking session and return its pairing code."""
        state_container: AppContainer = request.app.state.container
        try:
            created = await state_container.linking_service.create(body.phone_number)
        except InvalidInput as exc:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)}
            )
        except Exception as exc:
            logger.exception("Session generation error")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": _format_error(state_container, exc)},
            )
        return GenerateSessionResponse(
            session_token=created.token, pairing_code=created.linking_code
        ).model_dump(by_alias=True)

    @app.get("/api/check-session/{token}", response_model=None)
    async def check_session(
        token: str, request: Request
    ) -> dict[str, object] | JSONResponse:
        """Return the credential once the handshake has completed."""
        state_container: AppContainer = request.app.state.container
        result = await state_container.linking_service.retrieve(token)
        if result.status == RetrievalStatus.NOT_FOUND:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": "Session not found"},
            )
        if result.status == RetrievalStatus.PENDING:
            return SessionWaitingResponse().model_dump()
        return SessionReadyResponse(
            session_id=result.credential or "", phone_number=result.target or ""
        ).model_dump(by_alias=True)

    return app


def _format_error(state_container: AppContainer, exc: Exception) -> str:
    """Return a caller-facing error with local debug info."""
    if isinstance(exc, LinkingError):
        return str(exc)
    fallback = "Failed to generate pairing code"
    if state_container.settings.environment == "local":
        detail = f"{type(exc).__name__}: {exc}".strip()
        if detail:
            return f"{fallback} (debug: {detail})"
    return fallback


def _memory_usage() -> dict[str, int]:
    """Return resident set sizes in bytes."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux and bytes on macOS.
    memory = {"peakRss": peak if sys.platform == "darwin" else peak * 1024}
    if _STATM.exists():
        resident_pages = int(_STATM.read_text().split()[1])
        memory["rss"] = resident_pages * resource.getpagesize()
    return memory

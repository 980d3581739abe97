"""Pydantic models for the linking HTTP API."""

from pydantic import BaseModel, ConfigDict, Field


class GenerateSessionRequest(BaseModel):
    """Body of a session generation request."""

    phone_number: str | None = Field(default=None, alias="phoneNumber")


class GenerateSessionResponse(BaseModel):
    """Token and pairing code for a new session."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session_token: str = Field(alias="sessionToken")
    pairing_code: str = Field(alias="pairingCode")


class SessionReadyResponse(BaseModel):
    """Credential payload for a completed session."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    session_id: str = Field(alias="sessionId")
    phone_number: str = Field(alias="phoneNumber")


class SessionWaitingResponse(BaseModel):
    """Returned while the handshake is still running."""

    success: bool = False
    waiting: bool = True

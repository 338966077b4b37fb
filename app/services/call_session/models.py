"""Call session models."""
from enum import Enum
from typing import Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.services.call_session.turns import TurnSequencer


class SessionState(str, Enum):
    """Lifecycle of a media stream session."""

    CONNECTING = "connecting"  # Socket accepted, no start event yet
    AWAITING_FIRST_UTTERANCE = "awaiting_first_utterance"  # Greeting queued, caller not heard yet
    CONVERSING = "conversing"
    CLOSING = "closing"
    CLOSED = "closed"

    def __str__(self) -> str:
        """Return the string value of the state."""
        return self.value


class CallSession:
    """Per-call state for one Twilio media stream."""

    def __init__(
        self,
        stream_sid: str,
        call_sid: str,
        phone_number: Optional[str] = None,
    ):
        self.stream_sid = stream_sid
        self.call_sid = call_sid
        self.phone_number = phone_number
        self.caller_name: Optional[str] = None
        self.socket_open = True
        self.turns = TurnSequencer()

    @property
    def turn_index(self) -> int:
        """Index of the turn currently allowed to transmit."""
        return self.turns.current

    def capture_name(self, name: str) -> bool:
        """Set the caller's name once. Returns True if it was set by this call."""
        if self.caller_name or not name.strip():
            return False
        self.caller_name = name.strip()
        return True


class StartPayload(BaseModel):
    """Body of a Twilio ``start`` message."""

    model_config = ConfigDict(populate_by_name=True)

    stream_sid: str = Field(alias="streamSid")
    call_sid: str = Field(alias="callSid")
    custom_parameters: Dict[str, str] = Field(default_factory=dict, alias="customParameters")


class StartMessage(BaseModel):
    """Twilio ``start`` message."""

    event: Literal["start"]
    start: StartPayload


class MediaPayload(BaseModel):
    payload: str


class MediaMessage(BaseModel):
    """Twilio ``media`` message carrying base64 mu-law audio."""

    event: Literal["media"]
    media: MediaPayload

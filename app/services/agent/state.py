"""Conversation state management."""
import time
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from app.services.scheduling.base import parse_appointment_time


class TurnRole(str, Enum):
    """Who spoke a turn."""

    CALLER = "caller"
    ASSISTANT = "assistant"

    def to_chat_role(self) -> str:
        """Map to the chat-completions message role."""
        return "user" if self is TurnRole.CALLER else "assistant"


class ConversationTurn(BaseModel):
    """One line of dialogue."""

    role: TurnRole
    content: str


class ConversationRecord(BaseModel):
    """Dialogue history for one call session, capped at ``max_turns``."""

    session_id: str
    max_turns: int = 10
    turns: List[ConversationTurn] = []
    updated_at: float = Field(default_factory=time.time)

    def add_turn(self, role: TurnRole, content: str) -> None:
        """Append a turn, dropping the oldest ones beyond the cap."""
        self.turns.append(ConversationTurn(role=role, content=content))
        self.trim()
        self.updated_at = time.time()

    def trim(self) -> None:
        if len(self.turns) > self.max_turns:
            self.turns = self.turns[-self.max_turns:]

    def to_messages(self) -> List[Dict[str, str]]:
        """Render the history as chat-completions messages."""
        return [
            {"role": turn.role.to_chat_role(), "content": turn.content}
            for turn in self.turns
            if turn.content
        ]


class AgentReply(BaseModel):
    """What the agent wants said back, plus a newly captured caller name."""

    reply_text: str
    extracted_name: Optional[str] = None


class AppointmentRequest(BaseModel):
    """Arguments of a ``schedule_appointment`` call from the model."""

    appointment_time: datetime
    action: Literal["check", "schedule", "suggest_next"]

    @field_validator("appointment_time", mode="before")
    @classmethod
    def to_wall_clock(cls, value):
        if isinstance(value, str):
            return parse_appointment_time(value)
        return value

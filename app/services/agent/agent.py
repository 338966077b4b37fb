"""LLM agent service."""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import openai
from openai import AsyncOpenAI

from app.core.config import settings
from app.services.agent import constants
from app.services.agent.prompt import (
    ACTION_CHECK,
    ACTION_SUGGEST_NEXT,
    EXTRACT_APPOINTMENT_TIME,
    EXTRACT_NAME,
    SCHEDULE_APPOINTMENT,
    get_system_prompt,
    get_tool_choice,
    get_tools,
)
from app.services.agent.state import (
    AgentReply,
    AppointmentRequest,
    ConversationRecord,
    TurnRole,
)
from app.services.cache.ttl_cache import TTLCache
from app.services.scheduling.base import (
    AppointmentStore,
    format_appointment_time,
    parse_appointment_time,
)

logger = logging.getLogger(__name__)


class ConversationAgent:
    """Receptionist agent: keeps dialogue history and turns model output into replies."""

    def __init__(
        self,
        appointment_store: AppointmentStore,
        history_cache: TTLCache[str, ConversationRecord],
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_history: Optional[int] = None,
        office_name: Optional[str] = None,
    ):
        self.appointment_store = appointment_store
        self.history_cache = history_cache
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_model
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self.max_history = max_history or settings.max_history
        self.office_name = office_name or settings.office_name

    def get_record(self, session_id: str) -> ConversationRecord:
        """Load the session's history, or start a new one."""
        record = self.history_cache.get(session_id)
        if record is None:
            record = ConversationRecord(session_id=session_id, max_turns=self.max_history)
        return record

    async def handle_utterance(
        self,
        session_id: str,
        text: str,
        known_name: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> AgentReply:
        """
        Process one finalized caller utterance and produce the reply to speak.

        Args:
            session_id: Media stream SID the history is keyed by
            text: Finalized transcript
            known_name: Caller name captured earlier in the call, if any
            phone_number: Caller phone number, used when booking

        Returns:
            AgentReply with the reply text and a newly extracted name, if any
        """
        if not text or not text.strip():
            logger.info(f"[AGENT] Received empty transcript - Session: {session_id}")
            return AgentReply(reply_text=constants.DID_NOT_CATCH_REPLY)

        utterance = text.strip()
        record = self.get_record(session_id)
        record.add_turn(TurnRole.CALLER, utterance)

        messages = [
            {
                "role": "system",
                "content": get_system_prompt(self.office_name, known_name),
            },
            *record.to_messages(),
        ]

        logger.info(
            f"[AGENT INPUT] Session: {session_id}, Known name: {known_name or 'NONE'}, "
            f"History turns: {len(record.turns)}, Utterance: '{utterance}'"
        )

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    tools=get_tools(),
                    tool_choice=get_tool_choice(known_name),
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"[AGENT] OpenAI request timed out after {self.timeout_seconds}s - Session: {session_id}"
            )
            self.history_cache.put(session_id, record)
            return AgentReply(reply_text=constants.MODEL_FAILURE_REPLY)
        except openai.OpenAIError as e:
            logger.error(
                f"[AGENT] OpenAI request failed - Session: {session_id}, "
                f"Error: {type(e).__name__}: {e}"
            )
            self.history_cache.put(session_id, record)
            return AgentReply(reply_text=constants.MODEL_FAILURE_REPLY)

        message = response.choices[0].message
        reply_text = message.content
        extracted_name = None

        if message.tool_calls:
            function = message.tool_calls[0].function
            logger.info(f"[AGENT LLM OUTPUT] Function call: {function.name}({function.arguments})")
            try:
                function_reply, extracted_name = await self._handle_function_call(
                    function.name, function.arguments, known_name, phone_number
                )
            except Exception as e:
                logger.error(
                    f"[AGENT] Error handling function call {function.name} - "
                    f"Session: {session_id}, Error: {type(e).__name__}: {e}",
                    exc_info=True,
                )
                self.history_cache.put(session_id, record)
                return AgentReply(reply_text=constants.FUNCTION_FAILURE_REPLY)
            if function_reply:
                reply_text = function_reply

        if not reply_text or not reply_text.strip():
            reply_text = constants.DEFAULT_REPLY

        record.add_turn(TurnRole.ASSISTANT, reply_text)
        self.history_cache.put(session_id, record)

        logger.info(
            f"[AGENT OUTPUT] Session: {session_id}, Reply: '{reply_text}', "
            f"Extracted name: {extracted_name or 'NONE'}"
        )
        return AgentReply(reply_text=reply_text, extracted_name=extracted_name)

    async def _handle_function_call(
        self,
        name: str,
        arguments: Optional[str],
        known_name: Optional[str],
        phone_number: Optional[str],
    ) -> Tuple[Optional[str], Optional[str]]:
        """Interpret a function call. Returns (reply text, extracted name)."""
        args: Dict[str, Any] = json.loads(arguments or "{}")

        if name == EXTRACT_NAME:
            extracted = str(args.get("name") or "").strip()
            if args.get("confidence") and extracted and not known_name:
                return constants.NAME_ACKNOWLEDGEMENT.format(name=extracted), extracted
            return None, None

        if name == EXTRACT_APPOINTMENT_TIME:
            if args.get("confidence"):
                when = parse_appointment_time(args["appointment_time"])
                return constants.CONFIRM_TIME_REPLY.format(time=format_appointment_time(when)), None
            return None, None

        if name == SCHEDULE_APPOINTMENT:
            request = AppointmentRequest.model_validate(args)
            if request.action == ACTION_CHECK:
                return await self._check(request.appointment_time), None
            if request.action == ACTION_SUGGEST_NEXT:
                return await self._suggest_next(request.appointment_time), None
            return await self._schedule(request.appointment_time, known_name, phone_number), None

        logger.warning(f"[AGENT] Model called unknown function: {name}")
        return None, None

    async def _check(self, when) -> str:
        spoken = format_appointment_time(when)
        if await self.appointment_store.check_availability(when):
            return constants.SLOT_AVAILABLE_REPLY.format(time=spoken)
        return constants.SLOT_UNAVAILABLE_REPLY.format(time=spoken)

    async def _suggest_next(self, when) -> str:
        next_time = await self.appointment_store.next_available_time(when)
        if next_time:
            return constants.NEXT_SLOT_REPLY.format(time=format_appointment_time(next_time))
        return constants.NO_NEXT_SLOT_REPLY

    async def _schedule(self, when, known_name: Optional[str], phone_number: Optional[str]) -> str:
        # Another call may have booked the slot since it was last checked.
        if await self.appointment_store.check_availability(when):
            created = await self.appointment_store.create_appointment(known_name, phone_number, when)
            if created:
                return constants.BOOKED_REPLY.format(time=format_appointment_time(when))
            return constants.BOOKING_FAILED_REPLY

        next_time = await self.appointment_store.next_available_time(when)
        if next_time:
            return constants.SLOT_JUST_TAKEN_REPLY.format(time=format_appointment_time(next_time))
        return constants.SLOT_NO_LONGER_AVAILABLE_REPLY

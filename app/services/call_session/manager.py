"""Call session controller for Twilio media streams."""
import asyncio
import base64
import binascii
import json
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Set

from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from app.core.config import settings
from app.services.agent import constants
from app.services.agent.agent import ConversationAgent
from app.services.agent.state import AgentReply
from app.services.call_session.models import (
    CallSession,
    MediaMessage,
    SessionState,
    StartMessage,
)
from app.services.call_session.recorder import CallRecorder
from app.services.speech.stt import (
    EventSink,
    LiveTranscriber,
    TranscriberClosed,
    TranscriberError,
    TranscriberOpened,
    TranscriptionEvent,
    TranscriptReceived,
)
from app.services.speech.tts import EmptyTextError, SynthesisError, TextToSpeechService

logger = logging.getLogger(__name__)

TranscriberFactory = Callable[[EventSink], LiveTranscriber]


class CallSessionRegistry:
    """Active call controllers, keyed by stream SID."""

    def __init__(self):
        self._controllers: Dict[str, "CallSessionController"] = {}

    def add(self, stream_sid: str, controller: "CallSessionController") -> None:
        self._controllers[stream_sid] = controller

    def remove(self, stream_sid: str) -> None:
        self._controllers.pop(stream_sid, None)

    def __len__(self) -> int:
        return len(self._controllers)


class CallSessionController:
    """
    Owns one call from the media stream's ``start`` to its close.

    Inbound socket messages are handled in order by ``run``. Transcriber
    events go through a per-call queue and are consumed by a single task,
    which reserves a turn for each final transcript and hands it to its own
    task. Replies may finish in any order; the session's turn sequencer makes
    them transmit in the order the caller spoke.
    """

    def __init__(
        self,
        websocket: Any,
        agent: ConversationAgent,
        tts_service: TextToSpeechService,
        transcriber_factory: TranscriberFactory,
        recorder: Optional[CallRecorder] = None,
        registry: Optional[CallSessionRegistry] = None,
        greeting: Optional[str] = None,
        sample_rate: Optional[int] = None,
        frame_duration_ms: Optional[int] = None,
        keepalive_interval: Optional[float] = None,
    ):
        self.websocket = websocket
        self.agent = agent
        self.tts_service = tts_service
        self.transcriber_factory = transcriber_factory
        self.recorder = recorder
        self.registry = registry
        self.greeting = greeting or settings.greeting_message
        self.sample_rate = sample_rate or settings.sample_rate
        self.frame_duration_ms = frame_duration_ms or settings.frame_duration_ms
        self.keepalive_interval = keepalive_interval or settings.keepalive_interval_seconds

        self.state = SessionState.CONNECTING
        self.session: Optional[CallSession] = None
        self.transcriber: Optional[LiveTranscriber] = None
        self.end_status = "completed"
        self._events: "asyncio.Queue[TranscriptionEvent]" = asyncio.Queue()
        self._event_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._turn_tasks: Set[asyncio.Task] = set()

    @property
    def frame_size(self) -> int:
        """Bytes per outbound frame (one byte per mu-law sample)."""
        return self.sample_rate * self.frame_duration_ms // 1000

    @property
    def is_live(self) -> bool:
        return self.session is not None and self.session.socket_open

    async def run(self) -> None:
        """Read socket messages until the stream stops or the socket closes."""
        try:
            async for raw in self.websocket.iter_text():
                await self.handle_raw_message(raw)
                if self.state in (SessionState.CLOSING, SessionState.CLOSED):
                    break
        except WebSocketDisconnect:
            logger.info("[MEDIA STREAM] WebSocket disconnected by provider")
        except Exception as e:
            logger.error(
                f"[MEDIA STREAM] WebSocket error: {type(e).__name__}: {e}", exc_info=True
            )
            self.end_status = "failed"
        finally:
            await self.close("socket closed")

    async def handle_raw_message(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"[MEDIA STREAM] Dropping non-JSON message: {raw[:100]!r}")
            return
        if not isinstance(data, dict):
            logger.warning("[MEDIA STREAM] Dropping message that is not a JSON object")
            return
        await self.handle_message(data)

    async def handle_message(self, data: Dict[str, Any]) -> None:
        """Dispatch one decoded media stream message."""
        event = data.get("event")
        if event == "start":
            await self._on_start(data)
        elif event == "media":
            await self._on_media(data)
        elif event == "stop":
            logger.info(f"[MEDIA STREAM] Stream stopped - StreamSid: {self._stream_sid()}")
            await self.close("stream stopped")
        elif event == "mark":
            mark = data.get("mark")
            if not isinstance(mark, dict):
                logger.warning("[MEDIA STREAM] Dropping malformed mark event")
                return
            logger.debug(f"[MEDIA STREAM] Playback reached mark: {mark.get('name')}")
        elif event == "connected":
            logger.debug("[MEDIA STREAM] Provider connected")
        else:
            logger.debug(f"[MEDIA STREAM] Ignoring event: {event}")

    async def _on_start(self, data: Dict[str, Any]) -> None:
        if self.session is not None:
            logger.warning(f"[MEDIA STREAM] Duplicate start event - StreamSid: {self.session.stream_sid}")
            return
        try:
            message = StartMessage.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[MEDIA STREAM] Dropping malformed start event: {e.errors()}")
            return

        start = message.start
        self.session = CallSession(
            stream_sid=start.stream_sid,
            call_sid=start.call_sid,
            phone_number=start.custom_parameters.get("phoneNumber"),
        )
        logger.info(
            f"[MEDIA STREAM] Stream started - StreamSid: {start.stream_sid}, "
            f"CallSid: {start.call_sid}, Phone: {self.session.phone_number}"
        )
        self._transition(SessionState.AWAITING_FIRST_UTTERANCE)
        if self.registry is not None:
            self.registry.add(start.stream_sid, self)

        self._event_task = asyncio.create_task(self._process_events())
        self._keepalive_task = asyncio.create_task(self._keepalive())
        self.transcriber = self.transcriber_factory(self._events.put)
        await self.transcriber.start()

        if self.recorder is not None:
            await self.recorder.call_started(self.session)

    async def _on_media(self, data: Dict[str, Any]) -> None:
        if self.transcriber is None:
            return
        try:
            message = MediaMessage.model_validate(data)
            chunk = base64.b64decode(message.media.payload, validate=True)
        except (ValidationError, binascii.Error):
            logger.warning("[MEDIA STREAM] Dropping malformed media event")
            return
        await self.transcriber.send(chunk)

    async def _process_events(self) -> None:
        while True:
            event = await self._events.get()
            if isinstance(event, TranscriberOpened):
                logger.info(f"[MEDIA STREAM] Transcriber ready, sending greeting: '{self.greeting}'")
                self._start_turn(self._speak(self.session.turns.reserve(), self.greeting))
            elif isinstance(event, TranscriptReceived):
                if self.state is SessionState.AWAITING_FIRST_UTTERANCE:
                    self._transition(SessionState.CONVERSING)
                turn = self.session.turns.reserve()
                self._start_turn(self._run_turn(turn, event.text))
            elif isinstance(event, TranscriberError):
                logger.error(f"[MEDIA STREAM] Transcriber error, closing session: {event.message}")
                self.end_status = "failed"
                await self.close("transcriber error")
                return
            elif isinstance(event, TranscriberClosed):
                if self.is_live:
                    logger.warning(
                        f"[MEDIA STREAM] Transcriber closed while call is live - "
                        f"StreamSid: {self._stream_sid()}"
                    )

    def _start_turn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._turn_tasks.add(task)
        task.add_done_callback(self._on_turn_done)

    def _on_turn_done(self, task: asyncio.Task) -> None:
        self._turn_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            error = task.exception()
            logger.error(
                f"[MEDIA STREAM] Turn task failed: {type(error).__name__}: {error}",
                exc_info=error,
            )

    async def _run_turn(self, turn: int, text: str) -> None:
        session = self.session
        reply = AgentReply(reply_text=constants.MODEL_FAILURE_REPLY)
        try:
            reply = await self.agent.handle_utterance(
                session.stream_sid,
                text,
                known_name=session.caller_name,
                phone_number=session.phone_number,
            )
            if reply.extracted_name and session.capture_name(reply.extracted_name):
                logger.info(f"[MEDIA STREAM] Caller name captured: {session.caller_name}")
                if self.recorder is not None:
                    await self.recorder.caller_named(session)
        except Exception as e:
            logger.error(
                f"[MEDIA STREAM] Agent failed on turn {turn}: {type(e).__name__}: {e}",
                exc_info=True,
            )

        await self._speak(turn, reply.reply_text)

    async def _speak(self, turn: int, text: str) -> None:
        """Synthesize a reply and transmit it once its turn comes up."""
        audio = await self._synthesize(text)
        async with self.session.turns.turn(turn) as granted:
            if not granted or not self.is_live:
                logger.info(f"[MEDIA STREAM] Session closed, discarding turn {turn}")
                return
            if audio is None:
                logger.warning(f"[MEDIA STREAM] No audio for turn {turn}, skipping it")
                return
            await self.send_audio_frames(audio, turn)

    async def _synthesize(self, text: str) -> Optional[bytes]:
        for attempt in (1, 2):
            try:
                return await self.tts_service.synthesize(text)
            except EmptyTextError:
                logger.warning("[MEDIA STREAM] Empty reply text, nothing to synthesize")
                return None
            except SynthesisError as e:
                logger.error(f"[MEDIA STREAM] Synthesis attempt {attempt} failed: {e}")
            except Exception as e:
                # Only SynthesisError is retried
                logger.error(
                    f"[MEDIA STREAM] Synthesis failed unexpectedly: {type(e).__name__}: {e}",
                    exc_info=True,
                )
                return None
        return None

    async def send_audio_frames(self, audio: bytes, turn: int) -> bool:
        """
        Send audio as paced 20 ms frames followed by a mark.

        Returns:
            True if every frame and the mark were sent, False if the socket
            closed part way through
        """
        stream_sid = self.session.stream_sid
        delay = self.frame_duration_ms / 1000
        frames = 0

        for offset in range(0, len(audio), self.frame_size):
            if not self.is_live:
                logger.info(
                    f"[MEDIA STREAM] WebSocket is not open, stopping turn {turn} "
                    f"after {frames} frames"
                )
                return False
            frame = audio[offset:offset + self.frame_size]
            sent = await self._send(
                {
                    "event": "media",
                    "streamSid": stream_sid,
                    "media": {"payload": base64.b64encode(frame).decode("ascii")},
                }
            )
            if not sent:
                return False
            frames += 1
            await asyncio.sleep(delay)

        if not self.is_live:
            return False
        mark_name = str(uuid.uuid4())
        if not await self._send(
            {"event": "mark", "streamSid": stream_sid, "mark": {"name": mark_name}}
        ):
            return False
        logger.info(f"[MEDIA STREAM] Turn {turn} sent: {frames} frames, mark {mark_name}")
        return True

    async def _send(self, message: Dict[str, Any]) -> bool:
        try:
            await self.websocket.send_json(message)
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.info(f"[MEDIA STREAM] Send failed, marking socket closed: {type(e).__name__}")
            if self.session is not None:
                self.session.socket_open = False
            return False

    async def _keepalive(self) -> None:
        beat = 0
        while self.is_live:
            await asyncio.sleep(self.keepalive_interval)
            if not self.is_live:
                break
            beat += 1
            # Twilio echoes marks back without playing anything.
            await self._send(
                {
                    "event": "mark",
                    "streamSid": self.session.stream_sid,
                    "mark": {"name": f"keepalive-{beat}"},
                }
            )

    async def close(self, reason: str) -> None:
        """Tear down the session. Safe to call more than once."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self._transition(SessionState.CLOSING)
        logger.info(f"[MEDIA STREAM] Closing session ({reason}) - StreamSid: {self._stream_sid()}")

        if self.session is not None:
            self.session.socket_open = False
            await self.session.turns.close()

        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
        for task in list(self._turn_tasks):
            task.cancel()

        if self.transcriber is not None:
            await self.transcriber.finish()

        if self._event_task is not None and self._event_task is not asyncio.current_task():
            self._event_task.cancel()
        while not self._events.empty():
            self._events.get_nowait()

        if self.session is not None:
            if self.registry is not None:
                self.registry.remove(self.session.stream_sid)
            if self.recorder is not None:
                await self.recorder.call_ended(self.session, self.end_status)

        self._transition(SessionState.CLOSED)

    def _transition(self, new_state: SessionState) -> None:
        logger.info(f"[MEDIA STREAM] State: {self.state} -> {new_state}")
        self.state = new_state

    def _stream_sid(self) -> str:
        return self.session.stream_sid if self.session else "unknown"

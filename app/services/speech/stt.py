"""Speech-to-text service."""
import asyncio
import json
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Union
from urllib.parse import urlencode

from pydantic import BaseModel
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed

from app.core.config import settings

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


class TranscriberOpened(BaseModel):
    """The recognition connection is ready to accept audio."""

    kind: str = "opened"


class TranscriptReceived(BaseModel):
    """A finalized, non-empty transcript."""

    kind: str = "transcript"
    text: str
    is_final: bool = True


class TranscriberError(BaseModel):
    """The recognition connection failed."""

    kind: str = "error"
    message: str


class TranscriberClosed(BaseModel):
    """The recognition connection has closed."""

    kind: str = "closed"


TranscriptionEvent = Union[
    TranscriberOpened, TranscriptReceived, TranscriberError, TranscriberClosed
]
EventSink = Callable[[TranscriptionEvent], Awaitable[None]]


class LiveTranscriber:
    """
    One streaming Deepgram recognition connection for a single call.

    Audio handed to ``send`` before the connection is open is queued and
    flushed in arrival order as soon as it opens. Only final transcripts with
    text are forwarded to the event sink. Errors are reported through the sink;
    reconnecting is left to the owner.
    """

    def __init__(
        self,
        emit: EventSink,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        sample_rate: Optional[int] = None,
        endpointing_ms: Optional[int] = None,
        utterance_end_ms: Optional[int] = None,
        connect: Callable[..., Any] = websocket_connect,
    ):
        self._emit = emit
        self.api_key = api_key or settings.deepgram_api_key
        self.model = model or settings.stt_model
        self.sample_rate = sample_rate or settings.sample_rate
        self.endpointing_ms = endpointing_ms or settings.stt_endpointing_ms
        self.utterance_end_ms = utterance_end_ms or settings.stt_utterance_end_ms
        self._connect = connect
        self._pending: Deque[bytes] = deque()
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._is_open = False
        self._finished = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def pending_chunks(self) -> int:
        return len(self._pending)

    def build_url(self) -> str:
        """Build the listen URL for narrow-band telephony audio."""
        params = {
            "encoding": "mulaw",
            "sample_rate": self.sample_rate,
            "channels": 1,
            "model": self.model,
            "punctuate": "true",
            "interim_results": "true",
            "endpointing": self.endpointing_ms,
            "utterance_end_ms": self.utterance_end_ms,
        }
        return f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}"

    async def start(self) -> None:
        """Open the connection in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def send(self, chunk: bytes) -> None:
        """Forward an audio chunk, queueing it while the connection is not open."""
        if self._finished:
            return
        if self._is_open and self._ws is not None:
            try:
                await self._ws.send(chunk)
            except ConnectionClosed:
                logger.warning("[STT] Dropped audio chunk, Deepgram connection already closed")
        else:
            self._pending.append(chunk)

    async def finish(self) -> None:
        """Close the connection and discard any queued audio."""
        if self._finished:
            return
        self._finished = True
        self._pending.clear()

        ws = self._ws
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
                await ws.close()
            except ConnectionClosed:
                pass
        elif self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        headers = {"Authorization": f"Token {self.api_key}"}
        try:
            async with self._connect(self.build_url(), additional_headers=headers) as ws:
                self._ws = ws
                flushed = 0
                while self._pending:
                    await ws.send(self._pending.popleft())
                    flushed += 1
                self._is_open = True
                logger.info(f"[STT] Deepgram connection opened, flushed {flushed} queued chunks")
                await self._emit(TranscriberOpened())

                async for message in ws:
                    await self._handle_message(message)
        except asyncio.CancelledError:
            logger.info("[STT] Deepgram connection attempt cancelled")
            raise
        except Exception as e:
            logger.error(f"[STT] Deepgram connection error: {type(e).__name__}: {e}")
            await self._emit(TranscriberError(message=f"{type(e).__name__}: {e}"))
        finally:
            self._is_open = False
            self._ws = None
            self._pending.clear()

        logger.info("[STT] Deepgram connection closed")
        await self._emit(TranscriberClosed())

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError):
            logger.warning(f"[STT] Ignoring non-JSON message from Deepgram: {message!r:.100}")
            return

        if data.get("type") != "Results":
            return

        alternatives = data.get("channel", {}).get("alternatives") or []
        text = alternatives[0].get("transcript", "") if alternatives else ""

        if not data.get("is_final"):
            return
        if not text.strip():
            logger.debug("[STT] Received empty final transcription, skipping")
            return

        logger.info(f"[STT] Final transcription: '{text.strip()}'")
        await self._emit(TranscriptReceived(text=text.strip()))

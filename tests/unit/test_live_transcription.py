"""Unit tests for the streaming transcriber."""
import asyncio
import json

import pytest

from app.services.speech.stt import (
    LiveTranscriber,
    TranscriberClosed,
    TranscriberError,
    TranscriberOpened,
    TranscriptReceived,
)


class FakeDeepgramSocket:
    """In-memory stand-in for the Deepgram listen socket."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self.incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True
        await self.incoming.put(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self.incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeConnect:
    """Replaces ``websockets`` connect; opens only once the gate is set."""

    def __init__(self, ws=None, error=None):
        self.ws = ws or FakeDeepgramSocket()
        self.error = error
        self.gate = asyncio.Event()
        self.gate.set()
        self.url = None
        self.headers = None

    def __call__(self, url, additional_headers=None):
        self.url = url
        self.headers = additional_headers
        return self

    async def __aenter__(self):
        await self.gate.wait()
        if self.error:
            raise self.error
        return self.ws

    async def __aexit__(self, *exc_info):
        return False


def results(text, is_final=True):
    return json.dumps(
        {
            "type": "Results",
            "is_final": is_final,
            "channel": {"alternatives": [{"transcript": text}]},
        }
    )


@pytest.fixture
def events():
    return []


@pytest.fixture
def emit(events):
    async def _emit(event):
        events.append(event)

    return _emit


def make_transcriber(emit, connect):
    return LiveTranscriber(
        emit,
        api_key="dg-test",
        model="nova-2",
        sample_rate=8000,
        endpointing_ms=200,
        utterance_end_ms=1000,
        connect=connect,
    )


class TestLiveTranscriber:
    """Test audio forwarding and transcript filtering."""

    def test_build_url_targets_telephony_audio(self, emit):
        transcriber = make_transcriber(emit, FakeConnect())

        url = transcriber.build_url()

        assert url.startswith("wss://api.deepgram.com/v1/listen?")
        for param in (
            "encoding=mulaw",
            "sample_rate=8000",
            "channels=1",
            "model=nova-2",
            "punctuate=true",
            "interim_results=true",
            "endpointing=200",
            "utterance_end_ms=1000",
        ):
            assert param in url

    @pytest.mark.asyncio
    async def test_queued_audio_is_flushed_in_order(self, emit, events, wait_until):
        connect = FakeConnect()
        connect.gate.clear()
        transcriber = make_transcriber(emit, connect)

        await transcriber.start()
        await transcriber.send(b"one")
        await transcriber.send(b"two")
        assert transcriber.pending_chunks == 2
        assert not transcriber.is_open

        connect.gate.set()
        await wait_until(lambda: any(isinstance(e, TranscriberOpened) for e in events))

        assert connect.ws.sent == [b"one", b"two"]
        assert connect.headers == {"Authorization": "Token dg-test"}
        assert transcriber.pending_chunks == 0

        await transcriber.send(b"three")
        assert connect.ws.sent[-1] == b"three"
        await transcriber.finish()

    @pytest.mark.asyncio
    async def test_only_final_transcripts_with_text_are_forwarded(self, emit, events, wait_until):
        connect = FakeConnect()
        transcriber = make_transcriber(emit, connect)
        await transcriber.start()
        await wait_until(lambda: transcriber.is_open)

        for message in (
            results("I'd like an", is_final=False),
            results("   "),
            json.dumps({"type": "Metadata"}),
            "not json",
            results("  I'd like an appointment.  "),
        ):
            await connect.ws.incoming.put(message)
        await wait_until(lambda: any(isinstance(e, TranscriptReceived) for e in events))

        transcripts = [e for e in events if isinstance(e, TranscriptReceived)]
        assert [t.text for t in transcripts] == ["I'd like an appointment."]
        assert transcripts[0].is_final
        await transcriber.finish()

    @pytest.mark.asyncio
    async def test_finish_closes_stream(self, emit, events, wait_until):
        connect = FakeConnect()
        transcriber = make_transcriber(emit, connect)
        await transcriber.start()
        await wait_until(lambda: transcriber.is_open)

        await transcriber.finish()
        await wait_until(lambda: any(isinstance(e, TranscriberClosed) for e in events))

        assert json.loads(connect.ws.sent[-1]) == {"type": "CloseStream"}
        assert connect.ws.closed
        assert not transcriber.is_open

        sent_before = len(connect.ws.sent)
        await transcriber.send(b"late")
        assert len(connect.ws.sent) == sent_before

    @pytest.mark.asyncio
    async def test_finish_before_open_discards_queued_audio(self, emit, events):
        connect = FakeConnect()
        connect.gate.clear()
        transcriber = make_transcriber(emit, connect)
        await transcriber.start()
        await transcriber.send(b"queued")

        await transcriber.finish()
        await asyncio.sleep(0)

        assert transcriber.pending_chunks == 0
        assert connect.ws.sent == []
        assert not any(isinstance(e, TranscriberOpened) for e in events)

    @pytest.mark.asyncio
    async def test_connection_failure_reports_error_then_closed(self, emit, events, wait_until):
        connect = FakeConnect(error=OSError("connection refused"))
        transcriber = make_transcriber(emit, connect)

        await transcriber.start()
        await wait_until(lambda: any(isinstance(e, TranscriberClosed) for e in events))

        assert isinstance(events[0], TranscriberError)
        assert "connection refused" in events[0].message
        assert isinstance(events[-1], TranscriberClosed)

"""Twilio voice webhook and media stream endpoints."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, WebSocket
from fastapi.responses import Response
from starlette.websockets import WebSocketState

from app.core.config import settings
from app.core.dependencies import (
    get_call_recorder,
    get_conversation_agent,
    get_session_registry,
    get_transcriber_factory,
    get_tts_service,
)
from app.services.agent.agent import ConversationAgent
from app.services.call_session.manager import (
    CallSessionController,
    CallSessionRegistry,
    TranscriberFactory,
)
from app.services.call_session.recorder import CallRecorder
from app.services.speech.tts import TextToSpeechService

router = APIRouter()
logger = logging.getLogger(__name__)

MEDIA_STREAM_PATH = "/webhooks/voice/media"


def get_base_url(request: Request) -> str:
    """
    Get the base URL for constructing absolute URLs.

    Uses BASE_URL environment variable if set, otherwise constructs from request.
    """
    if settings.base_url:
        return settings.base_url.rstrip('/')
    return str(request.base_url).rstrip('/')


def get_stream_url(request: Request) -> str:
    """WebSocket URL Twilio should open the media stream against."""
    if settings.stream_url:
        return settings.stream_url
    base_url = get_base_url(request)
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url}{MEDIA_STREAM_PATH}"


def escape_xml(text: str) -> str:
    """Escape XML special characters."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def generate_stream_twiml(stream_url: str, phone_number: str) -> str:
    """
    Generate TwiML that connects a bidirectional media stream and dials the number.

    Args:
        stream_url: WebSocket URL of the media stream endpoint
        phone_number: Destination number, also passed to the stream as a parameter

    Returns:
        TwiML XML string
    """
    url = escape_xml(stream_url)
    number = escape_xml(phone_number)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url="{url}">
            <Parameter name="phoneNumber" value="{number}" />
        </Stream>
    </Connect>
    <Dial>{number}</Dial>
</Response>"""


@router.api_route("/voice/stream", methods=["GET", "POST"])
async def handle_stream_webhook(
    request: Request,
    phoneNumber: str = Query(...),
):
    """
    Answer Twilio's call setup request with a media stream directive.
    """
    stream_url = get_stream_url(request)
    logger.info(
        f"[STREAM WEBHOOK] Call setup for {phoneNumber}, stream URL: {stream_url}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    twiml = generate_stream_twiml(stream_url, phoneNumber)
    return Response(content=twiml, media_type="text/xml")


def get_call_controller(
    websocket: WebSocket,
    agent: ConversationAgent = Depends(get_conversation_agent),
    tts_service: TextToSpeechService = Depends(get_tts_service),
    transcriber_factory: TranscriberFactory = Depends(get_transcriber_factory),
    recorder: Optional[CallRecorder] = Depends(get_call_recorder),
    registry: CallSessionRegistry = Depends(get_session_registry),
) -> CallSessionController:
    """Build the controller for one media stream connection."""
    return CallSessionController(
        websocket,
        agent=agent,
        tts_service=tts_service,
        transcriber_factory=transcriber_factory,
        recorder=recorder,
        registry=registry,
    )


@router.websocket("/voice/media")
async def handle_media_stream(
    websocket: WebSocket,
    controller: CallSessionController = Depends(get_call_controller),
):
    """
    Bidirectional Twilio media stream for one call.
    """
    await websocket.accept()
    logger.info(
        f"[MEDIA STREAM] WebSocket connection established - "
        f"Client: {websocket.client.host if websocket.client else 'unknown'}"
    )
    try:
        await controller.run()
    finally:
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("[MEDIA STREAM] WebSocket connection closed")

"""Text-to-speech service."""
import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.services.cache.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

DEEPGRAM_SPEAK_URL = "https://api.deepgram.com/v1/speak"


class EmptyTextError(ValueError):
    """Raised when synthesis is requested for blank text."""


class SynthesisError(Exception):
    """Raised when the synthesis service fails to produce audio."""


class TextToSpeechService:
    """Service for converting text to narrow-band telephony audio."""

    def __init__(
        self,
        cache: TTLCache[str, bytes],
        client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        sample_rate: Optional[int] = None,
    ):
        self.cache = cache
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.tts_timeout_seconds, connect=5.0)
        )
        self.api_key = api_key or settings.deepgram_api_key
        self.model = model or settings.tts_model
        self.sample_rate = sample_rate or settings.sample_rate

    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize speech from text using Deepgram Aura.

        Args:
            text: Text to convert to speech

        Returns:
            Raw 8-bit mu-law audio bytes (no container)

        Raises:
            EmptyTextError: If the text is blank
            SynthesisError: If the Deepgram request fails
        """
        if not text or not text.strip():
            raise EmptyTextError("Text for TTS cannot be null or empty")

        cached = self.cache.get(text)
        if cached is not None:
            logger.debug(f"[TTS] Cache hit ({len(cached)} bytes) for: '{text[:60]}'")
            return cached

        try:
            response = await self.client.post(
                DEEPGRAM_SPEAK_URL,
                json={"text": text},
                headers={
                    "Authorization": f"Token {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "audio/mulaw",
                },
                params={
                    "model": self.model,
                    "encoding": "mulaw",
                    "container": "none",
                    "sample_rate": self.sample_rate,
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"[TTS] Request to Deepgram failed: {type(e).__name__}: {e}")
            raise SynthesisError(f"TTS request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                f"[TTS] Deepgram returned {response.status_code}: {response.text[:200]}"
            )
            raise SynthesisError(f"TTS generation failed with status {response.status_code}")

        audio = response.content
        self.cache.put(text, audio)
        logger.info(f"[TTS] Synthesized {len(audio)} bytes for: '{text[:60]}'")
        return audio

"""
Transcription service.

Turns inbound voice notes into text with the OpenAI audio API. Failures
never propagate: the caller always gets either a transcript or a catalog
placeholder.
"""

import asyncio
import base64
import binascii
import os
from typing import Optional

from openai import OpenAI
from pybreaker import CircuitBreaker

from zapdesk.services.catalog_service import TextCatalog
from zapdesk.utils.logger import logger
from zapdesk.utils.retry import retry_on_api_error


class TranscriptionService:
    """Speech-to-text for voice notes."""

    def __init__(self, catalog: TextCatalog, model: Optional[str] = None):
        self.catalog = catalog
        self.model = model or os.getenv("TRANSCRIPTION_MODEL", "whisper-1")

        api_key = os.getenv("OPENAI_API_KEY")
        self.client = OpenAI(api_key=api_key) if api_key else None
        if self.client is None:
            logger.warning("OPENAI_API_KEY not set, voice notes will not be transcribed")

        self.circuit_breaker = CircuitBreaker(fail_max=5, reset_timeout=60)

    @retry_on_api_error(max_attempts=2, min_wait=1, max_wait=5)
    def _call_openai_api(self, audio: bytes, mime_type: str) -> str:
        extension = mime_type.split("/")[-1].split(";")[0] or "ogg"
        response = self.client.audio.transcriptions.create(
            model=self.model,
            file=(f"voice.{extension}", audio, mime_type),
            prompt=self.catalog.text("transcriptionPrompt"),
            language="pt",
        )
        return (response.text or "").strip()

    async def transcribe(self, audio_base64: str, mime_type: str) -> str:
        """
        Transcribe base64-encoded audio.

        Returns:
            Transcript text, or a bracketed placeholder when unavailable
        """
        if self.client is None:
            return self.catalog.text("transcriptionUnavailable")
        if not audio_base64:
            return self.catalog.text("transcriptionFailed")

        try:
            audio = base64.b64decode(audio_base64)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Invalid audio payload: {e}")
            return self.catalog.text("transcriptionFailed")

        try:
            text = await asyncio.to_thread(self.circuit_breaker.call, self._call_openai_api, audio, mime_type)
        except Exception as e:
            logger.error(f"Transcription failed: {e}")
            return self.catalog.text("transcriptionFailed")

        return text or self.catalog.text("transcriptionEmpty")

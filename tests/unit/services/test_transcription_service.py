"""
Unit tests for TranscriptionService.

The caller must always get text back: a transcript or a placeholder.
"""

import base64
from unittest.mock import Mock, patch

import pytest

from zapdesk.services.catalog_service import DEFAULT_TEXTS
from zapdesk.services.transcription_service import TranscriptionService


AUDIO = base64.b64encode(b"OggS fake voice note").decode()


@pytest.fixture
def service(catalog):
    with patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
        with patch("zapdesk.services.transcription_service.OpenAI"):
            return TranscriptionService(catalog)


@pytest.mark.asyncio
class TestTranscribe:

    async def test_returns_transcript(self, service):
        service.client.audio.transcriptions.create.return_value = Mock(text="  preciso da guia  ")

        text = await service.transcribe(AUDIO, "audio/ogg; codecs=opus")

        assert text == "preciso da guia"
        kwargs = service.client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["file"][0] == "voice.ogg"
        assert kwargs["file"][1] == b"OggS fake voice note"
        assert kwargs["model"] == "whisper-1"

    async def test_without_api_key_returns_unavailable(self, catalog):
        with patch.dict("os.environ", {}, clear=True):
            service = TranscriptionService(catalog)

        assert await service.transcribe(AUDIO, "audio/ogg") == DEFAULT_TEXTS["transcriptionUnavailable"]

    async def test_empty_payload_is_a_failure(self, service):
        assert await service.transcribe("", "audio/ogg") == DEFAULT_TEXTS["transcriptionFailed"]

    async def test_invalid_base64_is_a_failure(self, service):
        assert await service.transcribe("@@not-base64@@", "audio/ogg") == DEFAULT_TEXTS["transcriptionFailed"]

    async def test_provider_error_is_a_failure(self, service):
        """
        Protects against: A transcription outage dropping the user's message.
        """
        with patch.object(service, "_call_openai_api", side_effect=RuntimeError("timeout")):
            text = await service.transcribe(AUDIO, "audio/ogg")

        assert text == DEFAULT_TEXTS["transcriptionFailed"]

    async def test_blank_transcript_is_marked_empty(self, service):
        service.client.audio.transcriptions.create.return_value = Mock(text="   ")

        assert await service.transcribe(AUDIO, "audio/ogg") == DEFAULT_TEXTS["transcriptionEmpty"]

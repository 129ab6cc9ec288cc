"""
GENESIS Voiceover Agent
===============================================================================
Spoken caption using the ElevenLabs text-to-speech API.

The API returns raw MP3 bytes; they are uploaded to the object store and the
public URL is returned. The output format has a fixed bitrate, so duration is
derived from the byte count.

Environment: ELEVENLABS_API_KEY, ELEVENLABS_VOICE_ID

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import logging
import os
from typing import Optional

import httpx

from agents.base import (
    AdapterError,
    AudioOutput,
    ObjectStore,
    SpeechSynthesizer,
    error_from_httpx,
    error_from_status,
    filename_from_url,
)
from schemas.generation_schema import ErrorCode

logger = logging.getLogger("genesis.voiceover")

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

# "Rachel" - clear, warm narration voice
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

OUTPUT_FORMAT = "mp3_44100_128"
OUTPUT_BITRATE_BPS = 128_000


def estimate_mp3_duration(size_bytes: int, bitrate_bps: int = OUTPUT_BITRATE_BPS) -> float:
    """Constant-bitrate MP3 duration in seconds"""
    return round(size_bytes * 8 / bitrate_bps, 2)


class ElevenLabsVoiceover(SpeechSynthesizer):
    """Text-to-speech agent"""

    name = "elevenlabs_tts"

    def __init__(
        self,
        object_store: ObjectStore,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        model_id: str = "eleven_multilingual_v2",
        timeout_seconds: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.object_store = object_store
        self.api_key = api_key or os.getenv("ELEVENLABS_API_KEY")
        self.voice_id = voice_id or os.getenv("ELEVENLABS_VOICE_ID", DEFAULT_VOICE_ID)
        self.model_id = model_id
        self.timeout_seconds = timeout_seconds
        self._http = http_client

        if not self.api_key:
            logger.warning("[Voiceover] ELEVENLABS_API_KEY not set - calls will fail")

    async def synthesize_audio(self, text: str, language: str) -> AudioOutput:
        if not self.api_key:
            raise AdapterError(ErrorCode.BAD_REQUEST, "ELEVENLABS_API_KEY not set", retryable=False)

        audio_bytes = await self._request_speech(text)
        if not audio_bytes:
            raise AdapterError(ErrorCode.EMPTY_OUTPUT, "ElevenLabs returned no audio", retryable=True)

        url = await self.object_store.store(audio_bytes, "audio/mpeg")
        duration = estimate_mp3_duration(len(audio_bytes))

        logger.info(f"[Voiceover] {language} voiceover: {len(audio_bytes)} bytes, ~{duration:.1f}s")

        return AudioOutput(
            url=url,
            duration_seconds=duration,
            format="mp3",
            size_bytes=len(audio_bytes),
            filename=filename_from_url(url, "voiceover.mp3"),
        )

    async def _request_speech(self, text: str) -> bytes:
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "style": 0.0,
                "use_speaker_boost": True
            }
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg"
        }
        url = ELEVENLABS_TTS_URL.format(voice_id=self.voice_id)

        try:
            if self._http is not None:
                response = await self._http.post(
                    url, headers=headers, json=payload, params={"output_format": OUTPUT_FORMAT}
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(
                        url, headers=headers, json=payload, params={"output_format": OUTPUT_FORMAT}
                    )
        except httpx.HTTPError as e:
            raise error_from_httpx("ElevenLabs", e) from e

        if response.status_code != 200:
            raise error_from_status("ElevenLabs", response.status_code, response.text)

        return response.content

"""Text-to-speech rendering for the Aurora monologues."""

from __future__ import annotations

import logging
import re
import uuid
import wave
from pathlib import Path
from typing import Any, Protocol

from .llm import LLMClientError


logger = logging.getLogger(__name__)

DEFAULT_VOICE = "Charon"
TTS_MODEL = "gemini-2.5-flash-preview-tts"

_AUDIO_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str, *, voice: str = DEFAULT_VOICE) -> str:
        """Render ``text`` and return an opaque audio identifier."""


class GeminiSpeechSynthesizer:
    """Render speech with Gemini TTS and keep the result as WAV files."""

    def __init__(
        self,
        audio_dir: Path,
        *,
        api_key: str | None = None,
        model: str = TTS_MODEL,
        client: Any | None = None,
    ) -> None:
        self.audio_dir = Path(audio_dir)
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        self._model = model
        if client is None:
            from google import genai

            client = genai.Client(api_key=api_key) if api_key else genai.Client()
        self._client = client

    def synthesize(self, text: str, *, voice: str = DEFAULT_VOICE) -> str:
        from google.genai import types

        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
                )
            ),
        )
        try:
            response = self._client.models.generate_content(
                model=self._model, contents=text, config=config
            )
            pcm = response.candidates[0].content.parts[0].inline_data.data
        except (AttributeError, IndexError, TypeError) as exc:
            raise LLMClientError("Speech synthesis returned no audio") from exc
        except Exception as exc:
            raise LLMClientError("Speech synthesis failed") from exc
        if not pcm:
            raise LLMClientError("Speech synthesis returned no audio")

        audio_id = f"aurora-{uuid.uuid4().hex}"
        write_wav(self.audio_dir / f"{audio_id}.wav", pcm)
        logger.info("Synthesised %d bytes of speech as %s", len(pcm), audio_id)
        return audio_id


def write_wav(
    path: Path, pcm: bytes, *, channels: int = 1, rate: int = 24000, sample_width: int = 2
) -> None:
    with wave.open(str(path), "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(sample_width)
        handle.setframerate(rate)
        handle.writeframes(pcm)


def audio_path(audio_dir: Path, audio_id: str) -> Path | None:
    """Return the stored file for ``audio_id`` if it exists."""

    if not _AUDIO_ID.match(audio_id or ""):
        return None
    candidate = Path(audio_dir) / f"{audio_id}.wav"
    return candidate if candidate.is_file() else None


__all__ = [
    "DEFAULT_VOICE",
    "GeminiSpeechSynthesizer",
    "SpeechSynthesizer",
    "audio_path",
    "write_wav",
]

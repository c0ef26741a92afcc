"""
Narration backends.

Every backend returns the same character-level TimingAlignment. The cloud
backend reports real per-character timestamps; the self-hosted backend only
yields an audio file whose total duration is spread evenly across the
characters; the synthetic backend estimates that duration from the word count
and writes no audio at all.
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import requests
from moviepy import AudioFileClip
from pydantic import ValidationError

from .config import LocalTtsConfig, Settings
from .errors import ConfigurationError, MetadataProbeWarning, NarrationError
from .models import TimingAlignment

logger = logging.getLogger(__name__)

SECONDS_PER_WORD = 0.4
MIN_ESTIMATED_SECONDS = 1.0


def estimate_duration_seconds(text: str) -> float:
    words = len(text.split())
    return max(words * SECONDS_PER_WORD, MIN_ESTIMATED_SECONDS)


def build_alignment_from_text(text: str, duration_seconds: float) -> TimingAlignment:
    """Spread duration_seconds evenly over the characters of text."""
    characters = list(text)
    if not characters:
        return TimingAlignment.empty()

    duration = duration_seconds if duration_seconds > 0 else estimate_duration_seconds(text)
    per_char = duration / len(characters)
    return TimingAlignment(
        characters=characters,
        character_start_times_seconds=[i * per_char for i in range(len(characters))],
        character_end_times_seconds=[(i + 1) * per_char for i in range(len(characters))],
    )


def probe_audio_duration(path: Path) -> float:
    try:
        clip = AudioFileClip(str(path))
    except Exception as exc:  # noqa: BLE001
        raise MetadataProbeWarning(f"Unable to read audio metadata for {path}: {exc}") from exc
    try:
        duration = clip.duration
    finally:
        clip.close()
    if not duration or duration <= 0:
        raise MetadataProbeWarning(f"No duration in audio metadata for {path}")
    return float(duration)


def _write_audio(path: Path, data: bytes) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class NarrationBackend(ABC):
    name = "base"

    @abstractmethod
    def narrate(self, text: str, destination: Path) -> TimingAlignment:
        """Write audio for text to destination (if the backend produces any) and return its alignment."""

    @classmethod
    def applies(cls, settings: Settings) -> bool:
        return False

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> "NarrationBackend":
        ...


class SyntheticNarrator(NarrationBackend):
    """Offline mode: no request, no audio, estimated timing."""

    name = "synthetic"

    def __init__(self, duration_seconds: float = 0):
        self.duration_seconds = duration_seconds

    @classmethod
    def applies(cls, settings: Settings) -> bool:
        return settings.synthetic_timestamps_only

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyntheticNarrator":
        return cls()

    def narrate(self, text: str, destination: Path) -> TimingAlignment:
        return build_alignment_from_text(text, self.duration_seconds)


class LocalTtsNarrator(NarrationBackend):
    """Self-hosted OpenAI-style speech endpoint. Timing is derived from the audio length."""

    name = "local"

    def __init__(self, config: LocalTtsConfig, timeout: float = 120, session: Optional[requests.Session] = None):
        if not config or not config.url:
            raise ConfigurationError("LOCAL_TTS_URL is required for the local TTS backend")
        self.config = config
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def applies(cls, settings: Settings) -> bool:
        return settings.local_tts is not None

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalTtsNarrator":
        return cls(settings.local_tts, timeout=settings.http_timeout)

    def _payload(self, text: str) -> dict:
        body = {"input": text}
        optional = {
            "model": self.config.model,
            "backend": self.config.backend,
            "voice": self.config.voice,
            "language": self.config.language,
            "response_format": self.config.response_format,
        }
        body.update({key: value for key, value in optional.items() if value})
        return body

    def narrate(self, text: str, destination: Path) -> TimingAlignment:
        resp = self.session.post(
            self.config.url,
            headers={"Content-Type": "application/json"},
            json=self._payload(text),
            timeout=self.timeout,
        )
        if not resp.ok:
            raise NarrationError(f"Local TTS error ({resp.status_code}): {resp.text}")
        _write_audio(destination, resp.content)

        try:
            duration = probe_audio_duration(destination)
        except MetadataProbeWarning as warning:
            duration = estimate_duration_seconds(text)
            logger.warning("%s; using estimated %.1fs", warning, duration)
        return build_alignment_from_text(text, duration)


class ElevenLabsNarrator(NarrationBackend):
    """ElevenLabs text-to-speech with native character timestamps."""

    name = "elevenlabs"
    base_url = "https://api.elevenlabs.io"

    def __init__(
        self,
        api_key: Optional[str],
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",
        model_id: Optional[str] = None,
        timeout: float = 120,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY is required for the ElevenLabs backend")
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def applies(cls, settings: Settings) -> bool:
        return True

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElevenLabsNarrator":
        return cls(
            settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            timeout=settings.http_timeout,
        )

    def narrate(self, text: str, destination: Path) -> TimingAlignment:
        body = {"text": text}
        if self.model_id:
            body["model_id"] = self.model_id
        resp = self.session.post(
            f"{self.base_url}/v1/text-to-speech/{self.voice_id}/with-timestamps",
            headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
            json=body,
            timeout=self.timeout,
        )
        if not resp.ok:
            raise NarrationError(f"ElevenLabs error ({resp.status_code}): {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise NarrationError(f"ElevenLabs returned invalid JSON: {exc}") from exc

        raw_alignment = data.get("alignment")
        if not raw_alignment or not raw_alignment.get("character_end_times_seconds"):
            raise NarrationError("ElevenLabs response missing timestamps")
        try:
            alignment = TimingAlignment.model_validate(raw_alignment)
        except ValidationError as exc:
            raise NarrationError(f"ElevenLabs returned an invalid alignment: {exc}") from exc

        audio_base64 = data.get("audio_base64")
        if not audio_base64:
            raise NarrationError("ElevenLabs response missing audio")
        try:
            audio = base64.b64decode(audio_base64, validate=True)
        except (ValueError, binascii.Error) as exc:
            raise NarrationError(f"ElevenLabs returned undecodable audio: {exc}") from exc
        _write_audio(destination, audio)
        return alignment


# Checked in order; the last entry always applies.
NARRATION_BACKENDS = (SyntheticNarrator, LocalTtsNarrator, ElevenLabsNarrator)


def select_narration_backend(settings: Settings) -> NarrationBackend:
    for backend_cls in NARRATION_BACKENDS:
        if backend_cls.applies(settings):
            logger.info("[Voice] using %s narration", backend_cls.name)
            return backend_cls.from_settings(settings)
    raise ConfigurationError("No narration backend configured")
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value and value.strip():
        return value.strip()
    return None


def _flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true")


@dataclass
class LocalTtsConfig:
    url: str
    model: Optional[str] = None
    backend: Optional[str] = None
    voice: Optional[str] = None
    language: Optional[str] = None
    response_format: Optional[str] = None

    @classmethod
    def from_env(cls) -> Optional["LocalTtsConfig"]:
        url = _optional("LOCAL_TTS_URL")
        if not url:
            return None
        return cls(
            url=url,
            model=_optional("LOCAL_TTS_MODEL"),
            backend=_optional("LOCAL_TTS_BACKEND"),
            voice=_optional("LOCAL_TTS_VOICE"),
            language=_optional("LOCAL_TTS_LANGUAGE"),
            response_format=_optional("LOCAL_TTS_RESPONSE_FORMAT"),
        )


class Settings:
    def __init__(self):
        # Text
        self.openai_api_key = _optional("OPENAI_API_KEY")
        self.openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.language = os.getenv("LANGUAGE", "en")

        # Images. Provider is picked from IMAGE_PROVIDER, else from whichever key is set.
        self.image_provider = _optional("IMAGE_PROVIDER")
        self.pexels_api_key = _optional("PEXELS_API_KEY")
        self.gemini_api_key = _optional("GEMINI_API_KEY") or _optional("GEMINI_API")
        self.gemini_image_model = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")
        self.dalle_model = os.getenv("DALLE_MODEL", "dall-e-3")
        self.image_size = (
            int(os.getenv("IMAGE_WIDTH", "1792")),
            int(os.getenv("IMAGE_HEIGHT", "1024")),
        )
        self.disable_images = _flag("DISABLE_IMAGE_GENERATION")

        # Narration
        self.elevenlabs_api_key = _optional("ELEVENLABS_API_KEY")
        self.elevenlabs_voice_id = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
        self.elevenlabs_model_id = _optional("ELEVENLABS_MODEL_ID")
        self.local_tts = LocalTtsConfig.from_env()
        self.synthetic_timestamps_only = _flag("SYNTHETIC_TIMESTAMPS_ONLY")

        # Paths
        self.content_dir = Path(os.getenv("CONTENT_DIR", "public/content")).resolve()

        self.http_timeout = float(os.getenv("HTTP_TIMEOUT", "120"))

    @classmethod
    def from_sources(cls, overrides: Optional[dict] = None) -> "Settings":
        """Environment first, then any non-empty caller overrides (e.g. keys typed into a form)."""
        settings = cls()
        for key, value in (overrides or {}).items():
            if not hasattr(settings, key):
                raise ConfigurationError(f"Unknown setting: {key}")
            if value is None or value == "":
                continue
            if key == "content_dir":
                value = Path(value).resolve()
            setattr(settings, key, value)
        return settings

    @property
    def target_language(self) -> str:
        lang = (self.language or "").strip().lower()
        if lang in ("pt-br", "pt_br", "pt"):
            return "Brazilian Portuguese"
        return "English"

    def require_completion_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required")
        return self.openai_api_key

    def validate_narration(self) -> None:
        if self.synthetic_timestamps_only or self.local_tts:
            return
        if not self.elevenlabs_api_key:
            raise ConfigurationError("Either LOCAL_TTS_URL or ELEVENLABS_API_KEY is required")

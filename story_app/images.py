import base64
import logging
import time
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

import requests
from google import genai
from google.genai import types
from PIL import Image, UnidentifiedImageError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .config import Settings
from .errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int], None]


class ImageProvider(ABC):
    name = "base"

    @abstractmethod
    def fetch(self, prompt: str, on_retry: Optional[RetryCallback] = None) -> bytes:
        """Return encoded image bytes for the prompt."""

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> "ImageProvider":
        ...


class PexelsImageClient(ImageProvider):
    """
    Stock photo search on Pexels. Takes the first landscape hit and downloads it as-is.
    """

    name = "pexels"
    search_url = "https://api.pexels.com/v1/search"
    # Preferred first; the first non-empty string wins.
    url_fallbacks = ("landscape", "large2x", "large", "original", "medium")

    def __init__(self, api_key: Optional[str], timeout: float = 60, session: Optional[requests.Session] = None):
        if not api_key:
            raise ProviderError("PEXELS_API_KEY is not configured")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PexelsImageClient":
        return cls(settings.pexels_api_key, timeout=settings.http_timeout)

    def _search(self, query: str) -> list:
        resp = self.session.get(
            self.search_url,
            params={"query": query, "per_page": 1, "orientation": "landscape"},
            headers={
                "Authorization": self.api_key,
                "Accept": "application/json, text/plain, */*",
            },
            timeout=self.timeout,
        )
        if not resp.ok:
            raise ProviderError(f"Pexels error ({resp.status_code}): {resp.text}")
        try:
            photos = resp.json().get("photos")
        except ValueError as exc:
            raise ProviderError(f"Pexels returned invalid JSON: {exc}") from exc
        return photos if isinstance(photos, list) else []

    def _pick_url(self, photo: dict) -> str:
        src = photo.get("src") or {}
        for key in self.url_fallbacks:
            url = src.get(key)
            if url and isinstance(url, str):
                return url
        raise ProviderError("Pexels photo has no usable URL")

    def fetch(self, prompt: str, on_retry: Optional[RetryCallback] = None) -> bytes:
        photos = self._search(prompt)
        if not photos:
            raise ProviderError("Pexels did not return any photos")
        url = self._pick_url(photos[0])
        img_resp = self.session.get(url, timeout=self.timeout)
        if not img_resp.ok:
            raise ProviderError(
                f"Failed to download Pexels image ({img_resp.status_code}): {img_resp.text}"
            )
        return img_resp.content


class GeminiImageClient(ImageProvider):
    """
    Streams an image-only Gemini response and keeps the first inline image.
    """

    name = "gemini"

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash-image", client=None):
        if client is None:
            if not api_key:
                raise ProviderError("Gemini API key is not configured (GEMINI_API or GEMINI_API_KEY)")
            client = genai.Client(api_key=api_key)
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiImageClient":
        return cls(settings.gemini_api_key, settings.gemini_image_model)

    @staticmethod
    def _inline_bytes(chunk) -> Optional[bytes]:
        candidates = getattr(chunk, "candidates", None) or []
        if not candidates:
            return None
        content = getattr(candidates[0], "content", None)
        parts = getattr(content, "parts", None) or []
        if not parts:
            return None
        inline_data = getattr(parts[0], "inline_data", None)
        return getattr(inline_data, "data", None) or None

    @staticmethod
    def _to_png(data: bytes) -> bytes:
        try:
            with Image.open(BytesIO(data)) as img:
                out = BytesIO()
                img.save(out, format="PNG")
        except (UnidentifiedImageError, OSError) as exc:
            raise ProviderError(f"Gemini returned undecodable image data: {exc}") from exc
        return out.getvalue()

    def fetch(self, prompt: str, on_retry: Optional[RetryCallback] = None) -> bytes:
        stream = self.client.models.generate_content_stream(
            model=self.model,
            contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
            config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
        )
        for chunk in stream:
            data = self._inline_bytes(chunk)
            if not data:
                continue
            # Stop at the first image; the rest of the stream is never read.
            return self._to_png(data)
        raise ProviderError("Gemini did not return an image")


class DalleStatusError(ProviderError):
    """Non-success response from the image endpoint; the only retried failure."""


class DalleImageClient(ImageProvider):
    """
    OpenAI image generation with a fixed-delay retry on non-success responses.
    """

    name = "dalle"
    generations_url = "https://api.openai.com/v1/images/generations"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "dall-e-3",
        size: tuple = (1792, 1024),
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 120,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ProviderError("OPENAI_API_KEY required for dalle provider")
        self.api_key = api_key
        self.model = model
        self.size = size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DalleImageClient":
        return cls(
            settings.openai_api_key,
            model=settings.dalle_model,
            size=settings.image_size,
            timeout=settings.http_timeout,
        )

    def _request_image(self, prompt: str, attempt: int) -> bytes:
        width, height = self.size
        resp = self.session.post(
            self.generations_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "prompt": prompt,
                "size": f"{width}x{height}",
                "response_format": "b64_json",
            },
            timeout=self.timeout,
        )
        if not resp.ok:
            raise DalleStatusError(f"OpenAI error (attempt {attempt}): {resp.text}")
        try:
            return base64.b64decode(resp.json()["data"][0]["b64_json"])
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"OpenAI image payload malformed (attempt {attempt}): {exc}") from exc

    def fetch(self, prompt: str, on_retry: Optional[RetryCallback] = None) -> bytes:
        def before_sleep(retry_state):
            logger.warning(
                "[Image] dalle attempt %d/%d failed: %s",
                retry_state.attempt_number,
                self.max_attempts,
                retry_state.outcome.exception(),
            )
            if on_retry:
                on_retry(retry_state.attempt_number)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(DalleStatusError),
            before_sleep=before_sleep,
            sleep=self.sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._request_image(prompt, attempt.retry_state.attempt_number)


IMAGE_PROVIDERS = {
    PexelsImageClient.name: PexelsImageClient,
    GeminiImageClient.name: GeminiImageClient,
    DalleImageClient.name: DalleImageClient,
}

# Used when IMAGE_PROVIDER is not set: first provider whose key is configured.
CREDENTIAL_PRIORITY = (
    (PexelsImageClient.name, "pexels_api_key"),
    (GeminiImageClient.name, "gemini_api_key"),
)
DEFAULT_IMAGE_PROVIDER = DalleImageClient.name


def select_image_provider(settings: Settings) -> str:
    if settings.image_provider:
        name = settings.image_provider.strip().lower()
        if name not in IMAGE_PROVIDERS:
            raise ConfigurationError(
                f"Unknown IMAGE_PROVIDER '{settings.image_provider}' "
                f"(expected one of: {', '.join(IMAGE_PROVIDERS)})"
            )
        return name
    for name, attr in CREDENTIAL_PRIORITY:
        if getattr(settings, attr):
            return name
    return DEFAULT_IMAGE_PROVIDER


def build_image_provider(settings: Settings) -> ImageProvider:
    name = select_image_provider(settings)
    logger.info("[Image] using provider '%s'", name)
    return IMAGE_PROVIDERS[name].from_settings(settings)


def resolve_image(
    prompt: str,
    destination: Path,
    settings: Optional[Settings] = None,
    on_retry: Optional[RetryCallback] = None,
    provider: Optional[ImageProvider] = None,
) -> Path:
    """Fetch one image for the prompt from a single provider and write it to destination."""
    if provider is None:
        if settings is None:
            raise ConfigurationError("resolve_image needs settings or a provider")
        provider = build_image_provider(settings)
    data = provider.fetch(prompt, on_retry)
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(data)
    return destination

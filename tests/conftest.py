import json

import pytest

from story_app.config import Settings

ENV_VARS = (
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "LANGUAGE",
    "IMAGE_PROVIDER",
    "PEXELS_API_KEY",
    "GEMINI_API_KEY",
    "GEMINI_API",
    "GEMINI_IMAGE_MODEL",
    "DALLE_MODEL",
    "IMAGE_WIDTH",
    "IMAGE_HEIGHT",
    "DISABLE_IMAGE_GENERATION",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "ELEVENLABS_MODEL_ID",
    "LOCAL_TTS_URL",
    "LOCAL_TTS_MODEL",
    "LOCAL_TTS_BACKEND",
    "LOCAL_TTS_VOICE",
    "LOCAL_TTS_LANGUAGE",
    "LOCAL_TTS_RESPONSE_FORMAT",
    "SYNTHETIC_TIMESTAMPS_ONLY",
    "CONTENT_DIR",
    "HTTP_TIMEOUT",
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b"", text=None):
        self.status_code = status_code
        self._payload = payload
        if payload is not None and not content:
            content = json.dumps(payload).encode()
        self.content = content
        self.text = text if text is not None else content.decode("utf-8", "replace")

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeSession:
    """Hands out queued responses and records every request."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        return self.responses.pop(0)

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


class FakeCompletionClient:
    """Returns canned answers keyed by schema class."""

    def __init__(self, answers):
        self.answers = answers
        self.prompts = []

    def complete(self, prompt, schema):
        self.prompts.append((prompt, schema))
        return self.answers[schema]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONTENT_DIR", str(tmp_path / "content"))
    return monkeypatch


@pytest.fixture
def settings(clean_env):
    return Settings()

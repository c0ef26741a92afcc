import json
import logging
from typing import Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from .errors import CompletionError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"


def to_response_schema(schema: Type[BaseModel]) -> dict:
    """Strict structured-output schema for a pydantic model."""
    json_schema = schema.model_json_schema()
    response_schema = {
        "type": json_schema.get("type", "object"),
        "properties": json_schema.get("properties", {}),
        "required": json_schema.get("required", []),
        "additionalProperties": json_schema.get("additionalProperties", False),
    }
    if "$defs" in json_schema:
        response_schema["$defs"] = json_schema["$defs"]
    return response_schema


class CompletionClient:
    """
    Chat-completions client that constrains the model with a JSON schema and
    validates the answer against the same pydantic model. One attempt per call.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        session: Optional[requests.Session] = None,
        timeout: float = 120,
    ):
        self.api_key = api_key
        self.model = model
        self.session = session or requests.Session()
        self.timeout = timeout

    def complete(self, prompt: str, schema: Type[T]) -> T:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "response",
                    "schema": to_response_schema(schema),
                    "strict": True,
                },
            },
        }
        resp = self.session.post(
            CHAT_COMPLETIONS_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=body,
            timeout=self.timeout,
        )
        if not resp.ok:
            raise CompletionError(f"OpenAI error ({resp.status_code}): {resp.text}")

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise CompletionError("No content in OpenAI response")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise CompletionError(f"OpenAI returned invalid JSON: {exc}") from exc

        try:
            return schema.model_validate(parsed)
        except ValidationError as exc:
            raise CompletionError(
                f"OpenAI response does not match {schema.__name__}: {exc}"
            ) from exc


def build_story_prompt(title: str, topic: str, language: str) -> str:
    return (
        f"Write a short story with title [{title}] (its topic is [{topic}]). "
        "You must follow best practices for great storytelling. "
        "The script must be 8-10 sentences long. "
        "Story events can be from anywhere in the world, "
        f"but the final text must be written in {language}. "
        "Return the result without any formatting and title, as one continuous text. "
        "Skip new lines."
    )


def build_segmentation_prompt(story_text: str, language: str) -> str:
    instruction = (
        "You are given story text. "
        f"Generate (in {language}) 5-8 very detailed image descriptions for this story. "
        "Return them as a json array under 'result' with story sentences matched to images. "
        "Story sentences must be in the same order as in the story and their content must be preserved, "
        "so that joining every 'text' reproduces the story. "
        "Each image must match 1-2 sentences from the story. "
        "Images must show story content in a way that is visually appealing and engaging, "
        "not just characters."
    )
    example = '{"result": [{"text": "....", "imageDescription": "..."}]}'
    return f"{instruction}\n\nGive output in json format:\n{example}\n\n<story>\n{story_text}\n</story>"

from typing import List

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import ContentDescriptor


class TimelineElement(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    uid: str
    text: str
    image_url: str
    audio_url: str
    start_seconds: float
    end_seconds: float


class Timeline(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    short_title: str
    duration_seconds: float
    elements: List[TimelineElement]


def build_timeline(descriptor: ContentDescriptor) -> Timeline:
    """Place the items back to back, each lasting as long as its narration."""
    elements = []
    cursor = 0.0
    for item in descriptor.content:
        duration = item.audio_timestamps.end_seconds
        elements.append(
            TimelineElement(
                uid=item.uid,
                text=item.text,
                image_url=f"images/{item.uid}.png",
                audio_url=f"audio/{item.uid}.mp3",
                start_seconds=cursor,
                end_seconds=cursor + duration,
            )
        )
        cursor += duration
    return Timeline(
        short_title=descriptor.short_title,
        duration_seconds=cursor,
        elements=elements,
    )

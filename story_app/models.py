import uuid
from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    # Persisted as camelCase, accepted in either form.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Schema(_Record):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class StoryScript(_Schema):
    text: str


class StorySegment(_Schema):
    text: str
    image_description: str


class StoryWithImages(_Schema):
    result: List[StorySegment]


class TimingAlignment(_Record):
    """Per-character timing over one segment's audio."""

    characters: List[str] = Field(default_factory=list)
    character_start_times_seconds: List[float] = Field(default_factory=list)
    character_end_times_seconds: List[float] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_invariants(self) -> "TimingAlignment":
        starts = self.character_start_times_seconds
        ends = self.character_end_times_seconds
        if not (len(self.characters) == len(starts) == len(ends)):
            raise ValueError(
                "alignment sequences differ in length "
                f"({len(self.characters)}/{len(starts)}/{len(ends)})"
            )
        for i, (start, end) in enumerate(zip(starts, ends)):
            if start > end:
                raise ValueError(f"character {i} starts after it ends ({start} > {end})")
            if i and start < starts[i - 1]:
                raise ValueError(f"start times decrease at character {i}")
        return self

    @classmethod
    def empty(cls) -> "TimingAlignment":
        return cls()

    @property
    def end_seconds(self) -> float:
        return max(self.character_end_times_seconds, default=0.0)


class ContentItem(_Record):
    uid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str
    image_description: str
    audio_timestamps: TimingAlignment = Field(default_factory=TimingAlignment.empty)

    @classmethod
    def from_segment(cls, segment: StorySegment) -> "ContentItem":
        return cls(text=segment.text, image_description=segment.image_description)


class ContentDescriptor(_Record):
    short_title: str
    content: List[ContentItem] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

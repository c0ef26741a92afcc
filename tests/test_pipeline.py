import json

import pytest

from story_app.errors import ConfigurationError, NarrationError, ProviderError
from story_app.models import (
    ContentDescriptor,
    ContentItem,
    StoryScript,
    StorySegment,
    StoryWithImages,
    TimingAlignment,
)
from story_app.narration import SyntheticNarrator
from story_app.pipeline import generate_story, generate_story_text, regenerate_audio
from story_app.storage import ContentStore

from .conftest import FakeCompletionClient

SEGMENTS = [
    StorySegment(text="Mars is red because of iron oxide.", image_description="Rusty Martian plains at dusk"),
    StorySegment(text=" Its moons are tiny.", image_description="Phobos and Deimos over a crater rim"),
]


def _client(segments=SEGMENTS):
    return FakeCompletionClient(
        {
            StoryScript: StoryScript(text="".join(s.text for s in segments)),
            StoryWithImages: StoryWithImages(result=list(segments)),
        }
    )


class RecordingStore(ContentStore):
    """Keeps a JSON snapshot of every descriptor save."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.snapshots = []

    def save_descriptor(self, descriptor):
        self.snapshots.append(json.loads(descriptor.to_json()))
        return super().save_descriptor(descriptor)


class RecordingProvider:
    name = "recording"

    def __init__(self, log):
        self.log = log

    def fetch(self, prompt, on_retry=None):
        self.log.append(("image", prompt))
        return b"png"


class RecordingNarrator(SyntheticNarrator):
    def __init__(self, log, fail_on=None):
        super().__init__()
        self.log = log
        self.fail_on = fail_on

    def narrate(self, text, destination):
        self.log.append(("voice", text))
        if self.fail_on is not None and len([e for e in self.log if e[0] == "voice"]) == self.fail_on:
            raise NarrationError("TTS exploded")
        return super().narrate(text, destination)


@pytest.fixture
def offline_settings(settings):
    settings.synthetic_timestamps_only = True
    settings.disable_images = True
    return settings


def test_end_to_end_synthetic_without_images(offline_settings):
    client = _client()

    descriptor = generate_story("Mars", "Facts", offline_settings, completion_client=client)

    store = ContentStore("Mars", offline_settings.content_dir)
    saved = json.loads(store.descriptor_path.read_text())
    assert saved["shortTitle"] == "Mars"
    assert [item["text"] for item in saved["content"]] == [s.text for s in SEGMENTS]
    for item, segment in zip(saved["content"], SEGMENTS):
        assert item["uid"]
        assert item["imageDescription"] == segment.image_description
        assert len(item["audioTimestamps"]["characters"]) == len(segment.text)
    assert [item.uid for item in descriptor.content] == [item["uid"] for item in saved["content"]]
    assert store.timeline_path.exists()
    assert not (store.root / store.slug / "images").exists()


def test_prompts_follow_story_then_segmentation(offline_settings):
    offline_settings.language = "pt-BR"
    client = _client()

    generate_story("Mars", "Facts", offline_settings, completion_client=client)

    (story_prompt, first_schema), (split_prompt, second_schema) = client.prompts
    assert first_schema is StoryScript
    assert second_schema is StoryWithImages
    assert "Brazilian Portuguese" in story_prompt
    assert SEGMENTS[0].text in split_prompt


def test_descriptor_saved_before_and_after_media(offline_settings):
    store = RecordingStore("Mars", offline_settings.content_dir)

    generate_story("Mars", "Facts", offline_settings, completion_client=_client(), store=store)

    assert len(store.snapshots) == 2
    pre, post = store.snapshots
    assert [i["uid"] for i in pre["content"]] == [i["uid"] for i in post["content"]]
    assert all(i["audioTimestamps"]["characters"] == [] for i in pre["content"])
    assert all(i["audioTimestamps"]["characters"] for i in post["content"])


def test_image_then_voice_per_segment_in_order(offline_settings):
    offline_settings.disable_images = False
    log = []
    store = ContentStore("Mars", offline_settings.content_dir)

    descriptor = generate_story(
        "Mars",
        "Facts",
        offline_settings,
        completion_client=_client(),
        store=store,
        image_provider=RecordingProvider(log),
        narrator=RecordingNarrator(log),
    )

    assert log == [
        ("image", SEGMENTS[0].image_description),
        ("voice", SEGMENTS[0].text),
        ("image", SEGMENTS[1].image_description),
        ("voice", SEGMENTS[1].text),
    ]
    for item in descriptor.content:
        assert store.image_path(item.uid).read_bytes() == b"png"


def test_failure_aborts_run_and_keeps_pre_media_descriptor(offline_settings):
    log = []
    store = RecordingStore("Mars", offline_settings.content_dir)

    with pytest.raises(NarrationError):
        generate_story(
            "Mars",
            "Facts",
            offline_settings,
            completion_client=_client(),
            store=store,
            narrator=RecordingNarrator(log, fail_on=2),
        )

    assert len(store.snapshots) == 1
    saved = json.loads(store.descriptor_path.read_text())
    assert all(i["audioTimestamps"]["characters"] == [] for i in saved["content"])
    assert not store.timeline_path.exists()


def test_progress_messages(offline_settings):
    messages = []

    generate_story("Mars", "Facts", offline_settings, completion_client=_client(), progress=messages.append)

    assert any(m.startswith("[1/2] Generating voice") for m in messages)
    assert any(m.startswith("[2/2] Generating voice") for m in messages)


def test_missing_openai_key_fails_before_any_call(settings):
    settings.synthetic_timestamps_only = True

    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        generate_story("Mars", "Facts", settings)

    assert not settings.content_dir.exists()


def test_missing_narration_backend_fails_before_text(settings):
    client = _client()

    with pytest.raises(ConfigurationError, match="ELEVENLABS_API_KEY"):
        generate_story("Mars", "Facts", settings, completion_client=client)

    assert client.prompts == []


@pytest.mark.parametrize(
    "provider,error",
    [("midjourney", ConfigurationError), ("gemini", ProviderError)],
)
def test_bad_image_setup_fails_before_text(offline_settings, provider, error):
    offline_settings.disable_images = False
    offline_settings.image_provider = provider
    client = _client()

    with pytest.raises(error):
        generate_story("Mars", "Facts", offline_settings, completion_client=client)

    assert client.prompts == []
    assert not ContentStore("Mars", offline_settings.content_dir).descriptor_path.exists()


def test_title_and_topic_required(offline_settings):
    with pytest.raises(ValueError):
        generate_story("", "Facts", offline_settings, completion_client=_client())


def test_story_text_preview_persists_nothing(offline_settings):
    client = _client()

    story = generate_story_text("Mars", "Facts", offline_settings, completion_client=client)

    assert story.text == "".join(s.text for s in SEGMENTS)
    assert len(client.prompts) == 1
    assert not offline_settings.content_dir.exists()


def _saved_descriptor(store, count=3):
    descriptor = ContentDescriptor(
        short_title="Venus",
        content=[
            ContentItem(text=f"Sentence {i}.", image_description=f"Picture {i}")
            for i in range(count)
        ],
    )
    store.save_descriptor(descriptor)
    return descriptor


def test_regenerate_audio_preserves_everything_but_timestamps(offline_settings):
    store = ContentStore("Venus", offline_settings.content_dir)
    original = _saved_descriptor(store)

    result = regenerate_audio("Venus", offline_settings)

    assert result.updated_count == 3
    assert result.slug == "venus"
    assert result.title == "Venus"
    reloaded = store.load_descriptor()
    assert [i.uid for i in reloaded.content] == [i.uid for i in original.content]
    assert [i.text for i in reloaded.content] == [i.text for i in original.content]
    assert [i.image_description for i in reloaded.content] == [i.image_description for i in original.content]
    for item in reloaded.content:
        assert item.audio_timestamps.characters == list(item.text)
    assert store.timeline_path.exists()


def test_regenerate_audio_overwrites_existing_timestamps(offline_settings):
    store = ContentStore("Venus", offline_settings.content_dir)
    descriptor = _saved_descriptor(store, count=1)
    descriptor.content[0].audio_timestamps = TimingAlignment(
        characters=["x"], character_start_times_seconds=[0.0], character_end_times_seconds=[9.0]
    )
    store.save_descriptor(descriptor)

    regenerate_audio("Venus", offline_settings, narrator=SyntheticNarrator(duration_seconds=2.0))

    item = store.load_descriptor().content[0]
    assert item.audio_timestamps.end_seconds == pytest.approx(2.0)
    assert item.audio_timestamps.characters == list("Sentence 0.")


def test_regenerate_audio_without_descriptor(offline_settings):
    with pytest.raises(FileNotFoundError, match="descriptor.json"):
        regenerate_audio("Nowhere", offline_settings)

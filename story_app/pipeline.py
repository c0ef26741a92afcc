import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .completion import CompletionClient, build_segmentation_prompt, build_story_prompt
from .config import Settings
from .images import ImageProvider, build_image_provider, resolve_image
from .models import ContentDescriptor, ContentItem, StoryScript, StoryWithImages
from .narration import NarrationBackend, select_narration_backend
from .storage import ContentStore
from .timeline import build_timeline

logger = logging.getLogger(__name__)

Progress = Optional[Callable[[str], None]]


@dataclass
class RegenerationResult:
    slug: str
    title: str
    updated_count: int


def _report(progress: Progress, message: str) -> None:
    logger.info(message)
    if progress:
        progress(message)


def _require_title_topic(title: str, topic: str) -> None:
    if not title or not topic:
        raise ValueError("Title and topic are required")


def _completion_client(settings: Settings, client: Optional[CompletionClient]) -> CompletionClient:
    if client is not None:
        return client
    return CompletionClient(
        settings.require_completion_key(),
        settings.openai_model,
        timeout=settings.http_timeout,
    )


def generate_story_text(
    title: str,
    topic: str,
    settings: Settings,
    *,
    completion_client: Optional[CompletionClient] = None,
) -> StoryScript:
    """Story text only, nothing persisted. Used for previews."""
    _require_title_topic(title, topic)
    client = _completion_client(settings, completion_client)
    return client.complete(build_story_prompt(title, topic, settings.target_language), StoryScript)


def generate_story(
    title: str,
    topic: str,
    settings: Settings,
    *,
    completion_client: Optional[CompletionClient] = None,
    store: Optional[ContentStore] = None,
    timeline_builder: Callable = build_timeline,
    image_provider: Optional[ImageProvider] = None,
    narrator: Optional[NarrationBackend] = None,
    progress: Progress = None,
) -> ContentDescriptor:
    """
    Generate story text, split it into segments, then create an image and
    narration for each segment in order. The descriptor is saved once the
    segment uids exist and again once every segment has audio; the timeline
    is built from the final descriptor.
    """
    _require_title_topic(title, topic)
    client = _completion_client(settings, completion_client)
    if narrator is None:
        settings.validate_narration()
    # Providers are resolved once per run, before any completion call.
    if not settings.disable_images and image_provider is None:
        image_provider = build_image_provider(settings)
    narrator = narrator or select_narration_backend(settings)
    language = settings.target_language

    _report(progress, f'Creating story "{title}" (topic: {topic}, language: {language})')
    descriptor = ContentDescriptor(short_title=title)

    story = client.complete(build_story_prompt(title, topic, language), StoryScript)
    _report(progress, "Story generated")

    segmented = client.complete(build_segmentation_prompt(story.text, language), StoryWithImages)
    _report(progress, f"Image descriptions generated ({len(segmented.result)} segments)")

    for segment in segmented.result:
        descriptor.content.append(ContentItem.from_segment(segment))

    store = store or ContentStore(title, settings.content_dir)
    store.save_descriptor(descriptor)

    total = len(descriptor.content)
    steps = total if settings.disable_images else total * 2
    for idx, item in enumerate(descriptor.content):
        if settings.disable_images:
            step = idx + 1
        else:
            step = idx * 2 + 1
            label = f"[{step}/{steps}] Generating image for {item.text}"
            _report(progress, label)
            resolve_image(
                item.image_description,
                store.image_path(item.uid),
                provider=image_provider,
                on_retry=lambda attempt, label=label: _report(progress, f"{label} (retry {attempt + 1})"),
            )
            step += 1
        _report(progress, f"[{step}/{steps}] Generating voice for {item.text} ({narrator.name})")
        item.audio_timestamps = narrator.narrate(item.text, store.audio_path(item.uid))

    store.save_descriptor(descriptor)
    _report(progress, "Voice generated" if settings.disable_images else "Images and voice generated")

    store.save_timeline(timeline_builder(descriptor))
    _report(progress, f"Story generation complete: {store.slug}")
    return descriptor


def regenerate_audio(
    title: str,
    settings: Settings,
    *,
    store: Optional[ContentStore] = None,
    timeline_builder: Callable = build_timeline,
    narrator: Optional[NarrationBackend] = None,
    progress: Progress = None,
) -> RegenerationResult:
    """
    Re-narrate every item of an existing descriptor. Uids, text and image
    descriptions are kept; only the audio files and timestamps change.
    """
    if not title:
        raise ValueError("Title is required")
    if narrator is None:
        settings.validate_narration()
        narrator = select_narration_backend(settings)

    store = store or ContentStore(title, settings.content_dir)
    descriptor = store.load_descriptor()

    updated = 0
    total = len(descriptor.content)
    for idx, item in enumerate(descriptor.content):
        _report(progress, f"[{idx + 1}/{total}] Regenerating voice for {item.text} ({narrator.name})")
        item.audio_timestamps = narrator.narrate(item.text, store.audio_path(item.uid))
        updated += 1

    store.save_descriptor(descriptor)
    store.save_timeline(timeline_builder(descriptor))
    return RegenerationResult(slug=store.slug, title=descriptor.short_title, updated_count=updated)

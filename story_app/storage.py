import json
import logging
import re
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel

from .models import ContentDescriptor

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "descriptor.json"
TIMELINE_FILE = "timeline.json"


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower())
    return slug.strip("-")


class ContentStore:
    """
    On-disk layout for one story: <root>/<slug>/{descriptor.json, timeline.json, images/, audio/}.
    """

    def __init__(self, title: str, root: Union[str, Path] = "public/content"):
        self.title = title
        self.slug = slugify(title)
        self.root = Path(root)

    def get_dir(self, sub: Optional[str] = None) -> Path:
        path = self.root / self.slug
        if sub:
            path = path / sub
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def descriptor_path(self) -> Path:
        return self.root / self.slug / DESCRIPTOR_FILE

    @property
    def timeline_path(self) -> Path:
        return self.root / self.slug / TIMELINE_FILE

    def image_path(self, uid: str) -> Path:
        return self.get_dir("images") / f"{uid}.png"

    def audio_path(self, uid: str) -> Path:
        return self.get_dir("audio") / f"{uid}.mp3"

    def save_descriptor(self, descriptor: ContentDescriptor) -> Path:
        self.get_dir()
        self.descriptor_path.write_text(descriptor.to_json(), encoding="utf-8")
        logger.info("Saved descriptor (%d items) to %s", len(descriptor.content), self.descriptor_path)
        return self.descriptor_path

    def load_descriptor(self) -> ContentDescriptor:
        if not self.descriptor_path.exists():
            raise FileNotFoundError(f"{DESCRIPTOR_FILE} not found for slug {self.slug}")
        return ContentDescriptor.model_validate_json(self.descriptor_path.read_text(encoding="utf-8"))

    def save_timeline(self, timeline) -> Path:
        self.get_dir()
        if isinstance(timeline, BaseModel):
            payload = timeline.model_dump_json(by_alias=True, indent=2)
        else:
            payload = json.dumps(timeline, indent=2)
        self.timeline_path.write_text(payload, encoding="utf-8")
        logger.info("Saved timeline to %s", self.timeline_path)
        return self.timeline_path

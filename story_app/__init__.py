"""Generate narrated, illustrated story bundles from a title and a topic."""

from .config import Settings
from .pipeline import generate_story, generate_story_text, regenerate_audio

__version__ = "0.1.0"
__all__ = ["Settings", "generate_story", "generate_story_text", "regenerate_audio"]

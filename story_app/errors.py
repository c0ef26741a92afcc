class StoryAppError(RuntimeError):
    """Base class for every failure raised by the content pipeline."""


class ConfigurationError(StoryAppError):
    """A required credential or endpoint is missing."""


class CompletionError(StoryAppError):
    """The language model call failed or returned content that does not fit the schema."""


class ProviderError(StoryAppError):
    """An image provider could not produce an image."""


class NarrationError(StoryAppError):
    """A TTS backend failed or returned an unusable alignment."""


class MetadataProbeWarning(StoryAppError, UserWarning):
    """Audio duration could not be read from the file's container metadata."""

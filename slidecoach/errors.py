from typing import Optional


class SlideCoachError(Exception):
    """Base class for every domain error raised by the service."""


class AuthenticationError(SlideCoachError):
    pass


class SourceResolutionError(SlideCoachError):
    pass


class CrawlError(SourceResolutionError):
    pass


class LLMError(SlideCoachError):
    """A chat-completion collaborator failed (transport, HTTP status or empty body)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationError(SlideCoachError):
    pass


class ParseError(GenerationError):
    pass


class NoValidSlidesError(GenerationError):
    pass


class ImageGenerationError(SlideCoachError):
    pass


class StorageError(SlideCoachError):
    pass


class TranscriptionError(SlideCoachError):
    pass


class ClarityJudgmentError(SlideCoachError):
    pass


class TurnGenerationError(SlideCoachError):
    pass


class SpeechSynthesisError(SlideCoachError):
    """Speech failed after the turn text was produced; ``text`` is still usable."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text


class GenerationStreamError(SlideCoachError):
    pass

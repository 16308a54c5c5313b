"""Exceptions raised by the local media engine and catalog sources."""

from __future__ import annotations


class LocalMediaError(Exception):
    """Base class for failures around linked folders and local playback."""

    message = "Local media operation failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def description(self) -> str:
        return str(self)


class NotLinked(LocalMediaError):
    message = "No folder has been linked."


class AccessDenied(LocalMediaError):
    message = "Access to the linked folder was denied."


class ResolutionFailed(LocalMediaError):
    message = "Failed to resolve the linked folder."


class NoEpisodesFound(LocalMediaError):
    message = "No episode files were found in the linked folder."


class PlaybackFailed(LocalMediaError):
    """The player reported an error for the active item."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Playback failed: {reason}")


class SourceFailure(Exception):
    """A catalog service could not produce a usable response."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

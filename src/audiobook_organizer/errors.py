"""Exception hierarchy for the audiobook organizer."""

from pathlib import Path


class OrganizerError(Exception):
    """Base exception for all organizer errors."""


class ConfigError(OrganizerError):
    """Invalid or missing configuration."""


class ScanError(OrganizerError):
    """A scan root could not be read at all."""

    def __init__(self, root: Path, reason: str) -> None:
        super().__init__(f"Cannot scan {root}: {reason}")
        self.root = root
        self.reason = reason


class ProviderError(OrganizerError):
    """A metadata provider request failed."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class StorageError(OrganizerError):
    """The library snapshot could not be written."""


class LibraryError(OrganizerError):
    """A library operation referenced an unknown work or invalid value."""

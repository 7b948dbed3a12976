"""Exception taxonomy for rss_push."""

from __future__ import annotations


class PushError(Exception):
    """Base class for pipeline errors."""


class FetchError(PushError):
    """A feed could not be downloaded or parsed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch feed {url}: {reason}")
        self.url = url
        self.reason = reason


class RenderError(PushError):
    """The browser failed to produce an image."""


class DeliveryError(PushError):
    """A destination rejected or failed to receive a message."""


class ConfigError(PushError):
    """User supplied input (usually a URL) is missing or invalid."""

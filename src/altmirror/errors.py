from typing import Optional


class AltmirrorError(Exception):
    """Base class for errors raised by altmirror."""


class CatalogRequestError(AltmirrorError):
    """A remote catalog request failed (network, server or client error)."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class RateLimitExceeded(CatalogRequestError):
    """The remote kept answering 429 after every allowed retry."""


class MalformedRecordError(AltmirrorError):
    """A fetched or persisted record cannot be turned into a catalog entity."""

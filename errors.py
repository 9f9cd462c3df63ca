#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class ParseError(Exception):
    """Raised when an OPML document cannot be read or is not well-formed XML.

    Attributes:
        source: Optional file path or label of the document for diagnostics.
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class FetchError(Exception):
    """Raised when a feed cannot be retrieved or parsed after all retries.

    Attributes:
        url: The feed URL.
        attempts: Number of attempts made before giving up.
    """

    def __init__(self, url: str, message: str, attempts: int = 1):
        super().__init__(f"{url}: {message} (after {attempts} attempt{'s' if attempts != 1 else ''})")
        self.url = url
        self.message = message
        self.attempts = attempts


class WriteError(Exception):
    """Raised when the snapshot cannot be persisted."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to write {path}: {message}")
        self.path = path


__all__ = ["ParseError", "FetchError", "WriteError"]

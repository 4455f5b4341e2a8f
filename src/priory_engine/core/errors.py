from __future__ import annotations


class PrioryError(Exception):
    """Base class for engine failures."""


class CodeVerificationError(PrioryError):
    """A save or party code failed to parse or its signature did not match."""


class ContentError(PrioryError):
    """Authored content could not be decoded."""


class StoreError(PrioryError):
    """The backing document store rejected a read or write."""

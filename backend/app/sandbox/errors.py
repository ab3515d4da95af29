"""
Custom exceptions for sandbox resolution, rewriting and storage access.
"""

from app.core.backend import StorageUnavailable  # noqa: F401
from app.sandbox.constants import INVALID_SANDBOX_MESSAGE


class UnknownTenant(Exception):
    """Raised (or returned by validation) when a sandbox token is not registered."""

    def __init__(self, sandbox_id=None):
        super().__init__(INVALID_SANDBOX_MESSAGE)
        self.sandbox_id = sandbox_id


class MalformedIndexReference(ValueError):
    """Raised by the rewriter for an index reference it cannot split; never surfaced."""

    def __init__(self, reference: str):
        super().__init__(f"Malformed index reference: {reference!r}")
        self.reference = reference

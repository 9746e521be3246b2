"""Error taxonomy for complaint handling.

Only :class:`AccessDenied` and :class:`EligibilityError` are meant to
reach the end user.  :class:`ScopeNotReady` means "do not query yet";
:class:`TransientStoreError` is recovered locally on non-critical paths.
"""

from __future__ import annotations


class CampusDeskError(Exception):
    """Base class for every domain error raised by the service layer."""


class StoreError(CampusDeskError):
    """The document store failed an operation."""


class AccessDenied(StoreError):
    """The store (or a scope check) rejected the caller for this data."""

    def __init__(self, message: str = "Access denied", *, operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation


class TransientStoreError(StoreError):
    """Network / availability failure that may succeed on retry."""


class DocumentNotFound(StoreError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Document {path!r} does not exist")
        self.path = path


class ComplaintNotFound(DocumentNotFound):
    def __init__(self, complaint_id: str) -> None:
        super().__init__(f"complaints/{complaint_id}")
        self.complaint_id = complaint_id


class ScopeNotReady(CampusDeskError):
    """Department scope requested before the department name resolved."""


class EligibilityError(CampusDeskError):
    """A requested transition is outside the rules; rejected before any write.

    ``rule`` names the rule that failed so callers can show a specific
    explanation.
    """

    def __init__(self, rule: str, message: str) -> None:
        super().__init__(message)
        self.rule = rule
        self.message = message


class InvalidCursor(CampusDeskError):
    """A pagination cursor is malformed or belongs to a different query."""

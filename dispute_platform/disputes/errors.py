"""
Dispute Errors
==============

Exception taxonomy for the commission dispute lifecycle.

All errors derive from ``DisputeError``, itself a ``ValueError`` so that
callers written against the service layer's ``except ValueError`` convention
keep working. Store I/O and serialization failures are not wrapped and
surface unchanged.
"""

from __future__ import annotations

from typing import Iterable, Optional


class DisputeError(ValueError):
    """Base class for dispute lifecycle failures."""


class NotFoundError(DisputeError):
    """Raised when an operation references an unknown dispute id."""

    def __init__(self, dispute_id: str):
        super().__init__(f"Dispute not found: {dispute_id}")
        self.dispute_id = dispute_id


class ValidationError(DisputeError):
    """Raised when required input is missing or inconsistent."""

    def __init__(self, message: str, missing_fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.missing_fields = list(missing_fields or [])


class IllegalTransitionError(DisputeError):
    """Raised when an operation is not permitted from the current status."""

    def __init__(self, dispute_id: str, current_status: str, target_status: str):
        super().__init__(
            f"Dispute {dispute_id}: transition {current_status} -> {target_status} is not allowed"
        )
        self.dispute_id = dispute_id
        self.current_status = current_status
        self.target_status = target_status


class ConflictError(DisputeError):
    """Raised when the stored aggregate moved on since it was read."""

    def __init__(self, dispute_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Dispute {dispute_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.dispute_id = dispute_id
        self.expected_version = expected_version
        self.actual_version = actual_version

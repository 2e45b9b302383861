"""
Dispute Audit Ledger
====================

Append-only audit trail for commission disputes.

Every mutation of a dispute produces exactly one ``DisputeAuditEntry``.
Entries are never edited, reordered or removed. Each entry is linked to its
predecessor through ``previous_hash`` and sealed with ``entry_hash`` so that a
rewritten or dropped entry is detectable with ``verify``.

Persistence is not the ledger's concern: ``append`` only extends the
in-memory aggregate handed to it.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .models import Actor, CommissionDispute, DisputeAuditAction, DisputeAuditEntry

COMMENT_PREVIEW_LENGTH = 50


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def compute_entry_hash(entry: DisputeAuditEntry) -> str:
    """Compute the chain hash of an audit entry."""
    action = entry.action.value if isinstance(entry.action, DisputeAuditAction) else entry.action
    details_str = json.dumps(entry.details, sort_keys=True, default=str)
    content = "|".join([
        entry.id,
        action,
        entry.user_id,
        entry.user_name,
        _iso(entry.timestamp),
        details_str,
        entry.previous_value or "",
        entry.new_value or "",
        entry.previous_hash,
    ])
    return hashlib.sha256(content.encode()).hexdigest()


class AuditLedger:
    """
    Builds and appends audit entries to dispute aggregates.

    Args:
        clock: Returns the current time (timezone-aware). Defaults to UTC now.
        preview_length: Number of characters of a comment kept in its entry.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        preview_length: int = COMMENT_PREVIEW_LENGTH,
    ):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.preview_length = preview_length

    def comment_preview(self, text: str) -> str:
        """Return the truncated comment text stored in audit entries."""
        return text[: self.preview_length]

    def _next_id(self, dispute: CommissionDispute) -> str:
        existing = {e.id for e in dispute.audit_trail}
        entry_id = str(uuid.uuid4())
        while entry_id in existing:
            entry_id = str(uuid.uuid4())
        return entry_id

    def append(
        self,
        dispute: CommissionDispute,
        action: DisputeAuditAction,
        actor: Actor,
        details: Optional[Dict[str, Any]] = None,
        previous_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> DisputeAuditEntry:
        """
        Append one entry to ``dispute.audit_trail``.

        The timestamp never goes backwards relative to the last entry, even
        if the clock does.

        Returns:
            The appended entry
        """
        timestamp = self._clock()
        previous_hash = ""
        if dispute.audit_trail:
            last = dispute.audit_trail[-1]
            if timestamp < last.timestamp:
                timestamp = last.timestamp
            previous_hash = last.entry_hash

        entry = DisputeAuditEntry(
            id=self._next_id(dispute),
            action=action,
            user_id=actor.user_id,
            user_name=actor.user_name,
            timestamp=timestamp,
            details=details or {},
            previous_value=previous_value,
            new_value=new_value,
            previous_hash=previous_hash,
        )
        entry.entry_hash = compute_entry_hash(entry)
        dispute.audit_trail.append(entry)
        return entry

    def verify(self, dispute: CommissionDispute) -> Tuple[bool, str]:
        """
        Verify the hash chain of a dispute's audit trail.

        Entries written before sealing existed (empty ``entry_hash``) are
        accepted only as a leading prefix, and only before
        ``dispute.sealed_from``, which migration sets for legacy records.
        Disputes created under the current schema must be sealed throughout.

        Returns:
            Tuple of (is_valid, message)
        """
        trail = dispute.audit_trail
        if not trail:
            return False, "Audit trail is empty"

        expected_previous = ""
        sealed = False
        for i, entry in enumerate(trail):
            if not entry.entry_hash:
                if i >= dispute.sealed_from:
                    return False, f"Entry {i} is not sealed"
                if sealed:
                    return False, f"Unsealed entry {i} after sealed entries"
                continue
            sealed = True

            if entry.previous_hash != expected_previous:
                return False, f"Chain broken at entry {i}: previous hash mismatch"
            if compute_entry_hash(entry) != entry.entry_hash:
                return False, f"Entry {i} has been modified"
            if i > 0 and entry.timestamp < trail[i - 1].timestamp:
                return False, f"Entry {i} is out of order"
            expected_previous = entry.entry_hash

        return True, f"Chain verified: {len(trail)} entries"

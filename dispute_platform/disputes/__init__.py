"""
Commission Dispute System
=========================

Lifecycle and audit infrastructure for commission disputes.

This module provides:
- Dispute lifecycle with an explicit state machine
- Append-only, hash-chained audit trail per dispute
- SLA policy evaluation and resolution-time metrics
- Dashboard statistics
- Pluggable JSON record storage

Usage
-----
>>> from dispute_platform.disputes import DisputeLifecycleManager, Actor
>>> manager = DisputeLifecycleManager()
>>> filer = Actor(user_id="cons-042", user_name="Sarah Johnson")
>>> dispute = manager.file_dispute(
...     {"reason": "Split applied at 8%", "disputedAmount": 5000, "expectedAmount": 6000},
...     filer,
... )
>>> manager.assign(dispute.id, "agent-7", filer)
"""

from .errors import (
    ConflictError,
    DisputeError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from .ledger import COMMENT_PREVIEW_LENGTH, AuditLedger
from .lifecycle import TRANSITIONS, DisputeLifecycleManager, can_transition, hide_internal
from .models import (
    # Enums
    DisputeStatus,
    DisputeResolution,
    DisputeAuditAction,
    TERMINAL_STATUSES,
    # Entities
    Actor,
    CommissionDispute,
    DisputeEvidence,
    DisputeComment,
    DisputeAuditEntry,
    # Requests
    DisputeCreate,
    EvidenceCreate,
    # Read models
    SlaAssessment,
    DisputeStats,
)
from .policy import SlaPolicy, average_resolution_time
from .stats import compute_dispute_stats
from .store import InMemoryRecordStore, JsonFileRecordStore, RecordStore

__all__ = [
    # Main service
    "DisputeLifecycleManager",
    "AuditLedger",
    "SlaPolicy",
    # Stores
    "RecordStore",
    "JsonFileRecordStore",
    "InMemoryRecordStore",
    # Functions
    "average_resolution_time",
    "compute_dispute_stats",
    "can_transition",
    "hide_internal",
    "TRANSITIONS",
    "TERMINAL_STATUSES",
    "COMMENT_PREVIEW_LENGTH",
    # Errors
    "DisputeError",
    "NotFoundError",
    "ValidationError",
    "IllegalTransitionError",
    "ConflictError",
    # Enums
    "DisputeStatus",
    "DisputeResolution",
    "DisputeAuditAction",
    # Models
    "Actor",
    "CommissionDispute",
    "DisputeEvidence",
    "DisputeComment",
    "DisputeAuditEntry",
    "DisputeCreate",
    "EvidenceCreate",
    "SlaAssessment",
    "DisputeStats",
]

"""
Commission Dispute Data Models
==============================

Data models for the commission dispute lifecycle and its audit trail.

Features:
- Dispute aggregate with owned evidence, comments and audit trail
- Audit entries with cryptographic hash linkage
- Request models for filing disputes and attaching evidence
- SLA assessment and dashboard statistics read models

Python attributes are snake_case; the persisted JSON and the API use the
camelCase keys the dashboard components read (``filedDate``, ``auditTrail``,
``slaBreached``...). Dump with ``model_dump(mode="json", by_alias=True)``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


SCHEMA_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enumerations
# =============================================================================


class DisputeStatus(str, Enum):
    """Lifecycle status of a commission dispute."""
    OPEN = "open"
    UNDER_REVIEW = "under-review"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


TERMINAL_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.REJECTED})


class DisputeResolution(str, Enum):
    """Outcome recorded when a dispute is closed."""
    APPROVED_FULL = "approved-full"
    APPROVED_PARTIAL = "approved-partial"
    REJECTED = "rejected"


class DisputeAuditAction(str, Enum):
    """Fixed vocabulary of audit trail actions."""
    DISPUTE_CREATED = "dispute_created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    EVIDENCE_ADDED = "evidence_added"
    COMMENT_ADDED = "comment_added"
    DISPUTE_RESOLVED = "dispute_resolved"
    DISPUTE_ESCALATED = "dispute_escalated"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Parties
# =============================================================================


class Actor(_CamelModel):
    """A user performing an operation, or the target of an assignment."""
    user_id: str
    user_name: str


# =============================================================================
# Owned Collections
# =============================================================================


class DisputeEvidence(_CamelModel):
    """Evidence file attached to a dispute. Never edited or deleted."""
    id: str = Field(default_factory=_new_id)
    file_name: str
    description: str = ""
    uploaded_by: str
    uploaded_at: datetime = Field(default_factory=_utcnow)


class DisputeComment(_CamelModel):
    """Comment on a dispute; internal comments are hidden from the filer."""
    id: str = Field(default_factory=_new_id)
    user_id: str
    user_name: str
    comment: str
    is_internal: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class DisputeAuditEntry(_CamelModel):
    """Immutable record of one mutation, linked to its predecessor by hash."""
    id: str = Field(default_factory=_new_id)
    action: DisputeAuditAction
    user_id: str
    user_name: str
    timestamp: datetime = Field(default_factory=_utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    previous_hash: str = Field(default="", description="Hash of the previous entry (chain)")
    entry_hash: str = Field(default="", description="Hash of this entry")


# =============================================================================
# Aggregate Root
# =============================================================================


class CommissionDispute(_CamelModel):
    """Commission dispute aggregate."""
    id: str = Field(default_factory=_new_id)
    consultant_id: str
    filed_by: str
    filed_by_name: str
    filed_date: datetime = Field(default_factory=_utcnow)

    reason: str
    disputed_amount: float
    expected_amount: float
    status: DisputeStatus = DisputeStatus.OPEN

    assigned_to: Optional[str] = None
    assigned_to_name: Optional[str] = None
    assigned_date: Optional[datetime] = None

    evidence: List[DisputeEvidence] = Field(default_factory=list)
    comments: List[DisputeComment] = Field(default_factory=list)
    audit_trail: List[DisputeAuditEntry] = Field(default_factory=list)

    resolution: Optional[DisputeResolution] = None
    resolution_notes: Optional[str] = None
    approved_amount: Optional[float] = None
    resolved_by: Optional[str] = None
    resolved_by_name: Optional[str] = None
    resolved_date: Optional[datetime] = None

    escalated_to: Optional[str] = None
    escalated_to_name: Optional[str] = None
    escalated_date: Optional[datetime] = None
    escalation_reason: Optional[str] = None

    sla_breached: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    schema_version: int = SCHEMA_VERSION
    sealed_from: int = Field(default=0, ge=0, description="Index of the first audit entry that must be sealed")
    version: int = Field(default=1, ge=1, description="Optimistic concurrency counter")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "0b9f6a52-1d3c-4a55-9a3e-0c7d2f1e8b11",
                "consultantId": "cons-042",
                "filedBy": "cons-042",
                "filedByName": "Sarah Johnson",
                "reason": "Placement fee split applied at 8% instead of 10%",
                "disputedAmount": 5000,
                "expectedAmount": 6000,
                "status": "open",
            }
        }
    )

    def to_record(self) -> Dict[str, Any]:
        """Return the persisted JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


def migrate_dispute_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upgrade a stored dispute record to the current schema version.

    Records written before ``schemaVersion`` existed carry no concurrency
    counter and may omit empty collections. Audit entries are left as they
    are; ``sealedFrom`` marks where the legacy entries end, and every entry
    from that index on must carry a hash.
    """
    if record.get("schemaVersion", 0) >= SCHEMA_VERSION:
        return record
    upgraded = dict(record)
    upgraded.setdefault("version", 1)
    for key in ("evidence", "comments", "auditTrail"):
        if upgraded.get(key) is None:
            upgraded[key] = []
    upgraded.setdefault("slaBreached", False)
    upgraded.setdefault("sealedFrom", len(upgraded["auditTrail"]))
    upgraded["schemaVersion"] = SCHEMA_VERSION
    return upgraded


# =============================================================================
# Requests
# =============================================================================


class DisputeCreate(_CamelModel):
    """Request to file a dispute. Presence is checked by the lifecycle manager."""
    consultant_id: Optional[str] = None
    reason: Optional[str] = None
    disputed_amount: Optional[float] = None
    expected_amount: Optional[float] = None


class EvidenceCreate(_CamelModel):
    """Request to attach evidence."""
    file_name: str
    description: str = ""


# =============================================================================
# Read Models
# =============================================================================


class SlaAssessment(_CamelModel):
    """Result of evaluating a dispute against the SLA policy."""
    dispute_id: str
    breached: bool
    reasons: List[str] = Field(default_factory=list)
    days_open: int
    assignment_due: Optional[datetime] = None
    resolution_due: Optional[datetime] = None
    escalation_eligible: bool = False


class DisputeStats(_CamelModel):
    """Dashboard summary over a dispute collection."""
    total: int = 0
    open: int = 0
    under_review: int = 0
    resolved: int = 0
    rejected: int = 0
    escalated: int = 0
    total_disputed_amount: float = 0.0
    total_approved_amount: float = 0.0
    sla_breached_count: int = 0
    average_resolution_time: int = 0

    @computed_field(alias="byStatus")
    @property
    def by_status(self) -> Dict[str, int]:
        """Counts keyed by status value."""
        return {
            DisputeStatus.OPEN.value: self.open,
            DisputeStatus.UNDER_REVIEW.value: self.under_review,
            DisputeStatus.RESOLVED.value: self.resolved,
            DisputeStatus.REJECTED.value: self.rejected,
            DisputeStatus.ESCALATED.value: self.escalated,
        }

"""
Dispute Lifecycle Manager
=========================

Sole mutator of ``CommissionDispute`` aggregates.

Every public operation is one read-modify-append-write cycle against the
record store:

1. load the collection and locate the dispute
2. mutate a private copy and append exactly one audit entry
3. re-derive ``sla_breached`` and bump the concurrency ``version``
4. check the stored copy has not moved on, then persist

Nothing is written unless every step succeeds, so callers never observe a
partially applied operation. Operations are serialized in-process with a
re-entrant lock; writers in other processes are detected through the
``version`` counter and reported as ``ConflictError``.

State machine
-------------
::

    open ──assign──▶ under-review ──resolve──▶ resolved | rejected
                        │    ▲
                 escalate    assign
                        ▼    │
                      escalated ──resolve──▶ resolved | rejected

``resolved`` and ``rejected`` are terminal.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from .errors import ConflictError, IllegalTransitionError, NotFoundError, ValidationError
from .ledger import AuditLedger
from .models import (
    Actor,
    CommissionDispute,
    DisputeAuditAction,
    DisputeComment,
    DisputeCreate,
    DisputeEvidence,
    DisputeResolution,
    DisputeStats,
    DisputeStatus,
    EvidenceCreate,
    SlaAssessment,
    migrate_dispute_record,
)
from .policy import SlaPolicy
from .stats import compute_dispute_stats
from .store import JsonFileRecordStore, RecordStore

logger = logging.getLogger("Disputes.Lifecycle")

ActorLike = Union[Actor, Mapping[str, Any], str]

TRANSITIONS: Dict[DisputeStatus, FrozenSet[DisputeStatus]] = {
    DisputeStatus.OPEN: frozenset({DisputeStatus.UNDER_REVIEW}),
    DisputeStatus.UNDER_REVIEW: frozenset({
        DisputeStatus.RESOLVED,
        DisputeStatus.REJECTED,
        DisputeStatus.ESCALATED,
    }),
    DisputeStatus.ESCALATED: frozenset({
        DisputeStatus.UNDER_REVIEW,
        DisputeStatus.RESOLVED,
        DisputeStatus.REJECTED,
    }),
    DisputeStatus.RESOLVED: frozenset(),
    DisputeStatus.REJECTED: frozenset(),
}


def can_transition(current: DisputeStatus, target: DisputeStatus) -> bool:
    """Return True if ``current -> target`` is a permitted transition."""
    return target in TRANSITIONS.get(current, frozenset())


def _as_actor(value: ActorLike) -> Actor:
    if isinstance(value, Actor):
        return value
    if isinstance(value, str):
        return Actor(user_id=value, user_name=value)
    return Actor.model_validate(value)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", [field]) from None


def hide_internal(dispute: CommissionDispute) -> CommissionDispute:
    """
    Return the filer's view of a dispute.

    Internal comments are removed and the comment previews of their audit
    entries are redacted. The entries themselves stay so the trail keeps its
    length and order. ``dispute`` is not modified.
    """
    trail = []
    for entry in dispute.audit_trail:
        if entry.details.get("isInternal") and "commentPreview" in entry.details:
            details = {k: v for k, v in entry.details.items() if k != "commentPreview"}
            entry = entry.model_copy(update={"details": details})
        trail.append(entry)
    return dispute.model_copy(
        update={
            "comments": [c for c in dispute.comments if not c.is_internal],
            "audit_trail": trail,
        }
    )


class DisputeLifecycleManager:
    """
    Files, transitions and annotates commission disputes.

    Args:
        store: Record store. Defaults to a JSON file store in the configured
               storage directory.
        ledger: Audit ledger. Defaults to one sharing this manager's clock.
        policy: SLA policy. Defaults to the configured thresholds.
        clock: Returns the current timezone-aware time.
        collection_key: Store key of the dispute collection.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        ledger: Optional[AuditLedger] = None,
        policy: Optional[SlaPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        collection_key: Optional[str] = None,
    ):
        from ..config import settings

        self.store = store if store is not None else JsonFileRecordStore()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.ledger = ledger or AuditLedger(
            clock=self._clock, preview_length=settings.comment_preview_length
        )
        self.policy = policy or SlaPolicy.from_settings()
        self.collection_key = collection_key or settings.collection_key
        self._lock = threading.RLock()

    # =========================================================================
    # Storage helpers
    # =========================================================================

    def _load_records(self) -> List[Dict[str, Any]]:
        return [migrate_dispute_record(r) for r in self.store.load(self.collection_key)]

    @staticmethod
    def _index_of(records: List[Dict[str, Any]], dispute_id: str) -> int:
        for i, record in enumerate(records):
            if record.get("id") == dispute_id:
                return i
        raise NotFoundError(dispute_id)

    def _commit(self, dispute: CommissionDispute, loaded_version: int) -> None:
        """Persist ``dispute`` if the stored copy is still at ``loaded_version``."""
        records = self._load_records()
        index = self._index_of(records, dispute.id)
        stored_version = records[index].get("version", 1)
        if stored_version != loaded_version:
            logger.warning(
                "Conflict on dispute %s: loaded version %s, stored version %s",
                dispute.id, loaded_version, stored_version,
            )
            raise ConflictError(dispute.id, loaded_version, stored_version)
        records[index] = dispute.to_record()
        self.store.save(self.collection_key, records)

    def _require_transition(self, dispute: CommissionDispute, target: DisputeStatus) -> None:
        if not can_transition(dispute.status, target):
            logger.warning(
                "Rejected transition for dispute %s: %s -> %s",
                dispute.id, dispute.status.value, target.value,
            )
            raise IllegalTransitionError(dispute.id, dispute.status.value, target.value)

    def _mutate(
        self,
        dispute_id: str,
        apply: Callable[[CommissionDispute, datetime], None],
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        with self._lock:
            records = self._load_records()
            index = self._index_of(records, dispute_id)
            dispute = CommissionDispute.model_validate(records[index])
            loaded_version = dispute.version
            if expected_version is not None and expected_version != loaded_version:
                logger.warning(
                    "Stale write on dispute %s: caller has version %s, stored version %s",
                    dispute_id, expected_version, loaded_version,
                )
                raise ConflictError(dispute_id, expected_version, loaded_version)

            now = self._clock()
            trail_length = len(dispute.audit_trail)
            apply(dispute, now)
            if len(dispute.audit_trail) != trail_length + 1:
                raise RuntimeError(
                    f"Dispute {dispute_id}: operation appended "
                    f"{len(dispute.audit_trail) - trail_length} audit entries, expected 1"
                )

            dispute.updated_at = now
            dispute.version = loaded_version + 1
            dispute.sla_breached = self.policy.is_sla_breached(dispute, now)
            self._commit(dispute, loaded_version)

        entry = dispute.audit_trail[-1]
        logger.info(
            "Dispute %s: %s by %s (version %d)",
            dispute.id, entry.action.value, entry.user_id, dispute.version,
        )
        return dispute

    # =========================================================================
    # Filing
    # =========================================================================

    def file_dispute(
        self,
        fields: Union[DisputeCreate, Mapping[str, Any]],
        filed_by: ActorLike,
    ) -> CommissionDispute:
        """
        File a new dispute.

        Args:
            fields: Reason, disputed and expected amounts, consultant id
                    (defaults to the filer)
            filed_by: Who is filing

        Returns:
            The created dispute, status ``open``, with one audit entry

        Raises:
            ValidationError: reason, disputed_amount or expected_amount is missing
        """
        data = fields if isinstance(fields, DisputeCreate) else DisputeCreate.model_validate(fields)
        actor = _as_actor(filed_by)

        missing = []
        if _is_blank(data.reason):
            missing.append("reason")
        if data.disputed_amount is None:
            missing.append("disputed_amount")
        if data.expected_amount is None:
            missing.append("expected_amount")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

        now = self._clock()
        dispute = CommissionDispute(
            consultant_id=data.consultant_id or actor.user_id,
            filed_by=actor.user_id,
            filed_by_name=actor.user_name,
            filed_date=now,
            reason=data.reason,
            disputed_amount=data.disputed_amount,
            expected_amount=data.expected_amount,
            status=DisputeStatus.OPEN,
            created_at=now,
            updated_at=now,
        )
        self.ledger.append(
            dispute,
            DisputeAuditAction.DISPUTE_CREATED,
            actor,
            {
                "reason": dispute.reason,
                "disputedAmount": dispute.disputed_amount,
                "expectedAmount": dispute.expected_amount,
            },
        )
        dispute.sla_breached = self.policy.is_sla_breached(dispute, now)

        with self._lock:
            records = self._load_records()
            existing = {r.get("id") for r in records}
            while dispute.id in existing:
                dispute.id = str(uuid.uuid4())
            records.append(dispute.to_record())
            self.store.save(self.collection_key, records)

        logger.info("Dispute %s filed by %s for consultant %s", dispute.id, actor.user_id, dispute.consultant_id)
        return dispute

    # =========================================================================
    # Status Transitions
    # =========================================================================

    def change_status(
        self,
        dispute_id: str,
        new_status: Union[DisputeStatus, str],
        actor: ActorLike,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        """
        Move a dispute to ``new_status``.

        Resolution must go through ``resolve`` since it records an approved
        amount.

        Raises:
            NotFoundError: Unknown dispute id
            IllegalTransitionError: Transition not permitted from the current status
            ValidationError: ``new_status`` is ``resolved`` or not a status
        """
        target = _coerce(DisputeStatus, new_status, "status")
        who = _as_actor(actor)

        def apply(dispute: CommissionDispute, now: datetime) -> None:
            self._require_transition(dispute, target)
            if target == DisputeStatus.RESOLVED:
                raise ValidationError("Use resolve() to resolve a dispute", ["approved_amount"])

            previous = dispute.status
            dispute.status = target
            if target == DisputeStatus.ESCALATED and dispute.escalated_date is None:
                dispute.escalated_date = now
            if target == DisputeStatus.REJECTED:
                dispute.resolution = DisputeResolution.REJECTED
                dispute.resolved_by = who.user_id
                dispute.resolved_by_name = who.user_name
                if dispute.resolved_date is None:
                    dispute.resolved_date = now

            self.ledger.append(
                dispute,
                DisputeAuditAction.STATUS_CHANGED,
                who,
                {"notes": notes} if notes else {},
                previous_value=previous.value,
                new_value=target.value,
            )

        return self._mutate(dispute_id, apply, expected_version)

    def assign(
        self,
        dispute_id: str,
        assignee: ActorLike,
        actor: ActorLike,
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        """
        Assign a reviewer.

        Assigning an ``open`` or ``escalated`` dispute also moves it to
        ``under-review``; the single ``assigned`` entry records that status
        change. Reassigning an ``under-review`` dispute keeps its status and
        the original ``assigned_date``.

        Raises:
            NotFoundError: Unknown dispute id
            IllegalTransitionError: Dispute is resolved or rejected
        """
        target = _as_actor(assignee)
        who = _as_actor(actor)

        def apply(dispute: CommissionDispute, now: datetime) -> None:
            moves_to_review = dispute.status != DisputeStatus.UNDER_REVIEW
            if moves_to_review:
                self._require_transition(dispute, DisputeStatus.UNDER_REVIEW)

            details: Dict[str, Any] = {
                "assignedTo": target.user_id,
                "assignedToName": target.user_name,
            }
            if dispute.assigned_to and dispute.assigned_to != target.user_id:
                details["previousAssignee"] = dispute.assigned_to

            dispute.assigned_to = target.user_id
            dispute.assigned_to_name = target.user_name
            if dispute.assigned_date is None:
                dispute.assigned_date = now

            previous_value = new_value = None
            if moves_to_review:
                previous_value = dispute.status.value
                dispute.status = DisputeStatus.UNDER_REVIEW
                new_value = dispute.status.value

            self.ledger.append(
                dispute,
                DisputeAuditAction.ASSIGNED,
                who,
                details,
                previous_value=previous_value,
                new_value=new_value,
            )

        return self._mutate(dispute_id, apply, expected_version)

    def resolve(
        self,
        dispute_id: str,
        resolution: Union[DisputeResolution, str],
        notes: Optional[str],
        approved_amount: Optional[float] = None,
        actor: Optional[ActorLike] = None,
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        """
        Close a dispute under review or escalation.

        ``approved-full`` approves ``expected_amount`` unless an amount is
        given; ``approved-partial`` requires ``approved_amount``, recorded
        exactly as given; ``rejected`` closes the dispute with status
        ``rejected`` and no approved amount.

        Raises:
            NotFoundError: Unknown dispute id
            IllegalTransitionError: Dispute is not under review or escalated
            ValidationError: Missing actor, missing or inconsistent amount
        """
        outcome = _coerce(DisputeResolution, resolution, "resolution")
        if actor is None:
            raise ValidationError("An actor is required to resolve a dispute", ["actor"])
        who = _as_actor(actor)
        if approved_amount is not None and approved_amount < 0:
            raise ValidationError("Approved amount cannot be negative", ["approved_amount"])
        if outcome == DisputeResolution.REJECTED and approved_amount is not None:
            raise ValidationError("A rejected dispute cannot carry an approved amount", ["approved_amount"])
        if outcome == DisputeResolution.APPROVED_PARTIAL and approved_amount is None:
            raise ValidationError("Partial approval requires an approved amount", ["approved_amount"])

        target = DisputeStatus.REJECTED if outcome == DisputeResolution.REJECTED else DisputeStatus.RESOLVED

        def apply(dispute: CommissionDispute, now: datetime) -> None:
            self._require_transition(dispute, target)

            amount: Optional[float] = None
            if outcome == DisputeResolution.APPROVED_FULL:
                amount = approved_amount if approved_amount is not None else dispute.expected_amount
            elif outcome == DisputeResolution.APPROVED_PARTIAL:
                amount = approved_amount

            previous = dispute.status
            dispute.status = target
            dispute.resolution = outcome
            dispute.resolution_notes = notes
            dispute.approved_amount = amount
            dispute.resolved_by = who.user_id
            dispute.resolved_by_name = who.user_name
            if dispute.resolved_date is None:
                dispute.resolved_date = now

            self.ledger.append(
                dispute,
                DisputeAuditAction.DISPUTE_RESOLVED,
                who,
                {"resolution": outcome.value, "approvedAmount": amount},
                previous_value=previous.value,
                new_value=target.value,
            )

        return self._mutate(dispute_id, apply, expected_version)

    def escalate(
        self,
        dispute_id: str,
        escalated_to: ActorLike,
        reason: str,
        actor: ActorLike,
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        """
        Escalate a dispute under review.

        Raises:
            NotFoundError: Unknown dispute id
            IllegalTransitionError: Dispute is not under review
            ValidationError: Escalation reason is missing
        """
        if _is_blank(reason):
            raise ValidationError("Escalation reason is required", ["reason"])
        target = _as_actor(escalated_to)
        who = _as_actor(actor)

        def apply(dispute: CommissionDispute, now: datetime) -> None:
            self._require_transition(dispute, DisputeStatus.ESCALATED)

            previous = dispute.status
            dispute.status = DisputeStatus.ESCALATED
            dispute.escalated_to = target.user_id
            dispute.escalated_to_name = target.user_name
            dispute.escalation_reason = reason
            if dispute.escalated_date is None:
                dispute.escalated_date = now

            self.ledger.append(
                dispute,
                DisputeAuditAction.DISPUTE_ESCALATED,
                who,
                {
                    "escalatedTo": target.user_id,
                    "escalatedToName": target.user_name,
                    "reason": reason,
                },
                previous_value=previous.value,
                new_value=DisputeStatus.ESCALATED.value,
            )

        return self._mutate(dispute_id, apply, expected_version)

    # =========================================================================
    # Evidence & Comments
    # =========================================================================

    def add_evidence(
        self,
        dispute_id: str,
        evidence: Union[EvidenceCreate, Mapping[str, Any]],
        actor: ActorLike,
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        """Attach an evidence file description to a dispute."""
        data = evidence if isinstance(evidence, EvidenceCreate) else EvidenceCreate.model_validate(evidence)
        if _is_blank(data.file_name):
            raise ValidationError("Evidence file name is required", ["file_name"])
        who = _as_actor(actor)

        def apply(dispute: CommissionDispute, now: datetime) -> None:
            item = DisputeEvidence(
                file_name=data.file_name,
                description=data.description,
                uploaded_by=who.user_id,
                uploaded_at=now,
            )
            dispute.evidence.append(item)
            self.ledger.append(
                dispute,
                DisputeAuditAction.EVIDENCE_ADDED,
                who,
                {
                    "evidenceId": item.id,
                    "fileName": item.file_name,
                    "description": item.description,
                },
            )

        return self._mutate(dispute_id, apply, expected_version)

    def add_comment(
        self,
        dispute_id: str,
        text: str,
        actor: ActorLike,
        is_internal: bool = False,
        expected_version: Optional[int] = None,
    ) -> CommissionDispute:
        """
        Add a comment. The audit entry keeps only a short preview of the text.
        """
        if _is_blank(text):
            raise ValidationError("Comment text is required", ["comment"])
        who = _as_actor(actor)

        def apply(dispute: CommissionDispute, now: datetime) -> None:
            comment = DisputeComment(
                user_id=who.user_id,
                user_name=who.user_name,
                comment=text,
                is_internal=is_internal,
                created_at=now,
            )
            dispute.comments.append(comment)
            self.ledger.append(
                dispute,
                DisputeAuditAction.COMMENT_ADDED,
                who,
                {
                    "commentId": comment.id,
                    "isInternal": is_internal,
                    "commentPreview": self.ledger.comment_preview(text),
                },
            )

        return self._mutate(dispute_id, apply, expected_version)

    # =========================================================================
    # Queries
    # =========================================================================

    def _present(self, dispute: CommissionDispute, now: datetime, include_internal: bool) -> CommissionDispute:
        dispute = self.policy.apply(dispute, now)
        return dispute if include_internal else hide_internal(dispute)

    def _all(self) -> List[CommissionDispute]:
        return [CommissionDispute.model_validate(r) for r in self._load_records()]

    def get_dispute(self, dispute_id: str, include_internal: bool = True) -> CommissionDispute:
        """
        Get a dispute by id with its SLA flag evaluated now.

        Args:
            dispute_id: Dispute id
            include_internal: False hides internal comments (the filer's view)

        Raises:
            NotFoundError: Unknown dispute id
        """
        records = self._load_records()
        dispute = CommissionDispute.model_validate(records[self._index_of(records, dispute_id)])
        return self._present(dispute, self._clock(), include_internal)

    def list_disputes(
        self,
        consultant_id: Optional[str] = None,
        status: Optional[Union[DisputeStatus, str]] = None,
        assigned_to: Optional[str] = None,
        include_internal: bool = True,
    ) -> List[CommissionDispute]:
        """List disputes with filters, most recently filed first."""
        wanted = _coerce(DisputeStatus, status, "status") if status is not None else None
        now = self._clock()
        result = []
        for dispute in self._all():
            if consultant_id is not None and dispute.consultant_id != consultant_id:
                continue
            if wanted is not None and dispute.status != wanted:
                continue
            if assigned_to is not None and dispute.assigned_to != assigned_to:
                continue
            result.append(self._present(dispute, now, include_internal))
        result.sort(key=lambda d: d.filed_date, reverse=True)
        return result

    def get_stats(self, consultant_id: Optional[str] = None) -> DisputeStats:
        """Dashboard statistics, optionally for one consultant."""
        return compute_dispute_stats(self._all(), self.policy, self._clock(), consultant_id)

    def evaluate_sla(self, dispute_id: str) -> SlaAssessment:
        """SLA assessment of one dispute at the current time."""
        return self.policy.evaluate(self.get_dispute(dispute_id), self._clock())

    def verify_audit_trail(self, dispute_id: str) -> Tuple[bool, str]:
        """Verify the hash chain of a dispute's audit trail."""
        return self.ledger.verify(self.get_dispute(dispute_id))

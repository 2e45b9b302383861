"""
Dispute API Routes
==================

FastAPI router exposing the commission dispute lifecycle to the dashboard.

Endpoints include:
- Filing, listing and reading disputes
- Assignment, status changes, resolution and escalation
- Evidence and comments
- SLA assessment, audit trail verification and dashboard statistics

All endpoints require the X-User-Role header; mutating endpoints also take
the acting user from X-User-Id / X-User-Name. Domain errors are returned as
explicit failure responses: 404 unknown dispute, 422 missing or invalid
input, 409 illegal transition or concurrent modification.
"""

from __future__ import annotations

from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config import settings
from .errors import ConflictError, DisputeError, IllegalTransitionError, NotFoundError, ValidationError
from .lifecycle import DisputeLifecycleManager, hide_internal
from .models import (
    Actor,
    CommissionDispute,
    DisputeCreate,
    DisputeResolution,
    DisputeStats,
    DisputeStatus,
    EvidenceCreate,
    SlaAssessment,
)


# Create router with prefix
router = APIRouter(prefix="/disputes", tags=["Commission Disputes"])

# Global manager instance
_manager: Optional[DisputeLifecycleManager] = None

REVIEWER_ROLES = ["admin", "finance"]
ALL_ROLES = ["admin", "finance", "consultant"]


def get_dispute_manager() -> DisputeLifecycleManager:
    """Get or create the lifecycle manager singleton."""
    global _manager
    if _manager is None:
        _manager = DisputeLifecycleManager()
    return _manager


def _require_role(
    allowed_roles: List[str],
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
) -> str:
    """Validate user role and return it."""
    if not settings.require_rbac:
        return (x_user_role or "admin").lower()
    if x_user_role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Role header required",
        )
    role = x_user_role.lower()
    if role not in [r.lower() for r in allowed_roles]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{role}' not authorized. Allowed: {allowed_roles}",
        )
    return role


def _current_actor(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_name: Optional[str] = Header(default=None, alias="X-User-Name"),
) -> Actor:
    """Build the acting user from request headers."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header required",
        )
    return Actor(user_id=x_user_id, user_name=x_user_name or x_user_id)


def _raise_http(error: DisputeError) -> NoReturn:
    """Convert a domain error into an HTTP failure response."""
    if isinstance(error, NotFoundError):
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(error))
    if isinstance(error, ValidationError):
        raise HTTPException(
            422,
            {"message": str(error), "missingFields": error.missing_fields},
        )
    if isinstance(error, (IllegalTransitionError, ConflictError)):
        raise HTTPException(status.HTTP_409_CONFLICT, str(error))
    raise HTTPException(status.HTTP_400_BAD_REQUEST, str(error))


def _present(dispute: CommissionDispute, role: str) -> CommissionDispute:
    """Shape a dispute for the caller's role."""
    return hide_internal(dispute) if role == "consultant" else dispute


def _ensure_visible(
    manager: DisputeLifecycleManager,
    dispute_id: str,
    role: str,
    user_id: Optional[str],
) -> None:
    """Consultants may only reach their own disputes; others get 404."""
    if role != "consultant":
        return
    try:
        dispute = manager.get_dispute(dispute_id)
    except DisputeError as e:
        _raise_http(e)
    if dispute.consultant_id != user_id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Dispute not found: {dispute_id}")


# =============================================================================
# Request / Response Models
# =============================================================================


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    expected_version: Optional[int] = Field(default=None, description="Version the caller last read")


class StatusChangeRequest(_Request):
    """Request to change a dispute's status."""
    status: DisputeStatus
    notes: Optional[str] = None


class AssignRequest(_Request):
    """Request to assign a reviewer."""
    assignee_id: str
    assignee_name: str


class EvidenceRequest(_Request):
    """Request to attach evidence."""
    file_name: str
    description: str = ""


class CommentRequest(_Request):
    """Request to add a comment."""
    comment: str
    is_internal: bool = False


class ResolveRequest(_Request):
    """Request to resolve or reject a dispute."""
    resolution: DisputeResolution
    notes: Optional[str] = None
    approved_amount: Optional[float] = None


class EscalateRequest(_Request):
    """Request to escalate a dispute."""
    escalated_to_id: str
    escalated_to_name: str
    reason: str


class DisputeListResponse(BaseModel):
    """Response containing list of disputes."""
    disputes: List[CommissionDispute]
    total: int


class AuditVerificationResponse(BaseModel):
    """Result of an audit trail hash chain verification."""
    dispute_id: str
    valid: bool
    message: str


# =============================================================================
# Query Endpoints
# =============================================================================


@router.get("", response_model=DisputeListResponse)
async def list_disputes(
    consultant_id: Optional[str] = Query(default=None, alias="consultantId"),
    dispute_status: Optional[DisputeStatus] = Query(default=None, alias="status"),
    assigned_to: Optional[str] = Query(default=None, alias="assignedTo"),
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(ALL_ROLES, x)),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> DisputeListResponse:
    """
    List disputes, newest first.

    Consultants only see their own disputes, without internal comments.
    """
    is_consultant = role == "consultant"
    if is_consultant:
        consultant_id = x_user_id or ""
    disputes = manager.list_disputes(
        consultant_id=consultant_id,
        status=dispute_status,
        assigned_to=assigned_to,
        include_internal=not is_consultant,
    )
    return DisputeListResponse(disputes=disputes, total=len(disputes))


@router.get("/stats", response_model=DisputeStats)
async def get_dispute_stats(
    consultant_id: Optional[str] = Query(default=None, alias="consultantId"),
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(ALL_ROLES, x)),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> DisputeStats:
    """Dashboard statistics, optionally restricted to one consultant."""
    if role == "consultant":
        consultant_id = x_user_id or ""
    return manager.get_stats(consultant_id=consultant_id)


@router.get("/{dispute_id}", response_model=CommissionDispute)
async def get_dispute(
    dispute_id: str,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(ALL_ROLES, x)),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """Get a dispute with its evidence, comments and audit trail."""
    _ensure_visible(manager, dispute_id, role, x_user_id)
    try:
        dispute = manager.get_dispute(dispute_id)
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.get("/{dispute_id}/sla", response_model=SlaAssessment)
async def get_dispute_sla(
    dispute_id: str,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(REVIEWER_ROLES, x)),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> SlaAssessment:
    """SLA assessment of a dispute, including escalation eligibility."""
    try:
        return manager.evaluate_sla(dispute_id)
    except DisputeError as e:
        _raise_http(e)


@router.get("/{dispute_id}/audit/verify", response_model=AuditVerificationResponse)
async def verify_dispute_audit_trail(
    dispute_id: str,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(REVIEWER_ROLES, x)),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> AuditVerificationResponse:
    """Verify the hash chain of a dispute's audit trail."""
    try:
        valid, message = manager.verify_audit_trail(dispute_id)
    except DisputeError as e:
        _raise_http(e)
    return AuditVerificationResponse(dispute_id=dispute_id, valid=valid, message=message)


# =============================================================================
# Lifecycle Endpoints
# =============================================================================


@router.post("", response_model=CommissionDispute, status_code=status.HTTP_201_CREATED)
async def file_dispute(
    request: DisputeCreate,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(ALL_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """
    File a new commission dispute.

    Consultants always file on their own behalf.
    """
    if role == "consultant":
        request = request.model_copy(update={"consultant_id": actor.user_id})
    try:
        dispute = manager.file_dispute(request, actor)
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.post("/{dispute_id}/status", response_model=CommissionDispute)
async def change_dispute_status(
    dispute_id: str,
    request: StatusChangeRequest,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(REVIEWER_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """Change a dispute's status (resolution goes through /resolve)."""
    try:
        dispute = manager.change_status(
            dispute_id, request.status, actor, request.notes, expected_version=request.expected_version
        )
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.post("/{dispute_id}/assign", response_model=CommissionDispute)
async def assign_dispute(
    dispute_id: str,
    request: AssignRequest,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(REVIEWER_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """Assign a reviewer; open or escalated disputes move to under-review."""
    assignee = Actor(user_id=request.assignee_id, user_name=request.assignee_name)
    try:
        dispute = manager.assign(dispute_id, assignee, actor, expected_version=request.expected_version)
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.post("/{dispute_id}/resolve", response_model=CommissionDispute)
async def resolve_dispute(
    dispute_id: str,
    request: ResolveRequest,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(REVIEWER_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """Resolve (fully or partially approve) or reject a dispute."""
    try:
        dispute = manager.resolve(
            dispute_id,
            request.resolution,
            request.notes,
            approved_amount=request.approved_amount,
            actor=actor,
            expected_version=request.expected_version,
        )
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.post("/{dispute_id}/escalate", response_model=CommissionDispute)
async def escalate_dispute(
    dispute_id: str,
    request: EscalateRequest,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(REVIEWER_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """Escalate a dispute under review."""
    target = Actor(user_id=request.escalated_to_id, user_name=request.escalated_to_name)
    try:
        dispute = manager.escalate(
            dispute_id, target, request.reason, actor, expected_version=request.expected_version
        )
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.post("/{dispute_id}/evidence", response_model=CommissionDispute)
async def add_dispute_evidence(
    dispute_id: str,
    request: EvidenceRequest,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(ALL_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """Attach evidence to a dispute."""
    _ensure_visible(manager, dispute_id, role, actor.user_id)
    evidence = EvidenceCreate(file_name=request.file_name, description=request.description)
    try:
        dispute = manager.add_evidence(dispute_id, evidence, actor, expected_version=request.expected_version)
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)


@router.post("/{dispute_id}/comments", response_model=CommissionDispute)
async def add_dispute_comment(
    dispute_id: str,
    request: CommentRequest,
    role: str = Depends(lambda x=Header(default=None, alias="X-User-Role"): _require_role(ALL_ROLES, x)),
    actor: Actor = Depends(_current_actor),
    manager: DisputeLifecycleManager = Depends(get_dispute_manager),
) -> CommissionDispute:
    """
    Comment on a dispute.

    Only reviewers may post internal comments.
    """
    _ensure_visible(manager, dispute_id, role, actor.user_id)
    if request.is_internal and role == "consultant":
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Consultants cannot post internal comments")
    try:
        dispute = manager.add_comment(
            dispute_id,
            request.comment,
            actor,
            is_internal=request.is_internal,
            expected_version=request.expected_version,
        )
    except DisputeError as e:
        _raise_http(e)
    return _present(dispute, role)

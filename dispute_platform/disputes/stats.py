"""
Dispute Statistics
==================

Read-only reduction of a dispute collection into the figures shown on the
dashboard cards. Pure: never writes, and repeated calls over unchanged input
at the same ``now`` give identical results.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .models import CommissionDispute, DisputeStats, DisputeStatus
from .policy import SlaPolicy, average_resolution_time

_STATUS_FIELDS = {
    DisputeStatus.OPEN: "open",
    DisputeStatus.UNDER_REVIEW: "under_review",
    DisputeStatus.RESOLVED: "resolved",
    DisputeStatus.REJECTED: "rejected",
    DisputeStatus.ESCALATED: "escalated",
}


def compute_dispute_stats(
    disputes: Iterable[CommissionDispute],
    policy: Optional[SlaPolicy] = None,
    now: Optional[datetime] = None,
    consultant_id: Optional[str] = None,
) -> DisputeStats:
    """
    Summarize disputes, optionally restricted to one consultant.

    Args:
        disputes: Dispute collection
        policy: SLA policy used for the breach count (defaults to settings)
        now: Evaluation time for the SLA policy
        consultant_id: Only count this consultant's disputes

    Returns:
        DisputeStats
    """
    policy = policy or SlaPolicy.from_settings()
    selected = [
        d for d in disputes
        if consultant_id is None or d.consultant_id == consultant_id
    ]

    counts = {name: 0 for name in _STATUS_FIELDS.values()}
    for d in selected:
        counts[_STATUS_FIELDS[d.status]] += 1

    return DisputeStats(
        total=len(selected),
        total_disputed_amount=sum(d.disputed_amount for d in selected),
        total_approved_amount=sum(
            d.approved_amount or 0.0
            for d in selected
            if d.status == DisputeStatus.RESOLVED
        ),
        sla_breached_count=sum(1 for d in selected if policy.is_sla_breached(d, now)),
        average_resolution_time=average_resolution_time(selected),
        **counts,
    )

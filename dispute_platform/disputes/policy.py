"""
SLA / Policy Evaluator
======================

Derives SLA compliance and resolution-time metrics from dispute timestamps.

The ``sla_breached`` flag is always computed on read, so it reflects the
policy in force now rather than the one in force when the record was written.

Default policy
--------------
A dispute that is not resolved or rejected breaches its SLA when either:

- it was not assigned within ``assignment_window_business_days`` business
  days (Mon-Fri) of filing, or
- more than ``resolution_window_days`` calendar days have passed since filing.

Example
-------
>>> policy = SlaPolicy.from_settings()
>>> assessment = policy.evaluate(dispute)
>>> assessment.breached, assessment.reasons
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional

import numpy as np

from .models import CommissionDispute, DisputeStatus, SlaAssessment

logger = logging.getLogger("Disputes.Policy")

SECONDS_PER_DAY = 86400.0


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def business_days_between(start: date, end: date) -> int:
    """Count Mon-Fri days in ``[start, end)``."""
    return int(np.busday_count(start, end))


def add_business_days(start: datetime, days: int) -> datetime:
    """Return ``start`` moved forward by ``days`` business days, same time of day."""
    due = np.busday_offset(start.date(), days, roll="forward").item()
    return datetime.combine(due, start.timetz())


def average_resolution_time(disputes: Iterable[CommissionDispute]) -> int:
    """
    Mean time from filing to resolution, in whole days.

    Only disputes with a ``resolved_date`` are considered. Returns 0 when
    there are none.
    """
    durations = [
        (_aware(d.resolved_date) - _aware(d.filed_date)).total_seconds() / SECONDS_PER_DAY
        for d in disputes
        if d.resolved_date is not None
    ]
    if not durations:
        return 0
    # half-up, not banker's rounding
    return int(math.floor(float(np.mean(durations)) + 0.5))


@dataclass
class SlaPolicy:
    """
    SLA thresholds for commission disputes.

    Attributes:
        assignment_window_business_days: Business days allowed until first assignment
        resolution_window_days: Calendar days allowed until resolution
        escalation_grace_days: Days a breach must persist before escalation is suggested
    """

    assignment_window_business_days: int = 5
    resolution_window_days: int = 15
    escalation_grace_days: int = 0

    @classmethod
    def from_settings(cls) -> "SlaPolicy":
        from ..config import settings
        return cls(
            assignment_window_business_days=settings.sla_assignment_business_days,
            resolution_window_days=settings.sla_resolution_days,
            escalation_grace_days=settings.sla_escalation_grace_days,
        )

    def evaluate(self, dispute: CommissionDispute, now: Optional[datetime] = None) -> SlaAssessment:
        """Assess a dispute against this policy at ``now``."""
        now = _aware(now or datetime.now(timezone.utc))
        filed = _aware(dispute.filed_date)

        assignment_due = add_business_days(filed, self.assignment_window_business_days)
        resolution_due = filed + timedelta(days=self.resolution_window_days)
        days_open = max((now - filed).days, 0)

        reasons: List[str] = []
        missed: List[datetime] = []
        if not dispute.is_terminal:
            assigned_at = _aware(dispute.assigned_date) if dispute.assigned_date else now
            if assigned_at > assignment_due:
                reasons.append(
                    f"Not assigned within {self.assignment_window_business_days} business days"
                )
                missed.append(assignment_due)
            if now > resolution_due:
                reasons.append(f"Not resolved within {self.resolution_window_days} days")
                missed.append(resolution_due)

        breached = bool(reasons)
        escalation_eligible = (
            breached
            and dispute.status == DisputeStatus.UNDER_REVIEW
            and now - min(missed) >= timedelta(days=self.escalation_grace_days)
        )

        return SlaAssessment(
            dispute_id=dispute.id,
            breached=breached,
            reasons=reasons,
            days_open=days_open,
            assignment_due=assignment_due,
            resolution_due=resolution_due,
            escalation_eligible=escalation_eligible,
        )

    def is_sla_breached(self, dispute: CommissionDispute, now: Optional[datetime] = None) -> bool:
        return self.evaluate(dispute, now).breached

    def is_escalation_eligible(self, dispute: CommissionDispute, now: Optional[datetime] = None) -> bool:
        return self.evaluate(dispute, now).escalation_eligible

    def apply(self, dispute: CommissionDispute, now: Optional[datetime] = None) -> CommissionDispute:
        """Return a copy of ``dispute`` with ``sla_breached`` recomputed."""
        breached = self.is_sla_breached(dispute, now)
        if breached and not dispute.sla_breached:
            logger.debug("Dispute %s is in SLA breach", dispute.id)
        return dispute.model_copy(update={"sla_breached": breached})

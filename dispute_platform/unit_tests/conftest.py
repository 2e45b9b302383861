"""Shared fixtures for the dispute platform tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dispute_platform.disputes import (
    Actor,
    DisputeLifecycleManager,
    InMemoryRecordStore,
    SlaPolicy,
)

COLLECTION_KEY = "commission_disputes"

# Monday
START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def policy() -> SlaPolicy:
    return SlaPolicy(
        assignment_window_business_days=5,
        resolution_window_days=15,
        escalation_grace_days=0,
    )


@pytest.fixture
def manager(store, clock, policy) -> DisputeLifecycleManager:
    return DisputeLifecycleManager(
        store=store,
        policy=policy,
        clock=clock,
        collection_key=COLLECTION_KEY,
    )


@pytest.fixture
def consultant() -> Actor:
    return Actor(user_id="cons-042", user_name="Sarah Johnson")


@pytest.fixture
def reviewer() -> Actor:
    return Actor(user_id="fin-001", user_name="Michael Chen")


@pytest.fixture
def filing() -> dict:
    """Scenario A filing: 5000 paid, 6000 expected."""
    return {
        "consultantId": "cons-042",
        "reason": "Placement fee split applied at 8% instead of 10%",
        "disputedAmount": 5000,
        "expectedAmount": 6000,
    }

"""Shared pytest fixtures for all test files."""

import os
import tempfile
from datetime import date, datetime, timezone

import pytest

from insurance_core.db.database import init_db
from insurance_core.models import Actor, Role
from insurance_core.services import LifecycleEngine

# 2024-01-20 10:00 UTC; date-driven scenarios are written against this instant
FIXED_NOW = datetime(2024, 1, 20, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock; tests move it with ``set``."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, year: int, month: int, day: int, hour: int = 10) -> None:
        self.now = datetime(year, month, day, hour, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    """Notification dispatcher that keeps every event it receives."""

    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    def notify(self, event: str, recipient_id: str, payload: dict) -> None:
        self.events.append((event, recipient_id, payload))

    def names(self) -> list[str]:
        return [e[0] for e in self.events]


@pytest.fixture(autouse=True)
def temp_db():
    """Use a temporary SQLite DB for tests."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    init_db(path)
    prev = os.environ.get("INSURANCE_DB_PATH")
    os.environ["INSURANCE_DB_PATH"] = path
    try:
        yield path
    finally:
        if prev is None:
            os.environ.pop("INSURANCE_DB_PATH", None)
        else:
            os.environ["INSURANCE_DB_PATH"] = prev
        try:
            os.unlink(path)
        except OSError:
            # Ignore errors when cleaning up the temporary DB file (e.g., if already removed).
            pass


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def engine(temp_db, clock, dispatcher):
    return LifecycleEngine(db_path=temp_db, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def agent():
    return Actor(id="agent-1", role=Role.AGENT)


@pytest.fixture
def other_agent():
    return Actor(id="agent-2", role=Role.AGENT)


@pytest.fixture
def customer():
    return Actor(id="cust-1", role=Role.CUSTOMER)


@pytest.fixture
def other_customer():
    return Actor(id="cust-2", role=Role.CUSTOMER)


def policy_fields(**overrides) -> dict:
    """Valid create_policy input: monthly premiums from 2023-12-15, 100000 coverage."""
    fields = {
        "policy_type": "health",
        "policy_name": "Family Health Plus",
        "description": "Comprehensive family health coverage",
        "coverage_amount": 100000,
        "premium_amount": 2500,
        "premium_frequency": "monthly",
        "duration_years": 5,
        "customer_id": "cust-1",
        "start_date": date(2023, 12, 15),
        "terms": "Standard health policy terms",
    }
    fields.update(overrides)
    return fields


def claim_fields(policy_id: str, **overrides) -> dict:
    fields = {
        "policy_id": policy_id,
        "claim_type": "medical",
        "incident_date": date(2024, 1, 10),
        "claim_amount": 25000,
        "description": "Hospitalisation after a fall at home",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def pending_policy(engine, agent):
    return engine.policies.create_policy(agent, **policy_fields())


@pytest.fixture
def active_policy(engine, agent, pending_policy):
    """Policy with next_payment_due 2024-01-15, activated by its agent."""
    return engine.policies.update_status(agent, pending_policy.id, "active")


@pytest.fixture
def submitted_claim(engine, customer, active_policy):
    return engine.claims.create_claim(customer, **claim_fields(active_policy.id))


@pytest.fixture
def pending_payment(engine, customer, active_policy):
    return engine.payments.create_payment(customer, active_policy.id, 5000, "upi")

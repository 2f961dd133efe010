"""Lifecycle managers for policies, claims and payments, and the engine that wires them."""

from insurance_core.db.database import init_db
from insurance_core.notifications import NotificationDispatcher
from insurance_core.services.base import Clock
from insurance_core.services.claim_service import ClaimService
from insurance_core.services.coordinator import ConsistencyCoordinator
from insurance_core.services.payment_service import PaymentService
from insurance_core.services.policy_service import PolicyService
from insurance_core.services.recurrence import add_years, next_due_date, parse_frequency


class LifecycleEngine:
    """One coordinator and the three managers over a shared database, dispatcher and clock.

    Usage:
        engine = LifecycleEngine(db_path="data/insurance.db")
        policy = engine.policies.create_policy(agent, **fields)
    """

    def __init__(
        self,
        db_path: str | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        init_db(db_path)
        self.coordinator = ConsistencyCoordinator(db_path)
        self.policies = PolicyService(self.coordinator, dispatcher, clock)
        self.claims = ClaimService(self.coordinator, dispatcher, clock)
        self.payments = PaymentService(self.coordinator, dispatcher, clock)


__all__ = [
    "ClaimService",
    "ConsistencyCoordinator",
    "LifecycleEngine",
    "PaymentService",
    "PolicyService",
    "add_years",
    "next_due_date",
    "parse_frequency",
]

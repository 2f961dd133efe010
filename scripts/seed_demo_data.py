"""Seed a demo policy, claim and settled premium into the configured database.

Run from project root:
    python scripts/seed_demo_data.py

Uses INSURANCE_DB_PATH (default data/insurance.db). Every run creates a new
policy, so re-running adds another set of demo records.
"""

import sys
from datetime import date, timedelta
from pathlib import Path

# Ensure src is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from insurance_core.config.settings import get_db_path  # noqa: E402
from insurance_core.models import Actor, Role  # noqa: E402
from insurance_core.notifications import LoggingNotificationDispatcher  # noqa: E402
from insurance_core.services import LifecycleEngine  # noqa: E402

ADMIN = Actor(id="admin-demo", role=Role.ADMIN)
AGENT = Actor(id="agent-demo", role=Role.AGENT)
CUSTOMER = Actor(id="customer-demo", role=Role.CUSTOMER)


def main() -> None:
    db_path = get_db_path()
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    engine = LifecycleEngine(db_path, dispatcher=LoggingNotificationDispatcher())

    start = date.today() - timedelta(days=30)
    policy = engine.policies.create_policy(
        AGENT,
        policy_type="health",
        policy_name="Demo Family Health",
        description="Family floater health cover for the demo customer",
        coverage_amount=500000,
        premium_amount=2500,
        premium_frequency="monthly",
        duration_years=5,
        customer_id=CUSTOMER.id,
        start_date=start,
        terms="Standard health policy terms",
        beneficiaries=[
            {"name": "Asha Demo", "relationship": "spouse", "percentage": 60},
            {"name": "Ravi Demo", "relationship": "child", "percentage": 40},
        ],
    )
    policy = engine.policies.update_status(AGENT, policy.id, "active")

    payment = engine.payments.create_payment(CUSTOMER, policy.id, 2500, "upi")
    payment = engine.payments.update_status(ADMIN, payment.id, "completed")

    claim = engine.claims.create_claim(
        CUSTOMER,
        policy_id=policy.id,
        claim_type="medical",
        incident_date=start + timedelta(days=10),
        claim_amount=42000,
        description="Day-care procedure at a network hospital",
    )

    print(f"Seeded into {db_path}:")
    print(f"  policy  {policy.id} ({policy.policy_number})")
    print(f"  payment {payment.id} ({payment.receipt.receipt_number})")
    print(f"  claim   {claim.id} ({claim.claim_number})")


if __name__ == "__main__":
    main()

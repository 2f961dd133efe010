"""Policy lifecycle: numbering, coverage window, beneficiaries and status graph."""

import uuid
from datetime import datetime
from typing import Any

from insurance_core.db.constants import (
    POLICY_ACTIVE,
    POLICY_CANCELLED,
    POLICY_PENDING,
    POLICY_STATUSES,
    POLICY_TERMINAL_STATUSES,
    POLICY_TRANSITIONS,
    can_transition,
)
from insurance_core.db.repository import generate_id
from insurance_core.exceptions import (
    AuthorizationError,
    BeneficiaryPercentageError,
    ClaimsExist,
    CoverageLocked,
    InvalidTransition,
    ValidationError,
)
from insurance_core.models.common import Actor, Role
from insurance_core.models.policy import (
    Beneficiary,
    PaymentHistoryEntry,
    Policy,
    PolicyCreate,
    PolicyUpdate,
)
from insurance_core.notifications import POLICY_STATUS_CHANGED
from insurance_core.observability import entity_context, get_logger
from insurance_core.services.base import LifecycleService, validate_input
from insurance_core.services.recurrence import add_years, next_due_date
from insurance_core.utils.sanitization import sanitize_description, sanitize_list, sanitize_text

logger = get_logger(__name__)

# Cancellation and expiry deactivate the policy
_DEACTIVATING_STATUSES = POLICY_TERMINAL_STATUSES


def generate_policy_number(policy_type: str, now: datetime) -> str:
    """Two-letter type prefix + last 8 digits of the millisecond clock + 4 random hex chars."""
    prefix = policy_type.upper()[:2]
    millis = str(int(now.timestamp() * 1000))[-8:]
    return f"{prefix}{millis}{uuid.uuid4().hex[:4].upper()}"


def validate_beneficiaries(beneficiaries: list[Beneficiary]) -> None:
    """Non-empty beneficiary lists must share out exactly 100%."""
    if not beneficiaries:
        return
    total = round(sum(b.percentage for b in beneficiaries), 6)
    if total != 100:
        raise BeneficiaryPercentageError(
            "Beneficiaries percentage must total 100%", total=total
        )


class PolicyService(LifecycleService):
    """Owns Policy state: creation, field edits, status changes, soft cancel, payments."""

    def get_policy(self, policy_id: str) -> Policy:
        return self._get_policy(policy_id)

    def days_until_expiration(self, policy_id: str) -> int:
        """Days left in the coverage window as of the engine clock."""
        return self.get_policy(policy_id).days_until_expiration(self._now().date())

    def create_policy(self, actor: Actor, **fields: Any) -> Policy:
        """Create a pending policy with derived end date and first due date."""
        if not actor.is_staff:
            raise AuthorizationError("Only agents and admins can create policies")
        data = validate_input(PolicyCreate, fields)
        validate_beneficiaries(data.beneficiaries)

        agent_id = actor.id if actor.role == Role.AGENT else data.agent_id
        policy = self._coordinator.run_with_retry(self._insert_policy, data, agent_id)
        logger.bind("policy", policy.id).log_event(
            "policy_created",
            policy_number=policy.policy_number,
            customer_id=policy.customer_id,
            next_payment_due=policy.next_payment_due,
        )
        return policy

    def _insert_policy(self, data: PolicyCreate, agent_id: str | None) -> Policy:
        now = self._now()
        start = data.start_date or now.date()
        policy = Policy(
            id=generate_id(),
            policy_number=generate_policy_number(data.policy_type.value, now),
            policy_type=data.policy_type,
            policy_name=sanitize_text(data.policy_name, 100),
            description=sanitize_description(data.description),
            coverage_amount=data.coverage_amount,
            premium_amount=data.premium_amount,
            premium_frequency=data.premium_frequency,
            duration_years=data.duration_years,
            customer_id=data.customer_id,
            agent_id=agent_id,
            beneficiaries=data.beneficiaries,
            start_date=start,
            end_date=add_years(start, data.duration_years),
            next_payment_due=next_due_date(start, data.premium_frequency),
            status=POLICY_PENDING,
            terms=data.terms,
            exclusions=sanitize_list(data.exclusions),
            risk_category=data.risk_category,
            is_active=True,
            version=1,
            created_at=now,
            updated_at=now,
        )
        with self._coordinator.atomic() as conn:
            self._policies.insert(conn, policy)
        return policy

    def update_fields(self, actor: Actor, policy_id: str, **fields: Any) -> Policy:
        """Edit descriptive and premium fields. Coverage is frozen once claims exist."""
        changes = validate_input(PolicyUpdate, fields)
        return self._coordinator.run_with_retry(self._update_fields, actor, policy_id, changes)

    def _update_fields(self, actor: Actor, policy_id: str, changes: PolicyUpdate) -> Policy:
        policy = self.get_policy(policy_id)
        self._ensure_can_manage(actor, policy)
        if policy.status in POLICY_TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Policy {policy.policy_number} is {policy.status} and can no longer be edited",
                status=policy.status,
            )

        update = changes.model_dump(exclude_none=True)
        if "beneficiaries" in update:
            validate_beneficiaries(changes.beneficiaries)
            update["beneficiaries"] = changes.beneficiaries
        if "coverage_amount" in update and update["coverage_amount"] != policy.coverage_amount:
            if policy.claims_history or self._policies.count_claims(policy.id):
                raise CoverageLocked(
                    "Coverage amount cannot change once claims exist against the policy",
                    policy_id=policy.id,
                )
        if "description" in update:
            update["description"] = sanitize_description(update["description"])
        if "exclusions" in update:
            update["exclusions"] = sanitize_list(update["exclusions"])
        if not update:
            return policy

        now = self._now()
        with self._coordinator.atomic() as conn:
            saved = self._policies.update(conn, policy.model_copy(update=update), now)
        logger.bind("policy", policy.id).log_event("policy_updated", fields=sorted(update))
        return saved

    def update_status(self, actor: Actor, policy_id: str, new_status: str) -> Policy:
        """Move the policy along its status graph."""
        if new_status not in POLICY_STATUSES:
            raise ValidationError(f"Invalid policy status: {new_status}", allowed=list(POLICY_STATUSES))
        policy = self._coordinator.run_with_retry(self._update_status, actor, policy_id, new_status)
        self._notify(
            POLICY_STATUS_CHANGED,
            policy.customer_id,
            {"policy_id": policy.id, "policy_number": policy.policy_number, "status": policy.status},
        )
        return policy

    def _update_status(self, actor: Actor, policy_id: str, new_status: str) -> Policy:
        policy = self.get_policy(policy_id)
        self._ensure_can_manage(actor, policy)
        if not can_transition(POLICY_TRANSITIONS, policy.status, new_status):
            raise InvalidTransition(
                f"Cannot move policy from {policy.status} to {new_status}",
                current=policy.status,
                target=new_status,
            )
        update: dict[str, Any] = {"status": new_status}
        if new_status in _DEACTIVATING_STATUSES:
            update["is_active"] = False
        elif new_status == POLICY_ACTIVE:
            update["is_active"] = True

        now = self._now()
        with entity_context("policy", policy.id, actor_id=actor.id):
            with self._coordinator.atomic() as conn:
                saved = self._policies.update(conn, policy.model_copy(update=update), now)
            logger.log_event("policy_status_changed", old_status=policy.status, new_status=new_status)
        return saved

    def soft_cancel(self, actor: Actor, policy_id: str) -> Policy:
        """Cancel a policy that has no claims. Rows are never physically deleted."""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can cancel policies")
        policy = self._coordinator.run_with_retry(self._soft_cancel, actor, policy_id)
        self._notify(
            POLICY_STATUS_CHANGED,
            policy.customer_id,
            {"policy_id": policy.id, "policy_number": policy.policy_number, "status": policy.status},
        )
        return policy

    def _soft_cancel(self, actor: Actor, policy_id: str) -> Policy:
        policy = self.get_policy(policy_id)
        if policy.claims_history or self._policies.count_claims(policy.id):
            raise ClaimsExist(
                "Cannot cancel a policy with existing claims", policy_id=policy.id
            )
        if policy.status == POLICY_CANCELLED:
            return policy
        now = self._now()
        with self._coordinator.atomic() as conn:
            saved = self._policies.update(
                conn,
                policy.model_copy(update={"status": POLICY_CANCELLED, "is_active": False}),
                now,
            )
        logger.bind("policy", policy.id).log_event(
            "policy_cancelled", actor_id=actor.id, old_status=policy.status
        )
        return saved

    def record_payment(
        self,
        actor: Actor,
        policy_id: str,
        amount: float,
        payment_method: str,
        transaction_id: str,
    ) -> Policy:
        """Append a settled payment and advance next_payment_due by one period."""
        if amount is None or amount <= 0:
            raise ValidationError("Payment amount must be positive", amount=amount)
        if not payment_method or not transaction_id:
            raise ValidationError("payment_method and transaction_id are required")
        return self._coordinator.run_with_retry(
            self._record_payment, actor, policy_id, amount, payment_method, transaction_id
        )

    def _record_payment(
        self,
        actor: Actor,
        policy_id: str,
        amount: float,
        payment_method: str,
        transaction_id: str,
    ) -> Policy:
        policy = self.get_policy(policy_id)
        if actor.is_customer and policy.customer_id != actor.id:
            raise AuthorizationError("Not authorized to add payment to this policy")
        if policy.status in POLICY_TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Cannot record payments on a {policy.status} policy", status=policy.status
            )
        entry = PaymentHistoryEntry(
            amount=round(float(amount), 2),
            payment_date=self._now(),
            payment_method=payment_method,
            transaction_id=transaction_id,
            status="completed",
        )
        return self._coordinator.record_policy_payment(policy, entry, self._now())

    def _ensure_can_manage(self, actor: Actor, policy: Policy) -> None:
        """Admins manage every policy; agents only the ones assigned to them."""
        if actor.is_admin:
            return
        if actor.role == Role.AGENT and policy.agent_id == actor.id:
            return
        raise AuthorizationError("Not authorized to update this policy", policy_id=policy.id)

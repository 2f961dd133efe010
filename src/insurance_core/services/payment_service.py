"""Payment lifecycle: fee and tax computation, status graph, completion, refunds, receipts."""

import random
import string
import uuid
from datetime import datetime
from typing import Any, Optional

from insurance_core.config.settings import get_payment_config
from insurance_core.db.constants import (
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    PAYMENT_TRANSITIONS,
    POLICY_TERMINAL_STATUSES,
    REFUND_PROCESSING,
    can_transition,
)
from insurance_core.db.repository import generate_id
from insurance_core.exceptions import (
    AuthorizationError,
    InvalidTransition,
    NotCompleted,
    NotFound,
    PolicyNotActive,
    RefundExceedsAmount,
    ValidationError,
)
from insurance_core.models.common import Actor
from insurance_core.models.payment import (
    Currency,
    Fees,
    Payment,
    PaymentCreate,
    PaymentType,
    Receipt,
    Refund,
    Taxes,
    round_money,
)
from insurance_core.notifications import PAYMENT_COMPLETED as PAYMENT_COMPLETED_EVENT
from insurance_core.notifications import PAYMENT_REFUNDED as PAYMENT_REFUNDED_EVENT
from insurance_core.observability import entity_context, get_logger
from insurance_core.services.base import LifecycleService, validate_input
from insurance_core.utils.sanitization import sanitize_description, sanitize_reason

logger = get_logger(__name__, entity_type="payment")

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def _millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def generate_payment_id(now: datetime) -> str:
    return f"PAY{str(_millis(now))[-8:]}{uuid.uuid4().hex[:6].upper()}"


def generate_transaction_id(now: datetime) -> str:
    """TXN + millisecond clock + 5 random alphanumerics."""
    suffix = "".join(random.choices(_TXN_ALPHABET, k=5))
    return f"TXN{_millis(now)}{suffix}"


def generate_refund_id(now: datetime) -> str:
    return f"REF{str(_millis(now))[-8:]}{uuid.uuid4().hex[:6].upper()}"


def compute_charges(amount: float, config: dict | None = None) -> tuple[Fees, Taxes]:
    """Gateway fee on the gross amount, GST on amount plus fee. Both rounded to 2 dp."""
    cfg = config or get_payment_config()
    gateway_fee = round_money(amount * cfg["gateway_fee_rate"])
    gst = round_money((amount + gateway_fee) * cfg["gst_rate"])
    return Fees(gateway_fee=gateway_fee), Taxes(gst=gst)


class PaymentService(LifecycleService):
    """Owns Payment state. Completion side effects on the policy go through the coordinator."""

    def get_payment(self, payment_id: str) -> Payment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFound(
                f"Payment not found: {payment_id}", entity="payment", entity_id=payment_id
            )
        return payment

    def days_overdue(self, payment_id: str) -> int:
        """Days an unsettled payment is past its due date, as of the engine clock."""
        return self.get_payment(payment_id).days_overdue(self._now().date())

    def create_payment(
        self,
        actor: Actor,
        policy_id: str,
        amount: float,
        payment_method: str,
        payment_type: str = PaymentType.PREMIUM.value,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        due_date: Any = None,
    ) -> Payment:
        """Create a pending payment with fees and taxes computed from configuration."""
        cfg = get_payment_config()
        data = validate_input(
            PaymentCreate,
            {
                "policy_id": policy_id,
                "amount": amount,
                "payment_method": payment_method,
                "payment_type": payment_type,
                "currency": currency or cfg["default_currency"],
                "description": description,
                "due_date": due_date,
            },
        )
        policy = self._get_policy(data.policy_id)
        if actor.is_customer and policy.customer_id != actor.id:
            raise AuthorizationError(
                "Not authorized to create payment for this policy", policy_id=policy.id
            )
        if policy.status in POLICY_TERMINAL_STATUSES:
            raise PolicyNotActive(
                f"Cannot take payments on a {policy.status} policy",
                policy_id=policy.id,
                status=policy.status,
            )

        gross = round_money(data.amount)
        fees, taxes = compute_charges(gross, cfg)
        due = data.due_date
        if due is None and data.payment_type == PaymentType.PREMIUM:
            due = policy.next_payment_due
        fields = {
            "policy_id": policy.id,
            "customer_id": policy.customer_id,
            "payment_type": data.payment_type,
            "payment_method": data.payment_method,
            "currency": data.currency or Currency.INR,
            "amount": gross,
            "fees": fees,
            "taxes": taxes,
            "status": PAYMENT_PENDING,
            "due_date": due,
            "description": sanitize_description(data.description),
        }
        payment = self._coordinator.run_with_retry(self._insert_payment, fields)
        logger.bind("payment", payment.id).log_event(
            "payment_created",
            payment_id=payment.payment_id,
            amount=payment.amount,
            net_amount=payment.net_amount,
        )
        return payment

    def _insert_payment(self, fields: dict[str, Any]) -> Payment:
        now = self._now()
        payment = Payment(
            id=generate_id(),
            payment_id=generate_payment_id(now),
            transaction_id=generate_transaction_id(now),
            payment_date=now,
            version=1,
            created_at=now,
            updated_at=now,
            **fields,
        )
        with self._coordinator.atomic() as conn:
            self._payments.insert(conn, payment)
        return payment

    def update_status(
        self,
        actor: Actor,
        payment_id: str,
        new_status: str,
        gateway_transaction_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> Payment:
        """Move a payment along its status graph.

        Completing a payment also settles it on the policy. Completing an
        already completed payment returns it unchanged.
        """
        if not actor.is_admin:
            raise AuthorizationError("Only admins can update payment status")
        if new_status not in PAYMENT_STATUSES:
            raise ValidationError(
                f"Invalid payment status: {new_status}", allowed=list(PAYMENT_STATUSES)
            )
        if new_status == PAYMENT_REFUNDED:
            raise InvalidTransition("Use process_refund to refund a payment", target=new_status)

        payment, completed_now = self._coordinator.run_with_retry(
            self._update_status,
            actor,
            payment_id,
            new_status,
            gateway_transaction_id,
            sanitize_reason(failure_reason),
        )
        if completed_now:
            self._notify(
                PAYMENT_COMPLETED_EVENT,
                payment.customer_id,
                {
                    "payment_id": payment.payment_id,
                    "amount": payment.amount,
                    "receipt_number": payment.receipt.receipt_number,
                },
            )
        return payment

    def _update_status(
        self,
        actor: Actor,
        payment_id: str,
        new_status: str,
        gateway_transaction_id: Optional[str],
        failure_reason: Optional[str],
    ) -> tuple[Payment, bool]:
        payment = self.get_payment(payment_id)
        if new_status == PAYMENT_COMPLETED and payment.status == PAYMENT_COMPLETED:
            return payment, False
        if not can_transition(PAYMENT_TRANSITIONS, payment.status, new_status):
            raise InvalidTransition(
                f"Cannot move payment from {payment.status} to {new_status}",
                current=payment.status,
                target=new_status,
            )

        update: dict[str, Any] = {"status": new_status}
        if gateway_transaction_id:
            update["gateway_transaction_id"] = gateway_transaction_id
        if failure_reason:
            prefix = f"{payment.description} | " if payment.description else ""
            update["description"] = f"{prefix}Failure: {failure_reason}"
        changed = payment.model_copy(update=update)

        now = self._now()
        with entity_context("payment", payment.id, actor_id=actor.id):
            if new_status == PAYMENT_COMPLETED:
                policy = self._get_policy(payment.policy_id)
                saved, _ = self._coordinator.complete_payment(changed, policy, now)
            else:
                with self._coordinator.atomic() as conn:
                    saved = self._payments.update(conn, changed, now)
            logger.log_event(
                "payment_status_changed", old_status=payment.status, new_status=new_status
            )
        return saved, new_status == PAYMENT_COMPLETED

    def process_refund(
        self,
        actor: Actor,
        payment_id: str,
        refund_amount: float,
        reason: Optional[str] = None,
    ) -> Payment:
        """Refund part or all of a completed payment's net amount."""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can process refunds")
        if refund_amount is None or refund_amount <= 0:
            raise ValidationError("Refund amount must be positive", refund_amount=refund_amount)
        payment = self._coordinator.run_with_retry(
            self._process_refund, actor, payment_id, round_money(refund_amount), sanitize_reason(reason)
        )
        self._notify(
            PAYMENT_REFUNDED_EVENT,
            payment.customer_id,
            {
                "payment_id": payment.payment_id,
                "refund_id": payment.refund.refund_id,
                "refund_amount": payment.refund.refund_amount,
            },
        )
        return payment

    def _process_refund(
        self, actor: Actor, payment_id: str, refund_amount: float, reason: Optional[str]
    ) -> Payment:
        payment = self.get_payment(payment_id)
        if payment.status != PAYMENT_COMPLETED:
            raise NotCompleted(
                "Only completed payments can be refunded", status=payment.status
            )
        if refund_amount > payment.net_amount:
            raise RefundExceedsAmount(
                "Refund amount cannot exceed the net payment amount",
                refund_amount=refund_amount,
                net_amount=payment.net_amount,
            )
        now = self._now()
        refund = Refund(
            refund_id=generate_refund_id(now),
            refund_amount=refund_amount,
            refund_date=now,
            refund_reason=reason,
            refund_status=REFUND_PROCESSING,
        )
        with entity_context("payment", payment.id, actor_id=actor.id):
            with self._coordinator.atomic() as conn:
                saved = self._payments.update(
                    conn,
                    payment.model_copy(update={"status": PAYMENT_REFUNDED, "refund": refund}),
                    now,
                )
            logger.log_event(
                "payment_refunded", refund_id=refund.refund_id, refund_amount=refund_amount
            )
        return saved

    def issue_receipt(self, actor: Actor, payment_id: str) -> Receipt:
        """Read-only receipt for a completed payment."""
        payment = self.get_payment(payment_id)
        if actor.is_customer and payment.customer_id != actor.id:
            raise AuthorizationError("Not authorized to view this receipt", payment_id=payment.id)
        if payment.status != PAYMENT_COMPLETED or not payment.receipt.receipt_number:
            raise NotCompleted("Receipts are issued for completed payments only", status=payment.status)
        policy = self._get_policy(payment.policy_id)
        return Receipt(
            receipt_number=payment.receipt.receipt_number,
            payment_id=payment.payment_id,
            transaction_id=payment.transaction_id,
            policy_id=policy.id,
            policy_number=policy.policy_number,
            customer_id=payment.customer_id,
            payment_date=payment.payment_date,
            processed_date=payment.processed_date,
            amount=payment.amount,
            fees=payment.fees,
            taxes=payment.taxes,
            net_amount=payment.net_amount,
            currency=payment.currency,
            payment_method=payment.payment_method,
            description=payment.description,
        )

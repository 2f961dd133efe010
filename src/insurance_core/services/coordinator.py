"""Consistency coordinator: writes that span two entities commit or fail together.

Every cross-entity effect goes through one ``atomic()`` block, a single
SQLite transaction taken with BEGIN IMMEDIATE. Any exception raised inside
the block, including a version conflict discovered mid-operation, rolls back
every write made in it.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, TypeVar

from insurance_core.config.settings import get_concurrency_config
from insurance_core.db.constants import CLAIM_SUBMITTED, PAYMENT_COMPLETED
from insurance_core.db.database import get_connection
from insurance_core.db.repository import ClaimRepository, PaymentRepository, PolicyRepository
from insurance_core.exceptions import ConcurrentModification, LifecycleError, NotFound
from insurance_core.models.claim import Claim
from insurance_core.models.payment import Payment, PaymentType, ReceiptInfo
from insurance_core.models.policy import PaymentHistoryEntry, Policy
from insurance_core.observability import get_logger
from insurance_core.services.recurrence import next_due_date
from insurance_core.utils.retry import with_concurrency_retry

logger = get_logger(__name__)

T = TypeVar("T")


def generate_receipt_number(now: datetime) -> str:
    """RCP + last 8 digits of the millisecond clock + 4 random hex chars."""
    millis = str(int(now.timestamp() * 1000))[-8:]
    return f"RCP{millis}{uuid.uuid4().hex[:4].upper()}"


class ConsistencyCoordinator:
    """Owns the transaction boundary and the cross-entity write sequences."""

    def __init__(self, db_path: str | None = None):
        self._db_path = db_path
        self.policies = PolicyRepository(db_path)
        self.claims = ClaimRepository(db_path)
        self.payments = PaymentRepository(db_path)
        cfg = get_concurrency_config()
        self._retry = with_concurrency_retry(
            max_attempts=cfg["max_attempts"],
            min_wait=cfg["min_wait"],
            max_wait=cfg["max_wait"],
        )

    @contextmanager
    def atomic(self) -> Iterator[sqlite3.Connection]:
        """One transaction; commit on success, rollback on any exception."""
        with get_connection(self._db_path, immediate=True) as conn:
            yield conn

    def run_with_retry(self, operation: Callable[..., T], *args, **kwargs) -> T:
        """Run a read-validate-write ``operation``, retrying it on ConcurrentModification.

        The operation must re-read its entities on every attempt.
        """
        try:
            return self._retry(operation)(*args, **kwargs)
        except LifecycleError as e:
            logger.warning(
                "%s rejected: %s",
                getattr(operation, "__name__", "operation").lstrip("_"),
                e.message,
                extra={"extra_data": e.to_dict()},
            )
            raise

    # ------------------------------------------------------------------
    # Claim creation <-> policy claims history
    # ------------------------------------------------------------------

    def create_claim(self, claim: Claim, policy: Policy, now: datetime) -> Claim:
        """Insert ``claim`` and its policy back-reference in one transaction.

        ``policy`` is the version the caller validated against; the policy row
        is re-read under the write lock and must still be that version.
        """
        with self.atomic() as conn:
            current = self._require_policy(conn, policy.id)
            if current.version != policy.version:
                raise ConcurrentModification(
                    f"policy {policy.id} changed while filing a claim",
                    entity="policy",
                    entity_id=policy.id,
                )
            self.claims.insert(conn, claim)
            self.policies.add_claim_reference(conn, current.id, claim.id)
            self.policies.update(conn, current, now)
        logger.log_event(
            "claim_created",
            claim_id=claim.id,
            policy_id=policy.id,
            status=CLAIM_SUBMITTED,
        )
        return claim

    # ------------------------------------------------------------------
    # Payment completion <-> policy payment history / due date
    # ------------------------------------------------------------------

    def complete_payment(
        self, payment: Payment, policy: Policy, now: datetime
    ) -> tuple[Payment, Policy]:
        """Complete ``payment`` and apply its effects to ``policy`` atomically.

        Sets processed_date, assigns the receipt number once, appends the
        settlement to the policy history and, for premiums, advances
        next_payment_due by one period from the previous due date.
        """
        receipt_number = payment.receipt.receipt_number or generate_receipt_number(now)
        completed = payment.model_copy(
            update={
                "status": PAYMENT_COMPLETED,
                "processed_date": now,
                "receipt": ReceiptInfo(receipt_number=receipt_number),
            }
        )
        entry = PaymentHistoryEntry(
            amount=payment.amount,
            payment_date=payment.payment_date,
            payment_method=payment.payment_method.value,
            transaction_id=payment.transaction_id,
            status=PAYMENT_COMPLETED,
        )
        with self.atomic() as conn:
            saved = self.payments.update(conn, completed, now, require_unprocessed=True)
            updated_policy = self._apply_policy_payment(
                conn,
                policy,
                entry,
                advance=payment.payment_type == PaymentType.PREMIUM,
                now=now,
            )
        logger.log_event(
            "payment_completed",
            payment_id=saved.id,
            receipt_number=receipt_number,
            policy_id=policy.id,
            next_payment_due=updated_policy.next_payment_due,
        )
        return saved, updated_policy

    def record_policy_payment(
        self, policy: Policy, entry: PaymentHistoryEntry, now: datetime
    ) -> Policy:
        """Append a settled payment to ``policy`` and advance its due date."""
        with self.atomic() as conn:
            updated = self._apply_policy_payment(conn, policy, entry, advance=True, now=now)
        logger.log_event(
            "policy_payment_recorded",
            policy_id=policy.id,
            transaction_id=entry.transaction_id,
            next_payment_due=updated.next_payment_due,
        )
        return updated

    def _apply_policy_payment(
        self,
        conn: sqlite3.Connection,
        policy: Policy,
        entry: PaymentHistoryEntry,
        advance: bool,
        now: datetime,
    ) -> Policy:
        changes = {}
        if advance:
            # Anchored at the previous due date, not at ``now``
            changes["next_payment_due"] = next_due_date(
                policy.next_payment_due, policy.premium_frequency
            )
        self.policies.append_payment_history(conn, policy.id, entry)
        updated = self.policies.update(conn, policy.model_copy(update=changes), now)
        return updated.model_copy(
            update={"payment_history": [*policy.payment_history, entry]}
        )

    def _require_policy(self, conn: sqlite3.Connection, policy_id: str) -> Policy:
        policy = self.policies.get(policy_id, conn)
        if policy is None:
            raise NotFound(f"Policy not found: {policy_id}", entity="policy", entity_id=policy_id)
        return policy

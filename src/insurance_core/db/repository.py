"""Repositories for policies, claims and payments.

Writes take an open connection so the caller decides the transaction
boundary; every update is conditional on the version that was read and
raises ConcurrentModification when another writer got there first. Reads
open their own connection unless one is passed in.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from insurance_core.db.database import get_connection
from insurance_core.exceptions import ConcurrentModification, DuplicateNumber
from insurance_core.models.claim import Claim, StatusHistoryEntry
from insurance_core.models.payment import Payment
from insurance_core.models.policy import PaymentHistoryEntry, Policy


def generate_id() -> str:
    """Opaque primary key."""
    return uuid.uuid4().hex


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _dump_models(items) -> str:
    return _dumps([item.model_dump(mode="json") for item in items])


class _Repository:
    def __init__(self, db_path: str | None = None):
        self._db_path = db_path

    @contextmanager
    def _connection(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with get_connection(self._db_path) as c:
                yield c

    @staticmethod
    def _check_updated(cursor: sqlite3.Cursor, entity: str, entity_id: str, version: int) -> None:
        if cursor.rowcount == 0:
            raise ConcurrentModification(
                f"{entity} {entity_id} was modified concurrently (expected version {version})",
                entity=entity,
                entity_id=entity_id,
            )

    @staticmethod
    def _execute_unique(
        conn: sqlite3.Connection, sql: str, params: tuple, entity: str, number: str
    ) -> sqlite3.Cursor:
        """Execute a write whose generated numbers must be unique."""
        try:
            return conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise DuplicateNumber(
                f"Generated {entity} number {number} is already taken",
                entity=entity,
                number=number,
            ) from e


class PolicyRepository(_Repository):
    """Persistence for policies, their payment history and claim back-references."""

    def get(self, policy_id: str, conn: sqlite3.Connection | None = None) -> Policy | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM policies WHERE id = ?", (policy_id,)).fetchone()
            if row is None:
                return None
            history = c.execute(
                """
                SELECT amount, payment_date, payment_method, transaction_id, status
                FROM policy_payment_history WHERE policy_id = ? ORDER BY id ASC
                """,
                (policy_id,),
            ).fetchall()
            claims = c.execute(
                "SELECT claim_id FROM policy_claims WHERE policy_id = ? ORDER BY id ASC",
                (policy_id,),
            ).fetchall()
        return self._row_to_policy(row, history, claims)

    def insert(self, conn: sqlite3.Connection, policy: Policy) -> None:
        self._execute_unique(
            conn,
            """
            INSERT INTO policies (
                id, policy_number, policy_type, policy_name, description,
                coverage_amount, premium_amount, premium_frequency, duration_years,
                customer_id, agent_id, beneficiaries, start_date, end_date,
                next_payment_due, status, terms, exclusions, risk_category,
                is_active, version, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                policy.id,
                policy.policy_number,
                policy.policy_type.value,
                policy.policy_name,
                policy.description,
                policy.coverage_amount,
                policy.premium_amount,
                policy.premium_frequency.value,
                policy.duration_years,
                policy.customer_id,
                policy.agent_id,
                _dump_models(policy.beneficiaries),
                _iso(policy.start_date),
                _iso(policy.end_date),
                _iso(policy.next_payment_due),
                policy.status,
                policy.terms,
                _dumps(policy.exclusions),
                policy.risk_category.value,
                int(policy.is_active),
                policy.version,
                _iso(policy.created_at),
                _iso(policy.updated_at),
            ),
            "policy",
            policy.policy_number,
        )

    def update(self, conn: sqlite3.Connection, policy: Policy, now: datetime) -> Policy:
        """Write the mutable columns of ``policy`` if its version is still current."""
        cur = conn.execute(
            """
            UPDATE policies SET
                policy_name = ?, description = ?, coverage_amount = ?,
                premium_amount = ?, premium_frequency = ?, beneficiaries = ?,
                next_payment_due = ?, status = ?, terms = ?, exclusions = ?,
                risk_category = ?, is_active = ?,
                version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (
                policy.policy_name,
                policy.description,
                policy.coverage_amount,
                policy.premium_amount,
                policy.premium_frequency.value,
                _dump_models(policy.beneficiaries),
                _iso(policy.next_payment_due),
                policy.status,
                policy.terms,
                _dumps(policy.exclusions),
                policy.risk_category.value,
                int(policy.is_active),
                _iso(now),
                policy.id,
                policy.version,
            ),
        )
        self._check_updated(cur, "policy", policy.id, policy.version)
        return policy.model_copy(update={"version": policy.version + 1, "updated_at": now})

    def append_payment_history(
        self, conn: sqlite3.Connection, policy_id: str, entry: PaymentHistoryEntry
    ) -> None:
        conn.execute(
            """
            INSERT INTO policy_payment_history (
                policy_id, amount, payment_date, payment_method, transaction_id, status
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                policy_id,
                entry.amount,
                _iso(entry.payment_date),
                entry.payment_method,
                entry.transaction_id,
                entry.status,
            ),
        )

    def add_claim_reference(self, conn: sqlite3.Connection, policy_id: str, claim_id: str) -> None:
        conn.execute(
            "INSERT INTO policy_claims (policy_id, claim_id) VALUES (?, ?)",
            (policy_id, claim_id),
        )

    def count_claims(self, policy_id: str, conn: sqlite3.Connection | None = None) -> int:
        """Claims referencing the policy, counted from the claims table itself."""
        with self._connection(conn) as c:
            row = c.execute(
                "SELECT COUNT(*) AS n FROM claims WHERE policy_id = ?", (policy_id,)
            ).fetchone()
        return int(row["n"])

    @staticmethod
    def _row_to_policy(row: sqlite3.Row, history: list, claims: list) -> Policy:
        data = dict(row)
        data["beneficiaries"] = json.loads(data["beneficiaries"])
        data["exclusions"] = json.loads(data["exclusions"])
        data["is_active"] = bool(data["is_active"])
        data["payment_history"] = [dict(h) for h in history]
        data["claims_history"] = [c["claim_id"] for c in claims]
        return Policy.model_validate(data)


class ClaimRepository(_Repository):
    """Persistence for claims and their append-only status history."""

    def get(self, claim_id: str, conn: sqlite3.Connection | None = None) -> Claim | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM claims WHERE id = ?", (claim_id,)).fetchone()
            if row is None:
                return None
            history = self._fetch_history(c, claim_id)
        data = dict(row)
        data["witnesses"] = json.loads(data["witnesses"])
        data["investigation"] = json.loads(data["investigation"])
        data["documents"] = json.loads(data["documents"])
        data["status_history"] = history
        return Claim.model_validate(data)

    def get_status_history(self, claim_id: str) -> list[StatusHistoryEntry]:
        with get_connection(self._db_path) as c:
            rows = self._fetch_history(c, claim_id)
        return [StatusHistoryEntry.model_validate(r) for r in rows]

    @staticmethod
    def _fetch_history(conn: sqlite3.Connection, claim_id: str) -> list[dict[str, Any]]:
        rows = conn.execute(
            """
            SELECT status, actor_id, comment, reason, created_at AS timestamp
            FROM claim_status_history
            WHERE claim_id = ?
            ORDER BY id ASC
            """,
            (claim_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def insert(self, conn: sqlite3.Connection, claim: Claim) -> None:
        """Insert the claim row and its seeded history entries."""
        self._execute_unique(
            conn,
            """
            INSERT INTO claims (
                id, claim_number, policy_id, customer_id, claim_type, incident_date,
                claim_amount, approved_amount, rejection_reason, description,
                incident_location, witnesses, priority, status, investigation,
                assigned_to, documents, version, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                claim.id,
                claim.claim_number,
                claim.policy_id,
                claim.customer_id,
                claim.claim_type.value,
                _iso(claim.incident_date),
                claim.claim_amount,
                claim.approved_amount,
                claim.rejection_reason,
                claim.description,
                claim.incident_location,
                _dumps(claim.witnesses),
                claim.priority.value,
                claim.status,
                _dumps(claim.investigation.model_dump(mode="json")),
                claim.assigned_to,
                _dump_models(claim.documents),
                claim.version,
                _iso(claim.created_at),
                _iso(claim.updated_at),
            ),
            "claim",
            claim.claim_number,
        )
        for entry in claim.status_history:
            self.append_history(conn, claim.id, entry)

    def update(
        self,
        conn: sqlite3.Connection,
        claim: Claim,
        now: datetime,
        history_entry: StatusHistoryEntry | None = None,
    ) -> Claim:
        """Write the mutable columns of ``claim`` and append ``history_entry``, if any."""
        cur = conn.execute(
            """
            UPDATE claims SET
                claim_amount = ?, approved_amount = ?, rejection_reason = ?,
                description = ?, incident_location = ?, witnesses = ?, priority = ?,
                status = ?, investigation = ?, assigned_to = ?, documents = ?,
                version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (
                claim.claim_amount,
                claim.approved_amount,
                claim.rejection_reason,
                claim.description,
                claim.incident_location,
                _dumps(claim.witnesses),
                claim.priority.value,
                claim.status,
                _dumps(claim.investigation.model_dump(mode="json")),
                claim.assigned_to,
                _dump_models(claim.documents),
                _iso(now),
                claim.id,
                claim.version,
            ),
        )
        self._check_updated(cur, "claim", claim.id, claim.version)
        history = list(claim.status_history)
        if history_entry is not None:
            self.append_history(conn, claim.id, history_entry)
            history.append(history_entry)
        return claim.model_copy(
            update={
                "version": claim.version + 1,
                "updated_at": now,
                "status_history": history,
            }
        )

    def append_history(
        self, conn: sqlite3.Connection, claim_id: str, entry: StatusHistoryEntry
    ) -> None:
        conn.execute(
            """
            INSERT INTO claim_status_history (claim_id, status, actor_id, comment, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                claim_id,
                entry.status,
                entry.actor_id,
                entry.comment,
                entry.reason,
                _iso(entry.timestamp),
            ),
        )


class PaymentRepository(_Repository):
    """Persistence for payments."""

    def get(self, payment_id: str, conn: sqlite3.Connection | None = None) -> Payment | None:
        with self._connection(conn) as c:
            row = c.execute("SELECT * FROM payments WHERE id = ?", (payment_id,)).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["fees"] = json.loads(data["fees"])
        data["taxes"] = json.loads(data["taxes"])
        data["receipt"] = {"receipt_number": data.pop("receipt_number")}
        data["refund"] = json.loads(data["refund"]) if data["refund"] else None
        data.pop("net_amount", None)
        return Payment.model_validate(data)

    def insert(self, conn: sqlite3.Connection, payment: Payment) -> None:
        self._execute_unique(
            conn,
            """
            INSERT INTO payments (
                id, payment_id, transaction_id, gateway_transaction_id, policy_id,
                customer_id, payment_type, payment_method, currency, amount, fees,
                taxes, net_amount, status, payment_date, due_date, processed_date,
                description, receipt_number, refund, version, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.id,
                payment.payment_id,
                payment.transaction_id,
                payment.gateway_transaction_id,
                payment.policy_id,
                payment.customer_id,
                payment.payment_type.value,
                payment.payment_method.value,
                payment.currency.value,
                payment.amount,
                _dumps(payment.fees.model_dump(mode="json")),
                _dumps(payment.taxes.model_dump(mode="json")),
                payment.net_amount,
                payment.status,
                _iso(payment.payment_date),
                _iso(payment.due_date),
                _iso(payment.processed_date),
                payment.description,
                payment.receipt.receipt_number,
                _dumps(payment.refund.model_dump(mode="json")) if payment.refund else None,
                payment.version,
                _iso(payment.created_at),
                _iso(payment.updated_at),
            ),
            "payment",
            payment.payment_id,
        )

    def update(
        self,
        conn: sqlite3.Connection,
        payment: Payment,
        now: datetime,
        require_unprocessed: bool = False,
    ) -> Payment:
        """Write the mutable columns of ``payment`` if its version is still current.

        With ``require_unprocessed`` the write also requires that no other
        writer has set processed_date, which guards the completion side effects.
        """
        sql = """
            UPDATE payments SET
                gateway_transaction_id = ?, amount = ?, fees = ?, taxes = ?,
                net_amount = ?, status = ?, processed_date = ?, description = ?,
                receipt_number = ?, refund = ?,
                version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
        """
        if require_unprocessed:
            sql += " AND processed_date IS NULL"
        cur = self._execute_unique(
            conn,
            sql,
            (
                payment.gateway_transaction_id,
                payment.amount,
                _dumps(payment.fees.model_dump(mode="json")),
                _dumps(payment.taxes.model_dump(mode="json")),
                payment.net_amount,
                payment.status,
                _iso(payment.processed_date),
                payment.description,
                payment.receipt.receipt_number,
                _dumps(payment.refund.model_dump(mode="json")) if payment.refund else None,
                _iso(now),
                payment.id,
                payment.version,
            ),
            "receipt",
            payment.receipt.receipt_number or payment.payment_id,
        )
        self._check_updated(cur, "payment", payment.id, payment.version)
        return payment.model_copy(update={"version": payment.version + 1, "updated_at": now})

"""SQLite connection, transaction boundary and schema initialization."""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from insurance_core.config.settings import get_db_path, get_db_timeout

# Tracks which database paths have had schema applied (avoid running on every connection)
_schema_initialized: set[str] = set()
_schema_lock = threading.Lock()

SCHEMA_SQL = """
-- Policies (aggregate root for beneficiaries and payment history)
CREATE TABLE IF NOT EXISTS policies (
    id TEXT PRIMARY KEY,
    policy_number TEXT NOT NULL UNIQUE,
    policy_type TEXT NOT NULL,
    policy_name TEXT NOT NULL,
    description TEXT NOT NULL,
    coverage_amount REAL NOT NULL,
    premium_amount REAL NOT NULL,
    premium_frequency TEXT NOT NULL,
    duration_years INTEGER NOT NULL,
    customer_id TEXT NOT NULL,
    agent_id TEXT,
    beneficiaries TEXT NOT NULL DEFAULT '[]',
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    next_payment_due TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    terms TEXT NOT NULL,
    exclusions TEXT NOT NULL DEFAULT '[]',
    risk_category TEXT NOT NULL DEFAULT 'medium',
    is_active INTEGER NOT NULL DEFAULT 1,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Settled payment summaries owned by a policy (append-only)
CREATE TABLE IF NOT EXISTS policy_payment_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    policy_id TEXT NOT NULL,
    amount REAL NOT NULL,
    payment_date TEXT NOT NULL,
    payment_method TEXT NOT NULL,
    transaction_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'completed',
    FOREIGN KEY (policy_id) REFERENCES policies(id)
);

-- Claims
CREATE TABLE IF NOT EXISTS claims (
    id TEXT PRIMARY KEY,
    claim_number TEXT NOT NULL UNIQUE,
    policy_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    claim_type TEXT NOT NULL,
    incident_date TEXT NOT NULL,
    claim_amount REAL NOT NULL,
    approved_amount REAL,
    rejection_reason TEXT,
    description TEXT NOT NULL,
    incident_location TEXT,
    witnesses TEXT NOT NULL DEFAULT '[]',
    priority TEXT NOT NULL DEFAULT 'medium',
    status TEXT NOT NULL DEFAULT 'submitted',
    investigation TEXT NOT NULL DEFAULT '{}',
    assigned_to TEXT,
    documents TEXT NOT NULL DEFAULT '[]',
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (policy_id) REFERENCES policies(id)
);

-- Back-references from a policy to the claims filed against it
CREATE TABLE IF NOT EXISTS policy_claims (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    policy_id TEXT NOT NULL,
    claim_id TEXT NOT NULL UNIQUE,
    FOREIGN KEY (policy_id) REFERENCES policies(id),
    FOREIGN KEY (claim_id) REFERENCES claims(id)
);

-- Claim audit trail (append-only)
CREATE TABLE IF NOT EXISTS claim_status_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id TEXT NOT NULL,
    status TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    comment TEXT,
    reason TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (claim_id) REFERENCES claims(id)
);

-- Payments
CREATE TABLE IF NOT EXISTS payments (
    id TEXT PRIMARY KEY,
    payment_id TEXT NOT NULL UNIQUE,
    transaction_id TEXT NOT NULL UNIQUE,
    gateway_transaction_id TEXT,
    policy_id TEXT NOT NULL,
    customer_id TEXT NOT NULL,
    payment_type TEXT NOT NULL,
    payment_method TEXT NOT NULL,
    currency TEXT NOT NULL DEFAULT 'INR',
    amount REAL NOT NULL,
    fees TEXT NOT NULL DEFAULT '{}',
    taxes TEXT NOT NULL DEFAULT '{}',
    net_amount REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    payment_date TEXT NOT NULL,
    due_date TEXT,
    processed_date TEXT,
    description TEXT,
    receipt_number TEXT UNIQUE,
    refund TEXT,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (policy_id) REFERENCES policies(id)
);

CREATE INDEX IF NOT EXISTS idx_policies_customer_status ON policies(customer_id, status);
CREATE INDEX IF NOT EXISTS idx_policies_next_payment_due ON policies(next_payment_due);
CREATE INDEX IF NOT EXISTS idx_claims_policy ON claims(policy_id);
CREATE INDEX IF NOT EXISTS idx_claim_history_claim ON claim_status_history(claim_id);
CREATE INDEX IF NOT EXISTS idx_payments_policy_status ON payments(policy_id, status);
CREATE INDEX IF NOT EXISTS idx_payment_history_policy ON policy_payment_history(policy_id);

CREATE TRIGGER IF NOT EXISTS claim_status_history_no_update
BEFORE UPDATE ON claim_status_history
BEGIN
    SELECT RAISE(ABORT, 'claim_status_history is append-only');
END;

CREATE TRIGGER IF NOT EXISTS claim_status_history_no_delete
BEFORE DELETE ON claim_status_history
BEGIN
    SELECT RAISE(ABORT, 'claim_status_history is append-only');
END;

CREATE TRIGGER IF NOT EXISTS policy_payment_history_no_update
BEFORE UPDATE ON policy_payment_history
BEGIN
    SELECT RAISE(ABORT, 'policy_payment_history is append-only');
END;

CREATE TRIGGER IF NOT EXISTS policy_payment_history_no_delete
BEFORE DELETE ON policy_payment_history
BEGIN
    SELECT RAISE(ABORT, 'policy_payment_history is append-only');
END;
"""


def _ensure_parent(db_path: str) -> None:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def init_db(path: str | None = None) -> None:
    """Create tables, indexes and append-only triggers if they do not exist."""
    db_path = path or get_db_path()
    _ensure_parent(db_path)
    conn = sqlite3.connect(db_path, timeout=get_db_timeout())
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()
    with _schema_lock:
        _schema_initialized.add(db_path)


def _ensure_schema(db_path: str) -> None:
    """Run schema once per path. Thread-safe."""
    with _schema_lock:
        if db_path in _schema_initialized:
            return
    # Run init outside lock to avoid holding it during I/O
    init_db(db_path)


@contextmanager
def get_connection(path: str | None = None, immediate: bool = False):
    """Context manager yielding a connection inside one transaction.

    The transaction commits when the block exits normally and rolls back on
    any exception, including KeyboardInterrupt and other cancellations, so
    partially applied writes are never visible. ``immediate=True`` takes the
    write lock up front (``BEGIN IMMEDIATE``); lock waits are bounded by
    DB_TIMEOUT_SECONDS.
    """
    db_path = path or get_db_path()
    _ensure_parent(db_path)
    _ensure_schema(db_path)
    conn = sqlite3.connect(db_path, timeout=get_db_timeout(), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()

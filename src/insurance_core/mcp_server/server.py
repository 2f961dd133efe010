"""MCP server exposing the lifecycle operations via stdio transport.

Every tool takes the caller identity as ``actor_id``/``actor_role`` and
returns a JSON string. Engine errors come back as
``{"error": <code>, "message": ..., ...}`` instead of raising.
"""

import json
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from insurance_core.exceptions import LifecycleError
from insurance_core.models.common import Actor
from insurance_core.services import LifecycleEngine
from insurance_core.services.base import validate_input
from insurance_core.services.recurrence import next_due_date as _next_due_date

mcp = FastMCP("insurance-core", json_response=True)


def _actor(actor_id: str, actor_role: str) -> Actor:
    return validate_input(Actor, {"id": actor_id, "role": actor_role})


def _dump(result: Any) -> Any:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_dump(item) for item in result]
    return result


def _run(operation: Callable[[LifecycleEngine], Any]) -> str:
    """Run ``operation`` against a fresh engine and serialize the outcome."""
    try:
        result = operation(LifecycleEngine())
    except LifecycleError as e:
        return json.dumps(e.to_dict(), default=str)
    return json.dumps(_dump(result), default=str)


# ============================================================================
# POLICY TOOLS
# ============================================================================


@mcp.tool()
def create_policy(
    actor_id: str,
    actor_role: str,
    policy_type: str,
    policy_name: str,
    description: str,
    coverage_amount: float,
    premium_amount: float,
    duration_years: int,
    customer_id: str,
    terms: str,
    premium_frequency: str = "annual",
    start_date: str | None = None,
    agent_id: str | None = None,
    beneficiaries: list[dict] | None = None,
    exclusions: list[str] | None = None,
    risk_category: str = "medium",
) -> str:
    """Create a pending policy. Agents and admins only; beneficiaries must total 100%."""
    fields = {
        "policy_type": policy_type,
        "policy_name": policy_name,
        "description": description,
        "coverage_amount": coverage_amount,
        "premium_amount": premium_amount,
        "premium_frequency": premium_frequency,
        "duration_years": duration_years,
        "customer_id": customer_id,
        "agent_id": agent_id,
        "beneficiaries": beneficiaries or [],
        "start_date": start_date,
        "terms": terms,
        "exclusions": exclusions or [],
        "risk_category": risk_category,
    }
    return _run(lambda e: e.policies.create_policy(_actor(actor_id, actor_role), **fields))


@mcp.tool()
def get_policy(policy_id: str) -> str:
    """Fetch a policy with its payment history and claim references."""
    return _run(lambda e: e.policies.get_policy(policy_id))


@mcp.tool()
def update_policy(actor_id: str, actor_role: str, policy_id: str, changes: dict) -> str:
    """Edit policy fields. Coverage cannot change once claims exist."""
    return _run(
        lambda e: e.policies.update_fields(_actor(actor_id, actor_role), policy_id, **changes)
    )


@mcp.tool()
def update_policy_status(actor_id: str, actor_role: str, policy_id: str, new_status: str) -> str:
    """Move a policy along its status graph (pending, active, suspended, inactive, cancelled, expired)."""
    return _run(
        lambda e: e.policies.update_status(_actor(actor_id, actor_role), policy_id, new_status)
    )


@mcp.tool()
def cancel_policy(actor_id: str, actor_role: str, policy_id: str) -> str:
    """Soft-cancel a policy without claims. Admins only."""
    return _run(lambda e: e.policies.soft_cancel(_actor(actor_id, actor_role), policy_id))


@mcp.tool()
def record_policy_payment(
    actor_id: str,
    actor_role: str,
    policy_id: str,
    amount: float,
    payment_method: str,
    transaction_id: str,
) -> str:
    """Append a settled payment to a policy and advance its next due date."""
    return _run(
        lambda e: e.policies.record_payment(
            _actor(actor_id, actor_role), policy_id, amount, payment_method, transaction_id
        )
    )


# ============================================================================
# CLAIM TOOLS
# ============================================================================


@mcp.tool()
def file_claim(
    actor_id: str,
    actor_role: str,
    policy_id: str,
    claim_type: str,
    incident_date: str,
    claim_amount: float,
    description: str,
    incident_location: str | None = None,
    witnesses: list[str] | None = None,
    priority: str | None = None,
    documents: list[dict] | None = None,
) -> str:
    """File a claim against an active policy."""
    fields = {
        "policy_id": policy_id,
        "claim_type": claim_type,
        "incident_date": incident_date,
        "claim_amount": claim_amount,
        "description": description,
        "incident_location": incident_location,
        "witnesses": witnesses or [],
        "priority": priority,
        "documents": documents or [],
    }
    return _run(lambda e: e.claims.create_claim(_actor(actor_id, actor_role), **fields))


@mcp.tool()
def get_claim(claim_id: str) -> str:
    """Fetch a claim with its status history."""
    return _run(lambda e: e.claims.get_claim(claim_id))


@mcp.tool()
def get_claim_history(claim_id: str) -> str:
    """Status history of a claim, oldest first."""
    return _run(lambda e: e.claims.get_status_history(claim_id))


@mcp.tool()
def update_claim(actor_id: str, actor_role: str, claim_id: str, changes: dict) -> str:
    """Edit a claim while it is still submitted."""
    return _run(
        lambda e: e.claims.update_fields(_actor(actor_id, actor_role), claim_id, **changes)
    )


@mcp.tool()
def transition_claim_status(
    actor_id: str,
    actor_role: str,
    claim_id: str,
    new_status: str,
    comment: str | None = None,
    approved_amount: float | None = None,
    rejection_reason: str | None = None,
) -> str:
    """Move a claim forward. Approval requires approved_amount; only admins approve or reject."""
    return _run(
        lambda e: e.claims.transition_status(
            _actor(actor_id, actor_role),
            claim_id,
            new_status,
            comment=comment,
            approved_amount=approved_amount,
            rejection_reason=rejection_reason,
        )
    )


@mcp.tool()
def assign_claim(
    actor_id: str, actor_role: str, claim_id: str, assignee_id: str, assignee_role: str
) -> str:
    """Assign a claim to an agent or admin. Admins only."""
    return _run(
        lambda e: e.claims.assign(
            _actor(actor_id, actor_role), claim_id, _actor(assignee_id, assignee_role)
        )
    )


@mcp.tool()
def add_investigation_details(
    actor_id: str,
    actor_role: str,
    claim_id: str,
    findings: str | None = None,
    recommendation: str | None = None,
    notes: list[str] | None = None,
) -> str:
    """Record investigation findings; the claim moves to investigating."""
    return _run(
        lambda e: e.claims.add_investigation_details(
            _actor(actor_id, actor_role),
            claim_id,
            findings=findings,
            recommendation=recommendation,
            notes=notes,
        )
    )


@mcp.tool()
def append_claim_documents(
    actor_id: str, actor_role: str, claim_id: str, documents: list[dict]
) -> str:
    """Attach document references (name, url, document_type) to a claim."""
    return _run(
        lambda e: e.claims.append_documents(_actor(actor_id, actor_role), claim_id, documents)
    )


# ============================================================================
# PAYMENT TOOLS
# ============================================================================


@mcp.tool()
def create_payment(
    actor_id: str,
    actor_role: str,
    policy_id: str,
    amount: float,
    payment_method: str,
    payment_type: str = "premium",
    currency: str | None = None,
    description: str | None = None,
    due_date: str | None = None,
) -> str:
    """Create a pending payment; fees, taxes and net amount are computed."""
    return _run(
        lambda e: e.payments.create_payment(
            _actor(actor_id, actor_role),
            policy_id,
            amount,
            payment_method,
            payment_type=payment_type,
            currency=currency,
            description=description,
            due_date=due_date,
        )
    )


@mcp.tool()
def get_payment(payment_id: str) -> str:
    """Fetch a payment."""
    return _run(lambda e: e.payments.get_payment(payment_id))


@mcp.tool()
def update_payment_status(
    actor_id: str,
    actor_role: str,
    payment_id: str,
    new_status: str,
    gateway_transaction_id: str | None = None,
    failure_reason: str | None = None,
) -> str:
    """Move a payment along its status graph. Completing settles it on the policy."""
    return _run(
        lambda e: e.payments.update_status(
            _actor(actor_id, actor_role),
            payment_id,
            new_status,
            gateway_transaction_id=gateway_transaction_id,
            failure_reason=failure_reason,
        )
    )


@mcp.tool()
def process_refund(
    actor_id: str, actor_role: str, payment_id: str, refund_amount: float, reason: str | None = None
) -> str:
    """Refund a completed payment, up to its net amount. Admins only."""
    return _run(
        lambda e: e.payments.process_refund(
            _actor(actor_id, actor_role), payment_id, refund_amount, reason
        )
    )


@mcp.tool()
def issue_receipt(actor_id: str, actor_role: str, payment_id: str) -> str:
    """Receipt for a completed payment."""
    return _run(lambda e: e.payments.issue_receipt(_actor(actor_id, actor_role), payment_id))


# ============================================================================
# SCHEDULE TOOLS
# ============================================================================


@mcp.tool()
def next_due_date(anchor: str, frequency: str) -> str:
    """Due date one premium period after anchor (YYYY-MM-DD)."""
    from datetime import date

    try:
        anchor_date = date.fromisoformat(anchor)
    except ValueError:
        return json.dumps({"error": "validation_error", "message": f"Invalid date: {anchor}"})
    try:
        due = _next_due_date(anchor_date, frequency)
    except LifecycleError as e:
        return json.dumps(e.to_dict(), default=str)
    return json.dumps({"anchor": anchor, "frequency": frequency, "next_due_date": due.isoformat()})


def main() -> None:
    """Run the MCP server with stdio transport (default)."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

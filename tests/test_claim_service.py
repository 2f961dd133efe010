"""Tests for the claim lifecycle manager."""

import re
from datetime import date

import pytest

from conftest import claim_fields, policy_fields
from insurance_core.db.database import get_connection
from insurance_core.exceptions import (
    AmountExceedsCoverage,
    AuthorizationError,
    IncidentOutsideCoverage,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    PolicyNotActive,
    ValidationError,
)
from insurance_core.models import Actor, Role


def _history_statuses(engine, claim_id):
    return [entry.status for entry in engine.claims.get_status_history(claim_id)]


class TestCreateClaim:
    def test_creates_submitted_claim(self, engine, customer, active_policy, dispatcher):
        claim = engine.claims.create_claim(customer, **claim_fields(active_policy.id))
        assert claim.status == "submitted"
        assert re.fullmatch(r"CLM-2024-[0-9A-F]{8}", claim.claim_number)
        assert claim.customer_id == "cust-1"
        assert claim.priority.value == "medium"
        assert len(claim.status_history) == 1
        assert claim.status_history[0].comment == "Claim submitted"
        assert ("claim_submitted", "cust-1") in [(e[0], e[1]) for e in dispatcher.events]

    def test_policy_gains_back_reference(self, engine, customer, active_policy):
        claim = engine.claims.create_claim(customer, **claim_fields(active_policy.id))
        policy = engine.policies.get_policy(active_policy.id)
        assert policy.claims_history == [claim.id]
        assert policy.version == active_policy.version + 1

    def test_amount_exceeds_coverage_writes_nothing(self, engine, customer, active_policy, temp_db):
        """150000 against 100000 coverage fails with no claim and no history change."""
        with pytest.raises(AmountExceedsCoverage):
            engine.claims.create_claim(
                customer, **claim_fields(active_policy.id, claim_amount=150000)
            )
        policy = engine.policies.get_policy(active_policy.id)
        assert policy.claims_history == []
        assert policy.version == active_policy.version
        with get_connection(temp_db) as conn:
            assert conn.execute("SELECT COUNT(*) FROM claims").fetchone()[0] == 0
            assert conn.execute("SELECT COUNT(*) FROM claim_status_history").fetchone()[0] == 0

    def test_amount_equal_to_coverage_allowed(self, engine, customer, active_policy):
        claim = engine.claims.create_claim(
            customer, **claim_fields(active_policy.id, claim_amount=100000)
        )
        assert claim.claim_amount == 100000

    def test_policy_not_active(self, engine, customer, pending_policy):
        with pytest.raises(PolicyNotActive):
            engine.claims.create_claim(customer, **claim_fields(pending_policy.id))

    def test_incident_before_coverage(self, engine, customer, active_policy):
        with pytest.raises(IncidentOutsideCoverage):
            engine.claims.create_claim(
                customer, **claim_fields(active_policy.id, incident_date=date(2023, 12, 14))
            )

    def test_incident_on_start_date_allowed(self, engine, customer, active_policy):
        claim = engine.claims.create_claim(
            customer, **claim_fields(active_policy.id, incident_date=date(2023, 12, 15))
        )
        assert claim.incident_date == date(2023, 12, 15)

    def test_incident_in_future(self, engine, customer, active_policy):
        with pytest.raises(ValidationError):
            engine.claims.create_claim(
                customer, **claim_fields(active_policy.id, incident_date=date(2024, 1, 21))
            )

    def test_incident_after_policy_end(self, engine, customer, agent, admin):
        policy = engine.policies.create_policy(
            agent, **policy_fields(start_date=date(2020, 1, 1), duration_years=1)
        )
        engine.policies.update_status(admin, policy.id, "active")
        with pytest.raises(IncidentOutsideCoverage):
            engine.claims.create_claim(
                customer, **claim_fields(policy.id, incident_date=date(2021, 1, 2))
            )

    def test_other_customer_cannot_claim(self, engine, other_customer, active_policy):
        with pytest.raises(AuthorizationError):
            engine.claims.create_claim(other_customer, **claim_fields(active_policy.id))

    def test_staff_files_on_behalf_of_customer(self, engine, agent, active_policy):
        claim = engine.claims.create_claim(
            agent, **claim_fields(active_policy.id, priority="urgent")
        )
        assert claim.customer_id == "cust-1"
        assert claim.priority.value == "urgent"

    def test_customer_priority_ignored(self, engine, customer, active_policy):
        claim = engine.claims.create_claim(
            customer, **claim_fields(active_policy.id, priority="urgent")
        )
        assert claim.priority.value == "medium"

    def test_missing_policy(self, engine, customer):
        with pytest.raises(NotFound):
            engine.claims.create_claim(customer, **claim_fields("missing"))

    def test_description_too_short(self, engine, customer, active_policy):
        with pytest.raises(ValidationError):
            engine.claims.create_claim(customer, **claim_fields(active_policy.id, description="short"))


class TestTransitionStatus:
    def test_forward_path_to_closed(self, engine, agent, admin, submitted_claim):
        engine.claims.transition_status(agent, submitted_claim.id, "under_review")
        engine.claims.transition_status(agent, submitted_claim.id, "investigating")
        engine.claims.transition_status(
            admin, submitted_claim.id, "approved", approved_amount=20000
        )
        claim = engine.claims.transition_status(admin, submitted_claim.id, "closed")
        assert claim.status == "closed"
        assert _history_statuses(engine, submitted_claim.id) == [
            "submitted",
            "under_review",
            "investigating",
            "approved",
            "closed",
        ]

    def test_history_grows_by_one_per_transition(self, engine, agent, submitted_claim):
        before = len(engine.claims.get_status_history(submitted_claim.id))
        engine.claims.transition_status(agent, submitted_claim.id, "under_review", comment="Looking")
        history = engine.claims.get_status_history(submitted_claim.id)
        assert len(history) == before + 1
        assert history[-1].comment == "Looking"
        assert history[-1].actor_id == "agent-1"

    def test_customer_cannot_approve(self, engine, customer, submitted_claim):
        """Only admins approve; the customer gets AuthorizationError and nothing changes."""
        with pytest.raises(AuthorizationError):
            engine.claims.transition_status(
                customer, submitted_claim.id, "approved", approved_amount=1000
            )
        claim = engine.claims.get_claim(submitted_claim.id)
        assert claim.status == "submitted"
        assert len(claim.status_history) == 1

    def test_agent_cannot_reject(self, engine, agent, submitted_claim):
        engine.claims.transition_status(agent, submitted_claim.id, "under_review")
        with pytest.raises(AuthorizationError):
            engine.claims.transition_status(agent, submitted_claim.id, "rejected")

    def test_entering_review_assigns_actor(self, engine, agent, submitted_claim):
        claim = engine.claims.transition_status(agent, submitted_claim.id, "under_review")
        assert claim.assigned_to == "agent-1"

    def test_unrelated_agent_not_authorized(self, engine, other_agent, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.transition_status(other_agent, submitted_claim.id, "under_review")

    def test_assigned_agent_authorized(self, engine, admin, other_agent, submitted_claim):
        engine.claims.assign(admin, submitted_claim.id, other_agent)
        claim = engine.claims.transition_status(other_agent, submitted_claim.id, "investigating")
        assert claim.status == "investigating"

    def test_approval_requires_amount(self, engine, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        with pytest.raises(ValidationError):
            engine.claims.transition_status(admin, submitted_claim.id, "approved")

    def test_approved_amount_cannot_exceed_claim(self, engine, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        with pytest.raises(InvariantViolation):
            engine.claims.transition_status(
                admin, submitted_claim.id, "approved", approved_amount=25000.01
            )

    def test_approval_records_amount(self, engine, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        claim = engine.claims.transition_status(
            admin, submitted_claim.id, "approved", approved_amount=25000
        )
        assert claim.approved_amount == 25000
        assert engine.claims.get_claim(submitted_claim.id).approved_amount == 25000

    def test_rejection_records_reason(self, engine, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        claim = engine.claims.transition_status(
            admin, submitted_claim.id, "rejected", rejection_reason="Pre-existing condition"
        )
        assert claim.rejection_reason == "Pre-existing condition"
        assert claim.approved_amount is None
        assert claim.status_history[-1].reason == "Pre-existing condition"

    def test_cannot_skip_to_approved(self, engine, admin, submitted_claim):
        with pytest.raises(InvalidTransition):
            engine.claims.transition_status(
                admin, submitted_claim.id, "approved", approved_amount=100
            )

    def test_no_backward_moves(self, engine, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "investigating")
        with pytest.raises(InvalidTransition):
            engine.claims.transition_status(admin, submitted_claim.id, "under_review")

    def test_cannot_reenter_investigating(self, engine, agent, submitted_claim):
        engine.claims.transition_status(agent, submitted_claim.id, "investigating")
        with pytest.raises(InvalidTransition):
            engine.claims.transition_status(agent, submitted_claim.id, "investigating")
        assert _history_statuses(engine, submitted_claim.id) == ["submitted", "investigating"]

    def test_policy_agent_cannot_take_over_assigned_claim(
        self, engine, admin, agent, other_agent, submitted_claim
    ):
        engine.claims.assign(admin, submitted_claim.id, other_agent)
        engine.claims.transition_status(other_agent, submitted_claim.id, "investigating")
        with pytest.raises(InvalidTransition):
            engine.claims.transition_status(agent, submitted_claim.id, "investigating")
        assert engine.claims.get_claim(submitted_claim.id).assigned_to == "agent-2"

    @pytest.mark.parametrize("terminal_path", [["cancelled"], ["under_review", "rejected"]])
    def test_terminal_states_are_final(self, engine, admin, submitted_claim, terminal_path):
        for status in terminal_path:
            engine.claims.transition_status(admin, submitted_claim.id, status)
        with pytest.raises(InvalidTransition):
            engine.claims.transition_status(admin, submitted_claim.id, "investigating")

    def test_customer_cancels_own_submitted_claim(self, engine, customer, submitted_claim, dispatcher):
        claim = engine.claims.transition_status(customer, submitted_claim.id, "cancelled")
        assert claim.status == "cancelled"
        assert dispatcher.names()[-1] == "claim_status_changed"

    def test_customer_cannot_cancel_after_review(self, engine, customer, agent, submitted_claim):
        engine.claims.transition_status(agent, submitted_claim.id, "under_review")
        with pytest.raises(InvalidTransition):
            engine.claims.transition_status(customer, submitted_claim.id, "cancelled")

    def test_other_customer_cannot_cancel(self, engine, other_customer, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.transition_status(other_customer, submitted_claim.id, "cancelled")

    def test_unknown_status(self, engine, admin, submitted_claim):
        with pytest.raises(ValidationError):
            engine.claims.transition_status(admin, submitted_claim.id, "paid")


class TestAssign:
    def test_submitted_claim_moves_to_review(self, engine, admin, other_agent, submitted_claim, dispatcher):
        claim = engine.claims.assign(admin, submitted_claim.id, other_agent)
        assert claim.assigned_to == "agent-2"
        assert claim.status == "under_review"
        assert claim.status_history[-1].comment == "Assigned to agent-2"
        assert ("claim_assigned", "agent-2") in [(e[0], e[1]) for e in dispatcher.events]

    def test_reassignment_keeps_status(self, engine, admin, other_agent, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "investigating")
        claim = engine.claims.assign(admin, submitted_claim.id, other_agent)
        assert claim.status == "investigating"
        assert len(claim.status_history) == 3

    def test_admin_only(self, engine, agent, other_agent, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.assign(agent, submitted_claim.id, other_agent)

    def test_assignee_must_be_staff(self, engine, admin, customer, submitted_claim):
        with pytest.raises(ValidationError):
            engine.claims.assign(admin, submitted_claim.id, customer)

    def test_not_after_decision(self, engine, admin, other_agent, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        engine.claims.transition_status(admin, submitted_claim.id, "rejected")
        with pytest.raises(InvalidTransition):
            engine.claims.assign(admin, submitted_claim.id, other_agent)


class TestInvestigation:
    def test_first_call_sets_investigator(self, engine, admin, other_agent, submitted_claim, clock):
        engine.claims.assign(admin, submitted_claim.id, other_agent)
        claim = engine.claims.add_investigation_details(
            other_agent, submitted_claim.id, findings="Bills verified", notes=["Called hospital"]
        )
        assert claim.status == "investigating"
        assert claim.investigation.investigator_id == "agent-2"
        assert claim.investigation.start_date == clock.now
        assert claim.investigation.findings == "Bills verified"
        assert claim.investigation.notes == ["Called hospital"]

    def test_later_calls_keep_investigator_and_append_notes(
        self, engine, admin, other_agent, submitted_claim, clock
    ):
        engine.claims.assign(admin, submitted_claim.id, other_agent)
        engine.claims.add_investigation_details(other_agent, submitted_claim.id, notes=["first"])
        started = clock.now
        clock.set(2024, 1, 25)
        claim = engine.claims.add_investigation_details(
            admin, submitted_claim.id, recommendation="Approve", notes=["second"]
        )
        assert claim.investigation.investigator_id == "agent-2"
        assert claim.investigation.start_date == started
        assert claim.investigation.recommendation == "Approve"
        assert claim.investigation.notes == ["first", "second"]

    def test_each_call_appends_history(self, engine, admin, submitted_claim):
        engine.claims.add_investigation_details(admin, submitted_claim.id, notes=["a"])
        engine.claims.add_investigation_details(admin, submitted_claim.id, notes=["b"])
        assert _history_statuses(engine, submitted_claim.id) == [
            "submitted",
            "investigating",
            "investigating",
        ]

    def test_unassigned_agent_not_authorized(self, engine, agent, submitted_claim):
        """The policy's agent is not the investigator unless assigned."""
        with pytest.raises(AuthorizationError):
            engine.claims.add_investigation_details(agent, submitted_claim.id, notes=["x"])

    def test_customer_not_authorized(self, engine, customer, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.add_investigation_details(customer, submitted_claim.id, notes=["x"])

    def test_not_after_approval(self, engine, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        engine.claims.transition_status(
            admin, submitted_claim.id, "approved", approved_amount=1000
        )
        with pytest.raises(InvalidTransition):
            engine.claims.add_investigation_details(admin, submitted_claim.id, findings="late")


class TestUpdateFields:
    def test_customer_edits_submitted_claim(self, engine, customer, submitted_claim):
        claim = engine.claims.update_fields(
            customer, submitted_claim.id, claim_amount=30000, witnesses=["Neighbour"]
        )
        assert claim.claim_amount == 30000
        assert claim.witnesses == ["Neighbour"]
        assert len(claim.status_history) == 1

    def test_amount_still_bounded_by_coverage(self, engine, customer, submitted_claim):
        with pytest.raises(AmountExceedsCoverage):
            engine.claims.update_fields(customer, submitted_claim.id, claim_amount=100001)

    def test_customer_cannot_set_priority(self, engine, customer, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.update_fields(customer, submitted_claim.id, priority="high")

    def test_staff_sets_priority(self, engine, admin, submitted_claim):
        claim = engine.claims.update_fields(admin, submitted_claim.id, priority="high")
        assert claim.priority.value == "high"

    def test_only_while_submitted(self, engine, customer, admin, submitted_claim):
        engine.claims.transition_status(admin, submitted_claim.id, "under_review")
        with pytest.raises(InvalidTransition):
            engine.claims.update_fields(customer, submitted_claim.id, claim_amount=100)

    def test_other_customer_not_authorized(self, engine, other_customer, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.update_fields(other_customer, submitted_claim.id, claim_amount=100)


class TestDocuments:
    def test_append_documents(self, engine, customer, submitted_claim, clock):
        claim = engine.claims.append_documents(
            customer,
            submitted_claim.id,
            [{"name": "bill.pdf", "url": "https://files.example/bill.pdf", "document_type": "bill"}],
        )
        assert [d.name for d in claim.documents] == ["bill.pdf"]
        assert claim.documents[0].uploaded_at == clock.now
        assert claim.documents[0].verified is False

    def test_requires_a_document(self, engine, customer, submitted_claim):
        with pytest.raises(ValidationError):
            engine.claims.append_documents(customer, submitted_claim.id, [])

    def test_not_on_terminal_claim(self, engine, customer, submitted_claim):
        engine.claims.transition_status(customer, submitted_claim.id, "cancelled")
        with pytest.raises(InvalidTransition):
            engine.claims.append_documents(
                customer, submitted_claim.id, [{"name": "late.pdf", "url": "u"}]
            )

    def test_other_customer_not_authorized(self, engine, other_customer, submitted_claim):
        with pytest.raises(AuthorizationError):
            engine.claims.append_documents(
                other_customer, submitted_claim.id, [{"name": "x.pdf", "url": "u"}]
            )


class TestReads:
    def test_get_missing_claim(self, engine):
        with pytest.raises(NotFound):
            engine.claims.get_claim("missing")

    def test_history_of_missing_claim(self, engine):
        with pytest.raises(NotFound):
            engine.claims.get_status_history("missing")

    def test_claim_invariants_hold_after_creation(self, engine, customer, active_policy):
        claim = engine.claims.create_claim(customer, **claim_fields(active_policy.id))
        policy = engine.policies.get_policy(claim.policy_id)
        assert claim.claim_amount <= policy.coverage_amount
        assert policy.start_date <= claim.incident_date <= policy.end_date

    def test_actor_model_roles(self):
        assert Actor(id="x", role="admin").role == Role.ADMIN

"""Tests for the payment lifecycle manager."""

import re
from datetime import date

import pytest

from conftest import FIXED_NOW
from insurance_core.exceptions import (
    AuthorizationError,
    DuplicateNumber,
    InvalidTransition,
    NotCompleted,
    NotFound,
    PolicyNotActive,
    RefundExceedsAmount,
    ValidationError,
)
from insurance_core.services import payment_service
from insurance_core.services.payment_service import compute_charges


def _assert_net_consistent(payment):
    assert payment.net_amount == pytest.approx(
        payment.amount - payment.fees.total_fees - payment.taxes.total_tax
    )


class TestCreatePayment:
    def test_fees_and_taxes(self, engine, customer, active_policy):
        payment = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert payment.status == "pending"
        assert payment.fees.gateway_fee == pytest.approx(100.0)
        assert payment.taxes.gst == pytest.approx(918.0)
        assert payment.net_amount == pytest.approx(3982.0)
        assert payment.currency.value == "INR"
        _assert_net_consistent(payment)

    def test_identifiers(self, engine, customer, active_policy):
        payment = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert payment.payment_id.startswith("PAY")
        assert re.fullmatch(r"TXN\d+[A-Z0-9]{5}", payment.transaction_id)
        other = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert other.payment_id != payment.payment_id
        assert other.transaction_id != payment.transaction_id

    def test_identifiers_follow_engine_clock(self, engine, customer, active_policy):
        millis = int(FIXED_NOW.timestamp() * 1000)
        payment = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert payment.transaction_id.startswith(f"TXN{millis}")
        assert payment.payment_id.startswith(f"PAY{str(millis)[-8:]}")

    def test_taken_payment_id_is_regenerated(self, engine, customer, active_policy, monkeypatch):
        ids = iter(["PAY00000001AAAAAA", "PAY00000001AAAAAA", "PAY00000001BBBBBB"])
        monkeypatch.setattr(payment_service, "generate_payment_id", lambda now: next(ids))
        first = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        second = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert first.payment_id == "PAY00000001AAAAAA"
        assert second.payment_id == "PAY00000001BBBBBB"
        assert engine.payments.get_payment(second.id).payment_id == "PAY00000001BBBBBB"

    def test_persistent_id_collision_is_a_lifecycle_error(
        self, engine, customer, active_policy, monkeypatch
    ):
        monkeypatch.setattr(payment_service, "generate_payment_id", lambda now: "PAY00000001AAAAAA")
        engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        with pytest.raises(DuplicateNumber) as exc:
            engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert exc.value.to_dict()["error"] == "duplicate_number"

    def test_premium_due_date_defaults_to_policy_schedule(self, engine, customer, active_policy):
        payment = engine.payments.create_payment(customer, active_policy.id, 2500, "upi")
        assert payment.due_date == date(2024, 1, 15)

    def test_non_premium_has_no_default_due_date(self, engine, admin, active_policy):
        payment = engine.payments.create_payment(
            admin, active_policy.id, 250, "cash", payment_type="late_fee"
        )
        assert payment.due_date is None

    def test_rates_from_configuration(self, engine, customer, active_policy, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY_FEE_RATE", "0")
        monkeypatch.setenv("PAYMENT_GST_RATE", "0")
        payment = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        assert payment.net_amount == pytest.approx(5000.0)

    def test_rounding_to_two_places(self):
        fees, taxes = compute_charges(333.33, {"gateway_fee_rate": 0.02, "gst_rate": 0.18})
        assert fees.gateway_fee == pytest.approx(6.67)
        assert taxes.gst == pytest.approx(61.2)

    def test_other_customer_not_authorized(self, engine, other_customer, active_policy):
        with pytest.raises(AuthorizationError):
            engine.payments.create_payment(other_customer, active_policy.id, 5000, "upi")

    def test_invalid_amount(self, engine, customer, active_policy):
        with pytest.raises(ValidationError):
            engine.payments.create_payment(customer, active_policy.id, -1, "upi")

    def test_invalid_method(self, engine, customer, active_policy):
        with pytest.raises(ValidationError):
            engine.payments.create_payment(customer, active_policy.id, 100, "barter")

    def test_cancelled_policy(self, engine, admin, active_policy):
        engine.policies.soft_cancel(admin, active_policy.id)
        with pytest.raises(PolicyNotActive):
            engine.payments.create_payment(admin, active_policy.id, 100, "upi")

    def test_missing_policy(self, engine, admin):
        with pytest.raises(NotFound):
            engine.payments.create_payment(admin, "missing", 100, "upi")


class TestCompletion:
    def test_due_date_anchored_to_previous_due_date(self, engine, admin, pending_payment, clock):
        """Monthly, due 2024-01-15, completed on 2024-01-20 -> next due 2024-02-15."""
        assert clock.now.date() == date(2024, 1, 20)
        payment = engine.payments.update_status(admin, pending_payment.id, "completed")
        assert payment.status == "completed"
        assert payment.processed_date == clock.now
        policy = engine.policies.get_policy(payment.policy_id)
        assert policy.next_payment_due == date(2024, 2, 15)
        assert len(policy.payment_history) == 1
        assert policy.payment_history[0].transaction_id == payment.transaction_id
        assert policy.payment_history[0].amount == pytest.approx(5000)

    def test_receipt_number_assigned(self, engine, admin, pending_payment):
        payment = engine.payments.update_status(admin, pending_payment.id, "completed")
        assert re.fullmatch(r"RCP\d{8}[0-9A-F]{4}", payment.receipt.receipt_number)

    def test_second_completion_is_noop(self, engine, admin, pending_payment, dispatcher):
        first = engine.payments.update_status(admin, pending_payment.id, "completed")
        second = engine.payments.update_status(admin, pending_payment.id, "completed")
        assert second.receipt.receipt_number == first.receipt.receipt_number
        assert second.version == first.version
        policy = engine.policies.get_policy(pending_payment.policy_id)
        assert policy.next_payment_due == date(2024, 2, 15)
        assert len(policy.payment_history) == 1
        assert dispatcher.names().count("payment_completed") == 1

    def test_via_processing(self, engine, admin, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "processing")
        payment = engine.payments.update_status(
            admin, pending_payment.id, "completed", gateway_transaction_id="GW-123"
        )
        assert payment.gateway_transaction_id == "GW-123"
        _assert_net_consistent(payment)

    def test_non_premium_does_not_advance_schedule(self, engine, admin, active_policy):
        fee = engine.payments.create_payment(admin, active_policy.id, 250, "cash", payment_type="penalty")
        engine.payments.update_status(admin, fee.id, "completed")
        policy = engine.policies.get_policy(active_policy.id)
        assert policy.next_payment_due == date(2024, 1, 15)
        assert len(policy.payment_history) == 1

    def test_admin_only(self, engine, customer, pending_payment):
        with pytest.raises(AuthorizationError):
            engine.payments.update_status(customer, pending_payment.id, "completed")


class TestStatusGraph:
    def test_failure_reason_appended_to_description(self, engine, admin, customer, active_policy):
        payment = engine.payments.create_payment(
            customer, active_policy.id, 100, "credit_card", description="January premium"
        )
        failed = engine.payments.update_status(
            admin, payment.id, "failed", failure_reason="Card declined"
        )
        assert failed.status == "failed"
        assert failed.description == "January premium | Failure: Card declined"

    def test_failed_is_terminal(self, engine, admin, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "failed")
        with pytest.raises(InvalidTransition):
            engine.payments.update_status(admin, pending_payment.id, "completed")

    def test_refunded_only_via_process_refund(self, engine, admin, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        with pytest.raises(InvalidTransition):
            engine.payments.update_status(admin, pending_payment.id, "refunded")

    def test_completed_cannot_fail(self, engine, admin, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        with pytest.raises(InvalidTransition):
            engine.payments.update_status(admin, pending_payment.id, "failed")

    def test_unknown_status(self, engine, admin, pending_payment):
        with pytest.raises(ValidationError):
            engine.payments.update_status(admin, pending_payment.id, "bounced")

    def test_missing_payment(self, engine, admin):
        with pytest.raises(NotFound):
            engine.payments.update_status(admin, "missing", "completed")


class TestRefund:
    def test_refund_exceeding_net_amount(self, engine, admin, customer, active_policy, monkeypatch):
        """Refund of 6000 against net 5000 fails and the payment stays completed."""
        monkeypatch.setenv("PAYMENT_GATEWAY_FEE_RATE", "0")
        monkeypatch.setenv("PAYMENT_GST_RATE", "0")
        payment = engine.payments.create_payment(customer, active_policy.id, 5000, "upi")
        engine.payments.update_status(admin, payment.id, "completed")
        with pytest.raises(RefundExceedsAmount):
            engine.payments.process_refund(admin, payment.id, 6000, "Duplicate charge")
        loaded = engine.payments.get_payment(payment.id)
        assert loaded.status == "completed"
        assert loaded.refund is None

    def test_refund_up_to_net_amount(self, engine, admin, pending_payment, dispatcher):
        completed = engine.payments.update_status(admin, pending_payment.id, "completed")
        refunded = engine.payments.process_refund(
            admin, pending_payment.id, completed.net_amount, "Policy cancelled"
        )
        assert refunded.status == "refunded"
        assert refunded.refund.refund_amount == pytest.approx(3982.0)
        assert refunded.refund.refund_status == "processing"
        assert refunded.refund.refund_id.startswith("REF")
        assert refunded.refund.refund_reason == "Policy cancelled"
        assert dispatcher.names()[-1] == "payment_refunded"
        _assert_net_consistent(refunded)

    def test_not_completed(self, engine, admin, pending_payment):
        with pytest.raises(NotCompleted):
            engine.payments.process_refund(admin, pending_payment.id, 10, "Too early")

    def test_refund_is_final(self, engine, admin, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        engine.payments.process_refund(admin, pending_payment.id, 10, "Partial")
        with pytest.raises(NotCompleted):
            engine.payments.process_refund(admin, pending_payment.id, 10, "Again")

    def test_refunded_payment_cannot_be_completed_again(
        self, engine, admin, pending_payment, dispatcher
    ):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        engine.payments.process_refund(admin, pending_payment.id, 100, "Partial")
        with pytest.raises(InvalidTransition):
            engine.payments.update_status(admin, pending_payment.id, "completed")
        assert engine.payments.get_payment(pending_payment.id).status == "refunded"
        assert dispatcher.names().count("payment_completed") == 1

    def test_admin_only(self, engine, agent, pending_payment):
        with pytest.raises(AuthorizationError):
            engine.payments.process_refund(agent, pending_payment.id, 10, "No")

    def test_positive_amount(self, engine, admin, pending_payment):
        with pytest.raises(ValidationError):
            engine.payments.process_refund(admin, pending_payment.id, 0, "Zero")


class TestReceipt:
    def test_issue_receipt(self, engine, admin, customer, pending_payment, active_policy):
        completed = engine.payments.update_status(admin, pending_payment.id, "completed")
        receipt = engine.payments.issue_receipt(customer, pending_payment.id)
        assert receipt.receipt_number == completed.receipt.receipt_number
        assert receipt.policy_number == active_policy.policy_number
        assert receipt.net_amount == pytest.approx(completed.net_amount)
        assert receipt.processed_date == completed.processed_date

    def test_receipt_is_read_only(self, engine, admin, customer, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        before = engine.payments.get_payment(pending_payment.id)
        engine.payments.issue_receipt(customer, pending_payment.id)
        assert engine.payments.get_payment(pending_payment.id).version == before.version

    def test_pending_payment_has_no_receipt(self, engine, customer, pending_payment):
        with pytest.raises(NotCompleted):
            engine.payments.issue_receipt(customer, pending_payment.id)

    def test_other_customer_not_authorized(self, engine, admin, other_customer, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        with pytest.raises(AuthorizationError):
            engine.payments.issue_receipt(other_customer, pending_payment.id)


class TestOverdue:
    def test_due_today_is_not_overdue(self, pending_payment):
        assert pending_payment.due_date == date(2024, 1, 15)
        assert not pending_payment.is_overdue(date(2024, 1, 15))
        assert pending_payment.days_overdue(date(2024, 1, 15)) == 0

    def test_day_after_due_date(self, pending_payment):
        assert pending_payment.is_overdue(date(2024, 1, 16))
        assert pending_payment.days_overdue(date(2024, 1, 16)) == 1

    def test_days_overdue_uses_engine_clock(self, engine, pending_payment, clock):
        assert engine.payments.days_overdue(pending_payment.id) == 5
        clock.set(2024, 1, 15)
        assert engine.payments.days_overdue(pending_payment.id) == 0

    def test_settled_payment_is_never_overdue(self, engine, admin, pending_payment):
        engine.payments.update_status(admin, pending_payment.id, "completed")
        assert engine.payments.days_overdue(pending_payment.id) == 0
        engine.payments.process_refund(admin, pending_payment.id, 100, "Partial")
        assert not engine.payments.get_payment(pending_payment.id).is_overdue(date(2024, 3, 1))

    def test_without_due_date(self, engine, admin, active_policy):
        payment = engine.payments.create_payment(
            admin, active_policy.id, 250, "cash", payment_type="late_fee"
        )
        assert not payment.is_overdue(date(2030, 1, 1))

    def test_payment_age(self, pending_payment):
        assert pending_payment.payment_age(date(2024, 1, 20)) == 0
        assert pending_payment.payment_age(date(2024, 1, 22)) == 2

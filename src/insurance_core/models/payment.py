"""Pydantic models for payments, their fees, taxes, receipts and refunds."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field


class PaymentType(str, Enum):
    PREMIUM = "premium"
    CLAIM_SETTLEMENT = "claim_settlement"
    REFUND = "refund"
    PENALTY = "penalty"
    LATE_FEE = "late_fee"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    NET_BANKING = "net_banking"
    WALLET = "wallet"
    CASH = "cash"
    CHEQUE = "cheque"


class Currency(str, Enum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


def round_money(value: float) -> float:
    return round(float(value), 2)


class Fees(BaseModel):
    gateway_fee: float = 0.0
    processing_fee: float = 0.0
    late_fee: float = 0.0

    @computed_field
    @property
    def total_fees(self) -> float:
        return round_money(self.gateway_fee + self.processing_fee + self.late_fee)


class Taxes(BaseModel):
    gst: float = 0.0
    service_tax: float = 0.0

    @computed_field
    @property
    def total_tax(self) -> float:
        return round_money(self.gst + self.service_tax)


class ReceiptInfo(BaseModel):
    receipt_number: Optional[str] = None


class Refund(BaseModel):
    refund_id: str
    refund_amount: float
    refund_date: datetime
    refund_reason: Optional[str] = None
    refund_status: str = "processing"


class PaymentCreate(BaseModel):
    """Input payload for a new payment."""

    policy_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, description="Gross amount")
    payment_method: PaymentMethod
    payment_type: PaymentType = PaymentType.PREMIUM
    currency: Optional[Currency] = None
    description: Optional[str] = None
    due_date: Optional[date] = None


class Payment(BaseModel):
    """Persisted payment aggregate. ``net_amount`` is always derived."""

    id: str
    payment_id: str
    transaction_id: str
    gateway_transaction_id: Optional[str] = None
    policy_id: str
    customer_id: str
    payment_type: PaymentType
    payment_method: PaymentMethod
    currency: Currency = Currency.INR
    amount: float
    fees: Fees = Field(default_factory=Fees)
    taxes: Taxes = Field(default_factory=Taxes)
    status: str
    payment_date: datetime
    due_date: Optional[date] = None
    processed_date: Optional[datetime] = None
    description: Optional[str] = None
    receipt: ReceiptInfo = Field(default_factory=ReceiptInfo)
    refund: Optional[Refund] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def net_amount(self) -> float:
        return round_money(self.amount - self.fees.total_fees - self.taxes.total_tax)

    def is_overdue(self, today: date) -> bool:
        """Unsettled and past its due date. A payment due today is not yet overdue."""
        if self.due_date is None or self.processed_date is not None:
            return False
        return today > self.due_date

    def days_overdue(self, today: date) -> int:
        return (today - self.due_date).days if self.is_overdue(today) else 0

    def payment_age(self, today: date) -> int:
        """Whole days since the payment was created."""
        return (today - self.payment_date.date()).days


class Receipt(BaseModel):
    """Read-only receipt derived from a completed payment."""

    receipt_number: str
    payment_id: str
    transaction_id: str
    policy_id: str
    policy_number: str
    customer_id: str
    payment_date: datetime
    processed_date: datetime
    amount: float
    fees: Fees
    taxes: Taxes
    net_amount: float
    currency: Currency
    payment_method: PaymentMethod
    description: Optional[str] = None

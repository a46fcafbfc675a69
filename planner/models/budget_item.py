from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class PaymentStatusEnum(str, Enum):
    DEPOSIT_PAID = "deposit_paid"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    UNPAID = "unpaid"


class BudgetItemModel(BaseModel):
    """
    A budget line of the wedding.

    Amounts are stored in cents to avoid floating point rounding.
    """

    # Immutable fields
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    id: UUID = Field(default_factory=uuid4, frozen=True)
    # Editable fields
    actual_amount: int = Field(default=0, ge=0)
    category: str = Field(min_length=1)
    deposit_amount: int | None = Field(default=None, ge=0)
    deposit_due_date: datetime | None = None
    estimated_amount: int = Field(default=0, ge=0)
    final_payment_due_date: datetime | None = None
    notes: str | None = None
    paid_amount: int = Field(default=0, ge=0)
    payment_status: PaymentStatusEnum = PaymentStatusEnum.UNPAID
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    vendor_id: str | None = None

# backend/doccost/domain/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple


class ModelValidationError(ValueError):
    """Raised when domain models fail basic validation."""


class ValidationError(ValueError):
    """Raised when user input is rejected; the message is shown to the user."""


class DuplicatePayerError(ValidationError):
    """Raised when a payer name already exists in the batch."""


SOURCE_MANUAL = "manual"
SOURCE_UPLOADED = "uploaded"
SOURCE_KINDS = (SOURCE_MANUAL, SOURCE_UPLOADED)

STATUS_PENDING = "PENDING"
STATUS_PAID = "PAID"
PAYMENT_STATUSES = (STATUS_PENDING, STATUS_PAID)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Document:
    """
    A document being priced.
    cost_cents is page_count * price per page at the time it was computed.
    """
    id: str
    name: str
    page_count: int
    cost_cents: int
    upload_date: datetime
    source_kind: str = SOURCE_UPLOADED

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ModelValidationError("Document.id must be a non-empty string")
        if not isinstance(self.name, str) or not self.name.strip():
            raise ModelValidationError("Document.name must be a non-empty string")
        if not _is_int(self.page_count) or self.page_count < 1:
            raise ModelValidationError("Document.page_count must be an int >= 1")
        if not _is_int(self.cost_cents) or self.cost_cents < 0:
            raise ModelValidationError("Document.cost_cents must be an int >= 0")
        if not isinstance(self.upload_date, datetime):
            raise ModelValidationError("Document.upload_date must be a datetime")
        if self.source_kind not in SOURCE_KINDS:
            raise ModelValidationError(f"Document.source_kind must be one of {SOURCE_KINDS}")


@dataclass(frozen=True)
class Summary:
    total_documents: int
    total_pages: int
    total_cost_cents: int


@dataclass(frozen=True)
class Batch:
    """
    A saved snapshot of documents, price and aggregate totals.
    """
    id: str
    user_id: str
    total_documents: int
    total_pages: int
    total_cost_cents: int
    price_per_page_cents: int
    created_at: datetime
    payment_status: str = STATUS_PENDING

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ModelValidationError("Batch.id must be a non-empty string")
        for name in ("total_documents", "total_pages", "total_cost_cents", "price_per_page_cents"):
            value = getattr(self, name)
            if not _is_int(value) or value < 0:
                raise ModelValidationError(f"Batch.{name} must be an int >= 0")
        if self.payment_status not in PAYMENT_STATUSES:
            raise ModelValidationError(f"Batch.payment_status must be one of {PAYMENT_STATUSES}")


@dataclass(frozen=True)
class PaymentShare:
    """
    A named payer's portion of a batch.

    amount_to_pay_cents is a running balance: partial payments reduce it and an
    overpayment leaves it negative (a credit).
    """
    id: str
    batch_id: str
    person_name: str
    amount_to_pay_cents: int
    is_paid: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ModelValidationError("PaymentShare.id must be a non-empty string")
        if not isinstance(self.person_name, str) or not self.person_name.strip():
            raise ModelValidationError("PaymentShare.person_name must be a non-empty string")
        if not _is_int(self.amount_to_pay_cents):
            raise ModelValidationError("PaymentShare.amount_to_pay_cents must be an int")
        if not isinstance(self.is_paid, bool):
            raise ModelValidationError("PaymentShare.is_paid must be a bool")


@dataclass(frozen=True)
class PaymentSummary:
    total_paid_cents: int
    total_unpaid_cents: int
    total_amount_cents: int


@dataclass(frozen=True)
class UnpaidBatchLine:
    batch_id: str
    share_id: str
    amount_cents: int
    date: datetime


@dataclass(frozen=True)
class UnpaidPerson:
    name: str
    total_unpaid_cents: int
    batches: Tuple[UnpaidBatchLine, ...] = ()


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: str


@dataclass(frozen=True)
class IntakeError:
    filename: str
    message: str


@dataclass(frozen=True)
class IntakeResult:
    documents: List[Document] = field(default_factory=list)
    errors: List[IntakeError] = field(default_factory=list)

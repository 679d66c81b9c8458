# backend/doccost/domain/reconciler.py
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from doccost.domain.models import (
    STATUS_PAID,
    Batch,
    Document,
    DuplicatePayerError,
    PaymentShare,
    PaymentSummary,
    Summary,
    UnpaidBatchLine,
    UnpaidPerson,
    ValidationError,
)
from doccost.domain.money import round_div_cents


def document_cost_cents(page_count: int, price_per_page_cents: int) -> int:
    return page_count * price_per_page_cents


def reprice_documents(documents: Sequence[Document], price_per_page_cents: int) -> List[Document]:
    """
    Return copies of documents with cost recomputed at the given price.
    """
    return [
        replace(doc, cost_cents=document_cost_cents(doc.page_count, price_per_page_cents))
        for doc in documents
    ]


def recompute_summary(documents: Sequence[Document], price_per_page_cents: int) -> Summary:
    """
    Fold documents into totals.

    Cost is recomputed from page_count * price instead of summing the stored
    per-document cost, so a stale cost never leaks into the total.
    """
    total_pages = 0
    total_cost = 0
    for doc in documents:
        total_pages += doc.page_count
        total_cost += document_cost_cents(doc.page_count, price_per_page_cents)
    return Summary(
        total_documents=len(documents),
        total_pages=total_pages,
        total_cost_cents=total_cost,
    )


def amount_per_payer(total_cost_cents: int, payer_count: int) -> int:
    return round_div_cents(total_cost_cents, max(1, payer_count))


def redistribute(payers: Sequence[PaymentShare], total_cost_cents: int) -> List[PaymentShare]:
    """
    Overwrite every payer's amount with an even share of the total.

      amount = round2(total / n)

    is_paid is left untouched even though the amount owed changes.
    An empty payer list yields an empty result without dividing.
    """
    if not payers:
        return []

    amount = amount_per_payer(total_cost_cents, len(payers))
    return [replace(p, amount_to_pay_cents=amount) for p in payers]


def _normalize_name(name: str) -> str:
    return name.strip().lower()


def add_payer(
    name: str,
    payers: Sequence[PaymentShare],
    total_cost_cents: int,
    *,
    batch_id: str = "",
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> List[PaymentShare]:
    """
    Append a new unpaid payer and redistribute the total over everyone.

    Empty names and names already present (case-insensitive, trimmed) are
    rejected without touching the input.
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Please enter a name")

    key = _normalize_name(name)
    if any(_normalize_name(p.person_name) == key for p in payers):
        raise DuplicatePayerError("This person is already in the list")

    new_payer = PaymentShare(
        id=id_factory(),
        batch_id=batch_id,
        person_name=name.strip(),
        amount_to_pay_cents=0,
        is_paid=False,
        created_at=datetime.now(timezone.utc),
    )
    return redistribute([*payers, new_payer], total_cost_cents)


def remove_payer(payer_id: str, payers: Sequence[PaymentShare], total_cost_cents: int) -> List[PaymentShare]:
    remaining = [p for p in payers if p.id != payer_id]
    return redistribute(remaining, total_cost_cents)


def record_partial_payment(payer: PaymentShare, amount_paid_cents: int) -> PaymentShare:
    """
    Reduce a payer's running balance.

    The balance is not clamped: paying more than owed leaves a negative amount,
    which is kept as a credit.
    """
    if not isinstance(amount_paid_cents, int) or amount_paid_cents <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    new_amount = payer.amount_to_pay_cents - amount_paid_cents
    return replace(payer, amount_to_pay_cents=new_amount, is_paid=new_amount <= 0)


def toggle_paid(payer: PaymentShare) -> PaymentShare:
    return replace(payer, is_paid=not payer.is_paid)


def mark_all_paid(shares: Sequence[PaymentShare], share_ids: Iterable[str]) -> List[PaymentShare]:
    wanted = set(share_ids)
    return [replace(s, is_paid=True) if s.id in wanted else s for s in shares]


def summarize_shares(shares: Iterable[PaymentShare]) -> PaymentSummary:
    paid = 0
    unpaid = 0
    for share in shares:
        if share.is_paid:
            paid += share.amount_to_pay_cents
        else:
            unpaid += share.amount_to_pay_cents
    return PaymentSummary(total_paid_cents=paid, total_unpaid_cents=unpaid, total_amount_cents=paid + unpaid)


def summarize_batches(batches: Iterable[Batch]) -> PaymentSummary:
    """
    Paid/unpaid totals over whole batches, keyed by payment_status.
    """
    paid = 0
    unpaid = 0
    for batch in batches:
        if batch.payment_status == STATUS_PAID:
            paid += batch.total_cost_cents
        else:
            unpaid += batch.total_cost_cents
    return PaymentSummary(total_paid_cents=paid, total_unpaid_cents=unpaid, total_amount_cents=paid + unpaid)


def unpaid_by_person(batches: Sequence[Batch], shares: Iterable[PaymentShare]) -> List[UnpaidPerson]:
    """
    Group unpaid shares by person name across batches.

    Shares whose batch is not in `batches` are ignored. The result is sorted by
    total unpaid, largest first; ties keep first-seen order.
    """
    batches_by_id: Dict[str, Batch] = {b.id: b for b in batches}
    totals: Dict[str, int] = {}
    lines: Dict[str, List[UnpaidBatchLine]] = {}

    for share in shares:
        if share.is_paid:
            continue
        batch = batches_by_id.get(share.batch_id)
        if batch is None:
            continue

        totals[share.person_name] = totals.get(share.person_name, 0) + share.amount_to_pay_cents
        lines.setdefault(share.person_name, []).append(
            UnpaidBatchLine(
                batch_id=batch.id,
                share_id=share.id,
                amount_cents=share.amount_to_pay_cents,
                date=batch.created_at,
            )
        )

    people = [
        UnpaidPerson(name=name, total_unpaid_cents=total, batches=tuple(lines[name]))
        for name, total in totals.items()
    ]
    people.sort(key=lambda p: p.total_unpaid_cents, reverse=True)
    return people


def is_fully_paid(shares: Sequence[PaymentShare]) -> bool:
    return bool(shares) and all(s.is_paid for s in shares)


def promote_batch_status(batch: Batch, shares: Sequence[PaymentShare]) -> Optional[Batch]:
    """
    Return the batch flipped to PAID when all of its shares are paid.

    Returns None when nothing changes. Promotion only goes one way: a PAID
    batch is never moved back to PENDING here.
    """
    if batch.payment_status == STATUS_PAID:
        return None
    own_shares = [s for s in shares if s.batch_id == batch.id]
    if not is_fully_paid(own_shares):
        return None
    return replace(batch, payment_status=STATUS_PAID)

# backend/tests/test_reconciler.py
from datetime import datetime, timezone

import pytest

from doccost.domain.models import (
    STATUS_PAID,
    STATUS_PENDING,
    Batch,
    Document,
    DuplicatePayerError,
    PaymentShare,
    ValidationError,
)
from doccost.domain.reconciler import (
    add_payer,
    is_fully_paid,
    mark_all_paid,
    promote_batch_status,
    recompute_summary,
    record_partial_payment,
    redistribute,
    remove_payer,
    reprice_documents,
    summarize_batches,
    summarize_shares,
    toggle_paid,
    unpaid_by_person,
)

WHEN = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _doc(doc_id, pages, cost=0):
    return Document(id=doc_id, name=f"{doc_id}.pdf", page_count=pages, cost_cents=cost, upload_date=WHEN)


def _share(share_id, name, amount, *, paid=False, batch_id="b1"):
    return PaymentShare(id=share_id, batch_id=batch_id, person_name=name, amount_to_pay_cents=amount, is_paid=paid)


def _batch(batch_id, total, *, status=STATUS_PENDING, created_at=WHEN):
    return Batch(
        id=batch_id,
        user_id="u1",
        total_documents=1,
        total_pages=1,
        total_cost_cents=total,
        price_per_page_cents=200,
        created_at=created_at,
        payment_status=status,
    )


def _ids():
    counter = iter(range(100))
    return lambda: f"p{next(counter)}"


def test_summary_for_three_documents_at_two_pesos():
    docs = [_doc("a", 10), _doc("b", 5), _doc("c", 20)]
    summary = recompute_summary(docs, 200)
    assert summary.total_documents == 3
    assert summary.total_pages == 35
    assert summary.total_cost_cents == 7000


def test_summary_ignores_stale_document_cost_after_price_change():
    docs = [_doc("a", 10, cost=2000), _doc("b", 5, cost=1000)]
    summary = recompute_summary(docs, 350)
    assert summary.total_cost_cents == 15 * 350


def test_reprice_documents_keeps_cost_consistent_with_pages():
    docs = reprice_documents([_doc("a", 10, cost=2000), _doc("b", 3, cost=600)], 125)
    assert [d.cost_cents for d in docs] == [1250, 375]
    assert sum(d.cost_cents for d in docs) == recompute_summary(docs, 125).total_cost_cents


def test_empty_summary_is_zero():
    summary = recompute_summary([], 200)
    assert (summary.total_documents, summary.total_pages, summary.total_cost_cents) == (0, 0, 0)


def test_redistribute_two_payers_then_three():
    payers = redistribute([_share("p1", "Ann", 0), _share("p2", "Ben", 0)], 7000)
    assert [p.amount_to_pay_cents for p in payers] == [3500, 3500]

    payers = add_payer("Cy", payers, 7000, id_factory=lambda: "p3")
    assert [p.amount_to_pay_cents for p in payers] == [2333, 2333, 2333]
    assert abs(sum(p.amount_to_pay_cents for p in payers) - 7000) <= 2


@pytest.mark.parametrize("total,count", [(7000, 3), (100, 7), (1, 3), (999_999, 11), (0, 4)])
def test_redistribute_every_share_is_rounded_even_split(total, count):
    payers = redistribute([_share(f"p{i}", f"P{i}", 0) for i in range(count)], total)
    expected = round(total / count)
    assert all(abs(p.amount_to_pay_cents - total / count) <= 0.5 for p in payers)
    assert len({p.amount_to_pay_cents for p in payers}) == 1
    assert abs(payers[0].amount_to_pay_cents - expected) <= 1
    assert abs(sum(p.amount_to_pay_cents for p in payers) - total) <= count


def test_redistribute_empty_list_does_not_divide():
    assert redistribute([], 7000) == []


def test_redistribute_preserves_paid_flag():
    payers = redistribute([_share("p1", "Ann", 100, paid=True), _share("p2", "Ben", 100)], 7000)
    assert [p.is_paid for p in payers] == [True, False]
    assert [p.amount_to_pay_cents for p in payers] == [3500, 3500]


def test_add_payer_rejects_duplicate_name_case_insensitive():
    payers = [_share("p1", "Alice", 7000)]
    with pytest.raises(DuplicatePayerError):
        add_payer("  alice ", payers, 7000)
    assert payers[0].amount_to_pay_cents == 7000


def test_add_payer_rejects_empty_name():
    with pytest.raises(ValidationError):
        add_payer("   ", [], 7000)


def test_add_payer_starts_unpaid_and_trims_name():
    payers = add_payer("  Dana ", [], 7000, batch_id="b9", id_factory=lambda: "new")
    assert payers == [
        PaymentShare(
            id="new",
            batch_id="b9",
            person_name="Dana",
            amount_to_pay_cents=7000,
            is_paid=False,
            created_at=payers[0].created_at,
        )
    ]


def test_add_then_remove_restores_prior_split():
    before = redistribute([_share("p1", "Ann", 0), _share("p2", "Ben", 0)], 7000)
    added = add_payer("Cy", before, 7000, id_factory=lambda: "p3")
    after = remove_payer("p3", added, 7000)
    assert after == before


def test_remove_last_payer_leaves_empty_list():
    assert remove_payer("p1", [_share("p1", "Ann", 7000)], 7000) == []


def test_partial_payment_reduces_balance():
    share = record_partial_payment(_share("p1", "Ann", 3500), 2000)
    assert share.amount_to_pay_cents == 1500
    assert share.is_paid is False


def test_full_payment_marks_paid_with_zero_balance():
    share = _share("p1", "Ann", 2333)
    paid = record_partial_payment(share, share.amount_to_pay_cents)
    assert paid.amount_to_pay_cents == 0
    assert paid.is_paid is True


def test_overpayment_is_kept_as_credit():
    paid = record_partial_payment(_share("p1", "Ann", 1500), 2000)
    assert paid.amount_to_pay_cents == -500
    assert paid.is_paid is True


def test_partial_payment_must_be_positive():
    with pytest.raises(ValidationError):
        record_partial_payment(_share("p1", "Ann", 1500), 0)


def test_toggle_paid_flips_flag_only():
    share = _share("p1", "Ann", 1500)
    toggled = toggle_paid(share)
    assert toggled.is_paid is True
    assert toggled.amount_to_pay_cents == 1500
    assert toggle_paid(toggled).is_paid is False


def test_mark_all_paid_only_touches_selected_shares():
    shares = [_share("p1", "Ann", 100), _share("p2", "Ben", 100), _share("p3", "Ann", 50, batch_id="b2")]
    updated = mark_all_paid(shares, ["p1", "p3"])
    assert [s.is_paid for s in updated] == [True, False, True]


def test_summarize_shares_splits_paid_and_unpaid():
    summary = summarize_shares([_share("p1", "Ann", 2333, paid=True), _share("p2", "Ben", 2333), _share("p3", "Cy", 2334)])
    assert summary.total_paid_cents == 2333
    assert summary.total_unpaid_cents == 4667
    assert summary.total_amount_cents == 7000


def test_summarize_batches_uses_payment_status():
    summary = summarize_batches([_batch("b1", 7000, status=STATUS_PAID), _batch("b2", 1200)])
    assert (summary.total_paid_cents, summary.total_unpaid_cents, summary.total_amount_cents) == (7000, 1200, 8200)


def test_unpaid_by_person_groups_across_batches_and_sorts_by_total():
    batches = [_batch("b1", 7000), _batch("b2", 3000)]
    shares = [
        _share("s1", "Ann", 3500, batch_id="b1"),
        _share("s2", "Ben", 3500, batch_id="b1", paid=True),
        _share("s3", "Ben", 1500, batch_id="b2"),
        _share("s4", "Ann", 1500, batch_id="b2"),
        _share("s5", "Ghost", 9999, batch_id="missing"),
    ]
    people = unpaid_by_person(batches, shares)

    assert [p.name for p in people] == ["Ann", "Ben"]
    assert people[0].total_unpaid_cents == 5000
    assert [(line.batch_id, line.share_id) for line in people[0].batches] == [("b1", "s1"), ("b2", "s4")]
    assert people[1].total_unpaid_cents == 1500


def test_batch_promoted_when_all_shares_paid():
    batch = _batch("b1", 7000)
    shares = [_share("s1", "Ann", 0, paid=True), _share("s2", "Ben", 3500, paid=True)]
    promoted = promote_batch_status(batch, shares)
    assert promoted is not None
    assert promoted.payment_status == STATUS_PAID


def test_batch_not_promoted_while_a_share_is_unpaid():
    shares = [_share("s1", "Ann", 0, paid=True), _share("s2", "Ben", 3500)]
    assert promote_batch_status(_batch("b1", 7000), shares) is None


def test_batch_without_shares_is_not_promoted():
    assert is_fully_paid([]) is False
    assert promote_batch_status(_batch("b1", 7000), []) is None


def test_promotion_ignores_shares_of_other_batches():
    shares = [_share("s1", "Ann", 0, paid=True), _share("s2", "Ben", 10, batch_id="b2")]
    promoted = promote_batch_status(_batch("b1", 7000), shares)
    assert promoted is not None and promoted.payment_status == STATUS_PAID


def test_paid_batch_is_never_reverted():
    batch = _batch("b1", 7000, status=STATUS_PAID)
    assert promote_batch_status(batch, [_share("s1", "Ann", 3500)]) is None

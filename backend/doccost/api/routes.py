from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from flask import Blueprint, current_app, jsonify, request
from flask import session as client_cookie
from werkzeug.security import check_password_hash, generate_password_hash

from doccost.api.validators import (
    ApiValidationError,
    is_uuid,
    parse_credentials,
    parse_payer_names,
    parse_payment_amount,
    parse_price,
    parse_share_ids,
)
from doccost.db.repository import DocCostRepository
from doccost.domain.models import (
    STATUS_PENDING,
    AuthSession,
    Batch,
    Document,
    DuplicatePayerError,
    PaymentShare,
    PaymentSummary,
    Summary,
    UnpaidPerson,
    ValidationError,
)
from doccost.domain.money import CURRENCY, MAX_ABS_CENTS, amount_to_cents, cents_to_str
from doccost.domain.reconciler import (
    add_payer,
    mark_all_paid,
    promote_batch_status,
    record_partial_payment,
    redistribute,
    remove_payer,
    reprice_documents,
    summarize_batches,
    summarize_shares,
    toggle_paid,
    unpaid_by_person,
)
from doccost.services.app_state import STATE_KEY, AppState, LocalStateStore, new_batch_id
from doccost.services.document_intake import UploadedFile, create_manual_document, process_uploads

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")

STATE_EXTENSION = "doccost.state"

# Keys inside Flask's signed session cookie.
CLIENT_COOKIE_KEY = "client_id"
AUTH_COOKIE_KEY = "auth"


def _json_error(message: str, *, status: int = 400, code: str = "bad_request"):
    return jsonify({"error": {"code": code, "message": message}}), status


def _repo() -> DocCostRepository:
    return DocCostRepository(current_app.config.get("DATABASE_URL", ""))


def _client_id() -> str:
    client_id = client_cookie.get(CLIENT_COOKIE_KEY)
    if not isinstance(client_id, str) or not is_uuid(client_id):
        client_id = str(uuid.uuid4())
        client_cookie[CLIENT_COOKIE_KEY] = client_id
    return client_id


def _state() -> AppState:
    """
    Calculator state for the client behind the current request.

    Each browser gets its own container, keyed by the id in its signed
    session cookie, with its own slot in the local mirror. The signed-in
    user is restored from the cookie when the container is first built.
    """
    states: Dict[str, AppState] = current_app.extensions.setdefault(STATE_EXTENSION, {})
    client_id = _client_id()
    state = states.get(client_id)
    if state is None:
        store = LocalStateStore(current_app.config.get("LOCAL_STATE_PATH") or None)
        default_price = amount_to_cents(current_app.config.get("DEFAULT_PRICE_PER_PAGE", "2.00"))
        state = AppState(
            store,
            default_price_cents=default_price,
            state_key=f"{STATE_KEY}:{client_id}",
        ).load()
        auth = client_cookie.get(AUTH_COOKIE_KEY)
        if isinstance(auth, dict) and auth.get("user_id") and auth.get("email"):
            state.start_session(AuthSession(user_id=auth["user_id"], email=auth["email"]))
        states[client_id] = state
    return state


def _start_client_session(session: AuthSession) -> None:
    _state().start_session(session)
    client_cookie[AUTH_COOKIE_KEY] = _session_json(session)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -- serialization -------------------------------------------------------------


def _document_json(doc: Document) -> Dict[str, Any]:
    return {
        "id": doc.id,
        "name": doc.name,
        "page_count": doc.page_count,
        "cost_cents": doc.cost_cents,
        "upload_date": doc.upload_date.isoformat(),
        "source_kind": doc.source_kind,
    }


def _summary_json(summary: Summary) -> Dict[str, Any]:
    return {
        "total_documents": summary.total_documents,
        "total_pages": summary.total_pages,
        "total_cost_cents": summary.total_cost_cents,
        "total_cost_display": cents_to_str(summary.total_cost_cents),
    }


def _batch_json(batch: Batch) -> Dict[str, Any]:
    return {
        "id": batch.id,
        "total_documents": batch.total_documents,
        "total_pages": batch.total_pages,
        "total_cost_cents": batch.total_cost_cents,
        "price_per_page_cents": batch.price_per_page_cents,
        "payment_status": batch.payment_status,
        "created_at": batch.created_at.isoformat(),
    }


def _share_json(share: PaymentShare) -> Dict[str, Any]:
    return {
        "id": share.id,
        "batch_id": share.batch_id,
        "person_name": share.person_name,
        "amount_to_pay_cents": share.amount_to_pay_cents,
        "is_paid": share.is_paid,
    }


def _payment_summary_json(summary: PaymentSummary) -> Dict[str, int]:
    return {
        "total_paid_cents": summary.total_paid_cents,
        "total_unpaid_cents": summary.total_unpaid_cents,
        "total_amount_cents": summary.total_amount_cents,
    }


def _unpaid_person_json(person: UnpaidPerson) -> Dict[str, Any]:
    return {
        "name": person.name,
        "total_unpaid_cents": person.total_unpaid_cents,
        "batches": [
            {
                "batch_id": line.batch_id,
                "share_id": line.share_id,
                "amount_cents": line.amount_cents,
                "date": line.date.isoformat(),
            }
            for line in person.batches
        ],
    }


def _calculator_json(state: AppState) -> Dict[str, Any]:
    return {
        "batch_id": state.batch_id,
        "currency": CURRENCY,
        "price_per_page_cents": state.price_per_page_cents,
        "documents": [_document_json(d) for d in state.documents],
        "summary": _summary_json(state.summary()),
    }


def _session_json(session: Optional[AuthSession]) -> Optional[Dict[str, str]]:
    if session is None:
        return None
    return {"user_id": session.user_id, "email": session.email}


# -- guards --------------------------------------------------------------------


def _unauthenticated():
    return _json_error("Sign in to continue.", status=401, code="unauthenticated")


def _db_unavailable():
    return _json_error("Record store is not configured.", status=503, code="db_unavailable")


def _db_error(message: str):
    return _json_error(message, status=500, code="db_error")


def _owned_batch(repo: DocCostRepository, batch_id: str, session: AuthSession) -> Optional[Batch]:
    if not is_uuid(batch_id):
        return None
    batch = repo.get_batch(batch_id=batch_id)
    if batch is None or batch.user_id != session.user_id:
        return None
    return batch


def _promote(repo: DocCostRepository, batch: Batch, shares: Sequence[PaymentShare]) -> str:
    """
    Flip the batch to PAID when every share is paid. Never reverts.
    """
    promoted = promote_batch_status(batch, shares)
    if promoted is None:
        return batch.payment_status
    repo.set_batch_payment_status(batch_id=batch.id, payment_status=promoted.payment_status)
    return promoted.payment_status


@api_bp.get("/health")
def health():
    return jsonify({"status": "ok"}), 200


# -- auth ----------------------------------------------------------------------


@api_bp.post("/auth/sign-up")
def sign_up():
    try:
        email, password = parse_credentials(request.get_json(silent=True))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        if repo.get_user_by_email(email=email) is not None:
            return _json_error("An account with this email already exists.", status=409, code="email_taken")
        user = repo.create_user(email=email, password_hash=generate_password_hash(password))
    except Exception:
        logger.exception("Sign-up failed for %s", email)
        return _db_error("Failed to create account.")

    session = AuthSession(user_id=user.id, email=user.email)
    _start_client_session(session)
    return jsonify({"session": _session_json(session)}), 201


@api_bp.post("/auth/sign-in")
def sign_in():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Request body must be JSON.", status=400)

    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not email.strip() or not isinstance(password, str) or not password:
        return _json_error("'email' and 'password' are required.", status=400)

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        user = repo.get_user_by_email(email=email.strip().lower())
    except Exception:
        logger.exception("Sign-in lookup failed")
        return _db_error("Failed to sign in.")

    if user is None or not check_password_hash(user.password_hash, password):
        return _json_error("Invalid email or password.", status=401, code="invalid_credentials")

    session = AuthSession(user_id=user.id, email=user.email)
    _start_client_session(session)
    return jsonify({"session": _session_json(session)}), 200


@api_bp.post("/auth/sign-out")
def sign_out():
    _state().end_session()
    client_cookie.pop(AUTH_COOKIE_KEY, None)
    return jsonify({"session": None}), 200


@api_bp.get("/auth/session")
def get_session():
    return jsonify({"session": _session_json(_state().session)}), 200


# -- calculator ----------------------------------------------------------------


@api_bp.get("/calculator")
def get_calculator():
    return jsonify(_calculator_json(_state())), 200


@api_bp.put("/calculator/price")
def set_price():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "price_per_page" not in data:
        return _json_error("Missing field: price_per_page", status=400)

    try:
        price_cents = parse_price(data["price_per_page"])
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    state = _state()
    state.set_price(price_cents)
    return jsonify(_calculator_json(state)), 200


@api_bp.post("/calculator/documents")
def upload_documents():
    """
    multipart/form-data:
      - files: one or more PDF/DOCX files
    Response:
      - documents: newly added documents
      - errors: [{filename, message}] for files that were skipped
      - calculator: full calculator state
    """
    uploads = [f for f in request.files.getlist("files") if f and getattr(f, "filename", "")]
    if not uploads:
        return _json_error("Missing file field 'files'.", status=400)

    state = _state()
    result = process_uploads(
        (UploadedFile(filename=f.filename, data=f.read()) for f in uploads),
        state.price_per_page_cents,
    )
    state.add_documents(result.documents)

    status = 200 if result.documents else 422
    return jsonify(
        {
            "documents": [_document_json(d) for d in result.documents],
            "errors": [{"filename": e.filename, "message": e.message} for e in result.errors],
            "calculator": _calculator_json(state),
        }
    ), status


@api_bp.post("/calculator/documents/manual")
def add_manual_document():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Request body must be JSON.", status=400)

    state = _state()
    try:
        doc = create_manual_document(data.get("name"), data.get("page_count"), state.price_per_page_cents)
    except ValidationError as e:
        return _json_error(str(e), status=400)

    state.add_documents([doc])
    return jsonify({"document": _document_json(doc), "calculator": _calculator_json(state)}), 201


@api_bp.patch("/calculator/documents/<document_id>")
def update_document_pages(document_id: str):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "page_count" not in data:
        return _json_error("Missing field: page_count", status=400)

    state = _state()
    try:
        doc = state.update_page_count(document_id, data["page_count"])
    except ValidationError as e:
        return _json_error(str(e), status=400)
    except KeyError:
        return _json_error("Document not found.", status=404, code="not_found")

    return jsonify({"document": _document_json(doc), "calculator": _calculator_json(state)}), 200


@api_bp.delete("/calculator/documents/<document_id>")
def delete_document(document_id: str):
    state = _state()
    if not state.remove_document(document_id):
        return _json_error("Document not found.", status=404, code="not_found")
    return jsonify(_calculator_json(state)), 200


@api_bp.delete("/calculator/documents")
def clear_documents():
    state = _state()
    state.clear()
    return jsonify(_calculator_json(state)), 200


@api_bp.post("/calculator/save")
def save_calculation():
    state = _state()
    if state.session is None:
        return _unauthenticated()

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return _json_error("Request body must be a JSON object.", status=400)

    try:
        if "payers" in data:
            payer_names = parse_payer_names(data["payers"])
        else:
            payer_names = list(current_app.config.get("DEFAULT_PAYERS", []))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    if not state.documents:
        return _json_error("Add at least one document before saving.", status=400)

    summary = state.summary()
    if summary.total_cost_cents > MAX_ABS_CENTS:
        return _json_error(
            f"Total cost exceeds the {cents_to_str(MAX_ABS_CENTS)} limit for a saved calculation.",
            status=400,
            code="total_too_large",
        )

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    # Every save is a new batch.
    batch_id = new_batch_id()
    created_at = _now()
    batch = Batch(
        id=batch_id,
        user_id=state.session.user_id,
        total_documents=summary.total_documents,
        total_pages=summary.total_pages,
        total_cost_cents=summary.total_cost_cents,
        price_per_page_cents=state.price_per_page_cents,
        created_at=created_at,
        payment_status=STATUS_PENDING,
    )
    documents = [
        replace(doc, id=str(uuid.uuid4()))
        for doc in reprice_documents(state.documents, state.price_per_page_cents)
    ]
    shares = redistribute(
        [
            PaymentShare(
                id=str(uuid.uuid4()),
                batch_id=batch_id,
                person_name=name,
                amount_to_pay_cents=0,
                is_paid=False,
                created_at=created_at,
            )
            for name in payer_names
        ],
        batch.total_cost_cents,
    )

    try:
        repo.save_batch(batch=batch, documents=documents, shares=shares)
    except Exception:
        logger.exception("Failed to save batch %s", batch_id)
        return _db_error("Failed to save calculation.")

    state.replace(batch_id=new_batch_id(), documents=state.documents, price_per_page_cents=state.price_per_page_cents)
    return jsonify({"batch": _batch_json(batch), "shares": [_share_json(s) for s in shares]}), 201


@api_bp.post("/calculator/load/<batch_id>")
def load_calculation(batch_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        batch = _owned_batch(repo, batch_id, state.session)
        if batch is None:
            return _json_error("Saved calculation not found.", status=404, code="not_found")
        documents = repo.get_documents(batch_id=batch.id)
    except Exception:
        logger.exception("Failed to load batch %s", batch_id)
        return _db_error("Failed to load saved calculation.")

    state.replace(batch_id=batch.id, documents=documents, price_per_page_cents=batch.price_per_page_cents)
    return jsonify(_calculator_json(state)), 200


# -- history -------------------------------------------------------------------


@api_bp.get("/history")
def history():
    state = _state()
    if state.session is None:
        return _unauthenticated()

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        batches = repo.list_batches(user_id=state.session.user_id)
        shares = repo.list_shares(batch_ids=[b.id for b in batches])
    except Exception:
        logger.exception("Failed to load history")
        return _db_error("Failed to load data. Please try again later.")

    return jsonify(
        {
            "batches": [_batch_json(b) for b in batches],
            "payment_summary": _payment_summary_json(summarize_batches(batches)),
            "share_summary": _payment_summary_json(summarize_shares(shares)),
            "unpaid_people": [_unpaid_person_json(p) for p in unpaid_by_person(batches, shares)],
        }
    ), 200


@api_bp.delete("/batches/<batch_id>")
def delete_batch(batch_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        batch = _owned_batch(repo, batch_id, state.session)
        if batch is None:
            return _json_error("Batch not found.", status=404, code="not_found")
        repo.delete_batch(batch_id=batch.id)
    except Exception:
        logger.exception("Failed to delete batch %s", batch_id)
        return _db_error("Failed to delete record.")

    return jsonify({"deleted": batch.id}), 200


# -- payment shares ------------------------------------------------------------


def _shares_response(batch_id: str, shares: Sequence[PaymentShare], payment_status: str, *, status: int = 200):
    return jsonify(
        {
            "batch_id": batch_id,
            "payment_status": payment_status,
            "shares": [_share_json(s) for s in shares],
        }
    ), status


@api_bp.get("/batches/<batch_id>/shares")
def list_batch_shares(batch_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        batch = _owned_batch(repo, batch_id, state.session)
        if batch is None:
            return _json_error("Batch not found.", status=404, code="not_found")
        shares = repo.list_shares(batch_ids=[batch.id])
    except Exception:
        logger.exception("Failed to load payment shares for %s", batch_id)
        return _db_error("Failed to load payment information.")

    return _shares_response(batch.id, shares, batch.payment_status)


@api_bp.post("/batches/<batch_id>/shares")
def add_batch_payer(batch_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Request body must be JSON.", status=400)

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        batch = _owned_batch(repo, batch_id, state.session)
        if batch is None:
            return _json_error("Batch not found.", status=404, code="not_found")
        shares = repo.list_shares(batch_ids=[batch.id])
    except Exception:
        logger.exception("Failed to load payment shares for %s", batch_id)
        return _db_error("Failed to load payment information.")

    try:
        updated = add_payer(data.get("name"), shares, batch.total_cost_cents, batch_id=batch.id)
    except DuplicatePayerError as e:
        return _json_error(str(e), status=409, code="duplicate_payer")
    except ValidationError as e:
        return _json_error(str(e), status=400)

    try:
        new_share = repo.insert_share(share=updated[-1])
        repo.update_shares(shares=updated[:-1])
    except Exception:
        logger.exception("Failed to save new payer for %s", batch_id)
        return _db_error("Failed to save person information.")

    return _shares_response(batch.id, [*updated[:-1], new_share], batch.payment_status, status=201)


def _load_share_and_batch(repo: DocCostRepository, share_id: str, session: AuthSession):
    if not is_uuid(share_id):
        return None, None
    share = repo.get_share(share_id=share_id)
    if share is None:
        return None, None
    batch = _owned_batch(repo, share.batch_id, session)
    if batch is None:
        return None, None
    return share, batch


@api_bp.delete("/shares/<share_id>")
def remove_batch_payer(share_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        share, batch = _load_share_and_batch(repo, share_id, state.session)
        if share is None:
            return _json_error("Payment share not found.", status=404, code="not_found")
        shares = repo.list_shares(batch_ids=[batch.id])
        remaining = remove_payer(share.id, shares, batch.total_cost_cents)
        repo.delete_share(share_id=share.id)
        repo.update_shares(shares=remaining)
        payment_status = _promote(repo, batch, remaining)
    except Exception:
        logger.exception("Failed to remove payer %s", share_id)
        return _db_error("Failed to remove person.")

    return _shares_response(batch.id, remaining, payment_status)


@api_bp.post("/shares/<share_id>/toggle")
def toggle_share_paid(share_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        share, batch = _load_share_and_batch(repo, share_id, state.session)
        if share is None:
            return _json_error("Payment share not found.", status=404, code="not_found")
        toggled = toggle_paid(share)
        repo.update_shares(shares=[toggled])
        shares = [toggled if s.id == toggled.id else s for s in repo.list_shares(batch_ids=[batch.id])]
        payment_status = _promote(repo, batch, shares)
    except Exception:
        logger.exception("Failed to update payment status for %s", share_id)
        return _db_error("Failed to update payment status.")

    return _shares_response(batch.id, shares, payment_status)


@api_bp.post("/shares/<share_id>/payments")
def record_share_payment(share_id: str):
    state = _state()
    if state.session is None:
        return _unauthenticated()

    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "amount" not in data:
        return _json_error("Missing field: amount", status=400)

    try:
        amount_cents = parse_payment_amount(data["amount"])
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    try:
        share, batch = _load_share_and_batch(repo, share_id, state.session)
        if share is None:
            return _json_error("Payment share not found.", status=404, code="not_found")
        paid = record_partial_payment(share, amount_cents)
        repo.update_shares(shares=[paid])
        shares = [paid if s.id == paid.id else s for s in repo.list_shares(batch_ids=[batch.id])]
        payment_status = _promote(repo, batch, shares)
    except Exception:
        logger.exception("Failed to record payment for %s", share_id)
        return _db_error("Failed to record payment. Please try again.")

    return jsonify(
        {
            "share": _share_json(paid),
            "payment_status": payment_status,
            "recorded": cents_to_str(amount_cents),
        }
    ), 200


@api_bp.post("/people/mark-paid")
def mark_person_paid():
    """
    Mark several shares (typically one person's unpaid shares across batches)
    as paid, then re-check every affected batch.
    """
    state = _state()
    if state.session is None:
        return _unauthenticated()

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _json_error("Request body must be JSON.", status=400)

    try:
        share_ids = parse_share_ids(data.get("share_ids"))
    except ApiValidationError as e:
        return _json_error(str(e), status=400)

    repo = _repo()
    if not repo.enabled:
        return _db_unavailable()

    statuses: Dict[str, str] = {}
    try:
        batches: Dict[str, Batch] = {}
        for share_id in share_ids:
            share, batch = _load_share_and_batch(repo, share_id, state.session)
            if share is None:
                return _json_error(f"Payment share not found: {share_id}", status=404, code="not_found")
            batches[batch.id] = batch

        all_shares = repo.list_shares(batch_ids=list(batches))
        updated = mark_all_paid(all_shares, share_ids)
        repo.update_shares(shares=[s for s in updated if s.id in share_ids])

        for batch in batches.values():
            statuses[batch.id] = _promote(repo, batch, updated)
    except Exception:
        logger.exception("Failed to mark shares paid")
        return _db_error("Failed to mark all as paid.")

    return jsonify({"marked": share_ids, "batch_statuses": statuses}), 200

# backend/doccost/services/app_state.py
from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from doccost.domain.models import AuthSession, Document, ModelValidationError, Summary
from doccost.domain.reconciler import recompute_summary, reprice_documents
from doccost.services import document_intake

logger = logging.getLogger(__name__)

STATE_KEY = "calculatorData"

SessionListener = Callable[[Optional[AuthSession]], None]


def new_batch_id() -> str:
    return str(uuid.uuid4())


class LocalStateStore:
    """
    Tiny JSON-file key/value store mirroring the uncommitted calculator state.

    It is independent of the remote record store: writes here never fail a
    request, they are only logged.
    """

    def __init__(self, path: str | os.PathLike | None):
        self.path = Path(path) if path else None

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def _read_all(self) -> Dict[str, Any]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Could not read local state from %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[Any]:
        return self._read_all().get(key)

    def _write_all(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError:
            logger.exception("Could not write local state to %s", self.path)

    def set(self, key: str, value: Any) -> None:
        if self.path is None:
            return
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def delete(self, key: str) -> None:
        if self.path is None:
            return
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)


def document_to_state(doc: Document) -> Dict[str, Any]:
    return {
        "id": doc.id,
        "name": doc.name,
        "page_count": doc.page_count,
        "cost_cents": doc.cost_cents,
        "upload_date": doc.upload_date.isoformat(),
        "source_kind": doc.source_kind,
    }


def document_from_state(raw: Dict[str, Any]) -> Document:
    return Document(
        id=raw["id"],
        name=raw["name"],
        page_count=raw["page_count"],
        cost_cents=raw["cost_cents"],
        upload_date=datetime.fromisoformat(raw["upload_date"]),
        source_kind=raw.get("source_kind", "uploaded"),
    )


class AppState:
    """
    Calculator state plus the signed-in session.

    Documents are never mutated in place; every change swaps in a new list
    and refreshes the local mirror.
    """

    def __init__(self, store: LocalStateStore, *, default_price_cents: int, state_key: str = STATE_KEY):
        self.store = store
        self.state_key = state_key
        self.default_price_cents = default_price_cents
        self.documents: List[Document] = []
        self.price_per_page_cents = default_price_cents
        self.batch_id = new_batch_id()
        self.session: Optional[AuthSession] = None
        self._listeners: List[SessionListener] = []

    # -- lifecycle -----------------------------------------------------------

    def load(self) -> "AppState":
        raw = self.store.get(self.state_key)
        if not isinstance(raw, dict):
            return self
        try:
            documents = [document_from_state(d) for d in raw.get("documents", [])]
            price = raw.get("price_per_page_cents", self.default_price_cents)
            if not isinstance(price, int) or price < 0:
                raise ModelValidationError("price_per_page_cents must be an int >= 0")
        except (KeyError, TypeError, ValueError):
            logger.exception("Ignoring unreadable saved calculator state")
            return self

        self.documents = documents
        self.price_per_page_cents = price
        self.batch_id = raw.get("batch_id") or new_batch_id()
        return self

    def persist(self) -> None:
        self.store.set(
            self.state_key,
            {
                "documents": [document_to_state(d) for d in self.documents],
                "price_per_page_cents": self.price_per_page_cents,
                "batch_id": self.batch_id,
            },
        )

    # -- session -------------------------------------------------------------

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.session)
            except Exception:
                logger.exception("Session listener failed")

    def start_session(self, session: AuthSession) -> None:
        self.session = session
        self._notify()

    def end_session(self) -> None:
        """Sign out: drop the session and the uncommitted calculator state."""
        self.session = None
        self.documents = []
        self.price_per_page_cents = self.default_price_cents
        self.batch_id = new_batch_id()
        self.store.delete(self.state_key)
        self._notify()

    # -- calculator ----------------------------------------------------------

    def summary(self) -> Summary:
        return recompute_summary(self.documents, self.price_per_page_cents)

    def set_price(self, price_per_page_cents: int) -> None:
        self.price_per_page_cents = price_per_page_cents
        self.documents = reprice_documents(self.documents, price_per_page_cents)
        self.persist()

    def add_documents(self, documents: Sequence[Document]) -> None:
        if not documents:
            return
        self.documents = [*self.documents, *documents]
        self.persist()

    def remove_document(self, document_id: str) -> bool:
        remaining = [d for d in self.documents if d.id != document_id]
        removed = len(remaining) != len(self.documents)
        if removed:
            self.documents = remaining
            self.persist()
        return removed

    def update_page_count(self, document_id: str, page_count: object) -> Document:
        self.documents = document_intake.update_page_count(
            self.documents, document_id, page_count, self.price_per_page_cents
        )
        self.persist()
        return next(d for d in self.documents if d.id == document_id)

    def clear(self) -> None:
        self.documents = []
        self.batch_id = new_batch_id()
        self.persist()

    def replace(self, *, batch_id: str, documents: Sequence[Document], price_per_page_cents: int) -> None:
        self.batch_id = batch_id
        self.price_per_page_cents = price_per_page_cents
        self.documents = list(documents)
        self.persist()

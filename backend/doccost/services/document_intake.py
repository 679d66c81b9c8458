# backend/doccost/services/document_intake.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from doccost.domain.models import (
    SOURCE_MANUAL,
    SOURCE_UPLOADED,
    Document,
    IntakeError,
    IntakeResult,
    ValidationError,
)
from doccost.domain.reconciler import document_cost_cents
from doccost.services.page_estimator import (
    estimate_pages,
    file_extension,
    validate_manual_page_count,
)

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = ("pdf", "docx", "doc")


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    data: bytes


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


def process_uploads(
    files: Iterable[UploadedFile],
    price_per_page_cents: int,
    *,
    estimator: Optional[Callable[[str, bytes], int]] = None,
) -> IntakeResult:
    """
    Turn uploaded files into priced documents, one file at a time.

    A file that is rejected or fails does not stop the rest; it is reported
    in result.errors instead.
    """
    estimate = estimator or estimate_pages
    documents: List[Document] = []
    errors: List[IntakeError] = []

    for f in files:
        name = (f.filename or "").strip()
        if not name:
            errors.append(IntakeError(filename="", message="File has no name."))
            continue

        if file_extension(name) not in ACCEPTED_EXTENSIONS:
            errors.append(IntakeError(filename=name, message="Only PDF and DOCX files are accepted."))
            continue

        if not f.data:
            errors.append(IntakeError(filename=name, message="Uploaded file is empty."))
            continue

        try:
            page_count = estimate(name, f.data)
            documents.append(
                Document(
                    id=_new_id(),
                    name=name,
                    page_count=page_count,
                    cost_cents=document_cost_cents(page_count, price_per_page_cents),
                    upload_date=_now(),
                    source_kind=SOURCE_UPLOADED,
                )
            )
        except Exception as e:
            logger.exception("Could not process %s", name)
            errors.append(IntakeError(filename=name, message=f"Could not process {name}: {e}"))

    return IntakeResult(documents=documents, errors=errors)


def create_manual_document(name: object, page_count: object, price_per_page_cents: int) -> Document:
    """
    Build a document from a typed name and page count; no estimation involved.
    """
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Document name is required")

    pages = validate_manual_page_count(page_count)
    return Document(
        id=_new_id(),
        name=name.strip(),
        page_count=pages,
        cost_cents=document_cost_cents(pages, price_per_page_cents),
        upload_date=_now(),
        source_kind=SOURCE_MANUAL,
    )


def update_page_count(
    documents: Sequence[Document],
    document_id: str,
    page_count: object,
    price_per_page_cents: int,
) -> List[Document]:
    pages = validate_manual_page_count(page_count)

    if not any(doc.id == document_id for doc in documents):
        raise KeyError(document_id)

    return [
        replace(doc, page_count=pages, cost_cents=document_cost_cents(pages, price_per_page_cents))
        if doc.id == document_id
        else doc
        for doc in documents
    ]

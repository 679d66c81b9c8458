from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

try:
    import psycopg
except ImportError:  # pragma: no cover
    psycopg = None

from doccost.domain.models import Batch, Document, PaymentShare
from doccost.domain.money import cents_to_decimal, decimal_to_cents


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    password_hash: str


# numeric(12,2) holds up to 9,999,999,999.99
_COLUMN_MAX_CENTS = 10**12 - 1


def _cents(value) -> int:
    return decimal_to_cents(value, max_abs_cents=_COLUMN_MAX_CENTS)


_BATCH_COLUMNS = """
    id::text, user_id::text, total_documents, total_pages, total_cost,
    price_per_page, payment_status, created_at
"""

_SHARE_COLUMNS = """
    id::text, document_batch_id::text, person_name, amount_to_pay, is_paid, created_at
"""


def _batch_from_row(row) -> Batch:
    return Batch(
        id=row[0],
        user_id=row[1],
        total_documents=int(row[2]),
        total_pages=int(row[3]),
        total_cost_cents=_cents(row[4]),
        price_per_page_cents=_cents(row[5]),
        payment_status=row[6],
        created_at=row[7],
    )


def _share_from_row(row) -> PaymentShare:
    return PaymentShare(
        id=row[0],
        batch_id=row[1],
        person_name=row[2],
        amount_to_pay_cents=_cents(row[3]),
        is_paid=bool(row[4]),
        created_at=row[5],
    )


class DocCostRepository:
    def __init__(self, database_url: str):
        self.database_url = database_url.strip()

    @property
    def enabled(self) -> bool:
        return bool(self.database_url)

    def _connect(self):
        if not self.enabled:
            raise RuntimeError("DATABASE_URL not configured")
        if psycopg is None:
            raise RuntimeError("psycopg is not installed")
        return psycopg.connect(self.database_url)

    # -- users -----------------------------------------------------------------

    def create_user(self, *, email: str, password_hash: str) -> UserRecord:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO users (email, password_hash)
                VALUES (%s, %s)
                RETURNING id::text, email, password_hash
                """,
                (email, password_hash),
            )
            row = cur.fetchone()
            conn.commit()
            return UserRecord(id=row[0], email=row[1], password_hash=row[2])

    def get_user_by_email(self, *, email: str) -> Optional[UserRecord]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                SELECT id::text, email, password_hash
                FROM users
                WHERE lower(email) = lower(%s)
                """,
                (email,),
            )
            row = cur.fetchone()
            if row is None:
                return None
            return UserRecord(id=row[0], email=row[1], password_hash=row[2])

    # -- batches ---------------------------------------------------------------

    def save_batch(
        self,
        *,
        batch: Batch,
        documents: Sequence[Document],
        shares: Sequence[PaymentShare],
    ) -> None:
        """
        Insert a batch with its documents and payment shares in one transaction.
        """
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO document_batches (
                    id, user_id, total_documents, total_pages, total_cost,
                    price_per_page, payment_status, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    batch.id,
                    batch.user_id,
                    batch.total_documents,
                    batch.total_pages,
                    cents_to_decimal(batch.total_cost_cents),
                    cents_to_decimal(batch.price_per_page_cents),
                    batch.payment_status,
                    batch.created_at,
                ),
            )

            for doc in documents:
                cur.execute(
                    """
                    INSERT INTO documents (id, batch_id, name, page_count, cost, upload_date, source_kind)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        doc.id,
                        batch.id,
                        doc.name,
                        doc.page_count,
                        cents_to_decimal(doc.cost_cents),
                        doc.upload_date,
                        doc.source_kind,
                    ),
                )

            for share in shares:
                cur.execute(
                    """
                    INSERT INTO payment_shares (id, document_batch_id, person_name, amount_to_pay, is_paid, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        share.id,
                        batch.id,
                        share.person_name,
                        cents_to_decimal(share.amount_to_pay_cents),
                        share.is_paid,
                        share.created_at,
                    ),
                )

            conn.commit()

    def get_batch(self, *, batch_id: str) -> Optional[Batch]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_BATCH_COLUMNS}
                FROM document_batches
                WHERE id = %s
                """,
                (batch_id,),
            )
            row = cur.fetchone()
            return _batch_from_row(row) if row is not None else None

    def list_batches(self, *, user_id: str) -> list[Batch]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_BATCH_COLUMNS}
                FROM document_batches
                WHERE user_id = %s
                ORDER BY created_at DESC, id ASC
                """,
                (user_id,),
            )
            return [_batch_from_row(row) for row in cur.fetchall()]

    def delete_batch(self, *, batch_id: str) -> bool:
        # documents and payment_shares cascade on the foreign keys
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM document_batches
                WHERE id = %s
                """,
                (batch_id,),
            )
            deleted = cur.rowcount > 0
            conn.commit()
            return deleted

    def set_batch_payment_status(self, *, batch_id: str, payment_status: str) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                UPDATE document_batches
                SET payment_status = %s
                WHERE id = %s
                """,
                (payment_status, batch_id),
            )
            conn.commit()

    def get_documents(self, *, batch_id: str) -> list[Document]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                SELECT id::text, name, page_count, cost, upload_date, source_kind
                FROM documents
                WHERE batch_id = %s
                ORDER BY upload_date ASC, id ASC
                """,
                (batch_id,),
            )
            return [
                Document(
                    id=row[0],
                    name=row[1],
                    page_count=int(row[2]),
                    cost_cents=_cents(row[3]),
                    upload_date=row[4],
                    source_kind=row[5],
                )
                for row in cur.fetchall()
            ]

    # -- payment shares --------------------------------------------------------

    def list_shares(self, *, batch_ids: Sequence[str]) -> list[PaymentShare]:
        if not batch_ids:
            return []

        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_SHARE_COLUMNS}
                FROM payment_shares
                WHERE document_batch_id = ANY(%s::uuid[])
                ORDER BY created_at ASC, id ASC
                """,
                (list(batch_ids),),
            )
            return [_share_from_row(row) for row in cur.fetchall()]

    def get_share(self, *, share_id: str) -> Optional[PaymentShare]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_SHARE_COLUMNS}
                FROM payment_shares
                WHERE id = %s
                """,
                (share_id,),
            )
            row = cur.fetchone()
            return _share_from_row(row) if row is not None else None

    def insert_share(self, *, share: PaymentShare) -> PaymentShare:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO payment_shares (id, document_batch_id, person_name, amount_to_pay, is_paid)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_SHARE_COLUMNS}
                """,
                (
                    share.id,
                    share.batch_id,
                    share.person_name,
                    cents_to_decimal(share.amount_to_pay_cents),
                    share.is_paid,
                ),
            )
            row = cur.fetchone()
            conn.commit()
            return _share_from_row(row)

    def delete_share(self, *, share_id: str) -> bool:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM payment_shares
                WHERE id = %s
                """,
                (share_id,),
            )
            deleted = cur.rowcount > 0
            conn.commit()
            return deleted

    def update_shares(self, *, shares: Iterable[PaymentShare]) -> None:
        """
        Write amount and paid flag for each share. Last write wins.
        """
        with self._connect() as conn, conn.cursor() as cur:
            for share in shares:
                cur.execute(
                    """
                    UPDATE payment_shares
                    SET amount_to_pay = %s, is_paid = %s
                    WHERE id = %s
                    """,
                    (cents_to_decimal(share.amount_to_pay_cents), share.is_paid, share.id),
                )
            conn.commit()

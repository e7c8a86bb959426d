"""
SQLite persistence for classification corrections.

Rows are append-only: the only mutation allowed after insert is advancing
``training_status`` one step forward.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from datetime import datetime

from floworx.config import FEEDBACK_BATCH_SIZE
from floworx.infrastructure.database import db_transaction, init_database, retry_on_db_lock
from floworx.observability.logging import get_logger
from floworx.storage.models import CategorySnapshot, CorrectionFeedback, TrainingStatus

logger = get_logger(__name__)

_COLUMNS = (
    "id, tenant_id, email_subject, email_from, email_body_preview, "
    "original_categories, corrected_categories, confidence_rating, "
    "correction_reason, training_status, created_at"
)


class FeedbackNotFoundError(KeyError):
    """No correction with the requested id exists."""


def _row_to_feedback(row: sqlite3.Row) -> CorrectionFeedback:
    return CorrectionFeedback(
        id=row["id"],
        tenant_id=row["tenant_id"],
        email_subject=row["email_subject"],
        email_from=row["email_from"],
        email_body_preview=row["email_body_preview"],
        original_categories=CategorySnapshot(**json.loads(row["original_categories"])),
        corrected_categories=CategorySnapshot(**json.loads(row["corrected_categories"])),
        confidence_rating=row["confidence_rating"],
        correction_reason=row["correction_reason"],
        training_status=TrainingStatus(row["training_status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class FeedbackRepository:
    """Reads and writes the ``classification_feedback`` table."""

    def __init__(self, conn: sqlite3.Connection, ensure_schema: bool = True):
        self.conn = conn
        if ensure_schema:
            init_database(conn)

    @retry_on_db_lock()
    def add(self, feedback: CorrectionFeedback) -> CorrectionFeedback:
        """
        Insert a new correction.

        Side Effects:
            Writes one row to classification_feedback

        Raises:
            sqlite3.IntegrityError: If the id already exists
        """
        with db_transaction(self.conn) as conn:
            conn.execute(
                f"INSERT INTO classification_feedback ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    feedback.id,
                    feedback.tenant_id,
                    feedback.email_subject,
                    feedback.email_from,
                    feedback.email_body_preview,
                    feedback.original_categories.model_dump_json(),
                    feedback.corrected_categories.model_dump_json(),
                    feedback.confidence_rating,
                    feedback.correction_reason,
                    feedback.training_status.value,
                    feedback.created_at.isoformat(),
                ),
            )
        logger.debug("Stored feedback %s for tenant %s", feedback.id, feedback.tenant_id)
        return feedback

    def get(self, feedback_id: str) -> CorrectionFeedback:
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM classification_feedback WHERE id = ?", (feedback_id,)
        ).fetchone()
        if row is None:
            raise FeedbackNotFoundError(feedback_id)
        return _row_to_feedback(row)

    @retry_on_db_lock()
    def update_training_status(
        self, feedback_id: str, status: TrainingStatus | str
    ) -> CorrectionFeedback:
        """
        Advance a correction to the next training status.

        Raises:
            FeedbackNotFoundError: Unknown id
            InvalidStatusTransition: Skipping, repeating or reversing a status
        """
        updated = self.get(feedback_id).with_training_status(status)
        with db_transaction(self.conn) as conn:
            conn.execute(
                "UPDATE classification_feedback SET training_status = ? WHERE id = ?",
                (updated.training_status.value, feedback_id),
            )
        return updated

    def iter_corrections(
        self,
        tenant_id: str | None = None,
        batch_size: int = FEEDBACK_BATCH_SIZE,
        since: datetime | None = None,
    ) -> Iterator[CorrectionFeedback]:
        """
        Stream corrections oldest first, ``batch_size`` rows per fetch.

        Nothing beyond one batch is held in memory, so this is safe for
        export of a tenant's full history.
        """
        clauses = []
        params: list[str] = []
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since.isoformat())
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        cursor = self.conn.execute(
            f"SELECT {_COLUMNS} FROM classification_feedback{where} ORDER BY created_at, id",
            params,
        )
        try:
            while True:
                rows = cursor.fetchmany(batch_size)
                if not rows:
                    break
                for row in rows:
                    yield _row_to_feedback(row)
        finally:
            cursor.close()

    def count(self, tenant_id: str | None = None) -> int:
        if tenant_id is None:
            row = self.conn.execute("SELECT COUNT(*) FROM classification_feedback").fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM classification_feedback WHERE tenant_id = ?", (tenant_id,)
            ).fetchone()
        return int(row[0])

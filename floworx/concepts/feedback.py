"""
Records human corrections of AI classifications and turns them into metrics
and fine-tuning data.

Key: record_correction() builds (and optionally stores) an append-only
CorrectionFeedback; compute_accuracy_metrics() and export_training_examples()
only ever read.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime, timedelta
from itertools import islice
from typing import Any

from floworx.config import FEEDBACK_EXPORT_MIN_QUALITY, FEEDBACK_PREVIEW_CHARS, HIGH_CONFIDENCE_THRESHOLD
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event
from floworx.storage.feedback_repository import FeedbackRepository
from floworx.storage.models import (
    CategorySnapshot,
    ClassificationResult,
    CorrectionFeedback,
    EmailMessage,
    TrainingStatus,
    utc_now,
)

logger = get_logger(__name__)

CategoriesInput = ClassificationResult | CategorySnapshot | Mapping[str, Any]


def to_snapshot(categories: CategoriesInput) -> CategorySnapshot:
    """
    Normalize a classification, snapshot or dict into a CategorySnapshot.

    Dicts may use either ``primary``/``secondary``/``tertiary`` or the
    ``*_category`` keys the classifier emits.
    """
    if isinstance(categories, CategorySnapshot):
        return categories
    if isinstance(categories, ClassificationResult):
        return CategorySnapshot.from_result(categories)
    data = dict(categories)
    return CategorySnapshot(
        primary=data.get("primary") or data.get("primary_category") or "",
        secondary=data.get("secondary") or data.get("secondary_category"),
        tertiary=data.get("tertiary") or data.get("tertiary_category"),
        confidence=data.get("confidence"),
        ai_can_reply=data.get("ai_can_reply"),
    )


def record_correction(
    original: CategoriesInput,
    corrected: CategoriesInput,
    rating: int,
    reason: str | None = None,
    email: EmailMessage | None = None,
    subject: str = "",
    tenant_id: str = "default",
    repository: FeedbackRepository | None = None,
    now: datetime | None = None,
) -> CorrectionFeedback:
    """
    Record a user correction of an AI classification.

    Args:
        original: What the AI said (confidence is kept for metrics)
        corrected: What the user says it should have been
        rating: Example quality, 1 (noise) to 5 (perfect training example)
        reason: Free-text explanation from the user
        email: Source email; subject, sender and a body preview are kept
        subject: Subject to use when no email is given
        tenant_id: Owning tenant
        repository: When given, the correction is persisted

    Returns:
        The new CorrectionFeedback (training_status=pending)

    Raises:
        pydantic.ValidationError: Rating outside 1..5 or missing primary

    Side Effects:
        - Inserts into classification_feedback when a repository is given
        - Emits feedback.recorded
    """
    fields: dict[str, Any] = {
        "tenant_id": tenant_id,
        "email_subject": subject,
        "original_categories": to_snapshot(original),
        "corrected_categories": to_snapshot(corrected),
        "confidence_rating": rating,
        "correction_reason": reason,
    }
    if email is not None:
        fields["email_subject"] = email.subject
        fields["email_from"] = email.from_address
        fields["email_body_preview"] = email.body[:FEEDBACK_PREVIEW_CHARS]
    if now is not None:
        fields["created_at"] = now

    feedback = CorrectionFeedback(**fields)
    if repository is not None:
        repository.add(feedback)

    counter("feedback.recorded")
    log_event(
        "feedback.recorded",
        tenant_id=tenant_id,
        feedback_id=feedback.id,
        was_wrong=feedback.was_wrong,
        rating=rating,
    )
    return feedback


def compute_accuracy_metrics(
    corrections: Iterable[CorrectionFeedback],
    window: timedelta | None = None,
    total_classifications: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Summarize corrections into accuracy metrics.

    Args:
        corrections: Corrections to summarize (consumed once)
        window: Only count corrections created within this period before ``now``
        total_classifications: Denominator for correction_rate
        now: Reference time for ``window`` (defaults to utc_now())

    Returns:
        total_corrections, correction_rate (None without a total),
        avg_original_confidence (None when nothing has a confidence),
        high_confidence_error_count
    """
    cutoff = None
    if window is not None:
        cutoff = (now or utc_now()) - window

    total = 0
    confidence_sum = 0.0
    confidence_count = 0
    high_confidence_errors = 0
    for correction in corrections:
        if cutoff is not None and correction.created_at < cutoff:
            continue
        total += 1
        confidence = correction.original_categories.confidence
        if confidence is None:
            continue
        confidence_sum += confidence
        confidence_count += 1
        if confidence >= HIGH_CONFIDENCE_THRESHOLD and correction.was_wrong:
            high_confidence_errors += 1

    correction_rate = None
    if total_classifications:
        correction_rate = total / total_classifications

    return {
        "total_corrections": total,
        "correction_rate": correction_rate,
        "avg_original_confidence": confidence_sum / confidence_count if confidence_count else None,
        "high_confidence_error_count": high_confidence_errors,
    }


def _category_label(snapshot: CategorySnapshot) -> str:
    return "/".join(p for p in (snapshot.primary, snapshot.secondary, snapshot.tertiary) if p)


def to_training_example(correction: CorrectionFeedback) -> dict[str, Any]:
    corrected = correction.corrected_categories
    completion = {
        "primary_category": corrected.primary,
        "secondary_category": corrected.secondary,
        "tertiary_category": corrected.tertiary,
        "ai_can_reply": bool(corrected.ai_can_reply),
    }
    return {
        "prompt": (
            f"Subject: {correction.email_subject}\n"
            f"From: {correction.email_from}\n\n"
            f"{correction.email_body_preview}"
        ),
        "completion": json.dumps(completion),
        "metadata": {
            "feedback_id": correction.id,
            "confidence_rating": correction.confidence_rating,
            "created_at": correction.created_at.isoformat(),
            "original_category": _category_label(correction.original_categories),
            "was_wrong": correction.was_wrong,
        },
    }


def export_training_examples(
    corrections: Iterable[CorrectionFeedback],
    min_quality: int = FEEDBACK_EXPORT_MIN_QUALITY,
    limit: int | None = None,
    offset: int = 0,
    statuses: Iterable[TrainingStatus | str] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Lazily yield ``{prompt, completion, metadata}`` fine-tuning examples.

    Only corrections rated ``min_quality`` or better are exported. ``offset``
    counts exported examples, so a stopped export resumes by passing the
    number already written.
    """
    allowed = {TrainingStatus(s) for s in statuses} if statuses is not None else None
    eligible = (
        c
        for c in corrections
        if c.confidence_rating >= min_quality and (allowed is None or c.training_status in allowed)
    )
    stop = None if limit is None else offset + limit
    for correction in islice(eligible, offset, stop):
        yield to_training_example(correction)


class FeedbackManager:
    """
    Tenant-scoped facade over FeedbackRepository.

    Used by the delivery layer so handlers don't pass tenant ids and
    repositories around separately.
    """

    def __init__(self, repository: FeedbackRepository, tenant_id: str):
        self.repository = repository
        self.tenant_id = tenant_id

    def record_correction(
        self,
        original: CategoriesInput,
        corrected: CategoriesInput,
        rating: int,
        reason: str | None = None,
        email: EmailMessage | None = None,
    ) -> CorrectionFeedback:
        return record_correction(
            original,
            corrected,
            rating,
            reason=reason,
            email=email,
            tenant_id=self.tenant_id,
            repository=self.repository,
        )

    def approve(self, feedback_id: str) -> CorrectionFeedback:
        return self.repository.update_training_status(feedback_id, TrainingStatus.APPROVED)

    def mark_used_in_training(self, feedback_id: str) -> CorrectionFeedback:
        return self.repository.update_training_status(feedback_id, TrainingStatus.USED_IN_TRAINING)

    def accuracy_metrics(
        self, window: timedelta | None = None, total_classifications: int | None = None
    ) -> dict[str, Any]:
        return compute_accuracy_metrics(
            self.repository.iter_corrections(self.tenant_id),
            window=window,
            total_classifications=total_classifications,
        )

    def export_training_examples(
        self,
        min_quality: int = FEEDBACK_EXPORT_MIN_QUALITY,
        limit: int | None = None,
        offset: int = 0,
    ) -> Iterator[dict[str, Any]]:
        return export_training_examples(
            self.repository.iter_corrections(self.tenant_id),
            min_quality=min_quality,
            limit=limit,
            offset=offset,
        )

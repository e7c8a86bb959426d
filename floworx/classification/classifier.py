"""
Email classification orchestration.

prompt -> LLMCompletion -> JSON extraction -> validation -> AI reply policy.
One stricter retry is made when the model breaks a rule; after that the
caller either gets a ClassificationValidationError or, through
classify_or_queue(), a human-review placeholder.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from floworx.classification.prompt_builder import HistoricalContext, build_classifier_prompt
from floworx.classification.taxonomy import TaxonomyTree
from floworx.classification.validator import ClassificationValidationError, validate_classification
from floworx.config import (
    AI_REPLY_CATEGORIES,
    AI_REPLY_MIN_CONFIDENCE,
    CLASSIFIER_MAX_ATTEMPTS,
    PROMPT_MAX_BODY_CHARS,
)
from floworx.contracts.collaborators import LLMCompletion
from floworx.llm.client import LLMError, extract_json
from floworx.llm.prompts import get_retry_suffix
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, log_event, time_block
from floworx.storage.models import UNASSIGNED, ClassificationResult, EmailMessage
from floworx.storage.tenancy import TenantConfig

logger = get_logger(__name__)

HUMAN_REVIEW_PRIMARY = "MANAGER"

_INJECTION_PATTERNS = [
    (
        r"(?i)(ignore|disregard|forget).*(previous|prior|above).*(instruction|directive|command|prompt)",
        "[REDACTED]",
    ),
    (r"(?i)system\s*:", ""),
    (r"(?i)assistant\s*:", ""),
    (r"(?i)you\s+are\s+now", "[REDACTED]"),
    (r"(?i)new\s+instructions?:", "[REDACTED]"),
]


def sanitize_user_input(text: str, max_length: int = 500) -> str:
    """
    Strip prompt-injection markers from email content and truncate it.

    Side Effects:
        Logs a warning for each injection pattern found
    """
    if not text:
        return ""

    for pattern, replacement in _INJECTION_PATTERNS:
        if re.search(pattern, text):
            logger.warning(
                "Potential prompt injection detected and sanitized: pattern=%s, original_length=%d",
                pattern[:50],
                len(text),
            )
            text = re.sub(pattern, replacement, text)

    if len(text) > max_length:
        logger.debug("Truncated user input from %d to %d characters", len(text), max_length)
        text = text[:max_length]
    return text


def _email_section(email: EmailMessage) -> str:
    sender = email.from_address
    if email.from_name:
        sender = f"{email.from_name} <{email.from_address}>"
    return (
        "\n\n### EMAIL TO ANALYZE:\n"
        f"From: {sanitize_user_input(sender, 200)}\n"
        f"Subject: {sanitize_user_input(email.subject, 300)}\n\n"
        f"{sanitize_user_input(email.body, PROMPT_MAX_BODY_CHARS)}\n"
    )


def apply_reply_policy(
    result: ClassificationResult, email: EmailMessage, tenant_config: TenantConfig
) -> ClassificationResult:
    """
    Force ``ai_can_reply`` False unless the business rules allow a draft.

    A reply needs: primary in AI_REPLY_CATEGORIES, confidence at or above
    AI_REPLY_MIN_CONFIDENCE, and a sender outside the business domain. The
    model's own answer can only narrow this, never widen it.
    """
    domain = tenant_config.business.email_domain
    internal = bool(domain) and email.sender_domain == domain
    allowed = (
        result.primary_category.upper() in AI_REPLY_CATEGORIES
        and result.confidence >= AI_REPLY_MIN_CONFIDENCE
        and not internal
    )
    can_reply = result.ai_can_reply and allowed
    if can_reply == result.ai_can_reply:
        return result
    return result.model_copy(update={"ai_can_reply": can_reply})


def human_review_result(reason: str = "") -> ClassificationResult:
    """Placeholder classification that files the email under MANAGER/Unassigned."""
    return ClassificationResult(
        primary_category=HUMAN_REVIEW_PRIMARY,
        secondary_category=UNASSIGNED,
        confidence=0.0,
        ai_can_reply=False,
        summary="Queued for human review",
        reasoning=reason,
    )


@dataclass(frozen=True)
class ClassificationOutcome:
    result: ClassificationResult
    needs_human_review: bool = False
    violations: tuple[str, ...] = field(default_factory=tuple)
    attempts: int = 1


class EmailClassifier:
    """
    Classifies one email for one tenant.

    Tenant context is passed per call, so a single instance (and a single
    shared model) serves every tenant.
    """

    def __init__(self, llm: LLMCompletion | None = None, max_attempts: int = CLASSIFIER_MAX_ATTEMPTS):
        if llm is None:
            from floworx.llm.gemini import GeminiCompletion

            llm = GeminiCompletion()
        self.llm = llm
        self.max_attempts = max(1, max_attempts)

    def classify(
        self,
        email: EmailMessage,
        tenant_config: TenantConfig,
        taxonomy: TaxonomyTree | None = None,
        historical: HistoricalContext | None = None,
    ) -> ClassificationResult:
        """
        Classify an email into the tenant's taxonomy.

        Raises:
            ClassificationValidationError: Output still invalid after the retry
            LLMError: The completion backend failed

        Side Effects:
            - Calls the LLM up to ``max_attempts`` times
            - Emits classification.* counters and events
        """
        result, _ = self._classify(email, tenant_config, taxonomy, historical)
        return result

    def _classify(
        self,
        email: EmailMessage,
        tenant_config: TenantConfig,
        taxonomy: TaxonomyTree | None,
        historical: HistoricalContext | None,
    ) -> tuple[ClassificationResult, int]:
        if taxonomy is None:
            taxonomy = tenant_config.taxonomy()
        base_prompt = build_classifier_prompt(tenant_config, taxonomy, historical) + _email_section(email)

        prompt = base_prompt
        last_error: ClassificationValidationError | None = None
        for attempt in range(1, self.max_attempts + 1):
            with time_block("classification.llm"):
                raw = self.llm.complete(prompt)

            try:
                data = extract_json(raw)
            except LLMError as e:
                last_error = ClassificationValidationError([str(e)], raw=raw)
            else:
                try:
                    result = validate_classification(data, taxonomy)
                except ClassificationValidationError as e:
                    last_error = e
                else:
                    result = apply_reply_policy(result, email, tenant_config)
                    counter("classification.success")
                    log_event(
                        "classification.completed",
                        tenant_id=tenant_config.tenant_id,
                        primary=result.primary_category,
                        confidence=result.confidence,
                        attempts=attempt,
                    )
                    return result, attempt

            counter("classification.retry")
            logger.info(
                "Classification attempt %d/%d rejected: %s",
                attempt,
                self.max_attempts,
                last_error.violations,
            )
            violations = "\n".join(f"- {v}" for v in last_error.violations)
            prompt = base_prompt + get_retry_suffix(violations=violations)

        if last_error is None:
            raise RuntimeError("Classifier ran no attempts")
        counter("classification.failed")
        raise last_error

    def classify_or_queue(
        self,
        email: EmailMessage,
        tenant_config: TenantConfig,
        taxonomy: TaxonomyTree | None = None,
        historical: HistoricalContext | None = None,
    ) -> ClassificationOutcome:
        """Like classify(), but an invalid result becomes a human-review outcome."""
        try:
            result, attempts = self._classify(email, tenant_config, taxonomy, historical)
        except ClassificationValidationError as e:
            log_event(
                "classification.queued_for_review",
                tenant_id=tenant_config.tenant_id,
                violations=len(e.violations),
            )
            return ClassificationOutcome(
                result=human_review_result("; ".join(e.violations)),
                needs_human_review=True,
                violations=tuple(e.violations),
                attempts=self.max_attempts,
            )
        return ClassificationOutcome(result=result, attempts=attempts)


def classify(
    email: EmailMessage, tenant_config: TenantConfig, llm: LLMCompletion | None = None
) -> ClassificationResult:
    """Module-level convenience: one-off EmailClassifier(llm).classify(...)."""
    return EmailClassifier(llm).classify(email, tenant_config)

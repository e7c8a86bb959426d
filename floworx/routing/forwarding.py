"""Helpers the delivery layer uses when forwarding a routed email to its manager."""

from __future__ import annotations

from collections.abc import Iterable

from floworx.routing.roles import role_index
from floworx.storage.models import (
    ClassificationResult,
    EmailMessage,
    Manager,
    Role,
    RoutingDecision,
)

_RULE = "━" * 70
NO_DRAFT_MARKER = "No AI draft"


def should_forward(manager: Manager | None) -> bool:
    """Forward only to managers with an email address and forwarding enabled."""
    if manager is None or not manager.email:
        return False
    return manager.forward_enabled


def build_forward_subject(email: EmailMessage, classification: ClassificationResult) -> str:
    category = classification.primary_category or "Email"
    return f"[FloWorx {category}] {email.subject or 'No Subject'}"


def _format_confidence(confidence: float | None) -> str:
    if not confidence:
        return "N/A"
    return f"{confidence * 100:.1f}%"


def _has_draft(draft: str | None) -> bool:
    return bool(draft and draft.strip() and NO_DRAFT_MARKER not in draft)


def build_forward_body(
    email: EmailMessage,
    classification: ClassificationResult,
    decision: RoutingDecision,
    draft: str | None = None,
    roles: Iterable[Role] = (),
) -> str:
    """
    Render the plain-text body sent to the routed manager.

    Args:
        email: Original message
        classification: Classifier output
        decision: Routing decision for the message
        draft: AI-drafted reply, if one was generated
        roles: Role table used to print role labels instead of ids

    Returns:
        Body text with classification, routing, original email, draft (or the
        reason there is none) and next steps
    """
    labels = {role_id: role.label for role_id, role in role_index(roles).items()}
    manager = decision.matched_manager
    confidence = _format_confidence(classification.confidence)
    has_draft = _has_draft(draft)

    lines = [
        _RULE,
        "FloWorx AI Email Routing - Action Required",
        _RULE,
        "",
        "CLASSIFICATION:",
        f"Category: {classification.primary_category or 'N/A'} > "
        f"{classification.secondary_category or 'General'}",
    ]
    if classification.tertiary_category:
        lines.append(f"Tertiary: {classification.tertiary_category}")
    lines += [
        f"Confidence: {confidence}",
        f"AI Can Reply: {'Yes' if classification.ai_can_reply else 'No'}",
        f"Summary: {classification.summary or 'N/A'}",
        "",
        "ROUTED TO YOU:",
        f"Name: {decision.manager_name}",
        f"Email: {decision.manager_email or 'Not configured'}",
        f"Reason: {decision.routing_reason}",
        f"Routing Confidence: {decision.routing_confidence}%",
    ]
    if manager is not None and manager.roles:
        lines.append("Roles: " + ", ".join(labels.get(r, r) for r in manager.roles))

    sender = email.from_name or email.from_address
    lines += [
        "",
        _RULE,
        "ORIGINAL EMAIL:",
        _RULE,
        f"From: {sender} <{email.from_address}>",
        f"To: {email.to_address}",
        f"Date: {email.received_at.isoformat() if email.received_at else 'Unknown'}",
        f"Subject: {email.subject}",
        "",
        email.body or "No content",
        _RULE,
        "",
    ]

    if has_draft:
        lines += ["AI SUGGESTED DRAFT RESPONSE:", _RULE, draft.strip(), _RULE]  # type: ignore[union-attr]
        steps = ["1. Review the AI draft above", "2. Edit if needed or approve as-is"]
    else:
        reason = (
            "Draft generation failed"
            if classification.ai_can_reply
            else f"Low confidence ({confidence}) - requires human review"
        )
        lines += [
            "NO AI DRAFT GENERATED",
            _RULE,
            f"Reason: {reason}",
            "This email needs your personal attention and response.",
            _RULE,
        ]
        steps = ["1. Review the original email", "2. Write your response"]

    lines += [
        "",
        "NEXT STEPS:",
        *steps,
        "3. Reply to customer",
        "",
        f"Reply to: {email.from_address}",
        f"Filed in: {decision.manager_folder}",
        f"Routed at: {decision.timestamp.isoformat()}",
    ]
    return "\n".join(lines)

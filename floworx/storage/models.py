"""
Domain models (Pydantic v2) for the FloWorx decision engine.

Everything crossing the library boundary (tenant config, emails, LLM output,
provider labels, routing decisions, corrections) is parsed into one of these
frozen models. Email content is redacted in repr so decisions can be logged.
"""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from enum import Enum
from hashlib import sha256
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def normalize_category(name: str | None) -> str:
    """Comparison key for category names: ``e-Transfer`` -> ``etransfer``."""
    if not name:
        return ""
    return re.sub(r"[^0-9a-z]", "", name.casefold())


def _hash_value(value: str) -> str:
    digest = sha256(value.encode("utf-8")).hexdigest()
    return f"hash:{digest[:12]}"


class RedactedModel(BaseModel):
    """Base model that redacts sensitive fields in repr/dumps."""

    model_config = ConfigDict(frozen=True)
    _redact_fields = {"body", "subject", "from_address", "to_address", "email_body_preview"}

    def _redacted_dump(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        for field in self._redact_fields:
            if field in data and isinstance(data[field], str) and data[field]:
                data[field] = _hash_value(data[field])
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._redacted_dump()})"

    def redacted(self) -> dict[str, Any]:
        """Public helper for telemetry-safe dumps."""
        return self._redacted_dump()


# ---------------------------------------------------------------------------
# Tenant configuration
# ---------------------------------------------------------------------------


class BusinessInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Business"
    business_types: tuple[str, ...] = ("General Service",)
    email_domain: str = ""
    phone: str = ""
    website: str = ""
    address: str = ""
    currency: str = "USD"
    timezone: str = "America/New_York"
    service_areas: str = ""
    operating_hours: str = ""
    response_time: str = ""

    @field_validator("business_types", mode="before")
    @classmethod
    def _split_types(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value

    @field_validator("email_domain")
    @classmethod
    def _clean_domain(cls, value: str) -> str:
        return value.strip().lstrip("@").lower()


class Role(BaseModel):
    """Static routing role. ``matched_categories`` holds primary category names."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str = ""
    description: str = ""
    matched_categories: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    weight: float = 10

    @field_validator("matched_categories")
    @classmethod
    def _upper_categories(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(category.strip().upper() for category in value)


class Manager(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str | None = None
    roles: tuple[str, ...] = ()
    forward_enabled: bool = False

    @model_validator(mode="before")
    @classmethod
    def _default_forwarding(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("forward_enabled") is None:
            data = dict(data)
            data["forward_enabled"] = bool((data.get("email") or "").strip())
        return data

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Manager name must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def _blank_email_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class Supplier(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str | None = None
    domains: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Supplier name must not be blank")
        return value

    @field_validator("domains", mode="before")
    @classmethod
    def _split_domains(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            value = value.split(",")
        return tuple(d.strip().lstrip("@").lower() for d in value if d and d.strip())


# ---------------------------------------------------------------------------
# Email + provider
# ---------------------------------------------------------------------------


class EmailMessage(RedactedModel):
    id: str = ""
    subject: str = ""
    body: str = ""
    from_address: str = ""
    from_name: str = ""
    to_address: str = ""
    received_at: datetime | None = None

    @property
    def sender_domain(self) -> str:
        _, _, domain = self.from_address.rpartition("@")
        return domain.strip().strip(">").lower()

    def text_for_matching(self) -> str:
        """Lowercased ``subject + " " + body`` used by every text matcher."""
        return f"{self.subject} {self.body}".lower()


class ProviderLabel(BaseModel):
    """A label (Gmail) or folder (Outlook) as reported by the provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    parent_id: str | None = None


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class Entities(BaseModel):
    model_config = ConfigDict(frozen=True)

    contact_name: str | None = None
    email_address: str | None = None
    phone_number: str | None = None
    order_number: str | None = None


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary_category: str
    secondary_category: str | None = None
    tertiary_category: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    ai_can_reply: bool = False
    summary: str = ""
    reasoning: str = ""
    entities: Entities = Field(default_factory=Entities)

    @field_validator("secondary_category", "tertiary_category", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            return None
        return value

    def category_path(self) -> tuple[str, ...]:
        return tuple(
            c for c in (self.primary_category, self.secondary_category, self.tertiary_category) if c
        )


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


UNASSIGNED = "Unassigned"


class RoutingRule(str, Enum):
    """Which priority level produced a routing decision."""

    NAME_MATCH = "name_match"  # Priority 1
    SECONDARY_CATEGORY = "secondary_category"  # Priority 2
    ROLE_CATEGORY = "role_category"  # Priority 3
    KEYWORD = "keyword"  # Priority 4
    SUPPLIER = "supplier"  # Priority 5
    DEFAULT = "default"  # Fallback to first manager
    UNASSIGNED = "unassigned"  # No managers configured


class RoutingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    matched_manager: Manager | None
    routing_reason: str
    routing_confidence: int = Field(ge=0, le=100)
    rule: RoutingRule
    matched_roles: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def is_unassigned(self) -> bool:
        return self.matched_manager is None

    @property
    def manager_name(self) -> str:
        return self.matched_manager.name if self.matched_manager else UNASSIGNED

    @property
    def manager_email(self) -> str | None:
        return self.matched_manager.email if self.matched_manager else None

    @property
    def manager_folder(self) -> str:
        return f"MANAGER/{self.manager_name}"


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


class InvalidStatusTransition(ValueError):
    """Training status may only move forward: pending -> approved -> used_in_training."""


class TrainingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    USED_IN_TRAINING = "used_in_training"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_transition_to(self, target: TrainingStatus) -> bool:
        return target.rank == self.rank + 1


_STATUS_ORDER = (TrainingStatus.PENDING, TrainingStatus.APPROVED, TrainingStatus.USED_IN_TRAINING)


class CategorySnapshot(BaseModel):
    """Category triple (plus confidence for AI output) captured at correction time."""

    model_config = ConfigDict(frozen=True)

    primary: str
    secondary: str | None = None
    tertiary: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    ai_can_reply: bool | None = None

    @classmethod
    def from_result(cls, result: ClassificationResult) -> CategorySnapshot:
        return cls(
            primary=result.primary_category,
            secondary=result.secondary_category,
            tertiary=result.tertiary_category,
            confidence=result.confidence,
            ai_can_reply=result.ai_can_reply,
        )

    def key(self) -> tuple[str, str, str]:
        return (
            normalize_category(self.primary),
            normalize_category(self.secondary),
            normalize_category(self.tertiary),
        )


class CorrectionFeedback(RedactedModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str = "default"
    email_subject: str
    email_from: str = ""
    email_body_preview: str = ""
    original_categories: CategorySnapshot
    corrected_categories: CategorySnapshot
    confidence_rating: int = Field(ge=1, le=5)
    correction_reason: str | None = None
    training_status: TrainingStatus = TrainingStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def was_wrong(self) -> bool:
        return self.original_categories.key() != self.corrected_categories.key()

    def with_training_status(self, status: TrainingStatus | str) -> CorrectionFeedback:
        """
        Return a copy with the next training status.

        Raises:
            InvalidStatusTransition: On skip, repeat or reverse transitions
        """
        target = TrainingStatus(status)
        if not self.training_status.can_transition_to(target):
            raise InvalidStatusTransition(
                f"Cannot move feedback {self.id} from {self.training_status.value} "
                f"to {target.value}"
            )
        return self.model_copy(update={"training_status": target})

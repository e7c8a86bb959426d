"""Centralized configuration for the FloWorx decision engine.

Typed constants for the LLM, provider adapters, reconciliation, prompts and
feedback storage. Environment variable overrides use safe defaults so the
library works without any extra env configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).parent
DATA_DIR = PACKAGE_ROOT / "data"

# --- Google Cloud / Gemini ---
GOOGLE_CLOUD_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION: str = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS: int = int(os.getenv("GEMINI_MAX_TOKENS", "1024"))
GEMINI_TEMPERATURE: float = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("FLOWORX_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("FLOWORX_LLM_MAX_RETRIES", "3"))
CLASSIFIER_MAX_ATTEMPTS: int = int(os.getenv("FLOWORX_CLASSIFIER_MAX_ATTEMPTS", "2"))

# --- Provider APIs (Gmail / Outlook) ---
PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("FLOWORX_PROVIDER_TIMEOUT", "15"))
PROVIDER_MAX_RETRIES: int = min(int(os.getenv("FLOWORX_PROVIDER_MAX_RETRIES", "3")), 3)
PROVIDER_RETRY_BASE_DELAY: float = float(os.getenv("FLOWORX_PROVIDER_RETRY_BASE_DELAY", "0.5"))
PROVIDER_RETRY_MAX_DELAY: float = float(os.getenv("FLOWORX_PROVIDER_RETRY_MAX_DELAY", "5.0"))
GRAPH_API_BASE_URL: str = os.getenv("GRAPH_API_BASE_URL", "https://graph.microsoft.com/v1.0")

# --- Reconciliation ---
RECONCILE_INTER_OP_DELAY: float = float(os.getenv("FLOWORX_RECONCILE_DELAY", "0.1"))
RECONCILE_VERIFY_ATTEMPTS: int = int(os.getenv("FLOWORX_RECONCILE_VERIFY_ATTEMPTS", "3"))

# --- Prompt builder ---
PROMPT_MAX_HISTORICAL_EXAMPLES: int = int(os.getenv("FLOWORX_PROMPT_MAX_EXAMPLES", "10"))
CLASSIFIER_PROMPT_NAME: str = os.getenv("FLOWORX_CLASSIFIER_PROMPT", "classifier_prompt")
PROMPT_MAX_BODY_CHARS: int = int(os.getenv("FLOWORX_PROMPT_MAX_BODY_CHARS", "4000"))

# --- Classification policy ---
AI_REPLY_MIN_CONFIDENCE: float = 0.75
AI_REPLY_CATEGORIES: tuple[str, ...] = ("SUPPORT", "SALES", "URGENT")
HIGH_CONFIDENCE_THRESHOLD: float = 0.8

# --- Feedback storage ---
FEEDBACK_PREVIEW_CHARS: int = 500
FEEDBACK_EXPORT_MIN_QUALITY: int = 3
FEEDBACK_BATCH_SIZE: int = int(os.getenv("FLOWORX_FEEDBACK_BATCH_SIZE", "200"))
DB_PATH: Path = Path(os.getenv("FLOWORX_DB_PATH", str(DATA_DIR / "floworx.db")))
DB_CONNECT_TIMEOUT: float = float(os.getenv("FLOWORX_DB_CONNECT_TIMEOUT", "30.0"))

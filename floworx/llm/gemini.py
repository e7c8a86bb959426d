"""
Gemini completion backend.

The model instance is created once per process (lru_cache) and shared by every
tenant; tenant context travels in the prompt, never in the model.
"""

from __future__ import annotations

from functools import lru_cache

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from floworx.config import (
    GEMINI_LOCATION,
    GEMINI_MAX_TOKENS,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    GOOGLE_CLOUD_PROJECT,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT_SECONDS,
)
from floworx.infrastructure.env import get_optional_env
from floworx.llm.client import LLMError
from floworx.observability.logging import get_logger
from floworx.observability.telemetry import counter, time_block

logger = get_logger(__name__)


class GeminiInitializationError(LLMError):
    """Raised when the Gemini model cannot be initialized."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create the shared Vertex AI Gemini model.

    Raises:
        GeminiInitializationError: If no project is configured or init fails
    """
    import vertexai
    from vertexai.generative_models import GenerativeModel

    project = GOOGLE_CLOUD_PROJECT or get_optional_env("GOOGLE_CLOUD_PROJECT")
    if not project:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

    try:
        vertexai.init(project=project, location=GEMINI_LOCATION)
        model = GenerativeModel(GEMINI_MODEL)
    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info(
        "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
        project,
        GEMINI_LOCATION,
        GEMINI_MODEL,
    )
    return model


def clear_model_cache() -> None:
    get_gemini_model.cache_clear()


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError)),
    reraise=True,
)
def _generate(prompt: str) -> str:
    """
    One Gemini call, with Vertex AI exceptions mapped onto retryable builtins.

    Raises:
        TimeoutError: Deadline exceeded (retried)
        ConnectionError: Unavailable, rate limited or internal error (retried)
        LLMError: Any other failure (not retried)
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = get_gemini_model()
    generation_config = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
        "response_mime_type": "application/json",
    }
    try:
        response = model.generate_content(prompt, generation_config=generation_config)
        return response.text
    except DeadlineExceeded as e:
        counter("llm.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except (ServiceUnavailable, InternalServerError) as e:
        counter("llm.service_error")
        logger.warning("LLM service error, will retry: %s", e)
        raise ConnectionError(f"LLM service error: {e}") from e
    except ResourceExhausted as e:
        counter("llm.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", e)
        raise ConnectionError(f"LLM rate limited: {e}") from e
    except Exception as e:
        logger.error("LLM call failed: %s", e)
        raise LLMError(f"LLM call failed: {e}") from e


class GeminiCompletion:
    """LLMCompletion backed by Vertex AI Gemini."""

    def complete(self, prompt: str) -> str:
        with time_block("llm.complete"):
            try:
                return _generate(prompt)
            except (TimeoutError, ConnectionError) as e:
                raise LLMError(f"LLM unavailable after {LLM_MAX_RETRIES} attempts: {e}") from e

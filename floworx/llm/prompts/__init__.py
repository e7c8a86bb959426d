"""
Prompt Management Module

Loads LLM prompt templates from text files next to this module so prompt
wording can change without touching code.
"""

from __future__ import annotations

from pathlib import Path

from floworx.config import CLASSIFIER_PROMPT_NAME

PROMPTS_DIR = Path(__file__).parent


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self, prompts_dir: Path = PROMPTS_DIR):
        self.prompts_dir = prompts_dir
        self._cache: dict[str, str] = {}

    def load_prompt(self, prompt_name: str) -> str:
        """
        Load a prompt template from file.

        Args:
            prompt_name: Name of the prompt file (without .txt extension)

        Raises:
            FileNotFoundError: If the template does not exist
        """
        if prompt_name not in self._cache:
            prompt_path = self.prompts_dir / f"{prompt_name}.txt"

            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

            with open(prompt_path, encoding="utf-8") as f:
                self._cache[prompt_name] = f.read()

        return self._cache[prompt_name]

    def get_classifier_prompt(self, **kwargs: str) -> str:
        """Classifier system prompt with tenant sections substituted in."""
        return self.load_prompt(CLASSIFIER_PROMPT_NAME).format(**kwargs)

    def get_retry_suffix(self, **kwargs: str) -> str:
        """Stricter instructions appended after a validation failure."""
        return self.load_prompt("classifier_retry").format(**kwargs)


_loader = PromptLoader()


def get_classifier_prompt(**kwargs: str) -> str:
    return _loader.get_classifier_prompt(**kwargs)


def get_retry_suffix(**kwargs: str) -> str:
    return _loader.get_retry_suffix(**kwargs)

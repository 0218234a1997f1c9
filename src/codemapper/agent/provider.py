"""LLM provider interface and Gemini implementation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from google import genai
from google.genai import types

from codemapper import config

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Text returned by a provider plus the token usage it reported."""

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class GenerationProvider(Protocol):
    """Protocol for text generation providers."""

    def generate(self, prompt: str, system: str | None = None) -> Completion:
        """Generate a JSON-bearing completion for a prompt."""
        ...


class GeminiProvider:
    """Gemini implementation of GenerationProvider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_secs: float | None = None,
        max_output_tokens: int = 8192,
    ) -> None:
        timeout = timeout_secs or config.AI_TIMEOUT_SECS
        self._client = genai.Client(
            api_key=api_key or config.GEMINI_API_KEY,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self._model = model or config.GEMINI_MODEL
        self._max_output_tokens = max_output_tokens

    @property
    def model(self) -> str:
        return self._model

    def generate(self, prompt: str, system: str | None = None) -> Completion:
        """Generate text using Gemini.

        Args:
            prompt: The user prompt.
            system: Optional system instruction.

        Returns:
            The response text and token usage.
        """
        logger.debug("Generate via %s (%d char prompt)", self._model, len(prompt))
        t0 = time.perf_counter()
        response = self._client.models.generate_content(
            model=self._model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system,
                response_mime_type="application/json",
                max_output_tokens=self._max_output_tokens,
            ),
        )
        usage = response.usage_metadata
        prompt_tokens = (usage.prompt_token_count or 0) if usage else 0
        completion_tokens = (usage.candidates_token_count or 0) if usage else 0
        text = response.text or ""
        logger.debug(
            "Generate complete: %d chars, %d/%d tokens, %.0fms",
            len(text), prompt_tokens, completion_tokens, (time.perf_counter() - t0) * 1000,
        )
        return Completion(text=text, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)


def create_provider() -> GenerationProvider | None:
    """Return the configured provider, or None when no API key is set."""
    if not config.GEMINI_API_KEY:
        logger.info("GEMINI_API_KEY not set; AI enrichment disabled")
        return None
    return GeminiProvider()

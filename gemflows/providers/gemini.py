# gemflows/providers/gemini.py
"""Gemini provider
-------------------
Thin wrapper around the google-genai client. One client is shared by every
`generate` step of a run, including the threads of a parallel group.
"""

from __future__ import annotations

from typing import Any, Optional

from google import genai
from google.genai import types

from gemflows.exceptions import CapabilityError, ConfigurationError
from gemflows.utils.config import Settings, get_settings
from gemflows.utils.logger import get_logger


def first_candidate_text(resp: Any) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = getattr(resp, "candidates", None) or []
    if not candidates or getattr(candidates[0], "content", None) is None:
        raise CapabilityError("empty response")

    parts = getattr(candidates[0].content, "parts", None) or []
    out = "".join(p.text for p in parts if getattr(p, "text", None))
    if not out:
        raise CapabilityError("no text in response")
    return out


class GeminiProvider:
    """Generation provider backed by the Gemini API."""

    def __init__(self, api_key: str, timeout_ms: Optional[int] = None, client: Optional[genai.Client] = None):
        if not api_key and client is None:
            raise ConfigurationError("GEMINI_API_KEY is not set")
        http_options = types.HttpOptions(timeout=timeout_ms) if timeout_ms else None
        self.client = client or genai.Client(api_key=api_key, http_options=http_options)
        self.log = get_logger(__name__)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["GeminiProvider"]:
        """Build a provider, or None when no API key is configured."""
        s = settings or get_settings()
        if not s.GEMINI_API_KEY:
            return None
        return cls(api_key=s.GEMINI_API_KEY, timeout_ms=s.GEMINI_TIMEOUT_MS)

    def generate(self, model: str, system_prompt: str, user_prompt: str) -> str:
        if not model:
            raise CapabilityError("model is required")

        config = None
        if system_prompt:
            config = types.GenerateContentConfig(system_instruction=system_prompt)

        self.log.debug(f"gemini request: model={model} prompt_chars={len(user_prompt)}")
        try:
            resp = self.client.models.generate_content(model=model, contents=user_prompt, config=config)
        except Exception as e:
            raise CapabilityError(f"gemini request failed: {e}") from e
        return first_candidate_text(resp)

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()

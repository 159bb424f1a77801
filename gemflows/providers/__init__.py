"""Text-generation providers for `generate` steps."""

from typing import Protocol


class GenerationProvider(Protocol):
    def generate(self, model: str, system_prompt: str, user_prompt: str) -> str: ...


__all__ = ["GenerationProvider"]

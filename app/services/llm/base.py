from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMError(Exception):
    """LLM call failed (transport error or non-200 response)."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass

    async def complete(self, system_context: str, history: List[dict], user_message: str, **kwargs) -> str:
        """Reply text for user_message given a system prompt and prior turns."""
        messages = [{"role": "system", "content": system_context}, *history, {"role": "user", "content": user_message}]
        response = await self.generate(messages, **kwargs)
        return response.content

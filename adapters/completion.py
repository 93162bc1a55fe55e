"""Completion service adapter (Anthropic Messages API)."""
from typing import Optional

import anthropic

from errors import CompletionError


class CompletionClient:
    """
    Single-attempt completion calls.

    A user is waiting on every call, so the SDK's own retries are disabled;
    the caller wraps the call in a hard timeout instead.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(self, prompt: str, temperature: float = 0.7) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            print(f"[Generator] model={self.model} completion error={str(e)[:200]}")
            raise CompletionError(f"Completion request failed: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        if not text.strip():
            raise CompletionError("Completion service returned an empty response")
        return text

from __future__ import annotations

import threading

from chorus_core.errors import ProviderError
from chorus_core.providers.base import ApiResponse, BaseProvider


class AnthropicProvider(BaseProvider):
    PROVIDER_TYPE = "anthropic"
    MODEL = "claude-sonnet-4-20250514"
    PRICE_PER_MTOK = (3.0, 15.0)
    # temperature=0.3 for Anthropic — slightly higher than OpenAI's 0.2 to
    # allow more natural phrasing in findings while keeping the output
    # deterministic enough for consistent JSON structure.
    TEMPERATURE = 0.3

    def __init__(self, api_key: str, model: str | None = None):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. " "Install it with: pip install anthropic"
            )
        super().__init__(model)
        self.client = Anthropic(api_key=api_key)

    def _call_api(self, system_prompt: str, user_prompt: str, cancel_event: threading.Event) -> ApiResponse:
        # Streamed so a cancellation can drop the connection mid-response;
        # leaving the context manager closes the HTTP stream.
        chunks: list[str] = []
        with self.client.messages.stream(
            model=self.model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        ) as stream:
            for text in stream.text_stream:
                if cancel_event.is_set():
                    raise ProviderError("Anthropic response stream closed: run was cancelled")
                chunks.append(text)
            final = stream.get_final_message()
        usage = getattr(final, "usage", None)
        return ApiResponse(
            text="".join(chunks).strip(),
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )

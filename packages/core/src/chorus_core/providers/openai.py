from __future__ import annotations

import threading

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from chorus_core.errors import ProviderError
from chorus_core.providers.base import ApiResponse, BaseProvider


class OpenAIProvider(BaseProvider):
    PROVIDER_TYPE = "openai"
    MODEL = "gpt-4o"
    PRICE_PER_MTOK = (2.5, 10.0)
    # temperature=0.2 for OpenAI — lower than Anthropic's 0.3 to lean toward
    # more deterministic, structured JSON output from GPT-4o.
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, model: str | None = None):
        if _OpenAI is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install openai"
            )
        super().__init__(model)
        self.client = _OpenAI(api_key=api_key)

    def _call_api(self, system_prompt: str, user_prompt: str, cancel_event: threading.Event) -> ApiResponse:
        stream = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            response_format={"type": "json_object"},
            stream=True,
            stream_options={"include_usage": True},
        )
        chunks: list[str] = []
        usage = None
        try:
            for chunk in stream:
                if cancel_event.is_set():
                    raise ProviderError("OpenAI response stream closed: run was cancelled")
                if chunk.choices:
                    chunks.append(chunk.choices[0].delta.content or "")
                # With include_usage the final chunk carries usage and no choices.
                if getattr(chunk, "usage", None) is not None:
                    usage = chunk.usage
        finally:
            stream.close()
        return ApiResponse(
            text="".join(chunks),
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

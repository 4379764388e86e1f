"""AI provider backends.

Each backend wraps one SDK client bound to one API key and returns a
``ProviderResponse`` or ``None`` when the SDK produced no response object.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("api.providers")


@dataclass
class ProviderResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class ProviderBackend:
    provider = ""

    def __init__(self, api_key: str, model: str) -> None:
        self.api_key = api_key
        self.model = model

    @property
    def key_hint(self) -> str:
        return f"...{self.api_key[-4:]}"

    def complete(self, prompt: str) -> Optional[ProviderResponse]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} model={self.model} key={self.key_hint}>"


class GoogleGenAIBackend(ProviderBackend):
    provider = "google"

    def complete(self, prompt: str) -> Optional[ProviderResponse]:
        from google import genai

        client = genai.Client(api_key=self.api_key)
        response = client.models.generate_content(model=self.model, contents=prompt)
        if response is None:
            return None

        usage = getattr(response, "usage_metadata", None)
        return ProviderResponse(
            text=response.text or "",
            input_tokens=int(getattr(usage, "prompt_token_count", 0) or 0),
            output_tokens=int(getattr(usage, "candidates_token_count", 0) or 0),
        )


class OpenAIBackend(ProviderBackend):
    provider = "openai"

    def complete(self, prompt: str) -> Optional[ProviderResponse]:
        from openai import OpenAI

        client = OpenAI(api_key=self.api_key)
        completion = client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
        )
        if completion is None or not completion.choices:
            return None

        message = completion.choices[0].message
        usage = completion.usage
        return ProviderResponse(
            text=(message.content if message else None) or "",
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        )

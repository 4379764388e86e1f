"""Provider failover engine.

Tries AI backends in a fixed order until one returns non-empty text,
prices the call from the token counts, and records it on the caller's
usage ledger. The monthly spend cap is checked before any backend runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..config import GenerationConfig
from ..errors import InvalidArgument, ResourceExhausted, Unavailable
from .providers import GoogleGenAIBackend, OpenAIBackend, ProviderBackend
from .usage_ledger import UsageLedger, month_key

logger = logging.getLogger("api.generation")

CAP_REACHED_MESSAGE = (
    "You have reached your monthly AI usage limit. "
    "This will reset on the first of the next month."
)
UNAVAILABLE_MESSAGE = (
    "The AI service is currently unavailable after multiple attempts. "
    "Please try again later."
)


@dataclass
class GenerationResult:
    text: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float


def build_candidates(config: GenerationConfig) -> List[ProviderBackend]:
    """Ordered backends for every configured credential."""
    candidates: List[ProviderBackend] = [
        GoogleGenAIBackend(key, config.google_model)
        for key in config.google_api_keys
        if key
    ]
    if config.openai_api_key:
        candidates.append(OpenAIBackend(config.openai_api_key, config.openai_model))
    return candidates


class ProviderFailoverEngine:
    def __init__(
        self,
        config: GenerationConfig,
        ledger: UsageLedger,
        candidates_factory: Optional[Callable[[GenerationConfig], List[ProviderBackend]]] = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self._candidates_factory = candidates_factory or build_candidates

    def price(self, model: str, input_tokens: int, output_tokens: int) -> Optional[float]:
        pricing = self.config.pricing.get(model)
        if pricing is None:
            return None
        return input_tokens * pricing.input_rate + output_tokens * pricing.output_rate

    def generate(self, user_id: str, prompt: object) -> GenerationResult:
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidArgument("The function must be called with a 'prompt' argument.")

        month = month_key()
        current_cost = self.ledger.current_cost(user_id, month)
        if current_cost >= self.config.monthly_cap:
            logger.info("Monthly cap reached uid=%s month=%s cost=%.4f", user_id, month, current_cost)
            raise ResourceExhausted(CAP_REACHED_MESSAGE)

        errors: List[str] = []
        for backend in self._candidates_factory(self.config):
            logger.info(
                "Attempting %s (%s) with key %s",
                backend.provider,
                backend.model,
                backend.key_hint,
            )
            try:
                response = backend.complete(prompt)
                if response is None:
                    raise ValueError("The model's response was empty or invalid.")
                if not response.text.strip():
                    raise ValueError("Model returned an empty response.")
            except Exception as exc:
                message = f"{backend.provider} ({backend.model}) failed: {exc}"
                logger.warning(message)
                errors.append(message)
                continue

            logger.info("Generation succeeded with %s (%s)", backend.provider, backend.model)
            cost = self.price(backend.model, response.input_tokens, response.output_tokens)
            if cost is None:
                logger.warning("No pricing for model %s; usage not recorded", backend.model)
                cost = 0.0
            else:
                self.ledger.record(
                    user_id,
                    input_tokens=response.input_tokens,
                    output_tokens=response.output_tokens,
                    cost=cost,
                    month=month,
                )
            return GenerationResult(
                text=response.text,
                provider=backend.provider,
                model=backend.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost=cost,
            )

        logger.error("All AI backends failed uid=%s errors=%s", user_id, errors)
        raise Unavailable(UNAVAILABLE_MESSAGE)

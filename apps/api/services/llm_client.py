"""OpenAI completion client with JSON decoding and truncation-aware retry."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from openai import OpenAI

from config import require_openai_api_key, settings
from services.llm_json import IncompleteJSONError, LLMJSONError, decode_llm_json

logger = logging.getLogger(__name__)

TRUNCATION_RETRY_NOTICE = (
    "\n\nIMPORTANT: your previous response was truncated before the JSON was complete. "
    "Resend the COMPLETE JSON from the beginning. Keep every text field short and "
    "concise so the full response fits. Do not add anything outside the JSON.\n"
    "IMPORTANTE: tu respuesta anterior quedó truncada. Envía el JSON completo y más conciso."
)


class LLMConfigurationError(RuntimeError):
    """Raised when the completion service is not configured."""


@dataclass(frozen=True)
class LLMCompletion:
    text: str
    finish_reason: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


def is_truncation_error(exc: Exception) -> bool:
    """Only incomplete output is worth regenerating."""
    return isinstance(exc, IncompleteJSONError)


@dataclass
class TruncationRetryPolicy:
    """Bounded retry for decode failures.

    A retry is attempted only when ``classify`` accepts the failure. The retry
    prompt carries a truncation notice and its token budget is escalated,
    never lowered below the original request.
    """

    max_attempts: int = 2
    budget_escalation: float = 1.5
    budget_ceiling: int = 8192
    classify: Callable[[Exception], bool] = is_truncation_error

    def next_budget(self, max_tokens: int) -> int:
        escalated = min(int(max_tokens * max(self.budget_escalation, 1.0)), self.budget_ceiling)
        return max(max_tokens, escalated)

    def retry_prompt(self, prompt: str) -> str:
        return prompt + TRUNCATION_RETRY_NOTICE

    async def attempt(
        self,
        call: Callable[[str, int], Awaitable[Any]],
        prompt: str,
        max_tokens: int,
    ) -> Any:
        current_prompt = prompt
        budget = max_tokens
        for attempt_number in range(1, max(self.max_attempts, 1) + 1):
            try:
                return await call(current_prompt, budget)
            except LLMJSONError as exc:
                if attempt_number >= self.max_attempts or not self.classify(exc):
                    raise
                budget = self.next_budget(max_tokens)
                current_prompt = self.retry_prompt(prompt)
                logger.warning(
                    "Retrying completion after %s JSON (attempt %s/%s, max_tokens=%s)",
                    exc.kind,
                    attempt_number + 1,
                    self.max_attempts,
                    budget,
                )
        raise RuntimeError("Retry policy exhausted without a result")


def get_openai_client(api_key: Optional[str] = None) -> OpenAI:
    """Build the OpenAI client or raise a configuration error."""
    try:
        key = api_key or require_openai_api_key()
    except ValueError as exc:
        raise LLMConfigurationError(str(exc)) from exc
    return OpenAI(api_key=key, timeout=settings.LLM_TIMEOUT_SECONDS)


def default_retry_policy() -> TruncationRetryPolicy:
    return TruncationRetryPolicy(
        max_attempts=2,
        budget_escalation=settings.LLM_RETRY_TOKEN_ESCALATION,
        budget_ceiling=settings.LLM_MAX_TOKENS_CEILING,
    )


class ResearchLLMClient:
    """Executes prompts against the completion API and decodes JSON replies."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        retry_policy: Optional[TruncationRetryPolicy] = None,
    ):
        self.client = client or get_openai_client()
        self.model = model or settings.LLM_MODEL
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.retry_policy = retry_policy or default_retry_policy()

    def _create(self, prompt: str, max_tokens: int) -> Any:
        return self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=self.temperature,
        )

    async def complete(self, prompt: str, max_tokens: int) -> LLMCompletion:
        """Single completion call."""
        response = await asyncio.to_thread(self._create, prompt, max_tokens)
        if not getattr(response, "choices", None):
            raise RuntimeError("Invalid completion response: no choices returned")
        choice = response.choices[0]
        completion = LLMCompletion(
            text=choice.message.content or "",
            finish_reason=getattr(choice, "finish_reason", None),
        )
        if completion.truncated:
            # Still decoded: a cut inside trailing whitespace leaves valid JSON.
            logger.warning("Completion hit max_tokens=%s, attempting to parse anyway", max_tokens)
        return completion

    async def _complete_json(self, prompt: str, max_tokens: int) -> Any:
        completion = await self.complete(prompt, max_tokens)
        return decode_llm_json(completion.text)

    async def complete_and_parse(self, prompt: str, max_tokens: int) -> Any:
        """Complete a prompt and decode its JSON, retrying once on truncation."""
        return await self.retry_policy.attempt(self._complete_json, prompt, max_tokens)

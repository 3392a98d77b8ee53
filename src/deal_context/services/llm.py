"""Language-model collaborator via LiteLLM Router.

``complete(prompt) -> answer`` is the only operation the pipeline needs.
The Router groups a primary and a fallback model under the ``reasoning``
name; provider errors that mean "try again later" surface as
``UpstreamUnavailable``.
"""

from __future__ import annotations

from typing import Protocol

import litellm
import structlog
from litellm import Router

from src.deal_context.config import Settings, get_settings
from src.deal_context.core.errors import UpstreamUnavailable

logger = structlog.get_logger(__name__)

EMPTY_ANSWER = (
    "I couldn't put together an answer from the deal data. Try rephrasing the question."
)

_UNAVAILABLE_ERRORS = (
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


class CompletionService(Protocol):
    async def complete(self, prompt: str) -> str: ...


class LLMService:
    """LiteLLM Router with OpenAI as primary and Anthropic as fallback."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()

        model_list = []

        if settings.OPENAI_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "openai/gpt-4.1-mini",
                    "api_key": settings.OPENAI_API_KEY,
                },
            })

        if settings.ANTHROPIC_API_KEY:
            model_list.append({
                "model_name": "reasoning",
                "litellm_params": {
                    "model": "anthropic/claude-sonnet-4-20250514",
                    "api_key": settings.ANTHROPIC_API_KEY,
                },
            })

        if not model_list:
            logger.warning("llm.no_api_keys", hint="LLM service will be unavailable")
            self.router = None
            return

        self.router = Router(
            model_list=model_list,
            num_retries=settings.LLM_MAX_RETRIES,
            timeout=settings.LLM_TIMEOUT,
            allowed_fails=3,
            cooldown_time=30,
        )

    async def complete(self, prompt: str, max_tokens: int = 1024, temperature: float = 0.3) -> str:
        """Run a single-turn completion and return the answer text.

        Raises:
            UpstreamUnavailable: No provider configured, or the provider timed
                out / refused the call.
        """
        if not self.router:
            raise UpstreamUnavailable("llm", "no LLM API keys configured")

        try:
            response = await self.router.acompletion(
                model="reasoning",
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except _UNAVAILABLE_ERRORS as exc:
            logger.warning("llm.completion_failed", error=repr(exc))
            raise UpstreamUnavailable("llm", repr(exc)) from exc

        usage = getattr(response, "usage", None)
        logger.info(
            "llm.completion",
            model=getattr(response, "model", None),
            prompt_chars=len(prompt),
            total_tokens=getattr(usage, "total_tokens", None),
        )
        content = (response.choices[0].message.content or "").strip()
        return content or EMPTY_ANSWER

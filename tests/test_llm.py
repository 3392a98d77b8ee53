"""LLM service and prompt assembly tests.

Uses mocks for the LiteLLM Router to avoid provider calls in tests.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import litellm
import pytest

from src.deal_context.chat.context import ThreadContext, ThreadMessage
from src.deal_context.chat.slack import SlackMessage
from src.deal_context.core.errors import UpstreamUnavailable
from src.deal_context.crm.schemas import Deal, LineItem
from src.deal_context.orchestrator.schemas import DealBundle
from src.deal_context.services.llm import EMPTY_ANSWER, LLMService
from src.deal_context.services.prompts import NOT_FOUND, build_plan_prompt, build_qa_prompt


def _bundle(**overrides) -> DealBundle:
    values = {
        "question": "what did they buy?",
        "deal": Deal(
            id="2",
            name="Acme Mar",
            amount="48000",
            closed_at="2024-03-15T00:00:00Z",
            line_items=[LineItem(id="9", name="Platform", quantity="3")],
        ),
        "deal_url": "https://app.hubspot.com/contacts/12345/deal/2",
        "owner_line": "Dana Reyes (Sales)",
        "contacts_line": "Pat Lee, CTO",
        "company_line": "Acme Corp",
        "cycle_days": 60,
        "timeline": "No activity history available.",
    }
    values.update(overrides)
    return DealBundle(**values)


def _response(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "gpt-4.1-mini"
    response.usage.total_tokens = 42
    return response


# ── Prompt assembly ─────────────────────────────────────────────────────────


class TestBuildQaPrompt:
    def test_deal_facts_and_question(self):
        prompt = build_qa_prompt(_bundle())

        assert "User's question: what did they buy?" in prompt
        assert "- Amount: 48000" in prompt
        assert f"- Deal type: {NOT_FOUND}" in prompt
        assert "- Closed: 2024-03-15T00:00:00Z (60-day cycle)" in prompt
        assert "- Products/Line items:\n  - Platform, qty 3" in prompt
        assert prompt.endswith("Answer the question:")

    def test_no_history_placeholder(self):
        prompt = build_qa_prompt(_bundle())
        assert "No channel history available." in prompt
        assert "Thread conversation history" not in prompt

    def test_channel_history_and_thread(self):
        prompt = build_qa_prompt(
            _bundle(
                channel_history=[SlackMessage(ts="1700000000.0001", user="U2", text="kickoff Monday")],
                thread_context=ThreadContext(
                    messages=[ThreadMessage(speaker="U1", text="earlier question")]
                ),
            )
        )
        assert "[2023-11-14] <@U2>: kickoff Monday" in prompt
        assert "Thread conversation history:\n<@U1>: earlier question" in prompt


class TestBuildPlanPrompt:
    def test_deal_facts_and_csm(self):
        prompt = build_plan_prompt(
            _bundle(
                deal=Deal(id="2", name="Acme Mar", amount="48000", currency_code="USD"),
                csm_line="Sam Ortiz (from company record)",
            )
        )

        assert "*Deployment Plan: Acme Mar*\nhttps://app.hubspot.com/contacts/12345/deal/2" in prompt
        assert "- CSM: Sam Ortiz (from company record)" in prompt
        assert "- Amount: USD 48,000" in prompt
        assert "User's question" not in prompt

    def test_missing_csm_and_amount(self):
        prompt = build_plan_prompt(_bundle(deal=Deal(id="2", name="Acme Mar")))
        assert f"- CSM: {NOT_FOUND}" in prompt
        assert f"- Amount: {NOT_FOUND}" in prompt

    def test_long_channel_messages_are_truncated(self):
        prompt = build_plan_prompt(
            _bundle(channel_history=[SlackMessage(ts="1700000000.0001", user="U2", text="x" * 800)])
        )
        assert f"[2023-11-14] <@U2>: {'x' * 500}" in prompt
        assert "x" * 501 not in prompt


# ── LLMService ──────────────────────────────────────────────────────────────


class TestLLMService:
    @pytest.mark.asyncio
    async def test_no_keys_is_upstream_unavailable(self, settings):
        settings.OPENAI_API_KEY = ""
        settings.ANTHROPIC_API_KEY = ""
        service = LLMService(settings)

        assert service.router is None
        with pytest.raises(UpstreamUnavailable):
            await service.complete("hello")

    @pytest.mark.asyncio
    async def test_complete_returns_stripped_answer(self, settings):
        settings.OPENAI_API_KEY = "sk-test"
        service = LLMService(settings)
        service.router = MagicMock()
        service.router.acompletion = AsyncMock(return_value=_response("  The answer.  "))

        assert await service.complete("prompt") == "The answer."
        kwargs = service.router.acompletion.await_args.kwargs
        assert kwargs["model"] == "reasoning"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_empty_completion_gets_fallback_text(self, settings):
        settings.OPENAI_API_KEY = "sk-test"
        service = LLMService(settings)
        service.router = MagicMock()
        service.router.acompletion = AsyncMock(return_value=_response(None))

        assert await service.complete("prompt") == EMPTY_ANSWER

    @pytest.mark.asyncio
    async def test_provider_timeout_is_upstream_unavailable(self, settings):
        settings.OPENAI_API_KEY = "sk-test"
        service = LLMService(settings)
        service.router = MagicMock()
        service.router.acompletion = AsyncMock(
            side_effect=litellm.Timeout(message="slow", model="gpt-4.1-mini", llm_provider="openai")
        )

        with pytest.raises(UpstreamUnavailable):
            await service.complete("prompt")

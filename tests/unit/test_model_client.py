"""
Unit tests for the model client wrapper.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.exceptions import OutputParserException
from langchain_core.messages import AIMessage, HumanMessage

from agentcycle.graph.plan import ValidatorVerdict
from agentcycle.models.client import ModelClient
from agentcycle.utils.error_handler import ModelInvocationError, StructuredOutputError


def _chat(result=None, side_effect=None):
    """Chat model double whose runnables all share one ainvoke."""
    runnable = Mock()
    runnable.ainvoke = AsyncMock(return_value=result, side_effect=side_effect)
    chat = Mock()
    chat.ainvoke = runnable.ainvoke
    chat.with_structured_output.return_value = runnable
    chat.bind_tools.return_value = runnable
    return chat


MESSAGES = [HumanMessage(content="hi")]


class TestPlainInvocation:
    @pytest.mark.asyncio
    async def test_returns_ai_message(self):
        chat = _chat(AIMessage(content="hello"))
        result = await ModelClient(chat).invoke(MESSAGES)
        assert result.content == "hello"
        chat.with_structured_output.assert_not_called()

    @pytest.mark.asyncio
    async def test_binds_tools(self, invoker):
        chat = _chat(AIMessage(content="hello"))
        await ModelClient(chat).invoke(MESSAGES, tools=invoker.list_tools())
        chat.bind_tools.assert_called_once()

    @pytest.mark.asyncio
    async def test_non_message_result_is_rejected(self):
        with pytest.raises(ModelInvocationError):
            await ModelClient(_chat("plain string")).invoke(MESSAGES)


class TestStructuredOutput:
    @pytest.mark.asyncio
    async def test_schema_instance_is_returned(self):
        verdict = ValidatorVerdict(success=True, result="ok")
        result = await ModelClient(_chat(verdict)).invoke(MESSAGES, schema=ValidatorVerdict)
        assert result is verdict

    @pytest.mark.asyncio
    async def test_dict_is_validated(self):
        result = await ModelClient(_chat({"success": False, "result": "no"})).invoke(MESSAGES, schema=ValidatorVerdict)
        assert result == ValidatorVerdict(success=False, result="no")

    @pytest.mark.asyncio
    async def test_malformed_dict_raises(self):
        with pytest.raises(StructuredOutputError):
            await ModelClient(_chat({"result": "no"})).invoke(MESSAGES, schema=ValidatorVerdict)

    @pytest.mark.asyncio
    async def test_parser_failure_raises(self):
        chat = _chat(side_effect=OutputParserException("not json"))
        with pytest.raises(StructuredOutputError):
            await ModelClient(chat).invoke(MESSAGES, schema=ValidatorVerdict)

    @pytest.mark.asyncio
    async def test_verdict_result_is_clipped(self):
        result = await ModelClient(_chat({"success": True, "result": "x" * 500})).invoke(
            MESSAGES, schema=ValidatorVerdict
        )
        assert len(result.result) == 300


class TestFailures:
    @pytest.mark.asyncio
    async def test_timeout_is_a_model_error(self):
        async def never(messages):
            await asyncio.sleep(10)

        chat = _chat()
        chat.ainvoke = never
        with pytest.raises(ModelInvocationError) as exc_info:
            await ModelClient(chat, timeout=0.05).invoke(MESSAGES)
        assert "did not respond" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_provider_error_gets_friendly_message(self):
        chat = _chat(side_effect=RuntimeError("Error code: 429 rate_limit_exceeded"))
        with pytest.raises(ModelInvocationError) as exc_info:
            await ModelClient(chat).invoke(MESSAGES)
        assert "rate limiting" in exc_info.value.user_message

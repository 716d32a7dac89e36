"""Model invocation wrapper with timeout and structured-output enforcement."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Type

from langchain_core.exceptions import OutputParserException
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool
from pydantic import BaseModel, ValidationError

from agentcycle.utils.error_handler import ModelInvocationError, StructuredOutputError, handle_model_error

LOGGER = logging.getLogger("agentcycle.models")


class ModelClient:
    """Single entry point for every model call made by the graph.

    Args:
        model: LangChain chat model
        timeout: Seconds before a call is abandoned and treated as failed
        name: Label used in logs
    """

    def __init__(self, model: BaseChatModel, timeout: float = 45.0, name: str = "chat"):
        self.model = model
        self.timeout = timeout
        self.name = name

    async def invoke(
        self,
        messages: List[BaseMessage],
        schema: Optional[Type[BaseModel]] = None,
        tools: Optional[Sequence[BaseTool]] = None,
    ) -> Any:
        """Invoke the model.

        Returns an `AIMessage`, or an instance of `schema` when one is given.

        Raises:
            StructuredOutputError: output does not validate against `schema`
            ModelInvocationError: timeout or provider failure
        """
        if schema is not None:
            runnable = self.model.with_structured_output(schema)
        elif tools:
            runnable = self.model.bind_tools(list(tools))
        else:
            runnable = self.model

        LOGGER.debug(
            f"Invoking {self.name} model with {len(messages)} messages"
            + (f", schema={schema.__name__}" if schema is not None else "")
            + (f", {len(tools)} tools" if tools else "")
        )

        try:
            result = await asyncio.wait_for(runnable.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ModelInvocationError(
                f"{self.name} model timed out after {self.timeout}s",
                user_message=f"The model did not respond within {self.timeout:.0f}s",
            ) from e
        except (ValidationError, OutputParserException) as e:
            raise StructuredOutputError(
                f"{self.name} model returned malformed structured output: {e}",
                user_message="The model returned output in an unexpected format",
            ) from e
        except Exception as e:
            raise ModelInvocationError(f"{self.name} model failed: {e}", user_message=handle_model_error(e)) from e

        if schema is not None:
            return self._coerce(result, schema)
        if not isinstance(result, AIMessage):
            raise ModelInvocationError(f"{self.name} model returned {type(result).__name__}, expected AIMessage")
        return result

    def _coerce(self, result: Any, schema: Type[BaseModel]) -> BaseModel:
        if isinstance(result, schema):
            return result
        if isinstance(result, dict):
            try:
                return schema.model_validate(result)
            except ValidationError as e:
                raise StructuredOutputError(
                    f"{self.name} model output does not match {schema.__name__}: {e}",
                    user_message="The model returned output in an unexpected format",
                ) from e
        raise StructuredOutputError(
            f"{self.name} model returned {type(result).__name__}, expected {schema.__name__}",
            user_message="The model returned output in an unexpected format",
        )

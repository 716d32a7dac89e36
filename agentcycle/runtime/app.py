"""Runtime assembly for the orchestration graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from agentcycle.config import AgentConfig, Settings, get_settings, load_agent_config
from agentcycle.graph.builder import build_state_machine
from agentcycle.graph.machine import StateMachine
from agentcycle.memory.ltm import LongTermMemory, VectorStoreLtm
from agentcycle.models.client import ModelClient
from agentcycle.persistence import build_checkpointer
from agentcycle.tools.invoker import ToolInvoker
from agentcycle.utils.error_handler import ConfigurationError

from .runner import GraphRunner

LOGGER = logging.getLogger("agentcycle.app")


@dataclass
class Application:
    config: AgentConfig
    machine: StateMachine
    runner: GraphRunner
    tools: ToolInvoker
    checkpointer: object
    ltm: Optional[LongTermMemory] = None


def _chat_model(model_id: str, settings: Settings) -> ChatOpenAI:
    kwargs = {
        "model": model_id,
        "api_key": settings.models.api_key,
        "temperature": settings.models.temperature,
    }
    if settings.models.base_url:
        kwargs["base_url"] = settings.models.base_url
    return ChatOpenAI(**kwargs)


def _ltm_store(embeddings, ltm_dir: Optional[Path], file_name: str, config: AgentConfig) -> VectorStoreLtm:
    path = ltm_dir / file_name if ltm_dir is not None else None
    return VectorStoreLtm(embeddings, path=path, max_records=config.memory_size)


def resolve_agent_config(settings: Settings) -> AgentConfig:
    """Agent profile YAML when one is configured, environment settings otherwise."""
    if settings.agent.profile_path:
        return load_agent_config(settings.agent.profile_path, settings)
    return AgentConfig.from_settings(settings)


def build_application(
    *,
    settings: Optional[Settings] = None,
    config: Optional[AgentConfig] = None,
    tools: Optional[Iterable[BaseTool]] = None,
) -> Application:
    """Assemble models, tools, memory, checkpoints and the state machine.

    Raises:
        ConfigurationError: missing API key or an invalid agent configuration
    """
    settings = settings or get_settings()
    config = config or resolve_agent_config(settings)

    if not settings.models.api_key:
        raise ConfigurationError(
            "Missing model API key. Set MODEL_API_KEY or OPENAI_API_KEY in .env.",
            user_message="No model API key configured",
        )

    chat = ModelClient(_chat_model(settings.models.chat, settings), timeout=config.model_timeout, name="chat")
    fast_id = settings.models.fast or settings.models.chat
    fast = ModelClient(_chat_model(fast_id, settings), timeout=config.model_timeout, name="fast")
    LOGGER.info(f"Models: chat={settings.models.chat}, fast={fast_id}")

    invoker = ToolInvoker(tools or [], timeout=config.tool_timeout)
    LOGGER.info(f"Tools: {invoker.tool_names or 'none'}")

    ltm = None
    if config.ltm_enabled:
        embedding_kwargs = {"model": settings.models.embedding, "api_key": settings.models.api_key}
        if settings.models.base_url:
            embedding_kwargs["base_url"] = settings.models.base_url
        embeddings = OpenAIEmbeddings(**embedding_kwargs)
        ltm_dir = Path(settings.memory.ltm_dir) if settings.memory.ltm_dir else None
        ltm = LongTermMemory(
            _ltm_store(embeddings, ltm_dir, f"{config.name}_memories.json", config),
            embeddings,
            agent_id=config.name,
            iteration_store=_ltm_store(embeddings, ltm_dir, f"{config.name}_iterations.json", config),
            top_k=config.ltm_top_k,
            similarity_threshold=config.similarity_threshold,
        )

    checkpointer = build_checkpointer(settings.observability.session_db_path)
    machine = build_state_machine(model=chat, tools=invoker, config=config, ltm=ltm, validator_model=fast)
    runner = GraphRunner(machine, config, checkpointer=checkpointer, ltm=ltm)

    LOGGER.info(
        f"Application ready: agent={config.name}, mode={config.mode.value}, "
        f"execution={config.execution_mode.value}, planner={config.planner_mode.value}"
    )
    return Application(
        config=config,
        machine=machine,
        runner=runner,
        tools=invoker,
        checkpointer=checkpointer,
        ltm=ltm,
    )

"""
Unit tests for agent configuration loading and validation.
"""

import pytest

from agentcycle.config.agent_config import (
    AgentConfig,
    AgentMode,
    ExecutionMode,
    build_agent_config,
    load_agent_config,
)
from agentcycle.config.settings import Settings
from agentcycle.utils.error_handler import ConfigurationError


class TestBuildAgentConfig:
    """Invalid combinations are rejected before a session starts"""

    def test_defaults_are_valid(self):
        config = build_agent_config({})
        assert config.mode == AgentMode.INTERACTIVE
        assert config.execution_mode == ExecutionMode.PLANNING
        assert config.max_graph_steps == 100

    @pytest.mark.parametrize("field_name", ["max_graph_steps", "max_retries", "short_term_memory", "ltm_top_k"])
    def test_non_positive_limits_are_rejected(self, field_name):
        with pytest.raises(ConfigurationError, match=field_name):
            build_agent_config({field_name: 0})

    def test_reactive_requires_interactive(self):
        with pytest.raises(ConfigurationError, match="Reactive"):
            build_agent_config({"mode": "autonomous", "execution_mode": "reactive"})

    def test_hybrid_requires_human_in_the_loop(self):
        with pytest.raises(ConfigurationError, match="human_in_the_loop"):
            build_agent_config({"mode": "hybrid"})

    def test_hybrid_with_human_in_the_loop(self):
        config = build_agent_config({"mode": "hybrid", "human_in_the_loop": True})
        assert config.mode == AgentMode.HYBRID

    def test_similarity_threshold_range(self):
        with pytest.raises(ConfigurationError, match="similarity_threshold"):
            build_agent_config({"similarity_threshold": 1.5})

    def test_unknown_field_is_rejected(self):
        with pytest.raises(ConfigurationError, match="Invalid agent configuration"):
            build_agent_config({"max_loops": 3})

    def test_config_is_frozen(self):
        config = build_agent_config({})
        with pytest.raises(Exception):
            config.max_retries = 10


class TestLoadAgentConfig:
    """YAML agent profiles"""

    def test_loads_profile(self, tmp_path):
        profile = tmp_path / "watcher.yaml"
        profile.write_text(
            "name: market-watcher\n"
            "objectives:\n"
            "  - Report daily price moves above 5%\n"
            "mode: autonomous\n"
            "max_graph_steps: 200\n",
            encoding="utf-8",
        )

        config = load_agent_config(profile)

        assert config.name == "market-watcher"
        assert config.mode == AgentMode.AUTONOMOUS
        assert config.objectives == ["Report daily price moves above 5%"]
        assert config.max_graph_steps == 200

    def test_missing_profile(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_agent_config(tmp_path / "missing.yaml")

    def test_profile_must_be_mapping(self, tmp_path):
        profile = tmp_path / "list.yaml"
        profile.write_text("- one\n- two\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_agent_config(profile)

    def test_empty_profile_uses_defaults(self, tmp_path):
        profile = tmp_path / "empty.yaml"
        profile.write_text("", encoding="utf-8")
        assert load_agent_config(profile) == AgentConfig()


class TestFromSettings:
    """Environment settings seed the config, explicit values win"""

    def test_environment_values_are_used(self, monkeypatch):
        monkeypatch.setenv("MAX_GRAPH_STEPS", "50")
        monkeypatch.setenv("STM_CAPACITY", "8")

        config = AgentConfig.from_settings(Settings())

        assert config.max_graph_steps == 50
        assert config.short_term_memory == 8

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("MAX_GRAPH_STEPS", "50")

        config = AgentConfig.from_settings(Settings(), max_graph_steps=12, name="override")

        assert config.max_graph_steps == 12
        assert config.name == "override"

    def test_overrides_are_validated(self):
        with pytest.raises(ConfigurationError):
            AgentConfig.from_settings(Settings(), max_retries=-1)

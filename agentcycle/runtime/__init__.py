"""Runtime assembly and session driver."""

from .app import Application, build_application, resolve_agent_config
from .runner import GraphRunner, RunResult

__all__ = ["Application", "GraphRunner", "RunResult", "build_application", "resolve_agent_config"]

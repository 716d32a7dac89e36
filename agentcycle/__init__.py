"""agentcycle: plan, execute, validate and remember, as an explicit state machine."""

__version__ = "0.1.0"

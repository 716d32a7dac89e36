"""Tools available to the CLI agent out of the box."""

from datetime import datetime, timezone

from langchain_core.tools import tool


@tool
def now() -> str:
    """Return the current UTC date and time in ISO 8601 format.

    Use it whenever a step depends on today's date or the current time.
    """
    return datetime.now(timezone.utc).isoformat()


BUILTIN_TOOLS = [now]

__all__ = ["BUILTIN_TOOLS", "now"]

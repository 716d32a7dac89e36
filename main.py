"""Simple CLI for running objectives through the agent."""

from __future__ import annotations

import asyncio
import logging

from agentcycle.config import get_settings
from agentcycle.persistence import SqliteCheckpointer
from agentcycle.runtime import RunResult, build_application
from agentcycle.tools.builtin import BUILTIN_TOOLS
from agentcycle.utils import AgentCycleError, ConfigurationError, get_logger, log_error


async def _read_line(prompt: str) -> str:
    # Keep the event loop free while waiting on stdin.
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: input(prompt).strip())


def _print_result(result: RunResult) -> None:
    if result.status == "awaiting_input":
        print(f"[human input needed] {result.prompt}")
        return
    print(f"Agent> {result.final_answer or '(no answer)'}")
    if result.status != "completed":
        print(f"[{result.status}] session {result.session_id[:8]}")


async def _drive_until_answer(app, result: RunResult, logger: logging.Logger) -> RunResult:
    """Keep resuming while the session waits for human input."""
    while result.status == "awaiting_input":
        _print_result(result)
        reply = await _read_line("Human> ")
        logger.info(f"Human input for {result.session_id[:8]}: {reply[:80]}")
        result = await app.runner.resume(result.session_id, reply)
    _print_result(result)
    return result


async def async_main():
    settings = get_settings()
    logger = get_logger(
        level=getattr(logging, settings.observability.log_level.upper(), logging.INFO),
        log_dir=settings.observability.log_dir,
    )

    try:
        app = build_application(settings=settings, tools=BUILTIN_TOOLS)
    except ConfigurationError as e:
        print(f"Configuration error: {e.user_message}")
        log_error(logger, e, context="build_application")
        return

    print(f"agentcycle ready: {app.config.name} ({app.config.mode.value}, {app.config.execution_mode.value})")
    print("Commands:")
    print("  /quit, /exit       - leave")
    print("  /sessions          - list saved sessions (SQLite checkpoints only)")
    print("  /resume <id> <msg> - answer a session waiting for human input")
    print()

    while True:
        try:
            user_input = await _read_line("You> ")
        except (KeyboardInterrupt, EOFError):
            print("\nBye.")
            logger.info("Session ended by user")
            break

        if not user_input:
            continue

        if user_input.lower() in {"/quit", "/exit"}:
            logger.info("Session ended by /quit command")
            break

        if user_input.lower() == "/sessions":
            if not isinstance(app.checkpointer, SqliteCheckpointer):
                print("Sessions are only listed with SESSION_DB_PATH set.")
                continue
            sessions = app.checkpointer.list_sessions()
            if not sessions:
                print("No saved sessions.")
            for session_id, created_at, updated_at, message_count in sessions:
                print(f"  {session_id[:8]}  updated {updated_at[:19]}  {message_count} messages")
            continue

        if user_input.lower().startswith("/resume"):
            parts = user_input.split(maxsplit=2)
            if len(parts) < 3:
                print("Usage: /resume <session id> <input>")
                continue
            try:
                result = await app.runner.resume(parts[1], parts[2])
                await _drive_until_answer(app, result, logger)
            except ConfigurationError as e:
                print(f"Configuration error: {e.user_message}")
                log_error(logger, e, context="resume")
                break
            except AgentCycleError as e:
                print(f"Error: {e.user_message}")
                log_error(logger, e, context="resume")
            continue

        logger.info(f"Objective: {user_input}")
        try:
            result = await app.runner.run(user_input)
            await _drive_until_answer(app, result, logger)
        except ConfigurationError as e:
            print(f"Configuration error: {e.user_message}")
            log_error(logger, e, context="run")
            break
        except AgentCycleError as e:
            print(f"Error: {e.user_message}")
            log_error(logger, e, context="run")


def main():
    """Entry point that runs the async main function."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()

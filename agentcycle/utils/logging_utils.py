"""Logging setup and banner helpers for graph nodes, routers and tools."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

ROOT_LOGGER_NAME = "agentcycle"
BANNER_WIDTH = 80
MAX_LOGGED_RESULT = 500


def _banner(char: str) -> str:
    return char * BANNER_WIDTH


def setup_logging(level: int = logging.INFO, log_dir: Union[str, Path] = "logs") -> logging.Logger:
    """Configure the `agentcycle` logger tree.

    Every run gets its own timestamped file under `log_dir` with DEBUG detail.
    The console only shows warnings and above, or `level` when it is higher.

    Args:
        level: Console level floor
        log_dir: Directory for the run log file

    Returns:
        The `agentcycle` root logger
    """
    run_dir = Path(log_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    run_file = run_dir / f"{ROOT_LOGGER_NAME}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(logging.DEBUG)
    root.propagate = False
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    detail = logging.FileHandler(run_file, encoding="utf-8")
    detail.setLevel(logging.DEBUG)
    detail.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)-22s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    console = logging.StreamHandler()
    console.setLevel(max(level, logging.WARNING))
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    root.addHandler(detail)
    root.addHandler(console)

    root.info(_banner("="))
    root.info(f"agentcycle run log: {run_file}")
    root.info(_banner("="))
    return root


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    logger.info(f"Tool call -> {tool_name}")
    logger.debug(f"  args: {json.dumps(args, ensure_ascii=False, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    """Log the outcome of one tool call, clipping long output in the debug line."""
    logger.info(f"Tool result <- {tool_name} ({'ok' if success else 'error'})")
    text = str(result)
    if len(text) > MAX_LOGGED_RESULT:
        text = f"{text[:MAX_LOGGED_RESULT]}... ({len(text)} chars)"
    logger.debug(f"  output: {text}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log an error with its user-facing text and traceback.

    Args:
        logger: Logger instance
        error: The exception; `user_message` is logged when it differs from the raw text
        context: Where the error happened (node or operation name)
    """
    where = f" in {context}" if context else ""
    logger.error(f"{type(error).__name__}{where}: {error}")
    user_message = getattr(error, "user_message", None)
    if user_message and user_message != str(error):
        logger.error(f"  shown to user: {user_message}")
    logger.debug("Traceback:", exc_info=error)


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log a router decision as `from -> to` with its reason."""
    logger.info(_banner("-"))
    logger.info(f"Route {from_node} -> {decision}")
    if reason:
        logger.info(f"  because: {reason}")
    logger.info(_banner("-"))


def log_plan_created(logger: logging.Logger, plan: Any) -> None:
    logger.info(_banner("="))
    logger.info(f"Plan {plan.id[:8]} ({len(plan.steps)} steps): {plan.summary or 'no summary'}")
    for step in plan.steps:
        logger.info(f"  S{step.step_number} [{step.type.value}] {step.step_name}: {step.description}")
        for spec in step.tools:
            logger.info(f"      tool {spec.name}: {spec.required}")
    logger.info(_banner("="))


def log_step_execution(logger: logging.Logger, step: Any, retry: int, max_retries: int) -> None:
    """Log which step the executor is about to run and which attempt it is.

    Args:
        logger: Logger instance
        step: The plan step being executed
        retry: Rejections so far for this step
        max_retries: Rejections allowed before the executor gives up
    """
    logger.info(_banner("="))
    logger.info(f"Step {step.step_number} [{step.type.value}] {step.step_name}, attempt {retry + 1}/{max_retries}")
    logger.info(f"  {step.description}")
    logger.info(_banner("="))


def log_node_entry(logger: logging.Logger, node_name: str, state: Any) -> None:
    """Log node entry with the session counters routers depend on."""
    active = state.plans_or_histories
    logger.info(_banner("#"))
    logger.info(f"# >> {node_name}  (session {state.session_id[:8]}, graph step {state.current_graph_step})")
    logger.info(_banner("#"))
    logger.debug(
        f"  last_node={state.last_node} messages={len(state.messages)} "
        f"active={active.type if active is not None else 'none'} "
        f"step_index={state.current_step_index} task_index={state.current_task_index} retry={state.retry}"
    )


def log_node_exit(logger: logging.Logger, node_name: str, updates: Optional[Dict[str, Any]]) -> None:
    """Log the fields a node changed, summarizing messages and the active plan."""
    logger.info(f"# << {node_name}")
    for key, value in (updates or {}).items():
        if key == "messages":
            logger.info(f"  + {len(value)} message(s)")
        elif key == "plans_or_histories" and value is not None:
            logger.info(f"  plans_or_histories = {value.type} {value.id[:8]}")
        elif key == "memories":
            logger.info(f"  memories: stm {len(value.stm)}/{value.stm.capacity}")
        else:
            logger.info(f"  {key} = {value}")


_run_logger: Optional[logging.Logger] = None


def get_logger(level: int = logging.INFO, log_dir: Union[str, Path] = "logs") -> logging.Logger:
    """Return the configured `agentcycle` logger, setting it up on first use."""
    global _run_logger
    if _run_logger is None:
        _run_logger = setup_logging(level=level, log_dir=log_dir)
    return _run_logger

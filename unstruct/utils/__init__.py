"""Cross-cutting helpers shared by the engine, merger and planner."""

from .logging import (
    get_current_log_file,
    get_logger,
    get_session_id,
    log_llm_response,
    log_prompt,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "get_current_log_file",
    "get_session_id",
    "log_prompt",
    "log_llm_response",
]

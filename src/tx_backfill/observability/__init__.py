from .logger import (
    bind_run_context,
    clear_run_context,
    get_logger,
    get_trace_id,
    new_trace_id,
    setup_logging,
)

__all__ = [
    "bind_run_context",
    "clear_run_context",
    "get_logger",
    "get_trace_id",
    "new_trace_id",
    "setup_logging",
]

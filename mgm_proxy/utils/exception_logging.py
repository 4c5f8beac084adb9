"""
Exception formatting and logging helpers for the proxy error paths.

Upstream failures can surface wrapped in exception groups (anyio task groups
inside Starlette's streaming responses), so groups are logged member by
member. Nothing here raises: a logging problem must not turn a 502 into a 500.
"""

import logging
from typing import List, Optional


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} (string conversion failed)>"


def _sub_exceptions(exception) -> List[BaseException]:
    """Return the members of an exception group, or an empty list."""
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def describe_exception(exception: Optional[BaseException]) -> str:
    """
    One-line ``Type: message`` description, including the direct cause.

    httpx wraps the socket level error (refused, DNS, reset) as ``__cause__``
    and only that tells an operator what actually happened.
    """
    if exception is None:
        return "None"
    try:
        text = f"{type(exception).__name__}: {_safe_str(exception)}"
        cause = exception.__cause__
        if cause is not None and cause is not exception:
            text += f" (caused by {type(cause).__name__}: {_safe_str(cause)})"
        return text
    except Exception:
        return "<exception (formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Optional[BaseException],
    level: int = logging.ERROR,
    exc_info: bool = False,
) -> None:
    """
    Log an exception, one line per exception group member.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
        exc_info: Attach the traceback; off by default since transport
            errors are expected operational noise
    """
    try:
        members = _sub_exceptions(exception)
        if not members:
            logger.log(
                level,
                f"{prefix} {describe_exception(exception)}",
                exc_info=exception if exc_info and exception is not None else None,
            )
            return

        logger.log(
            level,
            f"{prefix} Exception with {len(members)} sub-exceptions: {_safe_str(exception)}",
        )
        for i, member in enumerate(members, start=1):
            logger.log(
                level,
                f"{prefix} Sub-exception {i}: {describe_exception(member)}",
                exc_info=member if exc_info else None,
            )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass

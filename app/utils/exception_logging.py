"""
Exception logging helpers for the proxy request path.

Nothing in here may raise: a broken exception object or a failing handler
must never turn a logged failure into an unanswered request.
"""

import logging


def _safe_str(obj) -> str:
    """Convert an object to string, falling back when __str__ or __repr__ fail."""
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    """Return the members of an exception group, or an empty list."""
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def format_exception_message(exception: Exception) -> str:
    """
    Describe an exception for a client-facing error message.

    Exception groups are flattened as ``main (Sub-exceptions: Type: msg; ...)``.
    An exception with an empty message is described by its type name, so the
    caller never receives a blank ``message`` field.

    Args:
        exception: The exception to format

    Returns:
        A non-empty string describing the exception
    """
    if exception is None:
        return "None"

    main_str = _safe_str(exception) or type(exception).__name__
    subs = _sub_exceptions(exception)
    if not subs:
        return main_str

    parts = []
    for sub_exc in subs:
        parts.append(f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}")
    return f"{main_str} (Sub-exceptions: {'; '.join(parts)})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, including each sub-exception of an exception group.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Webhook]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        subs = _sub_exceptions(exception)

        if not subs:
            logger.log(
                level,
                f"{safe_prefix} Exception: {format_exception_message(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(subs)} sub-exceptions: {_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(subs):
            logger.log(
                level,
                f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass

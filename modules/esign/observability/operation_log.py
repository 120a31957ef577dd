"""
Structured Operation Logging.

One log line per operation outcome, with a correlation id that survives
retries and links dependent jobs.
"""

import hashlib
import logging
from typing import Any, Optional

OUTCOMES = ("started", "success", "failure", "deduped")


def resolve_correlation_id(*candidates: str) -> str:
    """
    Return the first candidate as-is, or derive a stable id from the rest.

    The first argument is the explicit correlation id. When it is empty, the
    remaining identifying values are hashed so replays of the same job
    produce the same id.
    """
    if not candidates:
        return ""
    explicit = (candidates[0] or "").strip()
    if explicit:
        return explicit
    parts = [(value or "").strip() for value in candidates[1:]]
    if not any(parts):
        return ""
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"corr_{digest[:16]}"


def log_operation(
    logger: logging.Logger,
    level: int,
    domain: str,
    operation: str,
    outcome: str,
    correlation_id: str,
    duration_ms: float = 0.0,
    error: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """
    Log one operation outcome.

    Args:
        logger: Logger of the calling module.
        level: logging level.
        domain: Subsystem, e.g. "job".
        operation: Operation name, e.g. "email_send_signing_request".
        outcome: One of started, success, failure, deduped.
        correlation_id: Correlation id of the operation.
        duration_ms: Elapsed time.
        error: Exception for failures.
        **fields: Additional key/value context.
    """
    extra = " ".join(f"{key}={value}" for key, value in sorted(fields.items()) if value not in (None, ""))
    message = (
        f"{domain}.{operation} outcome={outcome} correlation_id={correlation_id} "
        f"duration_ms={duration_ms:.1f}"
    )
    if extra:
        message = f"{message} {extra}"
    if error is not None:
        message = f"{message} error={error}"
    logger.log(level, message)

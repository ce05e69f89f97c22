"""Unexpected-error reporting."""

from __future__ import annotations

import logging
import uuid
from typing import Mapping, Optional

logger = logging.getLogger("fablebot.errors")


def capture_exception(error: BaseException, extra: Optional[Mapping[str, object]] = None) -> str:
    """Log ``error`` with its traceback and return a short reference id for the user."""
    ref_id = uuid.uuid4().hex[:12]
    context = ", ".join(f"{key}={value}" for key, value in sorted((extra or {}).items()))
    logger.error(
        "Unhandled error [ref %s]%s: %s",
        ref_id,
        f" ({context})" if context else "",
        error,
        exc_info=(type(error), error, error.__traceback__),
    )
    return ref_id


__all__ = ["capture_exception"]

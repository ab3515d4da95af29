from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from time import monotonic
from typing import Any, Iterator
from uuid import uuid4

from app.core.logging import get_structured_logger


_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)
_span_id: ContextVar[str | None] = ContextVar("span_id", default=None)

logger = get_structured_logger("trace")


def set_trace_id(value: str | None) -> None:
    if value:
        _trace_id.set(value)


def get_trace_id() -> str | None:
    return _trace_id.get()


def get_span_id() -> str | None:
    return _span_id.get()


@contextmanager
def trace_span(name: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """
    Log span.start / span.end around a registry operation.

    The yielded dict is merged into the span.end record, so callers can
    attach results (counts, outcomes) once they are known.
    """
    span_id = uuid4().hex[:16]
    token = _span_id.set(span_id)
    start = monotonic()
    result: dict[str, Any] = {}
    base = {"trace_id": get_trace_id(), "span_id": span_id, "span_name": name, **fields}
    logger.info("span.start", extra=base)
    outcome = "ok"
    try:
        yield result
    except Exception:
        outcome = "error"
        raise
    finally:
        logger.info(
            "span.end",
            extra={
                **base,
                **result,
                "outcome": outcome,
                "duration_ms": round((monotonic() - start) * 1000.0, 2),
            },
        )
        _span_id.reset(token)

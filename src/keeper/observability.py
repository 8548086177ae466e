"""Tracing integration for the cert-manager keeper.

Spans are emitted through the OpenTelemetry API. Without an SDK configured by
the embedding application the tracer is a no-op.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

TRACER_NAME = "keeper"


def get_tracer() -> trace.Tracer:
    """Return the keeper tracer from the globally configured provider."""
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def operation_span(name: str, **attributes: Any) -> Iterator[Span]:
    """Run a block inside a span, recording failures on it.

    Args:
        name: Span name
        **attributes: Initial span attributes; None values are skipped

    Yields:
        The active span
    """
    with get_tracer().start_as_current_span(name, record_exception=False) as span:
        set_attributes(span, **attributes)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def set_attributes(span: Span, **attributes: Any) -> None:
    """Set attributes on a span, stringifying values that are not primitives.

    Args:
        span: Target span
        **attributes: Attributes as key-value pairs; None values are skipped
    """
    for key, value in attributes.items():
        if value is None:
            continue
        if not isinstance(value, (bool, int, float, str)):
            value = str(value)
        span.set_attribute(key, value)

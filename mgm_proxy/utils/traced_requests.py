import logging
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry import trace
from opentelemetry.trace import Span, Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    method: str,
    target_url: str,
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """
    Start a span, set the proxy attributes, and log a start message.

    The span is current inside the block. Leaving the block normally does not
    end it, since a streamed response is still being relayed at that point;
    the caller ends it with ``end_span``. If the block raises, it is ended here.
    """
    span = tracer.start_span(operation)
    span.set_attribute("proxy.method", method)
    span.set_attribute("proxy.target_url", target_url)
    if extra_attrs:
        for k, v in extra_attrs.items():
            span.set_attribute(k, v)
    logger.debug(start_message)
    try:
        with trace.use_span(span):
            yield span
    except BaseException:
        end_span(span)
        raise


def end_span(span: Span) -> None:
    """End the span unless that already happened."""
    if span.is_recording():
        span.end()

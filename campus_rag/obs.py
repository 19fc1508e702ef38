"""Observability utilities providing OpenTelemetry spans.

A basic tracer provider with a console exporter is installed the first time a
span is opened, unless OTEL_TRACES_EXPORTER is set (an externally configured
provider then takes precedence).
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

_otel_inited: bool = False


def _init_otel() -> None:
    """Install a console-exporting tracer provider once per process."""
    global _otel_inited
    if _otel_inited:
        return
    _otel_inited = True
    if os.environ.get("OTEL_TRACES_EXPORTER"):
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Span]:
    """Open an OpenTelemetry span around a block.

    Exceptions raised in the block are recorded on the span and re-raised.
    The elapsed time is logged at debug level.
    """
    _init_otel()
    tracer = trace.get_tracer(__name__)
    start = time.time()
    with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as s:
        for k, v in (attributes or {}).items():
            if v is not None:
                s.set_attribute(k, v)
        try:
            yield s
        except Exception as e:
            s.record_exception(e)
            s.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        finally:
            logger.debug("span %s took %.1f ms", name, (time.time() - start) * 1000)

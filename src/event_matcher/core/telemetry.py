"""OpenTelemetry initialization and span wrappers for engine entry points."""

from __future__ import annotations

import functools
import logging
import os
from collections.abc import Callable
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

_TRACER_NAME = "event_matcher"
_SPAN_PREFIX = "event_matcher."

_F = TypeVar("_F", bound=Callable[..., Any])

# Guard flag: True once the global TracerProvider has been installed.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Initialize OpenTelemetry tracing for the host process.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, installs a TracerProvider with an
    OTLP gRPC exporter on the first call; later calls reuse it.  Without the
    endpoint a no-op tracer is returned.

    Args:
        service_name: Service name recorded on the tracer and the resource.

    Returns:
        A Tracer instance (real or no-op depending on config)
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(service_name)

    if _tracer_provider_installed:
        logger.debug(
            "TracerProvider already initialized; reusing existing provider for service=%s",
            service_name,
        )
        return trace.get_tracer(service_name)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)
    return trace.get_tracer(service_name)


def get_tracer(name: str = _TRACER_NAME) -> trace.Tracer:
    """Get a tracer from the current provider."""
    return trace.get_tracer(name)


class engine_span:
    """Create an OpenTelemetry span around an engine computation.

    Can be used as a **context manager** or as a **decorator** on plain
    (synchronous) functions.

    Context manager usage::

        with engine_span("aggregate", participants=3):
            ...

    Decorator usage::

        @engine_span("expand_all")
        def expand_all(slots, window_start, window_end):
            ...

    The span is named ``event_matcher.<operation>``.  Keyword attributes are
    set on the span.  Exceptions are recorded on the span and its status set to
    ERROR before the exception is re-raised.
    """

    def __init__(self, operation: str, **attributes: str | int | float | bool) -> None:
        self._operation = operation
        self._attributes = attributes
        self._span_name = f"{_SPAN_PREFIX}{operation}"
        self._span: trace.Span | None = None
        self._token: object | None = None

    # -- context manager protocol ------------------------------------------

    def __enter__(self) -> trace.Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._span = tracer.start_span(self._span_name)
        for key, value in self._attributes.items():
            self._span.set_attribute(f"{_SPAN_PREFIX}{key}", value)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)

    # -- decorator protocol ------------------------------------------------

    def __call__(self, func: _F) -> _F:
        # Each invocation gets a fresh engine_span so concurrent callers never
        # share _span/_token state.
        operation = self._operation
        attributes = self._attributes

        @functools.wraps(func)
        def _wrapper(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
            with engine_span(operation, **attributes):
                return func(*args, **kwargs)

        return _wrapper  # type: ignore[return-value]

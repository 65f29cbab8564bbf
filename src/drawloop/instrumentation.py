"""OpenTelemetry spans around chat requests, tool loops and tool calls.

Tracing stays off until :func:`instrument` is called.  Every helper
here degrades to a no-op while it is off, so ``opentelemetry-api`` is
only needed by applications that turn it on.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "drawloop") -> None:
    """Start emitting spans through the global TracerProvider.

    Args:
        tracer_name: Instrumentation scope name for the tracer.

    Raises:
        ImportError: ``opentelemetry-api`` is missing; install the
            ``drawloop[otel]`` extra.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install drawloop[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("drawloop instrumentation enabled")


def uninstrument() -> None:
    """Stop emitting spans."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def loop_span(model: str, tool_count: int):
    """Wrap one tool loop in an ``invoke_agent`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"invoke_agent {model}",
        attributes={
            "gen_ai.operation.name": "invoke_agent",
            "gen_ai.request.model": model,
            "drawloop.tools.count": tool_count,
        },
    ) as span:
        yield span


@asynccontextmanager
async def completion_span(model: str, iteration: int):
    """Wrap one provider request in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.request.model": model,
            "drawloop.iteration": iteration,
        },
    ) as span:
        yield span


@asynccontextmanager
async def tool_span(tool_name: str, call_id: str):
    """Span for one executor call, tagged with the tool name and call id."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {tool_name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": tool_name,
            "gen_ai.tool.call.id": call_id,
        },
    ) as span:
        yield span


def record_finish(span, finish_reason: str | None) -> None:
    if span is None or not finish_reason:
        return
    span.set_attribute("gen_ai.response.finish_reasons", [finish_reason])


def record_error(span, exception: BaseException) -> None:
    """Mark *span* failed with *exception*; ignored when tracing is off."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )

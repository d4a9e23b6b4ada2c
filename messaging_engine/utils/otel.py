from __future__ import annotations

from typing import Any, Dict

from opentelemetry import trace


def otel_span(name: str, attrs: Dict[str, Any] | None = None):
    """
    Return an OpenTelemetry span context-manager.
    Without a configured SDK the global tracer provider yields no-op spans.
    """
    tracer = trace.get_tracer("messaging-engine")
    clean = {k: v for k, v in (attrs or {}).items() if v is not None}
    return tracer.start_as_current_span(name, attributes=clean)

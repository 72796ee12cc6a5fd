"""Request-correlated structured diagnostics.

A single process-wide pipeline (severity filter -> span context store ->
bunyan JSON formatter) built with structlog on top of stdlib logging, plus
spans that carry a per-request correlation id through async handlers.
"""

from newsletter.observability.spans import Span, current_span, instrument
from newsletter.observability.subscriber import (
    Subscriber,
    SubscriberAlreadyInstalledError,
    TelemetryInitError,
    build_subscriber,
    install_subscriber,
)

__all__ = [
    "Span",
    "Subscriber",
    "SubscriberAlreadyInstalledError",
    "TelemetryInitError",
    "build_subscriber",
    "current_span",
    "install_subscriber",
    "instrument",
]

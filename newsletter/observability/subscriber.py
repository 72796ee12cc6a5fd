"""Composition and process-wide installation of the event pipeline.

The pipeline is filter -> span context store -> bunyan formatter. structlog
events run the chain up to ``wrap_for_formatter`` and are handed to a stdlib
handler; records emitted through plain ``logging`` (uvicorn, SQLAlchemy, any
collaborator) enter the same handler through the legacy bridge and go through
``foreign_pre_chain`` instead, so both kinds end up as identical lines.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, TextIO

import structlog

from newsletter.observability.filtering import FilterRule, SeverityFilter, resolve_filter_rule
from newsletter.observability.formatting import BunyanRenderer, PipelineFormatter
from newsletter.observability.processors import merge_span_fields


class TelemetryInitError(RuntimeError):
    """The observability pipeline could not be installed consistently."""


class SubscriberAlreadyInstalledError(TelemetryInitError):
    pass


class LegacyBridgeAlreadyInstalledError(TelemetryInitError):
    pass


_install_lock = threading.Lock()
_installed: Subscriber | None = None
_bridge_handler: logging.Handler | None = None

# Loggers that configure their own handlers and must be pointed at ours.
_FOREIGN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy", "py.warnings")


def _shared_chain() -> list[Any]:
    return [
        merge_span_fields,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
            },
            additional_ignores=["newsletter.observability.spans"],
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


@dataclass
class Subscriber:
    """Opaque handle on a composed pipeline; see ``build_subscriber``."""

    name: str
    rule: FilterRule
    severity_filter: SeverityFilter
    handler: logging.Handler
    processors: list[Any] = field(default_factory=list)

    def get_logger(self, name: str) -> Any:
        """A logger that writes through this subscriber only, installed or not."""

        stdlib_logger = logging.Logger(name, level=self.rule.min_level)
        stdlib_logger.addHandler(self.handler)
        stdlib_logger.propagate = False
        return structlog.wrap_logger(
            stdlib_logger,
            processors=self.processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
        )


def build_subscriber(name: str, filter_default: str | None, sink: TextIO | None = None) -> Subscriber:
    rule = resolve_filter_rule(filter_default)
    severity_filter = SeverityFilter(rule)

    formatter = PipelineFormatter(
        name,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            BunyanRenderer(name),
        ],
        foreign_pre_chain=_shared_chain(),
    )

    handler = logging.StreamHandler(sys.stdout if sink is None else sink)
    handler.setFormatter(formatter)
    handler.addFilter(severity_filter)

    processors: list[Any] = [
        severity_filter,
        *_shared_chain(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    return Subscriber(
        name=name,
        rule=rule,
        severity_filter=severity_filter,
        handler=handler,
        processors=processors,
    )


def install_legacy_bridge(handler: logging.Handler, level: int) -> None:
    """Route plain ``logging`` calls and ``warnings`` into ``handler``."""

    global _bridge_handler
    if _bridge_handler is not None:
        raise LegacyBridgeAlreadyInstalledError("legacy logging bridge is already installed")

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _FOREIGN_LOGGERS:
        foreign = logging.getLogger(name)
        foreign.handlers = []
        foreign.propagate = True

    logging.captureWarnings(True)
    _bridge_handler = handler


def install_subscriber(subscriber: Subscriber) -> None:
    """Make ``subscriber`` the process-wide pipeline.

    Must be called exactly once per process, before serving requests.
    """

    global _installed
    with _install_lock:
        if _installed is not None:
            raise SubscriberAlreadyInstalledError(
                f"subscriber {_installed.name!r} is already installed for this process"
            )

        install_legacy_bridge(subscriber.handler, subscriber.rule.min_level)

        structlog.configure(
            processors=subscriber.processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _installed = subscriber


def installed_subscriber() -> Subscriber | None:
    return _installed

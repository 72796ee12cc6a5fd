from __future__ import annotations

import json
import logging
import os
import socket
from datetime import datetime, timezone
from typing import Any, TextIO

import structlog
from structlog.types import EventDict


# Numeric levels understood by bunyan tooling.
BUNYAN_LEVELS: dict[str, int] = {
    "trace": 10,
    "debug": 20,
    "info": 30,
    "warn": 40,
    "warning": 40,
    "error": 50,
    "exception": 50,
    "critical": 60,
    "fatal": 60,
}

# Keys produced by the processor chain that are renamed or consumed here.
_RESERVED = frozenset({"event", "level", "timestamp", "logger", "filename", "lineno", "span", "spans", "span_event"})


def _bunyan_level(level: Any) -> int:
    if isinstance(level, int):
        return level
    return BUNYAN_LEVELS.get(str(level).lower(), 30)


class BunyanRenderer:
    """Render an event as one bunyan-compatible JSON line.

    Span lifecycle events become ``[NAME - START]`` / ``[NAME - END]`` and
    events raised inside a span become ``[NAME - EVENT] message``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._hostname = socket.gethostname()
        self._json = structlog.processors.JSONRenderer()

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> str:
        span = event_dict.get("span")
        message = str(event_dict.get("event", ""))
        span_event = event_dict.get("span_event")
        if span is not None:
            tag = str(span).upper()
            if span_event is not None:
                message = f"[{tag} - {span_event}]"
            else:
                message = f"[{tag} - EVENT] {message}"

        payload: dict[str, Any] = {
            "v": 0,
            "name": self.name,
            "msg": message,
            "level": _bunyan_level(event_dict.get("level", method_name)),
            "hostname": self._hostname,
            "pid": os.getpid(),
            "time": event_dict.get("timestamp") or datetime.now(timezone.utc).isoformat(),
            "target": event_dict.get("logger"),
            "file": event_dict.get("filename"),
            "line": event_dict.get("lineno"),
        }
        if span is not None:
            payload["span"] = span
            payload["spans"] = event_dict.get("spans", [])
        for key, value in event_dict.items():
            if key not in _RESERVED:
                payload[key] = value
        return self._json(logger, method_name, payload)


class PipelineFormatter(structlog.stdlib.ProcessorFormatter):
    """ProcessorFormatter that degrades to a fallback line instead of raising."""

    def __init__(self, name: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.name = name

    def format(self, record: logging.LogRecord) -> str:
        try:
            return super().format(record)
        except Exception as exc:  # noqa: BLE001
            return self.fallback_line(record, exc)

    def fallback_line(self, record: logging.LogRecord, exc: BaseException) -> str:
        if isinstance(record.msg, dict):
            message = record.msg.get("event", "")
        else:
            message = record.msg
        payload = {
            "v": 0,
            "name": self.name,
            "msg": str(message),
            "level": _bunyan_level(record.levelname),
            "pid": os.getpid(),
            "time": datetime.now(timezone.utc).isoformat(),
            "target": record.name,
            "formatting_error": repr(exc),
        }
        return json.dumps(payload, default=repr)


def discard_sink() -> TextIO:
    """A writable sink that throws every record away."""

    return open(os.devnull, "w", encoding="utf-8")  # noqa: SIM115

"""Named, nestable scopes that structured events are attributed to.

The innermost entered span lives in a ``ContextVar``. Each asyncio task runs
in its own copy of the context, and Starlette copies the context into
threadpool workers, so a span entered by one request is never visible to
another one. ``Span.instrument`` additionally exits the span before every
suspension of the wrapped awaitable and re-enters it on resumption.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import Awaitable, Callable, Generator
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Generic, TypeVar

import structlog


T = TypeVar("T")

FieldValue = str | int | float | bool | None

_current: ContextVar[Span | None] = ContextVar("newsletter_current_span", default=None)
_INHERIT: Any = object()

SPAN_LEVELS = ("debug", "info", "warning", "error", "critical")

logger = structlog.get_logger("newsletter.spans")


class SpanClosedError(RuntimeError):
    """Raised when a closed span is entered or recorded into."""


class SpanNotEnteredError(RuntimeError):
    """Raised when a span is exited more often than it was entered."""


def current_span() -> Span | None:
    return _current.get()


class Span:
    def __init__(
        self,
        name: str,
        *,
        level: str = "info",
        parent: Span | None = _INHERIT,
        **fields: FieldValue,
    ) -> None:
        if level not in SPAN_LEVELS:
            raise ValueError(f"unsupported span level {level!r}")
        self.name = name
        self.level = level
        self.id = uuid.uuid4().hex[:16]
        self.parent: Span | None = current_span() if parent is _INHERIT else parent
        self.fields: dict[str, FieldValue] = dict(fields)
        self.started_at = datetime.now(timezone.utc)
        self._start = perf_counter()
        self._tokens: list[Token[Span | None]] = []
        self.closed = False

        self._emit(span_event="START")

    def __repr__(self) -> str:
        return f"<Span {self.name!r} id={self.id} closed={self.closed}>"

    @property
    def is_entered(self) -> bool:
        return bool(self._tokens)

    def record(self, **fields: FieldValue) -> None:
        if self.closed:
            raise SpanClosedError(f"span {self.name!r} is closed")
        self.fields.update(fields)

    def chain(self) -> list[Span]:
        """Ancestors root-first, ending with this span."""
        spans: list[Span] = []
        node: Span | None = self
        while node is not None:
            spans.append(node)
            node = node.parent
        spans.reverse()
        return spans

    def merged_fields(self) -> dict[str, FieldValue]:
        merged: dict[str, FieldValue] = {}
        for span in self.chain():
            merged.update(span.fields)
        return merged

    def enter(self) -> None:
        if self.closed:
            raise SpanClosedError(f"span {self.name!r} is closed")
        self._tokens.append(_current.set(self))

    def exit(self) -> None:
        if not self._tokens:
            raise SpanNotEnteredError(f"span {self.name!r} is not entered")
        _current.reset(self._tokens.pop())

    def __enter__(self) -> Span:
        self.enter()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.exit()

    def close(self) -> None:
        if self.closed:
            return
        elapsed_ms = (perf_counter() - self._start) * 1000.0
        self._emit(span_event="END", elapsed_milliseconds=round(elapsed_ms, 2))
        self.closed = True

    def instrument(self, awaitable: Awaitable[T]) -> Instrumented[T]:
        return Instrumented(awaitable, self)

    def _emit(self, **event_fields: Any) -> None:
        self.enter()
        try:
            getattr(logger, self.level)(self.name, **event_fields)
        finally:
            self.exit()


class Instrumented(Generic[T]):
    """Drives ``awaitable`` with ``span`` entered only while it is running."""

    def __init__(self, awaitable: Awaitable[T], span: Span) -> None:
        self._awaitable = awaitable
        self.span = span

    def __await__(self) -> Generator[Any, Any, T]:
        inner = self._awaitable.__await__()
        value: Any = None
        error: BaseException | None = None
        while True:
            self.span.enter()
            try:
                if error is not None:
                    yielded = inner.throw(error)
                else:
                    yielded = inner.send(value)
            except StopIteration as stop:
                return stop.value
            finally:
                self.span.exit()
                error = None

            try:
                value = yield yielded
            except GeneratorExit:
                inner.close()
                raise
            except BaseException as exc:
                value, error = None, exc


def instrument(
    name: str,
    *,
    level: str = "info",
    fields: Callable[..., dict[str, FieldValue]] | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Run a coroutine function inside its own child span.

    ``fields`` receives the call arguments and returns the span fields.
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            span_fields = fields(*args, **kwargs) if fields is not None else {}
            span = Span(name, level=level, **span_fields)
            try:
                return await span.instrument(fn(*args, **kwargs))
            finally:
                span.close()

        return wrapper

    return decorator

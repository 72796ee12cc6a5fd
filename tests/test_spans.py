import asyncio
import types

import pytest

from newsletter.observability.spans import Span, SpanClosedError, SpanNotEnteredError, current_span, instrument


@types.coroutine
def _suspend():
    yield "suspended"


def test_entered_spans_nest_and_merge_fields() -> None:
    assert current_span() is None

    with Span("outer", request_id="r-1", attempt=1) as outer:
        assert current_span() is outer
        with Span("inner", attempt=2, cached=False) as inner:
            assert inner.parent is outer
            assert [s.name for s in inner.chain()] == ["outer", "inner"]
            assert inner.merged_fields() == {"request_id": "r-1", "attempt": 2, "cached": False}
        assert current_span() is outer

    assert current_span() is None


def test_spans_can_be_entered_repeatedly_until_closed() -> None:
    span = Span("job", parent=None)
    for _ in range(3):
        with span:
            assert current_span() is span
    span.record(rows=3)
    span.close()
    span.close()

    assert span.closed
    assert span.fields == {"rows": 3}
    with pytest.raises(SpanClosedError):
        span.enter()
    with pytest.raises(SpanClosedError):
        span.record(rows=4)


def test_exiting_a_span_that_was_never_entered_fails_clearly() -> None:
    span = Span("idle", parent=None)

    with pytest.raises(SpanNotEnteredError):
        span.exit()

    with span:
        pass
    with pytest.raises(SpanNotEnteredError):
        span.exit()


def test_instrumented_awaitable_exits_span_while_suspended() -> None:
    span = Span("work", request_id="r-2")
    seen = []

    async def work() -> str:
        seen.append(current_span())
        await _suspend()
        seen.append(current_span())
        return "done"

    steps = span.instrument(work()).__await__()
    assert next(steps) == "suspended"
    assert current_span() is None

    with pytest.raises(StopIteration) as stop:
        steps.send(None)

    assert stop.value.value == "done"
    assert seen == [span, span]
    assert current_span() is None


def test_errors_delivered_while_suspended_reach_the_awaitable() -> None:
    span = Span("work")
    caught = []

    async def work() -> None:
        try:
            await _suspend()
        except KeyError as exc:
            caught.append((exc, current_span()))
            raise

    steps = span.instrument(work()).__await__()
    next(steps)
    with pytest.raises(KeyError):
        steps.throw(KeyError("boom"))

    assert caught[0][1] is span
    assert current_span() is None


async def test_instrument_decorator_opens_a_child_span() -> None:
    @instrument("child operation", fields=lambda value: {"value": value})
    async def child(value: int) -> Span:
        await asyncio.sleep(0)
        return current_span()

    with Span("parent", request_id="r-3") as parent:
        span = await child(7)
        assert current_span() is parent

    assert span.name == "child operation"
    assert span.parent is parent
    assert span.fields == {"value": 7}
    assert span.closed


async def test_concurrent_tasks_never_see_each_others_spans() -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def handle(request_id: str, wait_first: bool) -> list[str]:
        span = Span("request", parent=None, request_id=request_id)
        seen = []

        async def body() -> None:
            seen.append(current_span().fields["request_id"])
            if wait_first:
                started.set()
                await release.wait()
            else:
                await started.wait()
                release.set()
            await asyncio.sleep(0)
            seen.append(current_span().fields["request_id"])

        try:
            await span.instrument(body())
        finally:
            span.close()
        return seen

    first, second = await asyncio.gather(handle("a", True), handle("b", False))

    assert first == ["a", "a"]
    assert second == ["b", "b"]
    assert current_span() is None

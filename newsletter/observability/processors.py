from __future__ import annotations

from typing import Any

from structlog.types import EventDict

from newsletter.observability.spans import current_span


def merge_span_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the fields of the current span chain to the event.

    Ancestor fields are applied root-first so the innermost span wins, then
    the event's own fields are laid on top. Closed spans contribute nothing,
    even to contexts that still reference them. Events emitted outside any
    open span are left untouched.
    """

    span = current_span()
    if span is None:
        return event_dict

    chain = [s for s in span.chain() if not s.closed]
    if not chain:
        return event_dict

    merged: dict[str, Any] = {}
    for s in chain:
        merged.update(s.fields)
    merged.update(event_dict)
    merged["span"] = chain[-1].name
    merged["spans"] = [s.name for s in chain]
    return merged

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from structlog.types import EventDict


LOG_FILTER_ENV = "LOG_FILTER"

TRACE = 5
OFF = logging.CRITICAL + 10

logging.addLevelName(TRACE, "TRACE")

_LEVELS: dict[str, int] = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "off": OFF,
}


class InvalidFilterRule(ValueError):
    """Raised when a filter string cannot be parsed."""


@dataclass(frozen=True)
class FilterRule:
    """Severity threshold with optional per-target overrides.

    ``directives`` maps logger-name prefixes to thresholds; the longest
    matching prefix wins, otherwise ``default_level`` applies.
    """

    default_level: int = logging.INFO
    directives: tuple[tuple[str, int], ...] = ()

    def level_for(self, target: str | None) -> int:
        best: tuple[str, int] | None = None
        if target:
            for prefix, level in self.directives:
                if target == prefix or target.startswith(prefix + "."):
                    if best is None or len(prefix) > len(best[0]):
                        best = (prefix, level)
        return best[1] if best is not None else self.default_level

    @property
    def min_level(self) -> int:
        """Lowest threshold across all directives."""
        return min([self.default_level, *(level for _, level in self.directives)])


def _parse_level(text: str) -> int:
    try:
        return _LEVELS[text.strip().lower()]
    except KeyError as exc:
        raise InvalidFilterRule(f"unknown level {text!r}") from exc


def parse_filter_rule(text: str) -> FilterRule:
    """Parse ``"warn,newsletter=debug"`` style filter strings."""

    if not text or not text.strip():
        raise InvalidFilterRule("empty filter")

    default_level: int | None = None
    directives: list[tuple[str, int]] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            target, _, level = part.partition("=")
            target = target.strip()
            if not target:
                raise InvalidFilterRule(f"missing target in {part!r}")
            directives.append((target, _parse_level(level)))
        else:
            default_level = _parse_level(part)

    if default_level is None and not directives:
        raise InvalidFilterRule(f"no directives in {text!r}")

    return FilterRule(
        default_level=logging.INFO if default_level is None else default_level,
        directives=tuple(directives),
    )


def resolve_filter_rule(default: str | None, env: Mapping[str, str] | None = None) -> FilterRule:
    """Pick the active rule: LOG_FILTER, then ``default``, then ``info``.

    Never raises; an unparsable candidate falls through to the next one.
    """

    environ = os.environ if env is None else env
    for candidate in (environ.get(LOG_FILTER_ENV), default):
        if candidate is None:
            continue
        try:
            return parse_filter_rule(candidate)
        except InvalidFilterRule:
            continue
    return FilterRule()


class SeverityFilter(logging.Filter):
    """Keep/drop decision shared by structlog events and bridged stdlib records."""

    def __init__(self, rule: FilterRule) -> None:
        super().__init__()
        self.rule = rule

    def allows(self, target: str | None, level: int) -> bool:
        return level >= self.rule.level_for(target)

    # logging.Filter
    def filter(self, record: logging.LogRecord) -> bool:
        return self.allows(record.name, record.levelno)

    # structlog processor
    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        level = _LEVELS.get(method_name, logging.INFO)
        if method_name == "exception":
            level = logging.ERROR
        target = getattr(logger, "name", None) or event_dict.get("logger")
        if not self.allows(target, level):
            raise structlog.DropEvent
        return event_dict

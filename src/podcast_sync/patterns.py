"""
Template engine for dynamic paths, file names and ids.

A template is literal text with ``{...}`` invocations. Unit patterns take
no argument (``{guid}``); data patterns take one after ``::``
(``{pubdate::%Y-%m-%d}``). An argument may itself contain invocations,
which are rendered to plain text before the outer pattern sees it. The
rendered result is never parsed again, so evaluation always terminates.

Example::

    template = compile_pattern("{pubdate::%Y-%m-%d} {rss::episode::title}")
    template.evaluate(PatternContext(episode=episode), "name_pattern")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, Mapping, Optional, Union

from .errors import (
    DisallowedPatternError,
    MissingTagError,
    PatternEvalError,
    PatternParseError,
)
from .models import Channel, Episode
from .utils import APP_NAME


class PatternCategory(Enum):
    """Which data a pattern needs in order to be evaluated."""

    GLOBAL = "global"
    CHANNEL = "channel"
    EPISODE = "episode"
    TAG = "tag"


UNIT_PATTERNS: dict[str, PatternCategory] = {
    "guid": PatternCategory.EPISODE,
    "url": PatternCategory.EPISODE,
    "podname": PatternCategory.CHANNEL,
    "home": PatternCategory.GLOBAL,
    "appname": PatternCategory.GLOBAL,
}

DATA_PATTERNS: dict[str, PatternCategory] = {
    "rss::episode": PatternCategory.EPISODE,
    "rss::channel": PatternCategory.CHANNEL,
    "pubdate": PatternCategory.EPISODE,
    "currdate": PatternCategory.GLOBAL,
    "id3tag": PatternCategory.TAG,
}

_PER_PODCAST = frozenset({PatternCategory.GLOBAL, PatternCategory.CHANNEL})
_PER_EPISODE = _PER_PODCAST | {PatternCategory.EPISODE}

# Settings resolved once per podcast cannot see episode data.
SETTING_CATEGORIES: dict[str, frozenset[PatternCategory]] = {
    "download_path": _PER_PODCAST,
    "tracker_path": _PER_PODCAST,
    "symlink": _PER_PODCAST,
    "name_pattern": _PER_EPISODE,
    "id_pattern": _PER_EPISODE,
    "id3_tags": frozenset(PatternCategory),
}

_STRFTIME_DIRECTIVES = frozenset("aAbBcCdDeFfgGhHIjmMnpPrRsStTuUVwWxXyYzZ%")
_STRFTIME_FLAGS = frozenset("-_0^#")


@dataclass(frozen=True)
class Text:
    """Literal text node."""

    value: str


@dataclass(frozen=True)
class Invocation:
    """Pattern invocation node, with an optional (nested) argument."""

    name: str
    argument: Optional["Template"] = None

    @property
    def category(self) -> PatternCategory:
        """Data category this pattern depends on."""
        if self.name in UNIT_PATTERNS:
            return UNIT_PATTERNS[self.name]
        return DATA_PATTERNS[self.name]


Node = Union[Text, Invocation]


@dataclass(frozen=True)
class PatternContext:
    """Everything a template may read while being evaluated.

    Fields left as None are unavailable; patterns that need them fail.
    ``now`` is part of the context so that evaluation stays deterministic.
    """

    podcast_name: str = ""
    channel: Optional[Channel] = None
    episode: Optional[Episode] = None
    tags: Optional[Mapping[str, str]] = None
    now: Optional[datetime] = None
    home: str = field(default_factory=lambda: os.path.expanduser("~"))


@dataclass(frozen=True)
class Template:
    """Compiled template: the source string and its parsed nodes."""

    source: str
    nodes: tuple[Node, ...]

    def __str__(self) -> str:
        return self.source

    def invocations(self) -> Iterator[Invocation]:
        """Yield every invocation, nested arguments included."""
        for node in self.nodes:
            if isinstance(node, Invocation):
                yield node
                if node.argument is not None:
                    yield from node.argument.invocations()

    def validate(self, setting: str) -> None:
        """Check that every pattern is legal for ``setting``.

        Raises:
            DisallowedPatternError: On the first pattern that is not
        """
        allowed = _allowed_categories(setting)
        for invocation in self.invocations():
            if invocation.category not in allowed:
                raise DisallowedPatternError(invocation.name, setting)

    def evaluate(
        self, context: PatternContext, setting: Optional[str] = None
    ) -> str:
        """Render the template against ``context``."""
        allowed = _allowed_categories(setting)
        return _render(self.nodes, context, allowed, setting)


def compile_pattern(template: str, setting: Optional[str] = None) -> Template:
    """Parse a template string.

    Args:
        template: Template source
        setting: Optional setting name; if given, pattern categories are
            validated right away

    Raises:
        PatternParseError: If the template is malformed
        DisallowedPatternError: If ``setting`` is given and a pattern is
            not legal for it
    """
    nodes, _ = _parse_sequence(template, 0, nested=False)
    compiled = Template(template, tuple(nodes))
    if setting is not None:
        compiled.validate(setting)
    return compiled


def evaluate_pattern(
    template: Template, context: PatternContext, setting: Optional[str] = None
) -> str:
    """Render a compiled template; see :meth:`Template.evaluate`."""
    return template.evaluate(context, setting)


def format_timestamp(moment: datetime, fmt: str) -> str:
    """Format a datetime with strftime syntax, or ``unix`` for epoch seconds.

    Raises:
        PatternEvalError: If the format string has an invalid directive
    """
    if fmt == "unix":
        return str(int(moment.timestamp()))

    index = 0
    while index < len(fmt):
        if fmt[index] == "%":
            index += 1
            while index < len(fmt) and fmt[index] in _STRFTIME_FLAGS:
                index += 1
            if index >= len(fmt) or fmt[index] not in _STRFTIME_DIRECTIVES:
                raise PatternEvalError(f"invalid date format: {fmt!r}")
        index += 1

    try:
        return moment.strftime(fmt)
    except ValueError as e:
        raise PatternEvalError(f"invalid date format {fmt!r}: {e}") from e


# Parsing


def _parse_sequence(
    source: str, pos: int, nested: bool
) -> tuple[list[Node], int]:
    """Parse text and invocations until end of input or a closing brace.

    Returns the nodes and the position of the closing brace (or the end).
    """
    nodes: list[Node] = []
    buffer: list[str] = []

    while pos < len(source):
        char = source[pos]
        if char == "{":
            if buffer:
                nodes.append(Text("".join(buffer)))
                buffer = []
            invocation, pos = _parse_invocation(source, pos + 1)
            nodes.append(invocation)
            continue
        if char == "}":
            if not nested:
                raise PatternParseError(
                    f"unmatched '}}' at position {pos} in {source!r}"
                )
            break
        buffer.append(char)
        pos += 1
    else:
        if nested:
            raise PatternParseError(f"unclosed '{{' in {source!r}")

    if buffer:
        nodes.append(Text("".join(buffer)))
    return nodes, pos


def _parse_invocation(source: str, start: int) -> tuple[Invocation, int]:
    """Parse the body of ``{...}``; ``start`` is just past the brace."""
    body, end = _parse_sequence(source, start, nested=True)
    next_pos = end + 1

    if not body:
        raise PatternParseError(f"empty pattern at position {start - 1}")

    head = body[0]
    if not isinstance(head, Text):
        raise PatternParseError(
            f"pattern name must be literal text in {source[start:end]!r}"
        )

    if len(body) == 1 and head.value in UNIT_PATTERNS:
        return Invocation(head.value), next_pos

    # Longest names first so "rss::episode" is not read as "rss".
    for name in sorted(DATA_PATTERNS, key=len, reverse=True):
        prefix = f"{name}::"
        if not head.value.startswith(prefix):
            continue
        rest = head.value[len(prefix):]
        argument_nodes: list[Node] = [Text(rest)] if rest else []
        argument_nodes.extend(body[1:])
        if not argument_nodes:
            raise PatternParseError(f"pattern '{name}' requires an argument")
        argument = Template(
            source[start + len(prefix):end], tuple(argument_nodes)
        )
        return Invocation(name, argument), next_pos

    name = head.value.split("::", 1)[0]
    if name in DATA_PATTERNS:
        raise PatternParseError(f"pattern '{name}' requires an argument")
    if name in UNIT_PATTERNS:
        raise PatternParseError(f"pattern '{name}' does not take an argument")
    raise PatternParseError(f"unknown pattern '{source[start:end]}'")


# Evaluation


def _allowed_categories(setting: Optional[str]) -> frozenset[PatternCategory]:
    if setting is None:
        return frozenset(PatternCategory)
    try:
        return SETTING_CATEGORIES[setting]
    except KeyError:
        raise ValueError(f"unknown setting: {setting}") from None


def _render(
    nodes: tuple[Node, ...],
    context: PatternContext,
    allowed: frozenset[PatternCategory],
    setting: Optional[str],
) -> str:
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, Text):
            parts.append(node.value)
            continue

        if node.category not in allowed:
            raise DisallowedPatternError(node.name, setting or "context")

        argument = ""
        if node.argument is not None:
            argument = _render(node.argument.nodes, context, allowed, setting)
        parts.append(_HANDLERS[node.name](context, argument))
    return "".join(parts)


def _require_episode(context: PatternContext, name: str) -> Episode:
    if context.episode is None:
        raise PatternEvalError(f"'{name}' needs episode data")
    return context.episode


def _require_channel(context: PatternContext, name: str) -> Channel:
    if context.channel is None:
        raise PatternEvalError(f"'{name}' needs channel data")
    return context.channel


def _podname(context: PatternContext, _: str) -> str:
    if not context.podcast_name:
        raise PatternEvalError("'podname' needs a podcast name")
    return context.podcast_name


def _rss_episode(context: PatternContext, key: str) -> str:
    value = _require_episode(context, "rss::episode").get_value(key)
    if value is None:
        raise MissingTagError(f"episode tag '{key}' not found")
    return value


def _rss_channel(context: PatternContext, key: str) -> str:
    value = _require_channel(context, "rss::channel").get_value(key)
    if value is None:
        raise MissingTagError(f"channel tag '{key}' not found")
    return value


def _pubdate(context: PatternContext, fmt: str) -> str:
    episode = _require_episode(context, "pubdate")
    return format_timestamp(episode.published, fmt)


def _currdate(context: PatternContext, fmt: str) -> str:
    if context.now is None:
        raise PatternEvalError("'currdate' needs the current time")
    return format_timestamp(context.now, fmt)


def _id3tag(context: PatternContext, key: str) -> str:
    if context.tags is None:
        raise PatternEvalError("'id3tag' needs tag data from a written file")
    if key not in context.tags:
        raise MissingTagError(f"id3 tag '{key}' not found")
    return context.tags[key]


_HANDLERS: dict[str, Callable[[PatternContext, str], str]] = {
    "guid": lambda ctx, _: _require_episode(ctx, "guid").guid,
    "url": lambda ctx, _: _require_episode(ctx, "url").url,
    "podname": _podname,
    "home": lambda ctx, _: ctx.home,
    "appname": lambda ctx, _: APP_NAME,
    "rss::episode": _rss_episode,
    "rss::channel": _rss_channel,
    "pubdate": _pubdate,
    "currdate": _currdate,
    "id3tag": _id3tag,
}

"""Factories for commonly needed parsers."""

from __future__ import annotations

from enum import IntEnum
from typing import Union

from .parser import ANY, ParserDefinition, ParserEvent, Transition


class StringCmpEvent(IntEnum):
    """Events emitted by a case-insensitive string comparison parser."""

    MAYEQ = 0
    """The input may still equal the string."""
    EQ = 1
    """The input equals the string."""
    NEQ = 2
    """The input cannot equal the string."""


_EVENT_NAMES = {
    StringCmpEvent.MAYEQ: "wait(c)",
    StringCmpEvent.EQ: "eq(c)",
    StringCmpEvent.NEQ: "neq(c)",
}


def strcmpi_event_name(event_type: int) -> str:
    """Return a readable name for a comparison event type."""
    return _EVENT_NAMES[StringCmpEvent(event_type)]


def _emitter(kind: StringCmpEvent):
    def emit(c: int) -> ParserEvent:
        return ParserEvent(kind, bytes([c]))

    return emit


def strcmpi(text: Union[str, bytes]) -> ParserDefinition:
    """Build a parser that checks, ignoring ASCII case, that input equals ``text``.

    Receiving :attr:`StringCmpEvent.NEQ` means the input does not match.
    """
    target = text.encode() if isinstance(text, str) else bytes(text)
    n = len(target)
    st_eq = n
    st_neq = n + 1
    neq = Transition(ANY, st_neq, _emitter(StringCmpEvent.NEQ))

    states = []
    for position, byte in enumerate(target):
        last = position + 1 == n
        dest = st_eq if last else position + 1
        action = _emitter(StringCmpEvent.EQ if last else StringCmpEvent.MAYEQ)
        single = bytes([byte])
        states.append(
            (
                Transition(single.lower()[0], dest, action),
                Transition(single.upper()[0], dest, action),
                neq,
            )
        )
    states.append((neq,))
    states.append((neq,))
    return ParserDefinition(states=tuple(states), start_state=0)
"""Small table-driven engine for byte-oriented parsers and lexers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

#: Condition that matches every byte.
ANY = 1 << 9


@dataclass
class ParserEvent:
    """An event produced while feeding a byte to a parser."""

    type: int
    data: bytes = b""
    next: Optional["ParserEvent"] = None

    def chain(self) -> list["ParserEvent"]:
        """Return this event followed by every event linked after it."""
        events = []
        event: Optional[ParserEvent] = self
        while event is not None:
            events.append(event)
            event = event.next
        return events


Action = Callable[[int], ParserEvent]


@dataclass(frozen=True)
class Transition:
    """A move between states.

    ``when`` is either a byte value (0-255), :data:`ANY`, or a mask of
    character classes (a value above 0xFF) tested against the byte's class.
    """

    when: int
    dest: int
    action: Action
    second_action: Optional[Action] = None

    def matches(self, byte: int, byte_class: int) -> bool:
        if self.when <= 0xFF:
            return byte == self.when
        if self.when == ANY:
            return True
        return bool(byte_class & self.when)


@dataclass(frozen=True)
class ParserDefinition:
    """The complete state machine: the transitions of every state."""

    states: tuple[tuple[Transition, ...], ...] = field(default_factory=tuple)
    start_state: int = 0

    @property
    def states_count(self) -> int:
        return len(self.states)


def no_classes() -> tuple[int, ...]:
    """Class table for parsers that do not use character classes."""
    return (0,) * 256


class Parser:
    """Runs a :class:`ParserDefinition` over bytes fed one at a time."""

    def __init__(
        self,
        definition: ParserDefinition,
        classes: Optional[Sequence[int]] = None,
    ) -> None:
        if classes is None:
            classes = no_classes()
        if len(classes) < 256:
            raise ValueError("the class table needs an entry for every byte")
        self.definition = definition
        self.classes = classes
        self.state = definition.start_state

    def reset(self) -> None:
        """Go back to the start state."""
        self.state = self.definition.start_state

    def feed(self, byte: int) -> Optional[ParserEvent]:
        """Feed one byte and return the resulting event.

        When a transition fires with two actions, the second event is linked
        as ``next`` of the first. Returns None if no transition matched; the
        state is then left unchanged.
        """
        if not 0 <= byte <= 0xFF:
            raise ValueError(f"not a byte: {byte}")
        byte_class = self.classes[byte]
        for transition in self.definition.states[self.state]:
            if transition.matches(byte, byte_class):
                event = transition.action(byte)
                event.next = None
                if transition.second_action is not None:
                    event.next = transition.second_action(byte)
                self.state = transition.dest
                return event
        return None
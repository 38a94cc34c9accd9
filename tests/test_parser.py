import pytest

from socksadmin.parser import (
    ANY,
    Parser,
    ParserDefinition,
    ParserEvent,
    Transition,
    no_classes,
)

DIGIT = 1 << 10
LETTER_A = 1
OTHER = 2
NUMBER = 3
MARK = 4


def _event(kind):
    return lambda c: ParserEvent(kind, bytes([c]))


def _classes():
    table = [0] * 256
    for c in b"0123456789":
        table[c] = DIGIT
    return table


def _definition():
    start = (
        Transition(ord("a"), 1, _event(LETTER_A)),
        Transition(DIGIT, 0, _event(NUMBER), _event(MARK)),
        Transition(ANY, 0, _event(OTHER)),
    )
    after_a = (Transition(ord("b"), 0, _event(LETTER_A)),)
    return ParserDefinition(states=(start, after_a), start_state=0)


def test_exact_byte_transition_moves_state():
    parser = Parser(_definition(), _classes())
    event = parser.feed(ord("a"))
    assert event.type == LETTER_A
    assert event.data == b"a"
    assert event.next is None
    assert parser.state == 1


def test_any_matches_unlisted_byte():
    parser = Parser(_definition(), _classes())
    event = parser.feed(ord("z"))
    assert event.type == OTHER
    assert parser.state == 0


def test_class_transition_with_second_action():
    parser = Parser(_definition(), _classes())
    event = parser.feed(ord("7"))
    assert [e.type for e in event.chain()] == [NUMBER, MARK]
    assert event.next.data == b"7"


def test_without_classes_digits_fall_to_any():
    parser = Parser(_definition())
    event = parser.feed(ord("7"))
    assert event.type == OTHER
    assert event.next is None


def test_no_matching_transition_returns_none_and_keeps_state():
    parser = Parser(_definition(), _classes())
    parser.feed(ord("a"))
    assert parser.feed(ord("x")) is None
    assert parser.state == 1


def test_reset_returns_to_start_state():
    parser = Parser(_definition(), _classes())
    parser.feed(ord("a"))
    parser.reset()
    assert parser.state == _definition().start_state
    assert parser.feed(ord("a")).type == LETTER_A


def test_feed_rejects_values_outside_byte_range():
    parser = Parser(_definition())
    with pytest.raises(ValueError):
        parser.feed(256)


def test_short_class_table_rejected():
    with pytest.raises(ValueError):
        Parser(_definition(), [0] * 10)


def test_no_classes_covers_every_byte_with_zero():
    table = no_classes()
    assert len(table) == 256
    assert set(table) == {0}


def test_states_count_matches_definition():
    assert _definition().states_count == len(_definition().states)
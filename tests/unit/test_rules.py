"""Tests for the ordered rule engine."""

import pytest

from campus_assistant.rules import HandlerRule, RuleEngine


def _reply(text):
    async def handle(subject):
        return text

    return handle


async def test_first_matching_rule_wins():
    """Test precedence follows list order."""
    engine = RuleEngine(
        [
            HandlerRule("never", lambda s: False, _reply("never")),
            HandlerRule("first", lambda s: True, _reply("first")),
            HandlerRule("second", lambda s: True, _reply("second")),
        ]
    )

    assert await engine.dispatch("msg") == ("first", "first")


async def test_later_predicates_not_evaluated():
    """Test evaluation stops at the first accepting predicate."""
    evaluated = []

    def track(name, result):
        def predicate(subject):
            evaluated.append(name)
            return result

        return predicate

    engine = RuleEngine(
        [
            HandlerRule("a", track("a", False), _reply("a")),
            HandlerRule("b", track("b", True), _reply("b")),
            HandlerRule("c", track("c", True), _reply("c")),
        ]
    )

    assert engine.select("x").name == "b"
    assert evaluated == ["a", "b"]


def test_no_rule_applies():
    """Test an unmatched subject raises LookupError."""
    engine = RuleEngine([HandlerRule("only", lambda s: False, _reply("x"))])

    with pytest.raises(LookupError):
        engine.select("x")


def test_validation_and_names():
    """Test empty and duplicate rule lists are rejected."""
    with pytest.raises(ValueError):
        RuleEngine([])
    with pytest.raises(ValueError):
        RuleEngine([HandlerRule("a", bool, _reply("1")), HandlerRule("a", bool, _reply("2"))])

    engine = RuleEngine([HandlerRule("a", bool, _reply("1")), HandlerRule("b", bool, _reply("2"))])
    assert engine.names == ("a", "b")

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class HandlerRule(Generic[T]):
    """Named (predicate, handler) pair; the handler returns the final reply."""
    name: str
    applies: Callable[[T], bool]
    handle: Callable[[T], Awaitable[str]]


class RuleEngine(Generic[T]):
    """Ordered first-match dispatcher over HandlerRule entries."""

    def __init__(self, rules: Sequence[HandlerRule[T]]) -> None:
        """Purpose: Initialize the engine with rules in precedence order.
        Inputs/Outputs: Input is a sequence of HandlerRule; no return value.
        Side Effects / State: Stores the rules as an immutable tuple.
        Dependencies: None beyond HandlerRule definitions.
        Failure Modes: Raises ValueError on an empty list or duplicate names.
        If Removed: Message routing has no precedence structure.
        Testing Notes: Build two always-true rules and check the first wins.
        """
        # Precedence is list order.
        if not rules:
            raise ValueError("at least one rule is required")
        names = [rule.name for rule in rules]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate rule names: {names}")
        self._rules: Tuple[HandlerRule[T], ...] = tuple(rules)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(rule.name for rule in self._rules)

    def select(self, subject: T) -> HandlerRule[T]:
        """Purpose: Pick the first rule whose predicate accepts the subject.
        Inputs/Outputs: Input is the routing subject; output is the winning rule.
        Side Effects / State: Invokes predicates in order, stopping at the first hit.
        Dependencies: HandlerRule.applies.
        Failure Modes: LookupError when no rule applies; predicate exceptions propagate.
        If Removed: dispatch cannot route.
        Testing Notes: Verify later rules are not evaluated after a hit.
        """
        # Short-circuit on the first accepting predicate.
        for rule in self._rules:
            if rule.applies(subject):
                return rule
        raise LookupError("no rule applies")

    async def dispatch(self, subject: T) -> Tuple[str, str]:
        rule = self.select(subject)
        return rule.name, await rule.handle(subject)

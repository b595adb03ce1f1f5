"""Registry of scoring rules, keyed by rule name."""

import logging
from collections.abc import Iterator

from npmscore.rules.base import BaseRule

logger = logging.getLogger(__name__)


class RuleRegistry:
    """Holds rules in registration order.

    Registering a rule whose name is already present replaces the earlier
    rule in place, so a reconfigured rule keeps its original position.
    """

    def __init__(self) -> None:
        self._rules: dict[str, BaseRule] = {}

    def register(self, rule: BaseRule) -> None:
        if not rule.name:
            raise ValueError(f"Rule {type(rule).__name__} has no name")
        if rule.name in self._rules:
            logger.debug(f"Replacing rule {rule.name}")
        self._rules[rule.name] = rule

    def unregister(self, name: str) -> BaseRule | None:
        return self._rules.pop(name, None)

    def get(self, name: str) -> BaseRule | None:
        return self._rules.get(name)

    def get_active_rules(self) -> list[BaseRule]:
        """Enabled rules in registration order."""
        return [rule for rule in self._rules.values() if rule.enabled]

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __iter__(self) -> Iterator[BaseRule]:
        return iter(list(self._rules.values()))

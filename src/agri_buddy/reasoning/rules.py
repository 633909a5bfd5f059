"""
Generic rule-table evaluation.

A rule table is an ordered list of (pattern, category, weight) rules. The
evaluator knows nothing about the linguistic content of a table: risk
signals, answer routing and local slot extraction all share it, and each
table can be tested or replaced on its own.
"""

from __future__ import annotations

import re
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class Rule(BaseModel):
    """A single regex rule that maps a match to a category and weight."""

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(..., description="Regular expression tested against the text")
    category: str = Field(..., description="Category emitted when the rule fires")
    weight: int = Field(default=1, ge=0, description="Contribution of the rule to a score")
    label: str | None = Field(
        default=None,
        description="Normalized label for the match (used by extraction tables)",
    )
    ignore_case: bool = Field(default=False, description="Match case-insensitively")

    _compiled: re.Pattern[str] = PrivateAttr()

    def model_post_init(self, context: object) -> None:
        flags = re.IGNORECASE if self.ignore_case else 0
        self._compiled = re.compile(self.pattern, flags)

    def search(self, text: str) -> re.Match[str] | None:
        """Return the first match of this rule in `text`, if any."""
        return self._compiled.search(text)


class RuleMatch(BaseModel):
    """A rule that fired against a piece of text."""

    model_config = ConfigDict(frozen=True)

    category: str = Field(..., description="Category of the rule")
    weight: int = Field(..., description="Weight of the rule")
    phrase: str = Field(..., description="Matched text")
    label: str | None = Field(default=None, description="Normalized label of the rule")
    position: int = Field(..., description="Offset of the match in the text")


class RuleTable(BaseModel):
    """
    An ordered collection of rules.

    Each rule contributes at most once per evaluated text, and matches are
    returned in table order so ties can be broken by position in the table.
    """

    name: str = Field(..., description="Name of the table")
    rules: list[Rule] = Field(default_factory=list, description="Rules in evaluation order")

    @classmethod
    def from_entries(
        cls,
        name: str,
        entries: Iterable[tuple[str, str, int] | tuple[str, str, int, str]],
        *,
        ignore_case: bool = False,
    ) -> "RuleTable":
        """
        Build a table from plain tuples.

        Args:
            name: Table name.
            entries: (pattern, category, weight) or (pattern, category, weight, label).
            ignore_case: Apply case-insensitive matching to every rule.

        Returns:
            The constructed table.
        """
        rules: list[Rule] = []
        for entry in entries:
            pattern, category, weight = entry[0], entry[1], entry[2]
            label = entry[3] if len(entry) > 3 else None
            rules.append(
                Rule(
                    pattern=pattern,
                    category=category,
                    weight=weight,
                    label=label,
                    ignore_case=ignore_case,
                )
            )
        return cls(name=name, rules=rules)

    def evaluate(self, text: str) -> list[RuleMatch]:
        """
        Evaluate every rule against `text`.

        Args:
            text: Input text.

        Returns:
            One RuleMatch per rule that fired, in table order.
        """
        if not text:
            return []

        matches: list[RuleMatch] = []
        for rule in self.rules:
            m = rule.search(text)
            if m is None:
                continue
            matches.append(
                RuleMatch(
                    category=rule.category,
                    weight=rule.weight,
                    phrase=m.group(0),
                    label=rule.label,
                    position=m.start(),
                )
            )
        return matches

    def categories(self, text: str) -> list[str]:
        """Distinct categories that fired, in table order."""
        seen: list[str] = []
        for match in self.evaluate(text):
            if match.category not in seen:
                seen.append(match.category)
        return seen

    def labels(self, text: str) -> list[str]:
        """Distinct labels of the rules that fired, in table order."""
        seen: list[str] = []
        for match in self.evaluate(text):
            if match.label and match.label not in seen:
                seen.append(match.label)
        return seen

    def matches(self, text: str, category: str | None = None) -> bool:
        """True if any rule (optionally restricted to one category) fires."""
        return any(category is None or m.category == category for m in self.evaluate(text))

    def score(self, text: str) -> int:
        """Sum of the weights of all rules that fired."""
        return sum(m.weight for m in self.evaluate(text))

"""
Condition primitives for routing rules.

A routing condition in a questionnaire is always of the shape

    VARIABLE OPERATOR VALUE-LIST

e.g. ``S4 = 1``, ``S4 ≠ 98 or 999``, ``AGE >= 18``. This module defines the
closed operator set and the parsed clause structure.

ARCHITECTURAL RULE:
    Structure only. Parsing lives in `surveyaudit.routing`,
    evaluation lives in `surveyaudit.validator`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple


class Operator(Enum):
    """
    Comparison operators allowed in routing conditions.

    Values are the ASCII spellings used in reports.
    """

    EQ = "="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="


# Unicode glyphs and alternative ASCII spellings found in questionnaires.
OPERATOR_GLYPHS = {
    "≠": "!=",
    "≤": "<=",
    "≥": ">=",
    "<>": "!=",
    "=<": "<=",
    "=>": ">=",
    "==": "=",
    "=": "=",
    "!=": "!=",
    "<=": "<=",
    ">=": ">=",
    "<": "<",
    ">": ">",
}


def operator_from_text(text: str) -> Optional[Operator]:
    """
    Map an operator spelling (ASCII or unicode glyph) to an Operator.

    Returns None for anything that is not a comparison operator.
    """
    ascii_op = OPERATOR_GLYPHS.get(text.strip())
    if ascii_op is None:
        return None
    return Operator(ascii_op)


@dataclass(frozen=True)
class Clause:
    """
    One parsed ``variable operator value-list`` comparison.

    Properties:
        variable: Condition variable as written in the questionnaire
        operator: Operator enum
        values: Explicit value set (short ranges already expanded)
        disjunctive: True when the clause was joined to its siblings by OR
        ranges: Inclusive (lo, hi) spans too wide to expand into `values`
    """

    variable: str
    operator: Operator
    values: FrozenSet[int]
    disjunctive: bool = False
    ranges: FrozenSet[Tuple[int, int]] = frozenset()

    def describe(self) -> str:
        """Compact textual form, e.g. ``S4=1,2``."""
        return f"{self.variable}{self.operator.value}{describe_values(self.values, self.ranges)}"


def describe_values(values: Iterable[int], ranges: Iterable[Tuple[int, int]] = ()) -> str:
    """``1,2,10-5000``: explicit values first, then wide ranges."""
    parts = [str(v) for v in sorted(values)]
    parts.extend(f"{lo}-{hi}" for lo, hi in sorted(ranges))
    return ",".join(parts)

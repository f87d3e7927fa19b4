"""
Validation Engine.

Single forward pass over the rows. For each row, in this order:

    1. Code validity   value outside the effective valid codes
    2. Routing         targets missing when asked, answered when skipped
    3. Open text       filler characters typed instead of an answer

Structural (dataset-level) warnings are computed once, before the row pass.

CONTRACT:
    - At most one Issue per (row, variable, issue kind)
    - Identical inputs produce an identical ordered result
    - A bad value never aborts its row: it is treated as absent
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from surveyaudit.conditions import Operator
from surveyaudit.config import SurveyAuditError, ValidationConfig
from surveyaudit.model import (
    SYSMIS,
    DatasetWarning,
    EffectiveVariable,
    Issue,
    IssueKind,
    RoutingRule,
    WarningKind,
)
from surveyaudit.resolver import name_key

logger = logging.getLogger(__name__)


class ValidationCancelled(SurveyAuditError):
    """Raised when a run is superseded through its cancel token."""
    pass


@dataclass
class ValidationOutcome:
    """Issues and warnings of one validation run."""

    issues: List[Issue] = field(default_factory=list)
    warnings: List[DatasetWarning] = field(default_factory=list)
    id_column: Optional[str] = None
    row_count: int = 0


# =====================================================================
# Value helpers
# =====================================================================

def is_empty(value: Any) -> bool:
    """None, blank strings, NaN and the system-missing value count as empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value) or value == SYSMIS
    return False


def parse_numeric(value: Any) -> Optional[float]:
    """
    Numeric reading of a cell, or None when it has none.

    Strings are parsed leniently ("3", " 3.0 ", "3,0"); anything else that
    does not parse is treated as absent.
    """
    if is_empty(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number) or number == SYSMIS:
        return None
    return number


def format_value(value: Any) -> str:
    """Report form of a cell: integral numbers without a decimal part."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def format_codes(codes: Iterable[float], limit: int = 15) -> str:
    ordered = sorted(codes)
    text = ", ".join(format_value(c) for c in ordered[:limit])
    if len(ordered) > limit:
        text += f", ... ({len(ordered)} codes)"
    return text


def condition_holds(operator: Operator, values: Iterable[int], value: float,
                    ranges: Iterable[Tuple[int, int]] = ()) -> bool:
    """
    Evaluate ``value OPERATOR values``.

    `ranges` are inclusive (lo, hi) spans listed alongside the explicit
    values. Ordering operators compare against the bound that makes the
    condition easiest to satisfy (`<` against the largest listed value, `>`
    against the smallest).
    """
    values = list(values)
    ranges = list(ranges)
    if not values and not ranges:
        return False
    if operator in (Operator.EQ, Operator.NE):
        listed = value in values or any(lo <= value <= hi for lo, hi in ranges)
        return listed if operator is Operator.EQ else not listed
    highest = max(values + [hi for _, hi in ranges])
    lowest = min(values + [lo for lo, _ in ranges])
    if operator is Operator.LT:
        return value < highest
    if operator is Operator.LE:
        return value <= highest
    if operator is Operator.GT:
        return value > lowest
    if operator is Operator.GE:
        return value >= lowest
    raise ValueError(f"Unknown operator: {operator}")


# =====================================================================
# Row schema and respondent identifiers
# =====================================================================

def row_schema(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    """Ordered union of the keys of all rows."""
    seen: Dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def detect_id_column(columns: Sequence[str], config: ValidationConfig) -> Optional[str]:
    """First configured identifier name present in the columns (exact, then case-insensitive)."""
    for candidate in config.id_columns:
        if candidate in columns:
            return candidate
    lowered = {c.lower(): c for c in reversed(list(columns))}
    for candidate in config.id_columns:
        if candidate.lower() in lowered:
            return lowered[candidate.lower()]
    return None


def respondent_id(row: Mapping[str, Any], id_column: Optional[str], index: int) -> str:
    if id_column is not None:
        value = row.get(id_column)
        if not is_empty(value):
            return format_value(value)
    return f"Row{index + 1}"


# =====================================================================
# Open-text quality
# =====================================================================

_LETTER_RUN_RE = re.compile(r"[A-Za-z\u00C0-\u024F\u0400-\u04FF\u0531-\u058F]{2,}")


def letter_run_ratio(text: str) -> float:
    """Share of non-whitespace characters that sit in runs of two or more letters."""
    compact = "".join(text.split())
    if not compact:
        return 0.0
    in_runs = sum(len(m.group(0)) for m in _LETTER_RUN_RE.finditer(text))
    return in_runs / len(compact)


def is_filler(text: str) -> bool:
    """A single character repeated ("aaaa", "....", "xxxxx")."""
    compact = "".join(text.split())
    return len(compact) >= 3 and len(set(compact.lower())) == 1


# =====================================================================
# Engine
# =====================================================================

class _RowChecker:
    """Per-run state shared by the row checks."""

    def __init__(self, variables: List[EffectiveVariable], rules: List[RoutingRule],
                 columns: List[str], config: ValidationConfig):
        self.config = config
        self.rules = rules
        self.column_by_key = {}
        for column in columns:
            self.column_by_key.setdefault(name_key(column), column)
        self.variables_by_key = {}
        for var in variables:
            self.variables_by_key.setdefault(name_key(var.name), var)
        self.coded = [v for v in variables if v.content_validated and v.effective_valid_codes
                      and self.column(v.name) is not None]
        self.open_text = [v for v in variables if v.is_open_text and self.column(v.name) is not None]

    def column(self, name: str) -> Optional[str]:
        return self.column_by_key.get(name_key(name))

    def display_name(self, name: str) -> str:
        var = self.variables_by_key.get(name_key(name))
        return var.name if var is not None else name

    def check_row(self, row: Mapping[str, Any], rid: str) -> List[Issue]:
        issues: List[Issue] = []
        emitted: Set[Tuple[str, IssueKind]] = set()

        def emit(variable: str, kind: IssueKind, value: Any, detail: str, explanation: str):
            key = (name_key(variable), kind)
            if key in emitted:
                return
            emitted.add(key)
            issues.append(Issue(rid, variable, kind, format_value(value), detail, explanation))

        self._check_codes(row, emit)
        self._check_routing(row, emit)
        self._check_open_text(row, emit)
        return issues

    def _check_codes(self, row, emit) -> None:
        for var in self.coded:
            raw = row.get(self.column(var.name))
            value = parse_numeric(raw)
            if value is None or value in var.effective_valid_codes:
                continue
            if self.config.is_special(value) or var.is_declared_missing(value):
                continue
            explanation = (f"Valid codes for {var.name} ({var.effective_label}) come from the "
                           f"{var.code_source.value}: {format_codes(var.effective_valid_codes)}.")
            if var.scale_range is not None:
                lo, hi = var.scale_range
                if not lo <= value <= hi:
                    emit(var.name, IssueKind.OUT_OF_RANGE, raw,
                         f"{format_value(value)} is outside the {lo}-{hi} scale",
                         explanation + f" Scale range {lo}-{hi} inferred from the labels.")
                    continue
            emit(var.name, IssueKind.MISMATCHED_CODE, raw,
                 f"{format_value(value)} is not a valid code", explanation)

    def _present(self, row, name: str) -> Optional[bool]:
        """True/False for answered/empty, None when the column is absent."""
        column = self.column(name)
        if column is None:
            return None
        return not is_empty(row.get(column))

    def _check_routing(self, row, emit) -> None:
        for rule in self.rules:
            column = self.column(rule.condition_variable)
            if column is None:
                continue
            value = parse_numeric(row.get(column))
            if value is None:
                continue

            holds = condition_holds(rule.operator, rule.condition_values, value, rule.condition_ranges)
            provenance = f"Rule {rule.describe()}"
            if rule.source_text:
                provenance += f' from "{rule.source_text}"'
            cond = f"{self.display_name(rule.condition_variable)}={format_value(value)}"

            if holds and rule.terminates:
                answered = [t for t in rule.skip_targets if self._present(row, t)]
                if answered:
                    emit(self.display_name(rule.condition_variable), IssueKind.SKIP_VIOLATION, value,
                         f"Interview should have ended at {cond}; {len(answered)} later questions answered",
                         f"{provenance} terminates the interview. Answered after termination: "
                         f"{', '.join(self.display_name(t) for t in answered[:10])}.")
                continue

            if holds:
                for target in rule.targets:
                    if self._present(row, target) is False:
                        emit(self.display_name(target), IssueKind.MISSING_DATA, "",
                             f"Should be answered when {cond}",
                             f"{provenance} requires {self.display_name(target)} when the condition holds.")
                for target in rule.skip_targets:
                    if self._present(row, target):
                        name = self.display_name(target)
                        emit(name, IssueKind.SKIP_VIOLATION, row.get(self.column(target)),
                             f"Should be skipped when {cond}",
                             f"{provenance} skips {name} when the condition holds.")
                continue

            if rule.disjunctive:
                continue
            for target in rule.targets:
                if not self._present(row, target):
                    continue
                raw = row.get(self.column(target))
                number = parse_numeric(raw)
                if number is not None and self.config.is_refusal(number):
                    continue
                name = self.display_name(target)
                emit(name, IssueKind.SKIP_VIOLATION, raw,
                     f"Should not be asked when {cond}",
                     f"{provenance} asks {name} only when the condition holds.")

    def _check_open_text(self, row, emit) -> None:
        for var in self.open_text:
            raw = row.get(self.column(var.name))
            if is_empty(raw) or not isinstance(raw, str) or parse_numeric(raw) is not None:
                continue
            text = raw.strip()
            if is_filler(text):
                emit(var.name, IssueKind.OPEN_TEXT_ISSUE, raw,
                     "Repeated filler character",
                     f"Open-text answer to {var.name} is a single repeated character.")
                continue
            if len("".join(text.split())) < self.config.garbled_min_length:
                continue
            ratio = letter_run_ratio(text)
            if ratio < self.config.garbled_ratio_threshold:
                emit(var.name, IssueKind.DATA_QUALITY, raw,
                     f"Text looks garbled ({ratio:.0%} words)",
                     f"Only {ratio:.0%} of the open-text answer to {var.name} is made of words; "
                     f"threshold is {self.config.garbled_ratio_threshold:.0%}.")


# =====================================================================
# Structural warnings
# =====================================================================

def _structural_warnings(
    variables: List[EffectiveVariable],
    rules: List[RoutingRule],
    rows: Sequence[Mapping[str, Any]],
    columns: List[str],
    id_column: Optional[str],
    config: ValidationConfig,
) -> List[DatasetWarning]:
    out: List[DatasetWarning] = []
    column_keys = {name_key(c) for c in columns}
    has_dictionary = any(v.has_in_dictionary for v in variables)
    has_questionnaire = any(v.has_in_questionnaire for v in variables)

    # 1. Dictionary variables with codes that never reached the data
    if rows:
        missing = [v for v in variables if v.has_in_dictionary and v.effective_valid_codes
                   and name_key(v.name) not in column_keys]
        limit = config.max_listed_missing_columns
        for var in missing[:limit]:
            out.append(DatasetWarning(
                WarningKind.MISSING_COLUMN, var.name,
                f"{var.name} is not in the data",
                "The dictionary defines value labels for this variable but the data has no such column."))
        if len(missing) > limit:
            rest = missing[limit:]
            out.append(DatasetWarning(
                WarningKind.MISSING_COLUMN, "",
                f"{len(rest)} more dictionary variables are not in the data",
                "Not in the data: " + ", ".join(v.name for v in rest)))

    # 2. Cross-source coverage
    if has_dictionary:
        for var in variables:
            if var.has_in_questionnaire and not var.has_in_dictionary:
                out.append(DatasetWarning(
                    WarningKind.NOT_IN_DICTIONARY, var.name,
                    f"Question {var.name} has no dictionary variable",
                    f'Questionnaire question "{var.effective_label}" was not found in the dictionary.'))
    if has_questionnaire:
        for var in variables:
            if var.has_in_dictionary and not var.has_in_questionnaire and var.content_validated:
                out.append(DatasetWarning(
                    WarningKind.NOT_IN_QUESTIONNAIRE, var.name,
                    f"Variable {var.name} has no questionnaire question",
                    "The dictionary defines this variable but no question with this code was found."))

    # 3. Routing rules that reference unknown variables
    known = {name_key(v.name) for v in variables if v.has_in_dictionary or v.has_in_questionnaire}
    reported = set()
    for rule in rules:
        for name in (rule.condition_variable,) + rule.targets + rule.skip_targets:
            key = name_key(name)
            if key in known or key in reported:
                continue
            reported.add(key)
            out.append(DatasetWarning(
                WarningKind.UNKNOWN_ROUTING_VARIABLE, name,
                f"Routing refers to unknown variable {name}",
                f'Rule {rule.describe()} from "{rule.source_text}" names a variable '
                f"found in neither the dictionary nor the questionnaire."))

    # 4. Code lists that disagree between sources
    for var in variables:
        if var.is_binary_dummy or not var.content_validated:
            continue
        if not (var.dictionary_codes and var.questionnaire_codes):
            continue
        dict_codes = {c for c in var.dictionary_codes if not config.is_special(c)}
        quest_codes = {float(c) for c in var.questionnaire_codes if not config.is_special(c)}
        if dict_codes == quest_codes:
            continue
        only_dict = dict_codes - quest_codes
        only_quest = quest_codes - dict_codes
        parts = []
        if only_dict:
            parts.append(f"only in dictionary: {format_codes(only_dict)}")
        if only_quest:
            parts.append(f"only in questionnaire: {format_codes(only_quest)}")
        text = "; ".join(parts)
        out.append(DatasetWarning(
            WarningKind.CODE_LIST_MISMATCH, var.name,
            f"Code lists differ for {var.name}",
            text[0].upper() + text[1:] + "."))

    # 5. Respondent identifiers
    if rows:
        if id_column is None:
            out.append(DatasetWarning(
                WarningKind.MISSING_ID_COLUMN, "",
                "No respondent identifier column",
                "Looked for: " + ", ".join(config.id_columns) + ". Rows are reported by position."))
        else:
            counts = Counter(
                format_value(row.get(id_column)) for row in rows if not is_empty(row.get(id_column)))
            duplicates = [rid for rid, n in counts.items() if n > 1]
            if duplicates:
                listed = duplicates[:config.max_listed_duplicate_ids]
                more = len(duplicates) - len(listed)
                out.append(DatasetWarning(
                    WarningKind.DUPLICATE_ID, id_column,
                    f"{len(duplicates)} duplicate respondent IDs",
                    "Duplicated: " + ", ".join(listed) + (f" and {more} more" if more else "") + "."))

    return out


def validate(
    variables: List[EffectiveVariable],
    rules: List[RoutingRule],
    rows: Sequence[Mapping[str, Any]],
    config: Optional[ValidationConfig] = None,
    cancel_token=None,
) -> ValidationOutcome:
    """
    Validate rows against resolved metadata and routing rules.

    Args:
        variables: Output of resolve_variables()
        rules: Routing rules from the questionnaire
        rows: Ordered row mappings (column name -> value)
        config: ValidationConfig (defaults if None)
        cancel_token: Optional object with is_set(), checked between rows

    Returns:
        ValidationOutcome

    Raises:
        ValidationCancelled: If the cancel token is set during the run
    """
    config = config or ValidationConfig()
    rows = list(rows)
    columns = row_schema(rows)
    id_column = detect_id_column(columns, config)

    outcome = ValidationOutcome(id_column=id_column, row_count=len(rows))
    outcome.warnings = _structural_warnings(variables, rules, rows, columns, id_column, config)

    checker = _RowChecker(variables, rules, columns, config)
    for index, row in enumerate(rows):
        if cancel_token is not None and cancel_token.is_set():
            raise ValidationCancelled(f"Validation cancelled at row {index + 1}")
        outcome.issues.extend(checker.check_row(row, respondent_id(row, id_column, index)))

    logger.info("Validated %d rows: %d issues, %d warnings",
                len(rows), len(outcome.issues), len(outcome.warnings))
    return outcome


__all__ = [
    "ValidationCancelled",
    "ValidationOutcome",
    "condition_holds",
    "detect_id_column",
    "format_value",
    "is_empty",
    "letter_run_ratio",
    "parse_numeric",
    "validate",
]

"""
Column Summarizer.

Derives per-variable diagnostics from the validation output and the resolved
metadata. No validation logic lives here.
"""

import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from surveyaudit.config import ValidationConfig
from surveyaudit.model import ColumnSummary, EffectiveVariable, Issue, IssueKind, RoutingRule, ValueCount
from surveyaudit.resolver import name_key
from surveyaudit.validator import format_value, is_empty, parse_numeric, row_schema

logger = logging.getLogger(__name__)


def _label_for(var: EffectiveVariable, value: Any) -> str:
    number = parse_numeric(value)
    if number is None:
        return ""
    return var.code_label(number)


def summarize_columns(
    variables: List[EffectiveVariable],
    rules: List[RoutingRule],
    rows: Sequence[Mapping[str, Any]],
    issues: List[Issue],
    config: Optional[ValidationConfig] = None,
) -> List[ColumnSummary]:
    """
    Build one ColumnSummary per resolved variable, in resolver order.

    Value frequencies are ordered by descending count, then by first
    appearance, and cut to `config.top_values` entries.
    """
    config = config or ValidationConfig()
    columns = {name_key(c): c for c in reversed(row_schema(rows))}

    issues_by_var: Dict[str, List[Issue]] = defaultdict(list)
    for issue in issues:
        issues_by_var[name_key(issue.variable)].append(issue)

    gating: Dict[str, List[RoutingRule]] = defaultdict(list)
    triggered: Dict[str, List[RoutingRule]] = defaultdict(list)
    for rule in rules:
        triggered[name_key(rule.condition_variable)].append(rule)
        for target in dict.fromkeys(rule.targets + rule.skip_targets):
            gating[name_key(target)].append(rule)

    summaries = []
    for var in variables:
        key = name_key(var.name)
        column = columns.get(key)
        summary = ColumnSummary(
            name=var.name,
            label=var.effective_label,
            section=var.section,
            kind=var.kind,
            valid_codes=sorted(var.effective_valid_codes),
            value_labels=dict(var.value_labels),
            in_data=column is not None,
            has_in_dictionary=var.has_in_dictionary,
            has_in_questionnaire=var.has_in_questionnaire,
            content_validated=var.content_validated,
            is_open_text=var.is_open_text,
            gating_rules=list(gating.get(key, [])),
            triggered_rules=list(triggered.get(key, [])),
        )

        if column is not None:
            counts: Counter = Counter()
            for row in rows:
                value = row.get(column)
                if is_empty(value):
                    summary.n_empty += 1
                else:
                    summary.n_filled += 1
                    counts[format_value(value)] += 1
            # Counter.most_common keeps first-seen order among ties
            summary.top_values = [
                ValueCount(value, count, _label_for(var, value))
                for value, count in counts.most_common(config.top_values)
            ]

        var_issues = issues_by_var.get(key, [])
        summary.issue_count = len(var_issues)
        kinds: List[IssueKind] = []
        for issue in var_issues:
            if issue.kind not in kinds:
                kinds.append(issue.kind)
        summary.issue_kinds = kinds
        summaries.append(summary)

    logger.debug("Summarized %d columns", len(summaries))
    return summaries


__all__ = ["summarize_columns"]

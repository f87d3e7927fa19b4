"""
Serialization helpers for validation output and routing rules.

Issues and warnings export as delimited text for spreadsheet review. The full
result exports as a plain dict, JSON or YAML. Routing rules round-trip
through dict/YAML so an analyst can inspect (and hand-correct) what the
questionnaire analyzer recovered.
"""

import csv
import io
import json
from typing import Any, Dict, List, Optional

import yaml

from surveyaudit.conditions import Operator
from surveyaudit.model import (
    ColumnSummary,
    DatasetWarning,
    EffectiveVariable,
    Issue,
    RoutingRule,
)
from surveyaudit.pipeline import ValidationResult
from surveyaudit.validator import format_value

ISSUE_COLUMNS = ["Respondent ID", "Variable", "Issue Type", "Value", "Detail", "Explanation"]
WARNING_COLUMNS = ["Warning Type", "Variable", "Detail", "Explanation"]


def issues_to_csv(issues: List[Issue], delimiter: str = ",") -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(ISSUE_COLUMNS)
    for issue in issues:
        writer.writerow([issue.respondent_id, issue.variable, issue.kind.value,
                         issue.observed_value, issue.detail, issue.explanation])
    return buffer.getvalue()


def warnings_to_csv(warnings: List[DatasetWarning], delimiter: str = ",") -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(WARNING_COLUMNS)
    for warning in warnings:
        writer.writerow([warning.kind.value, warning.variable, warning.detail, warning.explanation])
    return buffer.getvalue()


def rule_to_dict(rule: RoutingRule) -> Dict[str, Any]:
    return {
        "condition_variable": rule.condition_variable,
        "operator": rule.operator.value,
        "condition_values": sorted(rule.condition_values),
        "condition_ranges": [list(r) for r in sorted(rule.condition_ranges)],
        "targets": list(rule.targets),
        "skip_targets": list(rule.skip_targets),
        "source_text": rule.source_text,
        "terminates": rule.terminates,
        "disjunctive": rule.disjunctive,
        "goto_destination": rule.goto_destination,
    }


def rule_from_dict(d: Dict[str, Any]) -> RoutingRule:
    return RoutingRule(
        condition_variable=d["condition_variable"],
        operator=Operator(d.get("operator", "=")),
        condition_values=frozenset(int(v) for v in d.get("condition_values", [])),
        targets=tuple(d.get("targets", [])),
        skip_targets=tuple(d.get("skip_targets", [])),
        source_text=d.get("source_text", ""),
        terminates=bool(d.get("terminates", False)),
        disjunctive=bool(d.get("disjunctive", False)),
        goto_destination=d.get("goto_destination"),
        condition_ranges=frozenset((int(lo), int(hi)) for lo, hi in d.get("condition_ranges", [])),
    )


def rules_to_yaml(rules: List[RoutingRule]) -> str:
    return yaml.safe_dump([rule_to_dict(r) for r in rules], allow_unicode=True, sort_keys=False)


def rules_from_yaml(s: str) -> List[RoutingRule]:
    data = yaml.safe_load(s) or []
    return [rule_from_dict(d) for d in data]


def _codes(codes) -> List[Any]:
    return [int(c) if float(c).is_integer() else c for c in sorted(codes)]


def _labels(labels: Dict[float, str]) -> Dict[str, str]:
    return {format_value(float(code)): label for code, label in sorted(labels.items())}


def variable_to_dict(v: EffectiveVariable) -> Dict[str, Any]:
    return {
        "name": v.name,
        "label": v.effective_label,
        "kind": v.kind.value,
        "section": v.section,
        "valid_codes": _codes(v.effective_valid_codes),
        "code_source": v.code_source.value,
        "scale_range": list(v.scale_range) if v.scale_range else None,
        "in_dictionary": v.has_in_dictionary,
        "in_questionnaire": v.has_in_questionnaire,
        "content_validated": v.content_validated,
        "open_text": v.is_open_text,
        "binary_dummy": v.is_binary_dummy,
    }


def issue_to_dict(i: Issue) -> Dict[str, Any]:
    return {
        "respondent_id": i.respondent_id,
        "variable": i.variable,
        "kind": i.kind.value,
        "value": i.observed_value,
        "detail": i.detail,
        "explanation": i.explanation,
    }


def warning_to_dict(w: DatasetWarning) -> Dict[str, Any]:
    return {"kind": w.kind.value, "variable": w.variable, "detail": w.detail, "explanation": w.explanation}


def summary_to_dict(s: ColumnSummary) -> Dict[str, Any]:
    return {
        "name": s.name,
        "label": s.label,
        "section": s.section,
        "in_data": s.in_data,
        "filled": s.n_filled,
        "empty": s.n_empty,
        "issue_count": s.issue_count,
        "issue_kinds": [k.value for k in s.issue_kinds],
        "top_values": [{"value": vc.value, "count": vc.count, "label": vc.label} for vc in s.top_values],
        "gating_rules": [r.describe() for r in s.gating_rules],
        "triggered_rules": [r.describe() for r in s.triggered_rules],
        "value_labels": _labels(s.value_labels),
    }


def result_to_dict(r: ValidationResult) -> Dict[str, Any]:
    header: Optional[Dict[str, Any]] = None
    h = r.dictionary.header
    if h.magic:
        header = {
            "product": h.product,
            "case_count": h.case_count,
            "compressed": h.compressed,
            "created": f"{h.creation_date} {h.creation_time}".strip(),
            "file_label": h.file_label,
        }
    return {
        "dictionary": {
            "variables": len(r.dictionary.variables),
            "degraded": r.dictionary.degraded,
            "header": header,
        },
        "questionnaire": {
            "questions": len(r.questionnaire.questions),
            "sections": list(r.questionnaire.sections),
            "routing_rules": [rule_to_dict(rule) for rule in r.questionnaire.routing_rules],
        },
        "rows": r.row_count,
        "id_column": r.id_column,
        "issue_counts": {k.value: n for k, n in r.issue_counts().items()},
        "variables": [variable_to_dict(v) for v in r.variables],
        "issues": [issue_to_dict(i) for i in r.issues],
        "warnings": [warning_to_dict(w) for w in r.warnings],
        "summaries": [summary_to_dict(s) for s in r.summaries],
    }


def result_to_json(r: ValidationResult) -> str:
    return json.dumps(result_to_dict(r), sort_keys=True, ensure_ascii=False, indent=2)


def result_to_yaml(r: ValidationResult) -> str:
    return yaml.safe_dump(result_to_dict(r), allow_unicode=True, sort_keys=False)

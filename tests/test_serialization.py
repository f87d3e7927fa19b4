"""
Tests for serialization of validation output and routing rules.

Routing rules must round-trip losslessly through YAML; issues and warnings
export with fixed column headers; a full result dumps to JSON.
"""

import csv
import io
import json

from surveyaudit.conditions import Operator
from surveyaudit.model import DatasetWarning, Issue, IssueKind, RoutingRule, WarningKind
from surveyaudit.pipeline import run_validation
from surveyaudit.serialization import (
    ISSUE_COLUMNS,
    WARNING_COLUMNS,
    issues_to_csv,
    result_to_dict,
    result_to_json,
    result_to_yaml,
    rule_from_dict,
    rule_to_dict,
    rules_from_yaml,
    rules_to_yaml,
    warnings_to_csv,
)


def build_sample_rules():
    return [
        RoutingRule("S4", Operator.EQ, frozenset({1}), targets=("S5",), source_text="IF S4=1 ASK S5"),
        RoutingRule("S4", Operator.EQ, frozenset({2}), skip_targets=("S5", "S6"),
                    source_text="2. No (go to S7)", goto_destination="S7"),
        RoutingRule("S1", Operator.LT, frozenset({18}), skip_targets=("S4",),
                    source_text="Возраст < 18: завершить", terminates=True),
        RoutingRule("Q1", Operator.GE, frozenset({3, 4}), targets=("Q3",), disjunctive=True),
        RoutingRule("Q3", Operator.EQ, frozenset({7}), targets=("Q4",), source_text="IF Q3 = 7, 10-50000 ASK Q4",
                    condition_ranges=frozenset({(10, 50000)})),
    ]


def test_rule_dict_roundtrip():
    for rule in build_sample_rules():
        assert rule_from_dict(rule_to_dict(rule)) == rule


def test_rules_yaml_roundtrip():
    rules = build_sample_rules()
    text = rules_to_yaml(rules)
    assert "Возраст" in text
    assert rules_from_yaml(text) == rules


def test_wide_range_written_as_span():
    data = rule_to_dict(build_sample_rules()[-1])
    assert data["condition_values"] == [7]
    assert data["condition_ranges"] == [[10, 50000]]


def test_rules_from_empty_yaml():
    assert rules_from_yaml("") == []


def test_rule_from_minimal_dict():
    rule = rule_from_dict({"condition_variable": "S4", "condition_values": [1], "targets": ["S5"]})
    assert rule.operator is Operator.EQ
    assert rule.targets == ("S5",)
    assert not rule.terminates


def test_issues_csv():
    issues = [Issue("101", "S5", IssueKind.MISSING_DATA, "", "Should be answered when S4=1",
                    'Rule S4=1 from "IF S4=1 ASK S5", requires S5')]
    rows = list(csv.reader(io.StringIO(issues_to_csv(issues))))
    assert rows[0] == ISSUE_COLUMNS
    assert rows[1] == ["101", "S5", "Missing Data", "", "Should be answered when S4=1",
                       'Rule S4=1 from "IF S4=1 ASK S5", requires S5']


def test_issues_csv_delimiter():
    text = issues_to_csv([], delimiter=";")
    assert text == ";".join(ISSUE_COLUMNS) + "\n"


def test_warnings_csv():
    warnings = [DatasetWarning(WarningKind.DUPLICATE_ID, "id", "1 duplicate respondent IDs", "Duplicated: 103.")]
    rows = list(csv.reader(io.StringIO(warnings_to_csv(warnings))))
    assert rows == [WARNING_COLUMNS, ["Duplicate Respondent ID", "id", "1 duplicate respondent IDs",
                                      "Duplicated: 103."]]


class TestResultExport:
    """A whole run dumped to dict/JSON/YAML."""

    def setup_method(self):
        self.result = run_validation(
            questionnaire_text="S4. Car?\n1. Yes\n2. No\nIF S4=1 ASK S5\nS5. Brand?",
            rows=[{"id": "1", "S4": 1, "S5": None}, {"id": "2", "S4": 2, "S5": "x"}],
        )

    def test_dict(self):
        d = result_to_dict(self.result)
        assert d["rows"] == 2
        assert d["id_column"] == "id"
        assert d["dictionary"]["header"] is None
        assert d["issue_counts"] == {"Missing Data": 1, "Skip/Routing Violation": 1}
        assert [v["name"] for v in d["variables"]] == ["S4", "S5", "id"]
        assert d["variables"][0]["valid_codes"] == [1, 2]
        assert d["questionnaire"]["routing_rules"][0]["targets"] == ["S5"]

    def test_json(self):
        data = json.loads(result_to_json(self.result))
        assert data == result_to_dict(self.result)

    def test_yaml(self):
        assert "Missing Data" in result_to_yaml(self.result)

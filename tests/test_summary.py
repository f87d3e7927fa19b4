"""
Tests for the column summarizer.
"""

from surveyaudit.conditions import Operator
from surveyaudit.config import ValidationConfig
from surveyaudit.model import EffectiveVariable, Issue, IssueKind, RoutingRule, ValueCount
from surveyaudit.summary import summarize_columns


S4 = EffectiveVariable("S4", "Do you own a car?", frozenset({1.0, 2.0}),
                       value_labels={1.0: "Yes", 2.0: "No"}, has_in_dictionary=True)
S5 = EffectiveVariable("S5", "Which brand?", has_in_questionnaire=True)
RULE = RoutingRule("S4", Operator.EQ, frozenset({1}), targets=("S5",), source_text="IF S4=1 ASK S5")

ROWS = [
    {"S4": 1, "S5": "Ford"},
    {"S4": 2, "S5": None},
    {"S4": 1, "S5": ""},
    {"S4": 1.0, "S5": "Ford"},
]


def test_counts_and_top_values():
    s4, s5 = summarize_columns([S4, S5], [RULE], ROWS, [])
    assert s4.n_filled == 4 and s4.n_empty == 0
    assert s4.top_values == [ValueCount("1", 3, "Yes"), ValueCount("2", 1, "No")]
    assert s5.n_filled == 2 and s5.n_empty == 2
    assert s5.top_values == [ValueCount("Ford", 2, "")]


def test_top_values_limit():
    rows = [{"S4": v} for v in (1, 2, 2, 3, 3, 3)]
    [s4] = summarize_columns([S4], [], rows, [], ValidationConfig(top_values=2))
    assert [v.value for v in s4.top_values] == ["3", "2"]


def test_rules_attached():
    s4, s5 = summarize_columns([S4, S5], [RULE], ROWS, [])
    assert s4.triggered_rules == [RULE] and s4.gating_rules == []
    assert s5.gating_rules == [RULE] and s5.triggered_rules == []


def test_issue_counts():
    issues = [
        Issue("3", "S5", IssueKind.MISSING_DATA, "", "", ""),
        Issue("4", "S5", IssueKind.SKIP_VIOLATION, "Ford", "", ""),
        Issue("5", "S5", IssueKind.MISSING_DATA, "", "", ""),
    ]
    _, s5 = summarize_columns([S4, S5], [RULE], ROWS, issues)
    assert s5.issue_count == 3
    assert s5.issue_kinds == [IssueKind.MISSING_DATA, IssueKind.SKIP_VIOLATION]


def test_variable_not_in_data():
    [s4] = summarize_columns([S4], [], [{"other": 1}], [])
    assert not s4.in_data
    assert s4.n_filled == 0 and s4.top_values == []
    assert s4.valid_codes == [1.0, 2.0]
    assert s4.has_in_dictionary and not s4.has_in_questionnaire

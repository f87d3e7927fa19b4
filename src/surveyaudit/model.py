"""
Core Survey Audit Model Objects

Defines the data structures shared by all stages:
    - Variables and the Dictionary (decoded from the SPSS system file)
    - Questions and the QuestionnaireModel (recovered from questionnaire text)
    - RoutingRules (skip/filter logic)
    - EffectiveVariables (merged, validation-time metadata)
    - Issues and DatasetWarnings (validation output)
    - ColumnSummaries (reporting output)

ARCHITECTURAL RULE:
    These objects:
        - Carry data, not behavior
        - Are owned by the validation run that produced them
        - Are immutable once a stage hands them on (frozen where possible)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from surveyaudit.conditions import Operator, describe_values


# IEEE-754 largest double, used by the system file as "system missing".
SYSMIS = 1.7976931348623157e308


class VariableKind(Enum):
    """Storage kind of a dictionary variable."""

    NUMERIC = "numeric"
    STRING = "string"
    UNKNOWN = "unknown"


@dataclass
class Variable:
    """
    A variable decoded from the dictionary.

    Properties:
        name: Identifier (at most 8 raw bytes in the file, trimmed)
        label: Variable label (question text), may be empty
        kind: NUMERIC or STRING
        width: Byte width for STRING variables, 0 for NUMERIC
        value_labels: code -> label
        declared_missing: Discrete declared missing values
        missing_range: Declared missing range (lo, hi), if any
        valid_codes: Sorted value-label codes minus SYSMIS and missing values
    """

    name: str
    label: str = ""
    kind: VariableKind = VariableKind.NUMERIC
    width: int = 0
    value_labels: Dict[float, str] = field(default_factory=dict)
    declared_missing: Set[float] = field(default_factory=set)
    missing_range: Optional[Tuple[float, float]] = None
    valid_codes: List[float] = field(default_factory=list)

    @property
    def is_string(self) -> bool:
        return self.kind is VariableKind.STRING

    def is_declared_missing(self, value: float) -> bool:
        if value in self.declared_missing:
            return True
        if self.missing_range is not None:
            lo, hi = self.missing_range
            return lo <= value <= hi
        return False


@dataclass
class DictionaryHeader:
    """Fixed 176-byte file header of a system file."""

    magic: str = ""
    product: str = ""
    layout_code: int = 0
    case_count: int = -1
    compressed: bool = False
    creation_date: str = ""
    creation_time: str = ""
    file_label: str = ""


@dataclass
class Dictionary:
    """
    Decoded dictionary.

    Properties:
        variables: Named variables in file order
        slots: Arena indexed by slot; None marks a continuation slot
        header: Decoded file header (empty when the fallback scan was used)
        degraded: True when the permissive fallback scan produced the result
    """

    variables: List[Variable] = field(default_factory=list)
    slots: List[Optional[Variable]] = field(default_factory=list)
    header: DictionaryHeader = field(default_factory=DictionaryHeader)
    degraded: bool = False

    def get_variable(self, name: str) -> Optional[Variable]:
        """
        Retrieve a variable by name.

        Args:
            name: Variable name (exact match)

        Returns:
            Variable or None if not found
        """
        for var in self.variables:
            if var.name == name:
                return var
        return None

    @property
    def names(self) -> List[str]:
        return [v.name for v in self.variables]


@dataclass
class Question:
    """
    A question recovered from questionnaire text.

    Created on the first recognized question line; later answer-option and
    scale-hint lines add codes until another question or a section starts.
    """

    code: str
    label: str = ""
    section: str = ""
    valid_codes: Set[int] = field(default_factory=set)
    code_labels: Dict[int, str] = field(default_factory=dict)
    scale_range: Optional[Tuple[int, int]] = None

    def add_code(self, code: int, label: str) -> None:
        self.valid_codes.add(code)
        self.code_labels.setdefault(code, label)

    def add_scale(self, lo: int, hi: int) -> None:
        self.valid_codes.update(range(lo, hi + 1))
        if self.scale_range is None:
            self.scale_range = (lo, hi)
        else:
            self.scale_range = (min(lo, self.scale_range[0]), max(hi, self.scale_range[1]))


@dataclass(frozen=True)
class RoutingRule:
    """
    A skip/filter rule.

    When the condition holds, every target must be answered and every skip
    target must be empty. When it does not hold, targets must be empty.

    Properties:
        condition_variable: Variable the condition tests
        operator: Comparison operator
        condition_values: Values compared against
        targets: Variables that must be present when the condition holds
        skip_targets: Variables that must be empty when the condition holds
        source_text: Questionnaire text the rule was parsed from
        terminates: Condition ends the interview
        disjunctive: Rule is one alternative of an OR; the not-held branch
            says nothing about the targets
        goto_destination: Question jumped to, if the rule is a GO TO
        condition_ranges: Inclusive (lo, hi) spans compared against besides
            condition_values
    """

    condition_variable: str
    operator: Operator
    condition_values: FrozenSet[int]
    targets: Tuple[str, ...] = ()
    skip_targets: Tuple[str, ...] = ()
    source_text: str = ""
    terminates: bool = False
    disjunctive: bool = False
    goto_destination: Optional[str] = None
    condition_ranges: FrozenSet[Tuple[int, int]] = frozenset()

    def describe(self) -> str:
        vals = describe_values(self.condition_values, self.condition_ranges)
        return f"{self.condition_variable}{self.operator.value}{vals}"

    def mentions(self, name: str) -> bool:
        return name in self.targets or name in self.skip_targets


@dataclass
class QuestionnaireModel:
    """Everything recovered from one questionnaire text."""

    questions: List[Question] = field(default_factory=list)
    routing_rules: List[RoutingRule] = field(default_factory=list)
    sections: List[str] = field(default_factory=list)

    def get_question(self, code: str) -> Optional[Question]:
        for question in self.questions:
            if question.code == code:
                return question
        return None

    @property
    def codes(self) -> List[str]:
        return [q.code for q in self.questions]


class CodeSource(Enum):
    """Where a variable's effective valid codes came from."""

    DICTIONARY = "dictionary"
    QUESTIONNAIRE = "questionnaire"
    SCALE = "scale"
    NONE = "none"


@dataclass(frozen=True)
class EffectiveVariable:
    """
    Validation-time view of one variable, merged from both metadata sources.

    Properties:
        name: Name used in reports (dictionary spelling wins)
        effective_label: Dictionary label, else question label, else name
        effective_valid_codes: Codes accepted for the variable (empty = unknown)
        value_labels: Code labels, dictionary first, questionnaire filling gaps
        content_validated: False for open-text and administrative variables
        is_open_text: Free-text answers (string type or open-text naming)
        is_binary_dummy: Codes are exactly {0, 1}
        scale_range: Inferred scale (lo, hi), if any
        code_source: Source of effective_valid_codes
        dictionary_codes / questionnaire_codes: Per-source code sets
    """

    name: str
    effective_label: str
    effective_valid_codes: FrozenSet[float] = frozenset()
    value_labels: Dict[float, str] = field(default_factory=dict, hash=False, compare=False)
    kind: VariableKind = VariableKind.UNKNOWN
    declared_missing: FrozenSet[float] = frozenset()
    missing_range: Optional[Tuple[float, float]] = None
    section: str = ""
    has_in_dictionary: bool = False
    has_in_questionnaire: bool = False
    content_validated: bool = True
    is_open_text: bool = False
    is_binary_dummy: bool = False
    scale_range: Optional[Tuple[int, int]] = None
    code_source: CodeSource = CodeSource.NONE
    dictionary_codes: FrozenSet[float] = frozenset()
    questionnaire_codes: FrozenSet[int] = frozenset()

    def is_declared_missing(self, value: float) -> bool:
        if value in self.declared_missing:
            return True
        if self.missing_range is not None:
            lo, hi = self.missing_range
            return lo <= value <= hi
        return False

    def code_label(self, code: float) -> str:
        return self.value_labels.get(code, "")


class IssueKind(Enum):
    """Row-level issue categories. Values are the report labels."""

    SKIP_VIOLATION = "Skip/Routing Violation"
    OUT_OF_RANGE = "Out of Range"
    MISMATCHED_CODE = "Mismatched Code"
    MISSING_DATA = "Missing Data"
    DATA_QUALITY = "Data Quality"
    OPEN_TEXT_ISSUE = "Open Text Issue"


class WarningKind(Enum):
    """Row-independent, structural warning categories."""

    MISSING_COLUMN = "Missing Column"
    NOT_IN_DICTIONARY = "Not In Dictionary"
    NOT_IN_QUESTIONNAIRE = "Not In Questionnaire"
    UNKNOWN_ROUTING_VARIABLE = "Unknown Routing Variable"
    CODE_LIST_MISMATCH = "Code List Mismatch"
    MISSING_ID_COLUMN = "Missing Identifier Column"
    DUPLICATE_ID = "Duplicate Respondent ID"


@dataclass(frozen=True)
class Issue:
    """One defect found in one respondent's row."""

    respondent_id: str
    variable: str
    kind: IssueKind
    observed_value: Any
    detail: str
    explanation: str


@dataclass(frozen=True)
class DatasetWarning:
    """A structural defect independent of any single row."""

    kind: WarningKind
    variable: str
    detail: str
    explanation: str


@dataclass(frozen=True)
class ValueCount:
    """One entry of a value-frequency distribution."""

    value: str
    count: int
    label: str = ""


@dataclass
class ColumnSummary:
    """Per-variable diagnostics for reporting."""

    name: str
    label: str
    section: str = ""
    kind: VariableKind = VariableKind.UNKNOWN
    valid_codes: List[float] = field(default_factory=list)
    value_labels: Dict[float, str] = field(default_factory=dict)
    in_data: bool = False
    n_filled: int = 0
    n_empty: int = 0
    issue_count: int = 0
    issue_kinds: List[IssueKind] = field(default_factory=list)
    top_values: List[ValueCount] = field(default_factory=list)
    gating_rules: List[RoutingRule] = field(default_factory=list)
    triggered_rules: List[RoutingRule] = field(default_factory=list)
    has_in_dictionary: bool = False
    has_in_questionnaire: bool = False
    content_validated: bool = True
    is_open_text: bool = False

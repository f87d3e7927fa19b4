"""
Questionnaire Analyzer (plain text -> QuestionnaireModel).

The text is processed line by line. Each line is classified by an ordered,
closed set of line kinds; the first kind that matches wins:

    1. SECTION_HEADER  resets the current question, names the section
    2. INSTRUCTION     interviewer/read-aloud directives (scale hints only)
    3. ROUTING         standalone routing statements
    4. ANSWER_OPTION   "1. Yes" under the current question
    5. QUESTION        "S4. Which ..." opens (or re-opens) a question
    6. CONTINUATION    anything else (scale hints only)

Classification is a pure function of the line. The analyzer then applies the
classified lines to its state (current question, current section, pending
filters) and, once the whole text has been read, resolves routing directives
that depend on question order (GO TO jumps, terminations, target spans).
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from surveyaudit.conditions import Clause, Operator
from surveyaudit.model import Question, QuestionnaireModel, RoutingRule
from surveyaudit.routing import Action, RoutingDirective, parse_routing_line, strip_inline_annotations
from surveyaudit.scales import has_scale_word, infer_scale

logger = logging.getLogger(__name__)


class LineKind(Enum):
    """Closed set of line classifications, in priority order."""

    BLANK = "blank"
    SECTION_HEADER = "section_header"
    INSTRUCTION = "instruction"
    ROUTING = "routing"
    ANSWER_OPTION = "answer_option"
    QUESTION = "question"
    CONTINUATION = "continuation"


@dataclass(frozen=True)
class ClassifiedLine:
    """
    Result of classifying one line.

    Properties:
        kind: LineKind
        text: The stripped line
        code: Question code (QUESTION) or option code as text (ANSWER_OPTION)
        label: Question text or option label with routing annotations removed
        directives: Routing directives found on the line
        scale: Scale hint (lo, hi) found on the line, if any
    """

    kind: LineKind
    text: str
    code: Optional[str] = None
    label: str = ""
    directives: Tuple[RoutingDirective, ...] = ()
    scale: Optional[Tuple[int, int]] = None


DEFAULT_SECTION = "General"

SECTION_KEYWORDS = (
    "SECTION", "BLOCK", "MODULE", "PART", "SCREENING", "SCREENER", "DEMOGRAPHICS",
    "DEMOGRAPHIC", "РАЗДЕЛ", "БЛОК", "МОДУЛЬ", "ЧАСТЬ", "СКРИНИНГ", "ДЕМОГРАФИЯ",
    "ԲԱԺԻՆ", "ՄԱՍ", "ԲԼՈԿ", "ՄՈԴՈՒԼ",
)

INSTRUCTION_PHRASES = (
    "READ OUT", "READ ALOUD", "DO NOT READ", "DON'T READ", "INTERVIEWER", "INT:",
    "INSTRUCTION", "NOTE:", "SHOW CARD", "SHOWCARD", "HAND CARD", "SINGLE CODE",
    "SINGLE ANSWER", "SINGLE RESPONSE", "MULTIPLE CODE", "MULTIPLE ANSWER",
    "MULTIPLE RESPONSE", "MULTI CODE", "ONE ANSWER", "PROBE", "CODE ALL",
    "SELECT ALL", "ROTATE", "RANDOMIZE", "RANDOMISE", "PROGRAMMER", "SCRIPTER",
    "ЗАЧИТАТЬ", "ЗАЧИТАЙТЕ", "НЕ ЗАЧИТЫВАТЬ", "ИНТЕРВЬЮЕР", "ИНСТРУКЦИЯ",
    "ПОКАЗАТЬ КАРТОЧКУ", "ОДИН ОТВЕТ", "НЕСКОЛЬКО ОТВЕТОВ", "ПРИМЕЧАНИЕ",
    "ԿԱՐԴԱԼ", "ՉԿԱՐԴԱԼ", "ՀԱՐՑԱԶՐՈՂ", "ՑՈՒՅՑ ՏԱԼ", "ՄԵԿ ՊԱՏԱՍԽԱՆ",
    "ՄԻ ՔԱՆԻ ՊԱՏԱՍԽԱՆ", "ՆՇՈՒՄ",
)

# Alphabetic stems that make "CARD1", "PAGE2", "STEP3" look like codes.
REJECTED_CODE_STEMS = frozenset({
    "NOTE", "INTERVIEWER", "INT", "READ", "ASK", "SHOW", "CODE", "CARD", "BASE",
    "FILTER", "SECTION", "PART", "BLOCK", "MODULE", "TOTAL", "TABLE", "PAGE",
    "FIGURE", "FIG", "VERSION", "VER", "WAVE", "STEP", "ROUND", "OPTION", "ITEM",
    "SHOWCARD", "IF", "GO", "TO", "END", "YEAR",
})

_KEYWORD_ALT = "|".join(SECTION_KEYWORDS)
_SECTION_START_RE = re.compile(
    rf"^(?:{_KEYWORD_ALT})(?!\w)\s*[\w]{{0,4}}\s*(?:[.:)\-–—]|$)", re.IGNORECASE)
_SECTION_WORD_RE = re.compile(rf"(?<!\w)(?:{_KEYWORD_ALT})(?!\w)", re.IGNORECASE)

_INSTRUCTION_RE = re.compile(
    r"^[\s\[\(\*]*(?:" + "|".join(re.escape(p) for p in INSTRUCTION_PHRASES) + r")[\s:.\-–—]*",
    re.IGNORECASE)

_ANSWER_OPTION_RE = re.compile(r"^(\d{1,5})\s*(?:[.=)\-–—:]\s*|\s+)(.*[^\W\d_].*)$")

# "1-10 scale, where 1 ..." opens with a range rather than an option code
_LEADING_RANGE_RE = re.compile(r"^\d{1,3}\s*(?:[-–—]|\.\.)\s*\d{1,3}(?!\d)")

_QUESTION_RE = re.compile(
    r"^(?P<code>[A-Za-z\u0400-\u04FF\u0531-\u058F][\w]*?\d[\w]*(?:\.\d+[A-Za-z]?)?)"
    r"(?:\s*[.:)\-–—]\s*|\s+)(?P<text>.*)$")

MAX_CODE_LENGTH = 12
MAX_OPTION_CODE = 99999
MAX_LABEL_LENGTH = 300
MAX_SECTION_LENGTH = 80

Widths = Tuple[int, int]


def _question_match(line: str):
    """The _QUESTION_RE match when its code is acceptable, else None."""
    m = _QUESTION_RE.match(line)
    if m is None:
        return None
    code = m.group("code")
    if len(code) > MAX_CODE_LENGTH:
        return None
    stem = re.sub(r"[\d_.]+[A-Za-z]?$", "", code).upper()
    if stem in REJECTED_CODE_STEMS:
        return None
    return m


def _match_section(line: str, widths: Widths) -> Optional[ClassifiedLine]:
    if len(line) > 100:
        return None
    if _SECTION_START_RE.match(line):
        return ClassifiedLine(LineKind.SECTION_HEADER, line, label=line[:MAX_SECTION_LENGTH])
    # an all-caps question ("Q1. WHICH PART OF ...") stays a question
    if _question_match(line) is not None:
        return None
    letters = [c for c in line if c.isalpha()]
    if letters and not any(c.islower() for c in letters) and _SECTION_WORD_RE.search(line):
        return ClassifiedLine(LineKind.SECTION_HEADER, line, label=line[:MAX_SECTION_LENGTH])
    return None


def _match_instruction(line: str, widths: Widths) -> Optional[ClassifiedLine]:
    m = _INSTRUCTION_RE.match(line)
    if m is None:
        return None
    # "INTERVIEWER: ASK IF S4=1" carries a routing statement after the prefix
    if parse_routing_line(line[m.end():]) is not None:
        return None
    return ClassifiedLine(LineKind.INSTRUCTION, line, scale=infer_scale(line, *widths))


def _match_routing(line: str, widths: Widths) -> Optional[ClassifiedLine]:
    directive = parse_routing_line(line)
    if directive is None:
        m = _INSTRUCTION_RE.match(line)
        if m is not None:
            directive = parse_routing_line(line[m.end():])
            if directive is not None:
                directive.source_text = line[:200]
    if directive is None:
        return None
    return ClassifiedLine(LineKind.ROUTING, line, directives=(directive,))


def _match_answer_option(line: str, widths: Widths) -> Optional[ClassifiedLine]:
    m = _ANSWER_OPTION_RE.match(line)
    if m is None:
        return None
    if (_LEADING_RANGE_RE.match(line) and has_scale_word(line)
            and infer_scale(line, *widths) is not None):
        return None
    code = int(m.group(1))
    if code > MAX_OPTION_CODE:
        return None
    label, directives = strip_inline_annotations(m.group(2))
    if not label:
        return None
    return ClassifiedLine(LineKind.ANSWER_OPTION, line, code=str(code),
                          label=label, directives=tuple(directives))


def _match_question(line: str, widths: Widths) -> Optional[ClassifiedLine]:
    m = _question_match(line)
    if m is None:
        return None
    label, directives = strip_inline_annotations(m.group("text"))
    return ClassifiedLine(LineKind.QUESTION, line, code=m.group("code"), label=label[:MAX_LABEL_LENGTH],
                          directives=tuple(directives), scale=infer_scale(label, *widths))


_CLASSIFIERS = (
    _match_section,
    _match_instruction,
    _match_routing,
    _match_answer_option,
    _match_question,
)


def classify_line(line: str, min_width: int = 2, max_width: int = 20) -> ClassifiedLine:
    """
    Classify one line; first matching kind wins.

    `min_width` / `max_width` bound the scale hints read from the line.
    """
    text = line.strip()
    if not text:
        return ClassifiedLine(LineKind.BLANK, text)
    widths = (min_width, max_width)
    for classifier in _CLASSIFIERS:
        result = classifier(text, widths)
        if result is not None:
            return result
    return ClassifiedLine(LineKind.CONTINUATION, text, scale=infer_scale(text, *widths))


@dataclass
class _RuleDraft:
    """A routing rule whose targets may depend on question order."""

    clause: Clause
    action: Action
    targets: List[str] = field(default_factory=list)
    target_ranges: List[Tuple[str, str]] = field(default_factory=list)
    source_text: str = ""
    origin: Optional[str] = None


class QuestionnaireAnalyzer:
    """
    Stateful line processor behind analyze_questionnaire().

    One instance analyzes one text; use analyze_questionnaire() instead of
    driving it directly.
    """

    def __init__(self, scale_min_width: int = 2, scale_max_width: int = 20):
        self.scale_min_width = scale_min_width
        self.scale_max_width = scale_max_width
        self.questions: Dict[str, Question] = {}
        self.current: Optional[Question] = None
        self.section = DEFAULT_SECTION
        self.sections: List[str] = []
        self.drafts: List[_RuleDraft] = []
        self.pending_filters: List[_RuleDraft] = []

    # ------------------------------------------------------------------
    # Line handlers
    # ------------------------------------------------------------------

    def feed(self, line: str) -> LineKind:
        classified = classify_line(line, self.scale_min_width, self.scale_max_width)
        handler = getattr(self, f"_on_{classified.kind.value}")
        handler(classified)
        return classified.kind

    def _on_blank(self, line: ClassifiedLine) -> None:
        pass

    def _on_section_header(self, line: ClassifiedLine) -> None:
        self.section = line.label
        if line.label not in self.sections:
            self.sections.append(line.label)
        self.current = None

    def _on_instruction(self, line: ClassifiedLine) -> None:
        self._apply_scale(line.scale)

    def _on_continuation(self, line: ClassifiedLine) -> None:
        self._apply_scale(line.scale)

    def _on_routing(self, line: ClassifiedLine) -> None:
        origin = self.current.code if self.current else None
        for directive in line.directives:
            self._add_directive(directive, origin)

    def _on_answer_option(self, line: ClassifiedLine) -> None:
        if self.current is None:
            logger.debug("Answer option outside a question ignored: %s", line.text)
            return
        code = int(line.code)
        self.current.add_code(code, line.label)
        for directive in line.directives:
            if not directive.clauses:
                clause = Clause(self.current.code, Operator.EQ, frozenset({code}))
                directive = RoutingDirective([clause], directive.action, directive.targets,
                                             directive.target_ranges, directive.source_text)
            self._add_directive(directive, self.current.code)

    def _on_question(self, line: ClassifiedLine) -> None:
        question = self.questions.get(line.code)
        if question is None:
            question = Question(code=line.code, label=line.label, section=self.section)
            self.questions[line.code] = question
        elif not question.label and line.label:
            question.label = line.label
        self.current = question

        for draft in self.pending_filters:
            draft.targets.append(question.code)
            self.drafts.append(draft)
        self.pending_filters = []

        for directive in line.directives:
            if not directive.clauses:
                continue
            if directive.action is Action.FILTER:
                for clause in directive.clauses:
                    self.drafts.append(_RuleDraft(clause, Action.ASK, [question.code],
                                                  source_text=directive.source_text,
                                                  origin=question.code))
            else:
                self._add_directive(directive, question.code)

        self._apply_scale(line.scale)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_scale(self, scale: Optional[Tuple[int, int]]) -> None:
        if scale is None or self.current is None:
            return
        lo, hi = scale
        if not self.scale_min_width <= hi - lo + 1 <= self.scale_max_width:
            return
        self.current.add_scale(lo, hi)

    def _add_directive(self, directive: RoutingDirective, origin: Optional[str]) -> None:
        for clause in directive.clauses:
            draft = _RuleDraft(
                clause=clause,
                action=Action.ASK if directive.action is Action.FILTER else directive.action,
                targets=list(directive.targets),
                target_ranges=list(directive.target_ranges),
                source_text=directive.source_text,
                origin=origin,
            )
            if directive.action is Action.FILTER:
                self.pending_filters.append(draft)
            else:
                self.drafts.append(draft)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finish(self) -> QuestionnaireModel:
        if self.pending_filters:
            if self.current is not None:
                for draft in self.pending_filters:
                    draft.targets.append(self.current.code)
                    self.drafts.append(draft)
            else:
                logger.debug("Dropping %d filters with no question to gate", len(self.pending_filters))
            self.pending_filters = []

        order = list(self.questions)
        position = {code: i for i, code in enumerate(order)}
        position_upper = {code.upper(): i for i, code in reversed(list(enumerate(order)))}

        def index_of(name: Optional[str]) -> Optional[int]:
            if name is None:
                return None
            if name in position:
                return position[name]
            return position_upper.get(name.upper())

        def expand(ranges: List[Tuple[str, str]]) -> List[str]:
            out: List[str] = []
            for start, end in ranges:
                i, j = index_of(start), index_of(end)
                if i is not None and j is not None and i <= j:
                    out.extend(order[i:j + 1])
                else:
                    out.extend([start, end])
            return out

        rules: List[RoutingRule] = []
        for draft in self.drafts:
            clause = draft.clause
            named = draft.targets + expand(draft.target_ranges)
            targets: List[str] = []
            skip_targets: List[str] = []
            goto_destination = None
            terminates = False
            source_index = index_of(clause.variable)
            if source_index is None:
                source_index = index_of(draft.origin)

            if draft.action is Action.ASK:
                targets = named
            elif draft.action is Action.SKIP:
                skip_targets = named
            elif draft.action is Action.GOTO:
                goto_destination = named[0] if named else None
                dest_index = index_of(goto_destination)
                if source_index is not None and dest_index is not None and dest_index > source_index:
                    skip_targets = order[source_index + 1:dest_index]
            elif draft.action is Action.TERMINATE:
                terminates = True
                if source_index is not None:
                    skip_targets = order[source_index + 1:]

            rules.append(RoutingRule(
                condition_variable=clause.variable,
                operator=clause.operator,
                condition_values=clause.values,
                targets=_unique(targets, exclude=clause.variable),
                skip_targets=_unique(skip_targets, exclude=clause.variable),
                source_text=draft.source_text,
                terminates=terminates,
                disjunctive=clause.disjunctive,
                goto_destination=goto_destination,
                condition_ranges=clause.ranges,
            ))

        return QuestionnaireModel(
            questions=list(self.questions.values()),
            routing_rules=rules,
            sections=list(self.sections),
        )


def _unique(names: List[str], exclude: str) -> Tuple[str, ...]:
    out: List[str] = []
    for name in names:
        if name != exclude and name not in out:
            out.append(name)
    return tuple(out)


def analyze_questionnaire(text: str, scale_min_width: int = 2,
                          scale_max_width: int = 20) -> QuestionnaireModel:
    """
    Recover questions, answer codes and routing rules from questionnaire text.

    Args:
        text: Plain text extracted from the questionnaire document
        scale_min_width / scale_max_width: Accepted inferred scale widths

    Returns:
        QuestionnaireModel (empty if nothing was recognized; never raises on
        unrecognized text)
    """
    analyzer = QuestionnaireAnalyzer(scale_min_width, scale_max_width)
    counts: Dict[LineKind, int] = {}
    for line in (text or "").splitlines():
        kind = analyzer.feed(line)
        counts[kind] = counts.get(kind, 0) + 1

    model = analyzer.finish()
    logger.info("Questionnaire: %d questions, %d routing rules, %d sections",
                len(model.questions), len(model.routing_rules), len(model.sections))
    logger.debug("Line kinds: %s", {k.value: v for k, v in counts.items()})
    return model


__all__ = [
    "LineKind",
    "ClassifiedLine",
    "QuestionnaireAnalyzer",
    "analyze_questionnaire",
    "classify_line",
]

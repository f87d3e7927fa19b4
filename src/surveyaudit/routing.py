"""
Routing grammar for questionnaire text (text -> directives).

Understands the routing phrasings found in English, Russian and Armenian
questionnaires:

    ASK IF S4=1                      filter for the next question
    ASK S5, S6 IF S4=1-3             explicit targets
    IF S4 = 1 or 2 ASK S5            explicit targets
    IF S4≠1 GO TO S7                 jump (skipped questions resolved later)
    SKIP S5 IF S4=2                  skip targets
    TERMINATE IF S1=3 / END IF ...   end of interview
    Control: S4=1-4                  filter marker
    S4=1 → S5                        arrow form

Condition grammar:

    condition  := conjunct (AND conjunct)*
    conjunct   := clause (OR clause)*
    clause     := VARIABLE OPERATOR value-list
    value-list := item ((',' | ';' | '/' | OR) item)*
    item       := NUMBER ((- | TO) NUMBER)?

``or`` between values is a comma: "S4=98 or 999" and "S4=1-4 or 7" both
yield explicit value sets. ``or`` followed by a new ``VARIABLE OPERATOR``
starts an alternative clause (marked disjunctive).

ARCHITECTURAL RULE:
    This module turns text into directives. It does not know about the
    current question or about question order; the analyzer resolves those.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from surveyaudit.conditions import Clause, Operator, operator_from_text

logger = logging.getLogger(__name__)


class RoutingParseError(Exception):
    """Raised when a condition cannot be parsed."""
    pass


class Action(Enum):
    """What a routing directive asks for when its condition holds."""

    ASK = "ask"              # targets must be answered
    SKIP = "skip"            # targets must be empty
    GOTO = "goto"            # jump to a question; the ones in between are skipped
    TERMINATE = "terminate"  # interview ends
    FILTER = "filter"        # gates the question it belongs to


# Keyword alternations (matched case-insensitively, as whole words).
_IF = r"(?:IF|WHEN|ЕСЛИ|ԵԹԵ)"
_ASK = r"(?:ASK|SHOW|DISPLAY|ЗАДАТЬ|ЗАДАВАТЬ|СПРОСИТЬ|СПРАШИВАТЬ|ՀԱՐՑՆԵԼ|ՏԱԼ)"
_GOTO = (r"(?:GO\s*TO|SKIP\s+TO|JUMP\s+TO|MOVE\s+TO|CONTINUE\s+(?:WITH|TO|AT)|"
         r"ПЕРЕЙТИ\s+(?:К|НА)|ПЕРЕХОД\s+(?:К|НА)|ԱՆՑՆԵԼ|ԱՆՑՈՒՄ)")
_SKIP = r"(?:SKIP|ПРОПУСТИТЬ|ԲԱՑԹՈՂՆԵԼ)"
_TERMINATE = (r"(?:TERMINATE|(?:END|CLOSE|STOP)(?:\s+(?:THE\s+)?INTERVIEW)?|"
              r"(?:ЗАВЕРШИТЬ|ЗАКОНЧИТЬ|ПРЕКРАТИТЬ)(?:\s+ИНТЕРВЬЮ)?|ԱՎԱՐՏԵԼ\w*)")
_FILTER = r"(?:CONTROL|FILTER|BASE|ФИЛЬТР|ՖԻԼՏՐ)"
_ARROW = r"(?:→|➔|➜|⇒|->)"


def _word(pattern: str) -> str:
    return rf"(?<!\w){pattern}(?!\w)"


_FLAGS = re.IGNORECASE | re.UNICODE

_ASK_IF_RE = re.compile(rf"^{_word(_ASK)}\s*,?\s+(?:ONLY\s+)?{_word(_IF)}\s+(?P<rest>.+)$", _FLAGS)
_ASK_TARGETS_IF_RE = re.compile(
    rf"^{_word(_ASK)}\s+(?P<targets>.+?)\s+(?:ONLY\s+)?{_word(_IF)}\s+(?P<cond>.+)$", _FLAGS)
_IF_RE = re.compile(rf"^{_word(_IF)}\s+(?P<rest>.+)$", _FLAGS)
_GOTO_IF_RE = re.compile(rf"^{_word(_GOTO)}\s+(?P<dest>\S+)\s+{_word(_IF)}\s+(?P<cond>.+)$", _FLAGS)
_SKIP_IF_RE = re.compile(rf"^{_word(_SKIP)}\s+(?P<targets>.+?)\s+{_word(_IF)}\s+(?P<cond>.+)$", _FLAGS)
_TERMINATE_IF_RE = re.compile(rf"^{_word(_TERMINATE)}\s+{_word(_IF)}\s+(?P<cond>.+)$", _FLAGS)
_FILTER_RE = re.compile(rf"^{_word(_FILTER)}\s*[:\-–]\s*(?P<cond>.+)$", _FLAGS)
_ARROW_RE = re.compile(rf"^(?P<cond>[^→➔➜⇒]+?)\s*{_ARROW}\s*(?P<targets>.+)$", _FLAGS)

# First action keyword inside "IF <cond> <action> <rest>"
_ACTION_RE = re.compile(
    rf"{_word(_GOTO)}|{_word(_TERMINATE)}|{_word(_ASK)}|{_word(_SKIP)}", _FLAGS)
_GOTO_ONLY_RE = re.compile(_word(_GOTO), _FLAGS)
_TERMINATE_ONLY_RE = re.compile(_word(_TERMINATE), _FLAGS)
_ASK_ONLY_RE = re.compile(_word(_ASK), _FLAGS)
_SKIP_ONLY_RE = re.compile(_word(_SKIP), _FLAGS)

_AND_SPLIT_RE = re.compile(r"\s*(?:&&?|(?<!\w)(?:AND|И|ԵՎ|և)(?!\w))\s*", _FLAGS)
_OR_WORDS = {"OR", "ИЛИ", "ԿԱՄ"}
_TO_WORDS = {"TO", "ДО", "THROUGH", "THRU"}

# Wider value ranges stay as (lo, hi) spans on the clause.
MAX_EXPANDED_RANGE = 1000

_TOKEN_RE = re.compile(
    r"(?P<op>≠|≤|≥|<>|=<|=>|==|!=|<=|>=|=|<|>)"
    r"|(?P<num>\d+)"
    r"|(?P<dash>\.\.|[-–—])"
    r"|(?P<sep>[,;/])"
    r"|(?P<word>[^\W\d][\w.]*)",
    re.UNICODE,
)

# Question-code shaped identifier: letters first, contains a digit.
_TARGET_RE = re.compile(r"(?<![\w.])([^\W\d_][\w]*?\d[\w.]*)", re.UNICODE)
_TARGET_RANGE_RE = re.compile(
    r"(?<![\w.])([^\W\d_]\w*?\d[\w.]*)\s*(?:[-–—]|\s(?:TO|THROUGH|THRU|ДО)\s)\s*([^\W\d_]\w*?\d[\w.]*)",
    _FLAGS)

_DECORATION_LEAD_RE = re.compile(r"^[\s\[\(\*•>#]+")
_DECORATION_TAIL_RE = re.compile(r"[\s\]\)\.;:!]+$")
_INLINE_SEGMENT_RE = re.compile(r"\(([^()]*)\)|\[([^\[\]]*)\]|\{([^{}]*)\}")
_TRAILING_JUMP_RE = re.compile(rf"\s*(?:[-–—]\s*)?(?:{_word(_GOTO)}|{_ARROW})\s*(?P<dest>[^\W\d_]\w*?\d[\w.]*)\s*\.?$",
                               _FLAGS)

_KEYWORDS = {"ASK", "IF", "GO", "TO", "AND", "OR", "SKIP", "THEN", "ELSE", "END",
             "TERMINATE", "CLOSE", "STOP", "ALL", "ONLY", "WHEN", "NOT"}


@dataclass
class RoutingDirective:
    """
    A routing statement recovered from text, before question context is known.

    Properties:
        clauses: Parsed conditions (empty for unconditional inline annotations,
            which are conditioned on the current question's option code)
        action: Action enum
        targets: Variables named as targets or jump destination (first one)
        target_ranges: ``S5-S8`` style spans to expand in question order
        source_text: Original text for provenance
    """

    clauses: List[Clause]
    action: Action
    targets: List[str] = field(default_factory=list)
    target_ranges: List[Tuple[str, str]] = field(default_factory=list)
    source_text: str = ""


def _strip_decoration(text: str) -> str:
    text = _DECORATION_LEAD_RE.sub("", text)
    return _DECORATION_TAIL_RE.sub("", text)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    """Tokenize condition text; characters outside the grammar are dropped."""
    tokens = []
    for m in _TOKEN_RE.finditer(text):
        kind = m.lastgroup
        value = m.group(kind)
        if kind == "word":
            value = value.rstrip(".")
            upper = value.upper()
            if upper in _OR_WORDS:
                kind = "or"
            elif upper in _TO_WORDS:
                kind = "dash"
        tokens.append((kind, value))
    return tokens


def _parse_number(tokens, pos) -> Tuple[Optional[int], int]:
    negative = False
    if pos < len(tokens) and tokens[pos][0] == "dash" and tokens[pos][1] in "-–—":
        if pos + 1 < len(tokens) and tokens[pos + 1][0] == "num":
            negative = True
            pos += 1
    if pos < len(tokens) and tokens[pos][0] == "num":
        value = int(tokens[pos][1])
        return (-value if negative else value), pos + 1
    return None, pos


def _parse_value_list(tokens, pos) -> Tuple[set, set, int]:
    values = set()
    ranges = set()
    while True:
        lo, next_pos = _parse_number(tokens, pos)
        if lo is None:
            break
        pos = next_pos
        if pos < len(tokens) and tokens[pos][0] == "dash":
            hi, after = _parse_number(tokens, pos + 1)
            if hi is not None and hi >= lo:
                if hi - lo + 1 <= MAX_EXPANDED_RANGE:
                    values.update(range(lo, hi + 1))
                else:
                    ranges.add((lo, hi))
                pos = after
            else:
                values.add(lo)
        else:
            values.add(lo)

        if pos < len(tokens) and tokens[pos][0] in ("sep", "or"):
            # "or" followed by "VAR OP" starts an alternative clause instead
            if (pos + 2 < len(tokens) and tokens[pos + 1][0] == "word"
                    and tokens[pos + 2][0] == "op"):
                break
            pos += 1
            continue
        break
    return values, ranges, pos


def _parse_conjunct(tokens) -> List[Clause]:
    clauses = []
    pos = 0
    while pos < len(tokens):
        kind, value = tokens[pos]
        if kind != "word" or value.upper() in _KEYWORDS:
            pos += 1
            continue
        if pos + 1 >= len(tokens) or tokens[pos + 1][0] != "op":
            pos += 1
            continue
        operator = operator_from_text(tokens[pos + 1][1])
        values, ranges, pos = _parse_value_list(tokens, pos + 2)
        if operator is None or not (values or ranges):
            continue
        clauses.append(Clause(variable=value, operator=operator, values=frozenset(values),
                              ranges=frozenset(ranges)))

    if len(clauses) > 1:
        clauses = [Clause(c.variable, c.operator, c.values, disjunctive=True, ranges=c.ranges)
                   for c in clauses]
    return clauses


def parse_condition(text: str) -> List[Clause]:
    """
    Parse condition text into clauses.

    AND-joined parts give independent clauses; OR-joined comparisons on
    different variables give clauses marked disjunctive.

    Raises:
        RoutingParseError: If no ``VARIABLE OPERATOR VALUES`` clause is found
    """
    if not text or not text.strip():
        raise RoutingParseError("Empty condition")

    clauses: List[Clause] = []
    for part in _AND_SPLIT_RE.split(text.strip()):
        if part:
            clauses.extend(_parse_conjunct(_tokenize(part)))

    if not clauses:
        raise RoutingParseError(f"No comparison found in condition: {text!r}")
    return clauses


def extract_targets(text: str) -> Tuple[List[str], List[Tuple[str, str]]]:
    """
    Extract question-code shaped names and ``A-B`` spans from target text.

    Returns:
        (names, ranges), names in order of appearance without duplicates
    """
    ranges = []
    for m in _TARGET_RANGE_RE.finditer(text):
        ranges.append((m.group(1).rstrip("."), m.group(2).rstrip(".")))
    remainder = _TARGET_RANGE_RE.sub(" ", text)

    names: List[str] = []
    for m in _TARGET_RE.finditer(remainder):
        name = m.group(1).rstrip(".")
        if name.upper() not in _KEYWORDS and name not in names:
            names.append(name)
    return names, ranges


def _directive(cond: str, action: Action, target_text: str, source: str) -> RoutingDirective:
    clauses = parse_condition(cond)
    targets, ranges = extract_targets(target_text) if target_text else ([], [])
    if action is Action.GOTO:
        targets, ranges = targets[:1], []
    return RoutingDirective(clauses=clauses, action=action, targets=targets,
                            target_ranges=ranges, source_text=source)


def _split_action(rest: str) -> Tuple[str, Optional[Action], str]:
    """Split ``<cond> <action> <targets>`` at the first action keyword."""
    m = _ACTION_RE.search(rest)
    if m is None:
        return rest, None, ""
    word = m.group(0)
    if _GOTO_ONLY_RE.fullmatch(word):
        action = Action.GOTO
    elif _TERMINATE_ONLY_RE.fullmatch(word):
        action = Action.TERMINATE
    elif _ASK_ONLY_RE.fullmatch(word):
        action = Action.ASK
    else:
        action = Action.SKIP
    return rest[:m.start()], action, rest[m.end():]


def _classify_arrow_targets(text: str) -> Action:
    if _TERMINATE_ONLY_RE.search(text):
        return Action.TERMINATE
    if _GOTO_ONLY_RE.search(text):
        return Action.GOTO
    if _SKIP_ONLY_RE.search(text):
        return Action.SKIP
    return Action.ASK


def parse_routing_line(line: str) -> Optional[RoutingDirective]:
    """
    Parse a standalone routing line.

    Returns:
        RoutingDirective, or None if the line is not a routing statement
        (including cue-like lines whose condition cannot be parsed)
    """
    source = line.strip()[:200]
    text = _strip_decoration(line)
    if not text:
        return None

    try:
        m = _ASK_TARGETS_IF_RE.match(text)
        if m and not _IF_RE.match(m.group("targets")):
            names, ranges = extract_targets(m.group("targets"))
            if names or ranges:
                return _directive(m.group("cond"), Action.ASK, m.group("targets"), source)

        m = _ASK_IF_RE.match(text)
        if m:
            cond, action, tail = _split_action(m.group("rest"))
            if action is None or (action is Action.ASK and not extract_targets(tail)[0]):
                return _directive(cond, Action.FILTER, "", source)
            return _directive(cond, action, tail, source)

        m = _TERMINATE_IF_RE.match(text)
        if m:
            return _directive(m.group("cond"), Action.TERMINATE, "", source)

        m = _GOTO_IF_RE.match(text)
        if m:
            return _directive(m.group("cond"), Action.GOTO, m.group("dest"), source)

        m = _SKIP_IF_RE.match(text)
        if m:
            return _directive(m.group("cond"), Action.SKIP, m.group("targets"), source)

        m = _IF_RE.match(text)
        if m:
            cond, action, tail = _split_action(m.group("rest"))
            if action is None:
                return _directive(cond, Action.FILTER, "", source)
            return _directive(cond, action, tail, source)

        m = _FILTER_RE.match(text)
        if m:
            return _directive(m.group("cond"), Action.FILTER, "", source)

        m = _ARROW_RE.match(text)
        if m:
            targets = m.group("targets")
            return _directive(m.group("cond"), _classify_arrow_targets(targets), targets, source)
    except RoutingParseError as e:
        logger.debug("Routing cue without a usable condition: %s", e)
        return None

    return None


def _annotation_from_segment(segment: str, source: str) -> Optional[RoutingDirective]:
    """Interpret a bracketed annotation such as ``(Terminate)`` or ``[go to S6]``."""
    text = _strip_decoration(segment)
    if not text:
        return None

    directive = parse_routing_line(text)
    if directive is not None:
        directive.source_text = source
        return directive

    m = _GOTO_ONLY_RE.search(text)
    if m:
        names, _ = extract_targets(text[m.end():])
        if names:
            return RoutingDirective([], Action.GOTO, targets=names[:1], source_text=source)
    if _TERMINATE_ONLY_RE.search(text):
        return RoutingDirective([], Action.TERMINATE, source_text=source)
    m = _ASK_ONLY_RE.match(text)
    if m:
        names, ranges = extract_targets(text[m.end():])
        if names or ranges:
            return RoutingDirective([], Action.ASK, targets=names, target_ranges=ranges,
                                    source_text=source)
    m = _SKIP_ONLY_RE.match(text)
    if m:
        names, ranges = extract_targets(text[m.end():])
        if names or ranges:
            return RoutingDirective([], Action.SKIP, targets=names, target_ranges=ranges,
                                    source_text=source)
    m = re.match(rf"^{_ARROW}\s*(.+)$", text)
    if m:
        names, _ = extract_targets(m.group(1))
        if names:
            return RoutingDirective([], Action.GOTO, targets=names[:1], source_text=source)
    return None


def strip_inline_annotations(text: str) -> Tuple[str, List[RoutingDirective]]:
    """
    Remove routing annotations embedded in an option or question label.

    Handles bracketed segments (``(Terminate)``, ``[go to S6]``,
    ``[ASK IF S4=1]``) and trailing jumps (``→ S6``, ``- GO TO S6``).

    Returns:
        (clean_label, directives). Directives with empty clauses are
        conditioned by the caller on the current question and option code.
    """
    directives: List[RoutingDirective] = []
    source = text.strip()[:200]

    def _replace(m: re.Match) -> str:
        segment = next(g for g in m.groups() if g is not None)
        directive = _annotation_from_segment(segment, source)
        if directive is None:
            return m.group(0)
        directives.append(directive)
        return " "

    cleaned = _INLINE_SEGMENT_RE.sub(_replace, text)

    m = _TRAILING_JUMP_RE.search(cleaned)
    if m:
        directives.append(RoutingDirective([], Action.GOTO, targets=[m.group("dest").rstrip(".")],
                                           source_text=source))
        cleaned = cleaned[:m.start()]

    cleaned = re.sub(r"\s{2,}", " ", cleaned).strip(" -–—:;,")
    return cleaned, directives


__all__ = [
    "Action",
    "RoutingDirective",
    "RoutingParseError",
    "parse_condition",
    "parse_routing_line",
    "strip_inline_annotations",
    "extract_targets",
]

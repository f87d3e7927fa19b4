"""
Effective-Metadata Resolver.

Merges the decoded Dictionary and the QuestionnaireModel into one immutable
EffectiveVariable per variable name.

PRECEDENCE:
    1. Dictionary value labels (when non-empty)
    2. Questionnaire answer codes
    3. Nothing (codes unknown, no code validation)

An inferred scale range (from a label, or from a dense run of codes) is
unioned into whatever the chosen source provides.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from surveyaudit.config import ValidationConfig
from surveyaudit.model import (
    CodeSource,
    Dictionary,
    EffectiveVariable,
    Question,
    QuestionnaireModel,
    Variable,
    VariableKind,
)
from surveyaudit.scales import dense_run_range, infer_scale

logger = logging.getLogger(__name__)

# Cyrillic letters that questionnaires typed on Russian keyboards use in
# place of the Latin letters of question codes ("С4" for "C4").
_HOMOGLYPHS = str.maketrans("АВСЕНКМОРТХаесорх", "ABCEHKMOPTXaecopx")


def name_key(name: str) -> str:
    """Matching key for a variable name: case, dots and look-alike letters folded."""
    return name.strip().translate(_HOMOGLYPHS).replace(".", "_").upper()


def _matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(re.search(p, name, re.IGNORECASE) for p in patterns)


def is_admin_name(name: str, config: ValidationConfig) -> bool:
    return _matches_any(name, config.admin_name_patterns)


def is_open_text_name(name: str, config: ValidationConfig) -> bool:
    return _matches_any(name, config.open_text_name_patterns)


def _scale_for(
    dvar: Optional[Variable],
    question: Optional[Question],
    codes: Iterable[float],
    config: ValidationConfig,
) -> Optional[Tuple[int, int]]:
    candidates = []
    if question is not None and question.scale_range is not None:
        candidates.append(question.scale_range)
    for text in (dvar.label if dvar else "", question.label if question else ""):
        found = infer_scale(text, config.scale_min_width, config.scale_max_width)
        if found is not None:
            candidates.append(found)

    dense = dense_run_range(
        [c for c in codes if not config.is_special(c)],
        min_run=config.dense_run_min_length,
        max_width=config.scale_max_width,
    )
    if dense is not None:
        candidates.append(dense)

    if not candidates:
        return None
    return min(lo for lo, _ in candidates), max(hi for _, hi in candidates)


def _resolve_one(
    name: str,
    dvar: Optional[Variable],
    question: Optional[Question],
    config: ValidationConfig,
) -> EffectiveVariable:
    dictionary_codes = frozenset(dvar.valid_codes) if dvar else frozenset()
    questionnaire_codes = frozenset(question.valid_codes) if question else frozenset()

    if dictionary_codes:
        codes, source = set(dictionary_codes), CodeSource.DICTIONARY
    elif questionnaire_codes:
        codes, source = {float(c) for c in questionnaire_codes}, CodeSource.QUESTIONNAIRE
    else:
        codes, source = set(), CodeSource.NONE

    kind = dvar.kind if dvar else VariableKind.UNKNOWN
    scale = None
    if kind is not VariableKind.STRING:
        scale = _scale_for(dvar, question, codes, config)
    if scale is not None:
        codes.update(float(c) for c in range(scale[0], scale[1] + 1))
        if source is CodeSource.NONE:
            source = CodeSource.SCALE

    value_labels: Dict[float, str] = dict(dvar.value_labels) if dvar else {}
    if question is not None:
        for code, label in question.code_labels.items():
            value_labels.setdefault(float(code), label)

    admin = is_admin_name(name, config)
    open_text = not admin and (kind is VariableKind.STRING or is_open_text_name(name, config))
    base_codes = dictionary_codes or frozenset(float(c) for c in questionnaire_codes)

    label = (dvar.label if dvar else "") or (question.label if question else "") or name
    return EffectiveVariable(
        name=name,
        effective_label=label,
        effective_valid_codes=frozenset(codes),
        value_labels=value_labels,
        kind=kind,
        declared_missing=frozenset(dvar.declared_missing) if dvar else frozenset(),
        missing_range=dvar.missing_range if dvar else None,
        section=question.section if question else "",
        has_in_dictionary=dvar is not None,
        has_in_questionnaire=question is not None,
        content_validated=not (admin or open_text),
        is_open_text=open_text,
        is_binary_dummy=base_codes == frozenset({0.0, 1.0}),
        scale_range=scale,
        code_source=source,
        dictionary_codes=dictionary_codes,
        questionnaire_codes=questionnaire_codes,
    )


def resolve_variables(
    dictionary: Optional[Dictionary],
    questionnaire: Optional[QuestionnaireModel],
    columns: Iterable[str] = (),
    config: Optional[ValidationConfig] = None,
) -> List[EffectiveVariable]:
    """
    Resolve effective metadata for every known variable.

    Args:
        dictionary: Decoded dictionary (or None)
        questionnaire: Analyzed questionnaire (or None)
        columns: Data column names; columns unknown to both sources are
            included as bare variables
        config: ValidationConfig (defaults if None)

    Returns:
        EffectiveVariables in dictionary order, then questionnaire-only
        questions, then data-only columns
    """
    config = config or ValidationConfig()
    variables = dictionary.variables if dictionary else []
    questions = questionnaire.questions if questionnaire else []

    questions_by_key: Dict[str, Question] = {}
    for question in questions:
        questions_by_key.setdefault(name_key(question.code), question)

    resolved: List[EffectiveVariable] = []
    seen = set()

    for dvar in variables:
        key = name_key(dvar.name)
        if key in seen:
            continue
        seen.add(key)
        resolved.append(_resolve_one(dvar.name, dvar, questions_by_key.get(key), config))

    for question in questions:
        key = name_key(question.code)
        if key in seen:
            continue
        seen.add(key)
        resolved.append(_resolve_one(question.code, None, question, config))

    for column in columns:
        key = name_key(column)
        if key in seen:
            continue
        seen.add(key)
        resolved.append(_resolve_one(column, None, None, config))

    logger.info("Resolved %d variables (%d with known codes)", len(resolved),
                sum(1 for v in resolved if v.effective_valid_codes))
    return resolved


__all__ = [
    "is_admin_name",
    "is_open_text_name",
    "name_key",
    "resolve_variables",
]

"""
End-to-end pipeline.

    Dictionary Decoder -> Questionnaire Analyzer -> Resolver ->
    Validation Engine -> Column Summarizer

run_validation() is synchronous and deterministic. load_sources() reads the
three inputs concurrently and returns only when all of them are loaded.
ValidationRunner runs validation off the calling thread with
cancel-and-restart semantics.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from surveyaudit.config import ValidationConfig
from surveyaudit.model import (
    ColumnSummary,
    DatasetWarning,
    Dictionary,
    EffectiveVariable,
    Issue,
    IssueKind,
    QuestionnaireModel,
)
from surveyaudit.questionnaire import analyze_questionnaire
from surveyaudit.resolver import resolve_variables
from surveyaudit.sav_reader import decode_dictionary
from surveyaudit.sources import extract_questionnaire_text, read_dictionary_bytes, read_rows
from surveyaudit.summary import summarize_columns
from surveyaudit.validator import ValidationCancelled, row_schema, validate

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class ValidationResult:
    """Everything one validation run produces."""

    dictionary: Dictionary
    questionnaire: QuestionnaireModel
    variables: List[EffectiveVariable] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)
    warnings: List[DatasetWarning] = field(default_factory=list)
    summaries: List[ColumnSummary] = field(default_factory=list)
    id_column: Optional[str] = None
    row_count: int = 0

    def issue_counts(self) -> Dict[IssueKind, int]:
        counts: Dict[IssueKind, int] = {}
        for issue in self.issues:
            counts[issue.kind] = counts.get(issue.kind, 0) + 1
        return counts


def run_validation(
    dictionary_bytes: Optional[bytes] = None,
    questionnaire_text: Optional[str] = None,
    rows: Sequence[Mapping[str, Any]] = (),
    config: Optional[ValidationConfig] = None,
    cancel_token=None,
) -> ValidationResult:
    """
    Run all stages over already-loaded inputs.

    Args:
        dictionary_bytes: Raw SPSS system file (or None)
        questionnaire_text: Questionnaire plain text (or None)
        rows: Ordered row mappings
        config: ValidationConfig (defaults if None)
        cancel_token: Optional object with is_set(), checked between rows

    Raises:
        ValidationCancelled: If the cancel token is set during the run
    """
    config = config or ValidationConfig()
    rows = list(rows)

    if dictionary_bytes is not None:
        dictionary = decode_dictionary(dictionary_bytes)
    else:
        dictionary = Dictionary()
    questionnaire = analyze_questionnaire(questionnaire_text or "", config.scale_min_width,
                                          config.scale_max_width)

    variables = resolve_variables(dictionary, questionnaire, row_schema(rows), config)
    outcome = validate(variables, questionnaire.routing_rules, rows, config, cancel_token)
    summaries = summarize_columns(variables, questionnaire.routing_rules, rows, outcome.issues, config)

    return ValidationResult(
        dictionary=dictionary,
        questionnaire=questionnaire,
        variables=variables,
        issues=outcome.issues,
        warnings=outcome.warnings,
        summaries=summaries,
        id_column=outcome.id_column,
        row_count=outcome.row_count,
    )


# =====================================================================
# Concurrent source loading
# =====================================================================

@dataclass
class LoadedSources:
    """The three inputs, loaded and ready for run_validation()."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    dictionary_bytes: Optional[bytes] = None
    questionnaire_text: Optional[str] = None


async def _maybe(func, path: Optional[PathLike]):
    if path is None:
        return None
    return await asyncio.to_thread(func, path)


async def load_sources(
    data_path: PathLike,
    dictionary_path: Optional[PathLike] = None,
    questionnaire_path: Optional[PathLike] = None,
    config: Optional[ValidationConfig] = None,
) -> LoadedSources:
    """
    Load data, dictionary and questionnaire concurrently.

    Columns named in config.id_columns are read as text.

    All reads are awaited before returning; the first failure propagates
    as SourceLoadError.
    """
    config = config or ValidationConfig()
    rows, dictionary_bytes, text = await asyncio.gather(
        asyncio.to_thread(read_rows, data_path, config.id_columns),
        _maybe(read_dictionary_bytes, dictionary_path),
        _maybe(extract_questionnaire_text, questionnaire_path),
    )
    return LoadedSources(rows=rows, dictionary_bytes=dictionary_bytes, questionnaire_text=text)


# =====================================================================
# Background runner
# =====================================================================

class ValidationRunner:
    """
    Runs validation on a single background worker.

    submit() supersedes any in-flight run: the previous run's cancel token
    is set, so it stops at the next row with ValidationCancelled, and a
    run that had not started yet is cancelled outright. Only the newest
    future can deliver a result.

    submit() is meant to be called from one (interactive) thread.
    """

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="survey-audit")
        self._token: Optional[threading.Event] = None
        self._future: Optional[Future] = None

    def submit(
        self,
        dictionary_bytes: Optional[bytes] = None,
        questionnaire_text: Optional[str] = None,
        rows: Sequence[Mapping[str, Any]] = (),
    ) -> Future:
        self.cancel()
        token = threading.Event()
        self._token = token
        self._future = self._executor.submit(
            self._run, dictionary_bytes, questionnaire_text, list(rows), token)
        return self._future

    def _run(self, dictionary_bytes, questionnaire_text, rows, token: threading.Event) -> ValidationResult:
        result = run_validation(dictionary_bytes, questionnaire_text, rows, self.config, token)
        if token.is_set():
            raise ValidationCancelled("Validation superseded by a newer run")
        return result

    def cancel(self) -> None:
        """Cancel the in-flight run, if any."""
        if self._token is not None:
            self._token.set()
        if self._future is not None and self._future.cancel():
            logger.debug("Pending validation run cancelled before it started")

    @property
    def latest(self) -> Optional[Future]:
        return self._future

    def shutdown(self, wait: bool = True) -> None:
        self.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False


__all__ = [
    "LoadedSources",
    "ValidationResult",
    "ValidationRunner",
    "load_sources",
    "run_validation",
]

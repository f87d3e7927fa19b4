"""
Command line entry point.

    survey-audit DATA [--dictionary SAV] [--questionnaire DOC] [--config YAML]
                      [--issues-csv PATH] [--warnings-csv PATH]
                      [--report PATH(.json|.yaml)] [-v]

Exit status: 0 on success, 2 when an input or the configuration cannot be
loaded.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from surveyaudit import __version__
from surveyaudit.config import ConfigError, ValidationConfig, load_config
from surveyaudit.pipeline import ValidationResult, load_sources, run_validation
from surveyaudit.serialization import issues_to_csv, result_to_json, result_to_yaml, warnings_to_csv
from surveyaudit.sources import SourceLoadError

logger = logging.getLogger(__name__)

TOP_ISSUE_COLUMNS = 10


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="survey-audit",
        description="Validate survey response data against its SPSS dictionary and questionnaire.",
    )
    parser.add_argument("data", help="Response data (.csv or .xlsx)")
    parser.add_argument("--dictionary", metavar="SAV", help="SPSS system file (.sav)")
    parser.add_argument("--questionnaire", metavar="DOC", help="Questionnaire (.docx, .txt or .md)")
    parser.add_argument("--config", metavar="YAML", help="Validation settings")
    parser.add_argument("--issues-csv", metavar="PATH", help="Write row issues as CSV")
    parser.add_argument("--warnings-csv", metavar="PATH", help="Write dataset warnings as CSV")
    parser.add_argument("--report", metavar="PATH", help="Write the full result (.json or .yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def print_report(result: ValidationResult) -> None:
    """Pretty-print a ValidationResult."""
    print()
    print("=" * 70)
    print("SURVEY AUDIT REPORT")
    print("=" * 70)
    print()

    print("INPUTS")
    dictionary = result.dictionary
    print(f"  Dictionary Variables:  {len(dictionary.variables)}"
          + ("  (fallback scan)" if dictionary.degraded and dictionary.variables else ""))
    print(f"  Questions:             {len(result.questionnaire.questions)}")
    print(f"  Routing Rules:         {len(result.questionnaire.routing_rules)}")
    print(f"  Rows:                  {result.row_count}")
    print(f"  Respondent ID Column:  {result.id_column or 'None'}")
    print()

    print("ISSUES")
    counts = result.issue_counts()
    if counts:
        for kind, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0].value)):
            print(f"  {kind.value + ':':<24} {n}")
    else:
        print("  None")
    print()

    flagged = sorted((s for s in result.summaries if s.issue_count),
                     key=lambda s: -s.issue_count)[:TOP_ISSUE_COLUMNS]
    if flagged:
        print("TOP ISSUE COLUMNS")
        for summary in flagged:
            kinds = ", ".join(k.value for k in summary.issue_kinds)
            print(f"  {summary.name}: {summary.issue_count} ({kinds})")
        print()

    if result.warnings:
        print("WARNINGS")
        for i, warning in enumerate(result.warnings, 1):
            print(f"  {i}. [{warning.kind.value}] {warning.detail}")
    else:
        print("NO WARNINGS")
    print()


def _write(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    print(f"Wrote {path}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config) if args.config else ValidationConfig()
        sources = asyncio.run(load_sources(args.data, args.dictionary, args.questionnaire, config))
    except (SourceLoadError, ConfigError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    result = run_validation(sources.dictionary_bytes, sources.questionnaire_text, sources.rows, config)
    print_report(result)

    if args.issues_csv:
        _write(args.issues_csv, issues_to_csv(result.issues))
    if args.warnings_csv:
        _write(args.warnings_csv, warnings_to_csv(result.warnings))
    if args.report:
        suffix = Path(args.report).suffix.lower()
        text = result_to_yaml(result) if suffix in (".yaml", ".yml") else result_to_json(result)
        _write(args.report, text)
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Source collaborators: load the three inputs from files.

    read_dictionary_bytes()      raw bytes of the SPSS system file
    extract_questionnaire_text() plain text of a .docx / .txt / .md file
    read_rows()                  rows of a .csv / .xlsx export

All I/O and format failures surface as SourceLoadError. Nothing here
interprets the content beyond what is needed to hand it on.
"""

import csv
import io
import logging
import math
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import openpyxl
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.paragraph import Paragraph
from openpyxl.utils.exceptions import InvalidFileException

from surveyaudit.config import DEFAULT_ID_COLUMNS, SurveyAuditError
from surveyaudit.text_decoding import decode_text

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TEXT_SUFFIXES = {".txt", ".md", ".markdown"}
CSV_DELIMITERS = ",;\t|"


class SourceLoadError(SurveyAuditError):
    """An input file could not be read or has an unsupported format."""
    pass


def read_dictionary_bytes(path: PathLike) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise SourceLoadError(f"Cannot read dictionary file {path}: {e}")


# =====================================================================
# Questionnaire documents
# =====================================================================

def _docx_lines(document) -> List[str]:
    """Paragraph and table-cell text in document order."""
    lines: List[str] = []
    for child in document.element.body.iterchildren():
        tag = child.tag.rsplit("}", 1)[-1]
        if tag == "p":
            lines.append(Paragraph(child, document).text)
        elif tag == "tbl":
            for row in Table(child, document).rows:
                seen = set()
                for cell in row.cells:
                    # merged cells repeat the same underlying element
                    if id(cell._tc) in seen:
                        continue
                    seen.add(id(cell._tc))
                    lines.extend(p.text for p in cell.paragraphs)
    return lines


def extract_questionnaire_text(path: PathLike) -> str:
    """
    Plain text of a questionnaire document.

    Raises:
        SourceLoadError: Unreadable file or unsupported extension
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix in TEXT_SUFFIXES:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SourceLoadError(f"Cannot read questionnaire {path}: {e}")

    if suffix == ".docx":
        try:
            document = Document(str(path))
        except (OSError, KeyError, ValueError, zipfile.BadZipFile, PackageNotFoundError) as e:
            raise SourceLoadError(f"Cannot open questionnaire {path}: {e}")
        lines = _docx_lines(document)
        logger.debug("Extracted %d lines from %s", len(lines), path.name)
        return "\n".join(lines)

    raise SourceLoadError(f"Unsupported questionnaire format: {path.suffix or path.name}")


# =====================================================================
# Tabular data
# =====================================================================

def coerce_cell(value: Any, keep_text: bool = False) -> Any:
    """
    Blank -> None, numeric text -> int/float, anything else unchanged.

    With `keep_text` the result is always text: identifiers such as "007"
    must not collapse into 7, and a spreadsheet number 7.0 reads "7".
    """
    if value is None:
        return None
    if not isinstance(value, str):
        if keep_text and isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float) and value.is_integer():
                return str(int(value))
            return str(value)
        return value
    text = value.strip()
    if not text:
        return None
    if keep_text:
        return text
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return value
    return number if math.isfinite(number) else value


def _text_columns(header: Iterable[str], id_columns: Iterable[str]) -> Set[str]:
    wanted = {c.lower() for c in id_columns}
    return {name for name in header if name is not None and name.lower() in wanted}


def _read_csv(path: Path, id_columns: Iterable[str]) -> List[Dict[str, Any]]:
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise SourceLoadError(f"Cannot read data file {path}: {e}")

    text = decode_text(raw).lstrip("\ufeff")
    first_line = text.split("\n", 1)[0]
    # the header row decides the delimiter
    delimiter = max(CSV_DELIMITERS, key=first_line.count)
    if not first_line.count(delimiter):
        delimiter = ","

    try:
        reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=delimiter)
        keep = _text_columns(reader.fieldnames or [], id_columns)
        rows = []
        for record in reader:
            rows.append({
                key: coerce_cell(value, key in keep) for key, value in record.items()
                if key is not None
            })
    except csv.Error as e:
        raise SourceLoadError(f"Malformed CSV {path}: {e}")
    return rows


def _header_name(value: Any, index: int) -> str:
    if value is None or not str(value).strip():
        return f"col_{index + 1}"
    return str(value).strip()


def _read_xlsx(path: Path, id_columns: Iterable[str]) -> List[Dict[str, Any]]:
    try:
        workbook = openpyxl.load_workbook(str(path), read_only=True, data_only=True)
    except (OSError, KeyError, ValueError, zipfile.BadZipFile, InvalidFileException) as e:
        raise SourceLoadError(f"Cannot open workbook {path}: {e}")

    try:
        sheet = workbook.worksheets[0]
        header: Optional[List[str]] = None
        keep: Set[str] = set()
        rows: List[Dict[str, Any]] = []
        for values in sheet.iter_rows(values_only=True):
            if header is None:
                header = [_header_name(v, i) for i, v in enumerate(values)]
                keep = _text_columns(header, id_columns)
                continue
            if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
                continue
            rows.append({
                name: coerce_cell(values[i], name in keep) if i < len(values) else None
                for i, name in enumerate(header)
            })
        return rows
    finally:
        workbook.close()


def read_rows(path: PathLike, id_columns: Iterable[str] = DEFAULT_ID_COLUMNS) -> List[Dict[str, Any]]:
    """
    Rows of a data export, as ordered column -> value mappings.

    Numeric text is converted to int/float and blank cells become None.
    Columns named in `id_columns` (any case) keep their text.

    Raises:
        SourceLoadError: Unreadable file or unsupported extension
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in (".csv", ".tsv"):
        rows = _read_csv(path, id_columns)
    elif suffix in (".xlsx", ".xlsm"):
        rows = _read_xlsx(path, id_columns)
    else:
        raise SourceLoadError(f"Unsupported data format: {path.suffix or path.name}")
    logger.info("Read %d rows from %s", len(rows), path.name)
    return rows


__all__ = [
    "SourceLoadError",
    "coerce_cell",
    "extract_questionnaire_text",
    "read_dictionary_bytes",
    "read_rows",
]

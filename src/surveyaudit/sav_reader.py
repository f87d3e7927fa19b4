"""
Dictionary Decoder (SPSS system file -> Dictionary).

Reads the dictionary part of a ``.sav`` file:

    header (176 bytes)
    record type 2   variable records (one per 8-byte slot)
    record type 3   value labels, immediately followed by
    record type 4   the 1-based slot indices the labels apply to
    record type 6   document lines (skipped)
    record type 7   extension records (skipped)
    record type 999 end of dictionary

CONTRACT:
    decode_dictionary() never raises. A missing magic tag, an unknown record
    type or a truncated file ends the record loop; if no variable was
    registered the permissive fallback scan is used instead.

SLOT RULE:
    Value-label records reference slots, not variables. A string wider than
    8 bytes occupies ceil(width / 8) slots; the extra slots are kept as None
    placeholders so later indices do not shift.
"""

import logging
import math
import re
import struct
from typing import Dict, List, Optional, Union

from surveyaudit.model import SYSMIS, Dictionary, DictionaryHeader, Variable, VariableKind
from surveyaudit.text_decoding import decode_text

logger = logging.getLogger(__name__)

MAGIC_TAGS = (b"$FL2", b"$FL3")
HEADER_SIZE = 176

REC_VARIABLE = 2
REC_VALUE_LABELS = 3
REC_VALUE_LABEL_VARS = 4
REC_DOCUMENT = 6
REC_EXTENSION = 7
REC_END = 999

DOCUMENT_LINE_SIZE = 80
FALLBACK_SCAN_LIMIT = 300_000

_FALLBACK_TOKEN_RE = re.compile(r"\b([A-Za-z][A-Za-z0-9_.]{1,39})\b")

# English filler words and SPSS syntax keywords seen in the raw byte stream.
FALLBACK_STOP_WORDS = frozenset({
    "the", "and", "or", "in", "of", "to", "is", "for", "with", "from", "not",
    "are", "at", "by", "this", "that", "be", "as", "it", "on", "if", "do", "so",
    "spss", "data", "list", "save", "get", "compute", "recode", "execute",
    "value", "variable", "labels", "type", "string", "numeric", "missing",
    "sysmis", "all", "eq", "ne", "lt", "gt", "le", "ge", "sum", "mean", "begin",
    "end", "file", "name", "format", "measure", "role", "nominal", "scale",
    "ordinal", "input", "output", "yes", "no",
})


class _EndOfRecords(Exception):
    """Raised internally when a read would run past the end of the buffer."""
    pass


class _Reader:
    """Bounds-checked little-endian cursor over the raw bytes."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    def _take(self, n: int) -> int:
        if n < 0 or self.offset + n > len(self.data):
            raise _EndOfRecords(f"read of {n} bytes at offset {self.offset}")
        start = self.offset
        self.offset += n
        return start

    def int32(self) -> int:
        return struct.unpack_from("<i", self.data, self._take(4))[0]

    def float64(self) -> float:
        return struct.unpack_from("<d", self.data, self._take(8))[0]

    def byte(self) -> int:
        return self.data[self._take(1)]

    def raw(self, n: int) -> bytes:
        start = self._take(n)
        return self.data[start:start + n]

    def skip(self, n: int) -> None:
        self._take(n)

    def peek_int32(self) -> int:
        value = self.int32()
        self.offset -= 4
        return value


def _pad4(n: int) -> int:
    return (n + 3) // 4 * 4


def _text(raw: bytes) -> str:
    return decode_text(raw).rstrip(" \x00")


def _decode_header(data: bytes) -> DictionaryHeader:
    reader = _Reader(data)
    header = DictionaryHeader()
    header.magic = reader.raw(4).decode("latin-1")
    header.product = _text(reader.raw(60)).strip()
    header.layout_code = reader.int32()
    reader.skip(4)  # nominal case size
    header.compressed = reader.int32() != 0
    reader.skip(4)  # weight index
    header.case_count = reader.int32()
    reader.skip(8)  # compression bias
    header.creation_date = _text(reader.raw(9)).strip()
    header.creation_time = _text(reader.raw(8)).strip()
    header.file_label = _text(reader.raw(64)).strip()
    return header


class _DictionaryBuilder:
    """Mutable state of one record loop."""

    def __init__(self):
        self.variables: List[Variable] = []
        self.slots: List[Optional[Variable]] = []
        self.names: Dict[str, Variable] = {}
        # Continuation slots reserved by the last wide string and not yet
        # matched by an explicit continuation record.
        self.reserved_continuations = 0

    def read_variable(self, reader: _Reader) -> None:
        type_code = reader.int32()
        has_label = reader.int32()
        n_missing = reader.int32()
        reader.skip(8)  # print and write formats
        raw_name = _text(reader.raw(8)).strip()

        label = ""
        if has_label != 0:
            length = reader.int32()
            label = _text(reader.raw(length)) if length > 0 else ""
            reader.skip(_pad4(max(length, 0)) - max(length, 0))

        missing = [reader.float64() for _ in range(abs(n_missing))]

        if not raw_name:
            if self.reserved_continuations > 0:
                self.reserved_continuations -= 1
            else:
                self.slots.append(None)
            return

        if raw_name in self.names:
            logger.debug("Duplicate variable name %s in dictionary; keeping the first", raw_name)
            self.slots.append(None)
        else:
            var = Variable(
                name=raw_name,
                label=label,
                kind=VariableKind.STRING if type_code > 0 else VariableKind.NUMERIC,
                width=max(type_code, 0),
            )
            if n_missing < 0 and len(missing) >= 2:
                var.missing_range = (min(missing[0], missing[1]), max(missing[0], missing[1]))
                var.declared_missing = set(missing[2:])
            else:
                var.declared_missing = set(missing)
            self.variables.append(var)
            self.names[raw_name] = var
            self.slots.append(var)

        self.reserved_continuations = 0
        if type_code > 8:
            extra = math.ceil(type_code / 8) - 1
            self.slots.extend([None] * extra)
            self.reserved_continuations = extra

    def read_value_labels(self, reader: _Reader) -> None:
        count = reader.int32()
        if count < 0:
            raise _EndOfRecords(f"negative value label count {count}")

        labels: List[tuple] = []
        for _ in range(count):
            raw_code = reader.raw(8)
            length = reader.byte()
            label = _text(reader.raw(length))
            # code length byte + label are padded to a multiple of 8
            reader.skip((length + 1 + 7) // 8 * 8 - (length + 1))
            labels.append((raw_code, label))

        if reader.peek_int32() != REC_VALUE_LABEL_VARS:
            logger.debug("Value label record at offset %d not followed by a slot list; discarded",
                         reader.offset)
            return
        reader.int32()

        n_vars = reader.int32()
        if n_vars < 0:
            raise _EndOfRecords(f"negative slot count {n_vars}")
        for _ in range(n_vars):
            index = reader.int32() - 1
            if not 0 <= index < len(self.slots):
                continue
            var = self.slots[index]
            if var is None or var.is_string:
                continue
            for raw_code, label in labels:
                code = struct.unpack("<d", raw_code)[0]
                if math.isnan(code):
                    continue
                var.value_labels[code] = label


def _derive_valid_codes(variables: List[Variable]) -> None:
    for var in variables:
        var.valid_codes = sorted(
            code for code in var.value_labels
            if code != SYSMIS and not var.is_declared_missing(code)
        )


def _read_records(data: bytes, builder: _DictionaryBuilder) -> bool:
    """
    Run the record loop.

    Returns True if the dictionary terminator was reached.
    """
    reader = _Reader(data, HEADER_SIZE)
    try:
        while reader.offset <= len(data) - 4:
            rec_type = reader.int32()

            if rec_type == REC_END:
                return True
            if rec_type == REC_VARIABLE:
                builder.read_variable(reader)
            elif rec_type == REC_VALUE_LABELS:
                builder.read_value_labels(reader)
            elif rec_type == REC_DOCUMENT:
                n_lines = reader.int32()
                reader.skip(n_lines * DOCUMENT_LINE_SIZE)
            elif rec_type == REC_EXTENSION:
                reader.skip(4)  # subtype
                size = reader.int32()
                count = reader.int32()
                reader.skip(size * count)
            else:
                logger.warning("Unknown record type %d at offset %d; stopping",
                               rec_type, reader.offset - 4)
                return False
    except (_EndOfRecords, struct.error) as e:
        logger.warning("Dictionary truncated (%s); keeping %d variables",
                       e, len(builder.variables))
    return False


def fallback_scan(data: bytes) -> Dictionary:
    """
    Permissive scan used when the record structure cannot be read.

    Keeps only the 7-bit part of the byte stream, extracts identifier-shaped
    tokens and registers each new one as a label-less numeric variable.
    """
    ascii_text = "".join(
        chr(b) if b < 128 else " " for b in data[:FALLBACK_SCAN_LIMIT]
    )
    seen = set()
    variables: List[Variable] = []
    for match in _FALLBACK_TOKEN_RE.finditer(ascii_text):
        token = match.group(1)
        if token in seen or token.lower() in FALLBACK_STOP_WORDS:
            continue
        seen.add(token)
        variables.append(Variable(name=token))

    return Dictionary(variables=variables, slots=list(variables), degraded=True)


def decode_dictionary(data: Union[bytes, bytearray, memoryview, None]) -> Dictionary:
    """
    Decode the dictionary of an SPSS system file.

    Args:
        data: Raw file bytes (the data section may be present or not)

    Returns:
        Dictionary; `degraded` is True when the fallback scan was used.
        Never raises.
    """
    if data is None:
        return Dictionary(degraded=True)
    data = bytes(data)

    if data[:4] not in MAGIC_TAGS:
        logger.warning("No system-file magic tag; using fallback scan")
        return fallback_scan(data)

    try:
        header = _decode_header(data)
    except (_EndOfRecords, struct.error):
        logger.warning("System-file header truncated; using fallback scan")
        return fallback_scan(data)

    builder = _DictionaryBuilder()
    complete = _read_records(data, builder)

    if not builder.variables:
        logger.warning("No variable records decoded; using fallback scan")
        return fallback_scan(data)

    _derive_valid_codes(builder.variables)
    logger.info("Decoded %d variables (%d slots)%s", len(builder.variables),
                len(builder.slots), "" if complete else ", dictionary incomplete")
    return Dictionary(
        variables=builder.variables,
        slots=builder.slots,
        header=header,
        degraded=False,
    )


__all__ = [
    "decode_dictionary",
    "fallback_scan",
    "FALLBACK_STOP_WORDS",
    "MAGIC_TAGS",
]

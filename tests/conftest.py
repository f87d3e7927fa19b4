"""
Shared fixtures.

SavBuilder writes the dictionary part of an SPSS system file record by
record, so tests can produce well-formed, truncated or corrupted inputs
without binary fixture files.
"""

import math
import struct

import pytest


def _fixed(text, size: int) -> bytes:
    raw = text.encode("utf-8") if isinstance(text, str) else text
    return raw[:size].ljust(size, b" ")


class SavBuilder:
    """Minimal writer for header + dictionary records."""

    def __init__(self, magic: bytes = b"$FL2", product: str = "@(#) SPSS DATA FILE test",
                 case_count: int = 3, file_label: str = "Test survey"):
        self.magic = magic
        self.product = product
        self.case_count = case_count
        self.file_label = file_label
        self.records = []
        self.slot_count = 0

    def header(self) -> bytes:
        return b"".join([
            self.magic,
            _fixed(self.product, 60),
            struct.pack("<iiiii", 2, self.slot_count, 1, 0, self.case_count),
            struct.pack("<d", 100.0),
            _fixed("01 Jan 24", 9),
            _fixed("12:00:00", 8),
            _fixed(self.file_label, 64),
            b"\x00" * 3,
        ])

    def _variable_record(self, type_code: int, name, label=None, missing=(), n_missing=None) -> bytes:
        n_missing = len(missing) if n_missing is None else n_missing
        out = struct.pack("<iiiii", 2, type_code, 1 if label is not None else 0, n_missing, 0)
        out += struct.pack("<i", 0) + _fixed(name, 8)
        if label is not None:
            raw = label.encode("utf-8") if isinstance(label, str) else label
            out += struct.pack("<i", len(raw)) + raw + b"\x00" * ((4 - len(raw) % 4) % 4)
        for value in missing:
            out += struct.pack("<d", value)
        return out

    def numeric(self, name, label=None, missing=(), missing_range=None) -> int:
        """Add a numeric variable; returns its 1-based slot index."""
        if missing_range is not None:
            values = list(missing_range) + list(missing)
            n_missing = -len(values)
        else:
            values, n_missing = list(missing), None
        self.records.append(self._variable_record(0, name, label, values, n_missing))
        self.slot_count += 1
        return self.slot_count

    def string(self, name, width: int, label=None) -> int:
        """Add a string variable plus its continuation records."""
        self.records.append(self._variable_record(width, name, label))
        index = self.slot_count + 1
        self.slot_count += 1
        for _ in range(math.ceil(width / 8) - 1):
            self.records.append(self._variable_record(-1, b""))
            self.slot_count += 1
        return index

    def value_labels(self, labels, slots, with_slot_list: bool = True) -> None:
        out = struct.pack("<ii", 3, len(labels))
        for code, label in labels.items():
            raw = label.encode("utf-8") if isinstance(label, str) else label
            body = bytes([len(raw)]) + raw
            body += b" " * ((8 - len(body) % 8) % 8)
            out += struct.pack("<d", code) + body
        if with_slot_list:
            out += struct.pack("<ii", 4, len(slots))
            out += b"".join(struct.pack("<i", s) for s in slots)
        self.records.append(out)

    def document(self, lines) -> None:
        out = struct.pack("<ii", 6, len(lines))
        out += b"".join(_fixed(line, 80) for line in lines)
        self.records.append(out)

    def extension(self, subtype: int, payload: bytes) -> None:
        self.records.append(struct.pack("<iiii", 7, subtype, 1, len(payload)) + payload)

    def raw(self, data: bytes) -> None:
        self.records.append(data)

    def build(self, terminate: bool = True) -> bytes:
        out = self.header() + b"".join(self.records)
        if terminate:
            out += struct.pack("<ii", 999, 0)
        return out


@pytest.fixture
def sav_builder():
    return SavBuilder()


@pytest.fixture
def s4_dictionary_bytes():
    """Dictionary with S4 (Yes/No), S5 and B1 (declared missing 99)."""
    builder = SavBuilder()
    s4 = builder.numeric("S4", "Do you own a car?")
    builder.numeric("S5", "Which brand?")
    b1 = builder.numeric("B1", "Likelihood to recommend", missing=(99.0,))
    builder.value_labels({1.0: "Yes", 2.0: "No"}, [s4])
    builder.value_labels({99.0: "Don't know"}, [b1])
    return builder.build()


@pytest.fixture
def car_questionnaire():
    return "\n".join([
        "SECTION A: SCREENING",
        "S4. Do you own a car?",
        "1. Yes",
        "2. No",
        "IF S4=1 ASK S5",
        "S5. Which brand?",
        "SECTION B: RECOMMENDATION",
        "B1. How likely are you to recommend us?",
        "Answer on a 1-10 scale",
    ])

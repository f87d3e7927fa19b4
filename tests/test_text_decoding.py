"""
Tests for label decoding and scale inference.
"""

from surveyaudit.scales import dense_run_range, find_ranges, infer_scale
from surveyaudit.text_decoding import decode_text, has_script_run


class TestDecodeText:
    def test_utf8(self):
        assert decode_text("Ձեր տարիքը".encode("utf-8")) == "Ձեր տարիքը"

    def test_truncated_utf8_tail(self):
        raw = "Привет".encode("utf-8")[:-1]
        assert decode_text(raw) == "Приве"

    def test_cyrillic_code_page(self):
        assert decode_text("Возраст".encode("cp1251")) == "Возраст"

    def test_western_code_page(self):
        assert decode_text("café".encode("cp1252")) == "café"

    def test_never_fails(self):
        assert isinstance(decode_text(bytes(range(128, 256))), str)


def test_script_run():
    assert has_script_run("Оцените по шкале")
    assert has_script_run("Գնահատեք")
    assert not has_script_run("cafй")
    assert not has_script_run("Rate it")


class TestInferScale:
    """Ranges count only with a cue, and within width bounds."""

    def test_english_cue(self):
        assert infer_scale("Answer on a 1-10 scale") == (1, 10)

    def test_rating_cue(self):
        assert infer_scale("Please rate from 0 – 5") == (0, 5)

    def test_cyrillic_cue(self):
        assert infer_scale("Оцените от 1-7") == (1, 7)

    def test_armenian_cue(self):
        assert infer_scale("Գնահատեք 1-5 սանդղակով") == (1, 5)

    def test_lone_range(self):
        assert infer_scale("1-5") == (1, 5)
        assert infer_scale("(0..10)") == (0, 10)

    def test_no_cue(self):
        assert infer_scale("Aged 18-34") is None

    def test_too_wide(self):
        assert infer_scale("Rate 1-100") is None

    def test_widest_range_wins(self):
        assert infer_scale("Rate 1-5, or on a 0-10 scale") == (0, 10)

    def test_descending_range_ignored(self):
        assert find_ranges("10-1 scale") == []


class TestDenseRun:
    def test_fills_gap(self):
        assert dense_run_range([1, 2, 3, 5]) == (1, 5)

    def test_short_run(self):
        assert dense_run_range([1, 2]) is None
        assert dense_run_range([1, 3, 5, 7]) is None

    def test_sparse_set(self):
        assert dense_run_range([1, 2, 3, 20]) is None

    def test_non_integers_ignored(self):
        assert dense_run_range([1.0, 2.0, 3.0, 2.5]) == (1, 3)

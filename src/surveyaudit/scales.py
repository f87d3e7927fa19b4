"""
Scale inference.

Questionnaires often label only the endpoints of a rating scale
("On a 1-10 scale, where 1 means ... and 10 means ..."). When such a range
is found, the full inclusive integer range becomes valid.

A range ``N-M`` counts as a scale only if one of these cues is present:
    - a run of two or more Armenian or Cyrillic letters in the text
    - English scale vocabulary (scale, point, rate, rating)
    - the range stands alone on a short line

and its width (M - N + 1) lies within the configured bounds.
"""

import re
from typing import Iterable, List, Optional, Tuple

from surveyaudit.text_decoding import has_script_run

_RANGE_RE = re.compile(r"(?<![\d.])(\d{1,3})\s*(?:[-–—]|\.\.)\s*(\d{1,3})(?![\d.])")
_SCALE_WORD_RE = re.compile(r"\b(scales?|points?|rate|rating|ratings)\b", re.IGNORECASE)
_LONE_RANGE_RE = re.compile(r"^[(\[]?\s*\d{1,3}\s*(?:[-–—]|\.\.)\s*\d{1,3}\s*[)\]]?[.:]?$")
# scale nouns only, in English, Russian and Armenian
_SCALE_NOUN_RE = re.compile(r"\b(?:scales?|points?|rating)\b|шкал|балл|սանդղակ", re.IGNORECASE)

SHORT_LINE_LENGTH = 15


def has_scale_cue(text: str) -> bool:
    """True if the text carries a script or vocabulary scale cue."""
    return has_script_run(text) or bool(_SCALE_WORD_RE.search(text))


def has_scale_word(text: str) -> bool:
    """True if the text names a scale, as in "1-10 scale" or "шкала 1-5"."""
    return bool(_SCALE_NOUN_RE.search(text))


def is_lone_range(text: str) -> bool:
    stripped = text.strip()
    return len(stripped) <= SHORT_LINE_LENGTH and bool(_LONE_RANGE_RE.match(stripped))


def find_ranges(text: str) -> List[Tuple[int, int]]:
    """All ascending ``N-M`` ranges in the text, in order of appearance."""
    out = []
    for match in _RANGE_RE.finditer(text):
        lo, hi = int(match.group(1)), int(match.group(2))
        if lo < hi:
            out.append((lo, hi))
    return out


def infer_scale(text: str, min_width: int = 2, max_width: int = 20) -> Optional[Tuple[int, int]]:
    """
    Infer a scale range from a piece of questionnaire text.

    Args:
        text: One line (or a label)
        min_width / max_width: Accepted inclusive widths

    Returns:
        (lo, hi) of the widest accepted range, or None
    """
    if not text:
        return None
    if not (has_scale_cue(text) or is_lone_range(text)):
        return None

    best = None
    for lo, hi in find_ranges(text):
        width = hi - lo + 1
        if not min_width <= width <= max_width:
            continue
        if best is None or width > best[1] - best[0] + 1:
            best = (lo, hi)
    return best


def dense_run_range(codes: Iterable[float], min_run: int = 3,
                    max_width: int = 20) -> Optional[Tuple[int, int]]:
    """
    Range implied by a dense set of integer codes.

    A code set is dense when it contains a contiguous run of at least
    `min_run` integers and covers at least half of its [min, max] span.
    Used to fill gaps in scales where only some points carry labels.
    """
    ints = sorted({int(c) for c in codes if float(c).is_integer()})
    if len(ints) < min_run:
        return None

    longest = run = 1
    for prev, cur in zip(ints, ints[1:]):
        run = run + 1 if cur == prev + 1 else 1
        longest = max(longest, run)
    if longest < min_run:
        return None

    lo, hi = ints[0], ints[-1]
    span = hi - lo + 1
    if span > max_width or len(ints) * 2 < span:
        return None
    return lo, hi

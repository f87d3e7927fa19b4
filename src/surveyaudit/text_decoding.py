"""
Decoding of string fields stored in the dictionary.

System files written by different SPSS versions and locales store labels
in UTF-8 or in a legacy 8-bit code page. The cascade is:

    1. strict UTF-8
    2. Cyrillic code page, accepted only if it produces real Cyrillic or
       Armenian words
    3. Western code page
    4. Latin-1 byte-to-codepoint mapping (never fails)
"""

import re

CYRILLIC_CODEC = "cp1251"
WESTERN_CODEC = "cp1252"

# A run of two or more letters from the Cyrillic or Armenian blocks.
_SCRIPT_RUN_RE = re.compile(r"[\u0400-\u04FF]{2,}|[\u0531-\u058F]{2,}")


def has_script_run(text: str) -> bool:
    """True if `text` holds at least one Cyrillic/Armenian letter run."""
    return bool(_SCRIPT_RUN_RE.search(text))


def _decode_utf8(raw: bytes):
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        # Labels are cut at a fixed byte length, which can split the last
        # multi-byte character. Only trust the cut when the rest of the
        # field already holds multi-byte characters.
        head = raw[:e.start]
        if (e.reason == "unexpected end of data" and len(raw) - e.start < 4
                and any(b >= 0x80 for b in head)):
            try:
                return head.decode("utf-8")
            except UnicodeDecodeError:
                return None
        return None


def decode_text(raw: bytes) -> str:
    """Decode a raw string field following the cascade above."""
    text = _decode_utf8(raw)
    if text is not None:
        return text

    try:
        text = raw.decode(CYRILLIC_CODEC)
    except UnicodeDecodeError:
        text = None
    if text is not None and has_script_run(text):
        return text

    try:
        return raw.decode(WESTERN_CODEC)
    except UnicodeDecodeError:
        return raw.decode("latin-1")

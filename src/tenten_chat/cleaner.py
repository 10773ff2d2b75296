"""Boundary normalization of finalized response text.

Upstream providers sometimes prepend or append stray numeric tokens.
The cleaner strips those and any non-semantic leading punctuation while
leaving Bengali, CJK and Arabic text intact.
"""

from __future__ import annotations

import re

_LEADING_DIGITS = re.compile(r"^[0-9\s]+")
_TRAILING_DIGITS = re.compile(r"[0-9\s]+$")

# Python's \w already covers most letters; the explicit ranges keep
# combining vowel signs and marks that \w does not match.
_SCRIPT_RANGES = (
    "\u0980-\u09ff"  # Bengali
    "\u0600-\u06ff"  # Arabic
    "\u0750-\u077f"  # Arabic supplement
    "\u3040-\u30ff"  # Hiragana / Katakana
    "\u3400-\u4dbf"  # CJK extension A
    "\u4e00-\u9fff"  # CJK unified ideographs
    "\uac00-\ud7af"  # Hangul
)

_LEADING_NOISE = re.compile(rf"^[^\w{_SCRIPT_RANGES}]")


def _clean_once(text: str) -> str:
    text = _LEADING_DIGITS.sub("", text)
    text = _TRAILING_DIGITS.sub("", text)
    return _LEADING_NOISE.sub("", text)


def clean_response(text: str | None) -> str:
    """Return *text* with boundary artifacts removed.

    Repeats until stable so that cleaning already-cleaned text is a no-op.
    """
    if not text:
        return ""
    previous = None
    while previous != text:
        previous = text
        text = _clean_once(text)
    return text

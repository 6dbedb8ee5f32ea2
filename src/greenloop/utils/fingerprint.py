"""Normalise failure output and derive stable fingerprints from it.

Two renderings of the same logical failure usually differ only in cosmetic
details: timestamps, line/column positions, commit hashes and the absolute
location of the checkout.  Those details are replaced with placeholders before
hashing so that a failure which survives a fix attempt is recognised as the
same failure.
"""

from __future__ import annotations

import hashlib
import re

__all__ = ["FINGERPRINT_LENGTH", "MAX_NORMALISED_LENGTH", "fingerprint", "normalize_error_text"]

FINGERPRINT_LENGTH = 16
MAX_NORMALISED_LENGTH = 500

_ISO_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[^Z\s]*Z?")
_CLOCK_TIME = re.compile(r"\d{2}:\d{2}:\d{2}(?:\.\d+)?")
_LINE_COLUMN = re.compile(r":\d+:\d+")
_LINE_WORD = re.compile(r"\bline \d+", re.IGNORECASE)
_COLUMN_WORD = re.compile(r"\bcolumn \d+", re.IGNORECASE)
_HEX_SHA = re.compile(r"\b[0-9a-f]{7,40}\b")
_POSIX_PATH = re.compile(r"(?<![\w.~])/(?:[^\s/:'\"()]+/)+([^\s/:'\"()]+)")
_WINDOWS_PATH = re.compile(r"\b[A-Za-z]:\\(?:[^\s\\:'\"()]+\\)+([^\s\\:'\"()]+)")
_WHITESPACE = re.compile(r"\s+")


def normalize_error_text(raw_text: str) -> str:
    """Return ``raw_text`` with volatile details replaced by placeholders."""

    text = (raw_text or "").strip()
    text = _ISO_TIMESTAMP.sub("TIMESTAMP", text)
    text = _CLOCK_TIME.sub("TIME", text)
    text = _LINE_COLUMN.sub(":*:*", text)
    text = _LINE_WORD.sub("line *", text)
    text = _COLUMN_WORD.sub("column *", text)
    text = _HEX_SHA.sub("SHA", text)
    text = _POSIX_PATH.sub(r"\1", text)
    text = _WINDOWS_PATH.sub(r"\1", text)
    text = _WHITESPACE.sub(" ", text)
    return text[:MAX_NORMALISED_LENGTH]


def fingerprint(raw_text: str) -> str:
    """Return a 16 hex digit fingerprint of the normalised failure text."""

    normalised = normalize_error_text(raw_text)
    digest = hashlib.sha256(normalised.encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]

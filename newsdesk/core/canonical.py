"""URL and text canonicalization plus content fingerprinting."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlsplit, urlunsplit

# Keep CJK unified ideographs, ASCII letters and digits only
_NON_CANONICAL = re.compile(r"[^\u4e00-\u9fa5a-z0-9]")


def normalize_url(url: str) -> str:
    """Normalize URL for duplicate comparison.

    - Remove query string and fragment
    - Convert to lowercase
    - Unparseable URLs fall back to a lowercased copy of the input
    """
    try:
        parsed = urlsplit(url.strip())
    except ValueError:
        return url.lower()
    if not parsed.scheme or not parsed.netloc:
        return url.lower()
    return urlunsplit((parsed.scheme, parsed.netloc, parsed.path, "", "")).lower()


def canonicalize_text(text: str) -> str:
    """Lowercase and strip everything except CJK characters, letters and digits.

    Whitespace and punctuation are dropped entirely so that formatting
    differences never defeat a comparison.
    """
    if not text:
        return ""
    return _NON_CANONICAL.sub("", text.lower())


def fingerprint(text: str) -> str:
    """SHA-256 hex digest of the canonicalized text."""
    return hashlib.sha256(canonicalize_text(text).encode("utf-8")).hexdigest()

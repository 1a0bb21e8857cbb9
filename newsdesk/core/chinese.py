"""Simplified to Traditional Chinese conversion for rewritten text.

Providers are asked for Traditional Chinese but do not always comply, so
every completion passes through `ensure_traditional` before it is used.
Conversion uses OpenCC's Taiwan-standard profile (s2tw).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache

from opencc import OpenCC

CONVERSION_PROFILE = "s2tw"


@dataclass(frozen=True)
class ConversionResult:
    text: str
    simplified_chars: list[str] = field(default_factory=list)

    @property
    def has_simplified(self) -> bool:
        return bool(self.simplified_chars)


@lru_cache(maxsize=1)
def _converter() -> OpenCC:
    return OpenCC(CONVERSION_PROFILE)


def to_traditional(text: str) -> str:
    if not text:
        return text
    return _converter().convert(text)


def ensure_traditional(text: str) -> ConversionResult:
    """Convert `text` to Traditional Chinese and report which characters changed."""
    converted = to_traditional(text)
    if converted == text:
        return ConversionResult(text=text)

    # Characters of the input that no longer appear after conversion
    changed = [ch for ch in dict.fromkeys(text) if ch not in converted]
    return ConversionResult(text=converted, simplified_chars=changed)

"""
TokenShrinker - Content fingerprints and token estimates.

Fingerprints decide whether a file changed since it was last summarized;
token estimates decide whether it is large enough to summarize at all.
"""

from __future__ import annotations

import hashlib
import math

CHARS_PER_TOKEN = 4
COMPRESSION_TARGET = 0.5
MIN_TARGET_TOKENS = 20


def fingerprint(content: str) -> str:
    """SHA-1 hex digest of the UTF-8 encoded content."""
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    # Heuristic: ~4 chars/token, rounded up.
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def target_tokens(input_tokens: int) -> int:
    """Output budget for a compression call: half the input, never below 20."""
    return max(MIN_TARGET_TOKENS, math.floor(input_tokens * COMPRESSION_TARGET))

"""
Deterministic hashing for dataset fingerprints.

Examples:
    >>> compute_hash("AL_Extract", 1200, 19)
    '5f0c...'  # 32-char hex string (128 bits)
    >>> compute_hash("a", "b") != compute_hash("b", "a")
    True

Tags:
    hashing, fingerprint, sheetspine
"""

import hashlib
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute a deterministic hash from values.

    Values are joined with ``|`` after ``str()`` conversion and hashed with
    SHA-256; the hex digest is truncated to ``length`` characters.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]

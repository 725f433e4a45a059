"""Identifier normalization for remote resources.

Collection ids are kebab-cased DSL names; index keys are sanitized to the
remote service's key alphabet and bounded to MAX_INDEX_KEY_LENGTH characters.
"""

import hashlib
import re
from collections.abc import Sequence
from typing import Optional

MAX_INDEX_KEY_LENGTH = 36

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[\s_]+")
_LEADING_JUNK = re.compile(r"^[^A-Za-z0-9]+")
_INVALID_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def kebab_case(name: str) -> str:
    """Convert a mixed-case name to a lowercase, hyphen-separated id.

    Examples:
        >>> kebab_case("UserProfile")
        'user-profile'
        >>> kebab_case("audit_log entries")
        'audit-log-entries'
    """
    value = _CAMEL_BOUNDARY.sub(r"\1-\2", name)
    value = _SEPARATORS.sub("-", value)
    return value.lower()


def _hashed_key(value: str) -> str:
    digest = hashlib.md5(value.encode("utf-8")).hexdigest()
    return f"idx_{digest[:28]}"


def sanitize_index_key(raw_key: str) -> str:
    """Sanitize an index key.

    Strips one leading run of non-alphanumeric characters, replaces anything
    outside [A-Za-z0-9._-] with "_", and falls back to a hashed key when the
    result is longer than MAX_INDEX_KEY_LENGTH (or empty).
    """
    key = _LEADING_JUNK.sub("", raw_key, count=1)
    key = _INVALID_KEY_CHARS.sub("_", key)

    if not key:
        return _hashed_key(raw_key)
    if len(key) > MAX_INDEX_KEY_LENGTH:
        return _hashed_key(key)
    return key


def derive_index_key(fields: Sequence[str], name: Optional[str] = None) -> str:
    """Effective key for an index: explicit name or idx_<fields>, sanitized."""
    raw = name or f"idx_{'_'.join(fields)}"
    return sanitize_index_key(raw)

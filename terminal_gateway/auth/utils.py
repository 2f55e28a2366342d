"""
Authentication utilities for identity extraction and log redaction.

This module handles:
- Resolving identity attributes from nested, provider-specific payloads
- Masking credential-shaped values before they reach the logs
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple


# =============================================================================
# Payload Field Resolution
# =============================================================================

FieldPath = Tuple[str, ...]


def get_path(payload: Any, path: FieldPath) -> Any:
    """
    Walk a nested mapping along ``path``.

    Args:
        payload: Decoded JSON payload
        path: Sequence of keys, e.g. ("oa", "uid")

    Returns:
        The value found, or None if any step is missing or not a mapping
    """
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def resolve_field(payload: Any, candidates: Sequence[FieldPath]) -> Optional[str]:
    """
    Return the first non-empty value among candidate paths, as a string.

    Userinfo endpoints differ in where they put the same attribute, so callers
    list every known location in order of preference.

    Args:
        payload: Decoded userinfo payload
        candidates: Ordered list of field paths to try

    Returns:
        Stripped string value, or None if no candidate resolves
    """
    for path in candidates:
        value = get_path(payload, path)
        if value is None or isinstance(value, (Mapping, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


# =============================================================================
# Redaction Helpers
# =============================================================================

SENSITIVE_KEYS = (
    "secret",
    "password",
    "token",
    "code",
    "authorization",
    "cookie",
)

MASK = "****"


def mask_secret(value: Optional[str], visible: int = 2) -> str:
    """
    Partially reveal a credential-shaped string.

    Args:
        value: Secret to mask
        visible: Characters kept at each end

    Returns:
        ``ab****yz`` style string; short values are fully masked

    Example:
        >>> mask_secret("abcdef123456xyz")
        'ab****yz'
    """
    if not value:
        return MASK
    if len(value) <= visible * 2 + 2:
        return MASK
    return f"{value[:visible]}{MASK}{value[-visible:]}"


def is_sensitive_key(key: str, patterns: Iterable[str] = SENSITIVE_KEYS) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in patterns)


def redact(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Copy a mapping with sensitive values masked, recursing into nested mappings.

    Args:
        data: Request body, headers or config to be logged

    Returns:
        New dict safe to pass as logging ``extra``
    """
    result: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            result[key] = redact(value)
        elif is_sensitive_key(str(key)):
            result[key] = mask_secret(None if value is None else str(value))
        else:
            result[key] = value
    return result

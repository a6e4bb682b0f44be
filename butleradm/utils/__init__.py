"""Utility functions and helpers for the butleradm application."""
from typing import Any, Iterable


def redact_sensitive_data(data: Any, redact_keys: Iterable[str]) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information
        redact_keys: Key fragments (case-insensitive) whose values are hidden

    Returns:
        Data with sensitive values redacted
    """
    redact_keys = tuple(k.lower() for k in redact_keys)
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if v and any(
                redact_key in str(k).lower()
                for redact_key in redact_keys
            ) else redact_sensitive_data(v, redact_keys)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, redact_keys) for item in data]
    return data

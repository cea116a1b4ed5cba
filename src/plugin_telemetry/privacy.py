"""Privacy filtering and PII scrubbing for event properties.

Plugins hand arbitrary property mappings to the client. Before an event is
queued or sent, values under sensitive-looking keys are redacted so that
credentials or personal data never reach the analytics backend:
- Key-based redaction (password, token, email, ...)
- Optional pattern-based redaction inside string values
- A Sentry before_send filter for the Sentry delivery adapter
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Set

REDACTED = "[REDACTED]"

# Sensitive field names that should have their values redacted
PII_DENYLIST: Set[str] = {
    # Authentication
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "bearer",
    "credential",
    # Session/cookies
    "cookie",
    "session_id",
    "sessionid",
    "csrf",
    # Personal information
    "email",
    "e_mail",
    "phone",
    "telephone",
    "mobile",
    "street",
    "zipcode",
    "postal",
    "ssn",
    "social_security",
    "tax_id",
    # Financial
    "credit_card",
    "creditcard",
    "card_number",
    "cvv",
    "cvc",
    "bank_account",
    "routing_number",
    # Database
    "database_url",
    "db_password",
    "connection_string",
    # Keys
    "private_key",
    "encryption_key",
    "signing_key",
}

# Patterns for detecting sensitive data in string values
SENSITIVE_PATTERNS = [
    # Email addresses
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
    # Credit card numbers (basic pattern)
    re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
    # Bearer tokens
    re.compile(r"Bearer\s+[A-Za-z0-9._-]+"),
]

# Keys added by the client itself. They are never redacted.
RESERVED_KEYS: Set[str] = {"__identify"}


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data.

    Args:
        key: The key/field name to check.

    Returns:
        True if the key suggests sensitive data.
    """
    key_lower = key.lower().replace("-", "_")
    return any(denylist_key in key_lower for denylist_key in PII_DENYLIST)


def scrub_string(value: str) -> str:
    """Scrub sensitive patterns from a string value."""
    for pattern in SENSITIVE_PATTERNS:
        value = pattern.sub(REDACTED, value)
    return value


def scrub_dict(
    data: Mapping[str, Any],
    deep: bool = True,
    scrub_values: bool = False,
) -> Dict[str, Any]:
    """Scrub sensitive data from a mapping.

    Args:
        data: The mapping to scrub.
        deep: Whether to recursively scrub nested dictionaries and lists.
        scrub_values: Whether to also scan string values for sensitive patterns.

    Returns:
        A new dictionary with sensitive data redacted. Key order is kept.
    """
    result = {}

    for key, value in data.items():
        if key in RESERVED_KEYS:
            result[key] = value
        elif is_sensitive_key(str(key)):
            result[key] = REDACTED
        elif isinstance(value, Mapping) and deep:
            result[key] = scrub_dict(value, deep=True, scrub_values=scrub_values)
        elif isinstance(value, list) and deep:
            result[key] = scrub_list(value, scrub_values=scrub_values)
        elif isinstance(value, str) and scrub_values:
            result[key] = scrub_string(value)
        else:
            result[key] = value

    return result


def scrub_list(data: List[Any], scrub_values: bool = False) -> List[Any]:
    """Scrub sensitive data from a list."""
    result = []

    for item in data:
        if isinstance(item, Mapping):
            result.append(scrub_dict(item, deep=True, scrub_values=scrub_values))
        elif isinstance(item, list):
            result.append(scrub_list(item, scrub_values=scrub_values))
        elif isinstance(item, str) and scrub_values:
            result.append(scrub_string(item))
        else:
            result.append(item)

    return result


def create_before_send_filter():
    """Create a before_send filter function for Sentry.

    Returns:
        A function suitable for use as Sentry's before_send callback.
    """
    from sentry_sdk.types import Event, Hint

    def before_send(event: Event, hint: Hint) -> Optional[Event]:
        """Scrub event extras and tags before they go to Sentry/GlitchTip."""
        if "extra" in event and isinstance(event["extra"], dict):
            event["extra"] = scrub_dict(event["extra"], deep=True, scrub_values=True)

        if "tags" in event and isinstance(event["tags"], dict):
            event["tags"] = scrub_dict(event["tags"], deep=False, scrub_values=False)

        return event

    return before_send

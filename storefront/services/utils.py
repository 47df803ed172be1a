"""Shared helpers for services."""

import re

# Simple email regex: not exhaustive, just a sanity check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email):
    """Trimmed, lowercased form used for storage and lookups."""
    return (email or "").strip().lower()


def is_valid_email(email):
    return bool(email) and EMAIL_RE.match(email) is not None

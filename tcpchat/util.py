from __future__ import annotations

import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_text(value) -> str:
    """Collapse whitespace runs to single spaces and trim both ends.

    Idempotent. Non-string input normalizes to the empty string.
    """
    if not isinstance(value, str):
        return ""
    return " ".join(value.split())


def split_verb(line: str) -> tuple[str, list[str]]:
    """Split a command line into an upper-cased verb and its argument tokens."""
    parts = line.split()
    if not parts:
        return "", []
    return parts[0].upper(), parts[1:]

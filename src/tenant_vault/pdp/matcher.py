"""Pattern matching for capability rules and identity bindings.

Only two pattern forms exist, to keep every matching decision auditable:
- Exact: "secret/alpha/app-config" matches only that value
- Trailing wildcard: "secret/alpha/*" matches any value starting with "secret/alpha/"

There is no regex, no "?" and no mid-pattern "*".
"""

from __future__ import annotations

__all__ = [
    "InvalidPathError",
    "match_path_pattern",
    "match_prefix_pattern",
    "normalize_path",
]


class InvalidPathError(ValueError):
    """Path contains empty, "." or ".." segments."""


def normalize_path(path: str) -> str:
    """Normalize a request path for policy matching.

    Strips leading and trailing slashes. Rejects paths whose segments could be
    interpreted as traversal, so a literal prefix check cannot be bypassed.

    Args:
        path: Raw request path (e.g., "/secret/alpha/app-config/").

    Returns:
        Normalized path (e.g., "secret/alpha/app-config").

    Raises:
        InvalidPathError: If the path is empty or has empty, "." or ".." segments.
    """
    stripped = path.strip().strip("/")
    if not stripped:
        raise InvalidPathError("Path cannot be empty")
    for segment in stripped.split("/"):
        if segment in ("", ".", ".."):
            raise InvalidPathError(f"Invalid path segment in {path!r}")
    return stripped


def match_prefix_pattern(pattern: str, value: str | None) -> bool:
    """Match a value against an exact or trailing-wildcard pattern.

    Case-sensitive. Used for subject patterns ("ns:alpha:*") and, after
    normalization, for paths.

    Args:
        pattern: Exact value or literal prefix followed by "*".
        value: Value to match against.

    Returns:
        True if value matches pattern, False otherwise.
        Returns False if value is None or either side is empty.
    """
    if value is None:
        return False

    if not pattern or not value:
        return False

    if pattern.endswith("*"):
        return value.startswith(pattern[:-1])
    return value == pattern


def match_path_pattern(pattern: str, path: str | None) -> bool:
    """Match a path against a capability rule pattern.

    Leading and trailing slashes on both sides are ignored, so "secret/alpha/*"
    matches "/secret/alpha/app-config" and "secret/alpha" matches "secret/alpha/".

    Args:
        pattern: Rule pattern (e.g., "secret/alpha/*").
        path: Path to match against.

    Returns:
        True if path matches pattern, False otherwise.
        Returns False if path is None.
    """
    if path is None:
        return False

    pattern = pattern.strip("/") if pattern else ""
    path = path.strip("/") if path else ""
    return match_prefix_pattern(pattern, path)

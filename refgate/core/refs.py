"""Git ref and commit-sha helpers shared by the gating services."""

from __future__ import annotations

import re
from functools import lru_cache

# Sentinel sha: the ref does not exist on this side of the update.
ZERO_SHA = "0" * 40

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"

SHA_PATTERN = re.compile(r"^[0-9a-fA-F]{4,40}$")


def is_valid_sha(sha: str) -> bool:
    """Return True if *sha* looks like a (possibly abbreviated) commit hash."""
    return bool(SHA_PATTERN.match(sha or ""))


def is_zero_sha(sha: str) -> bool:
    return sha == ZERO_SHA


def extract_tag_name(ref_name: str) -> str | None:
    """``refs/tags/v1.0`` -> ``v1.0``; None for anything that is not a tag ref."""
    if ref_name.startswith(TAG_PREFIX):
        return ref_name[len(TAG_PREFIX) :]
    return None


def extract_branch_name(ref_name: str) -> str | None:
    """``refs/heads/main`` -> ``main``; None for anything that is not a branch ref."""
    if ref_name.startswith(BRANCH_PREFIX):
        return ref_name[len(BRANCH_PREFIX) :]
    return None


@lru_cache(maxsize=512)
def compile_ref_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a glob pattern into an anchored regex.

    ``*`` matches any sequence (including empty), ``?`` exactly one
    character; everything else is matched literally.
    """
    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def matches_ref_pattern(name: str, pattern: str) -> bool:
    """Return True if the ref *name* matches the glob *pattern*.

    Usage::

        matches_ref_pattern("v2.0.0", "v*")   # True
        matches_ref_pattern("v12", "v?")      # False
    """
    if name == pattern:
        return True
    return compile_ref_pattern(pattern).match(name) is not None


def pattern_specificity(pattern: str) -> tuple[int, int]:
    """Sort key ranking narrower patterns first: fewer wildcards, then longer."""
    wildcards = pattern.count("*") + pattern.count("?")
    return (wildcards, -len(pattern))

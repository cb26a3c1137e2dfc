from __future__ import annotations

import re
from collections.abc import Iterable

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_RE = re.compile(r"['\"!@#$%^&*()+={}\[\]|\\:;,.<>?/`~]")
_SEPARATOR_RE = re.compile(r"[-_]+")

MIN_GENERATED_TAG_LENGTH = 2
MAX_GENERATED_TAG_LENGTH = 50


def _clean(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip().casefold()


def normalize_tags(raw_tags: Iterable[str] | None) -> list[str]:
    """Trim, case-fold and de-duplicate tag names, keeping first occurrences."""
    if not raw_tags:
        return []

    seen: set[str] = set()
    names: list[str] = []
    for raw in raw_tags:
        if raw is None:
            continue
        name = _clean(str(raw))
        if not name or name in seen:
            continue
        seen.add(name)
        names.append(name)
    return names


def parse_tags(raw: str | list | None) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        return normalize_tags(str(item) for item in raw if item is not None)
    tokens = str(raw).replace(";", ",").split(",")
    return normalize_tags(tokens)


def _similar(first: str, second: str) -> bool:
    return first == second or first in second or second in first


def process_generated_tags(raw_tags: Iterable[str] | None) -> list[str]:
    """Clean up model-produced tags.

    Stricter than :func:`normalize_tags`: punctuation is removed, dashes and
    underscores become spaces, implausibly short or long names are dropped,
    and when one tag contains another only the more specific one is kept.
    """
    cleaned: list[str] = []
    for raw in raw_tags or []:
        if not isinstance(raw, str):
            continue
        stripped = raw.strip()
        if not MIN_GENERATED_TAG_LENGTH <= len(stripped) <= MAX_GENERATED_TAG_LENGTH:
            continue
        value = _PUNCTUATION_RE.sub("", stripped.casefold())
        value = _SEPARATOR_RE.sub(" ", value)
        cleaned.append(value)

    result: list[str] = []
    for name in normalize_tags(cleaned):
        match = next(
            (index for index, kept in enumerate(result) if _similar(kept, name)),
            None,
        )
        if match is None:
            result.append(name)
        elif len(name) > len(result[match]):
            result[match] = name
    return result

"""Keyword rule table — which resolution rules govern a tagged roll."""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_KEYWORD = "default"


@dataclass(frozen=True)
class KeywordRule:
    allow_karma: bool = True
    allow_confirm: bool = True
    critical_threshold: int = 6  # minimum face counted as a critical
    ones_always_fail: bool = False
    allow_burn_ones: bool = False
    roll_power: bool = False


KEYWORD_RULES: dict[str, KeywordRule] = {
    "default": KeywordRule(),
    "magick": KeywordRule(
        allow_confirm=False,
        ones_always_fail=True,
        allow_burn_ones=True,
        roll_power=True,
    ),
    "miracle": KeywordRule(
        allow_karma=False,
        allow_confirm=False,
        ones_always_fail=True,
        roll_power=True,
    ),
    "attack": KeywordRule(),
    "brutal": KeywordRule(critical_threshold=5),
    "fliptoffate": KeywordRule(allow_karma=False, allow_confirm=False, critical_threshold=4),
    "anythingbut1": KeywordRule(allow_karma=False, allow_confirm=False, critical_threshold=2),
    "target3": KeywordRule(allow_confirm=False, critical_threshold=3),
    "target4": KeywordRule(allow_confirm=False, critical_threshold=4),
    "target5": KeywordRule(allow_confirm=False, critical_threshold=5),
    "target6": KeywordRule(allow_confirm=False, critical_threshold=6),
}

_HASH_TAG = re.compile(r"#([A-Za-z0-9_-]+)")
_KNOWN_WORDS = {
    key: re.compile(rf"\b{re.escape(key)}\b")
    for key in KEYWORD_RULES
    if key != DEFAULT_KEYWORD
}


def resolve_keyword_rule(keyword: str | None) -> KeywordRule:
    """Return the rule for a keyword, falling back to ``default``."""
    return KEYWORD_RULES.get((keyword or "").lower(), KEYWORD_RULES[DEFAULT_KEYWORD])


def extract_keyword(text: str | None) -> str | None:
    """Pull a keyword out of free text.

    A ``#word`` token wins (lower-cased, known or not). Without one, a bare
    known keyword appearing as a whole word is accepted. Returns ``None`` when
    neither is present.
    """
    if not text:
        return None
    m = _HASH_TAG.search(text)
    if m:
        return m.group(1).lower()
    lowered = text.lower()
    for key, pattern in _KNOWN_WORDS.items():
        if pattern.search(lowered):
            return key
    return None


def first_keyword(*sources: str | None) -> str:
    """Return the keyword from the first source that yields one, else ``default``."""
    for src in sources:
        keyword = extract_keyword(src)
        if keyword:
            return keyword
    return DEFAULT_KEYWORD

"""Keyword tables that drive page sequencing and call-to-action tagging.

The tables are plain data so they can be swapped per deployment; the
functions only walk them in order and take the first match.
"""
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

PAGE_TYPES: Tuple[str, ...] = (
    "login",
    "register",
    "home",
    "features",
    "about",
    "contact",
    "detail",
    "get_started",
)

DEFAULT_PAGE = "detail"
HOME_PAGE = "home"

# Fewest pages a project sequence is padded to.
MIN_PAGES = 3
# Upper bound on pages a project may produce, inferred pages included.
MAX_PAGES = 10
# Unresolved calls-to-action tolerated before another detail page is inferred.
CTA_MARGIN = 1

# (keywords, page type, placement) evaluated in order against the description.
PageRule = Tuple[Tuple[str, ...], str, str]
PAGE_SEQUENCE_RULES: Tuple[PageRule, ...] = (
    (("login", "auth", "sign in", "signin"), "login", "prepend"),
    (("feature",), "features", "append"),
    (("about",), "about", "append"),
    (("contact",), "contact", "append"),
)

# (keywords, action) evaluated in order against an element's visible text.
ActionRule = Tuple[Tuple[str, ...], str]
ACTION_RULES: Tuple[ActionRule, ...] = (
    (("login", "sign in"), "login"),
    (("sign up", "register"), "register"),
    (("contact", "reach"), "contact"),
    (("learn", "more"), "detail"),
    (("start", "begin"), "get_started"),
    (("feature",), "features"),
    (("about",), "about"),
)
DEFAULT_ACTION = "detail"


def _matches(text: str, keywords: Sequence[str]) -> bool:
    return any(k in text for k in keywords)


def infer_page_sequence(
    description: Optional[str],
    rules: Sequence[PageRule] = PAGE_SEQUENCE_RULES,
    min_pages: int = MIN_PAGES,
) -> List[str]:
    """Derive the default page sequence for a project description.

    Home is always present; matching rules prepend or append their page
    type, and the result is padded with detail pages up to ``min_pages``.
    """
    text = (description or "").lower()
    head: List[str] = []
    tail: List[str] = []
    for keywords, page_type, placement in rules:
        if not _matches(text, keywords):
            continue
        target = head if placement == "prepend" else tail
        if page_type not in head and page_type not in tail:
            target.append(page_type)
    sequence = head + [HOME_PAGE] + tail
    while len(sequence) < min_pages:
        sequence.append(DEFAULT_PAGE)
    return sequence


def infer_action(text: Optional[str], rules: Sequence[ActionRule] = ACTION_RULES) -> str:
    lowered = (text or "").lower()
    for keywords, action in rules:
        if _matches(lowered, keywords):
            return action
    return DEFAULT_ACTION

"""Click and count decisions for reward buttons.

The rewards page does not say reliably whether a reward is still available,
so every button is judged twice: once before clicking (should it be clicked,
and would the pre-click state count) and once after (did the page confirm the
claim).  Clicking and counting are kept as separate predicates; an item is
counted only when both the pre-click and post-click checks agree.

Everything here is pure and synchronous.
"""

import re
from typing import Optional

ALREADY_CLAIMED_INDICATORS = (
    "claimed",
    "already",
    "collected",
    "✓",
    "disabled",
    "greyed out",
    "unavailable",
    "completed",
)

KNOWN_ITEM_LABELS = ("Daily Reward", "Free Daily Cue Piece")
MAX_LABEL_LENGTH = 50

# Login responses meaning the website does not know the account id
INVALID_ACCOUNT_INDICATORS = (
    "invalid unique id",
    "invalid id",
    "user not found",
    "user not valid",
    "banned",
)

_LABEL_BEFORE_MARKER = re.compile(
    r"(Daily Reward|Free Daily Cue Piece|[\w\s]+?)\s*(?:CLAIMED|FREE|GET)",
    re.IGNORECASE,
)


def has_claimed_indicator(text: Optional[str]) -> bool:
    """True if *text* contains any already-claimed indicator (case-insensitive)."""
    if not text:
        return False
    lowered = text.lower()
    return any(indicator in lowered for indicator in ALREADY_CLAIMED_INDICATORS)


def has_invalid_account_indicator(text: Optional[str]) -> bool:
    """True if page *text* shows the website rejecting an account id."""
    if not text:
        return False
    lowered = text.lower()
    return any(indicator in lowered for indicator in INVALID_ACCOUNT_INDICATORS)


def should_click(text: Optional[str], enabled: bool) -> bool:
    """Step 1: click only enabled buttons without a claimed indicator."""
    if not enabled:
        return False
    return not has_claimed_indicator(text)


def should_count_pre_click(text: Optional[str]) -> bool:
    """Step 2: the pre-click label must not already read as claimed."""
    return not has_claimed_indicator(text)


def should_count_post_click(
    button_still_present: bool,
    enabled_after_click: bool,
    text_after_click: Optional[str],
) -> bool:
    """Step 3: judge the button state after clicking.

    A button that became disabled, or whose text now reads as claimed, is
    evidence the reward was already gone when we clicked.  A button that
    disappeared from the page gives no confirmation and is not counted.
    """
    if not button_still_present:
        return False
    if not enabled_after_click:
        return False
    return not has_claimed_indicator(text_after_click)


def is_countable(pre_click: bool, post_click: bool) -> bool:
    return pre_click and post_click


def extract_item_label(
    container_text: Optional[str], fallback: str = "Unknown Item"
) -> str:
    """Derive a reward label from the text of the card around its button.

    Order of preference: a known label anywhere in the text, the words
    preceding a FREE/CLAIMED/GET marker, the first 50 characters, and
    finally *fallback*.

    Args:
        container_text: Inner text of the reward card, may be ``None``.
        fallback: Label used when the text yields nothing.

    Returns:
        A non-empty label.
    """
    text = " ".join((container_text or "").split())
    if not text:
        return fallback

    lowered = text.lower()
    for label in KNOWN_ITEM_LABELS:
        if label.lower() in lowered:
            return label

    match = _LABEL_BEFORE_MARKER.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    if len(text) > MAX_LABEL_LENGTH:
        return text[:MAX_LABEL_LENGTH] + "..."
    return text

"""Turn free-form suggestion text into activity cards.

Tiers are tried in order and a tier only runs when every earlier tier
produced no cards:

1. ``Activity N: Title`` heading lines
2. numbered (``1.``) or dashed (``-``) list items
3. blank-line separated paragraphs, first sentence as title
4. a single generic card holding the first 200 characters
"""

from __future__ import annotations

import re
from typing import Iterable

from models import ActivityCard

MAX_CARDS = 6
FALLBACK_TITLE = "Creative Activity"
FALLBACK_LIMIT = 200

_ACTIVITY_RE = re.compile(r"^Activity\s+\d+:\s*(.+)")
_NUMBERED_RE = re.compile(r"^\d+\.\s*(.+)")
_DASHED_RE = re.compile(r"^-\s*(.+)")
_TITLE_PATTERNS = (_ACTIVITY_RE, _NUMBERED_RE, _DASHED_RE)

_BOLD_RE = re.compile(r"(\*\*|__)(.+?)\1")
_ITALIC_RE = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])")
_HEADER_RE = re.compile(r"^\s{0,3}#{1,6}\s*")
_BULLET_RE = re.compile(r"^\s*[*•]\s+")
_EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\U00002600-\U000027BF"
    "\U00002B00-\U00002BFF"
    "\U0000FE00-\U0000FE0F"
    "\U0000200D"
    "\U000020E3"
    "]+"
)
_SPACES_RE = re.compile(r"[ \t]+")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")

_ICON_KEYWORDS = [
    (("spy", "find", "look"), "\U0001F441️"),
    (("color", "paint"), "\U0001F3A8"),
    (("count", "number"), "\U0001F522"),
    (("story", "tell"), "\U0001F4D6"),
    (("move", "dance"), "\U0001F483"),
    (("sound", "music"), "\U0001F3B5"),
    (("draw", "create"), "✏️"),
    (("missing", "imagine"), "❓"),
]
DEFAULT_ICON = "\U0001F31F"


def clean_text(raw_text: str) -> str:
    """Drop emphasis markup and emoji, line by line.

    Header lines are dropped, except a header that is itself a card title
    (``## Activity 1: ...``), which keeps its text without the marker.
    """
    lines = []
    for line in raw_text.replace("\r\n", "\n").split("\n"):
        line, headers = _HEADER_RE.subn("", _EMOJI_RE.sub("", line))
        line = _BOLD_RE.sub(r"\2", line)
        line = _ITALIC_RE.sub(r"\1", line)
        line = _BULLET_RE.sub("- ", line)
        line = _SPACES_RE.sub(" ", line).strip()
        if headers and not any(p.match(line) for p in _TITLE_PATTERNS):
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def _accumulate(lines: Iterable[str], patterns: tuple[re.Pattern[str], ...]) -> list[ActivityCard]:
    cards: list[ActivityCard] = []
    title: str | None = None
    description: list[str] = []
    for line in lines:
        match = next((m for m in (p.match(line) for p in patterns) if m), None)
        if match:
            if title is not None:
                cards.append(ActivityCard(title=title, description=" ".join(description)))
            title = match.group(1).strip()
            description = []
        elif title is not None:
            description.append(line)
    if title is not None:
        cards.append(ActivityCard(title=title, description=" ".join(description)))
    return cards


def _non_blank_lines(text: str) -> list[str]:
    return [line for line in text.split("\n") if line.strip()]


def parse_activity_headings(text: str) -> list[ActivityCard]:
    return _accumulate(_non_blank_lines(text), (_ACTIVITY_RE,))


def parse_list_items(text: str) -> list[ActivityCard]:
    return _accumulate(_non_blank_lines(text), (_NUMBERED_RE, _DASHED_RE))


def split_paragraphs(text: str) -> list[str]:
    """Blank-line delimited paragraphs; a single undivided block is not one."""
    blocks = [" ".join(block.split()) for block in _PARAGRAPH_RE.split(text)]
    blocks = [block for block in blocks if block]
    return blocks if len(blocks) > 1 else []


def parse_paragraphs(text: str) -> list[ActivityCard]:
    cards = []
    for paragraph in split_paragraphs(text):
        head, sep, rest = paragraph.partition(". ")
        title = head.rstrip(".:").strip()
        if not title:
            continue
        cards.append(ActivityCard(title=title, description=rest.strip() if sep else ""))
    return cards


def fallback_card(text: str) -> ActivityCard:
    flat = " ".join(text.split())
    description = flat[:FALLBACK_LIMIT]
    if len(flat) > FALLBACK_LIMIT:
        description += "..."
    return ActivityCard(title=FALLBACK_TITLE, description=description)


def parse(raw_text: str) -> list[ActivityCard]:
    text = clean_text(raw_text or "")
    for tier in (parse_activity_headings, parse_list_items, parse_paragraphs):
        cards = tier(text)
        if cards:
            return cards[:MAX_CARDS]
    return [fallback_card(text)]


def activity_icon(title: str) -> str:
    low = title.lower()
    for keywords, icon in _ICON_KEYWORDS:
        if any(word in low for word in keywords):
            return icon
    return DEFAULT_ICON

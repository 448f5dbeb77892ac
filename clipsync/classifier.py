"""Content categorization for clipboard captures.

Pure functions only: the same text always yields the same type, tags and
preview.
"""

import re
from typing import List, Tuple

from clipsync.protocols import ValidationError
from clipsync.types import ContentType

PREVIEW_LENGTH = 100
LONG_THRESHOLD = 500
SHORT_THRESHOLD = 50

URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)
EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
PHONE_PATTERN = re.compile(r"\+?[0-9\s\-()]+")
DATE_PATTERN = re.compile(r"[0-9]{4}[-/][0-9]{2}[-/][0-9]{2}")

# Checked in order, anchored at the start of the text.
CODE_PATTERNS = [
    re.compile(r"\s*<[^>]+>"),  # HTML tag
    re.compile(r"\s*\{[\s\S]*\}\s*$"),  # JSON-like block
    re.compile(r"\s*function\s+\w+"),
    re.compile(r"\s*def\s+\w+"),
    re.compile(r"\s*class\s+\w+"),
    re.compile(r"\s*#include"),
    re.compile(r"\s*import\s+"),
    re.compile(r"\s*SELECT\s+.*FROM", re.IGNORECASE),
    re.compile(r"\s*\$\w+"),  # shell variable
    re.compile(r"\s*git\s+"),
]

SENSITIVE_MARKERS = ("password", "token")


def validate_content(content) -> str:
    """Return the trimmed capture text.

    Raises:
        ValidationError: If content is not a string or is blank
    """
    if not isinstance(content, str):
        raise ValidationError(f"content must be a string, got {type(content).__name__}")
    text = content.strip()
    if not text:
        raise ValidationError("content is empty")
    return text


def categorize(content: str) -> ContentType:
    """Detect the content type of ``content``."""
    text = content.strip()

    if URL_PATTERN.fullmatch(text):
        return ContentType.URL

    if EMAIL_PATTERN.fullmatch(text):
        return ContentType.EMAIL

    for pattern in CODE_PATTERNS:
        if pattern.match(text):
            return ContentType.CODE

    if PHONE_PATTERN.fullmatch(text) and len(re.sub(r"[^0-9]", "", text)) >= 10:
        return ContentType.PHONE

    return ContentType.TEXT


def generate_tags(content: str, content_type: ContentType) -> List[str]:
    """Derive the ordered tag list for ``content``."""
    tags = [content_type.value]

    if len(content) > LONG_THRESHOLD:
        tags.append("long")
    elif len(content) < SHORT_THRESHOLD:
        tags.append("short")

    if any(marker in content for marker in SENSITIVE_MARKERS):
        tags.append("sensitive")

    if DATE_PATTERN.search(content):
        tags.append("date")

    return tags


def classify(content: str) -> Tuple[ContentType, List[str]]:
    """Categorize ``content`` and derive its tags."""
    content_type = categorize(content)
    return content_type, generate_tags(content, content_type)


def generate_preview(content: str, max_length: int = PREVIEW_LENGTH) -> str:
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."

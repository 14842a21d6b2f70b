"""
Text Helpers

Postcode normalisation, URL slugs and markup-to-text conversion shared by
discovery and classification.
"""

import re
from bs4 import BeautifulSoup

_WHITESPACE = re.compile(r"\s+")
_ZERO_WIDTH = re.compile(r"[\u200b-\u200d\ufeff]")
_NON_POSTCODE = re.compile(r"[^A-Z0-9]")


def normalize_postcode(postcode):
    """
    Normalise a postcode for grouping: upper-case, single spaces, trimmed.

    Args:
        postcode (str): Raw postcode as typed by a subscriber

    Returns:
        str: e.g. "rg1  2ab " -> "RG1 2AB"
    """
    return _WHITESPACE.sub(" ", str(postcode or "").upper()).strip()


def postcode_path_segment(postcode):
    """
    Format a postcode for the search results path ("RG12AB" -> "RG1-2AB").
    """
    raw = _NON_POSTCODE.sub("", str(postcode or "").upper())
    if len(raw) >= 5:
        return f"{raw[:-3]}-{raw[-3:]}"
    return raw


def to_slug(name):
    """
    Build the URL slug used by practice pages ("Smile & Co" -> "smile-and-co").
    """
    slug = str(name or "").lower().replace("&", "and")
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def clean_text(text):
    """Collapse whitespace and drop zero-width characters."""
    text = _ZERO_WIDTH.sub("", str(text or ""))
    return _WHITESPACE.sub(" ", text).strip()


def html_to_text(markup):
    """
    Strip tags, scripts and styles from markup and collapse whitespace.

    Plain text passes through unchanged apart from whitespace collapsing.

    Args:
        markup (str): HTML document, fragment, or plain text

    Returns:
        str: Visible text
    """
    if not markup:
        return ""
    if "<" not in markup:
        return clean_text(markup)

    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return clean_text(soup.get_text(" "))


def truncate(text, limit=500):
    if text is None:
        return None
    text = str(text)
    return text if len(text) <= limit else text[:limit]

"""
Acceptance Status Classifier

Turns page text into a tri-state verdict: accepting, not_accepting or unknown.

Rules are evaluated in order and the first match wins. The order encodes
specificity: explicit negatives first, then the "has not confirmed" override,
then explicit positives. Only explicit phrases count; a page that merely
mentions "NHS" and "accepting" somewhere is not a positive signal.

A verdict produced by a rule is locked: a second page checked for the same
target may not override it. The no-match verdict is unlocked so callers can
fall back to another page.
"""

import re
import logging
from dataclasses import dataclass

from config.models import STATUS_ACCEPTING, STATUS_NOT_ACCEPTING, STATUS_UNKNOWN
from monitoring.errors import ParseError
from utils.text import html_to_text

logger = logging.getLogger(__name__)

RULESET_VERSION = "3"

EVIDENCE_BEFORE = 160
EVIDENCE_AFTER = 320

REASON_NO_SIGNAL = "no_signal"
REASON_EMPTY_PAGE = "empty_page"

_NHS = r"(?:nhs\s+)?"


@dataclass(frozen=True)
class Rule:
    reason_code: str
    status: str
    pattern: re.Pattern
    # Optional second phrase that must also appear somewhere in the text
    requires: re.Pattern = None


def _rx(expression):
    return re.compile(expression, re.IGNORECASE | re.DOTALL)


RULES = (
    Rule("explicit_not_accepting", STATUS_NOT_ACCEPTING,
         _rx(rf"not\s+(?:currently\s+)?accepting\s+(?:any\s+)?new\s+{_NHS}patients")),
    Rule("explicit_not_taking_on", STATUS_NOT_ACCEPTING,
         _rx(rf"not\s+(?:currently\s+)?taking\s+on\s+(?:any\s+)?new\s+{_NHS}patients")),
    Rule("explicit_currently_not", STATUS_NOT_ACCEPTING,
         _rx(rf"currently\s+not\s+accepting\s+(?:new\s+)?{_NHS}patients")),
    Rule("explicit_no_longer", STATUS_NOT_ACCEPTING,
         _rx(rf"no\s+longer\s+accepting\s+(?:new\s+)?{_NHS}patients")),
    Rule("explicit_cannot_accept", STATUS_NOT_ACCEPTING,
         _rx(rf"(?:cannot|can't|unable\s+to)\s+accept\s+(?:any\s+)?(?:new\s+)?{_NHS}patients")),
    # Absence of confirmation must never read as a positive
    Rule("not_confirmed", STATUS_UNKNOWN,
         _rx(r"(?:hasn't|haven't|not)\s+confirmed\b"),
         requires=_rx(rf"new\s+{_NHS}patients")),
    Rule("availability_allows_accepts", STATUS_ACCEPTING,
         _rx(rf"when\s+availability\s+allows.{{0,80}}?accepts\s+new\s+{_NHS}patients")),
    Rule("explicit_accepting", STATUS_ACCEPTING,
         _rx(rf"accepting\s+new\s+{_NHS}patients")),
    Rule("explicit_accepts", STATUS_ACCEPTING,
         _rx(rf"accepts\s+new\s+{_NHS}patients")),
    Rule("explicit_taking_on", STATUS_ACCEPTING,
         _rx(rf"taking\s+on\s+new\s+{_NHS}patients")),
)

CHILDREN_ONLY = _rx(
    r"children\s+only"
    r"|only\s+accept(?:s|ing)?\s+(?:new\s+)?(?:nhs\s+)?children"
    r"|children\s+aged\s+(?:1[0-7]|[1-9])\s+or\s+under"
    r"|under\s*18s?\b"
)
ADULTS = _rx(r"\badults?\b")


@dataclass(frozen=True)
class Verdict:
    status: str
    lock: bool
    reason_code: str
    evidence: str = ""
    children_only: bool = False

    @property
    def is_accepting(self):
        return self.status == STATUS_ACCEPTING


NO_SIGNAL = Verdict(STATUS_UNKNOWN, False, REASON_NO_SIGNAL)


def normalize_page_text(page_text):
    """
    Reduce raw page content to plain, single-spaced text.

    Raises:
        ParseError: if nothing readable is left
    """
    text = html_to_text(page_text or "").replace("’", "'")
    if not text:
        raise ParseError("Page contained no readable text")
    return text


def extract_evidence(text, start):
    """
    Return a bounded plain-text window around a match position.
    """
    begin = max(0, start - EVIDENCE_BEFORE)
    end = min(len(text), start + EVIDENCE_AFTER)
    return text[begin:end].strip()


def _is_children_only(text):
    return bool(CHILDREN_ONLY.search(text)) and not ADULTS.search(text)


def classify(page_text):
    """
    Classify a page's new-patient acceptance status.

    Args:
        page_text (str): Raw HTML or plain text of the page

    Returns:
        Verdict: status, lock flag, reason code and an evidence snippet
    """
    try:
        text = normalize_page_text(page_text)
    except ParseError as e:
        logger.debug(f"Classifier received unusable input: {e}")
        return Verdict(STATUS_UNKNOWN, False, REASON_EMPTY_PAGE)

    for rule in RULES:
        match = rule.pattern.search(text)
        if not match:
            continue
        if rule.requires is not None and not rule.requires.search(text):
            continue

        children_only = rule.status == STATUS_ACCEPTING and _is_children_only(text)
        return Verdict(
            status=rule.status,
            lock=True,
            reason_code=rule.reason_code,
            evidence=extract_evidence(text, match.start()),
            children_only=children_only,
        )

    return NO_SIGNAL

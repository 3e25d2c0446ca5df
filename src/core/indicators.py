"""Task-indicator pre-filter (core domain).

The classifier is slow, rate limited and paid per call, so every message goes
through this lexical gate first. It is tuned for recall: a false positive
costs one wasted classification, a false negative silently drops a task.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, List

HEBREW_KEYWORDS = {
    "time": [
        "מחר", "מחרתיים", "שני", "שלישי", "רביעי", "חמישי", "שישי", "שבת", "ראשון",
        "היום", "אתמול", "השבוע", "שבוע הבא", "החודש", "חודש הבא",
        "ביום", "בשעה", "שעות", "דקות", "זמן", "תאריך",
    ],
    "event": [
        "פגישה", "מפגש", "ישיבה", "אירוע", "חגיגה", "יום הולדת", "חתונה", "בר מצווה",
        "כנס", "סדנה", "הרצאה", "קורס", "שיעור", "בדיקה", "טיפול", "רופא",
    ],
    "payment": [
        "תשלום", "להעביר", "לשלם", "כסף", "שח", "דולר", "חשבון", "חשבונית",
        "הרשמה", "דמי", "עלות", "מחיר", "העברה", "צ'ק", "מזומן", "אשראי",
    ],
    "action": [
        "צריך", "חייב", "מוכרח", "רוצה", "צריכה", "חייבת", "מוכרחת", "רוצים",
        "לזכור", "לא לשכוח", "חשוב", "דחוף", "מהיר", "בדחיפות",
    ],
}

ENGLISH_KEYWORDS = {
    "time": [
        "tomorrow", "today", "tonight", "yesterday", "monday", "tuesday", "wednesday",
        "thursday", "friday", "saturday", "sunday", "next week", "this week",
        "next month", "at", "pm", "am", "o'clock", "oclock", "time", "date", "when",
        "schedule",
    ],
    "event": [
        "meeting", "appointment", "event", "party", "birthday", "wedding", "conference",
        "workshop", "lecture", "class", "course", "checkup", "treatment", "doctor",
        "deadline", "due", "reminder", "call", "visit",
    ],
    "payment": [
        "payment", "pay", "transfer", "money", "dollar", "dollars", "bill", "invoice",
        "registration", "fee", "cost", "price", "charge", "owe", "debt", "cash", "credit",
    ],
    "action": [
        "need", "must", "should", "have to", "got to", "remember", "dont forget",
        "don't forget", "important", "urgent", "asap", "quickly", "soon",
    ],
}

TIME_PATTERNS = [
    r"\d{1,2}:\d{2}",
    r"\b\d{1,2}\.\d{2}\b",
    r"\b\d{1,2}\s?(?:am|pm)\b",
    r"בשעה \d",
    r"ב-?\d{1,2}",
    r"\bat \d{1,2}\b",
    r"\b\d{1,2}\s?o'?clock\b",
    r"\b\d{1,2}/\d{1,2}",
    r"\b\d{1,2}-\d{1,2}\b",
]

AMOUNT_PATTERNS = [
    r"\d+\s*₪",
    r"₪\s*\d+",
    r"\d+\s*שח",
    r"\$\s*\d+",
    r"\d+\s*\$",
    r"\d+\s*dollars?\b",
    r"\d+\s*shekels?\b",
    r"\d+\s*nis\b",
    r"\d+\s*\*\s*\d+",
    r"\b\d{2,}\b",
]

URL_PATTERNS = [
    r"https?://",
    r"\bwww\.",
    r"\.(?:com|org|net|io)\b",
    r"\.co\.",
]

QUESTION_PATTERNS = [
    r"\?",
    r"\bcan you\b",
    r"\bcould you\b",
    r"\bwould you\b",
    r"\bwill you\b",
    r"איך",
    r"מתי",
    r"איפה",
    r"כמה",
    r"אפשר",
]


@dataclass(frozen=True)
class IndicatorSet:
    """One compiled indicator family."""

    name: str
    substrings: List[str]
    patterns: List[re.Pattern]


@dataclass(frozen=True)
class IndicatorMatch:
    category: str
    hit: str


def _word_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(keyword)}", re.IGNORECASE)


def build_indicator_sets() -> List[IndicatorSet]:
    """Compile the built-in keyword and pattern families.

    Hebrew keywords are plain substrings because prefix particles attach to
    the word ("בפגישה"). English keywords must start a word but may be
    inflected ("payments", "scheduled"), so "that" does not hit "at".
    """

    sets: List[IndicatorSet] = []
    for category, words in HEBREW_KEYWORDS.items():
        sets.append(IndicatorSet(name=f"hebrew_{category}", substrings=list(words), patterns=[]))
    for category, words in ENGLISH_KEYWORDS.items():
        sets.append(
            IndicatorSet(
                name=f"english_{category}",
                substrings=[],
                patterns=[_word_pattern(word) for word in words],
            )
        )
    for name, raw in (
        ("time_pattern", TIME_PATTERNS),
        ("amount_pattern", AMOUNT_PATTERNS),
        ("url_pattern", URL_PATTERNS),
        ("question_pattern", QUESTION_PATTERNS),
    ):
        sets.append(
            IndicatorSet(
                name=name,
                substrings=[],
                patterns=[re.compile(pattern, re.IGNORECASE) for pattern in raw],
            )
        )
    return sets


DEFAULT_INDICATORS = build_indicator_sets()


def match_indicators(text: str, indicator_sets: Iterable[IndicatorSet] = DEFAULT_INDICATORS) -> List[IndicatorMatch]:
    """Return every indicator hit in the text, one per family at most."""

    if not text:
        return []

    matches: List[IndicatorMatch] = []
    for indicator_set in indicator_sets:
        hit = next((word for word in indicator_set.substrings if word in text), None)
        if hit is None:
            for pattern in indicator_set.patterns:
                found = pattern.search(text)
                if found:
                    hit = found.group(0)
                    break
        if hit is not None:
            matches.append(IndicatorMatch(category=indicator_set.name, hit=hit))
    return matches


def has_indicators(text: str, indicator_sets: Iterable[IndicatorSet] = DEFAULT_INDICATORS) -> bool:
    """Return True when the text is worth sending to the classifier."""

    if not text:
        return False

    for indicator_set in indicator_sets:
        if any(word in text for word in indicator_set.substrings):
            return True
        if any(pattern.search(text) for pattern in indicator_set.patterns):
            return True
    return False

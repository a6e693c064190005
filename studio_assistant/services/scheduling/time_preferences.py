"""
Time preference extraction - reads week, weekday, daypart and "week of <month> <day>"
hints out of free text for availability lookups.
"""

import re
from dataclasses import dataclass

from studio_assistant.services.scheduling.slot_parsing import MONTHS

_WEEKDAY = re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b")
_MONTH = re.compile(r"\b(" + "|".join(sorted(MONTHS, key=len, reverse=True)) + r")\b")
_MONTH_DAY = re.compile(
    r"\b(" + "|".join(sorted(MONTHS, key=len, reverse=True)) + r")\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b"
)
_YEAR = re.compile(r"\b(20\d{2})\b")


@dataclass(frozen=True)
class TimePreferences:
    week: str | None = None  # "this" | "next"
    day: str | None = None  # weekday name
    time_window: str | None = None  # "morning" | "afternoon" | "evening"
    month: int | None = None  # 1-12
    day_of_month: int | None = None  # set for "week of Jan 12"
    year: int | None = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.week, self.day, self.time_window, self.month, self.day_of_month, self.year)
        )


def extract_time_preferences(message_text: str | None, fallback_text: str | None = None) -> TimePreferences:
    """
    Extract scheduling preferences from a message.

    When the message carries no preference at all, the stored timeline text
    (e.g. "next week evenings") is used instead.
    """
    prefs = _extract(message_text)
    if prefs.is_empty and fallback_text:
        return _extract(fallback_text)
    return prefs


def _extract(text: str | None) -> TimePreferences:
    text = str(text or "").lower()
    if not text:
        return TimePreferences()

    week = None
    if "next week" in text:
        week = "next"
    elif "this week" in text:
        week = "this"

    time_window = None
    if "morning" in text:
        time_window = "morning"
    elif "afternoon" in text:
        time_window = "afternoon"
    elif "evening" in text or "night" in text:
        time_window = "evening"

    day_match = _WEEKDAY.search(text)
    day = day_match.group(1) if day_match else None

    month = None
    day_of_month = None
    month_day = _MONTH_DAY.search(text)
    if month_day:
        month = MONTHS[month_day.group(1)]
        day_of_month = int(month_day.group(2))
        if not 1 <= day_of_month <= 31:
            day_of_month = None
    else:
        month_match = _MONTH.search(text)
        # "may" alone is usually the verb
        if month_match and month_match.group(1) != "may":
            month = MONTHS[month_match.group(1)]

    year_match = _YEAR.search(text)
    year = int(year_match.group(1)) if year_match else None

    return TimePreferences(
        week=week,
        day=day,
        time_window=time_window,
        month=month,
        day_of_month=day_of_month,
        year=year,
    )

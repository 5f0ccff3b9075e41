"""
Localized digest text for scheduled notifications.

    {site} ({account})
    Yesterday
    1,204 Visitors ↑12% • 3,411 Pageviews ↓3% • 1,530 Visits
"""
from __future__ import annotations

from typing import Dict, Optional

from insightflow.date_range import DateRange, DateRangePreset
from insightflow.models import AnalyticsStats, StatValue
from insightflow.providers.notifications.base import NotificationContent

DEFAULT_LOCALE = "en"
SEPARATOR = " • "

MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "visitors": "Visitors",
        "pageviews": "Pageviews",
        "visits": "Visits",
        "period.today": "Today",
        "period.yesterday": "Yesterday",
        "period.7d": "Last 7 days",
        "unavailable": "Statistics are currently unavailable. Open InsightFlow to refresh.",
        "pages.home": "Home",
    },
    "de": {
        "visitors": "Besucher",
        "pageviews": "Aufrufe",
        "visits": "Besuche",
        "period.today": "Heute",
        "period.yesterday": "Gestern",
        "period.7d": "Letzte 7 Tage",
        "unavailable": "Statistiken sind gerade nicht verfügbar. Öffne InsightFlow zum Aktualisieren.",
        "pages.home": "Startseite",
    },
}

# thousands separator per locale
_GROUPING = {"en": ",", "de": "."}


def localized(key: str, locale: str = DEFAULT_LOCALE) -> str:
    table = MESSAGES.get(locale, MESSAGES[DEFAULT_LOCALE])
    return table.get(key, MESSAGES[DEFAULT_LOCALE][key])


def format_number(value: int, locale: str = DEFAULT_LOCALE) -> str:
    return f"{value:,}".replace(",", _GROUPING.get(locale, ","))


def format_change(stat: StatValue) -> str:
    """
    Arrow plus absolute percentage, truncated towards zero (19.9 -> 19).
    Empty when the change percentage is exactly zero.
    """
    percentage = stat.change_percentage
    if percentage == 0:
        return ""
    arrow = "↑" if percentage > 0 else "↓"
    return f"{arrow}{abs(int(percentage))}%"


def format_metric(stat: StatValue, label_key: str, locale: str = DEFAULT_LOCALE) -> str:
    text = f"{format_number(stat.value, locale)} {localized(label_key, locale)}"
    change = format_change(stat)
    return f"{text} {change}" if change else text


def format_body(stats: Optional[AnalyticsStats], locale: str = DEFAULT_LOCALE) -> str:
    if stats is None:
        return localized("unavailable", locale)
    return SEPARATOR.join(
        format_metric(getattr(stats, name), name, locale) for name in ("visitors", "pageviews", "visits")
    )


def period_label(date_range: DateRange, locale: str = DEFAULT_LOCALE) -> str:
    if date_range.preset == DateRangePreset.LAST_7_DAYS:
        return localized("period.7d", locale)
    if date_range.preset == DateRangePreset.TODAY:
        return localized("period.today", locale)
    return localized("period.yesterday", locale)


def build_digest(
    website_name: str,
    account_name: str,
    date_range: DateRange,
    stats: Optional[AnalyticsStats],
    locale: str = DEFAULT_LOCALE,
    user_info: Optional[Dict[str, str]] = None,
) -> NotificationContent:
    """``stats=None`` means the fetch failed; the body then says the data is unavailable."""
    return NotificationContent(
        title=f"{website_name} ({account_name})",
        subtitle=period_label(date_range, locale),
        body=format_body(stats, locale),
        user_info=dict(user_info or {}),
    )

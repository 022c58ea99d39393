"""
Utilitaires partagés : dates, montants, divisions.

Les payloads d'événements sont schema-free. Un montant peut arriver en
str ("₹1,250"), une date en ISO, en timestamp ou en datetime.
On normalise ICI, une fois, et les agents travaillent sur des types sûrs.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Optional

from dateutil import parser as dateutil_parser

logger = logging.getLogger("finpulse.services.utils")


# ──────────────────────────────────────────────
# DATES
# ──────────────────────────────────────────────


def parse_timestamp(
    value: Any,
    default: Optional[datetime] = None,
) -> Optional[datetime]:
    """Normalise une date quelconque en datetime naïf (heure murale).

    On garde l'heure locale telle que l'utilisateur l'a vécue :
    un achat à 23h reste un achat à 23h, quel que soit le fuseau.
    """
    if value is None:
        return default
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, (int, float)):
        try:
            if value > 1e12:
                value = value / 1000
            return datetime.fromtimestamp(value)
        except (ValueError, OverflowError, OSError):
            return default
    if isinstance(value, str):
        if not value.strip():
            return default
        try:
            return dateutil_parser.parse(value).replace(tzinfo=None)
        except (ValueError, OverflowError):
            logger.debug(f"Unparseable date: {value!r}")
            return default
    return default


def js_weekday(moment: datetime) -> int:
    """Jour de la semaine, 0 = dimanche ... 6 = samedi."""
    return (moment.weekday() + 1) % 7


DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


# ──────────────────────────────────────────────
# MONTANTS
# ──────────────────────────────────────────────


def safe_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip()
        for char in ("₹", "Rs.", "INR", ",", " ", " "):
            cleaned = cleaned.replace(char, "")
        if not cleaned:
            return default
        try:
            return float(cleaned)
        except ValueError:
            return default
    return default


def safe_divide(
    numerator: float,
    denominator: float,
    default: float = 0.0,
) -> float:
    """Division sûre sans ZeroDivisionError."""
    if denominator == 0:
        return default
    return numerator / denominator


def format_inr(amount: float) -> str:
    """Formate un montant en roupies, groupement indien (1,23,456)."""
    rounded = int(round(amount))
    sign = "-" if rounded < 0 else ""
    digits = str(abs(rounded))
    if len(digits) <= 3:
        return f"{sign}₹{digits}"
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return f"{sign}₹{','.join(groups)},{tail}"

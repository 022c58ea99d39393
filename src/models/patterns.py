"""
Behavioral Profile — Ce que le Spending Pattern Agent apprend d'un user.

Un profil par userId, privé à l'agent. Agrégats incrémentaux
(count, total, moyenne) + historique BORNÉ des transactions par
catégorie + liste bornée de triggers (dédupliqués par type).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from models.base import CamelModel
from services.utils import js_weekday


class TimeSlot(str, Enum):
    """Créneaux horaires."""
    MORNING = "morning"      # 06h-12h
    AFTERNOON = "afternoon"  # 12h-17h
    EVENING = "evening"      # 17h-21h
    NIGHT = "night"          # le reste

    @classmethod
    def from_hour(cls, hour: int) -> "TimeSlot":
        if 6 <= hour < 12:
            return cls.MORNING
        if 12 <= hour < 17:
            return cls.AFTERNOON
        if 17 <= hour < 21:
            return cls.EVENING
        return cls.NIGHT


class TriggerType(str, Enum):
    WEEKEND_FOOD_SPLURGE = "WEEKEND_FOOD_SPLURGE"
    LATE_NIGHT_IMPULSE = "LATE_NIGHT_IMPULSE"
    FRIDAY_SPLURGE = "FRIDAY_SPLURGE"


class InterventionReason(str, Enum):
    EXCEEDING_AVERAGE = "EXCEEDING_AVERAGE"
    RAPID_SPENDING = "RAPID_SPENDING"
    TRIGGER_DETECTED = "TRIGGER_DETECTED"


class AnomalySeverity(str, Enum):
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ──────────────────────────────────────────────
# TRANSACTIONS
# ──────────────────────────────────────────────


class Transaction(CamelModel):
    """Une dépense normalisée (depuis EXPENSE_ADDED ou la voix)."""

    user_id: str
    amount: float
    category: str = "other"
    date: datetime
    description: Optional[str] = None
    source: str = "manual"
    monthly_total: Optional[float] = None
    budget_amount: Optional[float] = None

    @property
    def day_of_week(self) -> int:
        """0 = dimanche ... 6 = samedi."""
        return js_weekday(self.date)

    @property
    def hour(self) -> int:
        return self.date.hour


class TransactionRecord(CamelModel):
    amount: float
    date: datetime
    day_of_week: int
    hour: int


# ──────────────────────────────────────────────
# AGRÉGATS
# ──────────────────────────────────────────────


class CategoryStats(CamelModel):
    count: int = 0
    total_amount: float = 0.0
    average_amount: float = 0.0
    transactions: list[TransactionRecord] = Field(default_factory=list)

    def add(self, record: TransactionRecord, max_transactions: int) -> None:
        self.count += 1
        self.total_amount += record.amount
        self.average_amount = self.total_amount / self.count
        self.transactions.append(record)
        overflow = len(self.transactions) - max_transactions
        if overflow > 0:
            del self.transactions[:overflow]


class DayStats(CamelModel):
    count: int = 0
    total_amount: float = 0.0
    average_amount: float = 0.0

    def add(self, amount: float) -> None:
        self.count += 1
        self.total_amount += amount
        self.average_amount = self.total_amount / self.count


class TimeSlotStats(CamelModel):
    count: int = 0
    total_amount: float = 0.0
    categories: dict[str, int] = Field(default_factory=dict)

    def add(self, amount: float, category: str) -> None:
        self.count += 1
        self.total_amount += amount
        self.categories[category] = self.categories.get(category, 0) + 1


class Intervention(CamelModel):
    message: str
    suggestion: str


class TriggerPattern(CamelModel):
    type: TriggerType
    description: str
    average_amount: Optional[float] = None
    frequency: Optional[int] = None
    confidence: float = Field(ge=0.0, le=1.0)
    intervention: Intervention
    occurrences: int = 1
    first_seen: datetime = Field(default_factory=datetime.utcnow)
    last_seen: datetime = Field(default_factory=datetime.utcnow)


class BehavioralProfile(CamelModel):
    user_id: str
    by_category: dict[str, CategoryStats] = Field(default_factory=dict)
    by_day_of_week: dict[int, DayStats] = Field(default_factory=dict)
    by_time_of_day: dict[str, TimeSlotStats] = Field(default_factory=dict)
    triggers: list[TriggerPattern] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def find_trigger(self, trigger_type: TriggerType) -> Optional[TriggerPattern]:
        for trigger in self.triggers:
            if trigger.type == trigger_type:
                return trigger
        return None


# ──────────────────────────────────────────────
# VERDICTS
# ──────────────────────────────────────────────


class InterventionDecision(CamelModel):
    intervene: bool
    reason: Optional[InterventionReason] = None
    message: Optional[str] = None
    suggestion: Optional[str] = None
    trigger: Optional[TriggerPattern] = None
    confidence: float = 0.0


class Alternative(CamelModel):
    action: str
    savings: int
    savings_fraction: float
    effort: str
    impact: str


class AnomalyVerdict(CamelModel):
    """isAnomaly=False couvre aussi l'abstention (pas d'historique)."""

    is_anomaly: bool
    severity: Optional[AnomalySeverity] = None
    z_score: Optional[float] = None
    mean: Optional[float] = None
    std_dev: Optional[float] = None
    message: Optional[str] = None
    require_confirmation: bool = False
    possible_reasons: list[str] = Field(default_factory=list)
    abstained: bool = False

    @classmethod
    def abstain(cls) -> "AnomalyVerdict":
        return cls(is_anomaly=False, abstained=True)


def summarize_profile(profile: BehavioralProfile) -> dict[str, Any]:
    """Vue compacte pour le dashboard."""
    return {
        "categories": [
            {
                "category": name,
                "average": round(stats.average_amount),
                "count": stats.count,
            }
            for name, stats in profile.by_category.items()
        ],
        "triggers": [
            {
                "type": t.type.value,
                "description": t.description,
                "confidence": t.confidence,
            }
            for t in profile.triggers
        ],
    }

"""
Income — Analyse de variabilité, recommandations, Flex Budget.

IncomeAnalysis est TRANSITOIRE : recalculée à chaque appel, jamais
persistée par le core. FlexBudget est dérivé et publié (BUDGET_UPDATED),
le stockage est l'affaire du consommateur.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field

from models.base import CamelModel


class VariabilityLevel(str, Enum):
    HIGH_VARIABILITY = "HIGH_VARIABILITY"
    MODERATE_VARIABILITY = "MODERATE_VARIABILITY"
    STABLE = "STABLE"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IncomeRecord(CamelModel):
    """Une entrée de revenu telle que retournée par le provider."""

    amount: float
    date: datetime
    source: Optional[str] = None


class RecommendedAction(CamelModel):
    action: str
    priority: str
    target: Optional[float] = None
    percentage: Optional[float] = None


class Recommendation(CamelModel):
    type: VariabilityLevel
    title: str
    message: str
    actions: list[RecommendedAction] = Field(default_factory=list)


class IncomeAnalysis(CamelModel):
    """Résultat de l'analyse de variabilité.

    insufficient_data=True : abstention, pas de classification.
    """

    is_variable: bool = False
    variability_score: float = 0.0
    mean: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    observations: int = 0
    recommendation: Optional[Recommendation] = None
    insufficient_data: bool = False
    message: Optional[str] = None

    @classmethod
    def insufficient(cls, observations: int, message: str) -> "IncomeAnalysis":
        return cls(
            observations=observations,
            insufficient_data=True,
            message=message,
        )


# ──────────────────────────────────────────────
# FLEX BUDGET
# ──────────────────────────────────────────────


class EssentialsAllocation(CamelModel):
    percentage: float
    description: str = "Must-pay items - highest priority"
    categories: list[str] = Field(default_factory=list)
    adjustable: bool = False


class SavingsAllocation(CamelModel):
    percentage: float
    description: str = "Emergency buffer + goals"
    adjustable: bool = True
    min_percentage: float


class DiscretionaryAllocation(CamelModel):
    percentage: float
    description: str = "Entertainment, shopping, etc."
    adjustable: bool = True
    cut_first: bool = True


class FlexAllocations(CamelModel):
    essentials: EssentialsAllocation
    savings: SavingsAllocation
    discretionary: DiscretionaryAllocation


class IncomeRange(CamelModel):
    min: float
    max: float


class HighIncomeWeekRule(CamelModel):
    threshold: float
    action: str = "SAVE_EXTRA"
    savings_boost: float
    message: str = "Great week! Saving extra for slower weeks ahead"


class LowIncomeWeekRule(CamelModel):
    threshold: float
    action: str = "REDUCE_DISCRETIONARY"
    discretionary_cut: float
    message: str = "Low income week. Using buffer. Essentials covered"


class WeeklyRules(CamelModel):
    high_income_week: HighIncomeWeekRule
    low_income_week: LowIncomeWeekRule


class FlexAlert(CamelModel):
    type: str
    message: str
    trigger_days: int


class FlexBudget(CamelModel):
    type: str = "FLEX_BUDGET"
    strategy: str = "income_based_allocation"
    base_income: float
    income_range: IncomeRange
    variability_score: float
    allocations: FlexAllocations
    weekly_rules: WeeklyRules
    alerts: list[FlexAlert] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class WeekMode(str, Enum):
    HIGH = "HIGH_INCOME_WEEK"
    NORMAL = "NORMAL_WEEK"
    LOW = "LOW_INCOME_WEEK"


class WeeklyAllocation(CamelModel):
    """Application des weeklyRules à une semaine concrète."""

    mode: WeekMode
    income: float
    essentials_pct: float
    savings_pct: float
    discretionary_pct: float
    essentials_amount: float
    savings_amount: float
    discretionary_amount: float
    message: Optional[str] = None


# ──────────────────────────────────────────────
# PRÉDICTION
# ──────────────────────────────────────────────


class WeekBucket(CamelModel):
    iso_year: int
    iso_week: int
    average: float
    total: float
    count: int


class LowIncomePrediction(CamelModel):
    confidence: float = 0.0
    drop: Optional[int] = None
    duration: Optional[str] = None
    buffer_needed: Optional[float] = None
    reasoning: Optional[str] = None

    @property
    def is_predicted(self) -> bool:
        return self.confidence > 0

"""
AgentConfig — Politique de chaque agent.

Tous les seuils du core (variabilité, z-score, triggers, fenêtres)
sont des constantes de POLITIQUE, pas du code. Ils vivent ici,
un modèle par agent, passés à l'agent à la construction.

Design decisions :
- Un modèle de config par type d'agent (pas un dict générique)
- Chaque paramètre a une valeur par défaut = la baseline produit
- Chaque paramètre a des bornes (min/max) pour éviter les dérives
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class AgentType(str, Enum):
    """Les agents du core."""

    INCOME_VARIABILITY = "income_variability"
    SPENDING_PATTERN = "spending_pattern"


class BaseAgentConfig(BaseModel):
    """Configuration commune à tous les agents."""

    agent_type: AgentType
    enabled: bool = True
    priority: int = Field(
        default=1,
        ge=-100,
        le=100,
        description="Priorité des listeners de l'agent sur le bus.",
    )

    # ── Confiance ──
    confidence_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description=(
            "Seuil de confiance (complétude du payload) en dessous duquel "
            "l'agent ignore l'événement."
        ),
    )

    # ── Mémoire ──
    max_action_history: int = Field(
        default=200,
        ge=1,
        le=10_000,
        description="Nombre d'actions gardées dans actionHistory.",
    )

    # ── Méta ──
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# ──────────────────────────────────────────────
# INCOME VARIABILITY
# ──────────────────────────────────────────────


class FlexAllocation(BaseModel):
    """Répartition de base du Flex Budget. Doit sommer à 100."""

    essentials: float = Field(default=50, ge=0, le=100)
    savings: float = Field(default=20, ge=0, le=100)
    discretionary: float = Field(default=30, ge=0, le=100)

    @field_validator("discretionary")
    @classmethod
    def validate_sum(cls, v, info):
        """Vérifie que les pourcentages somment à 100 (tolérance 0.01)."""
        data = info.data
        total = data.get("essentials", 0) + data.get("savings", 0) + v
        if abs(total - 100) > 0.01:
            raise ValueError(
                f"Flex allocations must sum to 100, got {total:.2f} "
                f"(essentials={data.get('essentials')}, "
                f"savings={data.get('savings')}, discretionary={v})"
            )
        return v


class IncomeAgentConfig(BaseAgentConfig):
    """Configuration de l'Income Variability Agent."""

    agent_type: AgentType = AgentType.INCOME_VARIABILITY

    # ── Classification ──
    variability_threshold: float = Field(
        default=0.3,
        gt=0,
        le=2.0,
        description="Coefficient de variation au-dessus duquel le revenu est variable.",
    )
    high_variability_threshold: float = Field(
        default=0.5,
        gt=0,
        le=3.0,
        description="Au-dessus : HIGH_VARIABILITY, Flex Budget automatique.",
    )
    prediction_window_days: int = Field(default=90, ge=7, le=730)
    min_observations: int = Field(
        default=3,
        ge=2,
        le=52,
        description="En dessous, pas de classification (données insuffisantes).",
    )

    # ── Recommandations (ratios de la moyenne) ──
    emergency_buffer_ratio: float = Field(default=0.5, ge=0, le=5)
    high_week_saving_ratio: float = Field(default=0.3, ge=0, le=5)
    moderate_buffer_ratio: float = Field(default=0.25, ge=0, le=5)
    discretionary_reduction_pct: float = Field(default=40, ge=0, le=100)

    # ── Flex Budget ──
    allocation: FlexAllocation = Field(default_factory=FlexAllocation)
    essentials_categories: list[str] = Field(
        default_factory=lambda: ["housing", "food_dining", "healthcare", "transportation"],
    )
    savings_floor_pct: float = Field(
        default=10,
        ge=0,
        le=100,
        description="Épargne minimum, même en semaine creuse.",
    )
    high_income_week_ratio: float = Field(default=1.2, gt=1.0, le=5.0)
    high_week_savings_boost_pct: float = Field(default=10, ge=0, le=100)
    low_income_week_ratio: float = Field(default=0.7, gt=0, lt=1.0)
    low_week_discretionary_cut_pct: float = Field(default=50, ge=0, le=100)

    # ── Prédiction semaines creuses ──
    trend_min_weeks: int = Field(default=4, ge=2, le=52)
    trend_drop_threshold_pct: float = Field(default=15, gt=0, le=100)
    trend_confidence: float = Field(default=0.8, ge=0, le=1.0)
    trend_buffer_ratio: float = Field(default=0.3, ge=0, le=5)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "IncomeAgentConfig":
        if self.high_variability_threshold < self.variability_threshold:
            raise ValueError(
                "high_variability_threshold must be >= variability_threshold"
            )
        if self.savings_floor_pct > self.allocation.savings:
            raise ValueError("savings_floor_pct cannot exceed allocation.savings")
        return self


# ──────────────────────────────────────────────
# SPENDING PATTERN
# ──────────────────────────────────────────────


class SpendingPatternConfig(BaseAgentConfig):
    """Configuration du Spending Pattern Agent."""

    agent_type: AgentType = AgentType.SPENDING_PATTERN

    # ── Catégories (alias acceptés) ──
    food_categories: list[str] = Field(
        default_factory=lambda: ["food_dining", "food", "dining"],
    )
    transport_categories: list[str] = Field(
        default_factory=lambda: ["transportation", "transport"],
    )
    shopping_categories: list[str] = Field(
        default_factory=lambda: ["shopping"],
    )

    # ── Triggers ──
    weekend_food_min_count: int = Field(default=4, ge=1, le=100)
    weekend_food_min_average: float = Field(default=800, ge=0)
    late_night_start_hour: int = Field(default=20, ge=12, le=23)
    late_night_end_hour: int = Field(
        default=2,
        ge=0,
        le=11,
        description="Heure de fin incluse (0h-2h59 pour 2).",
    )
    late_night_min_count: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Il faut STRICTEMENT plus de transactions nocturnes que ça.",
    )
    payday_weekday: int = Field(default=5, ge=0, le=6, description="0 = dimanche")
    payday_min_amount: float = Field(default=1000, ge=0)

    # ── Intervention ──
    exceeding_average_multiplier: float = Field(default=2.0, gt=1.0, le=10)
    rapid_window_minutes: int = Field(default=60, ge=1, le=1440)
    rapid_min_count: int = Field(default=3, ge=2, le=50)

    # ── Anomalies ──
    anomaly_z_threshold: float = Field(default=2.0, gt=0, le=10)
    anomaly_high_z_threshold: float = Field(default=3.0, gt=0, le=20)
    anomaly_min_samples: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Historique minimum de la catégorie pour rendre un verdict.",
    )

    # ── Mémoire bornée ──
    max_transactions_per_category: int = Field(default=500, ge=10, le=100_000)
    max_triggers: int = Field(default=20, ge=1, le=1000)

    @model_validator(mode="after")
    def validate_thresholds(self) -> "SpendingPatternConfig":
        if self.anomaly_high_z_threshold < self.anomaly_z_threshold:
            raise ValueError(
                "anomaly_high_z_threshold must be >= anomaly_z_threshold"
            )
        return self

    def is_food(self, category: Optional[str]) -> bool:
        return category in self.food_categories

    def is_transport(self, category: Optional[str]) -> bool:
        return category in self.transport_categories

    def is_shopping(self, category: Optional[str]) -> bool:
        return category in self.shopping_categories

    def is_late_night(self, hour: int) -> bool:
        return hour >= self.late_night_start_hour or hour <= self.late_night_end_hour


# ──────────────────────────────────────────────
# SET COMPLET
# ──────────────────────────────────────────────


class AgentConfigSet(BaseModel):
    """Ensemble complet des configurations d'agents."""

    income_variability: IncomeAgentConfig = Field(default_factory=IncomeAgentConfig)
    spending_pattern: SpendingPatternConfig = Field(default_factory=SpendingPatternConfig)

    @property
    def enabled_agents(self) -> list[AgentType]:
        """Liste des agents activés."""
        return [
            config.agent_type
            for config in [self.income_variability, self.spending_pattern]
            if config.enabled
        ]

    def get_config(self, agent_type: AgentType) -> Optional[BaseAgentConfig]:
        """Récupère la config d'un agent par son type."""
        mapping = {
            AgentType.INCOME_VARIABILITY: self.income_variability,
            AgentType.SPENDING_PATTERN: self.spending_pattern,
        }
        return mapping.get(agent_type)

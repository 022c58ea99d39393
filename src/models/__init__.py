"""
FinPulse Models — Types du core.

  events        → EventKind, Event, ListenerRegistration
  agent_config  → Politique de chaque agent (seuils bornés)
  income        → Analyse de variabilité, Flex Budget, prédiction
  patterns      → Profil comportemental, triggers, verdicts

Les modèles qui sortent sur le bus héritent de CamelModel
(payload camelCase).
"""

from models.base import CamelModel
from models.events import Event, EventKind, KindLike, ListenerRegistration, kind_key
from models.agent_config import (
    AgentType,
    BaseAgentConfig,
    FlexAllocation,
    IncomeAgentConfig,
    SpendingPatternConfig,
    AgentConfigSet,
)
from models.income import (
    IncomeRecord,
    IncomeAnalysis,
    Recommendation,
    VariabilityLevel,
    FlexBudget,
    WeeklyAllocation,
    WeekMode,
    WeekBucket,
    LowIncomePrediction,
)
from models.patterns import (
    Transaction,
    BehavioralProfile,
    TriggerPattern,
    TriggerType,
    InterventionDecision,
    InterventionReason,
    Alternative,
    AnomalyVerdict,
    AnomalySeverity,
    TimeSlot,
)

__all__ = [
    # Events
    "CamelModel",
    "Event",
    "EventKind",
    "KindLike",
    "ListenerRegistration",
    "kind_key",
    # Agent Config
    "AgentType",
    "BaseAgentConfig",
    "FlexAllocation",
    "IncomeAgentConfig",
    "SpendingPatternConfig",
    "AgentConfigSet",
    # Income
    "IncomeRecord",
    "IncomeAnalysis",
    "Recommendation",
    "VariabilityLevel",
    "FlexBudget",
    "WeeklyAllocation",
    "WeekMode",
    "WeekBucket",
    "LowIncomePrediction",
    # Patterns
    "Transaction",
    "BehavioralProfile",
    "TriggerPattern",
    "TriggerType",
    "InterventionDecision",
    "InterventionReason",
    "Alternative",
    "AnomalyVerdict",
    "AnomalySeverity",
    "TimeSlot",
]

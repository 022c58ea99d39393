"""
FinPulse Agents — Couche d'analyse autonome.

Contrat :
- Chaque agent compose AgentMixin et respecte AgentCapability
- Chaque agent déclare ses abonnements (_subscriptions) et ses
  champs requis (REQUIRED_FIELDS → confiance)
- Les agents ne se parlent JAMAIS directement : tout passe par le bus
- execute() ne lève jamais : échec = None + log

Agents V1 :
- IncomeVariabilityAgent  → Stabilité du revenu, Flex Budget, semaines creuses
- SpendingPatternAgent    → Patterns, triggers, interventions, anomalies
"""

from agents.base import (
    AgentAction,
    AgentCapability,
    AgentError,
    AgentMixin,
    ActionRecord,
    InsufficientDataError,
)
from agents.income_variability import IncomeVariabilityAgent
from agents.spending_pattern import SpendingPatternAgent

__all__ = [
    # Base
    "AgentAction",
    "AgentCapability",
    "AgentError",
    "AgentMixin",
    "ActionRecord",
    "InsufficientDataError",
    # Agents
    "IncomeVariabilityAgent",
    "SpendingPatternAgent",
]

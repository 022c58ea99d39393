"""
Event System — Vocabulaire fermé des événements du core.

Les collaborateurs externes PUBLIENT des événements de domaine
(dépense, revenu). Les agents les CONSOMMENT et publient des
événements dérivés (action, alerte, recommandation, anomalie...).

Design decisions :
- Chaque événement a un type strict (enum, nom == valeur)
- Payload est un dict libre MAIS chaque EventKind documente
  le payload attendu (contrat implicite, validé par le consommateur)
- Le bus accepte aussi des kinds inconnus (str libre) : no-op
  tant que personne ne publie
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """Types d'événements du système.

    Chaque type documente son payload attendu.
    """

    # ── Transactions (collaborateurs externes) ──
    INCOME_ADDED = "INCOME_ADDED"
    # Payload: {userId, amount, date, source?}

    EXPENSE_ADDED = "EXPENSE_ADDED"
    # Payload: {userId, amount, category, date, description?, monthlyTotal?, budgetAmount?}

    VOICE_EXPENSE_DETECTED = "VOICE_EXPENSE_DETECTED"
    # Payload: {userId, extracted: {amount, category, date, description?}}

    BUDGET_CREATED = "BUDGET_CREATED"
    # Payload: {userId, ...}

    # ── Agents ──
    AGENT_ACTION = "AGENT_ACTION"
    # Payload: {agent, action|message, confidence, timestamp}

    AGENT_ALERT = "AGENT_ALERT"
    # Payload: {agent, message, severity|priority, timestamp}

    AGENT_RECOMMENDATION = "AGENT_RECOMMENDATION"
    # Payload: {agent, recommendation, impact ∈ {low, medium, high}, timestamp}

    # ── Spending Pattern Agent ──
    ANOMALY_DETECTED = "ANOMALY_DETECTED"
    # Payload: {userId, expense, anomaly: {isAnomaly, severity, zScore, message,
    #           requireConfirmation, possibleReasons}}

    # ── Income Variability Agent ──
    INCOME_VARIABILITY_DETECTED = "INCOME_VARIABILITY_DETECTED"
    # Payload: {userId, variabilityScore, recommendation}

    LOW_INCOME_PERIOD_PREDICTED = "LOW_INCOME_PERIOD_PREDICTED"
    # Payload: {userId, prediction: {confidence, drop, duration, bufferNeeded, reasoning}}

    BUDGET_UPDATED = "BUDGET_UPDATED"
    # Payload: {userId, budgetType, flexBudget, autonomous: true}


KindLike = Union[EventKind, str]


def kind_key(kind: KindLike) -> str:
    """Clé canonique d'un kind (enum ou str libre)."""
    if isinstance(kind, EventKind):
        return kind.value
    return str(kind)


class Event(BaseModel):
    """Un événement tel qu'enregistré dans l'historique du bus."""

    kind: str
    payload: Any = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def __repr__(self) -> str:
        return f"Event(kind={self.kind}, timestamp={self.timestamp.isoformat()})"


class ListenerRegistration(BaseModel):
    """Un abonnement au bus.

    Ordre : pour un kind donné, les listeners sont appelés par
    priorité décroissante, à égalité dans l'ordre d'inscription (seq).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: str
    callback: Callable[..., Any]
    priority: int = 0
    once: bool = False
    seq: int = 0
    id: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.id:
            self.id = f"{self.kind}_{uuid4().hex}"

"""
Agent Capability — Le contrat que chaque agent DOIT respecter.

Deux pièces :
- AgentCapability (Protocol) : ce que le registry et les consommateurs
  connaissent d'un agent. Pas de classe concrète.
- AgentMixin : le comportement partagé (cycle de vie, confiance,
  exécution et traçage des actions, publication sur le bus).
  Les agents concrets le COMPOSENT et implémentent process().

Design decisions :
- Un agent ne vit que par son bus, injecté à la construction
  (pas de singleton global)
- execute() ne lève jamais : échec = None + log
- Agent désactivé = no-op silencieux, togglable à chaud
- L'état (lastAction, actionHistory, confidence) n'est muté que
  par l'agent lui-même
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from models.agent_config import BaseAgentConfig
from models.events import EventKind, KindLike, kind_key

if TYPE_CHECKING:
    from orchestrator.bus import EventBus


# ──────────────────────────────────────────────
# EXCEPTIONS
# ──────────────────────────────────────────────


class AgentError(Exception):
    """Erreur générique d'un agent."""

    def __init__(
        self,
        agent_name: str,
        message: str,
        recoverable: bool = True,
        raw_error: Optional[Exception] = None,
    ):
        self.agent_name = agent_name
        self.message = message
        self.recoverable = recoverable
        self.raw_error = raw_error
        super().__init__(f"[Agent:{agent_name}] {message}")


class InsufficientDataError(AgentError):
    """Pas assez de données : l'agent s'abstient, ce n'est pas une panne."""

    def __init__(self, agent_name: str, detail: str):
        super().__init__(
            agent_name=agent_name,
            message=f"Insufficient data: {detail}",
            recoverable=True,
        )


# ──────────────────────────────────────────────
# ACTIONS
# ──────────────────────────────────────────────


class AgentAction(BaseModel):
    """Une action autonome : un type + un callable à exécuter."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: str
    run: Callable[[], Any]
    description: str = ""

    def execute(self) -> Any:
        return self.run()


class ActionRecord(BaseModel):
    """Trace d'une action exécutée."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    result: Any = None
    confidence: float = 0.0

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "result": self.result,
            "confidence": self.confidence,
        }


# ──────────────────────────────────────────────
# CONTRAT
# ──────────────────────────────────────────────


@runtime_checkable
class AgentCapability(Protocol):
    """
    Interface minimale que chaque agent doit exposer.

    Le registry ne connaît pas les classes concrètes.
    Il connaît ce contrat.
    """

    name: str
    enabled: bool
    priority: int
    confidence: float

    def process(self, data: Any) -> Any: ...
    def should_take_action(self, data: Any) -> bool: ...
    def execute(self, action: Any) -> Any: ...
    def calculate_confidence(self, data: Any) -> float: ...
    def get_status(self) -> dict[str, Any]: ...
    def set_enabled(self, enabled: bool) -> None: ...
    def attach(self) -> None: ...
    def detach(self) -> None: ...


# ──────────────────────────────────────────────
# COMPORTEMENT PARTAGÉ
# ──────────────────────────────────────────────


class AgentMixin:
    """Comportement commun des agents.

    Usage :
        class MyAgent(AgentMixin):
            AGENT_NAME = "my_agent"
            REQUIRED_FIELDS = ("userId", "amount")

            def __init__(self, bus, config):
                self._init_agent(bus, config)

            def process(self, data):
                ...

            def _subscriptions(self):
                return [(EventKind.EXPENSE_ADDED, self.process)]
    """

    AGENT_NAME: str = "agent"
    DISPLAY_NAME: str = "Agent"
    REQUIRED_FIELDS: tuple[str, ...] = ()

    name: str
    enabled: bool
    priority: int
    confidence: float
    last_action: Optional[ActionRecord]
    action_history: list[ActionRecord]

    def _init_agent(self, bus: EventBus, config: BaseAgentConfig) -> None:
        self.bus = bus
        self.config = config
        self.name = self.AGENT_NAME
        self.enabled = config.enabled
        self.priority = config.priority
        self.confidence = 0.0
        self.last_action = None
        self.action_history = []
        self.logger = logging.getLogger(f"finpulse.agents.{self.AGENT_NAME}")
        self._listener_ids: list[tuple[str, str]] = []

    # ── À implémenter ──

    def process(self, data: Any) -> Any:
        raise NotImplementedError(f"{self.name}: process() must be implemented")

    def _subscriptions(self) -> list[tuple[KindLike, Callable[[Any], Any]]]:
        """(kind, handler) à brancher sur le bus. Vide par défaut."""
        return []

    # ── Cycle de vie ──

    def attach(self) -> None:
        """Branche les handlers de l'agent sur le bus (idempotent)."""
        if self._listener_ids:
            return
        for kind, handler in self._subscriptions():
            listener_id = self.bus.subscribe(kind, handler, priority=self.priority)
            self._listener_ids.append((kind_key(kind), listener_id))
        self.logger.info(
            f"{self.name}: attached to {len(self._listener_ids)} event kinds"
        )

    def detach(self) -> None:
        for kind, listener_id in self._listener_ids:
            self.bus.unsubscribe(kind, listener_id)
        self._listener_ids = []

    @property
    def is_attached(self) -> bool:
        return bool(self._listener_ids)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        self.logger.info(f"{self.name}: {'Enabled' if enabled else 'Disabled'}")

    # ── Décision ──

    def should_take_action(self, data: Any) -> bool:
        return self.enabled

    def calculate_confidence(self, data: Any) -> float:
        """Part des champs requis présents et non nuls."""
        required = self.REQUIRED_FIELDS
        if not required:
            self.confidence = 1.0
            return self.confidence
        if not isinstance(data, dict):
            self.confidence = 0.0
            return self.confidence
        provided = sum(1 for field in required if data.get(field) is not None)
        self.confidence = provided / len(required)
        return self.confidence

    # ── Exécution ──

    def execute(self, action: Any) -> Any:
        """Exécute une action autonome. Jamais d'exception vers l'appelant."""
        if not self.enabled:
            self.logger.info(f"{self.name}: Agent disabled, skipping action")
            return None

        action_type = getattr(action, "type", "UNKNOWN")
        try:
            self.logger.debug(f"{self.name}: Executing action {action_type}")
            result = action.execute()
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise AgentError(
                    agent_name=self.name,
                    message=f"Action {action_type} is async, use execute_async()",
                )
        except Exception as e:
            self.logger.error(f"{self.name}: Action {action_type} failed: {e}")
            return None

        self._record_action(action_type, result)
        return result

    async def execute_async(self, action: Any) -> Any:
        """Variante pour les actions dont execute() est awaitable."""
        if not self.enabled:
            self.logger.info(f"{self.name}: Agent disabled, skipping action")
            return None

        action_type = getattr(action, "type", "UNKNOWN")
        try:
            result = action.execute()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self.logger.error(f"{self.name}: Action {action_type} failed: {e}")
            return None

        self._record_action(action_type, result)
        return result

    def _record_action(self, action_type: str, result: Any) -> None:
        record = ActionRecord(
            type=action_type,
            result=result,
            confidence=self.confidence,
        )
        self.last_action = record
        self.action_history.append(record)
        overflow = len(self.action_history) - self.config.max_action_history
        if overflow > 0:
            del self.action_history[:overflow]

        self.publish(
            EventKind.AGENT_ACTION,
            {
                "agent": self.name,
                "action": record.to_payload(),
                "confidence": record.confidence,
                "timestamp": record.timestamp,
            },
        )

    # ── Bus ──

    def publish(self, kind: KindLike, payload: dict[str, Any]) -> None:
        """Publie un événement dérivé. Les erreurs de dispatch restent au bus."""
        self.bus.publish(kind, payload)

    def publish_activity(self, message: str, confidence: float) -> None:
        """Activité lisible par l'utilisateur (AGENT_ACTION)."""
        self.publish(
            EventKind.AGENT_ACTION,
            {
                "agent": self.DISPLAY_NAME,
                "action": message,
                "confidence": confidence,
                "timestamp": datetime.utcnow(),
            },
        )

    # ── Statut ──

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "lastAction": self.last_action.to_payload() if self.last_action else None,
            "totalActions": len(self.action_history),
            "confidence": self.confidence,
        }

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} enabled={self.enabled}>"

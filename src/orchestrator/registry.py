"""
AgentRegistry — Composition root du core.

Responsabilités :
  1. Construire le bus à partir des Settings
  2. Choisir le provider d'historique (HTTP si configuré, sinon mémoire,
     alimenté par les INCOME_ADDED du bus)
  3. Instancier les agents avec leur config typée
  4. Les brancher / débrancher du bus (start / stop)
  5. Exposer leurs statuts et les toggles enabled

Design decisions :
  - Le registry ne connaît que AgentCapability, pas les classes concrètes
    au-delà de leur construction
  - Tout est injectable (bus, provider, configs) pour les tests
  - Pas de singleton : un registry = un bus = un jeu d'agents
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from agents.base import AgentCapability
from agents.income_variability import IncomeVariabilityAgent
from agents.spending_pattern import SpendingPatternAgent
from models.agent_config import AgentConfigSet, AgentType
from models.events import EventKind
from orchestrator.bus import EventBus
from services.config import Settings, get_settings
from services.history import HistoryProvider, HttpHistoryProvider, InMemoryHistoryProvider
from services.utils import safe_float

logger = logging.getLogger("finpulse.orchestrator.registry")


class AgentRegistry:
    """
    Le point d'entrée du core FinPulse.

    Usage :
        registry = AgentRegistry()
        registry.start()

        registry.bus.publish(EventKind.EXPENSE_ADDED, {...})
        await registry.bus.publish_async(EventKind.INCOME_ADDED, {...})

        registry.set_enabled(AgentType.SPENDING_PATTERN, False)
        registry.statuses()
        await registry.stop()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        history_provider: Optional[HistoryProvider] = None,
        bus: Optional[EventBus] = None,
        configs: Optional[AgentConfigSet] = None,
    ) -> None:
        self.settings = settings or get_settings()
        logging.getLogger("finpulse").setLevel(self.settings.log_level)

        self.bus = bus or EventBus(
            history_size=self.settings.event_history_size,
            max_dispatch_depth=self.settings.max_dispatch_depth,
        )
        self.history = history_provider or self._default_history_provider()
        # Un provider injecté appartient à l'appelant : on n'y écrit jamais
        self._records_income = (
            history_provider is None and isinstance(self.history, InMemoryHistoryProvider)
        )
        self._income_listener: Optional[str] = None
        self.configs = configs or AgentConfigSet()

        self._agents: dict[AgentType, AgentCapability] = {
            AgentType.INCOME_VARIABILITY: IncomeVariabilityAgent(
                self.bus,
                self.history,
                config=self.configs.income_variability,
                fetch_timeout_seconds=self.settings.history_fetch_timeout_seconds,
            ),
            AgentType.SPENDING_PATTERN: SpendingPatternAgent(
                self.bus,
                config=self.configs.spending_pattern,
            ),
        }
        self._started = False

    def _default_history_provider(self) -> HistoryProvider:
        if self.settings.has_history_api:
            logger.info(f"Using HTTP history provider at {self.settings.history_api_url}")
            return HttpHistoryProvider(settings=self.settings)
        logger.info("No history API configured, using in-memory provider")
        return InMemoryHistoryProvider()

    # ──────────────────────────────────────────────────────
    # LIFECYCLE
    # ──────────────────────────────────────────────────────

    def start(self) -> None:
        """Branche tous les agents sur le bus (idempotent)."""
        if self._started:
            return
        if self._records_income:
            # Avant l'agent : l'analyse voit le revenu qui vient d'arriver
            self._income_listener = self.bus.subscribe(
                EventKind.INCOME_ADDED, self._record_income, priority=100
            )
        for agent in self._agents.values():
            agent.attach()
        self._started = True
        logger.info(
            f"{self.settings.app_name} v{self.settings.app_version} started "
            f"with {len(self._agents)} agents"
        )

    async def stop(self) -> None:
        """Débranche les agents et ferme le provider s'il a des ressources."""
        for agent in self._agents.values():
            agent.detach()
        if self._income_listener is not None:
            self.bus.unsubscribe(EventKind.INCOME_ADDED, self._income_listener)
            self._income_listener = None
        self._started = False

        close = getattr(self.history, "close", None)
        if close is not None:
            await close()
        logger.info(f"{self.settings.app_name} stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    def _record_income(self, data: Any) -> None:
        if not isinstance(data, dict) or not data.get("userId"):
            return
        amount = safe_float(data.get("amount"))
        if amount <= 0:
            return
        self.history.record_income(  # type: ignore[attr-defined]
            str(data["userId"]), amount, data.get("date"), source=data.get("source")
        )

    # ──────────────────────────────────────────────────────
    # ACCESS
    # ──────────────────────────────────────────────────────

    def get(self, agent_type: AgentType) -> AgentCapability:
        agent = self._agents.get(agent_type)
        if agent is None:
            raise KeyError(f"Unknown agent type: {agent_type}")
        return agent

    @property
    def income_agent(self) -> IncomeVariabilityAgent:
        return self._agents[AgentType.INCOME_VARIABILITY]  # type: ignore[return-value]

    @property
    def spending_agent(self) -> SpendingPatternAgent:
        return self._agents[AgentType.SPENDING_PATTERN]  # type: ignore[return-value]

    @property
    def registered_agents(self) -> list[AgentType]:
        return list(self._agents.keys())

    def set_enabled(self, agent_type: AgentType, enabled: bool) -> None:
        self.get(agent_type).set_enabled(enabled)

    def statuses(self) -> dict[str, dict[str, Any]]:
        """Statut de chaque agent, indexé par type."""
        return {
            agent_type.value: agent.get_status()
            for agent_type, agent in self._agents.items()
        }

    def __repr__(self) -> str:
        return f"<AgentRegistry agents={len(self._agents)} running={self._started}>"


def build_registry(
    settings: Optional[Settings] = None,
    history_provider: Optional[HistoryProvider] = None,
    configs: Optional[AgentConfigSet] = None,
) -> AgentRegistry:
    """Construit ET démarre un registry."""
    registry = AgentRegistry(
        settings=settings,
        history_provider=history_provider,
        configs=configs,
    )
    registry.start()
    return registry

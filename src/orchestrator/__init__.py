"""
FinPulse Orchestrator — Le système nerveux du core.

Les agents ne se connaissent pas. Ils connaissent le bus.

2 modules :
  - bus.py       → EventBus : publish/subscribe, priorités, historique
  - registry.py  → AgentRegistry : construit et branche les agents
"""

from orchestrator.bus import EventBus
from orchestrator.registry import AgentRegistry, build_registry

__all__ = [
    "EventBus",
    "AgentRegistry",
    "build_registry",
]

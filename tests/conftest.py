"""Shared test fixtures and configuration for FinPulse core tests."""
import pytest
from datetime import datetime
from typing import Any

from models.events import EventKind, KindLike, kind_key
from orchestrator.bus import EventBus
from services.config import Settings
from services.history import InMemoryHistoryProvider
from agents.income_variability import IncomeVariabilityAgent
from agents.spending_pattern import SpendingPatternAgent


# Reference "now" for history windows: 1st June 2024
NOW = datetime(2024, 6, 1, 12, 0)


class EventRecorder:
    """Collects every payload published on a bus, by kind."""

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.events: list[tuple[str, Any]] = []

    def watch(self, *kinds: KindLike) -> None:
        for kind in kinds:
            key = kind_key(kind)
            self.bus.subscribe(
                kind,
                lambda payload, key=key: self.events.append((key, payload)),
                priority=-100,
            )

    def of(self, kind: KindLike) -> list[Any]:
        key = kind_key(kind)
        return [payload for k, payload in self.events if k == key]

    def kinds(self) -> list[str]:
        return [k for k, _ in self.events]


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def bus():
    return EventBus(history_size=100, max_dispatch_depth=16)


@pytest.fixture
def recorder(bus):
    rec = EventRecorder(bus)
    rec.watch(*EventKind)
    return rec


@pytest.fixture
def history():
    return InMemoryHistoryProvider(now=NOW)


@pytest.fixture
def income_agent(bus, history):
    return IncomeVariabilityAgent(bus, history, fetch_timeout_seconds=1.0)


@pytest.fixture
def spending_agent(bus):
    return SpendingPatternAgent(bus)

"""
Tests for the shared agent behaviour (AgentMixin / AgentCapability).
"""

import pytest

from agents.base import AgentAction, AgentCapability, AgentMixin
from models.agent_config import AgentType, BaseAgentConfig
from models.events import EventKind


class DummyAgent(AgentMixin):
    AGENT_NAME = "DummyAgent"
    DISPLAY_NAME = "Dummy Agent"
    REQUIRED_FIELDS = ("userId", "amount", "category", "date")

    def __init__(self, bus, config=None):
        self._init_agent(
            bus,
            config or BaseAgentConfig(agent_type=AgentType.SPENDING_PATTERN),
        )
        self.seen = []

    def process(self, data):
        self.seen.append(data)
        return data

    def _subscriptions(self):
        return [(EventKind.EXPENSE_ADDED, self.process)]


@pytest.fixture
def agent(bus):
    return DummyAgent(bus)


# =============================================================================
# Confidence
# =============================================================================

class TestConfidence:
    """Confidence is the share of required fields present and non-null."""

    def test_all_fields_present(self, agent):
        data = {"userId": "u1", "amount": 10, "category": "food", "date": "2024-05-01"}
        assert agent.calculate_confidence(data) == 1.0

    def test_partial_fields(self, agent):
        data = {"userId": "u1", "amount": 10, "category": None, "date": "2024-05-01"}
        assert agent.calculate_confidence(data) == 0.75
        assert agent.confidence == 0.75

    def test_zero_amount_still_counts_as_present(self, agent):
        data = {"userId": "u1", "amount": 0, "category": "food", "date": "2024-05-01"}
        assert agent.calculate_confidence(data) == 1.0

    def test_non_dict_payload(self, agent):
        assert agent.calculate_confidence("not a payload") == 0.0

    def test_no_required_fields_means_full_confidence(self, bus):
        class Open(DummyAgent):
            REQUIRED_FIELDS = ()

        assert Open(bus).calculate_confidence({}) == 1.0


# =============================================================================
# Execute
# =============================================================================

class TestExecute:
    """execute() runs actions, records them and never raises."""

    def test_successful_action_is_recorded_and_published(self, agent, recorder):
        result = agent.execute(AgentAction(type="DO_THING", run=lambda: {"ok": True}))

        assert result == {"ok": True}
        assert agent.last_action.type == "DO_THING"
        assert len(agent.action_history) == 1

        published = recorder.of(EventKind.AGENT_ACTION)
        assert len(published) == 1
        assert published[0]["agent"] == "DummyAgent"
        assert published[0]["action"]["type"] == "DO_THING"
        assert published[0]["action"]["result"] == {"ok": True}

    def test_failing_action_returns_none(self, agent, recorder):
        def explode():
            raise RuntimeError("nope")

        assert agent.execute(AgentAction(type="EXPLODE", run=explode)) is None
        assert agent.last_action is None
        assert recorder.of(EventKind.AGENT_ACTION) == []

    def test_disabled_agent_does_not_run_action(self, agent):
        ran = []
        agent.set_enabled(False)

        result = agent.execute(AgentAction(type="X", run=lambda: ran.append(1)))

        assert result is None
        assert ran == []

    def test_async_action_is_rejected_by_sync_execute(self, agent):
        async def work():
            return 42

        assert agent.execute(AgentAction(type="ASYNC", run=work)) is None
        assert agent.action_history == []

    @pytest.mark.asyncio
    async def test_execute_async_awaits_action(self, agent):
        async def work():
            return 42

        result = await agent.execute_async(AgentAction(type="ASYNC", run=work))

        assert result == 42
        assert agent.last_action.type == "ASYNC"

    def test_action_history_is_bounded(self, bus):
        config = BaseAgentConfig(
            agent_type=AgentType.SPENDING_PATTERN,
            max_action_history=3,
        )
        agent = DummyAgent(bus, config)

        for i in range(5):
            agent.execute(AgentAction(type=f"A{i}", run=lambda: None))

        assert [a.type for a in agent.action_history] == ["A2", "A3", "A4"]


# =============================================================================
# Lifecycle & status
# =============================================================================

class TestLifecycle:
    """Tests for attach / detach / status."""

    def test_attach_is_idempotent(self, agent, bus):
        agent.attach()
        agent.attach()

        assert bus.listener_count(EventKind.EXPENSE_ADDED) == 1
        assert agent.is_attached

    def test_attached_agent_receives_events(self, agent, bus):
        agent.attach()

        bus.publish(EventKind.EXPENSE_ADDED, {"userId": "u1"})

        assert agent.seen == [{"userId": "u1"}]

    def test_detach(self, agent, bus):
        agent.attach()
        agent.detach()

        bus.publish(EventKind.EXPENSE_ADDED, {"userId": "u1"})

        assert agent.seen == []
        assert not agent.is_attached

    def test_get_status(self, agent):
        agent.execute(AgentAction(type="X", run=lambda: "done"))

        status = agent.get_status()

        assert status["name"] == "DummyAgent"
        assert status["enabled"] is True
        assert status["totalActions"] == 1
        assert status["lastAction"]["type"] == "X"

    def test_satisfies_capability_protocol(self, agent):
        assert isinstance(agent, AgentCapability)

    def test_bare_mixin_process_is_abstract(self, bus):
        class Bare(AgentMixin):
            def __init__(self, bus):
                self._init_agent(bus, BaseAgentConfig(agent_type=AgentType.SPENDING_PATTERN))

        with pytest.raises(NotImplementedError):
            Bare(bus).process({})

    def test_should_take_action_follows_enabled(self, agent):
        assert agent.should_take_action({}) is True
        agent.set_enabled(False)
        assert agent.should_take_action({}) is False

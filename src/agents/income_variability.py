"""
Income Variability Agent — Stabilité du revenu, Flex Budget, semaines creuses.

UN KPI : variability score = σ / μ (coefficient de variation)

4 fonctions :
1. Classification  → STABLE / MODERATE_VARIABILITY / HIGH_VARIABILITY
2. Recommandation  → buffer d'urgence, épargne des bonnes semaines
3. Flex Budget     → allocation adaptative (HIGH_VARIABILITY uniquement)
4. Prédiction      → baisse de revenu sur les semaines ISO récentes

L'historique vient d'un provider externe (I/O, timeout).
Données insuffisantes ou provider muet = abstention, jamais d'erreur.
"""

from __future__ import annotations

import asyncio
import statistics
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

from models.agent_config import IncomeAgentConfig
from models.events import EventKind, KindLike
from models.income import (
    DiscretionaryAllocation,
    EssentialsAllocation,
    FlexAlert,
    FlexAllocations,
    FlexBudget,
    HighIncomeWeekRule,
    Impact,
    IncomeAnalysis,
    IncomeRange,
    IncomeRecord,
    LowIncomePrediction,
    LowIncomeWeekRule,
    Recommendation,
    RecommendedAction,
    SavingsAllocation,
    VariabilityLevel,
    WeekBucket,
    WeeklyAllocation,
    WeeklyRules,
    WeekMode,
)
from services.history import HistoryProvider, HistoryProviderError, to_income_record
from services.utils import format_inr, safe_divide, safe_float

from agents.base import AgentAction, AgentMixin, InsufficientDataError

if TYPE_CHECKING:
    from orchestrator.bus import EventBus

TREND_WINDOW_WEEKS = 2


class IncomeVariabilityAgent(AgentMixin):
    """Agent Income Variability — le radar des revenus irréguliers."""

    AGENT_NAME = "IncomeAgent"
    DISPLAY_NAME = "Income Agent"
    REQUIRED_FIELDS = ("userId", "amount", "date")

    def __init__(
        self,
        bus: EventBus,
        history: HistoryProvider,
        config: Optional[IncomeAgentConfig] = None,
        fetch_timeout_seconds: float = 5.0,
    ) -> None:
        self._init_agent(bus, config or IncomeAgentConfig())
        self.income_config: IncomeAgentConfig = self.config
        self.history = history
        self.fetch_timeout_seconds = fetch_timeout_seconds

    def _subscriptions(self) -> list[tuple[KindLike, Callable[[Any], Any]]]:
        return [
            (EventKind.INCOME_ADDED, self.handle_income_added),
            (EventKind.BUDGET_CREATED, self.handle_budget_created),
        ]

    def should_take_action(self, data: Any) -> bool:
        return self.enabled and self.confidence >= self.config.confidence_threshold

    async def process(self, data: dict[str, Any]) -> Optional[IncomeAnalysis]:
        return await self.handle_income_added(data)

    # ══════════════════════════════════════════
    # HANDLERS
    # ══════════════════════════════════════════

    async def handle_income_added(self, data: dict[str, Any]) -> Optional[IncomeAnalysis]:
        """INCOME_ADDED → analyse, recommandation, flex budget, prédiction."""
        if not self.enabled:
            return None

        self.calculate_confidence(data)
        if not self.should_take_action(data) or not data.get("userId"):
            self.logger.debug(
                f"{self.name}: skipping income event (confidence={self.confidence:.2f})"
            )
            return None

        user_id = str(data["userId"])
        amount = safe_float(data.get("amount"))
        source = data.get("source")
        self.logger.info(f"{self.name}: Processing new income entry for {user_id}")

        self.publish_activity(
            f"Recorded income of {format_inr(amount)}"
            f"{f' from {source}' if source else ''}. Analyzing income stability...",
            confidence=0.95,
        )

        records = await self._fetch_income_history(user_id)
        analysis = self.analyze_history(records or [])
        if analysis.insufficient_data:
            self.logger.info(f"{self.name}: {analysis.message} (user={user_id})")
            return analysis

        self._publish_classification(user_id, analysis)

        if analysis.variability_score > self.income_config.high_variability_threshold:
            self.execute(AgentAction(
                type="CREATE_FLEX_BUDGET",
                run=lambda: self.create_flex_budget(user_id, analysis),
                description="Adaptive budget for highly variable income",
            ))

        self.predict_from_records(user_id, records or [])
        return analysis

    async def handle_budget_created(self, data: dict[str, Any]) -> Optional[IncomeAnalysis]:
        """BUDGET_CREATED → on recalcule la variabilité, sans rien publier."""
        if not self.enabled or not isinstance(data, dict) or not data.get("userId"):
            return None
        self.logger.info(f"{self.name}: Analyzing budget income...")
        return await self.analyze_income_variability(str(data["userId"]))

    # ══════════════════════════════════════════
    # FONCTION 1 — CLASSIFICATION
    # ══════════════════════════════════════════

    async def analyze_income_variability(self, user_id: str) -> IncomeAnalysis:
        records = await self._fetch_income_history(user_id)
        return self.analyze_history(records or [])

    def analyze_history(self, records: list[IncomeRecord]) -> IncomeAnalysis:
        """Statistiques de variabilité sur l'historique observé."""
        try:
            return self._analyze(records)
        except InsufficientDataError as e:
            return IncomeAnalysis.insufficient(len(records), e.message)

    def _analyze(self, records: list[IncomeRecord]) -> IncomeAnalysis:
        cfg = self.income_config
        if len(records) < cfg.min_observations:
            raise InsufficientDataError(
                agent_name=self.name,
                detail=(
                    f"{len(records)} income entries, "
                    f"{cfg.min_observations} needed to analyze"
                ),
            )

        amounts = [r.amount for r in records]
        mean = statistics.fmean(amounts)
        std_dev = statistics.pstdev(amounts, mu=mean)
        score = safe_divide(std_dev, mean)

        self.logger.debug(
            f"Income analysis: mean={mean:.0f}, std_dev={std_dev:.0f}, "
            f"score={score:.3f}"
        )

        return IncomeAnalysis(
            is_variable=score > cfg.variability_threshold,
            variability_score=score,
            mean=mean,
            std_dev=std_dev,
            min=min(amounts),
            max=max(amounts),
            observations=len(amounts),
            recommendation=self.get_recommendation(score, mean),
        )

    # ══════════════════════════════════════════
    # FONCTION 2 — RECOMMANDATION
    # ══════════════════════════════════════════

    def get_recommendation(self, score: float, mean: float) -> Recommendation:
        cfg = self.income_config
        if score > cfg.high_variability_threshold:
            return Recommendation(
                type=VariabilityLevel.HIGH_VARIABILITY,
                title="Income Highly Variable Detected",
                message=(
                    f"Your income varies significantly ({score * 100:.0f}% variability). "
                    f"I've activated Flex Budget mode to adapt to your income patterns."
                ),
                actions=[
                    RecommendedAction(
                        action="Build Emergency Buffer",
                        target=round(mean * cfg.emergency_buffer_ratio, 2),
                        priority="CRITICAL",
                    ),
                    RecommendedAction(
                        action="Save Extra in High-Income Weeks",
                        target=round(mean * cfg.high_week_saving_ratio, 2),
                        priority="HIGH",
                    ),
                    RecommendedAction(
                        action="Reduce Discretionary in Low-Income Weeks",
                        percentage=cfg.discretionary_reduction_pct,
                        priority="MEDIUM",
                    ),
                ],
            )
        if score > cfg.variability_threshold:
            return Recommendation(
                type=VariabilityLevel.MODERATE_VARIABILITY,
                title="Moderate Income Variability",
                message="Your income has some variation. Consider building a small buffer.",
                actions=[
                    RecommendedAction(
                        action="Build 1-Week Emergency Buffer",
                        target=round(mean * cfg.moderate_buffer_ratio, 2),
                        priority="MEDIUM",
                    ),
                ],
            )
        return Recommendation(
            type=VariabilityLevel.STABLE,
            title="Stable Income Detected",
            message="Your income is stable. Standard budgeting recommended.",
        )

    def _publish_classification(self, user_id: str, analysis: IncomeAnalysis) -> None:
        cfg = self.income_config
        score = analysis.variability_score
        recommendation = analysis.recommendation

        if score > cfg.high_variability_threshold:
            self.publish(
                EventKind.INCOME_VARIABILITY_DETECTED,
                {
                    "userId": user_id,
                    "variabilityScore": score,
                    "recommendation": recommendation.to_payload(),
                },
            )

        if score > cfg.variability_threshold:
            percent = round(score * 100)
            label = "high variability" if recommendation.type == VariabilityLevel.HIGH_VARIABILITY else "moderate"
            text = f"Your income varies by {percent}% week-to-week ({label}). {recommendation.message}"
            impact = Impact.HIGH
        else:
            text = (
                "Great! Your income is stable. This makes budgeting easier. "
                "Consider automating your savings."
            )
            impact = Impact.LOW

        self.publish(
            EventKind.AGENT_RECOMMENDATION,
            {
                "agent": self.DISPLAY_NAME,
                "userId": user_id,
                "recommendation": text,
                "details": recommendation.to_payload(),
                "impact": impact.value,
                "timestamp": datetime.utcnow(),
            },
        )

    # ══════════════════════════════════════════
    # FONCTION 3 — FLEX BUDGET
    # ══════════════════════════════════════════

    def build_flex_budget(self, analysis: IncomeAnalysis) -> FlexBudget:
        cfg = self.income_config
        mean = analysis.mean
        return FlexBudget(
            base_income=mean,
            income_range=IncomeRange(min=analysis.min, max=analysis.max),
            variability_score=analysis.variability_score,
            allocations=FlexAllocations(
                essentials=EssentialsAllocation(
                    percentage=cfg.allocation.essentials,
                    categories=list(cfg.essentials_categories),
                ),
                savings=SavingsAllocation(
                    percentage=cfg.allocation.savings,
                    min_percentage=cfg.savings_floor_pct,
                ),
                discretionary=DiscretionaryAllocation(
                    percentage=cfg.allocation.discretionary,
                ),
            ),
            weekly_rules=WeeklyRules(
                high_income_week=HighIncomeWeekRule(
                    threshold=mean * cfg.high_income_week_ratio,
                    savings_boost=cfg.high_week_savings_boost_pct,
                ),
                low_income_week=LowIncomeWeekRule(
                    threshold=mean * cfg.low_income_week_ratio,
                    discretionary_cut=cfg.low_week_discretionary_cut_pct,
                ),
            ),
            alerts=[
                FlexAlert(
                    type="INCOME_PREDICTION",
                    message=(
                        "Based on your patterns, income may drop next week. "
                        "Save extra this week!"
                    ),
                    trigger_days=7,
                ),
            ],
        )

    def create_flex_budget(self, user_id: str, analysis: IncomeAnalysis) -> FlexBudget:
        """Construit le Flex Budget et le publie (BUDGET_UPDATED, FLEX)."""
        flex_budget = self.build_flex_budget(analysis)
        self.publish(
            EventKind.BUDGET_UPDATED,
            {
                "userId": user_id,
                "budgetType": "FLEX",
                "flexBudget": flex_budget.to_payload(),
                "autonomous": True,
            },
        )
        self.logger.info(
            f"{self.name}: Flex Budget created for {user_id} "
            f"(base={flex_budget.base_income:.0f})"
        )
        return flex_budget

    @staticmethod
    def adapt_week(flex_budget: FlexBudget, week_income: float) -> WeeklyAllocation:
        """Applique les weeklyRules à la semaine en cours.

        Semaine haute : +boost points d'épargne, pris sur le discrétionnaire.
        Semaine basse : discrétionnaire coupé, épargne au plancher,
        les essentiels absorbent le reste.
        """
        allocations = flex_budget.allocations
        rules = flex_budget.weekly_rules
        essentials = allocations.essentials.percentage
        savings = allocations.savings.percentage
        discretionary = allocations.discretionary.percentage
        message = None

        if week_income > rules.high_income_week.threshold:
            mode = WeekMode.HIGH
            boost = min(rules.high_income_week.savings_boost, discretionary)
            savings += boost
            discretionary -= boost
            message = rules.high_income_week.message
        elif week_income < rules.low_income_week.threshold:
            mode = WeekMode.LOW
            discretionary *= 1 - rules.low_income_week.discretionary_cut / 100
            savings = allocations.savings.min_percentage
            essentials = 100 - savings - discretionary
            message = rules.low_income_week.message
        else:
            mode = WeekMode.NORMAL

        return WeeklyAllocation(
            mode=mode,
            income=week_income,
            essentials_pct=essentials,
            savings_pct=savings,
            discretionary_pct=discretionary,
            essentials_amount=round(week_income * essentials / 100, 2),
            savings_amount=round(week_income * savings / 100, 2),
            discretionary_amount=round(week_income * discretionary / 100, 2),
            message=message,
        )

    # ══════════════════════════════════════════
    # FONCTION 4 — PRÉDICTION SEMAINES CREUSES
    # ══════════════════════════════════════════

    async def predict_low_income_period(self, user_id: str) -> LowIncomePrediction:
        records = await self._fetch_income_history(user_id)
        return self.predict_from_records(user_id, records or [])

    def predict_from_records(
        self,
        user_id: str,
        records: list[IncomeRecord],
    ) -> LowIncomePrediction:
        prediction = self.detect_downward_trend(self.calculate_weekly_averages(records))
        if prediction.is_predicted:
            self.publish(
                EventKind.LOW_INCOME_PERIOD_PREDICTED,
                {
                    "userId": user_id,
                    "prediction": prediction.to_payload(),
                    "autonomous": True,
                },
            )
            self.logger.info(
                f"{self.name}: Low income period predicted for {user_id} "
                f"(drop={prediction.drop}%)"
            )
        return prediction

    @staticmethod
    def calculate_weekly_averages(records: list[IncomeRecord]) -> list[WeekBucket]:
        """Regroupe par semaine ISO, dans l'ordre chronologique."""
        weeks: dict[tuple[int, int], list[float]] = defaultdict(list)
        for record in records:
            iso = record.date.isocalendar()
            weeks[(iso[0], iso[1])].append(record.amount)

        return [
            WeekBucket(
                iso_year=year,
                iso_week=week,
                average=sum(amounts) / len(amounts),
                total=sum(amounts),
                count=len(amounts),
            )
            for (year, week), amounts in sorted(weeks.items())
        ]

    def detect_downward_trend(self, weekly: list[WeekBucket]) -> LowIncomePrediction:
        """Moyenne des 2 dernières semaines vs les 2 précédentes."""
        cfg = self.income_config
        if len(weekly) < max(cfg.trend_min_weeks, 2 * TREND_WINDOW_WEEKS):
            return LowIncomePrediction(confidence=0.0)

        recent = weekly[-TREND_WINDOW_WEEKS:]
        previous = weekly[-2 * TREND_WINDOW_WEEKS:-TREND_WINDOW_WEEKS]
        recent_avg = sum(w.average for w in recent) / len(recent)
        previous_avg = sum(w.average for w in previous) / len(previous)

        drop = safe_divide(previous_avg - recent_avg, previous_avg) * 100
        if drop > cfg.trend_drop_threshold_pct:
            return LowIncomePrediction(
                confidence=cfg.trend_confidence,
                drop=round(drop),
                duration="1-2 weeks",
                buffer_needed=round(recent_avg * cfg.trend_buffer_ratio, 2),
                reasoning=(
                    f"Your income has dropped {cfg.trend_drop_threshold_pct:.0f}%+ "
                    f"in recent weeks based on historical pattern"
                ),
            )
        return LowIncomePrediction(confidence=0.0)

    # ══════════════════════════════════════════
    # HISTORIQUE
    # ══════════════════════════════════════════

    async def _fetch_income_history(self, user_id: str) -> Optional[list[IncomeRecord]]:
        """Historique de revenus, ou None si le provider n'a pas répondu."""
        days = self.income_config.prediction_window_days
        try:
            raw = await asyncio.wait_for(
                self.history.get_income_history(user_id, days),
                timeout=self.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                f"{self.name}: income history fetch timed out after "
                f"{self.fetch_timeout_seconds}s (user={user_id}). Abstaining."
            )
            return None
        except HistoryProviderError as e:
            self.logger.warning(f"{self.name}: {e}. Abstaining.")
            return None
        except Exception:
            self.logger.exception(f"{self.name}: income history fetch failed")
            return None

        records: list[IncomeRecord] = []
        for item in raw or []:
            if isinstance(item, IncomeRecord):
                records.append(item)
            elif isinstance(item, dict):
                record = to_income_record(item)
                if record is not None:
                    records.append(record)
        return records

"""
Spending Pattern Agent — Apprentissage du comportement de dépense.

Machine à états par transaction (EXPENSE_ADDED / VOICE_EXPENSE_DETECTED) :
1. Anomalie        → z-score vs l'historique AVANT cette transaction
2. Apprentissage   → agrégats catégorie / jour / créneau horaire
3. Triggers        → weekend food, late night, payday (dans cet ordre)
4. Intervention    → EXCEEDING_AVERAGE > RAPID_SPENDING > TRIGGER_DETECTED,
                     le premier qui matche gagne, une seule alerte
5. Publication     → alerte d'intervention puis anomalie

Tout est en mémoire, par userId, privé à l'agent. Mémoire bornée :
transactions par catégorie plafonnées, triggers dédupliqués par type.
evict_user() libère un profil (avec hook de persistance optionnel).
"""

from __future__ import annotations

import math
import statistics
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional

from models.agent_config import SpendingPatternConfig
from models.events import EventKind, KindLike
from models.patterns import (
    Alternative,
    AnomalySeverity,
    AnomalyVerdict,
    BehavioralProfile,
    CategoryStats,
    DayStats,
    Intervention,
    InterventionDecision,
    InterventionReason,
    TimeSlot,
    TimeSlotStats,
    Transaction,
    TransactionRecord,
    TriggerPattern,
    TriggerType,
    summarize_profile,
)
from services.utils import DAY_NAMES, format_inr, parse_timestamp, safe_divide, safe_float

from agents.base import AgentAction, AgentMixin

if TYPE_CHECKING:
    from orchestrator.bus import EventBus

WEEKEND_DAYS = (0, 6)

# (action, fraction économisée, effort, impact)
FOOD_ALTERNATIVES = [
    ("Cook at home", 0.7, "Medium", "High"),
    ("Eat at local dhaba/mess", 0.5, "Low", "Medium"),
    ("Order smaller portion", 0.3, "Low", "Low"),
]
TRANSPORT_ALTERNATIVES = [
    ("Take public transport", 0.6, "Low", "High"),
    ("Carpool/bike pool", 0.4, "Medium", "Medium"),
]
SHOPPING_ALTERNATIVES = [
    ("Wait 24 hours (impulse check)", 1.0, "Low", "High"),
    ("Buy during sale/discount", 0.3, "Medium", "Medium"),
    ("Buy used/refurbished", 0.5, "Medium", "High"),
]


class SpendingPatternAgent(AgentMixin):
    """Agent Spending Pattern — apprend, détecte, intervient."""

    AGENT_NAME = "SpendingPatternAgent"
    DISPLAY_NAME = "Spending Agent"
    REQUIRED_FIELDS = ("userId", "amount", "category", "date")

    def __init__(
        self,
        bus: EventBus,
        config: Optional[SpendingPatternConfig] = None,
        on_evict: Optional[Callable[[BehavioralProfile], Any]] = None,
    ) -> None:
        self._init_agent(bus, config or SpendingPatternConfig())
        self.spending_config: SpendingPatternConfig = self.config
        self.patterns: dict[str, BehavioralProfile] = {}
        self.on_evict = on_evict

    def _subscriptions(self) -> list[tuple[KindLike, Callable[[Any], Any]]]:
        return [
            (EventKind.EXPENSE_ADDED, self.handle_expense_added),
            (EventKind.VOICE_EXPENSE_DETECTED, self.handle_voice_expense),
        ]

    def should_take_action(self, data: Any) -> bool:
        return self.enabled and self.confidence >= self.config.confidence_threshold

    def process(self, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        return self.handle_expense_added(data)

    # ══════════════════════════════════════════
    # HANDLERS
    # ══════════════════════════════════════════

    def handle_expense_added(self, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        if not self.enabled:
            return None

        self.calculate_confidence(data)
        if not self.should_take_action(data):
            self.logger.debug(
                f"{self.name}: skipping expense (confidence={self.confidence:.2f})"
            )
            return None

        transaction = self._to_transaction(data)
        if transaction is None:
            return None

        self._publish_activity(transaction)

        # Verdict sur l'historique AVANT d'apprendre cette transaction
        anomaly = self.detect_anomaly(transaction)

        self.learn_pattern(transaction)

        decision = self.should_intervene(transaction)
        intervention = None
        if decision.intervene:
            intervention = self.execute(AgentAction(
                type="PROACTIVE_INTERVENTION",
                run=lambda: self.proactive_intervention(transaction, decision),
            ))

        if anomaly.is_anomaly:
            self._publish_anomaly(transaction, anomaly)

        return {
            "transaction": transaction,
            "decision": decision,
            "intervention": intervention,
            "anomaly": anomaly,
        }

    def handle_voice_expense(self, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Dépense dictée : même traitement, source = voice."""
        if not isinstance(data, dict):
            return None
        extracted = data.get("extracted") or {}
        self.logger.debug(f"{self.name}: Voice expense detected")
        return self.handle_expense_added({
            **extracted,
            "userId": data.get("userId"),
            "source": "voice",
        })

    def _to_transaction(self, data: dict[str, Any]) -> Optional[Transaction]:
        user_id = data.get("userId")
        amount = safe_float(data.get("amount"))
        if not user_id or amount <= 0:
            self.logger.debug(f"{self.name}: ignoring expense without user or amount")
            return None

        category = str(data.get("category") or "other").strip().lower()
        monthly_total = data.get("monthlyTotal")
        budget_amount = data.get("budgetAmount")
        return Transaction(
            user_id=str(user_id),
            amount=amount,
            category=category,
            date=parse_timestamp(data.get("date"), default=datetime.now()),
            description=data.get("description"),
            source=data.get("source") or "manual",
            monthly_total=safe_float(monthly_total) if monthly_total is not None else None,
            budget_amount=safe_float(budget_amount) if budget_amount is not None else None,
        )

    def _publish_activity(self, transaction: Transaction) -> None:
        description = f' for "{transaction.description}"' if transaction.description else ""
        monthly = transaction.monthly_total or transaction.amount
        self.publish_activity(
            f"Analyzed {transaction.category} expense of {format_inr(transaction.amount)}"
            f"{description}. Monthly {transaction.category} total: {format_inr(monthly)}",
            confidence=0.92,
        )

    # ══════════════════════════════════════════
    # APPRENTISSAGE
    # ══════════════════════════════════════════

    def learn_pattern(self, transaction: Transaction) -> BehavioralProfile:
        """Met à jour le profil. Une erreur n'annule pas ce qui est déjà appris."""
        profile = self._get_or_create_profile(transaction.user_id)

        try:
            self._update_aggregates(profile, transaction)
        except Exception:
            self.logger.exception(
                f"{self.name}: failed to update aggregates for {transaction.user_id}"
            )

        try:
            self.detect_spending_triggers(profile, transaction)
        except Exception:
            self.logger.exception(
                f"{self.name}: trigger detection failed for {transaction.user_id}"
            )

        profile.updated_at = datetime.utcnow()
        stats = profile.by_category.get(transaction.category)
        if stats is not None:
            self.logger.debug(
                f"Pattern learned: {transaction.category} on "
                f"{DAY_NAMES[transaction.day_of_week]} (avg={stats.average_amount:.0f})"
            )
        return profile

    def _get_or_create_profile(self, user_id: str) -> BehavioralProfile:
        profile = self.patterns.get(user_id)
        if profile is None:
            profile = BehavioralProfile(user_id=user_id)
            self.patterns[user_id] = profile
        return profile

    def _update_aggregates(self, profile: BehavioralProfile, transaction: Transaction) -> None:
        record = TransactionRecord(
            amount=transaction.amount,
            date=transaction.date,
            day_of_week=transaction.day_of_week,
            hour=transaction.hour,
        )
        category = profile.by_category.setdefault(transaction.category, CategoryStats())
        category.add(record, self.spending_config.max_transactions_per_category)

        day = profile.by_day_of_week.setdefault(transaction.day_of_week, DayStats())
        day.add(transaction.amount)

        slot = TimeSlot.from_hour(transaction.hour).value
        time_slot = profile.by_time_of_day.setdefault(slot, TimeSlotStats())
        time_slot.add(transaction.amount, transaction.category)

    # ══════════════════════════════════════════
    # TRIGGERS
    # ══════════════════════════════════════════

    def detect_spending_triggers(
        self,
        profile: BehavioralProfile,
        transaction: Transaction,
    ) -> list[TriggerPattern]:
        """Heuristiques évaluées indépendamment, dans l'ordre."""
        cfg = self.spending_config
        detected: list[TriggerPattern] = []

        # 1. Weekend food splurge
        if cfg.is_food(transaction.category) and transaction.day_of_week in WEEKEND_DAYS:
            weekend = [
                t
                for name, stats in profile.by_category.items()
                if cfg.is_food(name)
                for t in stats.transactions
                if t.day_of_week in WEEKEND_DAYS
            ]
            if len(weekend) >= cfg.weekend_food_min_count:
                average = sum(t.amount for t in weekend) / len(weekend)
                if average > cfg.weekend_food_min_average:
                    detected.append(self._upsert_trigger(profile, transaction, TriggerPattern(
                        type=TriggerType.WEEKEND_FOOD_SPLURGE,
                        description="Tendency to overspend on food during weekends",
                        average_amount=average,
                        frequency=len(weekend),
                        confidence=0.85,
                        intervention=Intervention(
                            message=f"Weekend food spending pattern detected. Average: {format_inr(average)}",
                            suggestion="Consider cooking at home on weekends to save ₹2,000+/month",
                        ),
                    )))

        # 2. Late night impulse
        if cfg.is_late_night(transaction.hour):
            late_night = sum(
                1
                for stats in profile.by_category.values()
                for t in stats.transactions
                if cfg.is_late_night(t.hour)
            )
            if late_night > cfg.late_night_min_count:
                detected.append(self._upsert_trigger(profile, transaction, TriggerPattern(
                    type=TriggerType.LATE_NIGHT_IMPULSE,
                    description="Impulse spending late at night",
                    frequency=late_night,
                    confidence=0.75,
                    intervention=Intervention(
                        message="Late night spending detected. Sleep on it?",
                        suggestion="Wait till morning - 60% of late-night purchases are regretted",
                    ),
                )))

        # 3. Payday splurge
        if (
            transaction.day_of_week == cfg.payday_weekday
            and transaction.amount > cfg.payday_min_amount
        ):
            detected.append(self._upsert_trigger(profile, transaction, TriggerPattern(
                type=TriggerType.FRIDAY_SPLURGE,
                description="Large expenses on Fridays (possibly payday)",
                average_amount=transaction.amount,
                confidence=0.7,
                intervention=Intervention(
                    message="Friday spending spike!",
                    suggestion="Set aside savings first before discretionary spending",
                ),
            )))

        return detected

    def _upsert_trigger(
        self,
        profile: BehavioralProfile,
        transaction: Transaction,
        candidate: TriggerPattern,
    ) -> TriggerPattern:
        """Un trigger par type : on rafraîchit l'existant au lieu d'empiler."""
        existing = profile.find_trigger(candidate.type)
        if existing is not None:
            existing.description = candidate.description
            existing.average_amount = candidate.average_amount
            existing.frequency = candidate.frequency
            existing.confidence = candidate.confidence
            existing.intervention = candidate.intervention
            existing.occurrences += 1
            existing.last_seen = transaction.date
            return existing

        candidate.first_seen = transaction.date
        candidate.last_seen = transaction.date
        profile.triggers.append(candidate)
        overflow = len(profile.triggers) - self.spending_config.max_triggers
        if overflow > 0:
            profile.triggers.sort(key=lambda t: t.last_seen)
            del profile.triggers[:overflow]
        self.logger.info(
            f"{self.name}: trigger {candidate.type.value} learned for {profile.user_id}"
        )
        return candidate

    # ══════════════════════════════════════════
    # INTERVENTION
    # ══════════════════════════════════════════

    def should_intervene(self, transaction: Transaction) -> InterventionDecision:
        """Première règle qui matche gagne. Jamais de fan-out."""
        cfg = self.spending_config
        profile = self.patterns.get(transaction.user_id)
        stats = profile.by_category.get(transaction.category) if profile else None
        if profile is None or stats is None:
            return InterventionDecision(intervene=False, message="Not enough pattern data")

        # a. Dépense du jour > multiplier × moyenne de la catégorie
        today = transaction.date.date()
        today_spending = sum(t.amount for t in stats.transactions if t.date.date() == today)
        if today_spending > stats.average_amount * cfg.exceeding_average_multiplier:
            return InterventionDecision(
                intervene=True,
                reason=InterventionReason.EXCEEDING_AVERAGE,
                message=(
                    f"You've already spent {format_inr(today_spending)} on "
                    f"{transaction.category} today. "
                    f"Your average: {format_inr(stats.average_amount)}"
                ),
                suggestion=f"Consider pausing {transaction.category} spending for the rest of the day",
                confidence=0.9,
            )

        # b. Rafale dans la fenêtre glissante (strictement < 1h)
        window = timedelta(minutes=cfg.rapid_window_minutes)
        recent = [
            t for t in stats.transactions
            if timedelta(0) <= transaction.date - t.date < window
        ]
        if len(recent) >= cfg.rapid_min_count:
            return InterventionDecision(
                intervene=True,
                reason=InterventionReason.RAPID_SPENDING,
                message=(
                    f"This is purchase #{len(recent)} on {transaction.category} "
                    f"in the last hour. Take a breath?"
                ),
                suggestion="Wait 10 minutes before your next purchase",
                confidence=0.85,
            )

        # c. Trigger connu dont la fenêtre temporelle matche
        trigger = self._active_trigger(profile, transaction)
        if trigger is not None:
            return InterventionDecision(
                intervene=True,
                reason=InterventionReason.TRIGGER_DETECTED,
                trigger=trigger,
                message=trigger.intervention.message,
                suggestion=trigger.intervention.suggestion,
                confidence=trigger.confidence,
            )

        return InterventionDecision(intervene=False)

    def _active_trigger(
        self,
        profile: BehavioralProfile,
        transaction: Transaction,
    ) -> Optional[TriggerPattern]:
        for trigger in profile.triggers:
            if (
                trigger.type == TriggerType.WEEKEND_FOOD_SPLURGE
                and transaction.day_of_week in WEEKEND_DAYS
            ):
                return trigger
            if (
                trigger.type == TriggerType.LATE_NIGHT_IMPULSE
                and self.spending_config.is_late_night(transaction.hour)
            ):
                return trigger
        return None

    def proactive_intervention(
        self,
        transaction: Transaction,
        decision: InterventionDecision,
    ) -> dict[str, Any]:
        """Publie l'alerte HIGH avec les alternatives moins chères."""
        alternatives = [a.to_payload() for a in self.suggest_alternatives(transaction)]
        now = datetime.utcnow()
        reason = decision.reason.value if decision.reason else None

        self.logger.info(
            f"{self.name}: proactive intervention for {transaction.user_id} ({reason})"
        )
        self.publish(
            EventKind.AGENT_ALERT,
            {
                "agent": self.name,
                "userId": transaction.user_id,
                "type": "PROACTIVE_INTERVENTION",
                "priority": "HIGH",
                "message": decision.message,
                "suggestion": decision.suggestion,
                "reason": reason,
                "alternatives": alternatives,
                "timestamp": now,
                "intervention": {
                    "transaction": transaction.to_payload(),
                    "reason": reason,
                    "message": decision.message,
                    "suggestion": decision.suggestion,
                    "alternatives": alternatives,
                    "timestamp": now,
                },
            },
        )

        return {
            "type": "PROACTIVE_ALERT",
            "reason": reason,
            "message": decision.message,
            "suggestion": decision.suggestion,
            "timing": "BEFORE_CONFIRMATION",
            "alternatives": alternatives,
        }

    def suggest_alternatives(self, transaction: Transaction) -> list[Alternative]:
        cfg = self.spending_config
        if cfg.is_food(transaction.category):
            options = FOOD_ALTERNATIVES
        elif cfg.is_transport(transaction.category):
            options = TRANSPORT_ALTERNATIVES
        elif cfg.is_shopping(transaction.category):
            options = SHOPPING_ALTERNATIVES
        else:
            return []

        return [
            Alternative(
                action=action,
                savings=round(transaction.amount * fraction),
                savings_fraction=fraction,
                effort=effort,
                impact=impact,
            )
            for action, fraction, effort, impact in options
        ]

    # ══════════════════════════════════════════
    # ANOMALIES
    # ══════════════════════════════════════════

    def detect_anomaly(self, transaction: Transaction) -> AnomalyVerdict:
        """
        Z-score vs la fenêtre de transactions conservée pour la catégorie.

        Moyenne et écart-type sont calculés sur la même fenêtre.
        Pas d'historique = abstention. Historique plat (σ = 0) : montant
        identique = normal, tout autre montant = z infini, sévérité HIGH.
        """
        cfg = self.spending_config
        profile = self.patterns.get(transaction.user_id)
        stats = profile.by_category.get(transaction.category) if profile else None
        if stats is None or len(stats.transactions) < cfg.anomaly_min_samples:
            return AnomalyVerdict.abstain()

        amounts = [t.amount for t in stats.transactions]
        mean = statistics.fmean(amounts)
        std_dev = statistics.pstdev(amounts, mu=mean)
        delta = transaction.amount - mean

        if std_dev == 0:
            z_score = math.copysign(math.inf, delta) if delta else 0.0
        else:
            z_score = delta / std_dev
        if abs(z_score) <= cfg.anomaly_z_threshold:
            return AnomalyVerdict(
                is_anomaly=False,
                z_score=z_score,
                mean=mean,
                std_dev=std_dev,
            )

        severity = (
            AnomalySeverity.HIGH
            if abs(z_score) > cfg.anomaly_high_z_threshold
            else AnomalySeverity.MEDIUM
        )
        self.logger.info(
            f"{self.name}: anomaly {transaction.amount:.0f} on "
            f"{transaction.category} (z={z_score:.2f})"
        )
        return AnomalyVerdict(
            is_anomaly=True,
            severity=severity,
            z_score=z_score,
            mean=mean,
            std_dev=std_dev,
            message=(
                f"Unusual spending detected! {format_inr(transaction.amount)} on "
                f"{transaction.category}. Your average: {format_inr(mean)}"
            ),
            require_confirmation=True,
            possible_reasons=self.get_possible_reasons(transaction.amount, mean),
        )

    @staticmethod
    def get_possible_reasons(amount: float, average: float) -> list[str]:
        multiplier = safe_divide(amount, average)
        if multiplier > 3:
            return [
                "One-time expense (Wedding/Emergency)",
                "Bulk purchase",
                "Multiple items in one transaction",
            ]
        if multiplier > 2:
            return [
                "Special occasion",
                "Impulse purchase",
                "Necessary upgrade",
            ]
        return []

    def _publish_anomaly(self, transaction: Transaction, anomaly: AnomalyVerdict) -> None:
        self.publish(
            EventKind.ANOMALY_DETECTED,
            {
                "userId": transaction.user_id,
                "expense": transaction.to_payload(),
                "anomaly": anomaly.to_payload(),
            },
        )

        mean = anomaly.mean or 0.0
        delta_pct = round(abs(safe_divide(transaction.amount - mean, mean)) * 100)
        direction = "higher" if transaction.amount >= mean else "lower"
        self.publish(
            EventKind.AGENT_ALERT,
            {
                "agent": self.DISPLAY_NAME,
                "userId": transaction.user_id,
                "message": (
                    f"Unusual {transaction.category} expense detected: "
                    f"{format_inr(transaction.amount)} is {delta_pct}% {direction} "
                    f"than your average. Is everything okay?"
                ),
                "severity": "warning",
                "timestamp": datetime.utcnow(),
            },
        )

    # ══════════════════════════════════════════
    # PROFILS
    # ══════════════════════════════════════════

    def get_user_patterns(self, user_id: str) -> Optional[BehavioralProfile]:
        return self.patterns.get(user_id)

    def get_pattern_summary(self, user_id: str) -> dict[str, Any]:
        profile = self.patterns.get(user_id)
        if profile is None:
            return {"message": "No patterns detected yet"}

        summary = summarize_profile(profile)
        summary["insights"] = self.generate_insights(profile)
        return summary

    @staticmethod
    def generate_insights(profile: BehavioralProfile) -> list[dict[str, str]]:
        insights = []

        if profile.by_day_of_week:
            day, stats = max(
                profile.by_day_of_week.items(),
                key=lambda item: item[1].average_amount,
            )
            insights.append({
                "type": "EXPENSIVE_DAY",
                "message": (
                    f"Your most expensive day is {DAY_NAMES[day]} "
                    f"(Avg: {format_inr(stats.average_amount)})"
                ),
            })

        if profile.by_category:
            category, stats = max(
                profile.by_category.items(),
                key=lambda item: item[1].count,
            )
            insights.append({
                "type": "FREQUENT_CATEGORY",
                "message": f"You spend most often on {category} ({stats.count} transactions)",
            })

        return insights

    def evict_user(self, user_id: str) -> Optional[BehavioralProfile]:
        """Libère le profil d'un user. on_evict reçoit le profil pour persistance."""
        profile = self.patterns.pop(user_id, None)
        if profile is None:
            return None
        if self.on_evict is not None:
            try:
                self.on_evict(profile)
            except Exception:
                self.logger.exception(f"{self.name}: on_evict hook failed for {user_id}")
        self.logger.info(f"{self.name}: evicted profile for {user_id}")
        return profile

    @property
    def user_count(self) -> int:
        return len(self.patterns)

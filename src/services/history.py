"""
History Providers — Accès LECTURE SEULE à l'historique des transactions.

Le stockage n'appartient pas au core. Un provider expose :
  - get_income_history(user_id, days)  → list[IncomeRecord]
  - get_expense_history(user_id, days) → list[dict]

Les sources sont eventually-consistent : une liste vide est une
réponse légitime, jamais une erreur.

Deux implémentations :
  - InMemoryHistoryProvider → tests, embarqué, démo
  - HttpHistoryProvider     → API REST du backend (httpx)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

import httpx

from models.income import IncomeRecord
from services.config import Settings, get_settings
from services.utils import parse_timestamp, safe_float

logger = logging.getLogger("finpulse.services.history")


class HistoryProviderError(Exception):
    """Le provider n'a pas pu répondre (réseau, statut HTTP, format)."""

    def __init__(self, message: str, raw_error: Optional[Exception] = None):
        self.message = message
        self.raw_error = raw_error
        super().__init__(f"[history] {message}")


class HistoryProvider(Protocol):
    async def get_income_history(
        self, user_id: str, days: int
    ) -> list[IncomeRecord]: ...

    async def get_expense_history(
        self, user_id: str, days: int
    ) -> list[dict[str, Any]]: ...


def to_income_record(raw: dict[str, Any]) -> Optional[IncomeRecord]:
    moment = parse_timestamp(raw.get("date"))
    if moment is None:
        return None
    return IncomeRecord(
        amount=safe_float(raw.get("amount")),
        date=moment,
        source=raw.get("source"),
    )


# ══════════════════════════════════════════════════════════════
# IN-MEMORY
# ══════════════════════════════════════════════════════════════


class InMemoryHistoryProvider:
    """
    Provider en mémoire.

    Usage :
        provider = InMemoryHistoryProvider()
        provider.record_income("u1", 8000, datetime(2024, 5, 3))
        history = await provider.get_income_history("u1", days=90)
    """

    def __init__(self, now: Optional[datetime] = None) -> None:
        self._incomes: dict[str, list[IncomeRecord]] = {}
        self._expenses: dict[str, list[dict[str, Any]]] = {}
        self._now = now

    def _reference_time(self) -> datetime:
        return self._now or datetime.now()

    def record_income(
        self,
        user_id: str,
        amount: float,
        date: Any,
        source: Optional[str] = None,
    ) -> IncomeRecord:
        record = IncomeRecord(
            amount=safe_float(amount),
            date=parse_timestamp(date, default=self._reference_time()),
            source=source,
        )
        self._incomes.setdefault(user_id, []).append(record)
        return record

    def record_expense(self, user_id: str, expense: dict[str, Any]) -> None:
        self._expenses.setdefault(user_id, []).append(dict(expense))

    async def get_income_history(
        self, user_id: str, days: int
    ) -> list[IncomeRecord]:
        cutoff = self._reference_time() - timedelta(days=days)
        records = [r for r in self._incomes.get(user_id, []) if r.date >= cutoff]
        return sorted(records, key=lambda r: r.date)

    async def get_expense_history(
        self, user_id: str, days: int
    ) -> list[dict[str, Any]]:
        cutoff = self._reference_time() - timedelta(days=days)
        kept = []
        for expense in self._expenses.get(user_id, []):
            moment = parse_timestamp(expense.get("date"))
            if moment is not None and moment >= cutoff:
                kept.append(expense)
        return kept


# ══════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════


class HttpHistoryProvider:
    """
    Provider adossé à l'API REST du backend.

    GET {base_url}/users/{user_id}/income?days=90   → {"items": [...]}
    GET {base_url}/users/{user_id}/expenses?days=90 → {"items": [...]}

    Le timeout est celui des settings : au-delà, l'agent s'abstient.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = (base_url or self._settings.history_api_url).rstrip("/")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._settings.history_headers(),
                timeout=self._settings.history_fetch_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_items(self, path: str, days: int) -> list[dict[str, Any]]:
        try:
            response = await self._get_client().get(path, params={"days": days})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise HistoryProviderError(
                f"GET {path} returned {e.response.status_code}", raw_error=e
            )
        except httpx.HTTPError as e:
            raise HistoryProviderError(f"GET {path} failed: {e}", raw_error=e)
        except ValueError as e:
            raise HistoryProviderError(f"GET {path} returned invalid JSON", raw_error=e)

        if isinstance(body, dict):
            items = body.get("items", [])
        elif isinstance(body, list):
            items = body
        else:
            items = []
        return [i for i in items if isinstance(i, dict)]

    async def get_income_history(
        self, user_id: str, days: int
    ) -> list[IncomeRecord]:
        items = await self._get_items(f"/users/{user_id}/income", days)
        records = []
        for raw in items:
            record = to_income_record(raw)
            if record is None:
                logger.debug(f"Skipping income entry without date: {raw}")
                continue
            records.append(record)
        return sorted(records, key=lambda r: r.date)

    async def get_expense_history(
        self, user_id: str, days: int
    ) -> list[dict[str, Any]]:
        return await self._get_items(f"/users/{user_id}/expenses", days)

"""
FinPulse Services — Ce qui touche au monde extérieur.

UNE config, partagée partout.

Modules :
  - config.py   → Settings centralisés (.env → Pydantic)
  - history.py  → Providers d'historique (mémoire, HTTP)
  - utils.py    → Normalisation dates / montants
"""

from services.config import Settings, get_settings
from services.history import (
    HistoryProvider,
    HistoryProviderError,
    HttpHistoryProvider,
    InMemoryHistoryProvider,
)

__all__ = [
    "Settings",
    "get_settings",
    "HistoryProvider",
    "HistoryProviderError",
    "HttpHistoryProvider",
    "InMemoryHistoryProvider",
]

"""
Settings — Configuration centralisée.

Toutes les variables d'environnement sont validées ICI.
Aucun os.getenv() ailleurs dans le code.

Les seuils métier (variabilité, z-score, triggers...) ne vivent PAS ici :
ils sont dans models.agent_config, un modèle par agent.
Ici on ne trouve que ce qui concerne le process : bus, logs, provider.

Usage :
    from services.config import get_settings

    settings = get_settings()
    settings.event_history_size
    settings.history_fetch_timeout_seconds
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Environnement d'exécution."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Configuration centralisée du core FinPulse.

    Charge depuis .env ou variables d'environnement (préfixe FINPULSE_).
    Chaque champ a une valeur par défaut raisonnable pour le dev.
    """

    # ── Environnement ──
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    app_name: str = "finpulse"
    app_version: str = "0.1.0"

    # ── Event Bus ──
    event_history_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Capacité du ring buffer d'historique des événements",
    )
    max_dispatch_depth: int = Field(
        default=16,
        ge=1,
        le=256,
        description="Profondeur max de publish() imbriqués avant abstention",
    )

    # ── Historique (provider externe) ──
    history_fetch_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Au-delà, l'agent s'abstient au lieu de bloquer",
    )
    history_api_url: str = Field(
        default="",
        description="URL de l'API d'historique (vide = provider en mémoire)",
    )
    history_api_key: str = Field(default="")

    # ── Logging ──
    log_level: str = Field(default="INFO")

    # ── Validators ──

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    # ── Properties ──

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def has_history_api(self) -> bool:
        return bool(self.history_api_url)

    def history_headers(self) -> dict[str, str]:
        """Headers HTTP pour le provider d'historique."""
        headers = {"Accept": "application/json"}
        if self.history_api_key:
            headers["Authorization"] = f"Bearer {self.history_api_key}"
        return headers

    model_config = {
        "env_prefix": "FINPULSE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings(env_file: Optional[str] = None) -> Settings:
    """
    Singleton des settings.

    Chargé une seule fois, mis en cache.
    Usage : from services.config import get_settings
    """
    if env_file:
        return Settings(_env_file=env_file)
    return Settings()

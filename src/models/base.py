"""
CamelModel — Base des modèles qui sortent sur le bus.

Côté Python : snake_case. Côté payload : camelCase (userId,
averageAmount...), c'est le contrat des consommateurs externes.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """Dict camelCase prêt à publier."""
        return self.model_dump(by_alias=True, mode="json")

"""
Parsed encounter data model
"""
from typing import List

from pydantic import BaseModel, Field, field_validator

from .combatant import EnemyCombatant


class ParsedEncounter(BaseModel):
    """
    Validated encounter, ready to seed a combat

    ``warnings`` lists every degradation the parser applied to the raw input.
    """

    encounter_name: str = "Hostile Encounter"
    description: str = ""
    terrain: str = ""
    lighting: str = "dim"
    environmental_effects: List[str] = Field(default_factory=list)
    enemies: List[EnemyCombatant]
    warnings: List[str] = Field(default_factory=list)

    @field_validator("enemies")
    @classmethod
    def _at_least_one_enemy(cls, value: List[EnemyCombatant]) -> List[EnemyCombatant]:
        if not value:
            raise ValueError("an encounter needs at least one enemy")
        return value

    def total_challenge_rating(self) -> float:
        return sum(enemy.challenge_rating for enemy in self.enemies)

"""
FastAPI dependencies.
"""
from functools import lru_cache

from taleforge.combat import CombatEngine, CombatRules, DiceRoller
from taleforge.config import settings


@lru_cache()
def get_combat_engine() -> CombatEngine:
    return CombatEngine(
        roller=DiceRoller(seed=settings.combat_rng_seed),
        rules=CombatRules.from_settings(settings),
    )

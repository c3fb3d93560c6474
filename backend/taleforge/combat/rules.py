"""
Combat rules (simplified 5e)

Constants, challenge-rating tables and the rule knobs handed to the engine.
"""
import math
import re
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .dice import proficiency_bonus_for_cr


# ============================================
# Constants
# ============================================

ABILITY_NAMES: Tuple[str, ...] = ("str", "dex", "con", "int", "wis", "cha")

ABILITY_ALIASES: Dict[str, str] = {
    "strength": "str",
    "dexterity": "dex",
    "constitution": "con",
    "intelligence": "int",
    "wisdom": "wis",
    "charisma": "cha",
}

DAMAGE_TYPES: Tuple[str, ...] = (
    "slashing",
    "piercing",
    "bludgeoning",
    "fire",
    "cold",
    "lightning",
    "thunder",
    "acid",
    "poison",
    "necrotic",
    "radiant",
    "force",
    "psychic",
)

LIGHTING_LEVELS: Tuple[str, ...] = ("bright", "dim", "darkness", "magical-darkness")

SKILL_ABILITIES: Dict[str, str] = {
    "athletics": "str",
    "acrobatics": "dex",
    "sleight_of_hand": "dex",
    "stealth": "dex",
    "arcana": "int",
    "history": "int",
    "investigation": "int",
    "nature": "int",
    "religion": "int",
    "animal_handling": "wis",
    "insight": "wis",
    "medicine": "wis",
    "perception": "wis",
    "survival": "wis",
    "deception": "cha",
    "intimidation": "cha",
    "performance": "cha",
    "persuasion": "cha",
}

# Critical thresholds on the natural d20
CRITICAL_HIT_ROLL = 20
CRITICAL_MISS_ROLL = 1

DEFAULT_DAMAGE_TYPE = "bludgeoning"
DEFAULT_LIGHTING = "dim"
NO_CONDITION = "none"

MIN_AC = 5
MAX_AC = 30
MAX_CHALLENGE_RATING = 30.0

# Fallback enemy when an encounter arrives without any usable enemy
GENERIC_ENEMY: Dict[str, Any] = {
    "name": "Hostile Creature",
    "type": "monstrosity",
    "challengeRating": 0.25,
    "description": "A hostile creature blocks the way.",
    "attacks": [
        {"name": "Claw", "attackBonus": 3, "damage": "1d6+1", "damageType": "slashing"}
    ],
}


# ============================================
# Challenge rating tables
# ============================================

_CR_XP: Dict[float, int] = {
    0: 10,
    0.125: 25,
    0.25: 50,
    0.5: 100,
    1: 200,
    2: 450,
    3: 700,
    4: 1100,
    5: 1800,
    6: 2300,
    7: 2900,
    8: 3900,
    9: 5000,
    10: 5900,
    11: 7200,
    12: 8400,
    13: 10000,
    14: 11500,
    15: 13000,
    16: 15000,
    17: 18000,
    18: 20000,
    19: 22000,
    20: 25000,
    21: 33000,
    22: 41000,
    23: 50000,
    24: 62000,
    25: 75000,
    26: 90000,
    27: 105000,
    28: 120000,
    29: 135000,
    30: 155000,
}

# (max CR exclusive, damage dice)
_TIER_DAMAGE_DICE = (
    (1, "1d6"),
    (3, "1d8"),
    (6, "2d6"),
    (10, "2d8"),
)
_TOP_TIER_DAMAGE_DICE = "3d6"

_CR_PATTERN = re.compile(r"(\d+)\s*/\s*(\d+)|(\d+(?:\.\d+)?)")


def parse_challenge_rating(value: Any) -> Optional[float]:
    """
    Read a challenge rating from AI output

    Accepts 2, 0.25, "1/4", "CR 2". Returns None when nothing numeric is found.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if not isinstance(value, str):
        return None
    match = _CR_PATTERN.search(value)
    if not match:
        return None
    if match.group(1):
        denominator = int(match.group(2))
        if denominator == 0:
            return None
        try:
            return int(match.group(1)) / denominator
        except OverflowError:
            return math.inf
    return float(match.group(3))


def xp_for_cr(challenge_rating: float) -> int:
    """XP award for a challenge rating (nearest table entry at or below)."""
    eligible = [cr for cr in _CR_XP if cr <= challenge_rating]
    if not eligible:
        return _CR_XP[0]
    return _CR_XP[max(eligible)]


def default_hp_for_cr(challenge_rating: float) -> int:
    return max(1, int(8 + 12 * challenge_rating))


def default_ac_for_cr(challenge_rating: float) -> int:
    return 10 + min(8, 2 + int(challenge_rating // 4))


def default_attack_bonus_for_cr(challenge_rating: float) -> int:
    return proficiency_bonus_for_cr(challenge_rating) + 2


def default_damage_for_cr(challenge_rating: float) -> str:
    for upper, dice in _TIER_DAMAGE_DICE:
        if challenge_rating < upper:
            return dice
    return _TOP_TIER_DAMAGE_DICE


def encounter_difficulty(total_cr: float, party_level: int, party_size: int = 1) -> str:
    """
    Rate an encounter against the party

    Args:
        total_cr: sum of enemy challenge ratings
        party_level: average party level
        party_size: number of player-side combatants

    Returns:
        str: trivial / easy / medium / hard / deadly
    """
    effective_cr = total_cr / max(1, party_size)
    ratio = effective_cr / max(1, party_level)
    if ratio <= 0.25:
        return "trivial"
    if ratio <= 0.5:
        return "easy"
    if ratio <= 1.0:
        return "medium"
    if ratio <= 1.5:
        return "hard"
    return "deadly"


# ============================================
# Enemy AI personalities
# ============================================

AI_PERSONALITIES: Dict[str, Dict[str, Any]] = {
    "weakest": {
        "aggression": 0.8,
        "prefer_weaker_targets": True,
    },
    "wounded": {
        "aggression": 0.8,
        "prefer_wounded_targets": True,
    },
    "strongest": {
        "aggression": 1.0,
        "prefer_stronger_targets": True,
    },
    "spellcaster": {
        "aggression": 0.9,
        "prefer_spellcasters": True,
    },
    "defensive": {
        "aggression": 0.3,
        "prefer_defend": True,
    },
    "random": {
        "aggression": 0.7,
    },
}

DEFAULT_PERSONALITY = "random"


# ============================================
# Skill maneuvers offered to player-side combatants
# ============================================

SKILL_MANEUVERS: Dict[str, Dict[str, Any]] = {
    "shove": {
        "skill": "athletics",
        "ability": "str",
        "contest_ability": "dex",
        "condition": "prone",
        "condition_duration": 1,
        "applies_to": "target",
    },
    "grapple": {
        "skill": "athletics",
        "ability": "str",
        "contest_ability": "str",
        "condition": "grappled",
        "condition_duration": 2,
        "applies_to": "target",
    },
    "hide": {
        "skill": "stealth",
        "ability": "dex",
        "dc": 12,
        "condition": "hidden",
        "condition_duration": 1,
        "applies_to": "self",
    },
}


# ============================================
# Rule knobs
# ============================================


class CombatRules(BaseModel):
    """Rule configuration passed explicitly into the engine"""

    model_config = ConfigDict(frozen=True)

    flee_policy: str = "contested"  # contested / dc / always
    flee_dc: int = 10
    defend_ac_bonus: int = 2
    defend_damage_reduction: int = 3
    initiative_tie_breakers: Tuple[str, ...] = ("dex", "side")
    max_enemies: int = 8
    # Skip guard: full rounds the engine may fast-forward while nobody can act
    max_idle_rounds: int = 10

    @classmethod
    def from_settings(cls, settings: Any) -> "CombatRules":
        return cls(
            flee_policy=settings.flee_policy,
            flee_dc=settings.flee_dc,
            defend_ac_bonus=settings.defend_ac_bonus,
            defend_damage_reduction=settings.defend_damage_reduction,
            initiative_tie_breakers=tuple(settings.tie_breakers()),
            max_enemies=settings.max_enemies,
        )

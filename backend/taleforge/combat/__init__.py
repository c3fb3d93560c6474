"""
Turn-based combat engine

Encounter parsing, initiative, action resolution and the combat state machine.
"""

from .combat_engine import CombatEngine
from .dice import DiceRoller, RandomSource, RollMode
from .encounter_parser import EncounterParser, parse_encounter
from .errors import (
    CombatError,
    IllegalAction,
    InvalidDiceExpression,
    InvalidPhaseTransition,
    InvalidTarget,
    MalformedEncounterInput,
)
from .rules import CombatRules

__all__ = [
    "CombatEngine",
    "DiceRoller",
    "RandomSource",
    "RollMode",
    "EncounterParser",
    "parse_encounter",
    "CombatError",
    "IllegalAction",
    "InvalidDiceExpression",
    "InvalidPhaseTransition",
    "InvalidTarget",
    "MalformedEncounterInput",
    "CombatRules",
]

"""Data models for the combat system."""

from .combatant import (
    AbilityScore,
    AbilityScores,
    Attack,
    Combatant,
    CombatantBase,
    CombatItem,
    Condition,
    EnemyCombatant,
    HitPoints,
    PlayerCombatant,
    Reaction,
    SpecialAbility,
    Spell,
    Tactics,
)
from .action import (
    ActionLogEntry,
    AttackRollRecord,
    CheckRecord,
    CombatAction,
    D20Record,
    DamageRecord,
    Defend,
    Help,
    Flee,
    MeleeAttack,
    RangedAttack,
    SavingThrowRecord,
    SkillUse,
    SpellCast,
    TargetOutcome,
    UseItem,
)
from .combat_state import (
    PHASE_TRANSITIONS,
    CombatOutcome,
    CombatPhase,
    CombatRewards,
    CombatState,
    InitiativeEntry,
    TurnResources,
    can_transition,
)
from .combat_result import CombatResult
from .encounter import ParsedEncounter

__all__ = [
    "AbilityScore",
    "AbilityScores",
    "Attack",
    "Combatant",
    "CombatantBase",
    "CombatItem",
    "Condition",
    "EnemyCombatant",
    "HitPoints",
    "PlayerCombatant",
    "Reaction",
    "SpecialAbility",
    "Spell",
    "Tactics",
    "ActionLogEntry",
    "AttackRollRecord",
    "CheckRecord",
    "CombatAction",
    "D20Record",
    "DamageRecord",
    "Defend",
    "Help",
    "Flee",
    "MeleeAttack",
    "RangedAttack",
    "SavingThrowRecord",
    "SkillUse",
    "SpellCast",
    "TargetOutcome",
    "UseItem",
    "PHASE_TRANSITIONS",
    "CombatOutcome",
    "CombatPhase",
    "CombatRewards",
    "CombatState",
    "InitiativeEntry",
    "TurnResources",
    "can_transition",
    "CombatResult",
    "ParsedEncounter",
]

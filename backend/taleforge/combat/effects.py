"""
Condition effects

Each condition maps to a ``ConditionRule``. Rules are combined in a fixed
order: a disabling condition wins over everything, then advantage and
disadvantage are merged (one of each cancels to normal), then flat bonuses
are summed.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .dice import RollMode
from .models.combatant import CombatantBase
from .rules import ABILITY_ALIASES, CombatRules


@dataclass(frozen=True)
class ConditionRule:
    """Mechanical effect of one condition"""

    # ===== Disable =====
    disables_actions: bool = False
    speed_zero: bool = False

    # ===== Advantage / disadvantage =====
    own_attack_mode: Optional[RollMode] = None  # on attacks this combatant makes
    attacked_mode: Optional[RollMode] = None  # on attacks made against it
    attacked_melee_mode: Optional[RollMode] = None
    attacked_ranged_mode: Optional[RollMode] = None
    dex_save_mode: Optional[RollMode] = None
    check_mode: Optional[RollMode] = None

    # ===== Flat =====
    attack_bonus: int = 0
    save_bonus: int = 0
    grants_defend_ac: bool = False
    grants_damage_reduction: bool = False

    # ===== Timing =====
    start_of_turn_damage: Optional[Tuple[str, str]] = None  # (dice, damage type)
    expires_at_turn_start: bool = False
    spent_on_roll: bool = False  # gone after the next attack roll or check


ADV = RollMode.ADVANTAGE
DIS = RollMode.DISADVANTAGE

CONDITION_RULES: Dict[str, ConditionRule] = {
    "stunned": ConditionRule(disables_actions=True, speed_zero=True, attacked_mode=ADV),
    "paralyzed": ConditionRule(disables_actions=True, speed_zero=True, attacked_mode=ADV),
    "unconscious": ConditionRule(disables_actions=True, speed_zero=True, attacked_mode=ADV),
    "petrified": ConditionRule(disables_actions=True, speed_zero=True, attacked_mode=ADV),
    "incapacitated": ConditionRule(disables_actions=True),
    "grappled": ConditionRule(speed_zero=True),
    "restrained": ConditionRule(
        speed_zero=True, own_attack_mode=DIS, attacked_mode=ADV, dex_save_mode=DIS
    ),
    "poisoned": ConditionRule(own_attack_mode=DIS, check_mode=DIS),
    "frightened": ConditionRule(own_attack_mode=DIS),
    "blinded": ConditionRule(own_attack_mode=DIS, attacked_mode=ADV),
    "prone": ConditionRule(
        own_attack_mode=DIS, attacked_melee_mode=ADV, attacked_ranged_mode=DIS
    ),
    "dodging": ConditionRule(attacked_mode=DIS, expires_at_turn_start=True),
    "helped": ConditionRule(own_attack_mode=ADV, check_mode=ADV, spent_on_roll=True),
    "hidden": ConditionRule(own_attack_mode=ADV, attacked_mode=DIS),
    "invisible": ConditionRule(own_attack_mode=ADV, attacked_mode=DIS),
    "blessed": ConditionRule(attack_bonus=2, save_bonus=2),
    "defending": ConditionRule(grants_defend_ac=True, expires_at_turn_start=True),
    "bracing": ConditionRule(grants_damage_reduction=True, expires_at_turn_start=True),
    "burning": ConditionRule(start_of_turn_damage=("1d4", "fire")),
    # Recognised, no mechanical effect in combat
    "charmed": ConditionRule(),
    "deafened": ConditionRule(),
}

KNOWN_CONDITIONS = frozenset(CONDITION_RULES)


def _rules_for(combatant: CombatantBase) -> List[Tuple[str, ConditionRule]]:
    return [
        (condition.name, CONDITION_RULES[condition.name])
        for condition in combatant.conditions
        if condition.name in CONDITION_RULES
    ]


def combine_modes(modes: Iterable[Optional[RollMode]]) -> RollMode:
    """Any advantage plus any disadvantage cancels to normal."""
    advantage = False
    disadvantage = False
    for mode in modes:
        if mode == RollMode.ADVANTAGE:
            advantage = True
        elif mode == RollMode.DISADVANTAGE:
            disadvantage = True
    if advantage and not disadvantage:
        return RollMode.ADVANTAGE
    if disadvantage and not advantage:
        return RollMode.DISADVANTAGE
    return RollMode.NORMAL


# ===== Disable =====


def is_incapacitated(combatant: CombatantBase) -> bool:
    """Check if combatant cannot act."""
    return any(rule.disables_actions for _, rule in _rules_for(combatant))


def can_move(combatant: CombatantBase) -> bool:
    if combatant.speed <= 0:
        return False
    return not any(rule.speed_zero for _, rule in _rules_for(combatant))


# ===== Advantage / disadvantage =====


def attack_roll_mode(attacker: CombatantBase, target: CombatantBase, is_ranged: bool) -> RollMode:
    """Return advantage state for an attack from ``attacker`` on ``target``."""
    modes: List[Optional[RollMode]] = [rule.own_attack_mode for _, rule in _rules_for(attacker)]
    for _, rule in _rules_for(target):
        modes.append(rule.attacked_mode)
        modes.append(rule.attacked_ranged_mode if is_ranged else rule.attacked_melee_mode)
    return combine_modes(modes)


def saving_throw_mode(combatant: CombatantBase, ability: str) -> RollMode:
    ability = ABILITY_ALIASES.get(ability, ability)
    if ability != "dex":
        return RollMode.NORMAL
    return combine_modes(rule.dex_save_mode for _, rule in _rules_for(combatant))


def check_mode(combatant: CombatantBase) -> RollMode:
    return combine_modes(rule.check_mode for _, rule in _rules_for(combatant))


# ===== Flat =====


def attack_bonus_modifier(combatant: CombatantBase) -> int:
    return sum(rule.attack_bonus for _, rule in _rules_for(combatant))


def save_bonus_modifier(combatant: CombatantBase) -> int:
    return sum(rule.save_bonus for _, rule in _rules_for(combatant))


def effective_ac(combatant: CombatantBase, rules: CombatRules) -> int:
    ac = combatant.armor_class
    if any(rule.grants_defend_ac for _, rule in _rules_for(combatant)):
        ac += rules.defend_ac_bonus
    return ac


def damage_reduction(combatant: CombatantBase, rules: CombatRules) -> int:
    if any(rule.grants_damage_reduction for _, rule in _rules_for(combatant)):
        return rules.defend_damage_reduction
    return 0


# ===== Timing =====


def start_of_turn_damage(combatant: CombatantBase) -> List[Tuple[str, str, str]]:
    """Damage-over-time due at turn start, as (condition, dice, damage type)."""
    return [
        (name, rule.start_of_turn_damage[0], rule.start_of_turn_damage[1])
        for name, rule in _rules_for(combatant)
        if rule.start_of_turn_damage
    ]


def expire_turn_start_conditions(combatant: CombatantBase) -> Tuple[CombatantBase, List[str]]:
    """
    Drop conditions that last only until the owner's next turn starts

    Returns:
        (updated combatant, removed condition names)
    """
    kept = []
    removed = []
    for condition in combatant.conditions:
        rule = CONDITION_RULES.get(condition.name)
        if rule is not None and rule.expires_at_turn_start:
            removed.append(condition.name)
        else:
            kept.append(condition)
    if not removed:
        return combatant, removed
    return combatant.model_copy(update={"conditions": kept}), removed


def tick_conditions(combatant: CombatantBase) -> Tuple[CombatantBase, List[str]]:
    """
    End-of-turn duration tick

    Returns:
        (updated combatant, expired condition names)
    """
    kept = []
    expired = []
    for condition in combatant.conditions:
        ticked = condition.tick()
        if ticked is None:
            expired.append(condition.name)
        else:
            kept.append(ticked)
    return combatant.model_copy(update={"conditions": kept}), expired


def spend_roll_conditions(combatant: CombatantBase) -> Tuple[CombatantBase, List[str]]:
    """
    Drop one-shot conditions once the combatant has rolled an attack or check

    Returns:
        (updated combatant, removed condition names)
    """
    kept = []
    removed = []
    for condition in combatant.conditions:
        rule = CONDITION_RULES.get(condition.name)
        if rule is not None and rule.spent_on_roll:
            removed.append(condition.name)
        else:
            kept.append(condition)
    if not removed:
        return combatant, removed
    return combatant.model_copy(update={"conditions": kept}), removed

"""
Combat action data models

``CombatAction`` is a closed union discriminated on ``kind``; the resolver
handles every member explicitly.
"""
from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..dice import CheckResult, D20Roll, DiceResult


# ============================================
# Action variants
# ============================================


class ActionBase(BaseModel):
    """Fields every action option carries"""

    model_config = ConfigDict(frozen=True)

    action_id: str  # unique per option, e.g. "melee_attack:scimitar:goblin-1"
    label: str = ""
    cost: Literal["action", "bonus_action"] = "action"

    def referenced_targets(self) -> List[str]:
        return []


class _AttackFields(ActionBase):
    attack_name: str
    attack_bonus: int
    damage: str
    damage_type: str = "bludgeoning"
    target_id: str

    def referenced_targets(self) -> List[str]:
        return [self.target_id]


class MeleeAttack(_AttackFields):
    kind: Literal["melee_attack"] = "melee_attack"


class RangedAttack(_AttackFields):
    kind: Literal["ranged_attack"] = "ranged_attack"


class SpellCast(ActionBase):
    kind: Literal["spell_cast"] = "spell_cast"
    spell_name: str
    target_ids: List[str] = Field(default_factory=list)
    slot_level: int = 0
    attack_bonus: Optional[int] = None
    save_dc: Optional[int] = None
    save_ability: Optional[str] = None
    damage: Optional[str] = None
    damage_type: str = "force"
    half_on_success: bool = True
    healing: Optional[str] = None
    condition: Optional[str] = None
    condition_duration: Optional[int] = 1

    def referenced_targets(self) -> List[str]:
        return list(self.target_ids)


class SkillUse(ActionBase):
    """
    Skill check used tactically (shove, grapple, hide, ...)

    Either a fixed ``dc`` or, with ``target_id`` and ``contest_ability``, a
    contested check. Success applies ``condition`` to the target or to the
    actor depending on ``applies_to``.
    """

    kind: Literal["skill_use"] = "skill_use"
    skill: str
    ability: str
    dc: Optional[int] = None
    target_id: Optional[str] = None
    contest_ability: Optional[str] = None
    condition: Optional[str] = None
    condition_duration: Optional[int] = None
    applies_to: Literal["target", "self"] = "target"

    def referenced_targets(self) -> List[str]:
        return [self.target_id] if self.target_id else []


class Defend(ActionBase):
    kind: Literal["defend"] = "defend"
    mode: Literal["ac", "damage_reduction", "dodge"] = "ac"


class Help(ActionBase):
    """Aid an ally: their next attack roll or check has advantage"""

    kind: Literal["help"] = "help"
    target_id: str

    def referenced_targets(self) -> List[str]:
        return [self.target_id]


class Flee(ActionBase):
    kind: Literal["flee"] = "flee"


class UseItem(ActionBase):
    kind: Literal["use_item"] = "use_item"
    item_id: str
    target_id: Optional[str] = None  # None = self

    def referenced_targets(self) -> List[str]:
        return [self.target_id] if self.target_id else []


CombatAction = Annotated[
    Union[MeleeAttack, RangedAttack, SpellCast, SkillUse, Defend, Help, Flee, UseItem],
    Field(discriminator="kind"),
]


# ============================================
# Roll records
# ============================================


class D20Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    rolls: List[int]
    natural: int
    mode: str = "normal"

    @classmethod
    def from_roll(cls, roll: D20Roll) -> "D20Record":
        return cls(rolls=list(roll.rolls), natural=roll.natural, mode=roll.mode.value)


class AttackRollRecord(BaseModel):
    """Attack roll against AC"""

    model_config = ConfigDict(frozen=True)

    d20: D20Record
    modifier: int
    total: int
    target_ac: int
    is_critical: bool = False
    is_critical_fail: bool = False
    hit: bool = False


class DamageRecord(BaseModel):
    """Rolled damage and what actually reached the target"""

    model_config = ConfigDict(frozen=True)

    expression: str
    rolls: List[int] = Field(default_factory=list)
    modifier: int = 0
    rolled_total: int = 0
    applied: int = 0
    damage_type: str = "bludgeoning"
    adjustment: Literal["none", "resistance", "vulnerability", "immunity", "halved"] = "none"
    reduced_by: int = 0
    absorbed_by_temporary: int = 0
    is_critical: bool = False

    @classmethod
    def from_result(cls, result: DiceResult, damage_type: str) -> "DamageRecord":
        return cls(
            expression=result.expression,
            rolls=list(result.rolls),
            modifier=result.modifier,
            rolled_total=max(0, result.total),
            applied=max(0, result.total),
            damage_type=damage_type,
            is_critical=result.critical,
        )


class SavingThrowRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    ability: str
    d20: D20Record
    modifier: int
    total: int
    dc: int
    success: bool


class CheckRecord(BaseModel):
    """Ability check, flee contest side, skill contest side"""

    model_config = ConfigDict(frozen=True)

    combatant_id: str
    label: str
    d20: D20Record
    modifier: int
    total: int
    dc: Optional[int] = None
    success: Optional[bool] = None

    @classmethod
    def from_result(cls, combatant_id: str, label: str, result: CheckResult) -> "CheckRecord":
        return cls(
            combatant_id=combatant_id,
            label=label,
            d20=D20Record.from_roll(result.d20),
            modifier=result.modifier,
            total=result.total,
            dc=result.dc,
            success=result.success,
        )


class TargetOutcome(BaseModel):
    """Effect of one action on one combatant"""

    model_config = ConfigDict(frozen=True)

    target_id: str
    attack: Optional[AttackRollRecord] = None
    saving_throw: Optional[SavingThrowRecord] = None
    damage: Optional[DamageRecord] = None
    healing: int = 0
    hp_before: int = 0
    hp_after: int = 0
    hp_delta: int = 0
    condition_applied: Optional[str] = None
    condition_blocked: Optional[str] = None
    conditions_removed: List[str] = Field(default_factory=list)
    killed: bool = False


class ActionLogEntry(BaseModel):
    """
    One immutable record in the combat log

    The log is the audit trail consumed by narration and UI; it holds numbers
    and identifiers only, no prose.
    """

    model_config = ConfigDict(frozen=True)

    seq: int
    round: int
    event_type: Literal["action", "skip", "initiative", "condition", "phase"] = "action"
    actor_id: Optional[str] = None
    action_id: Optional[str] = None
    action_kind: Optional[str] = None
    target_ids: List[str] = Field(default_factory=list)
    outcome: str = ""
    targets: List[TargetOutcome] = Field(default_factory=list)
    checks: List[CheckRecord] = Field(default_factory=list)
    note: str = ""

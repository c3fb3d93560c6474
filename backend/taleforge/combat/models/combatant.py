"""
Combatant data models
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..dice import ability_modifier, proficiency_bonus, proficiency_bonus_for_cr
from ..rules import ABILITY_ALIASES, ABILITY_NAMES


class AbilityScore(BaseModel):
    """One ability score; ``score`` and ``modifier`` are always derived."""

    base: int = 10
    racial_bonus: int = 0
    item_bonus: int = 0

    @model_validator(mode="before")
    @classmethod
    def _accept_plain_number(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return {"base": int(value)}
        return value

    @computed_field
    @property
    def score(self) -> int:
        return self.base + self.racial_bonus + self.item_bonus

    @computed_field
    @property
    def modifier(self) -> int:
        return ability_modifier(self.score)


_FIELD_BY_ABILITY = {
    "str": "strength",
    "dex": "dexterity",
    "con": "constitution",
    "int": "intelligence",
    "wis": "wisdom",
    "cha": "charisma",
}


class AbilityScores(BaseModel):
    """The six ability scores, keyed ``str``/``dex``/... on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    strength: AbilityScore = Field(default_factory=AbilityScore, alias="str")
    dexterity: AbilityScore = Field(default_factory=AbilityScore, alias="dex")
    constitution: AbilityScore = Field(default_factory=AbilityScore, alias="con")
    intelligence: AbilityScore = Field(default_factory=AbilityScore, alias="int")
    wisdom: AbilityScore = Field(default_factory=AbilityScore, alias="wis")
    charisma: AbilityScore = Field(default_factory=AbilityScore, alias="cha")

    @classmethod
    def from_values(cls, values: Dict[str, int]) -> "AbilityScores":
        """Build from plain scores, e.g. ``{"str": 14, "dex": 12}``."""
        payload = {}
        for key, value in values.items():
            ability = ABILITY_ALIASES.get(key, key)
            if ability in _FIELD_BY_ABILITY:
                payload[_FIELD_BY_ABILITY[ability]] = AbilityScore(base=int(value))
        return cls(**payload)

    def get(self, ability: str) -> AbilityScore:
        ability = ABILITY_ALIASES.get(ability, ability)
        if ability not in _FIELD_BY_ABILITY:
            raise KeyError(f"Unknown ability: {ability}")
        return getattr(self, _FIELD_BY_ABILITY[ability])

    def score(self, ability: str) -> int:
        return self.get(ability).score

    def modifier(self, ability: str) -> int:
        return self.get(ability).modifier

    def as_scores(self) -> Dict[str, int]:
        return {ability: self.score(ability) for ability in ABILITY_NAMES}


class HitPoints(BaseModel):
    """
    Hit points

    ``temporary`` is a separate pool that absorbs damage before ``current``.
    """

    current: int
    max: int
    temporary: int = 0

    @model_validator(mode="after")
    def _clamp(self) -> "HitPoints":
        if self.max < 1:
            self.max = 1
        if self.temporary < 0:
            self.temporary = 0
        self.current = min(max(self.current, 0), self.max + self.temporary)
        return self


class Condition(BaseModel):
    """Active condition instance"""

    name: str
    duration: Optional[int] = None  # rounds remaining; None = until removed
    source: str = ""
    save_dc: Optional[int] = None
    save_ability: Optional[str] = None

    def tick(self) -> Optional["Condition"]:
        """
        Called at the end of the owner's turn

        Returns:
            Optional[Condition]: the decremented condition, or None once expired
        """
        if self.duration is None:
            return self
        remaining = self.duration - 1
        if remaining <= 0:
            return None
        return self.model_copy(update={"duration": remaining})


class Attack(BaseModel):
    """Weapon or natural attack"""

    name: str
    kind: Literal["melee", "ranged"] = "melee"
    attack_bonus: int = 0
    damage: str = "1d4"
    damage_type: str = "bludgeoning"
    description: str = ""


class Spell(BaseModel):
    """
    Spell or special ability with a mechanical effect

    Resolution is picked from the populated fields: ``attack_bonus`` makes a
    spell attack, ``save_dc`` forces a saving throw, neither means it always
    lands. ``healing`` restores hit points instead of dealing damage.
    """

    name: str
    level: int = 0
    attack_bonus: Optional[int] = None
    save_dc: Optional[int] = None
    save_ability: Optional[str] = None
    damage: Optional[str] = None
    damage_type: str = "force"
    half_on_success: bool = True
    healing: Optional[str] = None
    condition: Optional[str] = None
    condition_duration: Optional[int] = 1
    area: bool = False
    bonus_action: bool = False
    target_side: Literal["enemy", "ally"] = "enemy"
    uses_remaining: Optional[int] = None  # None = unlimited
    description: str = ""


class SpecialAbility(BaseModel):
    name: str
    description: str = ""
    uses_per_day: int = -1


class Reaction(BaseModel):
    name: str
    trigger: str = ""
    effect: str = ""


class Tactics(BaseModel):
    """Behaviour hints for the enemy AI"""

    preferred_range: Literal["melee", "ranged", "mixed"] = "melee"
    target_priority: str = "random"
    flee_threshold: float = 0.25
    special_behavior: str = ""


class CombatItem(BaseModel):
    """Consumable usable in combat"""

    id: str
    name: str
    quantity: int = 1
    healing: Optional[str] = None
    damage: Optional[str] = None
    damage_type: str = "fire"
    save_dc: Optional[int] = None
    save_ability: Optional[str] = None
    cures: List[str] = Field(default_factory=list)


class CombatantBase(BaseModel):
    """
    Fields shared by every participant

    ``is_alive`` is derived from hit points and never stored independently.
    """

    # ===== Identity =====
    id: str
    name: str

    # ===== Durability =====
    hit_points: HitPoints
    armor_class: int = 10
    speed: int = 30
    level: int = 1

    # ===== Stats =====
    ability_scores: AbilityScores = Field(default_factory=AbilityScores)
    saving_throw_proficiencies: List[str] = Field(default_factory=list)

    # ===== Combat options =====
    attacks: List[Attack] = Field(default_factory=list)
    spells: List[Spell] = Field(default_factory=list)

    # ===== Status =====
    conditions: List[Condition] = Field(default_factory=list)
    has_fled: bool = False

    # ===== Defenses =====
    resistances: List[str] = Field(default_factory=list)
    immunities: List[str] = Field(default_factory=list)
    vulnerabilities: List[str] = Field(default_factory=list)
    condition_immunities: List[str] = Field(default_factory=list)

    @computed_field
    @property
    def is_alive(self) -> bool:
        return self.hit_points.current > 0

    def is_active(self) -> bool:
        """Still in the fight: alive and has not fled"""
        return self.is_alive and not self.has_fled

    def is_player(self) -> bool:
        return False

    def is_enemy(self) -> bool:
        return False

    def has_condition(self, name: str) -> bool:
        return any(condition.name == name for condition in self.conditions)

    def proficiency(self) -> int:
        return proficiency_bonus(self.level)

    def saving_throw_modifier(self, ability: str) -> int:
        modifier = self.ability_scores.modifier(ability)
        if ABILITY_ALIASES.get(ability, ability) in self.saving_throw_proficiencies:
            modifier += self.proficiency()
        return modifier

    def hp_ratio(self) -> float:
        return self.hit_points.current / self.hit_points.max


class PlayerCombatant(CombatantBase):
    """Player-side combatant, copied from persistent character data"""

    side: Literal["player"] = "player"
    skill_proficiencies: List[str] = Field(default_factory=list)
    items: List[CombatItem] = Field(default_factory=list)
    spell_slots: Dict[int, int] = Field(default_factory=dict)  # level -> remaining

    def is_player(self) -> bool:
        return True


class EnemyCombatant(CombatantBase):
    """Enemy built from a parsed encounter"""

    side: Literal["enemy"] = "enemy"
    creature_type: str = "beast"
    challenge_rating: float = 0.0
    xp_value: int = 0
    tactics: Tactics = Field(default_factory=Tactics)
    special_abilities: List[SpecialAbility] = Field(default_factory=list)
    reactions: List[Reaction] = Field(default_factory=list)
    description: str = ""

    def is_enemy(self) -> bool:
        return True

    def proficiency(self) -> int:
        return proficiency_bonus_for_cr(self.challenge_rating)


Combatant = Annotated[Union[PlayerCombatant, EnemyCombatant], Field(discriminator="side")]

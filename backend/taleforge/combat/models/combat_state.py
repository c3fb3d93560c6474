"""
Combat state data models
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from .action import ActionLogEntry, CombatAction
from .combatant import Combatant


class CombatPhase(str, Enum):
    """Combat phase"""

    SETUP = "setup"  # encounter built, nobody has rolled
    INITIATIVE = "initiative"  # rolling initiative
    ACTIVE = "active"  # turns are being taken
    RESOLUTION = "resolution"  # a side is out, outcome decided
    ENDED = "ended"  # rewards computed; terminal


# Allowed phase edges
PHASE_TRANSITIONS: Dict[CombatPhase, FrozenSet[CombatPhase]] = {
    CombatPhase.SETUP: frozenset({CombatPhase.INITIATIVE}),
    CombatPhase.INITIATIVE: frozenset({CombatPhase.ACTIVE}),
    CombatPhase.ACTIVE: frozenset({CombatPhase.RESOLUTION}),
    CombatPhase.RESOLUTION: frozenset({CombatPhase.ENDED}),
    CombatPhase.ENDED: frozenset(),
}


def can_transition(current: CombatPhase, target: CombatPhase) -> bool:
    return target in PHASE_TRANSITIONS[current]


class CombatOutcome(str, Enum):
    """How a combat ended"""

    VICTORY = "victory"
    DEFEAT = "defeat"
    FLED = "fled"


class InitiativeEntry(BaseModel):
    combatant_id: str
    roll: int
    modifier: int
    total: int
    dex_score: int
    side: str


class TurnResources(BaseModel):
    """Action economy of the combatant whose turn it is"""

    action: bool = True
    bonus_action: bool = True
    movement: int = 30


class CombatRewards(BaseModel):
    xp: int = 0
    gold: int = 0
    defeated_enemy_ids: List[str] = Field(default_factory=list)
    loot: List[str] = Field(default_factory=list)


class CombatState(BaseModel):
    """
    Full snapshot of one encounter

    The engine treats instances as values: every operation returns a new state
    and leaves its input untouched.
    """

    # ===== Identity / phase =====
    id: str
    phase: CombatPhase = CombatPhase.SETUP
    round: int = 0

    # ===== Participants =====
    combatants: List[Combatant] = Field(default_factory=list)
    turn_order: List[str] = Field(default_factory=list)
    initiative: List[InitiativeEntry] = Field(default_factory=list)
    active_combatant_index: int = 0
    turn_resources: TurnResources = Field(default_factory=TurnResources)

    # ===== Scene =====
    encounter_name: str = ""
    description: str = ""
    terrain: str = ""
    lighting: str = "dim"
    environmental_effects: List[str] = Field(default_factory=list)

    # ===== Progress =====
    log: List[ActionLogEntry] = Field(default_factory=list)
    available_actions: List[CombatAction] = Field(default_factory=list)
    outcome: Optional[CombatOutcome] = None
    rewards: Optional[CombatRewards] = None

    # ===== Lookup helpers =====

    def get_combatant(self, combatant_id: str) -> Optional[Combatant]:
        for combatant in self.combatants:
            if combatant.id == combatant_id:
                return combatant
        return None

    def active_combatant_id(self) -> Optional[str]:
        if not self.turn_order:
            return None
        if self.active_combatant_index < 0 or self.active_combatant_index >= len(self.turn_order):
            return None
        return self.turn_order[self.active_combatant_index]

    def active_combatant(self) -> Optional[Combatant]:
        combatant_id = self.active_combatant_id()
        return self.get_combatant(combatant_id) if combatant_id else None

    def players(self) -> List[Combatant]:
        return [c for c in self.combatants if c.side == "player"]

    def enemies(self) -> List[Combatant]:
        return [c for c in self.combatants if c.side == "enemy"]

    def active_players(self) -> List[Combatant]:
        return [c for c in self.players() if c.is_active()]

    def active_enemies(self) -> List[Combatant]:
        return [c for c in self.enemies() if c.is_active()]

    def opponents_of(self, combatant: Combatant) -> List[Combatant]:
        """Active combatants on the other side"""
        if combatant.side == "player":
            return self.active_enemies()
        return self.active_players()

    def allies_of(self, combatant: Combatant) -> List[Combatant]:
        """Active combatants on the same side, including itself"""
        if combatant.side == "player":
            return self.active_players()
        return self.active_enemies()

    def replace_combatant(self, combatant: Combatant) -> None:
        """Swap in an updated combatant; used on working copies only"""
        for index, existing in enumerate(self.combatants):
            if existing.id == combatant.id:
                self.combatants[index] = combatant
                return
        raise KeyError(combatant.id)

    def next_seq(self) -> int:
        return len(self.log) + 1

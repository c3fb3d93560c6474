"""
Combat result data model
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from .combat_state import CombatOutcome, CombatRewards


class CombatResult(BaseModel):
    """
    Final result of a combat

    Handed back to the narration layer; all figures are derived from the log.
    """

    # ===== Basics =====
    combat_id: str
    encounter_name: str = ""
    outcome: Optional[CombatOutcome] = None
    summary: str = ""  # e.g. "Victory over 3 enemies in 4 rounds."

    # ===== Rewards =====
    rewards: CombatRewards = Field(default_factory=CombatRewards)

    # ===== Player state =====
    player_id: Optional[str] = None
    player_hp_remaining: int = 0
    player_max_hp: int = 0
    items_used: List[str] = Field(default_factory=list)

    # ===== Statistics =====
    total_rounds: int = 0
    total_damage_dealt: int = 0
    total_damage_taken: int = 0
    enemies_defeated: List[str] = Field(default_factory=list)
    enemies_fled: List[str] = Field(default_factory=list)

    def to_narration_summary(self) -> str:
        """
        Short factual recap for the narrator

        Returns:
            str: a few plain lines the narration layer can build on
        """
        lines = [self.summary] if self.summary else []

        if self.outcome == CombatOutcome.VICTORY:
            parts = []
            if self.rewards.xp > 0:
                parts.append(f"{self.rewards.xp} XP")
            if self.rewards.gold > 0:
                parts.append(f"{self.rewards.gold} gold")
            if self.rewards.loot:
                parts.append("loot: " + ", ".join(self.rewards.loot))
            if parts:
                lines.append("Gained " + ", ".join(parts) + ".")

        lines.append(f"HP: {self.player_hp_remaining}/{self.player_max_hp}")
        return "\n".join(lines)

"""
Combat HTTP request / response models
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator

from taleforge.combat.models import (
    ActionLogEntry,
    CombatAction,
    CombatResult,
    CombatState,
    PlayerCombatant,
)


class CombatStartRequest(BaseModel):
    """Start combat request."""

    encounter: Any = None  # raw generated encounter (object or JSON text)
    player: PlayerCombatant
    companions: List[PlayerCombatant] = Field(default_factory=list)
    combat_id: Optional[str] = None
    roll_initiative: bool = True


class CombatInitiativeRequest(BaseModel):
    """Roll initiative request."""

    combat_state: CombatState
    player: Optional[PlayerCombatant] = None


class CombatActionRequest(BaseModel):
    """Submit one action; either ``action_id`` or a full ``action``."""

    combat_state: CombatState
    player: Optional[PlayerCombatant] = None
    action_id: Optional[str] = None
    action: Optional[CombatAction] = None

    @model_validator(mode="after")
    def _needs_action(self) -> "CombatActionRequest":
        if self.action_id is None and self.action is None:
            raise ValueError("action_id or action is required")
        return self


class CombatStateRequest(BaseModel):
    """Request carrying only the current state."""

    combat_state: CombatState


class CombatStateResponse(BaseModel):
    """New state plus the log entries produced by the request."""

    combat_state: CombatState
    new_log_entries: List[ActionLogEntry] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    result: Optional[CombatResult] = None

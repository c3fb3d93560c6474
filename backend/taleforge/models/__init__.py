"""
Data models package
"""
from .combat_api import (
    CombatActionRequest,
    CombatInitiativeRequest,
    CombatStartRequest,
    CombatStateRequest,
    CombatStateResponse,
)

__all__ = [
    "CombatActionRequest",
    "CombatInitiativeRequest",
    "CombatStartRequest",
    "CombatStateRequest",
    "CombatStateResponse",
]

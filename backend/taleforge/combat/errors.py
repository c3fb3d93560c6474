"""Structured combat errors."""
from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models.combat_state import CombatState


class InvalidDiceExpression(ValueError):
    """Raised when a dice expression such as ``2d6+3`` cannot be parsed."""

    def __init__(self, expression: Any) -> None:
        self.expression = expression
        super().__init__(f"Invalid dice expression: {expression!r}")


class CombatError(Exception):
    """
    Base class of every failure the engine reports to its caller.

    The offending input state travels with the error unchanged so callers can
    keep rendering it.
    """

    code = "combat_error"

    def __init__(
        self,
        message: str,
        *,
        state: Optional["CombatState"] = None,
        phase: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.state = state
        if phase is None and state is not None:
            phase = state.phase.value
        self.phase = phase
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "phase": self.phase,
            "context": self.context,
        }


class MalformedEncounterInput(CombatError):
    """Encounter payload is unusable; recovered inside the parser."""

    code = "malformed_encounter_input"


class InvalidTarget(CombatError):
    """Action references a target that does not exist or can no longer be targeted."""

    code = "invalid_target"

    def __init__(self, target_id: str, action_id: str, **kwargs: Any) -> None:
        self.target_id = target_id
        self.action_id = action_id
        context = {"target_id": target_id, "action_id": action_id}
        super().__init__(
            f"Invalid target '{target_id}' for action '{action_id}'",
            context=context,
            **kwargs,
        )


class IllegalAction(CombatError):
    """Action is not among the acting combatant's available actions."""

    code = "illegal_action"

    def __init__(self, action_id: str, actor_id: Optional[str], **kwargs: Any) -> None:
        self.action_id = action_id
        self.actor_id = actor_id
        context = {"action_id": action_id, "actor_id": actor_id}
        super().__init__(
            f"Action '{action_id}' is not available to '{actor_id}'",
            context=context,
            **kwargs,
        )


class InvalidPhaseTransition(CombatError):
    """Operation attempted outside the phase(s) it is valid in."""

    code = "invalid_phase_transition"

    def __init__(self, operation: str, phase: str, expected: Any, **kwargs: Any) -> None:
        self.operation = operation
        expected_list = [expected] if isinstance(expected, str) else list(expected)
        self.expected = expected_list
        context = {"operation": operation, "expected": expected_list}
        super().__init__(
            f"Cannot {operation} while combat is in phase '{phase}'",
            phase=phase,
            context=context,
            **kwargs,
        )

"""
Combat API routes.

The engine is stateless; every request carries the full combat state and
every response returns the next one.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from taleforge.combat import CombatEngine
from taleforge.combat.errors import (
    CombatError,
    IllegalAction,
    InvalidPhaseTransition,
    InvalidTarget,
)
from taleforge.combat.models import CombatPhase, CombatResult, CombatState
from taleforge.config import settings
from taleforge.dependencies import get_combat_engine
from taleforge.models.combat_api import (
    CombatActionRequest,
    CombatInitiativeRequest,
    CombatStartRequest,
    CombatStateRequest,
    CombatStateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/combat", tags=["Combat"])


def _map_exception_to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, (InvalidTarget, IllegalAction)):
        return HTTPException(status_code=400, detail=exc.to_dict())
    if isinstance(exc, InvalidPhaseTransition):
        return HTTPException(status_code=409, detail=exc.to_dict())
    if isinstance(exc, CombatError):
        return HTTPException(status_code=500, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=str(exc))


def _finish(
    engine: CombatEngine,
    before: Optional[CombatState],
    state: CombatState,
    warnings: Optional[List[str]] = None,
) -> CombatStateResponse:
    """Run pending enemy turns, close a resolved combat, collect new log entries."""
    if settings.auto_enemy_turns:
        state = engine.run_enemy_turns(state)
    result: Optional[CombatResult] = None
    if state.phase == CombatPhase.RESOLUTION:
        state = engine.end_combat(state)
    if state.phase == CombatPhase.ENDED:
        result = engine.summarize(state)

    seen = len(before.log) if before is not None else 0
    return CombatStateResponse(
        combat_state=state,
        new_log_entries=state.log[seen:],
        warnings=warnings or [],
        result=result,
    )


@router.post("/start", response_model=CombatStateResponse)
async def start_combat(
    payload: CombatStartRequest,
    engine: CombatEngine = Depends(get_combat_engine),
):
    """Parse the encounter, build the combat and (by default) roll initiative"""
    try:
        parsed = engine.parser.parse(payload.encounter)
        state = engine.start_combat(
            parsed,
            payload.player,
            companions=payload.companions,
            combat_id=payload.combat_id,
        )
        if not payload.roll_initiative:
            return CombatStateResponse(
                combat_state=state,
                new_log_entries=list(state.log),
                warnings=parsed.warnings,
            )
        state = engine.roll_initiative(state, payload.player)
        return _finish(engine, None, state, parsed.warnings)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("combat start failed")
        raise _map_exception_to_http(exc) from exc


@router.post("/initiative", response_model=CombatStateResponse)
async def roll_initiative(
    payload: CombatInitiativeRequest,
    engine: CombatEngine = Depends(get_combat_engine),
):
    """Roll initiative for a combat in setup"""
    try:
        state = engine.roll_initiative(payload.combat_state, payload.player)
        return _finish(engine, payload.combat_state, state)
    except HTTPException:
        raise
    except CombatError as exc:
        raise _map_exception_to_http(exc) from exc
    except Exception as exc:
        logger.exception("initiative failed")
        raise _map_exception_to_http(exc) from exc


@router.post("/action", response_model=CombatStateResponse)
async def submit_action(
    payload: CombatActionRequest,
    engine: CombatEngine = Depends(get_combat_engine),
):
    """Resolve the acting combatant's chosen action"""
    action = payload.action if payload.action is not None else payload.action_id
    try:
        state = engine.resolve_action(payload.combat_state, action, payload.player)
        return _finish(engine, payload.combat_state, state)
    except HTTPException:
        raise
    except CombatError as exc:
        logger.info("action rejected: %s", exc.message)
        raise _map_exception_to_http(exc) from exc
    except Exception as exc:
        logger.exception("action failed")
        raise _map_exception_to_http(exc) from exc


@router.post("/enemy-turn", response_model=CombatStateResponse)
async def enemy_turn(
    payload: CombatStateRequest,
    engine: CombatEngine = Depends(get_combat_engine),
):
    """Let the AI take the current enemy's turn"""
    try:
        state = engine.take_enemy_turn(payload.combat_state)
        return _finish(engine, payload.combat_state, state)
    except HTTPException:
        raise
    except CombatError as exc:
        raise _map_exception_to_http(exc) from exc
    except Exception as exc:
        logger.exception("enemy turn failed")
        raise _map_exception_to_http(exc) from exc


@router.post("/summary", response_model=CombatResult)
async def combat_summary(
    payload: CombatStateRequest,
    engine: CombatEngine = Depends(get_combat_engine),
):
    """Post-combat summary for a resolved or ended combat"""
    try:
        return engine.summarize(payload.combat_state)
    except HTTPException:
        raise
    except Exception as exc:
        raise _map_exception_to_http(exc) from exc

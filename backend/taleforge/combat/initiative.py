"""
Initiative resolver

Orders the active combatants by ``d20 + DEX modifier``.
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .dice import DiceRoller
from .errors import InvalidPhaseTransition
from .models.action import ActionLogEntry, CheckRecord
from .models.combat_state import CombatPhase, CombatState, InitiativeEntry, TurnResources
from .models.combatant import PlayerCombatant
from .rules import CombatRules

logger = logging.getLogger(__name__)

_ROLLABLE_PHASES = (CombatPhase.SETUP, CombatPhase.INITIATIVE)

# Each tie breaker maps an entry to a sort key where smaller sorts first
_TIE_BREAKERS: Dict[str, Callable[[InitiativeEntry], int]] = {
    "dex": lambda entry: -entry.dex_score,
    "side": lambda entry: 0 if entry.side == "player" else 1,
}


def sync_player(state: CombatState, player: Optional[PlayerCombatant]) -> None:
    """
    Copy live character data onto the in-state player combatant

    Only character-sheet fields are synced; hit points, conditions and
    consumables (items, spell slots, limited spell uses) stay as the combat
    tracked them. Works on the given (already copied) state.
    """
    if player is None:
        return
    existing = state.get_combatant(player.id)
    if existing is None or existing.side != "player":
        return
    tracked_uses = {spell.name: spell.uses_remaining for spell in existing.spells}
    spells = []
    for spell in player.spells:
        copied = spell.model_copy()
        if tracked_uses.get(spell.name) is not None:
            copied.uses_remaining = tracked_uses[spell.name]
        spells.append(copied)
    synced = existing.model_copy(
        update={
            "name": player.name,
            "level": player.level,
            "ability_scores": player.ability_scores.model_copy(deep=True),
            "armor_class": player.armor_class,
            "speed": player.speed,
            "attacks": [attack.model_copy() for attack in player.attacks],
            "spells": spells,
            "skill_proficiencies": list(player.skill_proficiencies),
            "saving_throw_proficiencies": list(player.saving_throw_proficiencies),
        }
    )
    state.replace_combatant(synced)


def order_entries(entries: List[InitiativeEntry], tie_breakers: Tuple[str, ...]) -> List[InitiativeEntry]:
    """
    Sort initiative entries

    Descending total, then the configured tie breakers, then the original
    list order (``sorted`` is stable).
    """
    breakers = [_TIE_BREAKERS[name] for name in tie_breakers if name in _TIE_BREAKERS]

    def sort_key(entry: InitiativeEntry) -> Tuple[int, ...]:
        return (-entry.total,) + tuple(breaker(entry) for breaker in breakers)

    return sorted(entries, key=sort_key)


def roll_initiative(
    state: CombatState,
    player: Optional[PlayerCombatant],
    roller: DiceRoller,
    rules: CombatRules,
) -> CombatState:
    """
    Roll initiative for every active combatant

    Args:
        state: combat in ``setup`` (or ``initiative``) phase
        player: live player data, synced before rolling
        roller: dice roller
        rules: tie-break configuration

    Returns:
        CombatState: new state in ``active`` phase, round 1, index 0

    Raises:
        InvalidPhaseTransition: outside setup / initiative
    """
    if state.phase not in _ROLLABLE_PHASES:
        raise InvalidPhaseTransition(
            "roll initiative",
            state.phase.value,
            [phase.value for phase in _ROLLABLE_PHASES],
            state=state,
        )

    working = state.model_copy(deep=True)
    working.phase = CombatPhase.INITIATIVE
    sync_player(working, player)

    entries: List[InitiativeEntry] = []
    checks: List[CheckRecord] = []
    for combatant in working.combatants:
        if not combatant.is_active():
            continue
        modifier = combatant.ability_scores.modifier("dex")
        result = roller.roll_check(modifier)
        entries.append(
            InitiativeEntry(
                combatant_id=combatant.id,
                roll=result.d20.natural,
                modifier=modifier,
                total=result.total,
                dex_score=combatant.ability_scores.score("dex"),
                side=combatant.side,
            )
        )
        checks.append(CheckRecord.from_result(combatant.id, "initiative", result))

    ordered = order_entries(entries, rules.initiative_tie_breakers)
    working.initiative = ordered
    working.turn_order = [entry.combatant_id for entry in ordered]
    working.active_combatant_index = 0
    working.round = 1
    working.turn_resources = TurnResources()
    working.phase = CombatPhase.ACTIVE
    working.log.append(
        ActionLogEntry(
            seq=working.next_seq(),
            round=1,
            event_type="initiative",
            target_ids=list(working.turn_order),
            checks=checks,
        )
    )

    logger.info(
        "[combat %s] initiative rolled: %s",
        working.id,
        ", ".join(f"{entry.combatant_id}={entry.total}" for entry in ordered),
    )
    return working

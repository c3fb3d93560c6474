"""
Combat engine

Turn-based state machine. Every public operation takes a ``CombatState`` and
returns a new one; the input is never modified, and a failing operation
raises a ``CombatError`` carrying the untouched input.
"""
import logging
import uuid
from typing import Any, Callable, List, Optional, Sequence, Union

from .action_resolver import ActionResolver
from .ai_opponent import OpponentAI
from .dice import DiceRoller
from .effects import can_move, expire_turn_start_conditions, is_incapacitated, tick_conditions
from .encounter_parser import EncounterParser, slugify
from .errors import IllegalAction, InvalidPhaseTransition, InvalidTarget
from .initiative import roll_initiative as roll_initiative_order
from .initiative import sync_player
from .models.action import (
    ActionLogEntry,
    CombatAction,
    Defend,
    Flee,
    Help,
    MeleeAttack,
    RangedAttack,
    SkillUse,
    SpellCast,
    UseItem,
)
from .models.combat_result import CombatResult
from .models.combat_state import (
    CombatOutcome,
    CombatPhase,
    CombatRewards,
    CombatState,
    TurnResources,
    can_transition,
)
from .models.combatant import Attack, Combatant, HitPoints, PlayerCombatant
from .models.encounter import ParsedEncounter
from .rules import SKILL_MANEUVERS, CombatRules

logger = logging.getLogger(__name__)

LootHook = Callable[[CombatState], List[str]]

# Kinds whose action id ends in a target id
_TARGETED_KINDS = ("melee_attack", "ranged_attack", "spell_cast", "skill_use", "use_item")


def _submitted_target(action_id: str) -> Optional[str]:
    """Target id embedded in a submitted action id, if its kind carries one."""
    parts = action_id.split(":")
    if parts[0] == "help" and len(parts) == 2:
        return parts[1]
    if len(parts) >= 3 and parts[0] in _TARGETED_KINDS and parts[-1] != "all":
        return parts[-1]
    return None

# Upper bound on enemy actions taken by one run_enemy_turns call
_MAX_ENEMY_STEPS = 500


class CombatEngine:
    """
    Combat engine

    Responsibilities:
    - build the initial state from an encounter
    - roll initiative
    - list and validate actions, delegate resolution
    - advance turns and rounds, detect the end, compute rewards
    """

    def __init__(
        self,
        roller: Optional[DiceRoller] = None,
        rules: Optional[CombatRules] = None,
        loot_hook: Optional[LootHook] = None,
    ):
        """
        Args:
            roller: dice roller; pass one with a seeded source for replays
            rules: rule knobs
            loot_hook: called with the final state on victory, returns loot ids
        """
        self.roller = roller or DiceRoller()
        self.rules = rules or CombatRules()
        self.loot_hook = loot_hook
        self.parser = EncounterParser(self.rules)
        self.resolver = ActionResolver(self.roller, self.rules)

    # ============================================
    # Public API
    # ============================================

    def start_combat(
        self,
        encounter: Union[ParsedEncounter, Any],
        player: PlayerCombatant,
        *,
        companions: Optional[Sequence[PlayerCombatant]] = None,
        combat_id: Optional[str] = None,
    ) -> CombatState:
        """
        Start a combat

        Args:
            encounter: a ``ParsedEncounter`` or raw encounter data to parse
            player: the player's combatant
            companions: extra player-side combatants
            combat_id: id to use; generated when omitted

        Returns:
            CombatState: state in ``setup`` phase
        """
        parsed = encounter if isinstance(encounter, ParsedEncounter) else self.parser.parse(encounter)

        party = [self._prepare_player(player)]
        for companion in companions or []:
            party.append(self._prepare_player(companion))

        taken_ids = {member.id for member in party}
        enemies = []
        for enemy in parsed.enemies:
            enemy = enemy.model_copy(deep=True)
            if enemy.id in taken_ids:
                new_id = f"{enemy.id}-enemy"
                while new_id in taken_ids:
                    new_id += "-x"
                enemy.id = new_id
            taken_ids.add(enemy.id)
            enemies.append(enemy)

        state = CombatState(
            id=combat_id or f"combat_{uuid.uuid4().hex[:8]}",
            phase=CombatPhase.SETUP,
            combatants=party + enemies,
            encounter_name=parsed.encounter_name,
            description=parsed.description,
            terrain=parsed.terrain,
            lighting=parsed.lighting,
            environmental_effects=list(parsed.environmental_effects),
        )
        self._log_phase(state)
        logger.info(
            "[combat %s] started '%s': %d player-side vs %d enemies",
            state.id,
            state.encounter_name,
            len(party),
            len(enemies),
        )
        return state

    def roll_initiative(self, state: CombatState, player: Optional[PlayerCombatant] = None) -> CombatState:
        """
        Roll initiative and begin the first turn

        Raises:
            InvalidPhaseTransition: outside setup / initiative
        """
        working = roll_initiative_order(state, player, self.roller, self.rules)
        self._settle_turn(working)
        return working

    def get_available_actions(self, state: CombatState) -> List[CombatAction]:
        """
        Options for the combatant whose turn it is

        Returns:
            List[CombatAction]: empty outside ``active`` or when the
            combatant cannot act
        """
        if state.phase != CombatPhase.ACTIVE:
            return []
        actor = state.active_combatant()
        if actor is None or not actor.is_active() or is_incapacitated(actor):
            return []
        return self._build_actions(state, actor, state.turn_resources)

    def resolve_action(
        self,
        state: CombatState,
        action: Union[str, CombatAction],
        player: Optional[PlayerCombatant] = None,
    ) -> CombatState:
        """
        Resolve one submitted action

        Args:
            state: current state, phase ``active``
            action: an ``action_id`` or a full ``CombatAction``
            player: live player data to sync before resolving

        Returns:
            CombatState: new state; ``resolution`` when the combat is over

        Raises:
            InvalidPhaseTransition: phase is not ``active``
            InvalidTarget: a referenced target is missing or out of the fight
            IllegalAction: the action is not currently available
        """
        if state.phase != CombatPhase.ACTIVE:
            raise InvalidPhaseTransition("resolve an action", state.phase.value, CombatPhase.ACTIVE.value, state=state)

        current = state
        if player is not None:
            current = state.model_copy(deep=True)
            sync_player(current, player)

        actor = current.active_combatant()
        available = self.get_available_actions(current)
        chosen = self._match_action(state, current, action, available, actor)

        working, _ = self.resolver.resolve(current, actor.id, chosen)

        resources = working.turn_resources
        if chosen.cost == "bonus_action":
            resources.bonus_action = False
        else:
            resources.action = False

        if self._finish_if_over(working):
            return working

        acted = working.get_combatant(actor.id)
        if not resources.action or not acted.is_active():
            self._advance_turn(working)
        else:
            working.available_actions = self.get_available_actions(working)
        return working

    def check_combat_end(self, state: CombatState) -> CombatState:
        """
        Move to ``resolution`` if one side is out

        Returns:
            CombatState: a resolved copy, or the input itself when combat goes on
        """
        self._ensure_not_ended(state, "check for the end of combat")
        if state.phase != CombatPhase.ACTIVE:
            return state
        if self._detect_outcome(state) is None:
            return state
        working = state.model_copy(deep=True)
        self._finish_if_over(working)
        return working

    def end_combat(self, state: CombatState) -> CombatState:
        """
        Compute rewards and close the combat

        Raises:
            InvalidPhaseTransition: phase is not ``resolution``
        """
        if not can_transition(state.phase, CombatPhase.ENDED):
            raise InvalidPhaseTransition(
                "end combat", state.phase.value, CombatPhase.RESOLUTION.value, state=state
            )
        working = state.model_copy(deep=True)
        working.rewards = self._calculate_rewards(working)
        working.phase = CombatPhase.ENDED
        working.available_actions = []
        self._log_phase(working)
        logger.info(
            "[combat %s] ended: %s, xp=%d gold=%d",
            working.id,
            working.outcome.value if working.outcome else None,
            working.rewards.xp,
            working.rewards.gold,
        )
        return working

    def take_enemy_turn(self, state: CombatState) -> CombatState:
        """
        Let the AI act for the enemy whose turn it is

        Raises:
            InvalidPhaseTransition: phase is not ``active``
            IllegalAction: it is not an enemy's turn
        """
        if state.phase != CombatPhase.ACTIVE:
            raise InvalidPhaseTransition("take an enemy turn", state.phase.value, CombatPhase.ACTIVE.value, state=state)
        enemy = state.active_combatant()
        if enemy is None or enemy.side != "enemy":
            raise IllegalAction("enemy_turn", state.active_combatant_id(), state=state)

        available = self.get_available_actions(state)
        choice = OpponentAI(state, self.roller).decide_action(enemy, available)
        if choice is None:
            working = state.model_copy(deep=True)
            self._advance_turn(working)
            return working
        return self.resolve_action(state, choice)

    def run_enemy_turns(self, state: CombatState) -> CombatState:
        """Run enemy turns until a player-side turn or the end of combat."""
        steps = 0
        while state.phase == CombatPhase.ACTIVE:
            actor = state.active_combatant()
            if actor is None or actor.side != "enemy":
                break
            if steps >= _MAX_ENEMY_STEPS:
                logger.warning("[combat %s] enemy turn limit reached", state.id)
                break
            state = self.take_enemy_turn(state)
            steps += 1
        return state

    def summarize(self, state: CombatState) -> CombatResult:
        """
        Build the post-combat summary

        Raises:
            InvalidPhaseTransition: combat has not reached resolution
        """
        if state.phase not in (CombatPhase.RESOLUTION, CombatPhase.ENDED):
            raise InvalidPhaseTransition(
                "summarize",
                state.phase.value,
                [CombatPhase.RESOLUTION.value, CombatPhase.ENDED.value],
                state=state,
            )

        players = state.players()
        player = players[0] if players else None
        side_by_id = {c.id: c.side for c in state.combatants}

        dealt = 0
        taken = 0
        items_used: List[str] = []
        for entry in state.log:
            if entry.event_type == "action" and entry.actor_id == (player.id if player else None):
                if entry.action_kind == "use_item" and entry.action_id:
                    items_used.append(entry.action_id.split(":")[1])
            for outcome in entry.targets:
                if outcome.damage is None:
                    continue
                if side_by_id.get(outcome.target_id) == "enemy" and side_by_id.get(entry.actor_id) == "player":
                    dealt += outcome.damage.applied
                if player is not None and outcome.target_id == player.id:
                    taken += outcome.damage.applied

        enemies = state.enemies()
        defeated = [e.id for e in enemies if not e.is_alive]
        fled = [e.id for e in enemies if e.has_fled and e.is_alive]

        return CombatResult(
            combat_id=state.id,
            encounter_name=state.encounter_name,
            outcome=state.outcome,
            summary=self._summary_line(state.outcome, len(defeated), len(enemies), state.round),
            rewards=state.rewards or CombatRewards(defeated_enemy_ids=defeated),
            player_id=player.id if player else None,
            player_hp_remaining=player.hit_points.current if player else 0,
            player_max_hp=player.hit_points.max if player else 0,
            items_used=items_used,
            total_rounds=state.round,
            total_damage_dealt=dealt,
            total_damage_taken=taken,
            enemies_defeated=defeated,
            enemies_fled=fled,
        )

    # ============================================
    # Action options
    # ============================================

    def _build_actions(
        self,
        state: CombatState,
        actor: Combatant,
        resources: TurnResources,
    ) -> List[CombatAction]:
        opponents = state.opponents_of(actor)
        allies = state.allies_of(actor)
        actions: List[CombatAction] = []

        if resources.action:
            for attack in self._attacks_for(actor):
                action_cls = RangedAttack if attack.kind == "ranged" else MeleeAttack
                kind = "ranged_attack" if attack.kind == "ranged" else "melee_attack"
                for target in opponents:
                    actions.append(
                        action_cls(
                            action_id=f"{kind}:{slugify(attack.name)}:{target.id}",
                            label=f"{attack.name} -> {target.name}",
                            attack_name=attack.name,
                            attack_bonus=attack.attack_bonus,
                            damage=attack.damage,
                            damage_type=attack.damage_type,
                            target_id=target.id,
                        )
                    )

        actions.extend(self._spell_actions(actor, opponents, allies, resources))

        if resources.action:
            if actor.side == "player":
                actions.extend(self._maneuver_actions(actor, opponents))
            actions.append(Defend(action_id="defend:ac", label="Defend", mode="ac"))
            actions.append(Defend(action_id="defend:brace", label="Brace", mode="damage_reduction"))
            actions.append(Defend(action_id="defend:dodge", label="Dodge", mode="dodge"))
            if actor.side == "player":
                actions.extend(
                    Help(action_id=f"help:{ally.id}", label=f"Help -> {ally.name}", target_id=ally.id)
                    for ally in allies
                    if ally.id != actor.id
                )
            if can_move(actor) and resources.movement > 0:
                actions.append(Flee(action_id="flee", label="Flee"))

        if resources.bonus_action:
            actions.extend(self._item_actions(actor, opponents))
        return actions

    def _attacks_for(self, actor: Combatant) -> List[Attack]:
        if actor.attacks or actor.side != "player":
            return list(actor.attacks)
        strength = actor.ability_scores.modifier("str")
        return [
            Attack(
                name="Unarmed Strike",
                attack_bonus=strength + actor.proficiency(),
                damage=str(max(1, 1 + strength)),
                damage_type="bludgeoning",
            )
        ]

    def _spell_actions(
        self,
        actor: Combatant,
        opponents: List[Combatant],
        allies: List[Combatant],
        resources: TurnResources,
    ) -> List[CombatAction]:
        actions: List[CombatAction] = []
        for spell in actor.spells:
            cost = "bonus_action" if spell.bonus_action else "action"
            if cost == "action" and not resources.action:
                continue
            if cost == "bonus_action" and not resources.bonus_action:
                continue
            if spell.uses_remaining is not None and spell.uses_remaining <= 0:
                continue
            if spell.level > 0 and actor.side == "player" and actor.spell_slots.get(spell.level, 0) <= 0:
                continue

            targets = allies if spell.healing or spell.target_side == "ally" else opponents
            if not targets:
                continue
            groups = [targets] if spell.area else [[target] for target in targets]
            for group in groups:
                suffix = "all" if spell.area else group[0].id
                actions.append(
                    SpellCast(
                        action_id=f"spell_cast:{slugify(spell.name)}:{suffix}",
                        label=f"{spell.name} -> {', '.join(t.name for t in group)}",
                        cost=cost,
                        spell_name=spell.name,
                        target_ids=[t.id for t in group],
                        slot_level=spell.level if actor.side == "player" else 0,
                        attack_bonus=spell.attack_bonus,
                        save_dc=spell.save_dc,
                        save_ability=spell.save_ability,
                        damage=spell.damage,
                        damage_type=spell.damage_type,
                        half_on_success=spell.half_on_success,
                        healing=spell.healing,
                        condition=spell.condition,
                        condition_duration=spell.condition_duration,
                    )
                )
        return actions

    def _maneuver_actions(self, actor: Combatant, opponents: List[Combatant]) -> List[CombatAction]:
        actions: List[CombatAction] = []
        for name, maneuver in SKILL_MANEUVERS.items():
            if maneuver["applies_to"] == "self":
                actions.append(
                    SkillUse(
                        action_id=f"skill_use:{name}",
                        label=name.title(),
                        skill=maneuver["skill"],
                        ability=maneuver["ability"],
                        dc=maneuver.get("dc"),
                        condition=maneuver["condition"],
                        condition_duration=maneuver["condition_duration"],
                        applies_to="self",
                    )
                )
                continue
            for target in opponents:
                actions.append(
                    SkillUse(
                        action_id=f"skill_use:{name}:{target.id}",
                        label=f"{name.title()} -> {target.name}",
                        skill=maneuver["skill"],
                        ability=maneuver["ability"],
                        target_id=target.id,
                        contest_ability=maneuver["contest_ability"],
                        condition=maneuver["condition"],
                        condition_duration=maneuver["condition_duration"],
                    )
                )
        return actions

    def _item_actions(self, actor: Combatant, opponents: List[Combatant]) -> List[CombatAction]:
        actions: List[CombatAction] = []
        for item in getattr(actor, "items", []):
            if item.quantity <= 0:
                continue
            if item.damage:
                for target in opponents:
                    actions.append(
                        UseItem(
                            action_id=f"use_item:{item.id}:{target.id}",
                            label=f"{item.name} -> {target.name}",
                            cost="bonus_action",
                            item_id=item.id,
                            target_id=target.id,
                        )
                    )
            else:
                actions.append(
                    UseItem(
                        action_id=f"use_item:{item.id}",
                        label=item.name,
                        cost="bonus_action",
                        item_id=item.id,
                    )
                )
        return actions

    def _match_action(
        self,
        original: CombatState,
        current: CombatState,
        action: Union[str, CombatAction],
        available: List[CombatAction],
        actor: Optional[Combatant],
    ) -> CombatAction:
        """Validate a submission: targets first, then availability."""
        actor_id = actor.id if actor else None

        if isinstance(action, str):
            chosen = next((a for a in available if a.action_id == action), None)
            if chosen is not None:
                return chosen
            target_id = _submitted_target(action)
            if target_id is not None:
                target = current.get_combatant(target_id)
                if target is None or not target.is_active():
                    raise InvalidTarget(target_id, action, state=original)
            raise IllegalAction(action, actor_id, state=original)

        for target_id in action.referenced_targets():
            target = current.get_combatant(target_id)
            if target is None or not target.is_active():
                raise InvalidTarget(target_id, action.action_id, state=original)
        if action not in available:
            raise IllegalAction(action.action_id, actor_id, state=original)
        return action

    # ============================================
    # Turn flow
    # ============================================

    def _advance_turn(self, working: CombatState) -> None:
        """End the current turn and settle on the next combatant able to act."""
        actor = working.active_combatant()
        if actor is not None:
            self._end_turn(working, actor)
        self._step_index(working)
        self._settle_turn(working)

    def _step_index(self, working: CombatState) -> None:
        working.active_combatant_index += 1
        if working.active_combatant_index >= len(working.turn_order):
            working.active_combatant_index = 0
            working.round += 1

    def _settle_turn(self, working: CombatState) -> None:
        """
        Begin the turn at the current index, skipping whoever cannot act

        Dead and fled combatants are skipped; incapacitated ones lose their
        turn (their conditions still tick). Stops after ``max_idle_rounds``
        full rounds without anyone able to act.
        """
        if not working.turn_order:
            working.available_actions = []
            return

        limit = len(working.turn_order) * (self.rules.max_idle_rounds + 1)
        for _ in range(limit):
            actor = working.active_combatant()
            if actor is None or not actor.is_active():
                reason = "missing" if actor is None else ("fled" if actor.has_fled else "dead")
                self._log_skip(working, working.active_combatant_id(), reason)
                self._step_index(working)
                continue

            self._begin_turn(working, actor)
            if self._finish_if_over(working):
                return
            actor = working.active_combatant()
            if not actor.is_active():
                self._log_skip(working, actor.id, "dead")
                self._step_index(working)
                continue
            if is_incapacitated(actor):
                self._log_skip(working, actor.id, "incapacitated")
                self._end_turn(working, actor)
                self._step_index(working)
                continue

            working.available_actions = self.get_available_actions(working)
            return

        logger.warning("[combat %s] nobody able to act for %d rounds", working.id, self.rules.max_idle_rounds)
        working.available_actions = []

    def _begin_turn(self, working: CombatState, actor: Combatant) -> None:
        """Start-of-turn upkeep: expire stances, damage over time, reset resources."""
        actor, removed = expire_turn_start_conditions(actor)
        working.replace_combatant(actor)
        if removed:
            self._log_condition(working, actor.id, f"expired: {', '.join(removed)}")

        outcomes = self.resolver.apply_start_of_turn_damage(actor)
        if outcomes:
            working.log.append(
                ActionLogEntry(
                    seq=working.next_seq(),
                    round=working.round,
                    event_type="condition",
                    actor_id=actor.id,
                    target_ids=[actor.id],
                    outcome="damage",
                    targets=outcomes,
                )
            )

        working.turn_resources = TurnResources(movement=actor.speed if can_move(actor) else 0)

    def _end_turn(self, working: CombatState, actor: Combatant) -> None:
        updated, expired = tick_conditions(actor)
        working.replace_combatant(updated)
        if expired:
            self._log_condition(working, actor.id, f"expired: {', '.join(expired)}")

    # ============================================
    # End of combat
    # ============================================

    def _detect_outcome(self, state: CombatState) -> Optional[CombatOutcome]:
        players = state.players()
        enemies = state.enemies()
        if not any(p.is_active() for p in players):
            return CombatOutcome.FLED if any(p.has_fled for p in players) else CombatOutcome.DEFEAT
        if not any(e.is_active() for e in enemies):
            if any(not e.is_alive for e in enemies):
                return CombatOutcome.VICTORY
            return CombatOutcome.FLED
        return None

    def _finish_if_over(self, working: CombatState) -> bool:
        outcome = self._detect_outcome(working)
        if outcome is None:
            return False
        working.outcome = outcome
        working.phase = CombatPhase.RESOLUTION
        working.available_actions = []
        self._log_phase(working, note=outcome.value)
        logger.info("[combat %s] resolved: %s in round %d", working.id, outcome.value, working.round)
        return True

    def _calculate_rewards(self, working: CombatState) -> CombatRewards:
        defeated = [e for e in working.enemies() if not e.is_alive]
        defeated_ids = [e.id for e in defeated]
        if working.outcome != CombatOutcome.VICTORY:
            return CombatRewards(defeated_enemy_ids=defeated_ids)

        xp = sum(e.xp_value for e in defeated)
        gold = self.roller.roll_between(0, xp // 2)
        loot = list(self.loot_hook(working)) if self.loot_hook else []
        return CombatRewards(xp=xp, gold=gold, defeated_enemy_ids=defeated_ids, loot=loot)

    @staticmethod
    def _summary_line(outcome: Optional[CombatOutcome], defeated: int, total: int, rounds: int) -> str:
        if outcome == CombatOutcome.VICTORY:
            return f"Victory: {defeated} of {total} enemies defeated in {rounds} rounds."
        if outcome == CombatOutcome.DEFEAT:
            return f"Defeat after {rounds} rounds."
        if outcome == CombatOutcome.FLED:
            return f"Combat ended by flight after {rounds} rounds."
        return ""

    # ============================================
    # Helpers
    # ============================================

    def _prepare_player(self, player: PlayerCombatant) -> PlayerCombatant:
        prepared = player.model_copy(deep=True)
        hit_points = HitPoints.model_validate(prepared.hit_points.model_dump())
        if hit_points.current < 1:
            hit_points.current = 1
        prepared.hit_points = hit_points
        prepared.has_fled = False
        return prepared

    def _ensure_not_ended(self, state: CombatState, operation: str) -> None:
        if state.phase == CombatPhase.ENDED:
            raise InvalidPhaseTransition(operation, state.phase.value, [], state=state)

    def _log_phase(self, working: CombatState, note: str = "") -> None:
        working.log.append(
            ActionLogEntry(
                seq=working.next_seq(),
                round=working.round,
                event_type="phase",
                outcome=working.phase.value,
                note=note,
            )
        )

    def _log_skip(self, working: CombatState, combatant_id: Optional[str], reason: str) -> None:
        working.log.append(
            ActionLogEntry(
                seq=working.next_seq(),
                round=working.round,
                event_type="skip",
                actor_id=combatant_id,
                outcome=reason,
            )
        )

    def _log_condition(self, working: CombatState, combatant_id: str, note: str) -> None:
        working.log.append(
            ActionLogEntry(
                seq=working.next_seq(),
                round=working.round,
                event_type="condition",
                actor_id=combatant_id,
                target_ids=[combatant_id],
                outcome="expired",
                note=note,
            )
        )

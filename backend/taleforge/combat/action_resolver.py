"""
Action resolver

Applies one ``CombatAction`` to a combat state and records exactly one
``ActionLogEntry``. All rolls go through the injected ``DiceRoller``; the
resolver produces numbers and identifiers only, never prose.
"""
import logging
from typing import List, Optional, Tuple

from .dice import DiceRoller
from .effects import (
    attack_bonus_modifier,
    attack_roll_mode,
    check_mode,
    damage_reduction,
    effective_ac,
    is_incapacitated,
    save_bonus_modifier,
    saving_throw_mode,
    spend_roll_conditions,
    start_of_turn_damage,
)
from .errors import IllegalAction, InvalidTarget
from .models.action import (
    ActionLogEntry,
    AttackRollRecord,
    CheckRecord,
    CombatAction,
    D20Record,
    DamageRecord,
    Defend,
    Flee,
    Help,
    MeleeAttack,
    RangedAttack,
    SavingThrowRecord,
    SkillUse,
    SpellCast,
    TargetOutcome,
    UseItem,
)
from .models.combat_state import CombatState
from .models.combatant import Combatant, Condition
from .rules import CRITICAL_HIT_ROLL, CRITICAL_MISS_ROLL, CombatRules

logger = logging.getLogger(__name__)

_DEFAULT_SKILL_DC = 10

_DEFEND_CONDITIONS = {"ac": "defending", "damage_reduction": "bracing", "dodge": "dodging"}

ResolvedParts = Tuple[str, List[TargetOutcome], List[CheckRecord]]


class _TargetTracker:
    """Collects the per-target outcome fields while an action is applied"""

    def __init__(self, target: Combatant):
        self.target = target
        self.hp_before = target.hit_points.current
        self.attack: Optional[AttackRollRecord] = None
        self.saving_throw: Optional[SavingThrowRecord] = None
        self.damage: Optional[DamageRecord] = None
        self.healing = 0
        self.condition_applied: Optional[str] = None
        self.condition_blocked: Optional[str] = None
        self.conditions_removed: List[str] = []

    def build(self) -> TargetOutcome:
        hp_after = self.target.hit_points.current
        return TargetOutcome(
            target_id=self.target.id,
            attack=self.attack,
            saving_throw=self.saving_throw,
            damage=self.damage,
            healing=self.healing,
            hp_before=self.hp_before,
            hp_after=hp_after,
            hp_delta=hp_after - self.hp_before,
            condition_applied=self.condition_applied,
            condition_blocked=self.condition_blocked,
            conditions_removed=self.conditions_removed,
            killed=self.hp_before > 0 and hp_after == 0,
        )


class ActionResolver:
    """Resolves a single action against a copy of the combat state"""

    def __init__(self, roller: DiceRoller, rules: Optional[CombatRules] = None):
        self.roller = roller
        self.rules = rules or CombatRules()

    def resolve(
        self,
        state: CombatState,
        actor_id: str,
        action: CombatAction,
    ) -> Tuple[CombatState, ActionLogEntry]:
        """
        Resolve an action

        Args:
            state: current state (never modified)
            actor_id: combatant taking the action
            action: one of the ``CombatAction`` variants

        Returns:
            (new state with the log entry appended, the log entry)

        Raises:
            IllegalAction: actor missing or action cannot be carried out
            InvalidTarget: a referenced target is not in the combat
        """
        working = state.model_copy(deep=True)
        actor = working.get_combatant(actor_id)
        if actor is None:
            raise IllegalAction(action.action_id, actor_id, state=state)

        if isinstance(action, (MeleeAttack, RangedAttack)):
            outcome, targets, checks = self._resolve_attack(working, actor, action, state)
        elif isinstance(action, SpellCast):
            outcome, targets, checks = self._resolve_spell(working, actor, action, state)
        elif isinstance(action, SkillUse):
            outcome, targets, checks = self._resolve_skill(working, actor, action, state)
        elif isinstance(action, Defend):
            outcome, targets, checks = self._resolve_defend(actor, action)
        elif isinstance(action, Help):
            outcome, targets, checks = self._resolve_help(working, actor, action, state)
        elif isinstance(action, Flee):
            outcome, targets, checks = self._resolve_flee(working, actor)
        elif isinstance(action, UseItem):
            outcome, targets, checks = self._resolve_item(working, actor, action, state)
        else:
            raise IllegalAction(getattr(action, "action_id", "?"), actor_id, state=state)

        entry = ActionLogEntry(
            seq=working.next_seq(),
            round=working.round,
            event_type="action",
            actor_id=actor.id,
            action_id=action.action_id,
            action_kind=action.kind,
            target_ids=action.referenced_targets() or [actor.id],
            outcome=outcome,
            targets=targets,
            checks=checks,
        )
        working.log.append(entry)
        logger.debug(
            "[combat %s] %s -> %s: %s",
            working.id,
            actor.id,
            action.action_id,
            outcome,
        )
        return working, entry

    # ============================================
    # Variants
    # ============================================

    def _resolve_attack(
        self,
        working: CombatState,
        actor: Combatant,
        action: MeleeAttack,
        original: CombatState,
    ) -> ResolvedParts:
        target = self._target(working, action.target_id, action.action_id, original)
        tracker = _TargetTracker(target)
        attack = self._attack_roll(actor, target, action.attack_bonus, isinstance(action, RangedAttack))
        tracker.attack = attack

        if attack.hit:
            tracker.damage = self._apply_damage(
                target, action.damage, action.damage_type, critical=attack.is_critical
            )

        if attack.is_critical:
            outcome = "critical_hit"
        elif attack.is_critical_fail:
            outcome = "critical_miss"
        else:
            outcome = "hit" if attack.hit else "miss"
        return outcome, [tracker.build()], []

    def _resolve_spell(
        self,
        working: CombatState,
        actor: Combatant,
        action: SpellCast,
        original: CombatState,
    ) -> ResolvedParts:
        targets = [
            self._target(working, target_id, action.action_id, original)
            for target_id in action.target_ids
        ]
        self._consume_spell(actor, action, original)

        outcomes = []
        for target in targets:
            tracker = _TargetTracker(target)
            if action.healing:
                tracker.healing = self._heal(target, action.healing)
            elif action.attack_bonus is not None:
                tracker.attack = self._attack_roll(actor, target, action.attack_bonus, is_ranged=True)
                if tracker.attack.hit:
                    self._land_effect(
                        tracker,
                        action.damage,
                        action.damage_type,
                        actor,
                        action,
                        critical=tracker.attack.is_critical,
                    )
            elif action.save_dc is not None:
                tracker.saving_throw = self._saving_throw(target, action.save_ability or "dex", action.save_dc)
                if not tracker.saving_throw.success:
                    self._land_effect(tracker, action.damage, action.damage_type, actor, action)
                elif action.damage and action.half_on_success:
                    tracker.damage = self._apply_damage(target, action.damage, action.damage_type, halve=True)
            else:
                self._land_effect(tracker, action.damage, action.damage_type, actor, action)
            outcomes.append(tracker.build())
        return "cast", outcomes, []

    def _resolve_skill(
        self,
        working: CombatState,
        actor: Combatant,
        action: SkillUse,
        original: CombatState,
    ) -> ResolvedParts:
        target = None
        if action.target_id:
            target = self._target(working, action.target_id, action.action_id, original)

        modifier = actor.ability_scores.modifier(action.ability)
        if action.skill in getattr(actor, "skill_proficiencies", []):
            modifier += actor.proficiency()

        checks: List[CheckRecord] = []
        if target is not None and action.contest_ability:
            own = self.roller.roll_check(modifier, check_mode(actor))
            defence = self.roller.roll_check(
                target.ability_scores.modifier(action.contest_ability), check_mode(target)
            )
            self._spend_rolled(actor)
            self._spend_rolled(target)
            # ties favour the defender
            success = own.total > defence.total
            checks.append(CheckRecord.from_result(actor.id, action.skill, own))
            checks.append(CheckRecord.from_result(target.id, action.contest_ability, defence))
        else:
            dc = action.dc if action.dc is not None else _DEFAULT_SKILL_DC
            own = self.roller.roll_check(modifier, check_mode(actor), dc=dc)
            self._spend_rolled(actor)
            success = bool(own.success)
            checks.append(CheckRecord.from_result(actor.id, action.skill, own))

        outcomes = []
        recipient = actor if action.applies_to == "self" or target is None else target
        tracker = _TargetTracker(recipient)
        if success and action.condition:
            self._apply_condition(tracker, action.condition, action.condition_duration, actor.id)
        outcomes.append(tracker.build())
        return ("success" if success else "failure"), outcomes, checks

    def _resolve_defend(self, actor: Combatant, action: Defend) -> ResolvedParts:
        name = _DEFEND_CONDITIONS[action.mode]
        tracker = _TargetTracker(actor)
        self._apply_condition(tracker, name, None, actor.id)
        return name, [tracker.build()], []

    def _resolve_help(
        self,
        working: CombatState,
        actor: Combatant,
        action: Help,
        original: CombatState,
    ) -> ResolvedParts:
        ally = self._target(working, action.target_id, action.action_id, original)
        if ally.id == actor.id or ally.side != actor.side:
            raise IllegalAction(action.action_id, actor.id, state=original)
        tracker = _TargetTracker(ally)
        # lasts until the end of the ally's next turn unless spent earlier
        self._apply_condition(tracker, "helped", 1, actor.id)
        return "helped", [tracker.build()], []

    def _resolve_flee(self, working: CombatState, actor: Combatant) -> ResolvedParts:
        policy = self.rules.flee_policy
        dex_modifier = actor.ability_scores.modifier("dex")
        checks: List[CheckRecord] = []

        if policy == "always":
            success = True
        elif policy == "dc":
            result = self.roller.roll_check(dex_modifier, check_mode(actor), dc=self.rules.flee_dc)
            self._spend_rolled(actor)
            checks.append(CheckRecord.from_result(actor.id, "flee", result))
            success = bool(result.success)
        else:
            pursuers = [o for o in working.opponents_of(actor) if not is_incapacitated(o)]
            if not pursuers:
                success = True
            else:
                own = self.roller.roll_check(dex_modifier, check_mode(actor))
                self._spend_rolled(actor)
                checks.append(CheckRecord.from_result(actor.id, "flee", own))
                best_total = None
                for pursuer in pursuers:
                    chase = self.roller.roll_check(pursuer.ability_scores.modifier("dex"), check_mode(pursuer))
                    self._spend_rolled(pursuer)
                    checks.append(CheckRecord.from_result(pursuer.id, "pursuit", chase))
                    if best_total is None or chase.total > best_total:
                        best_total = chase.total
                # ties favour the pursuer
                success = own.total > best_total

        if success:
            actor.has_fled = True
            logger.info("[combat %s] %s fled", working.id, actor.id)
        return ("fled" if success else "failed"), [], checks

    def _resolve_item(
        self,
        working: CombatState,
        actor: Combatant,
        action: UseItem,
        original: CombatState,
    ) -> ResolvedParts:
        items = getattr(actor, "items", [])
        item = next((i for i in items if i.id == action.item_id and i.quantity > 0), None)
        if item is None:
            raise IllegalAction(action.action_id, actor.id, state=original)

        target = actor
        if action.target_id:
            target = self._target(working, action.target_id, action.action_id, original)

        item.quantity -= 1
        if item.quantity <= 0:
            actor.items = [i for i in items if i is not item]

        tracker = _TargetTracker(target)
        if item.healing:
            tracker.healing = self._heal(target, item.healing)
        if item.damage:
            halve = False
            if item.save_dc is not None:
                tracker.saving_throw = self._saving_throw(target, item.save_ability or "dex", item.save_dc)
                halve = tracker.saving_throw.success
            tracker.damage = self._apply_damage(target, item.damage, item.damage_type, halve=halve)
        if item.cures:
            tracker.conditions_removed = [c.name for c in target.conditions if c.name in item.cures]
            target.conditions = [c for c in target.conditions if c.name not in item.cures]
        return "used", [tracker.build()], []

    # ============================================
    # Mechanics
    # ============================================

    def _target(
        self,
        working: CombatState,
        target_id: str,
        action_id: str,
        original: CombatState,
    ) -> Combatant:
        target = working.get_combatant(target_id)
        if target is None:
            raise InvalidTarget(target_id, action_id, state=original)
        return target

    def _attack_roll(
        self,
        attacker: Combatant,
        target: Combatant,
        attack_bonus: int,
        is_ranged: bool,
    ) -> AttackRollRecord:
        """d20 + bonus vs effective AC; natural 20 always hits, natural 1 always misses."""
        d20 = self.roller.roll_d20(attack_roll_mode(attacker, target, is_ranged))
        self._spend_rolled(attacker)
        modifier = attack_bonus + attack_bonus_modifier(attacker)
        total = d20.natural + modifier
        target_ac = effective_ac(target, self.rules)
        is_critical = d20.natural == CRITICAL_HIT_ROLL
        is_critical_fail = d20.natural == CRITICAL_MISS_ROLL
        hit = is_critical or (not is_critical_fail and total >= target_ac)
        return AttackRollRecord(
            d20=D20Record.from_roll(d20),
            modifier=modifier,
            total=total,
            target_ac=target_ac,
            is_critical=is_critical,
            is_critical_fail=is_critical_fail,
            hit=hit,
        )

    def _saving_throw(self, target: Combatant, ability: str, dc: int) -> SavingThrowRecord:
        modifier = target.saving_throw_modifier(ability) + save_bonus_modifier(target)
        result = self.roller.roll_check(modifier, saving_throw_mode(target, ability), dc=dc)
        return SavingThrowRecord(
            ability=ability,
            d20=D20Record.from_roll(result.d20),
            modifier=modifier,
            total=result.total,
            dc=dc,
            success=bool(result.success),
        )

    def _apply_damage(
        self,
        target: Combatant,
        expression: str,
        damage_type: str,
        critical: bool = False,
        halve: bool = False,
    ) -> DamageRecord:
        """
        Roll and apply damage

        Order: halving (successful save), immunity, resistance, vulnerability,
        flat reduction, temporary hit points, current hit points.
        """
        record = DamageRecord.from_result(self.roller.roll_expression(expression, critical), damage_type)
        amount = record.rolled_total
        adjustment = "none"

        if halve:
            amount //= 2
            adjustment = "halved"
        if damage_type in target.immunities:
            amount = 0
            adjustment = "immunity"
        else:
            resisted = damage_type in target.resistances
            vulnerable = damage_type in target.vulnerabilities
            if resisted:
                amount //= 2
            if vulnerable:
                amount *= 2
            if resisted != vulnerable:
                adjustment = "resistance" if resisted else "vulnerability"

        reduced_by = min(amount, damage_reduction(target, self.rules))
        amount -= reduced_by

        hit_points = target.hit_points
        absorbed = min(hit_points.temporary, amount)
        hit_points.temporary -= absorbed
        amount -= absorbed
        lost = min(hit_points.current, amount)
        hit_points.current -= lost

        return record.model_copy(
            update={
                "applied": absorbed + lost,
                "adjustment": adjustment,
                "reduced_by": reduced_by,
                "absorbed_by_temporary": absorbed,
            }
        )

    def _heal(self, target: Combatant, expression: str) -> int:
        amount = max(0, self.roller.roll_expression(expression).total)
        hit_points = target.hit_points
        healed = max(0, min(hit_points.max, hit_points.current + amount) - hit_points.current)
        hit_points.current += healed
        return healed

    def _land_effect(
        self,
        tracker: _TargetTracker,
        damage: Optional[str],
        damage_type: str,
        actor: Combatant,
        action: SpellCast,
        critical: bool = False,
    ) -> None:
        if damage:
            tracker.damage = self._apply_damage(tracker.target, damage, damage_type, critical=critical)
        if action.condition and tracker.target.is_alive:
            self._apply_condition(tracker, action.condition, action.condition_duration, actor.id)

    def _apply_condition(
        self,
        tracker: _TargetTracker,
        name: str,
        duration: Optional[int],
        source: str,
    ) -> None:
        target = tracker.target
        if name in target.condition_immunities:
            tracker.condition_blocked = name
            return
        remaining = [c for c in target.conditions if c.name != name]
        remaining.append(Condition(name=name, duration=duration, source=source))
        target.conditions = remaining
        tracker.condition_applied = name

    def _spend_rolled(self, combatant: Combatant) -> None:
        spent, removed = spend_roll_conditions(combatant)
        if removed:
            combatant.conditions = spent.conditions

    def apply_start_of_turn_damage(self, combatant: Combatant) -> List[TargetOutcome]:
        """Damage-over-time conditions (burning) at the start of the owner's turn."""
        outcomes = []
        for _, expression, damage_type in start_of_turn_damage(combatant):
            tracker = _TargetTracker(combatant)
            tracker.damage = self._apply_damage(combatant, expression, damage_type)
            outcomes.append(tracker.build())
        return outcomes

    def _consume_spell(self, actor: Combatant, action: SpellCast, original: CombatState) -> None:
        """Spend a slot (levelled player spells) and a limited use, if any."""
        if action.slot_level > 0 and actor.side == "player":
            slots = actor.spell_slots
            remaining = slots.get(action.slot_level, 0)
            if remaining <= 0:
                raise IllegalAction(action.action_id, actor.id, state=original)
            slots[action.slot_level] = remaining - 1
        for spell in actor.spells:
            if spell.name == action.spell_name and spell.uses_remaining is not None:
                if spell.uses_remaining <= 0:
                    raise IllegalAction(action.action_id, actor.id, state=original)
                spell.uses_remaining -= 1
                break

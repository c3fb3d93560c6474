"""
Enemy AI

Picks one of the acting enemy's available actions.
"""
from typing import Any, Dict, List, Optional

from .dice import DiceRoller
from .models.action import CombatAction, Defend, Flee, MeleeAttack, RangedAttack, SpellCast
from .models.combat_state import CombatState
from .models.combatant import Combatant
from .rules import AI_PERSONALITIES, DEFAULT_PERSONALITY


class OpponentAI:
    """
    Enemy AI

    Simple rule tree driven by the enemy's tactics: flee below its flee
    threshold, sometimes brace when cautious, otherwise pick a target by
    priority and the best matching offensive option.
    """

    def __init__(self, state: CombatState, roller: DiceRoller):
        """
        Args:
            state: current combat state (read only)
            roller: dice roller used for every random choice
        """
        self.state = state
        self.roller = roller

    def decide_action(
        self,
        enemy: Combatant,
        available: List[CombatAction],
    ) -> Optional[CombatAction]:
        """
        Choose an action for an enemy

        Args:
            enemy: acting enemy
            available: its currently legal actions

        Returns:
            Optional[CombatAction]: chosen action, None when nothing is available
        """
        if not available:
            return None

        personality = AI_PERSONALITIES.get(
            enemy.tactics.target_priority, AI_PERSONALITIES[DEFAULT_PERSONALITY]
        )

        # 1. Flee
        flee = next((a for a in available if isinstance(a, Flee)), None)
        if flee is not None and self._should_flee(enemy):
            return flee

        # 2. Defend
        defend = next((a for a in available if isinstance(a, Defend)), None)
        if defend is not None and self._should_defend(enemy, personality):
            return defend

        # 3. Attack
        target = self._select_target(enemy, personality, available)
        if target is not None:
            option = self._select_offense(enemy, target, available)
            if option is not None:
                return option

        # 4. Nothing offensive left
        if defend is not None:
            return defend
        return available[0]

    # ===== Private =====

    def _should_flee(self, enemy: Combatant) -> bool:
        """Below the flee threshold there is a 50% chance to run."""
        threshold = enemy.tactics.flee_threshold
        if threshold <= 0:
            return False
        if enemy.hp_ratio() < threshold:
            return self.roller.chance(0.5)
        return False

    def _should_defend(self, enemy: Combatant, personality: Dict[str, Any]) -> bool:
        if personality.get("prefer_defend", False) and enemy.hp_ratio() < 0.5:
            return self.roller.chance(0.3)
        return False

    def _select_target(
        self,
        enemy: Combatant,
        personality: Dict[str, Any],
        available: List[CombatAction],
    ) -> Optional[Combatant]:
        targetable_ids = {
            target_id
            for action in available
            if isinstance(action, (MeleeAttack, RangedAttack, SpellCast))
            for target_id in action.referenced_targets()
        }
        targets = [c for c in self.state.opponents_of(enemy) if c.id in targetable_ids]
        if not targets:
            return None

        if personality.get("prefer_weaker_targets", False):
            return min(targets, key=lambda target: target.hit_points.current)

        if personality.get("prefer_wounded_targets", False):
            wounded = [t for t in targets if t.hit_points.current < t.hit_points.max]
            if wounded:
                return min(wounded, key=lambda t: t.hp_ratio())

        if personality.get("prefer_stronger_targets", False):
            return max(targets, key=lambda target: target.hit_points.current)

        if personality.get("prefer_spellcasters", False):
            casters = [t for t in targets if t.spells]
            if casters:
                targets = casters

        return targets[self.roller.roll_between(0, len(targets) - 1)]

    def _select_offense(
        self,
        enemy: Combatant,
        target: Combatant,
        available: List[CombatAction],
    ) -> Optional[CombatAction]:
        spells = [
            a
            for a in available
            if isinstance(a, SpellCast) and not a.healing and target.id in a.target_ids
        ]
        if spells and self.roller.chance(0.5):
            return spells[0]

        melee = [a for a in available if isinstance(a, MeleeAttack) and a.target_id == target.id]
        ranged = [a for a in available if isinstance(a, RangedAttack) and a.target_id == target.id]
        if enemy.tactics.preferred_range == "ranged":
            ordered = ranged + melee
        else:
            ordered = melee + ranged
        if ordered:
            return ordered[0]
        return spells[0] if spells else None

import pytest
from pydantic import ValidationError

from taleforge.combat import CombatRules
from taleforge.combat.action_resolver import ActionResolver
from taleforge.combat.errors import IllegalAction, InvalidTarget
from taleforge.combat.models import (
    CombatPhase,
    CombatState,
    Defend,
    Flee,
    Help,
    MeleeAttack,
    SkillUse,
    SpellCast,
    UseItem,
)

from combat_fixtures import make_goblin, make_player, scripted_roller


def _state(hero=None, goblin=None):
    hero = hero or make_player()
    goblin = goblin or make_goblin()
    return CombatState(
        id="c-test",
        phase=CombatPhase.ACTIVE,
        round=1,
        combatants=[hero, goblin],
        turn_order=[hero.id, goblin.id],
    )


def _resolver(*rolls, rules=None):
    return ActionResolver(scripted_roller(*rolls), rules or CombatRules())


def _longsword(target_id="goblin-1"):
    return MeleeAttack(
        action_id=f"melee_attack:longsword:{target_id}",
        attack_name="Longsword",
        attack_bonus=4,
        damage="1d8+2",
        damage_type="slashing",
        target_id=target_id,
    )


# ===== Attacks =====


def test_hit_rolls_damage_and_can_kill():
    state = _state()
    new_state, entry = _resolver(15, 5).resolve(state, "hero", _longsword())

    assert entry.outcome == "hit"
    outcome = entry.targets[0]
    assert outcome.attack.total == 19
    assert outcome.attack.target_ac == 13
    assert outcome.damage.rolled_total == 7
    assert outcome.damage.applied == 7
    assert outcome.hp_before == 7 and outcome.hp_after == 0
    assert outcome.killed
    assert not new_state.get_combatant("goblin-1").is_alive

    assert state.get_combatant("goblin-1").hit_points.current == 7
    assert new_state.log == [entry]
    assert state.log == []


def test_natural_twenty_always_hits_and_doubles_dice():
    state = _state(goblin=make_goblin(armor_class=30, hit_points={"current": 30, "max": 30}))
    _, entry = _resolver(20, 3, 4).resolve(state, "hero", _longsword())

    assert entry.outcome == "critical_hit"
    assert entry.targets[0].damage.rolls == [3, 4]
    assert entry.targets[0].damage.applied == 9


def test_natural_one_always_misses():
    state = _state(goblin=make_goblin(armor_class=5))
    _, entry = _resolver(1).resolve(state, "hero", _longsword())

    assert entry.outcome == "critical_miss"
    assert entry.targets[0].damage is None
    assert entry.targets[0].hp_delta == 0


def test_plain_miss():
    _, entry = _resolver(2).resolve(_state(), "hero", _longsword())
    assert entry.outcome == "miss"
    assert entry.targets[0].attack.hit is False


def test_dodging_target_imposes_disadvantage():
    state = _state(goblin=make_goblin(conditions=[{"name": "dodging"}]))
    _, entry = _resolver(17, 3).resolve(state, "hero", _longsword())

    d20 = entry.targets[0].attack.d20
    assert d20.rolls == [17, 3]
    assert d20.natural == 3
    assert entry.outcome == "miss"


def test_advantage_against_a_stunned_target_keeps_the_higher_die():
    state = _state(goblin=make_goblin(conditions=[{"name": "stunned"}]))
    _, entry = _resolver(3, 17, 4).resolve(state, "hero", _longsword())

    d20 = entry.targets[0].attack.d20
    assert d20.rolls == [3, 17]
    assert d20.natural == 17
    assert entry.outcome == "hit"


@pytest.mark.parametrize(
    "defenses, applied, adjustment",
    [
        ({"resistances": ["slashing"]}, 4, "resistance"),
        ({"vulnerabilities": ["slashing"]}, 16, "vulnerability"),
        ({"immunities": ["slashing"]}, 0, "immunity"),
        ({"resistances": ["slashing"], "vulnerabilities": ["slashing"]}, 8, "none"),
    ],
)
def test_damage_type_defenses(defenses, applied, adjustment):
    goblin = make_goblin(hit_points={"current": 30, "max": 30}, **defenses)
    _, entry = _resolver(15, 6).resolve(_state(goblin=goblin), "hero", _longsword())

    damage = entry.targets[0].damage
    assert damage.rolled_total == 8
    assert damage.applied == applied
    assert damage.adjustment == adjustment


def test_temporary_hit_points_absorb_first():
    goblin = make_goblin(hit_points={"current": 7, "max": 7, "temporary": 3})
    new_state, entry = _resolver(15, 3).resolve(_state(goblin=goblin), "hero", _longsword())

    damage = entry.targets[0].damage
    assert damage.applied == 5
    assert damage.absorbed_by_temporary == 3
    hit_points = new_state.get_combatant("goblin-1").hit_points
    assert hit_points.temporary == 0
    assert hit_points.current == 5


def test_bracing_reduces_damage():
    goblin = make_goblin(hit_points={"current": 30, "max": 30}, conditions=[{"name": "bracing"}])
    _, entry = _resolver(15, 6).resolve(_state(goblin=goblin), "hero", _longsword())
    assert entry.targets[0].damage.reduced_by == 3
    assert entry.targets[0].damage.applied == 5


def test_defending_raises_armor_class():
    goblin = make_goblin(conditions=[{"name": "defending"}])
    # 10 + 4 beats 13 but not 15
    _, entry = _resolver(10).resolve(_state(goblin=goblin), "hero", _longsword())
    assert entry.targets[0].attack.target_ac == 15
    assert entry.outcome == "miss"


def test_unknown_target_is_rejected_with_the_original_state():
    state = _state()
    with pytest.raises(InvalidTarget) as exc_info:
        _resolver(15, 5).resolve(state, "hero", _longsword("ghost"))
    assert exc_info.value.state is state
    assert exc_info.value.target_id == "ghost"


# ===== Spells =====


def _breath(**overrides):
    data = dict(
        action_id="spell_cast:fire-breath:goblin-1",
        spell_name="Fire Breath",
        target_ids=["goblin-1"],
        save_dc=13,
        save_ability="dex",
        damage="2d6",
        damage_type="fire",
        condition="prone",
        condition_duration=1,
    )
    data.update(overrides)
    return SpellCast(**data)


def test_failed_save_takes_full_damage_and_the_condition():
    goblin = make_goblin(hit_points={"current": 20, "max": 20})
    new_state, entry = _resolver(5, 3, 3).resolve(_state(goblin=goblin), "hero", _breath())

    outcome = entry.targets[0]
    assert outcome.saving_throw.total == 7
    assert outcome.saving_throw.success is False
    assert outcome.damage.applied == 6
    assert outcome.condition_applied == "prone"
    assert new_state.get_combatant("goblin-1").has_condition("prone")


def test_successful_save_halves_damage_and_avoids_the_condition():
    goblin = make_goblin(hit_points={"current": 20, "max": 20})
    _, entry = _resolver(12, 4, 4).resolve(_state(goblin=goblin), "hero", _breath())

    outcome = entry.targets[0]
    assert outcome.saving_throw.success is True
    assert outcome.damage.rolled_total == 8
    assert outcome.damage.applied == 4
    assert outcome.damage.adjustment == "halved"
    assert outcome.condition_applied is None


def test_condition_immunity_blocks_the_condition():
    goblin = make_goblin(hit_points={"current": 20, "max": 20}, condition_immunities=["prone"])
    new_state, entry = _resolver(5, 3, 3).resolve(_state(goblin=goblin), "hero", _breath())

    assert entry.targets[0].condition_blocked == "prone"
    assert entry.targets[0].condition_applied is None
    assert not new_state.get_combatant("goblin-1").has_condition("prone")


def test_healing_spell_spends_a_slot_and_caps_at_max():
    hero = make_player(hit_points={"current": 5, "max": 20}, spell_slots={1: 2})
    heal = SpellCast(
        action_id="spell_cast:cure-wounds:hero",
        spell_name="Cure Wounds",
        target_ids=["hero"],
        slot_level=1,
        healing="1d8+2",
    )
    new_state, entry = _resolver(6).resolve(_state(hero=hero), "hero", heal)

    assert entry.targets[0].healing == 8
    updated = new_state.get_combatant("hero")
    assert updated.hit_points.current == 13
    assert updated.spell_slots[1] == 1

    topped_up, entry = _resolver(8).resolve(new_state, "hero", heal)
    assert topped_up.get_combatant("hero").hit_points.current == 20
    assert entry.targets[0].healing == 7


def test_casting_without_a_slot_is_illegal():
    hero = make_player(spell_slots={1: 0})
    heal = SpellCast(
        action_id="spell_cast:cure-wounds:hero",
        spell_name="Cure Wounds",
        target_ids=["hero"],
        slot_level=1,
        healing="1d8",
    )
    state = _state(hero=hero)
    with pytest.raises(IllegalAction) as exc_info:
        _resolver(6).resolve(state, "hero", heal)
    assert exc_info.value.state is state


# ===== Skills, defend, flee =====


def _shove():
    return SkillUse(
        action_id="skill_use:shove:goblin-1",
        skill="athletics",
        ability="str",
        target_id="goblin-1",
        contest_ability="dex",
        condition="prone",
        condition_duration=1,
    )


def test_contested_shove_knocks_the_target_prone():
    # hero 15 + 2 vs goblin 5 + 2
    new_state, entry = _resolver(15, 5).resolve(_state(), "hero", _shove())

    assert entry.outcome == "success"
    assert [check.total for check in entry.checks] == [17, 7]
    prone = [c for c in new_state.get_combatant("goblin-1").conditions if c.name == "prone"]
    assert prone and prone[0].duration == 1


def test_contest_ties_go_to_the_defender():
    new_state, entry = _resolver(10, 10).resolve(_state(), "hero", _shove())
    assert entry.outcome == "failure"
    assert not new_state.get_combatant("goblin-1").has_condition("prone")


def test_hide_uses_a_fixed_dc_and_applies_to_self():
    hide = SkillUse(
        action_id="skill_use:hide",
        skill="stealth",
        ability="dex",
        dc=12,
        condition="hidden",
        condition_duration=1,
        applies_to="self",
    )
    new_state, entry = _resolver(11).resolve(_state(), "hero", hide)
    assert entry.outcome == "success"
    assert entry.targets[0].target_id == "hero"
    assert new_state.get_combatant("hero").has_condition("hidden")


def test_defend_modes():
    new_state, entry = _resolver().resolve(_state(), "hero", Defend(action_id="defend:ac", mode="ac"))
    assert entry.outcome == "defending"
    assert new_state.get_combatant("hero").has_condition("defending")

    new_state, entry = _resolver().resolve(
        _state(), "hero", Defend(action_id="defend:brace", mode="damage_reduction")
    )
    assert entry.outcome == "bracing"

    new_state, entry = _resolver().resolve(_state(), "hero", Defend(action_id="defend:dodge", mode="dodge"))
    assert entry.outcome == "dodging"
    assert new_state.get_combatant("hero").has_condition("dodging")


def test_flee_policies():
    flee = Flee(action_id="flee")

    new_state, entry = _resolver(rules=CombatRules(flee_policy="always")).resolve(_state(), "hero", flee)
    assert entry.outcome == "fled"
    assert new_state.get_combatant("hero").has_fled

    # DEX 12: 9 + 1 meets DC 10
    _, entry = _resolver(9, rules=CombatRules(flee_policy="dc", flee_dc=10)).resolve(_state(), "hero", flee)
    assert entry.outcome == "fled"

    # hero 10 + 1 ties goblin 9 + 2; the pursuer wins ties
    new_state, entry = _resolver(10, 9, rules=CombatRules(flee_policy="contested")).resolve(_state(), "hero", flee)
    assert entry.outcome == "failed"
    assert not new_state.get_combatant("hero").has_fled
    assert [check.label for check in entry.checks] == ["flee", "pursuit"]


def test_flee_succeeds_when_nobody_can_pursue():
    goblin = make_goblin(conditions=[{"name": "stunned"}])
    _, entry = _resolver().resolve(_state(goblin=goblin), "hero", Flee(action_id="flee"))
    assert entry.outcome == "fled"
    assert entry.checks == []


# ===== Items =====


def test_potion_heals_and_is_used_up():
    hero = make_player(
        hit_points={"current": 5, "max": 20},
        items=[{"id": "potion", "name": "Potion of Healing", "quantity": 1, "healing": "2d4+2"}],
    )
    new_state, entry = _resolver(2, 3).resolve(
        _state(hero=hero), "hero", UseItem(action_id="use_item:potion", cost="bonus_action", item_id="potion")
    )

    assert entry.outcome == "used"
    assert entry.targets[0].healing == 7
    updated = new_state.get_combatant("hero")
    assert updated.hit_points.current == 12
    assert updated.items == []


def test_antidote_cures_listed_conditions():
    hero = make_player(
        conditions=[{"name": "poisoned"}, {"name": "prone"}],
        items=[{"id": "antidote", "name": "Antidote", "quantity": 2, "cures": ["poisoned"]}],
    )
    new_state, entry = _resolver().resolve(
        _state(hero=hero), "hero", UseItem(action_id="use_item:antidote", cost="bonus_action", item_id="antidote")
    )

    assert entry.targets[0].conditions_removed == ["poisoned"]
    updated = new_state.get_combatant("hero")
    assert [c.name for c in updated.conditions] == ["prone"]
    assert updated.items[0].quantity == 1


def test_missing_item_is_illegal():
    with pytest.raises(IllegalAction):
        _resolver().resolve(_state(), "hero", UseItem(action_id="use_item:potion", item_id="potion"))


# ===== Log =====


def test_log_entries_are_frozen_and_numbered():
    state = _state()
    new_state, first = _resolver(2).resolve(state, "hero", _longsword())
    _, second = _resolver(2).resolve(new_state, "hero", _longsword())

    assert (first.seq, second.seq) == (1, 2)
    assert first.round == 1
    assert first.actor_id == "hero"
    assert first.action_kind == "melee_attack"
    with pytest.raises(ValidationError):
        first.outcome = "hit"


# ===== Help =====


def _party_state():
    hero = make_player()
    squire = make_player(id="squire", name="Squire")
    goblin = make_goblin()
    return CombatState(
        id="c-help",
        phase=CombatPhase.ACTIVE,
        round=1,
        combatants=[hero, squire, goblin],
        turn_order=[hero.id, squire.id, goblin.id],
    )


def test_help_is_spent_on_the_allys_next_attack():
    help_squire = Help(action_id="help:squire", target_id="squire")
    helped, entry = _resolver().resolve(_party_state(), "hero", help_squire)

    assert entry.outcome == "helped"
    assert entry.targets[0].condition_applied == "helped"
    condition = helped.get_combatant("squire").conditions[0]
    assert (condition.name, condition.duration, condition.source) == ("helped", 1, "hero")

    after, entry = _resolver(3, 17, 4).resolve(helped, "squire", _longsword())
    assert entry.targets[0].attack.d20.rolls == [3, 17]
    assert not after.get_combatant("squire").has_condition("helped")

    # second attack rolls a single die
    _, entry = _resolver(3, 17).resolve(after, "squire", _longsword())
    assert entry.targets[0].attack.d20.rolls == [3]


def test_help_is_spent_on_a_check():
    helped, _ = _resolver().resolve(_party_state(), "hero", Help(action_id="help:squire", target_id="squire"))
    after, entry = _resolver(4, 15, 5).resolve(helped, "squire", _shove())

    assert entry.checks[0].d20.rolls == [4, 15]
    assert entry.outcome == "success"
    assert not after.get_combatant("squire").has_condition("helped")


@pytest.mark.parametrize("target_id", ["hero", "goblin-1"])
def test_help_needs_another_ally(target_id):
    state = _party_state()
    with pytest.raises(IllegalAction) as exc_info:
        _resolver().resolve(state, "hero", Help(action_id=f"help:{target_id}", target_id=target_id))
    assert exc_info.value.state is state

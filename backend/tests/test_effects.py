from taleforge.combat import CombatRules, RollMode
from taleforge.combat.effects import (
    attack_bonus_modifier,
    attack_roll_mode,
    can_move,
    check_mode,
    combine_modes,
    damage_reduction,
    effective_ac,
    expire_turn_start_conditions,
    is_incapacitated,
    saving_throw_mode,
    spend_roll_conditions,
    start_of_turn_damage,
    tick_conditions,
)

from combat_fixtures import make_goblin, make_player


def _with(*conditions, **overrides):
    return make_player(conditions=[{"name": name, "duration": duration} for name, duration in conditions], **overrides)


def test_combine_modes_cancels_opposites():
    assert combine_modes([]) == RollMode.NORMAL
    assert combine_modes([RollMode.ADVANTAGE, None]) == RollMode.ADVANTAGE
    assert combine_modes([RollMode.DISADVANTAGE, RollMode.DISADVANTAGE]) == RollMode.DISADVANTAGE
    assert combine_modes([RollMode.ADVANTAGE, RollMode.DISADVANTAGE, RollMode.ADVANTAGE]) == RollMode.NORMAL


def test_attack_mode_from_attacker_and_target():
    goblin = make_goblin()
    assert attack_roll_mode(_with(("poisoned", None)), goblin, is_ranged=False) == RollMode.DISADVANTAGE
    assert attack_roll_mode(make_player(), make_goblin(conditions=[{"name": "stunned"}]), False) == RollMode.ADVANTAGE
    assert attack_roll_mode(
        _with(("poisoned", None)), make_goblin(conditions=[{"name": "stunned"}]), False
    ) == RollMode.NORMAL


def test_prone_target_depends_on_range():
    prone = make_goblin(conditions=[{"name": "prone"}])
    assert attack_roll_mode(make_player(), prone, is_ranged=False) == RollMode.ADVANTAGE
    assert attack_roll_mode(make_player(), prone, is_ranged=True) == RollMode.DISADVANTAGE


def test_disabling_conditions():
    assert is_incapacitated(_with(("stunned", 1)))
    assert not is_incapacitated(_with(("prone", 1)))
    assert not can_move(_with(("grappled", 2)))
    assert can_move(make_player())
    assert not can_move(make_player(speed=0))


def test_restrained_hurts_dex_saves_only():
    restrained = _with(("restrained", None))
    assert saving_throw_mode(restrained, "dex") == RollMode.DISADVANTAGE
    assert saving_throw_mode(restrained, "dexterity") == RollMode.DISADVANTAGE
    assert saving_throw_mode(restrained, "wis") == RollMode.NORMAL


def test_poisoned_checks_have_disadvantage():
    assert check_mode(_with(("poisoned", None))) == RollMode.DISADVANTAGE
    assert check_mode(make_player()) == RollMode.NORMAL


def test_flat_bonuses():
    rules = CombatRules(defend_ac_bonus=2, defend_damage_reduction=3)
    assert effective_ac(_with(("defending", None)), rules) == 16
    assert effective_ac(make_player(), rules) == 14
    assert damage_reduction(_with(("bracing", None)), rules) == 3
    assert damage_reduction(make_player(), rules) == 0
    assert attack_bonus_modifier(_with(("blessed", 3))) == 2


def test_unknown_conditions_have_no_effect():
    odd = _with(("sleepy", None))
    assert attack_roll_mode(odd, make_goblin(), False) == RollMode.NORMAL
    assert not is_incapacitated(odd)


def test_burning_deals_damage_at_turn_start():
    assert start_of_turn_damage(_with(("burning", 2))) == [("burning", "1d4", "fire")]
    assert start_of_turn_damage(make_player()) == []


def test_stances_expire_when_the_next_turn_starts():
    defender = _with(("defending", None), ("prone", 1))
    updated, removed = expire_turn_start_conditions(defender)
    assert removed == ["defending"]
    assert [c.name for c in updated.conditions] == ["prone"]
    assert [c.name for c in defender.conditions] == ["defending", "prone"]


def test_durations_tick_at_end_of_turn():
    combatant = _with(("prone", 1), ("grappled", 2), ("poisoned", None))
    updated, expired = tick_conditions(combatant)

    assert expired == ["prone"]
    assert [(c.name, c.duration) for c in updated.conditions] == [("grappled", 1), ("poisoned", None)]
    assert len(combatant.conditions) == 3


def test_help_is_a_one_shot_advantage():
    helped = _with(("helped", 1), ("blessed", 3))
    assert attack_roll_mode(helped, make_goblin(), is_ranged=False) == RollMode.ADVANTAGE
    assert check_mode(helped) == RollMode.ADVANTAGE

    spent, removed = spend_roll_conditions(helped)
    assert removed == ["helped"]
    assert [c.name for c in spent.conditions] == ["blessed"]
    assert attack_roll_mode(spent, make_goblin(), is_ranged=False) == RollMode.NORMAL

    unchanged, removed = spend_roll_conditions(spent)
    assert removed == []
    assert unchanged is spent

import pytest

from taleforge.combat import CombatEngine, CombatRules
from taleforge.combat.errors import InvalidPhaseTransition
from taleforge.combat.initiative import order_entries, roll_initiative, sync_player
from taleforge.combat.models import CombatPhase, InitiativeEntry

from combat_fixtures import goblin_data, goblin_encounter, make_player, scripted_roller


def _setup_state(player=None, *enemies):
    engine = CombatEngine()
    return engine.start_combat(goblin_encounter(*enemies), player or make_player(), combat_id="c-init")


def _entry(combatant_id, total, dex=10, side="enemy"):
    return InitiativeEntry(
        combatant_id=combatant_id,
        roll=total,
        modifier=0,
        total=total,
        dex_score=dex,
        side=side,
    )


def test_orders_by_total_descending():
    state = _setup_state()
    # hero: 15 + 1, goblin: 5 + 2
    rolled = roll_initiative(state, None, scripted_roller(15, 5), CombatRules())

    assert rolled.phase == CombatPhase.ACTIVE
    assert rolled.round == 1
    assert rolled.active_combatant_index == 0
    assert rolled.turn_order == ["hero", "goblin-1"]
    assert [e.total for e in rolled.initiative] == [16, 7]


def test_equal_totals_go_to_higher_dexterity():
    state = _setup_state()
    # hero (DEX 12): 14 + 1, goblin (DEX 14): 13 + 2
    rolled = roll_initiative(state, None, scripted_roller(14, 13), CombatRules())
    assert rolled.turn_order == ["goblin-1", "hero"]


def test_side_breaks_remaining_ties():
    entries = [_entry("goblin", 12, dex=14), _entry("hero", 12, dex=14, side="player")]
    ordered = order_entries(entries, ("dex", "side"))
    assert [e.combatant_id for e in ordered] == ["hero", "goblin"]


def test_full_ties_keep_listing_order():
    entries = [_entry("a", 12), _entry("b", 12), _entry("c", 12)]
    assert [e.combatant_id for e in order_entries(entries, ("dex", "side"))] == ["a", "b", "c"]


def test_tie_breakers_are_configurable():
    entries = [_entry("goblin", 12, dex=18), _entry("hero", 12, dex=10, side="player")]
    assert [e.combatant_id for e in order_entries(entries, ("side",))] == ["hero", "goblin"]
    assert [e.combatant_id for e in order_entries(entries, ("dex",))] == ["goblin", "hero"]


def test_logs_every_roll():
    state = _setup_state()
    rolled = roll_initiative(state, None, scripted_roller(15, 5), CombatRules())

    entry = rolled.log[-1]
    assert entry.event_type == "initiative"
    assert entry.target_ids == ["hero", "goblin-1"]
    assert {check.combatant_id for check in entry.checks} == {"hero", "goblin-1"}


def test_does_not_touch_the_input_state():
    state = _setup_state()
    before = state.model_dump()
    roll_initiative(state, None, scripted_roller(15, 5), CombatRules())
    assert state.model_dump() == before
    assert state.phase == CombatPhase.SETUP


def test_rejected_once_combat_is_active():
    state = _setup_state()
    rolled = roll_initiative(state, None, scripted_roller(15, 5), CombatRules())

    with pytest.raises(InvalidPhaseTransition) as exc_info:
        roll_initiative(rolled, None, scripted_roller(15, 5), CombatRules())
    assert exc_info.value.state is rolled
    assert exc_info.value.phase == "active"


def test_can_be_rerolled_from_initiative_phase():
    state = _setup_state()
    state.phase = CombatPhase.INITIATIVE
    rolled = roll_initiative(state, None, scripted_roller(2, 18), CombatRules())
    assert rolled.turn_order == ["goblin-1", "hero"]


def test_live_player_sheet_is_synced_but_hit_points_are_kept():
    state = _setup_state(make_player(hit_points={"current": 9, "max": 20}))
    live = make_player(
        hit_points={"current": 20, "max": 20},
        ability_scores={"str": 14, "dex": 18, "con": 12, "int": 10, "wis": 10, "cha": 10},
    )
    # hero: 10 + 4, goblin: 10 + 2
    rolled = roll_initiative(state, live, scripted_roller(10, 10), CombatRules())

    hero = rolled.get_combatant("hero")
    assert hero.ability_scores.score("dex") == 18
    assert hero.hit_points.current == 9
    assert rolled.turn_order == ["hero", "goblin-1"]


def test_sync_keeps_consumables_as_the_combat_tracked_them():
    potion = {"id": "potion", "name": "Potion of Healing", "quantity": 2, "healing": "2d4+2"}
    second_wind = {"name": "Second Wind", "healing": "1d10", "target_side": "ally", "uses_remaining": 1}
    state = _setup_state(make_player(items=[potion], spell_slots={1: 2}, spells=[second_wind]))
    hero = state.get_combatant("hero")
    hero.items[0].quantity = 1
    hero.spell_slots[1] = 0
    hero.spells[0].uses_remaining = 0

    live = make_player(
        armor_class=16,
        items=[potion],
        spell_slots={1: 2},
        spells=[second_wind, {"name": "Bless", "level": 1, "condition": "blessed", "target_side": "ally"}],
    )
    sync_player(state, live)

    hero = state.get_combatant("hero")
    assert hero.armor_class == 16
    assert hero.items[0].quantity == 1
    assert hero.spell_slots == {1: 0}
    assert [(s.name, s.uses_remaining) for s in hero.spells] == [("Second Wind", 0), ("Bless", None)]


def test_dead_combatants_do_not_roll():
    state = _setup_state(None, goblin_data(id="a"), goblin_data(id="b"))
    state.get_combatant("a").hit_points.current = 0
    rolled = roll_initiative(state, None, scripted_roller(15, 5), CombatRules())
    assert rolled.turn_order == ["hero", "b"]

import json

from taleforge.combat import CombatRules, EncounterParser, parse_encounter

from combat_fixtures import goblin_data, goblin_encounter


def _only_enemy(raw):
    parsed = parse_encounter(raw)
    assert len(parsed.enemies) == 1
    return parsed, parsed.enemies[0]


def test_well_formed_encounter_parses_without_warnings():
    parsed = parse_encounter(goblin_encounter())

    assert parsed.warnings == []
    assert parsed.encounter_name == "Ambush on the Road"
    assert parsed.terrain == "forest"
    assert parsed.lighting == "dim"

    goblin = parsed.enemies[0]
    assert goblin.id == "goblin-1"
    assert goblin.hit_points.current == 7
    assert goblin.hit_points.max == 7
    assert goblin.armor_class == 13
    assert goblin.ability_scores.score("dex") == 14
    assert goblin.attacks[0].name == "Scimitar"
    assert goblin.attacks[0].damage == "1d6+2"
    assert goblin.xp_value == 50


def test_json_text_is_accepted():
    parsed = parse_encounter(json.dumps(goblin_encounter()))
    assert parsed.warnings == []
    assert parsed.enemies[0].name == "Goblin"


def test_garbage_input_synthesizes_a_generic_enemy():
    for raw in (None, "not json at all", "[1, 2, 3]", 42):
        parsed = parse_encounter(raw)
        assert parsed.encounter_name == "Hostile Encounter"
        assert len(parsed.enemies) == 1
        assert parsed.enemies[0].name == "Hostile Creature"
        assert parsed.enemies[0].is_alive
        assert parsed.warnings


def test_empty_enemy_list_synthesizes_a_generic_enemy():
    raw = goblin_encounter()
    raw["enemies"] = []
    parsed = parse_encounter(raw)
    assert [e.name for e in parsed.enemies] == ["Hostile Creature"]
    assert any("no enemies" in w for w in parsed.warnings)


def test_non_positive_current_hp_is_reset_to_max():
    parsed, goblin = _only_enemy(goblin_encounter(goblin_data(hp={"current": 0, "max": 9})))
    assert goblin.hit_points.current == 9
    assert goblin.is_alive
    assert any("reset" in w for w in parsed.warnings)


def test_out_of_range_numbers_are_clamped():
    data = goblin_data(
        ac=99,
        challengeRating=-2,
        speed="40 ft.",
        abilityScores={"str": 50, "dex": 0},
        attacks=[{"name": "Bite", "attackBonus": 50, "damage": "1d4", "damageType": "piercing"}],
    )
    parsed, goblin = _only_enemy(goblin_encounter(data))

    assert goblin.armor_class == 30
    assert goblin.challenge_rating == 0
    assert goblin.speed == 40
    assert goblin.ability_scores.score("str") == 30
    assert goblin.ability_scores.score("dex") == 1
    assert goblin.attacks[0].attack_bonus == 20
    assert len(parsed.warnings) >= 4


def test_low_armor_class_is_raised():
    _, goblin = _only_enemy(goblin_encounter(goblin_data(ac=1)))
    assert goblin.armor_class == 5


def test_unreadable_damage_falls_back_to_tier_dice():
    data = goblin_data(attacks=[{"name": "Flail", "attackBonus": 3, "damage": "lots", "damageType": "FIRE"}])
    parsed, goblin = _only_enemy(goblin_encounter(data))
    assert goblin.attacks[0].damage == "1d6"
    assert goblin.attacks[0].damage_type == "fire"
    assert any("dice expression" in w for w in parsed.warnings)


def test_unknown_damage_type_uses_default():
    data = goblin_data(attacks=[{"name": "Zap", "attackBonus": 3, "damage": "1d4", "damageType": "plasma"}])
    parsed, goblin = _only_enemy(goblin_encounter(data))
    assert goblin.attacks[0].damage_type == "bludgeoning"
    assert any("plasma" in w for w in parsed.warnings)


def test_missing_attacks_get_a_basic_strike():
    data = goblin_data()
    del data["attacks"]
    parsed, goblin = _only_enemy(goblin_encounter(data))
    assert [a.name for a in goblin.attacks] == ["Strike"]
    assert any("basic strike" in w for w in parsed.warnings)


def test_enum_fields_are_matched_case_insensitively():
    raw = goblin_encounter(goblin_data(conditionImmunities=["Poisoned", "sleepy"], resistances=["Cold"]))
    raw["lighting"] = "Darkness"
    parsed = parse_encounter(raw)
    goblin = parsed.enemies[0]

    assert parsed.lighting == "darkness"
    assert goblin.condition_immunities == ["poisoned"]
    assert goblin.resistances == ["cold"]
    assert any("sleepy" in w for w in parsed.warnings)


def test_unknown_lighting_defaults_to_dim():
    raw = goblin_encounter()
    raw["lighting"] = "neon"
    parsed = parse_encounter(raw)
    assert parsed.lighting == "dim"
    assert any("neon" in w for w in parsed.warnings)


def test_enemy_ids_are_made_unique():
    parsed = parse_encounter(
        goblin_encounter(goblin_data(id="goblin"), goblin_data(id="goblin"), goblin_data(id=None, name="Goblin Boss"))
    )
    ids = [e.id for e in parsed.enemies]
    assert ids == ["goblin", "goblin-2", "goblin-boss-3"]
    assert len(set(ids)) == len(ids)


def test_enemy_count_is_capped():
    parser = EncounterParser(CombatRules(max_enemies=2))
    parsed = parser.parse(goblin_encounter(*[goblin_data(id=f"g{i}") for i in range(4)]))
    assert [e.id for e in parsed.enemies] == ["g0", "g1"]
    assert any("limit" in w for w in parsed.warnings)


def test_alternate_key_spellings():
    data = {
        "name": "Bandit",
        "cr": "1/8",
        "hitPoints": 11,
        "armorClass": 12,
        "str": 11,
        "dex": 12,
        "savingThrowBonuses": {"DEX": 3},
        "attacks": [{"name": "Light Crossbow", "toHit": 3, "damage": "1d8+1", "damage_type": "piercing", "range": "80/320"}],
    }
    _, bandit = _only_enemy(goblin_encounter(data))

    assert bandit.challenge_rating == 0.125
    assert bandit.hit_points.max == 11
    assert bandit.armor_class == 12
    assert bandit.ability_scores.score("dex") == 12
    assert bandit.saving_throw_proficiencies == ["dex"]
    assert bandit.attacks[0].attack_bonus == 3
    assert bandit.attacks[0].kind == "ranged"
    assert bandit.xp_value == 25


def test_special_ability_with_save_becomes_a_spell():
    data = goblin_data(
        specialAbilities=[
            {"name": "Fire Breath", "saveDC": 13, "saveType": "Dexterity", "damage": "2d6", "damageType": "fire"},
            {"name": "Keen Smell", "description": "Advantage on smell checks"},
        ]
    )
    _, goblin = _only_enemy(goblin_encounter(data))

    assert [a.name for a in goblin.special_abilities] == ["Fire Breath", "Keen Smell"]
    assert len(goblin.spells) == 1
    breath = goblin.spells[0]
    assert breath.save_dc == 13
    assert breath.save_ability == "dex"
    assert breath.damage == "2d6"
    assert breath.damage_type == "fire"


def test_missing_xp_uses_challenge_rating_table():
    data = goblin_data(challengeRating=1)
    del data["xpValue"]
    _, goblin = _only_enemy(goblin_encounter(data))
    assert goblin.xp_value == 200


def test_tactics_are_read():
    data = goblin_data(tactics={"preferredRange": "Ranged", "targetPriority": "Weakest", "fleeThreshold": 40})
    _, goblin = _only_enemy(goblin_encounter(data))
    assert goblin.tactics.preferred_range == "ranged"
    assert goblin.tactics.target_priority == "weakest"
    assert goblin.tactics.flee_threshold == 0.4


def test_infinite_numbers_fall_back_to_defaults():
    raw = '{"enemies": [{"name": "Ogre", "hp": Infinity, "ac": 1e999, "abilityScores": {"dex": "inf", "str": NaN}}]}'
    parsed, ogre = _only_enemy(raw)

    assert ogre.hit_points.max == 11
    assert ogre.hit_points.current == 11
    assert ogre.armor_class == 12
    assert ogre.ability_scores.score("dex") == 10
    assert ogre.ability_scores.score("str") == 10
    assert ogre.is_alive
    assert len(parsed.warnings) >= 4


def test_huge_integers_do_not_break_parsing():
    digits = "9" * 400
    raw = '{"enemies": [{"name": "Titan", "challengeRating": %s, "hp": %s, "xpValue": %s}]}' % (digits, digits, digits)
    parsed, titan = _only_enemy(raw)

    assert titan.challenge_rating == 30
    assert titan.hit_points.max == 8 + 12 * 30
    assert titan.is_alive
    assert any("clamped" in w for w in parsed.warnings)


def test_huge_fractional_challenge_rating_is_clamped():
    data = goblin_data(challengeRating="9" * 400 + "/2", tactics={"fleeThreshold": "inf"})
    parsed, goblin = _only_enemy(goblin_encounter(data))

    assert goblin.challenge_rating == 30
    assert goblin.tactics.flee_threshold == 0.25
    assert any("flee threshold" in w for w in parsed.warnings)

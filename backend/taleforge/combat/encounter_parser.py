"""
Encounter parser

Turns loosely-structured encounter data (as produced by a text generator)
into a validated ``ParsedEncounter``. Parsing never fails: every missing or
out-of-range value is replaced by a typed default or clamped, and each such
degradation is recorded as a warning.
"""
from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Set

from .dice import is_valid_expression
from .effects import KNOWN_CONDITIONS
from .errors import MalformedEncounterInput
from .models.combatant import (
    AbilityScores,
    Attack,
    Condition,
    EnemyCombatant,
    HitPoints,
    Reaction,
    SpecialAbility,
    Spell,
    Tactics,
)
from .models.encounter import ParsedEncounter
from .rules import (
    ABILITY_ALIASES,
    ABILITY_NAMES,
    DAMAGE_TYPES,
    DEFAULT_DAMAGE_TYPE,
    DEFAULT_LIGHTING,
    GENERIC_ENEMY,
    LIGHTING_LEVELS,
    MAX_AC,
    MAX_CHALLENGE_RATING,
    MIN_AC,
    NO_CONDITION,
    CombatRules,
    default_ac_for_cr,
    default_attack_bonus_for_cr,
    default_damage_for_cr,
    default_hp_for_cr,
    parse_challenge_rating,
    xp_for_cr,
)

logger = logging.getLogger(__name__)

_SPEED_PATTERN = re.compile(r"-?\d+")

# Clamp ranges
_ABILITY_RANGE = (1, 30)
_SPEED_RANGE = (0, 120)
_ATTACK_BONUS_RANGE = (-5, 20)
_DEFAULT_CR = 0.25


def slugify(value: str) -> str:
    text = (value or "").strip().lower()
    if not text:
        return ""
    out = []
    for ch in text:
        if ch.isalnum() or ch in ("_", "-"):
            out.append(ch)
        elif ch.isspace() or ch in ("/", "\\", ":", "|", "."):
            out.append("-")
    slug = "".join(out).strip("-")
    while "--" in slug:
        slug = slug.replace("--", "-")
    return slug


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    """First present, non-None value among alternate key spellings."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _ensure_int(value: Any, field: str, errors: List[str]) -> Optional[int]:
    if isinstance(value, bool):
        errors.append(f"{field} must be a number, got {value!r}; default used")
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        errors.append(f"{field} must be a number, got {value!r}; default used")
        return None


def _match_choice(value: Any, choices: Iterable[str]) -> Optional[str]:
    """Case-insensitive enum match; spaces and underscores read as hyphens."""
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    normalized = text.replace("_", "-").replace(" ", "-")
    for choice in choices:
        if text == choice or normalized == choice:
            return choice
    return None


class EncounterParser:
    """Validator for generated encounters"""

    def __init__(self, rules: Optional[CombatRules] = None):
        self.rules = rules or CombatRules()

    # ============================================
    # Entry point
    # ============================================

    def parse(self, raw: Any) -> ParsedEncounter:
        """
        Parse raw encounter data

        Args:
            raw: dict, JSON text, or anything else

        Returns:
            ParsedEncounter: always valid, with ``warnings`` describing
            every default or clamp that was applied
        """
        warnings: List[str] = []
        try:
            payload = self._coerce_payload(raw)
        except MalformedEncounterInput as exc:
            self._warn(warnings, exc.message)
            payload = {}

        enemies = self._parse_enemies(payload, warnings)

        name = _pick(payload, "encounterName", "encounter_name", "name")
        if not isinstance(name, str) or not name.strip():
            self._warn(warnings, "encounter name missing; using 'Hostile Encounter'")
            name = "Hostile Encounter"

        lighting_raw = _pick(payload, "lighting")
        lighting = _match_choice(lighting_raw, LIGHTING_LEVELS)
        if lighting is None:
            if lighting_raw is not None:
                self._warn(warnings, f"unknown lighting {lighting_raw!r}; using '{DEFAULT_LIGHTING}'")
            lighting = DEFAULT_LIGHTING

        description = _pick(payload, "description")
        terrain = _pick(payload, "terrain")
        effects = _pick(payload, "environmentalEffects", "environmental_effects")

        parsed = ParsedEncounter(
            encounter_name=name.strip(),
            description=description if isinstance(description, str) else "",
            terrain=terrain if isinstance(terrain, str) else "",
            lighting=lighting,
            environmental_effects=self._string_list(effects, "environmental effects", warnings),
            enemies=enemies,
            warnings=warnings,
        )
        logger.info(
            "parsed encounter '%s': %d enemies, %d warnings",
            parsed.encounter_name,
            len(parsed.enemies),
            len(warnings),
        )
        return parsed

    # ============================================
    # Payload / enemy list
    # ============================================

    def _coerce_payload(self, raw: Any) -> Dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                decoded = json.loads(raw)
            except (TypeError, ValueError) as exc:
                raise MalformedEncounterInput(f"encounter is not valid JSON: {exc}") from exc
            if isinstance(decoded, dict):
                return decoded
            raise MalformedEncounterInput("encounter JSON is not an object")
        raise MalformedEncounterInput(f"encounter must be an object, got {type(raw).__name__}")

    def _parse_enemies(self, payload: Dict[str, Any], warnings: List[str]) -> List[EnemyCombatant]:
        raw_enemies = payload.get("enemies")
        if not isinstance(raw_enemies, list) or not raw_enemies:
            self._warn(warnings, "encounter has no enemies; synthesizing a generic enemy")
            raw_enemies = [dict(GENERIC_ENEMY)]

        if len(raw_enemies) > self.rules.max_enemies:
            self._warn(
                warnings,
                f"{len(raw_enemies)} enemies exceed the limit of {self.rules.max_enemies}; extra enemies dropped",
            )
            raw_enemies = raw_enemies[: self.rules.max_enemies]

        used_ids: Set[str] = set()
        enemies: List[EnemyCombatant] = []
        for index, raw_enemy in enumerate(raw_enemies, start=1):
            if not isinstance(raw_enemy, dict):
                self._warn(warnings, f"enemy #{index} is not an object; skipped")
                continue
            enemies.append(self._parse_enemy(raw_enemy, index, used_ids, warnings))

        if not enemies:
            self._warn(warnings, "no usable enemies; synthesizing a generic enemy")
            enemies.append(self._parse_enemy(dict(GENERIC_ENEMY), 1, used_ids, warnings))
        return enemies

    # ============================================
    # Single enemy
    # ============================================

    def _parse_enemy(
        self,
        raw: Dict[str, Any],
        index: int,
        used_ids: Set[str],
        warnings: List[str],
    ) -> EnemyCombatant:
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            self._warn(warnings, f"enemy #{index} has no name; using 'Unknown Creature'")
            name = "Unknown Creature"
        name = name.strip()
        label = f"{name} (#{index})"
        errors: List[str] = []

        enemy_id = self._unique_id(raw.get("id"), name, index, used_ids, label, warnings)
        challenge_rating = self._challenge_rating(raw, label, warnings)

        creature_type = raw.get("type") or raw.get("creatureType")
        creature_type = creature_type.strip().lower() if isinstance(creature_type, str) and creature_type.strip() else "beast"

        ability_scores = self._ability_scores(raw, label, errors)

        enemy = EnemyCombatant(
            id=enemy_id,
            name=name,
            hit_points=self._hit_points(raw, challenge_rating, label, errors, warnings),
            armor_class=self._armor_class(raw, challenge_rating, label, errors, warnings),
            speed=self._speed(raw, label, errors, warnings),
            level=max(1, int(challenge_rating)),
            ability_scores=ability_scores,
            saving_throw_proficiencies=self._saving_throws(raw),
            attacks=self._attacks(raw, challenge_rating, label, errors, warnings),
            spells=self._special_ability_spells(raw, challenge_rating, label, errors, warnings),
            conditions=[
                Condition(name=condition, source="encounter")
                for condition in self._conditions(raw.get("conditions"), label, warnings)
            ],
            resistances=self._damage_types(raw.get("resistances"), f"{label} resistances", warnings),
            immunities=self._damage_types(raw.get("immunities"), f"{label} immunities", warnings),
            vulnerabilities=self._damage_types(raw.get("vulnerabilities"), f"{label} vulnerabilities", warnings),
            condition_immunities=self._conditions(
                _pick(raw, "conditionImmunities", "condition_immunities"), label, warnings
            ),
            creature_type=creature_type,
            challenge_rating=challenge_rating,
            xp_value=self._xp_value(raw, challenge_rating, label, errors),
            tactics=self._tactics(raw.get("tactics"), label, warnings),
            special_abilities=self._special_abilities(raw),
            reactions=self._reactions(raw),
            description=raw.get("description") if isinstance(raw.get("description"), str) else "",
        )

        for error in errors:
            self._warn(warnings, f"{label}: {error}")
        return enemy

    def _unique_id(
        self,
        raw_id: Any,
        name: str,
        index: int,
        used_ids: Set[str],
        label: str,
        warnings: List[str],
    ) -> str:
        candidate = str(raw_id).strip() if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) else ""
        if candidate and candidate not in used_ids:
            used_ids.add(candidate)
            return candidate

        if candidate:
            self._warn(warnings, f"{label}: duplicate id '{candidate}'; generated a new one")
        base = slugify(name) or "enemy"
        generated = f"{base}-{index}"
        suffix = index
        while generated in used_ids:
            suffix += 1
            generated = f"{base}-{suffix}"
        used_ids.add(generated)
        return generated

    def _challenge_rating(self, raw: Dict[str, Any], label: str, warnings: List[str]) -> float:
        value = _pick(raw, "challengeRating", "challenge_rating", "cr")
        challenge_rating = parse_challenge_rating(value)
        if challenge_rating is None:
            if value is not None:
                self._warn(warnings, f"{label}: unreadable challenge rating {value!r}; using {_DEFAULT_CR}")
            challenge_rating = _DEFAULT_CR
        if challenge_rating < 0 or challenge_rating > MAX_CHALLENGE_RATING:
            clamped = max(0.0, min(MAX_CHALLENGE_RATING, challenge_rating))
            self._warn(warnings, f"{label}: challenge rating {challenge_rating} clamped to {clamped}")
            challenge_rating = clamped
        return challenge_rating

    def _hit_points(
        self,
        raw: Dict[str, Any],
        challenge_rating: float,
        label: str,
        errors: List[str],
        warnings: List[str],
    ) -> HitPoints:
        default = default_hp_for_cr(challenge_rating)
        value = _pick(raw, "hp", "hitPoints", "hit_points")
        current: Optional[int] = None
        maximum: Optional[int] = None

        if isinstance(value, dict):
            if value.get("max") is not None:
                maximum = _ensure_int(value.get("max"), "hp.max", errors)
            if value.get("current") is not None:
                current = _ensure_int(value.get("current"), "hp.current", errors)
        elif value is not None:
            maximum = _ensure_int(value, "hp", errors)

        if maximum is None:
            maximum = current if current is not None and current > 0 else default
        if maximum < 1:
            self._warn(warnings, f"{label}: max hp {maximum} raised to 1")
            maximum = 1
        if current is None:
            current = maximum
        elif current <= 0:
            self._warn(warnings, f"{label}: current hp {current} reset to {maximum}")
            current = maximum
        elif current > maximum:
            current = maximum
        return HitPoints(current=current, max=maximum)

    def _armor_class(
        self,
        raw: Dict[str, Any],
        challenge_rating: float,
        label: str,
        errors: List[str],
        warnings: List[str],
    ) -> int:
        value = _pick(raw, "ac", "armorClass", "armor_class")
        armor_class = _ensure_int(value, "ac", errors) if value is not None else None
        if armor_class is None:
            return default_ac_for_cr(challenge_rating)
        clamped = _clamp(armor_class, MIN_AC, MAX_AC)
        if clamped != armor_class:
            self._warn(warnings, f"{label}: ac {armor_class} clamped to {clamped}")
        return clamped

    def _speed(self, raw: Dict[str, Any], label: str, errors: List[str], warnings: List[str]) -> int:
        value = raw.get("speed")
        if value is None:
            return 30
        if isinstance(value, str):
            match = _SPEED_PATTERN.search(value)
            if not match:
                errors.append(f"speed {value!r} is not a distance; using 30")
                return 30
            speed = int(match.group(0))
        else:
            speed = _ensure_int(value, "speed", errors)
            if speed is None:
                return 30
        clamped = _clamp(speed, *_SPEED_RANGE)
        if clamped != speed:
            self._warn(warnings, f"{label}: speed {speed} clamped to {clamped}")
        return clamped

    def _ability_scores(self, raw: Dict[str, Any], label: str, errors: List[str]) -> AbilityScores:
        source = raw.get("abilityScores") or raw.get("ability_scores")
        if not isinstance(source, dict):
            source = raw

        values: Dict[str, int] = {}
        for key, value in source.items():
            if not isinstance(key, str):
                continue
            ability = ABILITY_ALIASES.get(key.lower(), key.lower())
            if ability not in ABILITY_NAMES:
                continue
            if isinstance(value, dict):
                value = value.get("score", value.get("base"))
            score = _ensure_int(value, ability, errors)
            if score is None:
                continue
            clamped = _clamp(score, *_ABILITY_RANGE)
            if clamped != score:
                errors.append(f"{ability} {score} clamped to {clamped}")
            values[ability] = clamped
        return AbilityScores.from_values(values)

    def _saving_throws(self, raw: Dict[str, Any]) -> List[str]:
        value = _pick(raw, "savingThrows", "saving_throws", "savingThrowBonuses", "saving_throw_bonuses")
        if isinstance(value, dict):
            keys: Iterable[Any] = value.keys()
        elif isinstance(value, list):
            keys = value
        else:
            return []
        proficient = []
        for key in keys:
            if not isinstance(key, str):
                continue
            ability = ABILITY_ALIASES.get(key.lower(), key.lower())
            if ability in ABILITY_NAMES and ability not in proficient:
                proficient.append(ability)
        return proficient

    def _damage_expression(
        self,
        value: Any,
        challenge_rating: float,
        field: str,
        errors: List[str],
    ) -> str:
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str) and is_valid_expression(value):
            return value.strip().lower().replace(" ", "")
        errors.append(f"{field} {value!r} is not a dice expression; using tier damage")
        return default_damage_for_cr(challenge_rating)

    def _damage_type(self, value: Any, field: str, warnings: List[str]) -> str:
        matched = _match_choice(value, DAMAGE_TYPES)
        if matched:
            return matched
        if value is not None:
            self._warn(warnings, f"{field}: unknown damage type {value!r}; using '{DEFAULT_DAMAGE_TYPE}'")
        return DEFAULT_DAMAGE_TYPE

    def _attacks(
        self,
        raw: Dict[str, Any],
        challenge_rating: float,
        label: str,
        errors: List[str],
        warnings: List[str],
    ) -> List[Attack]:
        raw_attacks = raw.get("attacks")
        attacks: List[Attack] = []
        if isinstance(raw_attacks, list):
            for position, entry in enumerate(raw_attacks, start=1):
                if not isinstance(entry, dict):
                    self._warn(warnings, f"{label}: attack #{position} is not an object; skipped")
                    continue
                attacks.append(self._attack(entry, position, challenge_rating, label, errors, warnings))

        if not attacks:
            self._warn(warnings, f"{label}: no usable attacks; added a basic strike")
            attacks.append(
                Attack(
                    name="Strike",
                    attack_bonus=default_attack_bonus_for_cr(challenge_rating),
                    damage=default_damage_for_cr(challenge_rating),
                    damage_type=DEFAULT_DAMAGE_TYPE,
                )
            )
        return attacks

    def _attack(
        self,
        entry: Dict[str, Any],
        position: int,
        challenge_rating: float,
        label: str,
        errors: List[str],
        warnings: List[str],
    ) -> Attack:
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            name = f"Attack {position}"
        name = name.strip()

        bonus_value = _pick(entry, "attackBonus", "toHit", "to_hit", "attack_bonus")
        attack_bonus = _ensure_int(bonus_value, f"{name} attack bonus", errors) if bonus_value is not None else None
        if attack_bonus is None:
            attack_bonus = default_attack_bonus_for_cr(challenge_rating)
        clamped = _clamp(attack_bonus, *_ATTACK_BONUS_RANGE)
        if clamped != attack_bonus:
            self._warn(warnings, f"{label}: {name} attack bonus {attack_bonus} clamped to {clamped}")

        description = entry.get("description") if isinstance(entry.get("description"), str) else ""
        kind_hint = str(entry.get("kind") or entry.get("type") or "").lower()
        is_ranged = (
            kind_hint == "ranged"
            or entry.get("range") is not None
            or "ranged" in description.lower()
        )

        return Attack(
            name=name,
            kind="ranged" if is_ranged else "melee",
            attack_bonus=clamped,
            damage=self._damage_expression(entry.get("damage"), challenge_rating, f"{name} damage", errors),
            damage_type=self._damage_type(
                _pick(entry, "damageType", "damage_type"), f"{label} {name}", warnings
            ),
            description=description,
        )

    def _special_abilities(self, raw: Dict[str, Any]) -> List[SpecialAbility]:
        entries = _pick(raw, "specialAbilities", "special_abilities")
        if not isinstance(entries, list):
            return []
        abilities = []
        for entry in entries:
            if isinstance(entry, str) and entry.strip():
                abilities.append(SpecialAbility(name=entry.strip()))
            elif isinstance(entry, dict) and isinstance(entry.get("name"), str):
                uses = entry.get("usesPerDay", entry.get("uses_per_day", -1))
                abilities.append(
                    SpecialAbility(
                        name=entry["name"],
                        description=str(entry.get("description") or ""),
                        uses_per_day=uses if isinstance(uses, int) and not isinstance(uses, bool) else -1,
                    )
                )
        return abilities

    def _special_ability_spells(
        self,
        raw: Dict[str, Any],
        challenge_rating: float,
        label: str,
        errors: List[str],
        warnings: List[str],
    ) -> List[Spell]:
        """Special abilities with a save DC or damage become castable spells."""
        entries = _pick(raw, "specialAbilities", "special_abilities")
        if not isinstance(entries, list):
            return []

        spells = []
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                continue
            save_value = _pick(entry, "saveDC", "saveDc", "save_dc")
            damage_value = entry.get("damage")
            if save_value is None and damage_value is None:
                continue

            name = entry["name"].strip()
            save_dc = _ensure_int(save_value, f"{name} save DC", errors) if save_value is not None else None
            save_ability = _pick(entry, "saveType", "saveAbility", "save_ability")
            if isinstance(save_ability, str):
                save_ability = ABILITY_ALIASES.get(save_ability.lower(), save_ability.lower())
            if save_ability not in ABILITY_NAMES:
                save_ability = "dex"

            condition = None
            condition_value = entry.get("condition")
            if condition_value is not None:
                matched = self._conditions([condition_value], label, warnings)
                condition = matched[0] if matched else None

            uses = entry.get("usesPerDay", entry.get("uses_per_day", -1))
            spells.append(
                Spell(
                    name=name,
                    save_dc=save_dc,
                    save_ability=save_ability if save_dc is not None else None,
                    attack_bonus=(
                        default_attack_bonus_for_cr(challenge_rating) if save_dc is None else None
                    ),
                    damage=(
                        self._damage_expression(damage_value, challenge_rating, f"{name} damage", errors)
                        if damage_value is not None
                        else None
                    ),
                    damage_type=self._damage_type(
                        _pick(entry, "damageType", "damage_type"), f"{label} {name}", warnings
                    ),
                    condition=condition,
                    area=bool(entry.get("area", False)),
                    uses_remaining=uses if isinstance(uses, int) and not isinstance(uses, bool) and uses > 0 else None,
                    description=str(entry.get("description") or ""),
                )
            )
        return spells

    def _reactions(self, raw: Dict[str, Any]) -> List[Reaction]:
        entries = raw.get("reactions")
        if not isinstance(entries, list):
            return []
        return [
            Reaction(
                name=entry["name"],
                trigger=str(entry.get("trigger") or ""),
                effect=str(entry.get("effect") or ""),
            )
            for entry in entries
            if isinstance(entry, dict) and isinstance(entry.get("name"), str)
        ]

    def _tactics(self, value: Any, label: str, warnings: List[str]) -> Tactics:
        if not isinstance(value, dict):
            return Tactics()
        preferred_range = _match_choice(_pick(value, "preferredRange", "preferred_range"), ("melee", "ranged", "mixed"))
        priority = _pick(value, "targetPriority", "target_priority")
        threshold = _pick(value, "fleeThreshold", "flee_threshold")
        flee_threshold = 0.25
        if threshold is not None:
            try:
                flee_threshold = float(threshold)
            except (TypeError, ValueError, OverflowError):
                self._warn(warnings, f"{label}: flee threshold {threshold!r} is not a number")
            if not math.isfinite(flee_threshold):
                self._warn(warnings, f"{label}: flee threshold {threshold!r} is not a number")
                flee_threshold = 0.25
            if flee_threshold > 1:
                # Percentages
                flee_threshold = flee_threshold / 100
            flee_threshold = max(0.0, min(1.0, flee_threshold))
        behaviour = _pick(value, "specialBehavior", "special_behavior")
        return Tactics(
            preferred_range=preferred_range or "melee",
            target_priority=priority.strip().lower() if isinstance(priority, str) and priority.strip() else "random",
            flee_threshold=flee_threshold,
            special_behavior=behaviour if isinstance(behaviour, str) else "",
        )

    def _xp_value(self, raw: Dict[str, Any], challenge_rating: float, label: str, errors: List[str]) -> int:
        value = _pick(raw, "xpValue", "xp_value", "xp")
        xp = _ensure_int(value, "xp", errors) if value is not None else None
        if xp is None or xp < 0:
            return xp_for_cr(challenge_rating)
        return xp

    # ============================================
    # Lists / enums
    # ============================================

    def _damage_types(self, value: Any, field: str, warnings: List[str]) -> List[str]:
        result: List[str] = []
        for entry in self._string_list(value, field, warnings):
            matched = _match_choice(entry, DAMAGE_TYPES)
            if matched is None:
                self._warn(warnings, f"{field}: unknown damage type {entry!r} dropped")
            elif matched not in result:
                result.append(matched)
        return result

    def _conditions(self, value: Any, label: str, warnings: List[str]) -> List[str]:
        result: List[str] = []
        for entry in self._string_list(value, f"{label} conditions", warnings):
            matched = _match_choice(entry, KNOWN_CONDITIONS) or NO_CONDITION
            if matched == NO_CONDITION:
                self._warn(warnings, f"{label}: unknown condition {entry!r} dropped")
            elif matched not in result:
                result.append(matched)
        return result

    def _string_list(self, value: Any, field: str, warnings: List[str]) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            self._warn(warnings, f"{field} is not a list; ignored")
            return []
        return [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]

    @staticmethod
    def _warn(warnings: List[str], message: str) -> None:
        warnings.append(message)
        logger.warning("encounter input degraded: %s", message)


def parse_encounter(raw: Any, rules: Optional[CombatRules] = None) -> ParsedEncounter:
    """Parse with a throwaway ``EncounterParser``."""
    return EncounterParser(rules).parse(raw)

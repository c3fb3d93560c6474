"""
Encounter Service - generated encounters into running combats

The text generator is an external collaborator: anything with an async
``generate_encounter(prompt)`` returning JSON text or a dict will do.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Tuple

from taleforge.combat import CombatEngine
from taleforge.combat.models import CombatState, ParsedEncounter, PlayerCombatant
from taleforge.combat.rules import encounter_difficulty

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class EncounterGenerator(Protocol):
    async def generate_encounter(self, prompt: str) -> Any: ...


@dataclass
class EncounterRequest:
    """What the encounter should look like"""

    terrain: str = "plains"
    time_of_day: str = "afternoon"
    difficulty: str = "medium"  # easy / medium / hard / deadly
    world_name: str = ""
    genre: str = "fantasy"
    context: str = ""


def build_encounter_prompt(request: EncounterRequest, player: PlayerCombatant) -> str:
    """
    Build the generation prompt

    Returns:
        str: instructions plus the JSON shape the parser understands
    """
    lines = [
        "Generate a combat encounter for this RPG. Return ONLY valid JSON.",
        "",
        f"WORLD: {request.world_name or 'unnamed'} ({request.genre})",
        f"TERRAIN: {request.terrain}",
        f"TIME: {request.time_of_day}",
        f"DIFFICULTY: {request.difficulty}",
        f"PLAYER: Level {player.level} {player.name}",
    ]
    if request.context:
        lines.append(f"CONTEXT: {request.context}")
    lines.extend(
        [
            "",
            "Generate 1-4 enemies appropriate to the terrain, difficulty, and genre.",
            "",
            "JSON schema:",
            '{"encounterName": string, "description": string, "terrain": string,',
            ' "environmentalEffects": [string], "lighting": "bright|dim|darkness",',
            ' "enemies": [{"id": string, "name": string, "type": string,',
            '   "challengeRating": number, "hp": {"current": number, "max": number},',
            '   "ac": number, "speed": number,',
            '   "abilityScores": {"str": n, "dex": n, "con": n, "int": n, "wis": n, "cha": n},',
            '   "attacks": [{"name": string, "attackBonus": number, "damage": "1d6+2", "damageType": string}],',
            '   "specialAbilities": [{"name": string, "description": string, "usesPerDay": -1,',
            '                         "saveDC": number, "saveType": string, "damage": string}],',
            '   "tactics": {"preferredRange": "melee|ranged|mixed",',
            '               "targetPriority": "weakest|wounded|strongest|spellcaster|random",',
            '               "fleeThreshold": 0.25},',
            '   "resistances": [], "immunities": [], "vulnerabilities": [],',
            '   "conditionImmunities": [], "savingThrows": [], "xpValue": number,',
            '   "description": string}]}',
        ]
    )
    return "\n".join(lines)


def _strip_code_fence(reply: Any) -> Any:
    if isinstance(reply, str):
        return _CODE_FENCE.sub("", reply.strip())
    return reply


class EncounterService:
    """Generate, parse and start an encounter"""

    def __init__(self, generator: EncounterGenerator, engine: CombatEngine):
        self.generator = generator
        self.engine = engine

    async def generate(self, request: EncounterRequest, player: PlayerCombatant) -> ParsedEncounter:
        """
        Ask the generator for an encounter and parse the reply

        A failing generator degrades to the synthesized fallback encounter.
        """
        prompt = build_encounter_prompt(request, player)
        try:
            reply = await self.generator.generate_encounter(prompt)
        except Exception as exc:
            logger.warning("encounter generation failed, using fallback: %s", exc)
            parsed = self.engine.parser.parse(None)
            parsed.warnings.insert(0, f"encounter generation failed: {exc}")
            return parsed
        return self.engine.parser.parse(_strip_code_fence(reply))

    async def start(
        self,
        request: EncounterRequest,
        player: PlayerCombatant,
        companions: Optional[List[PlayerCombatant]] = None,
    ) -> Tuple[CombatState, List[str]]:
        """
        Generate an encounter and return the combat with initiative rolled

        Returns:
            (state in ``active`` phase, parser warnings)
        """
        parsed = await self.generate(request, player)
        party_size = 1 + len(companions or [])
        rating = encounter_difficulty(parsed.total_challenge_rating(), player.level, party_size)
        logger.info(
            "encounter '%s' rated %s (requested %s)",
            parsed.encounter_name,
            rating,
            request.difficulty,
        )
        state = self.engine.start_combat(parsed, player, companions=companions)
        state = self.engine.roll_initiative(state, player)
        return state, list(parsed.warnings)

"""
Dice system

Standard tabletop dice notation parsing and rolling. Every roll goes through a
single injectable random source so an encounter replays identically under a
fixed seed.
"""
import logging
import math
import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

from .errors import InvalidDiceExpression

logger = logging.getLogger(__name__)

_DICE_PATTERN = re.compile(r"^(\d*)d(\d+)([+-]\d+)?$")
_FLAT_PATTERN = re.compile(r"^[+-]?\d+$")


class RandomSource(Protocol):
    """Anything that can hand out integers and floats; ``random.Random`` fits."""

    def randint(self, a: int, b: int) -> int: ...

    def random(self) -> float: ...


class RollMode(str, Enum):
    """How a d20 is rolled"""

    NORMAL = "normal"
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"


@dataclass(frozen=True)
class DiceExpression:
    """Parsed ``NdS+M`` expression"""

    count: int
    sides: int
    modifier: int = 0

    def __str__(self) -> str:
        if self.count == 0:
            return str(self.modifier)
        text = f"{self.count}d{self.sides}"
        if self.modifier > 0:
            text += f"+{self.modifier}"
        elif self.modifier < 0:
            text += str(self.modifier)
        return text


@dataclass
class DiceResult:
    """Outcome of an expression roll, kept per die for display"""

    expression: str
    rolls: List[int] = field(default_factory=list)
    modifier: int = 0
    total: int = 0
    critical: bool = False


@dataclass
class D20Roll:
    """One or two d20s and the die that counts"""

    rolls: List[int]
    natural: int
    mode: RollMode = RollMode.NORMAL


@dataclass
class CheckResult:
    """d20 check (ability check, saving throw, contest side)"""

    d20: D20Roll
    modifier: int
    total: int
    dc: Optional[int] = None
    success: Optional[bool] = None


def parse_expression(expression: str) -> DiceExpression:
    """
    Parse dice notation

    Args:
        expression: e.g. "1d20", "2d6+3", "d8-1", "5"

    Returns:
        DiceExpression: count / sides / modifier

    Raises:
        InvalidDiceExpression: when the text is not dice notation
    """
    if isinstance(expression, bool) or not isinstance(expression, (str, int)):
        raise InvalidDiceExpression(expression)
    text = str(expression).lower().replace(" ", "")
    if not text:
        raise InvalidDiceExpression(expression)

    if _FLAT_PATTERN.match(text):
        return DiceExpression(count=0, sides=0, modifier=int(text))

    match = _DICE_PATTERN.match(text)
    if not match:
        raise InvalidDiceExpression(expression)

    count = int(match.group(1)) if match.group(1) else 1
    sides = int(match.group(2))
    modifier = int(match.group(3)) if match.group(3) else 0
    if count < 1 or sides < 1:
        raise InvalidDiceExpression(expression)
    return DiceExpression(count=count, sides=sides, modifier=modifier)


def is_valid_expression(expression: str) -> bool:
    try:
        parse_expression(expression)
    except InvalidDiceExpression:
        return False
    return True


def ability_modifier(score: int) -> int:
    """floor((score - 10) / 2)"""
    return (score - 10) // 2


def proficiency_bonus(level: int) -> int:
    """Proficiency bonus by character level (+2 at 1-4 up to +6 at 17-20)."""
    level = max(1, min(20, level))
    return math.ceil(level / 4) + 1


def proficiency_bonus_for_cr(challenge_rating: float) -> int:
    """Proficiency bonus by challenge rating (+2 up to +9 at CR 29-30)."""
    return max(2, (math.ceil(challenge_rating) + 7) // 4)


class DiceRoller:
    """Dice roller bound to one random source"""

    def __init__(self, rng: Optional[RandomSource] = None, seed: Optional[int] = None):
        """
        Args:
            rng: random source; defaults to a fresh ``random.Random``
            seed: seed for the default source, ignored when ``rng`` is given
        """
        self.rng: RandomSource = rng if rng is not None else random.Random(seed)

    def roll_die(self, sides: int) -> int:
        """
        Roll a single die

        Args:
            sides: number of faces (20 for a d20)

        Returns:
            int: result in [1, sides]
        """
        if sides < 1:
            raise InvalidDiceExpression(f"d{sides}")
        return self.rng.randint(1, sides)

    def roll_dice(self, count: int, sides: int) -> List[int]:
        return [self.roll_die(sides) for _ in range(count)]

    def roll_expression(self, expression: str, critical: bool = False) -> DiceResult:
        """
        Roll an expression

        Args:
            expression: dice notation such as "2d6+3"
            critical: double the number of dice (not the flat modifier)

        Returns:
            DiceResult: total plus per-die breakdown

        Examples:
            >>> DiceRoller(seed=7).roll_expression("1d1+2").total
            3
        """
        parsed = parse_expression(expression)
        count = parsed.count * 2 if critical else parsed.count
        rolls = self.roll_dice(count, parsed.sides) if count else []
        total = sum(rolls) + parsed.modifier
        logger.debug("roll %s%s -> %s = %d", expression, " (crit)" if critical else "", rolls, total)
        return DiceResult(
            expression=str(parsed),
            rolls=rolls,
            modifier=parsed.modifier,
            total=total,
            critical=critical,
        )

    def roll_with_advantage(self) -> D20Roll:
        """Two d20s, keep the higher"""
        rolls = [self.roll_die(20), self.roll_die(20)]
        return D20Roll(rolls=rolls, natural=max(rolls), mode=RollMode.ADVANTAGE)

    def roll_with_disadvantage(self) -> D20Roll:
        """Two d20s, keep the lower"""
        rolls = [self.roll_die(20), self.roll_die(20)]
        return D20Roll(rolls=rolls, natural=min(rolls), mode=RollMode.DISADVANTAGE)

    def roll_d20(self, mode: RollMode = RollMode.NORMAL) -> D20Roll:
        if mode == RollMode.ADVANTAGE:
            return self.roll_with_advantage()
        if mode == RollMode.DISADVANTAGE:
            return self.roll_with_disadvantage()
        natural = self.roll_die(20)
        return D20Roll(rolls=[natural], natural=natural, mode=RollMode.NORMAL)

    def roll_check(
        self,
        modifier: int,
        mode: RollMode = RollMode.NORMAL,
        dc: Optional[int] = None,
    ) -> CheckResult:
        """
        d20 + modifier, optionally against a DC

        Args:
            modifier: total flat modifier
            mode: advantage state
            dc: difficulty class; success is total >= dc

        Returns:
            CheckResult: the roll and, when a DC is given, its success
        """
        d20 = self.roll_d20(mode)
        total = d20.natural + modifier
        success = None if dc is None else total >= dc
        return CheckResult(d20=d20, modifier=modifier, total=total, dc=dc, success=success)

    def roll_between(self, low: int, high: int) -> int:
        if high <= low:
            return low
        return self.rng.randint(low, high)

    def chance(self, probability: float) -> bool:
        """True with the given probability"""
        if probability <= 0:
            return False
        if probability >= 1:
            return True
        return self.rng.random() < probability

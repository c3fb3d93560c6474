"""
Configuration management
"""
import os
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables
load_dotenv()


def _optional_int(raw: Optional[str]) -> Optional[int]:
    if raw is None or not raw.strip():
        return None
    return int(raw)


def _flag(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Application settings"""

    # Combat rules
    combat_rng_seed: Optional[int] = _optional_int(os.getenv("COMBAT_RNG_SEED"))
    flee_policy: Literal["contested", "dc", "always"] = os.getenv(
        "COMBAT_FLEE_POLICY", "contested"
    )
    flee_dc: int = int(os.getenv("COMBAT_FLEE_DC", "10"))
    defend_ac_bonus: int = int(os.getenv("COMBAT_DEFEND_AC_BONUS", "2"))
    defend_damage_reduction: int = int(os.getenv("COMBAT_DEFEND_DAMAGE_REDUCTION", "3"))
    # Ordered tie breakers after the initiative total; original order is always last
    initiative_tie_breakers: str = os.getenv("COMBAT_INITIATIVE_TIE_BREAKERS", "dex,side")
    max_enemies: int = int(os.getenv("COMBAT_MAX_ENEMIES", "8"))

    # HTTP layer
    auto_enemy_turns: bool = _flag(os.getenv("COMBAT_AUTO_ENEMY_TURNS", "true"))
    api_prefix: str = "/api"
    cors_origins: List[str] = ["*"]

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def tie_breakers(self) -> List[str]:
        return [
            item.strip().lower()
            for item in self.initiative_tie_breakers.split(",")
            if item.strip()
        ]


# Global settings instance
settings = Settings()


def validate_config() -> bool:
    """
    Validate the configuration

    Returns:
        bool: whether the configuration is usable
    """
    if settings.flee_dc < 1:
        return False
    unknown = [item for item in settings.tie_breakers() if item not in ("dex", "side")]
    if unknown:
        return False
    return True

import logging
import os

logger = logging.getLogger(__name__)


def _parse_int(env_var: str, default: int, *, minimum: int = 0) -> int:
    """Read an integer setting, falling back to ``default`` on bad input."""
    raw_value = os.getenv(env_var)
    if raw_value is None or not raw_value.strip():
        return default

    try:
        value = int(raw_value)
    except ValueError:
        logger.warning(
            "%s is not a valid integer (got %r); defaulting to %d",
            env_var,
            raw_value,
            default,
        )
        return default

    if value < minimum:
        logger.warning(
            "%s cannot be below %d; defaulting to %d", env_var, minimum, default
        )
        return default

    return value


def _canon_difficulty(val, default):
    val = (val or "").strip().lower()
    return val or default


DEFAULT_RATING = _parse_int("DEFAULT_RATING", 1000)

# Reference rating for a battle-royale field with no known participants.
NEUTRAL_FIELD_RATING = _parse_int("NEUTRAL_FIELD_RATING", 1000)

DEFAULT_MATCH_DURATION_MS = _parse_int("DEFAULT_MATCH_DURATION_MS", 1_800_000)
BATTLE_ROYALE_DURATION_MS = _parse_int("BATTLE_ROYALE_DURATION_MS", 300_000)

DEFAULT_DIFFICULTY = _canon_difficulty(os.getenv("DEFAULT_DIFFICULTY"), "easy")
BATTLE_ROYALE_DIFFICULTY = _canon_difficulty(
    os.getenv("BATTLE_ROYALE_DIFFICULTY"), "medium"
)

TEAM_MIN_SIZE = _parse_int("TEAM_MIN_SIZE", 1, minimum=1)
TEAM_MAX_SIZE = max(TEAM_MIN_SIZE, _parse_int("TEAM_MAX_SIZE", 10, minimum=1))

"""Experience, coin and badge policy for settled matches."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Iterable, Protocol, runtime_checkable

from ..models import Player
from ..schemas import Outcome
from .rating import round_half_up

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressionEvaluator(Protocol):
    def compute_xp(self, outcome: Outcome, difficulty: str, topology: str) -> int: ...

    def compute_coins(
        self, outcome: Outcome, difficulty: str, topology: str, rank: int | None = None
    ) -> int: ...

    async def evaluate_badges(self, player: Player) -> list[str]:
        """Award any newly earned badges onto ``player.badges``.

        Returns the ids of badges awarded by this call.
        """
        ...


XP_BY_DIFFICULTY = {"easy": 20, "medium": 35, "hard": 50}
COINS_BY_DIFFICULTY = {"easy": 10, "medium": 20, "hard": 30}

# Fraction of the win payout granted for other outcomes.
OUTCOME_SHARE = {"win": 1.0, "draw": 0.5, "loss": 0.25}
COIN_OUTCOME_SHARE = {"win": 1.0, "draw": 0.3, "loss": 0.1}

TOPOLOGY_MULTIPLIER = {"1v1": 1.0, "2v2": 1.0, "battle-royale": 1.5}

# Battle-royale podium payouts as a share of the win payout.
PODIUM_COIN_SHARE = {1: 1.0, 2: 0.5, 3: 0.25}


@dataclass
class BadgeDefinition:
    id: str
    name: str
    icon: str | None
    category: str
    rarity: str
    description: str | None
    rule: dict | None


BADGE_DEFINITIONS: list[BadgeDefinition] = [
    BadgeDefinition(
        id="first_win",
        name="First blood",
        icon="🗡️",
        category="milestone",
        rarity="common",
        description="Won a first duel.",
        rule={"type": "wins_at_least", "threshold": 1},
    ),
    BadgeDefinition(
        id="wins_50",
        name="Half century",
        icon="🏅",
        category="milestone",
        rarity="rare",
        description="Won 50 duels.",
        rule={"type": "wins_at_least", "threshold": 50},
    ),
    BadgeDefinition(
        id="matches_10",
        name="Regular",
        icon="📅",
        category="milestone",
        rarity="common",
        description="Played 10 rated matches.",
        rule={"type": "matches_played_at_least", "threshold": 10},
    ),
    BadgeDefinition(
        id="matches_100",
        name="Century Club",
        icon="💯",
        category="milestone",
        rarity="rare",
        description="Hit the 100 match milestone.",
        rule={"type": "matches_played_at_least", "threshold": 100},
    ),
    BadgeDefinition(
        id="hot_streak",
        name="Hot streak",
        icon="🔥",
        category="streak",
        rarity="rare",
        description="Won 5 matches in a row.",
        rule={"type": "streak_at_least", "threshold": 5},
    ),
    BadgeDefinition(
        id="unstoppable",
        name="Unstoppable",
        icon="⚡",
        category="streak",
        rarity="epic",
        description="Reached a 10 win streak at some point.",
        rule={"type": "longest_streak_at_least", "threshold": 10},
    ),
    BadgeDefinition(
        id="rating_1200",
        name="Specialist",
        icon="🎯",
        category="skill",
        rarity="common",
        description="Reached a 1200 rating.",
        rule={"type": "rating_at_least", "threshold": 1200},
    ),
    BadgeDefinition(
        id="rating_2000",
        name="Grandmaster",
        icon="👑",
        category="skill",
        rarity="legendary",
        description="Reached a 2000 rating.",
        rule={"type": "rating_at_least", "threshold": 2000},
    ),
]


def _rule_matches(rule: dict | None, player: Player) -> bool:
    if not rule:
        return False
    rule_type = rule.get("type")
    threshold = int(rule.get("threshold") or 0)
    if rule_type == "rating_at_least":
        return (player.rating or 0) >= threshold
    if rule_type == "matches_played_at_least":
        return (player.matches or 0) >= threshold
    if rule_type == "wins_at_least":
        return (player.wins or 0) >= threshold
    if rule_type == "streak_at_least":
        return (player.streak or 0) >= threshold
    if rule_type == "longest_streak_at_least":
        return (player.longest_streak or 0) >= threshold
    return False


class DefaultProgression:
    """Table-driven progression policy.

    Unknown difficulties fall back to ``easy``; unknown topologies use a
    multiplier of 1.
    """

    def __init__(self, definitions: Iterable[BadgeDefinition] | None = None) -> None:
        self.definitions = list(definitions or BADGE_DEFINITIONS)

    def compute_xp(self, outcome: Outcome, difficulty: str, topology: str) -> int:
        base = XP_BY_DIFFICULTY.get(difficulty, XP_BY_DIFFICULTY["easy"])
        share = OUTCOME_SHARE.get(outcome, 0.0)
        return round_half_up(base * share * TOPOLOGY_MULTIPLIER.get(topology, 1.0))

    def compute_coins(
        self, outcome: Outcome, difficulty: str, topology: str, rank: int | None = None
    ) -> int:
        base = COINS_BY_DIFFICULTY.get(difficulty, COINS_BY_DIFFICULTY["easy"])
        if rank is not None and topology == "battle-royale":
            share = PODIUM_COIN_SHARE.get(rank, COIN_OUTCOME_SHARE["loss"])
        else:
            share = COIN_OUTCOME_SHARE.get(outcome, 0.0)
        return round_half_up(base * share * TOPOLOGY_MULTIPLIER.get(topology, 1.0))

    async def evaluate_badges(self, player: Player) -> list[str]:
        owned = list(player.badges or [])
        awarded: list[str] = []
        for definition in self.definitions:
            if definition.id in owned:
                continue
            if not _rule_matches(definition.rule, player):
                continue
            owned.append(definition.id)
            awarded.append(definition.id)

        if awarded:
            # Reassign so SQLAlchemy sees the JSON column as changed.
            player.badges = owned
            logger.info("Player %s earned badges %s", player.id, ", ".join(awarded))
        return awarded

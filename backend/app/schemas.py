from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .config import (
    BATTLE_ROYALE_DIFFICULTY,
    BATTLE_ROYALE_DURATION_MS,
    DEFAULT_DIFFICULTY,
    DEFAULT_MATCH_DURATION_MS,
    TEAM_MAX_SIZE,
    TEAM_MIN_SIZE,
)
from .time_utils import coerce_utc

Outcome = Literal["win", "loss", "draw"]


class MatchType(str, Enum):
    HEAD_TO_HEAD = "1v1"
    TEAM = "2v2"
    BATTLE_ROYALE = "battle-royale"


class RatingChangeEvent(BaseModel):
    """One participant's rating movement for a settled match."""

    model_config = ConfigDict(frozen=True)

    participant_id: str
    display_name: str
    rating_before: int
    rating_after: int
    delta: int

    def to_summary(self) -> dict:
        """Shape stored on the match record's ``rating_changes`` list."""
        return {
            "player": self.participant_id,
            "ratingBefore": self.rating_before,
            "ratingAfter": self.rating_after,
            "delta": self.delta,
        }


class RatingHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    matchId: str
    delta: int
    ratingAfter: int
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return coerce_utc(value)


def _zero_if_missing(value):
    return 0 if value is None else value


# Absent or null counts are treated as zero.
Count = Annotated[int, BeforeValidator(_zero_if_missing), Field(ge=0)]


class SettlementBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    match_id: Optional[str] = None
    match_duration_ms: int = Field(default=DEFAULT_MATCH_DURATION_MS, ge=0)
    difficulty: Optional[str] = None

    @field_validator("match_id", mode="before")
    @classmethod
    def _blank_match_id(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalize_difficulty(cls, value):
        if value is None:
            return None
        if not isinstance(value, str):
            raise TypeError("difficulty must be a string")
        return value.strip().lower() or None

    @model_validator(mode="after")
    def _default_difficulty(self):
        if self.difficulty is None:
            self.difficulty = self._default_difficulty_value()
        return self

    def _default_difficulty_value(self) -> str:
        return DEFAULT_DIFFICULTY


class HeadToHeadSettlement(SettlementBase):
    winner_id: str = Field(..., min_length=1)
    loser_id: str = Field(..., min_length=1)
    winner_solve_ms: Count = 0
    winner_attempts: Count = 0
    loser_attempts: Count = 0

    @model_validator(mode="after")
    def _distinct_players(self):
        if self.winner_id == self.loser_id:
            raise ValueError("winner and loser must be different players")
        return self


class DrawSettlement(SettlementBase):
    player_a_id: str = Field(..., min_length=1)
    player_b_id: str = Field(..., min_length=1)
    player_a_attempts: Count = 0
    player_b_attempts: Count = 0

    @model_validator(mode="after")
    def _distinct_players(self):
        if self.player_a_id == self.player_b_id:
            raise ValueError("a draw needs two different players")
        return self


class TeamSettlement(SettlementBase):
    """Winning and losing rosters, with optional per-member wrong attempts.

    Attempt lists are aligned with their roster by index and zero-filled to
    the roster length.
    """

    winning_team: List[str]
    losing_team: List[str]
    solve_ms: Count = 0
    winning_attempts: List[int] = Field(default_factory=list)
    losing_attempts: List[int] = Field(default_factory=list)

    @field_validator("winning_attempts", "losing_attempts", mode="before")
    @classmethod
    def _fill_missing_attempts(cls, value):
        if value is None:
            return []
        return [_zero_if_missing(v) for v in value]

    @field_validator("winning_attempts", "losing_attempts")
    @classmethod
    def _non_negative_attempts(cls, value: List[int]) -> List[int]:
        if any(v < 0 for v in value):
            raise ValueError("wrong attempts must be >= 0")
        return value

    @model_validator(mode="after")
    def _check_rosters(self):
        for label, team, attempts in (
            ("winning", self.winning_team, self.winning_attempts),
            ("losing", self.losing_team, self.losing_attempts),
        ):
            if not TEAM_MIN_SIZE <= len(team) <= TEAM_MAX_SIZE:
                raise ValueError(
                    f"{label} team must have between {TEAM_MIN_SIZE} and "
                    f"{TEAM_MAX_SIZE} players"
                )
            if len(attempts) > len(team):
                raise ValueError(f"{label} attempts has more entries than players")
        if set(self.winning_team) & set(self.losing_team):
            raise ValueError("a player cannot be on both teams")
        self.winning_attempts = self.winning_attempts + [0] * (
            len(self.winning_team) - len(self.winning_attempts)
        )
        self.losing_attempts = self.losing_attempts + [0] * (
            len(self.losing_team) - len(self.losing_attempts)
        )
        return self


class RankingEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None
    position: int = Field(..., ge=1)
    solve_time_ms: Count = 0
    wrong_attempts: Count = 0

    @field_validator("user_id", mode="before")
    @classmethod
    def _blank_user(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class BattleRoyaleSettlement(SettlementBase):
    """Final standings for an N-way match, in ranking order."""

    rankings: List[RankingEntry]
    match_duration_ms: int = Field(default=BATTLE_ROYALE_DURATION_MS, ge=0)

    def _default_difficulty_value(self) -> str:
        return BATTLE_ROYALE_DIFFICULTY

    @model_validator(mode="after")
    def _positions_within_field(self):
        total = len(self.rankings)
        for entry in self.rankings:
            if entry.position > total:
                raise ValueError(
                    f"position {entry.position} is outside a field of {total} players"
                )
        return self

    @property
    def total_players(self) -> int:
        return len(self.rankings)

from sqlalchemy import (
    Column,
    String,
    DateTime,
    JSON,
    Integer,
    Index,
)
from sqlalchemy.sql import func

from .config import DEFAULT_RATING
from .db import Base


class Player(Base):
    """Persistent player record, including rating and progression stats."""

    __tablename__ = "player"
    id = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    rating = Column(Integer, nullable=False, default=DEFAULT_RATING)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    draws = Column(Integer, nullable=False, default=0)
    matches = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    xp = Column(Integer, nullable=False, default=0)
    coins = Column(Integer, nullable=False, default=0)
    last_play_date = Column(DateTime, nullable=True)
    # Append-only list of {matchId, delta, ratingAfter, timestamp}
    rating_history = Column(JSON, nullable=False, default=list)
    badges = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_player_rating", "rating"),
    )


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)  # "1v1" | "2v2" | "battle-royale"
    status = Column(String, nullable=False, default="waiting")
    end_reason = Column(String, nullable=True)
    difficulty = Column(String, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    rating_changes = Column(JSON, nullable=False, default=list)

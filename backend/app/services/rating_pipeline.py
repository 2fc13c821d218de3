"""Post-match rating settlement.

One settlement loads every participant, runs the rating engine on their
pre-match ratings, applies the result and derived progression to the
in-memory records, evaluates badges, then persists. Player records and the
match's rating-change summary are written independently: there is no
transaction spanning them. If a write fails, records saved before it stay
saved and :class:`SettlementPersistenceError` reports which changes landed.

Settlements are not idempotent. Replaying one applies the stats again, so
callers must not run two settlements that share a player at the same time
and must not replay a finished match (see :class:`SettlementLocks`).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Sequence

from sqlalchemy.orm import sessionmaker

from ..db import get_session_factory
from ..exceptions import SettlementPersistenceError
from ..models import Player
from ..schemas import (
    BattleRoyaleSettlement,
    DrawSettlement,
    HeadToHeadSettlement,
    MatchType,
    Outcome,
    RatingChangeEvent,
    RatingHistoryEntry,
    TeamSettlement,
)
from ..time_utils import to_db_datetime, utc_now
from . import rating
from .progression import DefaultProgression, ProgressionEvaluator
from .stores import MatchStore, PlayerStore, SqlMatchStore, SqlPlayerStore

logger = logging.getLogger(__name__)


class RatingPipeline:
    def __init__(
        self,
        players: PlayerStore,
        matches: MatchStore,
        progression: ProgressionEvaluator | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.players = players
        self.matches = matches
        self.progression = progression or DefaultProgression()
        self._clock = clock

    async def settle(self, request) -> list[RatingChangeEvent]:
        """Dispatch ``request`` to the settlement for its topology."""
        if isinstance(request, HeadToHeadSettlement):
            return await self.settle_head_to_head(request)
        if isinstance(request, DrawSettlement):
            return await self.settle_draw(request)
        if isinstance(request, TeamSettlement):
            return await self.settle_team(request)
        if isinstance(request, BattleRoyaleSettlement):
            return await self.settle_battle_royale(request)
        raise TypeError(f"unsupported settlement request: {type(request).__name__}")

    async def settle_head_to_head(
        self, request: HeadToHeadSettlement
    ) -> list[RatingChangeEvent]:
        logger.info(
            "Settling 1v1 match %s: %s beat %s",
            request.match_id,
            request.winner_id,
            request.loser_id,
        )
        winner, loser = await self._load_pair(
            request.match_id, request.winner_id, request.loser_id
        )
        if winner is None or loser is None:
            return []

        result = rating.head_to_head(
            winner.rating,
            loser.rating,
            request.winner_solve_ms,
            request.match_duration_ms,
            request.winner_attempts,
            request.loser_attempts,
        )
        now = self._clock()
        events = [
            self._apply(winner, result.winner, "win", request, MatchType.HEAD_TO_HEAD, now),
            self._apply(loser, result.loser, "loss", request, MatchType.HEAD_TO_HEAD, now),
        ]
        await self._evaluate_badges([winner, loser])
        await self._save_concurrently(request.match_id, [winner, loser], events)
        await self._record_match(request.match_id, events)
        return events

    async def settle_draw(self, request: DrawSettlement) -> list[RatingChangeEvent]:
        logger.info(
            "Settling drawn match %s between %s and %s",
            request.match_id,
            request.player_a_id,
            request.player_b_id,
        )
        first, second = await self._load_pair(
            request.match_id, request.player_a_id, request.player_b_id
        )
        if first is None or second is None:
            return []

        result = rating.draw(
            first.rating,
            second.rating,
            request.player_a_attempts,
            request.player_b_attempts,
        )
        now = self._clock()
        events = [
            self._apply(first, result.first, "draw", request, MatchType.HEAD_TO_HEAD, now),
            self._apply(second, result.second, "draw", request, MatchType.HEAD_TO_HEAD, now),
        ]
        await self._evaluate_badges([first, second])
        await self._save_concurrently(request.match_id, [first, second], events)
        await self._record_match(request.match_id, events)
        return events

    async def settle_team(self, request: TeamSettlement) -> list[RatingChangeEvent]:
        logger.info(
            "Settling team match %s: %d v %d",
            request.match_id,
            len(request.winning_team),
            len(request.losing_team),
        )
        loaded = await self.players.find_many(
            [*request.winning_team, *request.losing_team]
        )
        by_id = {p.id: p for p in loaded}
        winners = self._resolve_team(
            request.match_id, request.winning_team, request.winning_attempts, by_id
        )
        losers = self._resolve_team(
            request.match_id, request.losing_team, request.losing_attempts, by_id
        )
        if not winners and not losers:
            logger.warning("No players found for team match %s", request.match_id)
            return []

        result = rating.team(
            [p.rating for p, _ in winners],
            [p.rating for p, _ in losers],
            True,
            request.solve_ms,
            request.match_duration_ms,
            [a for _, a in winners],
            [a for _, a in losers],
        )
        now = self._clock()
        applied: list[RatingChangeEvent] = []
        members = [
            *((p, r, "win") for (p, _), r in zip(winners, result.team1)),
            *((p, r, "loss") for (p, _), r in zip(losers, result.team2)),
        ]
        for player, member_result, outcome in members:
            event = self._apply(player, member_result, outcome, request, MatchType.TEAM, now)
            await self._evaluate_badges([player])
            await self._save_one(request.match_id, player, event, applied)

        await self._record_match(request.match_id, applied)
        return applied

    async def settle_battle_royale(
        self, request: BattleRoyaleSettlement
    ) -> list[RatingChangeEvent]:
        total = request.total_players
        logger.info(
            "Settling battle royale %s with %d ranked entries", request.match_id, total
        )
        loaded = await self.players.find_many(
            [entry.user_id for entry in request.rankings if entry.user_id]
        )
        by_id = {p.id: p for p in loaded}
        field_rating = rating.field_average([p.rating for p in by_id.values()])

        now = self._clock()
        applied: list[RatingChangeEvent] = []
        settled: set[str] = set()
        for entry in request.rankings:
            if not entry.user_id:
                continue
            player = by_id.get(entry.user_id)
            if player is None:
                logger.warning(
                    "Skipping unknown player %s in battle royale %s",
                    entry.user_id,
                    request.match_id,
                )
                continue
            if player.id in settled:
                logger.warning(
                    "Player %s ranked twice in battle royale %s; keeping first entry",
                    player.id,
                    request.match_id,
                )
                continue
            settled.add(player.id)

            result = rating.battle_royale(
                player.rating,
                field_rating,
                entry.position,
                total,
                entry.solve_time_ms,
                request.match_duration_ms,
                entry.wrong_attempts,
            )
            outcome = "win" if entry.position == 1 else "loss"
            event = self._apply(
                player,
                result,
                outcome,
                request,
                MatchType.BATTLE_ROYALE,
                now,
                rank=entry.position,
            )
            await self._evaluate_badges([player])
            await self._save_one(request.match_id, player, event, applied)

        await self._record_match(request.match_id, applied)
        return applied

    async def _load_pair(
        self, match_id: str | None, first_id: str, second_id: str
    ) -> tuple[Player | None, Player | None]:
        first, second = await asyncio.gather(
            self.players.find_by_id(first_id), self.players.find_by_id(second_id)
        )
        missing = [pid for pid, p in ((first_id, first), (second_id, second)) if p is None]
        if missing:
            logger.warning(
                "Aborting settlement of match %s; players not found: %s",
                match_id,
                ", ".join(missing),
            )
        return first, second

    @staticmethod
    def _resolve_team(
        match_id: str | None,
        roster: Sequence[str],
        attempts: Sequence[int],
        by_id: dict[str, Player],
    ) -> list[tuple[Player, int]]:
        members = []
        for i, pid in enumerate(roster):
            player = by_id.get(pid)
            if player is None:
                logger.warning("Skipping unknown player %s in team match %s", pid, match_id)
                continue
            members.append((player, attempts[i] if i < len(attempts) else 0))
        return members

    def _apply(
        self,
        player: Player,
        result: rating.RatingResult,
        outcome: Outcome,
        request,
        topology: MatchType,
        now: datetime,
        *,
        rank: int | None = None,
    ) -> RatingChangeEvent:
        rating_before = player.rating
        player.rating = result.new_rating

        if outcome == "win":
            player.wins = (player.wins or 0) + 1
            player.streak = (player.streak or 0) + 1
            player.last_play_date = to_db_datetime(now)
        elif outcome == "loss":
            player.losses = (player.losses or 0) + 1
            player.streak = 0
        else:
            player.draws = (player.draws or 0) + 1
            player.streak = 0
        player.longest_streak = max(player.longest_streak or 0, player.streak)
        player.matches = (player.matches or 0) + 1

        player.xp = (player.xp or 0) + self.progression.compute_xp(
            outcome, request.difficulty, topology.value
        )
        player.coins = (player.coins or 0) + self.progression.compute_coins(
            outcome, request.difficulty, topology.value, rank
        )

        if request.match_id:
            entry = RatingHistoryEntry(
                matchId=request.match_id,
                delta=result.delta,
                ratingAfter=result.new_rating,
                timestamp=now,
            )
            # Reassign so SQLAlchemy sees the JSON column as changed.
            player.rating_history = [
                *(player.rating_history or []),
                entry.model_dump(mode="json"),
            ]

        return RatingChangeEvent(
            participant_id=player.id,
            display_name=player.username,
            rating_before=rating_before,
            rating_after=result.new_rating,
            delta=result.delta,
        )

    async def _evaluate_badges(self, players: Sequence[Player]) -> None:
        for player in players:
            await self.progression.evaluate_badges(player)

    async def _save_one(
        self,
        match_id: str | None,
        player: Player,
        event: RatingChangeEvent,
        applied: list[RatingChangeEvent],
    ) -> None:
        try:
            await self.players.save(player)
        except Exception as exc:
            logger.error(
                "Failed to save player %s for match %s", player.id, match_id, exc_info=exc
            )
            raise SettlementPersistenceError(match_id, applied) from exc
        applied.append(event)

    async def _save_concurrently(
        self,
        match_id: str | None,
        players: Sequence[Player],
        events: Sequence[RatingChangeEvent],
    ) -> None:
        outcomes = await asyncio.gather(
            *(self.players.save(p) for p in players), return_exceptions=True
        )
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if not failures:
            return
        for failure in failures:
            if not isinstance(failure, Exception):
                raise failure
        applied = [
            event
            for event, outcome in zip(events, outcomes)
            if not isinstance(outcome, BaseException)
        ]
        logger.error(
            "Failed to save %d of %d players for match %s",
            len(failures),
            len(players),
            match_id,
            exc_info=failures[0],
        )
        raise SettlementPersistenceError(match_id, applied) from failures[0]

    async def _record_match(
        self, match_id: str | None, events: Sequence[RatingChangeEvent]
    ) -> None:
        if not match_id:
            return
        try:
            await self.matches.update_rating_changes(
                match_id, [event.to_summary() for event in events]
            )
        except Exception as exc:
            logger.error(
                "Player ratings saved but match %s summary not recorded",
                match_id,
                exc_info=exc,
            )
            raise SettlementPersistenceError(
                match_id,
                events,
                detail=f"rating changes for match '{match_id}' were not recorded",
            ) from exc
        logger.info("Recorded %d rating changes for match %s", len(events), match_id)


def create_pipeline(
    session_factory: sessionmaker | None = None,
    progression: ProgressionEvaluator | None = None,
) -> RatingPipeline:
    """Build a pipeline backed by the SQL stores."""

    factory = session_factory or get_session_factory()
    return RatingPipeline(
        SqlPlayerStore(factory),
        SqlMatchStore(factory),
        progression or DefaultProgression(),
    )

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from backend.app import db
from backend.app.exceptions import MatchNotFound, SettlementPersistenceError
from backend.app.models import Match, Player
from backend.app.schemas import (
    BattleRoyaleSettlement,
    DrawSettlement,
    HeadToHeadSettlement,
    TeamSettlement,
)
from backend.app.services import rating
from backend.app.services.progression import DefaultProgression
from backend.app.services.rating_pipeline import RatingPipeline, create_pipeline
from backend.app.services.stores import SqlMatchStore, SqlPlayerStore

FIXED_NOW = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)


def _player(pid, rating_value=1000, **extra):
    return Player(id=pid, username=f"user-{pid}", rating=rating_value, **extra)


def _pipeline(session_maker) -> RatingPipeline:
    return RatingPipeline(
        SqlPlayerStore(session_maker),
        SqlMatchStore(session_maker),
        DefaultProgression(),
        clock=lambda: FIXED_NOW,
    )


async def _players(session_maker) -> dict[str, Player]:
    async with session_maker() as session:
        rows = (await session.execute(select(Player))).scalars().all()
        return {p.id: p for p in rows}


async def _match(session_maker, match_id) -> Match:
    async with session_maker() as session:
        return await session.get(Match, match_id)


def _assert_invariants(player: Player) -> None:
    assert player.rating >= 0
    assert player.matches == player.wins + player.losses + player.draws
    assert player.longest_streak >= player.streak


def test_head_to_head_updates_players_and_match(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[_player("p1", streak=2, longest_streak=2), _player("p2", streak=4, longest_streak=6)],
            matches=[Match(id="m1", type="1v1", status="finished")],
        )
        try:
            events = await _pipeline(session_maker).settle_head_to_head(
                HeadToHeadSettlement(
                    match_id="m1",
                    winner_id="p1",
                    loser_id="p2",
                    winner_solve_ms=0,
                    match_duration_ms=1_800_000,
                )
            )
            return events, await _players(session_maker), await _match(session_maker, "m1")
        finally:
            await engine.dispose()

    events, players, match = asyncio.run(run_test())

    assert [e.participant_id for e in events] == ["p1", "p2"]
    assert [(e.rating_before, e.rating_after, e.delta) for e in events] == [
        (1000, 1020, 20),
        (1000, 980, -20),
    ]
    assert events[0].display_name == "user-p1"

    winner, loser = players["p1"], players["p2"]
    assert (winner.rating, winner.wins, winner.matches, winner.streak) == (1020, 1, 1, 3)
    assert winner.longest_streak == 3
    assert winner.last_play_date == FIXED_NOW.replace(tzinfo=None)
    assert (loser.rating, loser.losses, loser.matches, loser.streak) == (980, 1, 1, 0)
    assert loser.longest_streak == 6
    assert loser.last_play_date is None
    assert winner.xp == 20 and winner.coins == 10
    assert loser.xp == 5 and loser.coins == 1
    for p in players.values():
        _assert_invariants(p)

    assert winner.rating_history == [
        {
            "matchId": "m1",
            "delta": 20,
            "ratingAfter": 1020,
            "timestamp": "2026-03-01T12:30:00Z",
        }
    ]
    assert loser.rating_history[0]["delta"] == -20
    assert "first_win" in winner.badges
    assert loser.badges == []

    assert match.rating_changes == [
        {"player": "p1", "ratingBefore": 1000, "ratingAfter": 1020, "delta": 20},
        {"player": "p2", "ratingBefore": 1000, "ratingAfter": 980, "delta": -20},
    ]


def test_head_to_head_missing_player_changes_nothing(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[_player("p1")],
            matches=[Match(id="m1", type="1v1")],
        )
        try:
            events = await _pipeline(session_maker).settle_head_to_head(
                HeadToHeadSettlement(match_id="m1", winner_id="p1", loser_id="ghost")
            )
            return events, await _players(session_maker), await _match(session_maker, "m1")
        finally:
            await engine.dispose()

    events, players, match = asyncio.run(run_test())
    assert events == []
    assert players["p1"].rating == 1000
    assert players["p1"].matches == 0
    assert players["p1"].rating_history == []
    assert match.rating_changes == []


def test_elite_win_with_fast_solve(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[_player("elite", 2200), _player("rookie", 1000)],
        )
        try:
            events = await _pipeline(session_maker).settle_head_to_head(
                HeadToHeadSettlement(
                    winner_id="elite",
                    loser_id="rookie",
                    winner_solve_ms=1,
                    match_duration_ms=1_800_000,
                )
            )
            return events, await _players(session_maker)
        finally:
            await engine.dispose()

    events, players = asyncio.run(run_test())
    assert events[0].delta == 10
    assert players["elite"].rating == 2210
    # No match id: nothing appended to history.
    assert players["elite"].rating_history == []
    assert "rating_2000" in players["elite"].badges


def test_loser_rating_is_floored_at_zero(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[_player("w", 900), _player("l", 5)],
        )
        try:
            events = await _pipeline(session_maker).settle_head_to_head(
                HeadToHeadSettlement(winner_id="w", loser_id="l", loser_attempts=10)
            )
            return events, await _players(session_maker)
        finally:
            await engine.dispose()

    events, players = asyncio.run(run_test())
    loser_event = events[1]
    assert loser_event.rating_before == 5
    assert loser_event.rating_after == 0
    assert loser_event.delta < -5
    assert players["l"].rating == 0


def test_draw_resets_streaks_and_counts_draws(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[_player("a", 1600, streak=3, longest_streak=3), _player("b", 1200)],
            matches=[Match(id="m-draw", type="1v1")],
        )
        try:
            events = await _pipeline(session_maker).settle_draw(
                DrawSettlement(
                    match_id="m-draw",
                    player_a_id="a",
                    player_b_id="b",
                    player_a_attempts=1,
                )
            )
            return events, await _players(session_maker), await _match(session_maker, "m-draw")
        finally:
            await engine.dispose()

    events, players, match = asyncio.run(run_test())
    expected = rating.draw(1600, 1200, 1, 0)
    assert [e.delta for e in events] == [expected.first.delta, expected.second.delta]
    a, b = players["a"], players["b"]
    assert a.draws == 1 and b.draws == 1
    assert a.wins == a.losses == 0
    assert a.streak == 0 and a.longest_streak == 3
    assert a.last_play_date is None
    assert a.rating == 1600 + expected.first.delta
    assert b.rating == 1200 + expected.second.delta
    assert a.xp == 10 and b.xp == 10
    assert len(match.rating_changes) == 2
    for p in players.values():
        _assert_invariants(p)


def test_draw_with_missing_player_returns_empty(make_database):
    async def run_test():
        engine, session_maker = await make_database(players=[_player("a")])
        try:
            return await _pipeline(session_maker).settle_draw(
                DrawSettlement(player_a_id="a", player_b_id="nobody")
            )
        finally:
            await engine.dispose()

    assert asyncio.run(run_test()) == []


def test_team_settlement_preserves_order_and_skips_unknown(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[
                _player("w1", 1000),
                _player("w2", 1400),
                _player("l1", 1100),
                _player("l2", 1300),
            ],
            matches=[Match(id="team-1", type="2v2")],
        )
        try:
            events = await _pipeline(session_maker).settle_team(
                TeamSettlement(
                    match_id="team-1",
                    winning_team=["w2", "ghost", "w1"],
                    losing_team=["l1", "l2"],
                    solve_ms=900_000,
                    match_duration_ms=1_800_000,
                    winning_attempts=[1, None],
                    losing_attempts=[2],
                    difficulty="hard",
                )
            )
            return events, await _players(session_maker), await _match(session_maker, "team-1")
        finally:
            await engine.dispose()

    events, players, match = asyncio.run(run_test())
    assert [e.participant_id for e in events] == ["w2", "w1", "l1", "l2"]

    expected = rating.team([1400, 1000], [1100, 1300], True, 900_000, 1_800_000, [1, 0], [2, 0])
    assert [e.delta for e in events] == expected.team1_deltas + expected.team2_deltas

    for pid in ("w1", "w2"):
        assert players[pid].wins == 1
        assert players[pid].streak == 1
        assert players[pid].last_play_date is not None
        assert players[pid].xp == 50
    for pid in ("l1", "l2"):
        assert players[pid].losses == 1
        assert players[pid].streak == 0
    assert [c["player"] for c in match.rating_changes] == ["w2", "w1", "l1", "l2"]
    for p in players.values():
        _assert_invariants(p)


def test_battle_royale_rankings(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[
                _player("first", 1000),
                _player("second", 1200),
                _player("third", 800),
            ],
            matches=[Match(id="br-1", type="battle-royale")],
        )
        try:
            events = await _pipeline(session_maker).settle_battle_royale(
                BattleRoyaleSettlement(
                    match_id="br-1",
                    rankings=[
                        {"user_id": "first", "position": 1, "solve_time_ms": 150_000},
                        {"user_id": None, "position": 2},
                        {"user_id": "second", "position": 3, "wrong_attempts": 2},
                        {"user_id": "missing", "position": 4},
                        {"user_id": "third", "position": 5},
                    ],
                )
            )
            return events, await _players(session_maker), await _match(session_maker, "br-1")
        finally:
            await engine.dispose()

    events, players, match = asyncio.run(run_test())
    assert [e.participant_id for e in events] == ["first", "second", "third"]

    field = 1000
    assert events[0].delta == rating.battle_royale(1000, field, 1, 5, 150_000, 300_000, 0).delta
    assert events[1].delta == rating.battle_royale(1200, field, 3, 5, 0, 300_000, 2).delta
    assert events[2].delta == rating.battle_royale(800, field, 5, 5, 0, 300_000, 0).delta

    assert players["first"].wins == 1 and players["first"].streak == 1
    assert players["second"].losses == 1
    assert players["third"].losses == 1
    # medium difficulty by default, podium coin payouts
    assert players["first"].coins == 30
    assert players["second"].coins == 8
    assert players["third"].coins == 3
    assert len(match.rating_changes) == 3
    for p in players.values():
        _assert_invariants(p)


def test_battle_royale_with_no_known_players(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            matches=[Match(id="br-empty", type="battle-royale")],
        )
        try:
            events = await _pipeline(session_maker).settle_battle_royale(
                BattleRoyaleSettlement(
                    match_id="br-empty",
                    rankings=[{"user_id": "x", "position": 1}, {"position": 2}],
                )
            )
            return events, await _match(session_maker, "br-empty")
        finally:
            await engine.dispose()

    events, match = asyncio.run(run_test())
    assert events == []
    assert match.rating_changes == []


def test_replaying_a_settlement_is_not_idempotent(make_database):
    async def run_test():
        engine, session_maker = await make_database(
            players=[_player("p1"), _player("p2")],
            matches=[Match(id="m-replay", type="1v1")],
        )
        try:
            pipeline = _pipeline(session_maker)
            request = HeadToHeadSettlement(match_id="m-replay", winner_id="p1", loser_id="p2")
            first = await pipeline.settle(request)
            second = await pipeline.settle(request)
            return first, second, await _players(session_maker)
        finally:
            await engine.dispose()

    first, second, players = asyncio.run(run_test())
    assert first[0].rating_after == 1020
    assert second[0].rating_before == 1020
    assert players["p1"].wins == 2
    assert players["p1"].matches == 2
    assert players["p1"].streak == 2
    assert len(players["p1"].rating_history) == 2
    assert players["p2"].losses == 2


def test_create_pipeline_uses_configured_database(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

    async def run_test():
        await db.dispose_engine()
        engine = db.get_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(db.Base.metadata.create_all)
            async with db.get_session_factory()() as session:
                session.add_all([_player("a"), _player("b")])
                await session.commit()
            return await create_pipeline().settle(
                DrawSettlement(player_a_id="a", player_b_id="b")
            )
        finally:
            await db.dispose_engine()

    events = asyncio.run(run_test())
    assert [(e.participant_id, e.delta) for e in events] == [("a", 0), ("b", 0)]


def test_unknown_match_id_is_ignored_by_default(make_database):
    async def run_test():
        engine, session_maker = await make_database(players=[_player("p1"), _player("p2")])
        try:
            events = await _pipeline(session_maker).settle_head_to_head(
                HeadToHeadSettlement(match_id="no-such-match", winner_id="p1", loser_id="p2")
            )
            return events, await _players(session_maker), await _match(session_maker, "no-such-match")
        finally:
            await engine.dispose()

    events, players, match = asyncio.run(run_test())
    assert [e.delta for e in events] == [20, -20]
    assert match is None
    assert players["p1"].rating == 1020
    assert players["p2"].rating == 980


def test_unknown_match_id_in_strict_mode_keeps_player_saves(make_database):
    async def run_test():
        engine, session_maker = await make_database(players=[_player("p1"), _player("p2")])
        pipeline = RatingPipeline(
            SqlPlayerStore(session_maker),
            SqlMatchStore(session_maker, strict=True),
            clock=lambda: FIXED_NOW,
        )
        try:
            with pytest.raises(SettlementPersistenceError) as excinfo:
                await pipeline.settle_head_to_head(
                    HeadToHeadSettlement(match_id="no-such-match", winner_id="p1", loser_id="p2")
                )
            return excinfo.value, await _players(session_maker)
        finally:
            await engine.dispose()

    err, players = asyncio.run(run_test())
    assert isinstance(err.__cause__, MatchNotFound)
    assert err.__cause__.match_id == "no-such-match"
    assert [e.participant_id for e in err.applied] == ["p1", "p2"]
    assert "no-such-match" in err.detail
    assert players["p1"].rating == 1020
    assert players["p2"].rating == 980
    assert players["p1"].rating_history[0]["matchId"] == "no-such-match"

#!/usr/bin/env python3
"""Admin helper to settle a finished match from a JSON request file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from pydantic import ValidationError

from backend.app import db
from backend.app.exceptions import SettlementPersistenceError
from backend.app.schemas import (
    BattleRoyaleSettlement,
    DrawSettlement,
    HeadToHeadSettlement,
    RatingChangeEvent,
    TeamSettlement,
)
from backend.app.services import rating
from backend.app.services.rating_pipeline import create_pipeline
from backend.app.utils.sentry import init_sentry

logger = logging.getLogger("settle_match")

REQUEST_TYPES = {
    "1v1": HeadToHeadSettlement,
    "draw": DrawSettlement,
    "team": TeamSettlement,
    "battle-royale": BattleRoyaleSettlement,
}


def parse_request(topology: str, payload: dict[str, Any]):
    return REQUEST_TYPES[topology].model_validate(payload)


def preview(request, ratings: dict[str, int]) -> list[dict[str, Any]]:
    """Engine-only preview using ``ratings`` in place of stored records.

    Rows have the same shape as a real run's output. Player ids stand in for
    display names.
    """

    if isinstance(request, HeadToHeadSettlement):
        result = rating.head_to_head(
            ratings[request.winner_id],
            ratings[request.loser_id],
            request.winner_solve_ms,
            request.match_duration_ms,
            request.winner_attempts,
            request.loser_attempts,
        )
        pairs = [(request.winner_id, result.winner), (request.loser_id, result.loser)]
    elif isinstance(request, DrawSettlement):
        result = rating.draw(
            ratings[request.player_a_id],
            ratings[request.player_b_id],
            request.player_a_attempts,
            request.player_b_attempts,
        )
        pairs = [(request.player_a_id, result.first), (request.player_b_id, result.second)]
    elif isinstance(request, TeamSettlement):
        result = rating.team(
            [ratings[pid] for pid in request.winning_team],
            [ratings[pid] for pid in request.losing_team],
            True,
            request.solve_ms,
            request.match_duration_ms,
            request.winning_attempts,
            request.losing_attempts,
        )
        pairs = list(zip(request.winning_team, result.team1)) + list(
            zip(request.losing_team, result.team2)
        )
    else:
        known = []
        seen: set[str] = set()
        for entry in request.rankings:
            if entry.user_id in ratings and entry.user_id not in seen:
                seen.add(entry.user_id)
                known.append(entry)
        field = rating.field_average([ratings[e.user_id] for e in known])
        pairs = [
            (
                e.user_id,
                rating.battle_royale(
                    ratings[e.user_id],
                    field,
                    e.position,
                    request.total_players,
                    e.solve_time_ms,
                    request.match_duration_ms,
                    e.wrong_attempts,
                ),
            )
            for e in known
        ]

    return [
        RatingChangeEvent(
            participant_id=pid,
            display_name=pid,
            rating_before=ratings[pid],
            rating_after=r.new_rating,
            delta=r.delta,
        ).model_dump()
        for pid, r in pairs
    ]


async def run(request) -> list[dict[str, Any]]:
    pipeline = create_pipeline()
    try:
        events = await pipeline.settle(request)
    finally:
        await db.dispose_engine()
    return [event.model_dump() for event in events]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply the rating changes for a finished match."
    )
    parser.add_argument("topology", choices=sorted(REQUEST_TYPES))
    parser.add_argument("request", help="Path to the settlement request JSON file")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help=(
            "Only compute the rating changes. Requires a 'ratings' object in the "
            "request file mapping player ids to current ratings."
        ),
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_sentry()

    with open(args.request, encoding="utf-8") as fh:
        payload = json.load(fh)
    ratings = payload.pop("ratings", None)

    try:
        request = parse_request(args.topology, payload)
    except ValidationError as exc:
        print(exc, file=sys.stderr)
        return 2

    if args.dry_run:
        if not isinstance(ratings, dict):
            parser.error("--dry-run needs a 'ratings' object in the request file")
        try:
            changes = preview(request, ratings)
        except KeyError as exc:
            parser.error(f"no rating given for player {exc.args[0]!r}")
        print(json.dumps(changes, indent=2))
        return 0

    try:
        events = asyncio.run(run(request))
    except SettlementPersistenceError as exc:
        logger.error("%s", exc.detail)
        print(json.dumps([e.model_dump() for e in exc.applied], indent=2))
        return 1

    print(json.dumps(events, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Player and match store contracts, plus SQLAlchemy-backed implementations.

Every call on the SQL stores opens its own ``AsyncSession``, so saves issued
concurrently (for example via ``asyncio.gather``) never share a session and
each one commits or fails on its own.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..exceptions import MatchNotFound
from ..models import Match, Player

logger = logging.getLogger(__name__)


@runtime_checkable
class PlayerStore(Protocol):
    async def find_by_id(self, player_id: str) -> Player | None: ...

    async def find_many(self, player_ids: Iterable[str]) -> list[Player]: ...

    async def save(self, player: Player) -> None:
        """Persist the full record; raise on failure."""
        ...


@runtime_checkable
class MatchStore(Protocol):
    async def update_rating_changes(
        self, match_id: str, changes: Sequence[dict]
    ) -> None: ...


class SqlPlayerStore:
    """Loads detached ``Player`` rows and writes them back whole.

    Writes are last-write-wins on the full record. Callers must not run two
    settlements for the same player at once.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, player_id: str) -> Player | None:
        async with self._session_factory() as session:
            return await session.get(Player, player_id)

    async def find_many(self, player_ids: Iterable[str]) -> list[Player]:
        ids = {pid for pid in player_ids if pid}
        if not ids:
            return []
        async with self._session_factory() as session:
            rows = (
                await session.execute(select(Player).where(Player.id.in_(ids)))
            ).scalars().all()
            return list(rows)

    async def save(self, player: Player) -> None:
        async with self._session_factory() as session:
            await session.merge(player)
            await session.commit()
        logger.debug("Saved player %s (rating=%s)", player.id, player.rating)


class SqlMatchStore:
    def __init__(self, session_factory: sessionmaker, *, strict: bool = False) -> None:
        self._session_factory = session_factory
        self._strict = strict

    async def update_rating_changes(self, match_id: str, changes: Sequence[dict]) -> None:
        """Overwrite the match's rating-change summary.

        An unknown match id is logged and ignored unless the store was built
        with ``strict=True``, in which case ``MatchNotFound`` is raised.
        """
        async with self._session_factory() as session:
            match = await session.get(Match, match_id)
            if match is None:
                if self._strict:
                    raise MatchNotFound(match_id)
                logger.warning(
                    "Match %s not found; rating changes not recorded", match_id
                )
                return
            match.rating_changes = [dict(c) for c in changes]
            await session.commit()

"""Standings ranking and the champion-first override."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .models import Match, MatchStage, Standing, Tournament, TournamentStatus


@dataclass(frozen=True, slots=True)
class RankedStanding:
    position: int
    user_id: str
    points: int
    wins: int
    losses: int


def ranking_key(standing: Standing) -> tuple[int, int, int]:
    """Points desc, then wins desc, then fewer losses."""
    return (-standing.points, -standing.wins, standing.losses)


def order_standings(standings: Iterable[Standing]) -> list[Standing]:
    return sorted(standings, key=ranking_key)


def find_champion(tournament: Tournament, matches: Iterable[Match]) -> str | None:
    """Return the FINAL winner once the tournament is finished."""
    if tournament.status is not TournamentStatus.FINISHED:
        return None
    for match in matches:
        if match.stage is MatchStage.FINAL and match.winner_id:
            return match.winner_id
    return None


def rank_standings(
    standings: Iterable[Standing], *, champion_id: str | None = None
) -> list[RankedStanding]:
    """Order standings and assign 1-based positions.

    When ``champion_id`` is given that entry is moved to the top while every
    other entry keeps its relative order.
    """
    ordered: Sequence[Standing] = order_standings(standings)
    if champion_id is not None:
        champion = [entry for entry in ordered if entry.user_id == champion_id]
        others = [entry for entry in ordered if entry.user_id != champion_id]
        ordered = champion + others
    return [
        RankedStanding(
            position=index + 1,
            user_id=entry.user_id,
            points=entry.points,
            wins=entry.wins,
            losses=entry.losses,
        )
        for index, entry in enumerate(ordered)
    ]


__all__ = [
    "RankedStanding",
    "find_champion",
    "order_standings",
    "rank_standings",
    "ranking_key",
]

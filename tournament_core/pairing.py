from __future__ import annotations

import random
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class Pairing:
    player_a: str
    player_b: str

    @property
    def key(self) -> frozenset[str]:
        return pair_key(self.player_a, self.player_b)


@dataclass(frozen=True, slots=True)
class Bye:
    player: str


PairingRound = list[Pairing | Bye]


class Ranked(Protocol):
    user_id: str
    points: int


class _ByeMarker:
    def __repr__(self) -> str:
        return "BYE"


BYE = _ByeMarker()


def pair_key(player_a: Hashable, player_b: Hashable) -> frozenset:
    """Return an order-independent key for a pairing."""
    return frozenset((player_a, player_b))


def generate_round_robin(players: Sequence[str]) -> list[PairingRound]:
    """Generate a full round robin schedule using the circle method."""
    entries: list[str | _ByeMarker] = list(players)
    if len(entries) % 2 != 0:
        entries.append(BYE)

    count = len(entries)
    rounds: list[PairingRound] = []
    for _ in range(count - 1):
        current: PairingRound = []
        for i in range(count // 2):
            player_a = entries[i]
            player_b = entries[count - 1 - i]
            if player_a is BYE:
                current.append(Bye(player=str(player_b)))
            elif player_b is BYE:
                current.append(Bye(player=str(player_a)))
            else:
                current.append(Pairing(player_a=str(player_a), player_b=str(player_b)))
        rounds.append(current)
        # First entry stays fixed, the last one moves in right behind it
        entries = [entries[0], entries[-1], *entries[1:-1]]
    return rounds


def generate_partial_pairings(
    players: Sequence[str],
    rounds_per_player: int = 3,
    *,
    rng: random.Random | None = None,
) -> list[list[Pairing]]:
    """Randomly pair players for casual rounds.

    Pairs already produced in an earlier round are skipped and leftovers are
    dropped, so coverage is not guaranteed.
    """
    randomizer = rng or random.Random()
    seen: set[frozenset[str]] = set()
    rounds: list[list[Pairing]] = []
    for _ in range(rounds_per_player):
        pool = list(players)
        randomizer.shuffle(pool)
        current: list[Pairing] = []
        while len(pool) >= 2:
            player_a = pool.pop()
            player_b = pool.pop()
            key = pair_key(player_a, player_b)
            if key in seen:
                continue
            seen.add(key)
            current.append(Pairing(player_a=player_a, player_b=player_b))
        rounds.append(current)
    return rounds


def _swiss_round(
    standings: Sequence[Ranked], played: set[frozenset[str]] | None
) -> PairingRound:
    ordered = sorted(standings, key=lambda entry: -entry.points)
    paired: set[str] = set()
    current: PairingRound = []
    for index, entry in enumerate(ordered):
        if entry.user_id in paired:
            continue
        opponent = None
        for candidate in ordered[index + 1 :]:
            if candidate.user_id in paired:
                continue
            if (
                played is not None
                and pair_key(entry.user_id, candidate.user_id) in played
            ):
                continue
            opponent = candidate
            break
        paired.add(entry.user_id)
        if opponent is None:
            current.append(Bye(player=entry.user_id))
            continue
        paired.add(opponent.user_id)
        current.append(Pairing(player_a=entry.user_id, player_b=opponent.user_id))
        if played is not None:
            played.add(pair_key(entry.user_id, opponent.user_id))
    return current


def generate_swiss_pairings_no_repeat(
    standings: Sequence[Ranked],
    past_matches: Iterable[tuple[str, str]],
    total_rounds: int,
) -> list[PairingRound]:
    """Pair players of similar points, never repeating a previous pairing."""
    played = {pair_key(a_id, b_id) for a_id, b_id in past_matches}
    return [_swiss_round(standings, played) for _ in range(total_rounds)]


def generate_swiss_pairings(
    standings: Sequence[Ranked], total_rounds: int
) -> list[PairingRound]:
    """Pair players of similar points; rematches are allowed."""
    return [_swiss_round(standings, None) for _ in range(total_rounds)]


def split_round(round_: PairingRound) -> tuple[list[Pairing], list[Bye]]:
    pairings = [entry for entry in round_ if isinstance(entry, Pairing)]
    byes = [entry for entry in round_ if isinstance(entry, Bye)]
    return pairings, byes


__all__ = [
    "BYE",
    "Bye",
    "Pairing",
    "PairingRound",
    "generate_partial_pairings",
    "generate_round_robin",
    "generate_swiss_pairings",
    "generate_swiss_pairings_no_repeat",
    "pair_key",
    "split_round",
]

"""Play a complete tournament through the public protocol with random results."""

from __future__ import annotations

import argparse
import logging
import random
from collections.abc import Sequence

from .config import build_table, read_engine_config
from .lifecycle import TournamentLifecycle
from .models import Actor, Match, MatchStatus, Role, TournamentStatus
from .standings import RankedStanding
from .storage import TournamentStorage

log = logging.getLogger("tournament-core")

DEFAULT_TITLE = "Simulated Tournament"
MAX_STEPS = 1000


def play_match(
    lifecycle: TournamentLifecycle, match: Match, rng: random.Random
) -> Match:
    """Play games between the two sides until the match is finished."""
    current = match
    while current.status is not MatchStatus.FINISHED:
        host_id = rng.choice(current.participants)
        opponent = Actor(current.opponent_of(host_id))
        host = Actor(host_id)
        game = lifecycle.create_game(current.tournament_id, current.match_id, host)
        lifecycle.accept_game(
            current.tournament_id, current.match_id, game.index, opponent
        )
        lifecycle.report_game(
            current.tournament_id,
            current.match_id,
            game.index,
            rng.choice(current.participants),
            host,
        )
        confirmation = lifecycle.confirm_game(
            current.tournament_id, current.match_id, game.index, opponent
        )
        current = confirmation.match
    return current


def play_tournament(
    lifecycle: TournamentLifecycle,
    admin: Actor,
    players: Sequence[str],
    rng: random.Random | None = None,
    *,
    title: str = DEFAULT_TITLE,
    total_rounds: int | None = None,
) -> list[RankedStanding]:
    """Create, fill and play a tournament to the end; return final standings."""
    rng = rng or random.Random()
    tournament = lifecycle.create_tournament(
        admin, title, total_rounds=total_rounds, open_enrollment=True
    )
    tournament_id = tournament.tournament_id
    for user_id in players:
        lifecycle.enroll(tournament_id, Actor(user_id))
    lifecycle.start_tournament(tournament_id, admin)

    for _ in range(MAX_STEPS):
        if lifecycle.get_tournament(tournament_id).status is TournamentStatus.FINISHED:
            break
        pending = [
            match
            for match in lifecycle.list_matches(tournament_id)
            if match.status is not MatchStatus.FINISHED
        ]
        if not pending:
            raise RuntimeError(f"Tournament {tournament_id} stalled with no matches")
        play_match(lifecycle, pending[0], rng)
    else:
        raise RuntimeError(f"Tournament {tournament_id} did not finish")

    log.info("Simulated tournament %s finished", tournament_id)
    return lifecycle.get_standings(tournament_id)


def format_standings(standings: Sequence[RankedStanding]) -> str:
    lines = [f"{'#':>3}  {'player':<16} {'pts':>4} {'W':>3} {'L':>3}"]
    for entry in standings:
        lines.append(
            f"{entry.position:>3}  {entry.user_id:<16} {entry.points:>4} "
            f"{entry.wins:>3} {entry.losses:>3}"
        )
    return "\n".join(lines)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Simulate a Swiss plus knockout tournament with random results"
    )
    parser.add_argument(
        "--players",
        type=int,
        default=8,
        help="Number of simulated players to enroll",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible results",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=None,
        help="Override the number of Swiss rounds",
    )
    parser.add_argument(
        "--title",
        type=str,
        default=DEFAULT_TITLE,
        help="Title of the simulated tournament",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    args = parse_args(argv)
    if args.players < 2:
        raise SystemExit("At least two players are required")

    config = read_engine_config()
    lifecycle = TournamentLifecycle(TournamentStorage(build_table(config)), config)
    players = [f"player-{index:02d}" for index in range(1, args.players + 1)]
    standings = play_tournament(
        lifecycle,
        Actor("admin", Role.ADMIN),
        players,
        random.Random(args.seed),
        title=args.title,
        total_rounds=args.rounds,
    )
    print(format_standings(standings))


if __name__ == "__main__":
    main()

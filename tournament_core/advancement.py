"""Stage advancement: Swiss rounds, knockout bracket and tournament finish.

Every step here may be triggered more than once, concurrently or out of
order (two confirmations finishing the last matches of a round at the same
time, for instance). Steps therefore check what already exists first and then
claim a one-time ``ADVANCE#`` token with a conditional insert before creating
anything. A step that finds nothing to do returns an ``AdvanceResult`` with
``advanced=False``; that is an expected outcome, not an error.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from .audit import AuditLog
from .config import EngineConfig
from .models import (
    Actor,
    Match,
    MatchStage,
    MatchStatus,
    Standing,
    TournamentStatus,
    utc_now_iso,
)
from .pairing import (
    generate_swiss_pairings,
    generate_swiss_pairings_no_repeat,
    split_round,
)
from .standings import order_standings
from .storage import TournamentStorage
from .validation import ForbiddenError, InvalidStateError, InvalidValueError

log = logging.getLogger("tournament-core")


@dataclass(frozen=True, slots=True)
class AdvanceResult:
    advanced: bool
    message: str
    stage: MatchStage | None = None
    round_number: int | None = None
    matches_created: int = 0
    byes: tuple[str, ...] = ()
    champion_id: str | None = None


def compute_total_rounds(player_count: int, explicit: int | None = None) -> int:
    """Swiss phase length: ``ceil(log2(players)) + 1`` unless configured."""
    if explicit is not None:
        return explicit
    if player_count < 2:
        raise ValueError("At least two players are required")
    return math.ceil(math.log2(player_count)) + 1


def seed_knockout_pairs(ranked: Sequence[Standing]) -> list[tuple[str, str]]:
    """Pair best with worst, second best with second worst and so on."""
    pairs: list[tuple[str, str]] = []
    count = len(ranked)
    for i in range(count // 2):
        a_id = ranked[i].user_id
        b_id = ranked[count - 1 - i].user_id
        if a_id != b_id:
            pairs.append((a_id, b_id))
    return pairs


def opening_knockout_stage(participants: int, pairs: int) -> MatchStage:
    if pairs == 1:
        return MatchStage.FINAL
    return MatchStage.for_bracket_size(participants)


class StageAdvancer:
    def __init__(
        self,
        storage: TournamentStorage,
        config: EngineConfig | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self._storage = storage
        self._config = config or EngineConfig()
        self._audit = audit or AuditLog(storage, enabled=self._config.audit_enabled)

    def _noop(self, tournament_id: str, message: str, **kwargs) -> AdvanceResult:
        log.info("Tournament %s: %s", tournament_id, message)
        return AdvanceResult(advanced=False, message=message, **kwargs)

    def _create_matches(
        self,
        tournament_id: str,
        stage: MatchStage,
        round_number: int,
        pairs: Sequence[tuple[str, str]],
    ) -> int:
        created_at = utc_now_iso()
        created = 0
        for position, (a_id, b_id) in enumerate(pairs, start=1):
            match = Match(
                match_id=Match.build_id(stage, round_number, position),
                tournament_id=tournament_id,
                round=round_number,
                stage=stage,
                a_id=a_id,
                b_id=b_id,
                created_at=created_at,
            )
            if self._storage.create_match(match):
                created += 1
            else:
                log.info(
                    "Match %s of tournament %s already exists",
                    match.match_id,
                    tournament_id,
                )
        return created

    # ----- Tournament start -----
    def start_tournament(self, tournament_id: str, actor: Actor) -> AdvanceResult:
        tournament = self._storage.require_tournament(tournament_id)
        if tournament.admin_id != actor.user_id:
            raise ForbiddenError("Only the tournament administrator can start it")
        if tournament.status not in (TournamentStatus.DRAFT, TournamentStatus.OPEN):
            raise InvalidStateError(
                f"Tournament already started (status {tournament.status.value})"
            )

        players = [
            entry.user_id for entry in self._storage.list_enrollments(tournament_id)
        ]
        if len(players) < 2:
            raise InvalidStateError("At least two enrolled players are required")

        total_rounds = compute_total_rounds(len(players), tournament.total_rounds)
        self._storage.transition_tournament(
            tournament_id,
            tournament.status,
            TournamentStatus.GROUPS,
            current_round=1,
            total_rounds=total_rounds,
            started_at=utc_now_iso(),
        )

        for user_id in players:
            self._storage.reset_standing(tournament_id, user_id)

        fresh = [Standing(tournament_id=tournament_id, user_id=p) for p in players]
        first_round = generate_swiss_pairings_no_repeat(fresh, [], 1)[0]
        pairings, byes = split_round(first_round)
        created = self._create_matches(
            tournament_id,
            MatchStage.GROUP,
            1,
            [(pairing.player_a, pairing.player_b) for pairing in pairings],
        )
        for bye in byes:
            self._storage.increment_standing(
                tournament_id, bye.player, points=self._config.bye_points
            )

        self._audit.record(
            tournament_id,
            "Round 1 created and tournament started",
            entity="Tournament",
            entity_id=tournament_id,
            user_id=actor.user_id,
        )
        log.info(
            "Tournament %s started: %s players, %s matches, %s byes, %s rounds",
            tournament_id,
            len(players),
            created,
            len(byes),
            total_rounds,
        )
        return AdvanceResult(
            advanced=True,
            message="Round 1 created",
            stage=MatchStage.GROUP,
            round_number=1,
            matches_created=created,
            byes=tuple(bye.player for bye in byes),
        )

    # ----- Swiss rounds -----
    def handle_next_round(self, tournament_id: str) -> AdvanceResult:
        tournament = self._storage.require_tournament(tournament_id)
        if tournament.status in (TournamentStatus.KNOCKOUT, TournamentStatus.FINISHED):
            return self._noop(
                tournament_id, "already in knockout or finished, next round skipped"
            )
        if tournament.status is not TournamentStatus.GROUPS:
            return self._noop(tournament_id, "not started, next round skipped")

        current_round = tournament.current_round
        matches = self._storage.list_matches(
            tournament_id, round_number=current_round, stage=MatchStage.GROUP
        )
        if any(match.status is not MatchStatus.FINISHED for match in matches):
            return self._noop(
                tournament_id,
                f"round {current_round} still has matches in progress",
                round_number=current_round,
            )

        if tournament.total_rounds and current_round >= tournament.total_rounds:
            return self.start_knockout_stage(tournament_id)

        standings = order_standings(self._storage.list_standings(tournament_id))
        if not standings:
            return self._noop(tournament_id, "no players to pair for the next round")

        next_round = current_round + 1
        if not self._storage.claim_advancement(
            tournament_id, f"GROUP#ROUND#{next_round:02d}", utc_now_iso()
        ):
            return self._noop(
                tournament_id,
                f"round {next_round} was already generated",
                round_number=next_round,
            )

        pairings, byes = split_round(generate_swiss_pairings(standings, 1)[0])
        for bye in byes:
            log.info(
                "Tournament %s: %s receives a bye in round %s",
                tournament_id,
                bye.player,
                next_round,
            )
        created = self._create_matches(
            tournament_id,
            MatchStage.GROUP,
            next_round,
            [(pairing.player_a, pairing.player_b) for pairing in pairings],
        )
        self._storage.increment_current_round(tournament_id)
        log.info("Tournament %s: round %s created", tournament_id, next_round)
        return AdvanceResult(
            advanced=True,
            message=f"Round {next_round} created",
            stage=MatchStage.GROUP,
            round_number=next_round,
            matches_created=created,
            byes=tuple(bye.player for bye in byes),
        )

    # ----- Knockout -----
    def start_knockout_stage(self, tournament_id: str) -> AdvanceResult:
        tournament = self._storage.require_tournament(tournament_id)
        if self._storage.count_matches(tournament_id, MatchStage.QUARTER_FINAL):
            return self._noop(tournament_id, "knockout already started")
        if tournament.status is not TournamentStatus.GROUPS:
            return self._noop(
                tournament_id,
                f"knockout cannot start from {tournament.status.value}",
            )

        ranked = order_standings(self._storage.list_standings(tournament_id))
        qualified = ranked[: self._config.knockout_size]
        if len(qualified) < 2:
            raise InvalidStateError("Not enough players to start the knockout stage")
        pairs = seed_knockout_pairs(qualified)
        if not pairs:
            raise InvalidStateError("Could not form any knockout pairing")
        stage = opening_knockout_stage(len(qualified), len(pairs))

        if not self._storage.claim_advancement(
            tournament_id, "KNOCKOUT", utc_now_iso()
        ):
            return self._noop(tournament_id, "knockout already started")

        created = self._create_matches(tournament_id, stage, 1, pairs)
        self._storage.transition_tournament(
            tournament_id,
            TournamentStatus.GROUPS,
            TournamentStatus.KNOCKOUT,
            current_round=1,
        )
        self._audit.record(
            tournament_id,
            f"Knockout started ({stage.value}) with {len(pairs)} matches",
            entity="Tournament",
            entity_id=tournament_id,
            user_id=None,
        )
        log.info(
            "Tournament %s: knockout started at %s with %s matches",
            tournament_id,
            stage.value,
            len(pairs),
        )
        return AdvanceResult(
            advanced=True,
            message=f"Knockout started ({stage.value})",
            stage=stage,
            round_number=1,
            matches_created=created,
        )

    def advance_knockout_stage(
        self, tournament_id: str, stage: MatchStage
    ) -> AdvanceResult:
        """Create the stage that follows ``stage`` once all its matches are done.

        Called with ``FINAL`` it finishes the tournament when the final is
        decided, or builds the final from the semi-final winners when no final
        exists yet.
        """
        if not stage.is_knockout:
            raise InvalidValueError("Only knockout stages can be advanced")
        tournament = self._storage.require_tournament(tournament_id)
        if tournament.status is TournamentStatus.FINISHED:
            return self._noop(tournament_id, "already finished, stage advance skipped")

        if stage is MatchStage.FINAL and self._storage.list_matches(
            tournament_id, stage=MatchStage.FINAL, status=MatchStatus.FINISHED
        ):
            return self.finish_tournament(tournament_id)

        if self._storage.count_matches(tournament_id, MatchStage.FINAL):
            return self._noop(tournament_id, "final already exists")

        if stage is MatchStage.FINAL:
            source, next_stage = stage.previous_stage(), MatchStage.FINAL
        else:
            source, next_stage = stage, stage.next_stage()
        if next_stage is None:
            return self.finish_tournament(tournament_id)

        if self._storage.count_matches(tournament_id, next_stage):
            return self._noop(
                tournament_id, f"{next_stage.value} already created", stage=next_stage
            )

        source_matches = self._storage.list_matches(tournament_id, stage=source)
        if not source_matches or any(
            match.status is not MatchStatus.FINISHED for match in source_matches
        ):
            return self._noop(
                tournament_id, f"waiting for {source.value} matches to finish"
            )
        winners = [match.winner_id for match in source_matches if match.winner_id]
        if len(winners) < 2:
            return self._noop(
                tournament_id, f"not enough {source.value} winners to advance"
            )

        pairs = [(winners[i], winners[i + 1]) for i in range(0, len(winners) - 1, 2)]
        if len(winners) % 2:
            log.warning(
                "Tournament %s: %s has no opponent after %s and is dropped",
                tournament_id,
                winners[-1],
                source.value,
            )
        if len(pairs) == 1:
            next_stage = MatchStage.FINAL

        if not self._storage.claim_advancement(
            tournament_id, f"FROM#{source.value}", utc_now_iso()
        ):
            return self._noop(tournament_id, f"{source.value} was already advanced")

        created = self._create_matches(tournament_id, next_stage, 1, pairs)
        log.info(
            "Tournament %s: created %s matches for %s",
            tournament_id,
            created,
            next_stage.value,
        )
        return AdvanceResult(
            advanced=True,
            message=f"{next_stage.value} created",
            stage=next_stage,
            round_number=1,
            matches_created=created,
        )

    # ----- Finish -----
    def finish_tournament(self, tournament_id: str) -> AdvanceResult:
        tournament = self._storage.require_tournament(tournament_id)
        finals = self._storage.list_matches(
            tournament_id, stage=MatchStage.FINAL, status=MatchStatus.FINISHED
        )
        champion_id = next(
            (match.winner_id for match in finals if match.winner_id), None
        )
        if champion_id is None:
            return self._noop(tournament_id, "no champion yet, tournament not finished")
        if tournament.status is TournamentStatus.FINISHED:
            return self._noop(
                tournament_id, "already finished", champion_id=champion_id
            )

        try:
            self._storage.transition_tournament(
                tournament_id,
                tournament.status,
                TournamentStatus.FINISHED,
                finished_at=utc_now_iso(),
                current_round=0,
            )
        except InvalidStateError as exc:
            return self._noop(tournament_id, f"not finished: {exc}")

        self._storage.increment_standing(
            tournament_id,
            champion_id,
            points=self._config.champion_points,
            wins=1,
        )
        self._audit.record(
            tournament_id,
            f"Tournament finished, champion: {champion_id}",
            entity="Tournament",
            entity_id=tournament_id,
            user_id=champion_id,
        )
        log.info("Tournament %s finished, champion %s", tournament_id, champion_id)
        return AdvanceResult(
            advanced=True,
            message="Tournament finished",
            stage=MatchStage.FINAL,
            champion_id=champion_id,
        )


__all__ = [
    "AdvanceResult",
    "StageAdvancer",
    "compute_total_rounds",
    "opening_knockout_stage",
    "seed_knockout_pairs",
]

"""Entry point that wires storage, protocol and stage advancement together."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from .advancement import AdvanceResult, StageAdvancer
from .audit import AuditLog
from .config import EngineConfig
from .games import GameConfirmation, MatchGameProtocol
from .matches import MatchStateMachine
from .models import (
    Actor,
    Enrollment,
    GameStatus,
    Match,
    MatchGame,
    MatchStatus,
    Tournament,
    TournamentListing,
    TournamentStatus,
    utc_now_iso,
)
from .standings import RankedStanding, find_champion, rank_standings
from .storage import TournamentStorage
from .validation import (
    ForbiddenError,
    InvalidStateError,
    validate_slots_limit,
    validate_title,
    validate_total_rounds,
)

log = logging.getLogger("tournament-core")


@dataclass(slots=True)
class PlayerTournaments:
    enrolled: list[TournamentListing] = field(default_factory=list)
    available: list[TournamentListing] = field(default_factory=list)


class TournamentLifecycle:
    def __init__(
        self, storage: TournamentStorage, config: EngineConfig | None = None
    ) -> None:
        self._storage = storage
        self._config = config or EngineConfig()
        self._audit = AuditLog(storage, enabled=self._config.audit_enabled)
        self._advancer = StageAdvancer(storage, self._config, self._audit)
        self._matches = MatchStateMachine(storage, self._advancer, self._config)
        self._games = MatchGameProtocol(
            storage, self._matches, self._config, self._audit
        )

    @property
    def advancer(self) -> StageAdvancer:
        return self._advancer

    # ----- Tournament setup -----
    def create_tournament(
        self,
        actor: Actor,
        title: str,
        *,
        description: str = "",
        slots_limit: int | None = None,
        total_rounds: int | None = None,
        is_public: bool = True,
        open_enrollment: bool = False,
        tournament_id: str | None = None,
    ) -> Tournament:
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can create tournaments")
        tournament = Tournament(
            tournament_id=tournament_id or uuid.uuid4().hex,
            title=validate_title(title),
            admin_id=actor.user_id,
            status=TournamentStatus.OPEN if open_enrollment else TournamentStatus.DRAFT,
            total_rounds=validate_total_rounds(total_rounds),
            slots_limit=validate_slots_limit(slots_limit),
            description=description.strip(),
            is_public=is_public,
            created_at=utc_now_iso(),
        )
        self._storage.save_tournament(tournament)
        log.info(
            "Tournament %s created by %s (%s)",
            tournament.tournament_id,
            actor.user_id,
            tournament.status.value,
        )
        return tournament

    def get_tournament(self, tournament_id: str) -> Tournament:
        return self._storage.require_tournament(tournament_id)

    def list_tournaments(
        self, actor: Actor, status: TournamentStatus | None = None
    ) -> list[TournamentListing]:
        """Tournaments visible to ``actor``, optionally of a single status.

        Administrators see the tournaments they administer. Players see public
        tournaments plus private ones they are enrolled in.
        """
        listings = self._storage.list_tournaments(status)
        if actor.is_admin:
            return [entry for entry in listings if entry.admin_id == actor.user_id]
        return [
            entry
            for entry in listings
            if entry.is_public or self._is_enrolled(entry.tournament_id, actor)
        ]

    def list_my_tournaments(
        self, actor: Actor, status: TournamentStatus | None = None
    ) -> PlayerTournaments:
        """Split the tournaments visible to ``actor`` by their enrollment."""
        result = PlayerTournaments()
        for entry in self.list_tournaments(actor, status):
            if self._is_enrolled(entry.tournament_id, actor):
                result.enrolled.append(entry)
            else:
                result.available.append(entry)
        return result

    def _is_enrolled(self, tournament_id: str, actor: Actor) -> bool:
        return self._storage.get_enrollment(tournament_id, actor.user_id) is not None

    def open_enrollment(self, tournament_id: str, actor: Actor) -> Tournament:
        tournament = self._storage.require_tournament(tournament_id)
        if tournament.admin_id != actor.user_id:
            raise ForbiddenError("Only the tournament administrator can open it")
        if tournament.status is not TournamentStatus.DRAFT:
            raise InvalidStateError(
                f"Enrollment cannot open from {tournament.status.value}"
            )
        updated = self._storage.transition_tournament(
            tournament_id, TournamentStatus.DRAFT, TournamentStatus.OPEN
        )
        self._audit.record(
            tournament_id,
            "Enrollment opened",
            entity="Tournament",
            entity_id=tournament_id,
            user_id=actor.user_id,
        )
        return updated

    def enroll(self, tournament_id: str, actor: Actor) -> Enrollment:
        """Enroll ``actor`` while the tournament is OPEN and below its limit.

        The slot is reserved on the tournament's counter before the enrollment
        is written, so concurrent callers cannot exceed ``slots_limit``.
        """
        tournament = self._storage.require_tournament(tournament_id)
        if tournament.status is not TournamentStatus.OPEN:
            raise InvalidStateError("Enrollment is not open for this tournament")
        if self._storage.get_enrollment(tournament_id, actor.user_id) is not None:
            raise InvalidStateError(f"{actor.user_id} is already enrolled")
        reserved = self._storage.reserve_enrollment_slot(
            tournament_id, tournament.slots_limit
        )
        if reserved is None:
            raise InvalidStateError("Tournament is full or no longer open")
        enrollment = Enrollment(
            tournament_id=tournament_id,
            user_id=actor.user_id,
            joined_at=utc_now_iso(),
        )
        if not self._storage.save_enrollment(enrollment):
            self._storage.release_enrollment_slot(tournament_id)
            raise InvalidStateError(f"{actor.user_id} is already enrolled")
        log.info(
            "%s enrolled in tournament %s (%s/%s)",
            actor.user_id,
            tournament_id,
            reserved.enrolled_count,
            tournament.slots_limit or "-",
        )
        return enrollment

    def list_enrollments(self, tournament_id: str) -> list[Enrollment]:
        self._storage.require_tournament(tournament_id)
        return self._storage.list_enrollments(tournament_id)

    def start_tournament(self, tournament_id: str, actor: Actor) -> AdvanceResult:
        return self._advancer.start_tournament(tournament_id, actor)

    # ----- Games -----
    def create_game(
        self,
        tournament_id: str,
        match_id: str,
        actor: Actor,
        code: str | None = None,
    ) -> MatchGame:
        return self._games.create_game(tournament_id, match_id, actor, code)

    def accept_game(
        self, tournament_id: str, match_id: str, index: int, actor: Actor
    ) -> MatchGame:
        return self._games.accept_game(tournament_id, match_id, index, actor)

    def report_game(
        self,
        tournament_id: str,
        match_id: str,
        index: int,
        winner_id: str,
        actor: Actor,
    ) -> MatchGame:
        return self._games.report_game(
            tournament_id, match_id, index, winner_id, actor
        )

    def confirm_game(
        self, tournament_id: str, match_id: str, index: int, actor: Actor
    ) -> GameConfirmation:
        return self._games.confirm_game(tournament_id, match_id, index, actor)

    def update_game_status(
        self,
        tournament_id: str,
        match_id: str,
        index: int,
        status: GameStatus,
        actor: Actor,
    ) -> MatchGame:
        return self._games.update_game_status(
            tournament_id, match_id, index, status, actor
        )

    def list_games(self, tournament_id: str, match_id: str) -> list[MatchGame]:
        return self._games.list_games(tournament_id, match_id)

    # ----- Read side -----
    def get_standings(self, tournament_id: str) -> list[RankedStanding]:
        """Ranked standings; a finished tournament lists its champion first."""
        tournament = self._storage.require_tournament(tournament_id)
        champion_id = None
        if tournament.status is TournamentStatus.FINISHED:
            champion_id = find_champion(
                tournament, self._storage.list_matches(tournament_id)
            )
        return rank_standings(
            self._storage.list_standings(tournament_id), champion_id=champion_id
        )

    def list_matches(self, tournament_id: str) -> list[Match]:
        self._storage.require_tournament(tournament_id)
        return self._storage.list_matches(tournament_id)

    def list_player_matches(
        self,
        tournament_id: str,
        user_id: str,
        status: MatchStatus | None = None,
    ) -> list[Match]:
        self._storage.require_tournament(tournament_id)
        return [
            match
            for match in self._storage.list_matches(tournament_id, status=status)
            if match.has_participant(user_id)
        ]


__all__ = ["PlayerTournaments", "TournamentLifecycle"]

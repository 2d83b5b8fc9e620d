"""Report/confirm protocol for the individual games of a best-of-three match.

A match plays at most one open game at a time. The participant who opens a
game becomes its host: the other side accepts it, the host reports the winner
and the other side confirms. Confirmation credits the reported winner and
finishes the match once a side reaches the configured number of game wins.
Either player may cancel an open game before a result is reported, which
frees the match for its next game.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .advancement import AdvanceResult
from .audit import AuditLog
from .config import EngineConfig
from .matches import MatchStateMachine
from .models import (
    Actor,
    GameStatus,
    Match,
    MatchGame,
    MatchStatus,
    utc_now_iso,
)
from .storage import TournamentStorage
from .validation import (
    ForbiddenError,
    InvalidStateError,
    InvalidValueError,
    NotFoundError,
    normalize_game_code,
)

log = logging.getLogger("tournament-core")

GAME_ENTITY = "MatchGame"


@dataclass(slots=True)
class GameConfirmation:
    game: MatchGame
    match: Match
    match_finished: bool = False
    advancements: list[AdvanceResult] = field(default_factory=list)


class MatchGameProtocol:
    def __init__(
        self,
        storage: TournamentStorage,
        match_machine: MatchStateMachine,
        config: EngineConfig | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self._storage = storage
        self._match_machine = match_machine
        self._config = config or EngineConfig()
        self._audit = audit or AuditLog(storage, enabled=self._config.audit_enabled)

    def _require_game(
        self, tournament_id: str, match_id: str, index: int
    ) -> MatchGame:
        game = self._storage.get_game(tournament_id, match_id, index)
        if game is None:
            raise NotFoundError(f"Game {index} of match {match_id} not found")
        return game

    def _entity_id(self, game: MatchGame) -> str:
        return f"{game.match_id}#{game.index}"

    def create_game(
        self,
        tournament_id: str,
        match_id: str,
        actor: Actor,
        code: str | None = None,
    ) -> MatchGame:
        """Open the next game of a match with ``actor`` as its host."""
        match = self._storage.require_match(tournament_id, match_id)
        if match.status is MatchStatus.FINISHED:
            raise InvalidStateError(f"Match {match_id} is already finished")
        if match.is_decided(self._config.games_to_win):
            raise InvalidStateError(f"Match {match_id} is already decided")

        games = self._storage.list_games(tournament_id, match_id)
        if any(game.status is GameStatus.IN_PROGRESS for game in games):
            raise InvalidStateError(f"Match {match_id} has a game in progress")
        if any(game.status.is_active for game in games):
            raise InvalidStateError(
                f"Match {match_id} still has a game pending or awaiting confirmation"
            )
        if not match.has_participant(actor.user_id):
            raise ForbiddenError("Only the players of a match can open its games")

        normalized = normalize_game_code(code) if code else None
        index = len(games) + 1
        if not self._storage.claim_active_game_slot(tournament_id, match_id, index):
            raise InvalidStateError(f"Match {match_id} already has an open game")

        game = MatchGame(
            tournament_id=tournament_id,
            match_id=match_id,
            index=index,
            host_id=actor.user_id,
            code=normalized,
            created_at=utc_now_iso(),
        )
        if not self._storage.create_game(game):
            self._storage.release_active_game_slot(tournament_id, match_id)
            raise InvalidStateError(f"Game {index} of match {match_id} already exists")

        if match.status is MatchStatus.SCHEDULED:
            self._storage.transition_match(match, MatchStatus.DISPUTED)

        log.info(
            "Game %s of match %s opened by %s", index, match_id, actor.user_id
        )
        return game

    def accept_game(
        self, tournament_id: str, match_id: str, index: int, actor: Actor
    ) -> MatchGame:
        game = self._require_game(tournament_id, match_id, index)
        if game.status is not GameStatus.PENDING:
            raise InvalidStateError(
                f"Game {index} is {game.status.value}, not PENDING"
            )
        match = self._storage.require_match(tournament_id, match_id)
        if not match.has_participant(actor.user_id):
            raise ForbiddenError("Only the players of a match can accept its games")
        if game.host_id == actor.user_id:
            raise ForbiddenError("The host cannot accept their own game")

        updated = self._storage.transition_game(game, GameStatus.IN_PROGRESS)
        self._audit.record(
            tournament_id,
            "Game accepted",
            entity=GAME_ENTITY,
            entity_id=self._entity_id(game),
            user_id=actor.user_id,
        )
        return updated

    def report_game(
        self,
        tournament_id: str,
        match_id: str,
        index: int,
        winner_id: str,
        actor: Actor,
    ) -> MatchGame:
        game = self._require_game(tournament_id, match_id, index)
        if game.host_id != actor.user_id:
            raise ForbiddenError("Only the host can report the result")
        if game.status is not GameStatus.IN_PROGRESS:
            raise InvalidStateError(f"Game {index} is not in progress")
        match = self._storage.require_match(tournament_id, match_id)
        if not match.has_participant(winner_id):
            raise InvalidValueError(f"{winner_id} does not play in match {match_id}")

        updated = self._storage.transition_game(
            game,
            GameStatus.WAITING_CONFIRMATION,
            winner_id=winner_id,
            reported_at=utc_now_iso(),
        )
        self._audit.record(
            tournament_id,
            f"Result reported: {winner_id}",
            entity=GAME_ENTITY,
            entity_id=self._entity_id(game),
            user_id=actor.user_id,
        )
        return updated

    def confirm_game(
        self, tournament_id: str, match_id: str, index: int, actor: Actor
    ) -> GameConfirmation:
        """Confirm a reported game and credit the reported winner.

        Only the side opposite the host may confirm, whoever won the game.
        """
        game = self._require_game(tournament_id, match_id, index)
        if game.status is not GameStatus.WAITING_CONFIRMATION:
            raise InvalidStateError(
                f"Game {index} is {game.status.value}, not WAITING_CONFIRMATION"
            )
        match = self._storage.require_match(tournament_id, match_id)
        if actor.user_id != match.opponent_of(game.host_id):
            raise ForbiddenError("Only the host's opponent can confirm the result")
        if game.winner_id is None:
            raise InvalidStateError(f"Game {index} has no reported winner")

        confirmed = self._storage.transition_game(
            game, GameStatus.CONFIRMED, confirmed_at=utc_now_iso()
        )

        cap = self._config.games_to_win
        score_a, score_b = match.score_a, match.score_b
        if game.winner_id == match.a_id:
            score_a = min(score_a + 1, cap)
        else:
            score_b = min(score_b + 1, cap)
        match = self._storage.set_match_scores(match, score_a, score_b)
        self._storage.release_active_game_slot(tournament_id, match_id)
        self._audit.record(
            tournament_id,
            f"Result confirmed: {game.winner_id}",
            entity=GAME_ENTITY,
            entity_id=self._entity_id(game),
            user_id=actor.user_id,
        )
        log.info(
            "Game %s of match %s confirmed, score %s-%s",
            index,
            match_id,
            match.score_a,
            match.score_b,
        )

        result = GameConfirmation(game=confirmed, match=match)
        if match.is_decided(cap):
            result.advancements = self._match_machine.finish_match(match)
            result.match = self._storage.require_match(tournament_id, match_id)
            result.match_finished = result.match.status is MatchStatus.FINISHED
        return result

    def update_game_status(
        self,
        tournament_id: str,
        match_id: str,
        index: int,
        status: GameStatus,
        actor: Actor,
    ) -> MatchGame:
        """Move a game to ``status`` on behalf of one of the match players.

        ``IN_PROGRESS`` follows the accept rules and ``CANCELLED`` closes a
        game that has no reported result, releasing the match's open-game
        slot. Results only change through ``report_game``/``confirm_game``.
        """
        game = self._require_game(tournament_id, match_id, index)
        match = self._storage.require_match(tournament_id, match_id)
        if not match.has_participant(actor.user_id):
            raise ForbiddenError("Only the players of a match can change its games")
        if status in (GameStatus.WAITING_CONFIRMATION, GameStatus.CONFIRMED):
            raise InvalidValueError(
                f"{status.value} is only set by reporting or confirming a result"
            )
        if not game.status.can_transition_to(status):
            raise InvalidStateError(
                f"Game {index} cannot move from {game.status.value} to {status.value}"
            )
        if status is GameStatus.IN_PROGRESS and game.host_id == actor.user_id:
            raise ForbiddenError("The host cannot accept their own game")

        updated = self._storage.transition_game(game, status)
        if status is GameStatus.CANCELLED:
            self._storage.release_active_game_slot(tournament_id, match_id)
        self._audit.record(
            tournament_id,
            f"Game status updated to {status.value}",
            entity=GAME_ENTITY,
            entity_id=self._entity_id(game),
            user_id=actor.user_id,
        )
        log.info(
            "Game %s of match %s moved to %s by %s",
            index,
            match_id,
            status.value,
            actor.user_id,
        )
        return updated

    def list_games(self, tournament_id: str, match_id: str) -> list[MatchGame]:
        self._storage.require_match(tournament_id, match_id)
        return self._storage.list_games(tournament_id, match_id)


__all__ = ["GameConfirmation", "MatchGameProtocol"]

from __future__ import annotations

import logging

from .advancement import AdvanceResult, StageAdvancer
from .config import EngineConfig
from .models import Match, MatchStage, MatchStatus, utc_now_iso
from .storage import TournamentStorage
from .validation import InvalidStateError

log = logging.getLogger("tournament-core")


class MatchStateMachine:
    """Finalizes decided matches and hands over to the stage advancer."""

    def __init__(
        self,
        storage: TournamentStorage,
        advancer: StageAdvancer,
        config: EngineConfig | None = None,
    ) -> None:
        self._storage = storage
        self._advancer = advancer
        self._config = config or EngineConfig()

    def finish_match(self, match: Match) -> list[AdvanceResult]:
        """Mark a decided match FINISHED and cascade into stage advancement.

        Returns the advancement results produced by the cascade. A match that
        another caller already finished yields an empty list and no standings
        change.
        """
        if match.status is MatchStatus.FINISHED:
            return []
        if not match.is_decided(self._config.games_to_win):
            raise InvalidStateError(f"Match {match.match_id} is not decided yet")
        if match.score_a == match.score_b:
            raise InvalidStateError(f"Match {match.match_id} has no leader")
        winner_id = match.a_id if match.score_a > match.score_b else match.b_id

        finished = self._storage.transition_match(
            match,
            MatchStatus.FINISHED,
            winner_id=winner_id,
            decided_at=utc_now_iso(),
        )
        if finished is None:
            log.info(
                "Match %s of tournament %s was already finished",
                match.match_id,
                match.tournament_id,
            )
            return []

        loser_id = finished.loser_id()
        tournament_id = finished.tournament_id
        self._storage.increment_standing(
            tournament_id,
            winner_id,
            points=self._config.win_points,
            wins=1,
        )
        self._storage.increment_standing(
            tournament_id,
            loser_id,
            points=self._config.loss_points,
            losses=1,
        )
        log.info(
            "Match %s finished %s-%s, winner %s",
            finished.match_id,
            finished.score_a,
            finished.score_b,
            winner_id,
        )

        results = [self._advancer.handle_next_round(tournament_id)]
        if finished.stage in (MatchStage.QUARTER_FINAL, MatchStage.SEMI_FINAL):
            results.append(
                self._advancer.advance_knockout_stage(tournament_id, finished.stage)
            )
        elif finished.stage is MatchStage.FINAL:
            results.append(self._advancer.finish_tournament(tournament_id))
        return results


__all__ = ["MatchStateMachine"]

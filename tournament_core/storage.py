from __future__ import annotations

from collections.abc import Iterator, Mapping

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from .models import (
    AuditEvent,
    Enrollment,
    GameStatus,
    Match,
    MatchGame,
    MatchStage,
    MatchStatus,
    Standing,
    Tournament,
    TournamentListing,
    TournamentStatus,
)
from .validation import InvalidStateError, NotFoundError

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
ITEM_ABSENT = "attribute_not_exists(pk)"
ITEM_PRESENT = "attribute_exists(pk)"
STATUS_MATCHES = "#status = :expected_status"


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == CONDITIONAL_CHECK_FAILED


def _build_update(
    set_values: Mapping[str, object] | None = None,
    add_values: Mapping[str, int] | None = None,
) -> tuple[str, dict[str, str], dict[str, object]]:
    names: dict[str, str] = {}
    values: dict[str, object] = {}
    clauses: list[str] = []
    if set_values:
        parts = []
        for field, value in set_values.items():
            names[f"#{field}"] = field
            values[f":{field}"] = value
            parts.append(f"#{field} = :{field}")
        clauses.append("SET " + ", ".join(parts))
    if add_values:
        parts = []
        for field, value in add_values.items():
            names[f"#{field}"] = field
            values[f":{field}"] = value
            parts.append(f"#{field} :{field}")
        clauses.append("ADD " + ", ".join(parts))
    if not clauses:
        raise ValueError("Nothing to update")
    return " ".join(clauses), names, values


class TournamentStorage:
    """Single-table DynamoDB access for tournaments and their children.

    Every item of a tournament shares the partition key ``TOURNAMENT#<id>``;
    the sort key identifies the entity (``META``, ``STANDING#``, ``MATCH#``,
    ``GAME#``, ``ENROLLMENT#``, ``AUDIT#`` and the ``SLOT#``/``ADVANCE#``
    guard items). A separate ``TOURNAMENTS`` partition holds one directory
    entry per tournament, keyed by status, for listing.
    """

    ACTIVE_GAME_SLOT_TEMPLATE = "SLOT#GAME#%s"
    ADVANCE_TOKEN_TEMPLATE = "ADVANCE#%s"

    def __init__(self, table) -> None:
        self._table = table

    def ensure_table(self) -> None:
        if self._table is None:
            raise RuntimeError("Tournament table is not configured")

    # ----- Low level helpers -----
    def _query_pages(self, pk: str, prefix: str, **kwargs: object) -> Iterator[dict]:
        """Yield every page of a ``begins_with`` query on ``pk``."""
        self.ensure_table()
        query_kwargs: dict[str, object] = {
            "KeyConditionExpression": Key("pk").eq(pk) & Key("sk").begins_with(prefix),
            **kwargs,
        }
        while True:
            resp = self._table.query(**query_kwargs)
            yield resp
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                break
            query_kwargs["ExclusiveStartKey"] = last_key

    def _query_items(self, pk: str, prefix: str) -> list[dict]:
        items: list[dict] = []
        for page in self._query_pages(pk, prefix, Select="ALL_ATTRIBUTES"):
            items.extend(page.get("Items", []))
        return items

    def _query_prefix(self, tournament_id: str, prefix: str) -> list[dict]:
        return self._query_items(Tournament.PK_TEMPLATE % tournament_id, prefix)

    def _put_if_absent(self, item: dict[str, object]) -> bool:
        self.ensure_table()
        try:
            self._table.put_item(Item=item, ConditionExpression=ITEM_ABSENT)
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return False
            raise
        return True

    def _update(
        self,
        key: dict[str, str],
        *,
        set_values: Mapping[str, object] | None = None,
        add_values: Mapping[str, int] | None = None,
        expected_status: str | None = None,
        below: Mapping[str, int] | None = None,
    ) -> dict[str, object]:
        """Apply a targeted update and return the new item.

        The item must exist; with ``expected_status`` its current status must
        match too, and every field named in ``below`` must currently be less
        than the given bound. A failed condition raises the ``ClientError``.
        """
        self.ensure_table()
        expression, names, values = _build_update(set_values, add_values)
        conditions = [ITEM_PRESENT]
        if expected_status is not None:
            names["#status"] = "status"
            values[":expected_status"] = expected_status
            conditions.append(STATUS_MATCHES)
        for field, bound in (below or {}).items():
            names[f"#{field}"] = field
            values[f":{field}_bound"] = bound
            conditions.append(f"#{field} < :{field}_bound")
        resp = self._table.update_item(
            Key=key,
            UpdateExpression=expression,
            ConditionExpression=" AND ".join(conditions),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
        return dict(resp.get("Attributes", {}))

    # ----- Tournaments -----
    def get_tournament(self, tournament_id: str) -> Tournament | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Tournament.key(tournament_id))
        item = resp.get("Item")
        if not item:
            return None
        return Tournament.from_item(item)

    def require_tournament(self, tournament_id: str) -> Tournament:
        tournament = self.get_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    def save_tournament(self, tournament: Tournament) -> None:
        previous = self.get_tournament(tournament.tournament_id)
        self._table.put_item(Item=tournament.to_item())
        self._table.put_item(
            Item=TournamentListing.from_tournament(tournament).to_item()
        )
        if previous is not None and previous.status is not tournament.status:
            self._table.delete_item(
                Key=TournamentListing.key(previous.status, tournament.tournament_id)
            )

    def transition_tournament(
        self,
        tournament_id: str,
        expected: TournamentStatus,
        target: TournamentStatus,
        **fields: object,
    ) -> Tournament:
        """Move a tournament forward, failing if another caller already did."""
        expected.ensure_transition(target)
        try:
            item = self._update(
                Tournament.key(tournament_id),
                set_values={"status": target.value, **fields},
                expected_status=expected.value,
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise InvalidStateError(
                    f"Tournament {tournament_id} is no longer {expected.value}"
                ) from exc
            raise
        tournament = Tournament.from_item(item)
        self._table.put_item(
            Item=TournamentListing.from_tournament(tournament).to_item()
        )
        self._table.delete_item(Key=TournamentListing.key(expected, tournament_id))
        return tournament

    def list_tournaments(
        self, status: TournamentStatus | None = None
    ) -> list[TournamentListing]:
        """Directory entries of every tournament, optionally of one status."""
        items = self._query_items(
            TournamentListing.PK_VALUE, TournamentListing.status_prefix(status)
        )
        listings = [TournamentListing.from_item(item) for item in items]
        listings.sort(key=lambda entry: (entry.created_at, entry.tournament_id))
        return listings

    def increment_current_round(self, tournament_id: str, by: int = 1) -> Tournament:
        item = self._update(
            Tournament.key(tournament_id), add_values={"current_round": by}
        )
        return Tournament.from_item(item)

    # ----- Enrollments -----
    def reserve_enrollment_slot(
        self, tournament_id: str, slots_limit: int | None = None
    ) -> Tournament | None:
        """Count one more enrollment while the tournament is OPEN and not full.

        Returns ``None`` when the tournament left OPEN or ``slots_limit`` is
        already reached; the counter is only ever raised under that condition.
        """
        below = {"enrolled_count": slots_limit} if slots_limit is not None else None
        try:
            item = self._update(
                Tournament.key(tournament_id),
                add_values={"enrolled_count": 1},
                expected_status=TournamentStatus.OPEN.value,
                below=below,
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        return Tournament.from_item(item)

    def release_enrollment_slot(self, tournament_id: str) -> Tournament:
        item = self._update(
            Tournament.key(tournament_id), add_values={"enrolled_count": -1}
        )
        return Tournament.from_item(item)

    def save_enrollment(self, enrollment: Enrollment) -> bool:
        """Store an enrollment; returns ``False`` if the user was enrolled."""
        return self._put_if_absent(enrollment.to_item())

    def get_enrollment(self, tournament_id: str, user_id: str) -> Enrollment | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Enrollment.key(tournament_id, user_id))
        item = resp.get("Item")
        if not item:
            return None
        return Enrollment.from_item(item)

    def list_enrollments(self, tournament_id: str) -> list[Enrollment]:
        items = self._query_prefix(tournament_id, Enrollment.SK_PREFIX)
        enrollments = [Enrollment.from_item(item) for item in items]
        enrollments.sort(key=lambda entry: (entry.joined_at, entry.user_id))
        return enrollments

    # ----- Standings -----
    def reset_standing(self, tournament_id: str, user_id: str) -> Standing:
        self.ensure_table()
        standing = Standing(tournament_id=tournament_id, user_id=user_id)
        self._table.put_item(Item=standing.to_item())
        return standing

    def get_standing(self, tournament_id: str, user_id: str) -> Standing | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Standing.key(tournament_id, user_id))
        item = resp.get("Item")
        if not item:
            return None
        return Standing.from_item(item)

    def list_standings(self, tournament_id: str) -> list[Standing]:
        items = self._query_prefix(tournament_id, Standing.SK_PREFIX)
        return [Standing.from_item(item) for item in items]

    def increment_standing(
        self,
        tournament_id: str,
        user_id: str,
        *,
        points: int = 0,
        wins: int = 0,
        losses: int = 0,
    ) -> Standing:
        deltas = {
            field: value
            for field, value in (("points", points), ("wins", wins), ("losses", losses))
            if value
        }
        if not deltas:
            standing = self.get_standing(tournament_id, user_id)
            if standing is None:
                raise NotFoundError(f"No standing for {user_id} in {tournament_id}")
            return standing
        try:
            item = self._update(
                Standing.key(tournament_id, user_id), add_values=deltas
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise NotFoundError(
                    f"No standing for {user_id} in {tournament_id}"
                ) from exc
            raise
        return Standing.from_item(item)

    # ----- Matches -----
    def create_match(self, match: Match) -> bool:
        """Insert a match unless one with the same natural id exists."""
        return self._put_if_absent(match.to_item())

    def get_match(self, tournament_id: str, match_id: str) -> Match | None:
        self.ensure_table()
        resp = self._table.get_item(Key=Match.key(tournament_id, match_id))
        item = resp.get("Item")
        if not item:
            return None
        return Match.from_item(item)

    def require_match(self, tournament_id: str, match_id: str) -> Match:
        match = self.get_match(tournament_id, match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def list_matches(
        self,
        tournament_id: str,
        *,
        round_number: int | None = None,
        stage: MatchStage | None = None,
        status: MatchStatus | None = None,
    ) -> list[Match]:
        items = self._query_prefix(tournament_id, Match.SK_PREFIX)
        matches = [Match.from_item(item) for item in items]
        if round_number is not None:
            matches = [match for match in matches if match.round == round_number]
        if stage is not None:
            matches = [match for match in matches if match.stage is stage]
        if status is not None:
            matches = [match for match in matches if match.status is status]
        matches.sort(key=lambda match: (match.round, match.match_id))
        return matches

    def count_matches(self, tournament_id: str, stage: MatchStage) -> int:
        return len(self.list_matches(tournament_id, stage=stage))

    def transition_match(
        self,
        match: Match,
        target: MatchStatus,
        **fields: object,
    ) -> Match | None:
        """Move a match to ``target``; ``None`` if it already left its status."""
        if not match.status.can_transition_to(target):
            raise InvalidStateError(
                f"Match cannot move from {match.status.value} to {target.value}"
            )
        try:
            item = self._update(
                Match.key(match.tournament_id, match.match_id),
                set_values={"status": target.value, **fields},
                expected_status=match.status.value,
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        return Match.from_item(item)

    def set_match_scores(self, match: Match, score_a: int, score_b: int) -> Match:
        item = self._update(
            Match.key(match.tournament_id, match.match_id),
            set_values={"score_a": score_a, "score_b": score_b},
        )
        return Match.from_item(item)

    # ----- Match games -----
    def create_game(self, game: MatchGame) -> bool:
        return self._put_if_absent(game.to_item())

    def get_game(
        self, tournament_id: str, match_id: str, index: int
    ) -> MatchGame | None:
        self.ensure_table()
        resp = self._table.get_item(Key=MatchGame.key(tournament_id, match_id, index))
        item = resp.get("Item")
        if not item:
            return None
        return MatchGame.from_item(item)

    def list_games(self, tournament_id: str, match_id: str) -> list[MatchGame]:
        items = self._query_prefix(
            tournament_id, MatchGame.SK_PREFIX_TEMPLATE % match_id
        )
        games = [MatchGame.from_item(item) for item in items]
        games.sort(key=lambda game: game.index)
        return games

    def transition_game(
        self,
        game: MatchGame,
        target: GameStatus,
        **fields: object,
    ) -> MatchGame:
        if not game.status.can_transition_to(target):
            raise InvalidStateError(
                f"Game cannot move from {game.status.value} to {target.value}"
            )
        try:
            item = self._update(
                MatchGame.key(game.tournament_id, game.match_id, game.index),
                set_values={"status": target.value, **fields},
                expected_status=game.status.value,
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise InvalidStateError(
                    f"Game {game.index} of match {game.match_id} changed concurrently"
                ) from exc
            raise
        return MatchGame.from_item(item)

    # ----- Exclusive slots -----
    def claim_active_game_slot(
        self, tournament_id: str, match_id: str, index: int
    ) -> bool:
        """Reserve the single open-game slot of a match for game ``index``."""
        return self._put_if_absent(
            {
                "pk": Tournament.PK_TEMPLATE % tournament_id,
                "sk": self.ACTIVE_GAME_SLOT_TEMPLATE % match_id,
                "game_index": index,
            }
        )

    def release_active_game_slot(self, tournament_id: str, match_id: str) -> None:
        self.ensure_table()
        self._table.delete_item(
            Key={
                "pk": Tournament.PK_TEMPLATE % tournament_id,
                "sk": self.ACTIVE_GAME_SLOT_TEMPLATE % match_id,
            }
        )

    def claim_advancement(
        self, tournament_id: str, token: str, claimed_at: str
    ) -> bool:
        """Reserve a one-time stage advancement such as ``GROUP#ROUND#02``."""
        return self._put_if_absent(
            {
                "pk": Tournament.PK_TEMPLATE % tournament_id,
                "sk": self.ADVANCE_TOKEN_TEMPLATE % token,
                "claimed_at": claimed_at,
            }
        )

    # ----- Audit -----
    def append_audit(self, event: AuditEvent) -> None:
        self.ensure_table()
        self._table.put_item(Item=event.to_item())

    def list_audit_events(self, tournament_id: str) -> list[AuditEvent]:
        items = self._query_prefix(tournament_id, AuditEvent.SK_PREFIX)
        return [AuditEvent.from_item(item) for item in items]


__all__ = ["TournamentStorage"]

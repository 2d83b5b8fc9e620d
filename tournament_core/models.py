from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ClassVar, Final

from .validation import InvalidStateError

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format (ms precision)."""
    return datetime.now(UTC).strftime(ISO_FORMAT)


def _optional_str(value: object) -> str | None:
    if value in (None, "", "None"):
        return None
    return str(value)


class Role(enum.Enum):
    ADMIN = "ADMIN"
    PLAYER = "PLAYER"


class TournamentStatus(enum.Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    GROUPS = "GROUPS"
    KNOCKOUT = "KNOCKOUT"
    FINISHED = "FINISHED"

    def can_transition_to(self, target: TournamentStatus) -> bool:
        return target in TOURNAMENT_TRANSITIONS[self]

    def ensure_transition(self, target: TournamentStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidStateError(
                f"Tournament cannot move from {self.value} to {target.value}"
            )


class MatchStage(enum.Enum):
    GROUP = "GROUP"
    QUARTER_FINAL = "QUARTER_FINAL"
    SEMI_FINAL = "SEMI_FINAL"
    FINAL = "FINAL"

    @property
    def is_knockout(self) -> bool:
        return self is not MatchStage.GROUP

    @property
    def code(self) -> str:
        return _STAGE_CODES[self]

    def next_stage(self) -> MatchStage | None:
        """Return the knockout stage that follows this one, if any."""
        if not self.is_knockout:
            raise ValueError("GROUP has no knockout successor")
        position = KNOCKOUT_ORDER.index(self)
        if position + 1 >= len(KNOCKOUT_ORDER):
            return None
        return KNOCKOUT_ORDER[position + 1]

    def previous_stage(self) -> MatchStage | None:
        if not self.is_knockout:
            return None
        position = KNOCKOUT_ORDER.index(self)
        if position == 0:
            return None
        return KNOCKOUT_ORDER[position - 1]

    @classmethod
    def for_bracket_size(cls, participants: int) -> MatchStage:
        """Pick the opening knockout stage for a bracket of ``participants``."""
        if participants > 4:
            return cls.QUARTER_FINAL
        if participants > 2:
            return cls.SEMI_FINAL
        return cls.FINAL


class MatchStatus(enum.Enum):
    SCHEDULED = "SCHEDULED"
    DISPUTED = "DISPUTED"
    FINISHED = "FINISHED"

    def can_transition_to(self, target: MatchStatus) -> bool:
        return target in MATCH_TRANSITIONS[self]


class GameStatus(enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_CONFIRMATION = "WAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        return self not in (GameStatus.CONFIRMED, GameStatus.CANCELLED)

    def can_transition_to(self, target: GameStatus) -> bool:
        return target in GAME_TRANSITIONS[self]


TOURNAMENT_TRANSITIONS: Final[dict[TournamentStatus, frozenset[TournamentStatus]]] = {
    TournamentStatus.DRAFT: frozenset({TournamentStatus.OPEN, TournamentStatus.GROUPS}),
    TournamentStatus.OPEN: frozenset({TournamentStatus.GROUPS}),
    TournamentStatus.GROUPS: frozenset({TournamentStatus.KNOCKOUT}),
    TournamentStatus.KNOCKOUT: frozenset({TournamentStatus.FINISHED}),
    TournamentStatus.FINISHED: frozenset(),
}

MATCH_TRANSITIONS: Final[dict[MatchStatus, frozenset[MatchStatus]]] = {
    MatchStatus.SCHEDULED: frozenset({MatchStatus.DISPUTED}),
    MatchStatus.DISPUTED: frozenset({MatchStatus.FINISHED}),
    MatchStatus.FINISHED: frozenset(),
}

GAME_TRANSITIONS: Final[dict[GameStatus, frozenset[GameStatus]]] = {
    GameStatus.PENDING: frozenset({GameStatus.IN_PROGRESS, GameStatus.CANCELLED}),
    GameStatus.IN_PROGRESS: frozenset(
        {GameStatus.WAITING_CONFIRMATION, GameStatus.CANCELLED}
    ),
    GameStatus.WAITING_CONFIRMATION: frozenset({GameStatus.CONFIRMED}),
    GameStatus.CONFIRMED: frozenset(),
    GameStatus.CANCELLED: frozenset(),
}

KNOCKOUT_ORDER: Final[tuple[MatchStage, ...]] = (
    MatchStage.QUARTER_FINAL,
    MatchStage.SEMI_FINAL,
    MatchStage.FINAL,
)

_STAGE_CODES: Final[dict[MatchStage, str]] = {
    MatchStage.GROUP: "G",
    MatchStage.QUARTER_FINAL: "QF",
    MatchStage.SEMI_FINAL: "SF",
    MatchStage.FINAL: "F",
}


@dataclass(frozen=True, slots=True)
class Actor:
    """The acting participant as supplied by the identity collaborator."""

    user_id: str
    role: Role = Role.PLAYER

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(slots=True)
class Tournament:
    tournament_id: str
    title: str
    admin_id: str
    status: TournamentStatus = TournamentStatus.DRAFT
    current_round: int = 0
    total_rounds: int | None = None
    slots_limit: int | None = None
    enrolled_count: int = 0
    description: str = ""
    is_public: bool = True
    created_at: str = ""
    started_at: str | None = None
    finished_at: str | None = None

    PK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s"
    SK_VALUE: ClassVar[str] = "META"

    @classmethod
    def key(cls, tournament_id: str) -> dict[str, str]:
        return {"pk": cls.PK_TEMPLATE % tournament_id, "sk": cls.SK_VALUE}

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "title": self.title,
                "admin_id": self.admin_id,
                "status": self.status.value,
                "current_round": self.current_round,
                "enrolled_count": self.enrolled_count,
                "description": self.description,
                "is_public": self.is_public,
                "created_at": self.created_at,
            }
        )
        if self.total_rounds is not None:
            item["total_rounds"] = self.total_rounds
        if self.slots_limit is not None:
            item["slots_limit"] = self.slots_limit
        if self.started_at is not None:
            item["started_at"] = self.started_at
        if self.finished_at is not None:
            item["finished_at"] = self.finished_at
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Tournament:
        tournament_id = str(
            item.get("tournament_id") or str(item["pk"]).split("#", 1)[1]
        )
        total_rounds = item.get("total_rounds")
        slots_limit = item.get("slots_limit")
        return cls(
            tournament_id=tournament_id,
            title=str(item.get("title", "")),
            admin_id=str(item.get("admin_id", "")),
            status=TournamentStatus(str(item.get("status", "DRAFT"))),
            current_round=int(item.get("current_round", 0)),
            total_rounds=int(total_rounds) if total_rounds is not None else None,
            slots_limit=int(slots_limit) if slots_limit is not None else None,
            enrolled_count=int(item.get("enrolled_count", 0)),
            description=str(item.get("description", "")),
            is_public=bool(item.get("is_public", True)),
            created_at=str(item.get("created_at", "")),
            started_at=_optional_str(item.get("started_at")),
            finished_at=_optional_str(item.get("finished_at")),
        )


@dataclass(slots=True)
class TournamentListing:
    """Directory entry of a tournament, keyed by status for filtered listing."""

    tournament_id: str
    title: str
    admin_id: str
    status: TournamentStatus
    is_public: bool = True
    slots_limit: int | None = None
    created_at: str = ""

    PK_VALUE: ClassVar[str] = "TOURNAMENTS"
    SK_TEMPLATE: ClassVar[str] = "TOURNAMENT#%s#%s"
    SK_PREFIX: ClassVar[str] = "TOURNAMENT#"

    @classmethod
    def key(cls, status: TournamentStatus, tournament_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_VALUE,
            "sk": cls.SK_TEMPLATE % (status.value, tournament_id),
        }

    @classmethod
    def status_prefix(cls, status: TournamentStatus | None) -> str:
        if status is None:
            return cls.SK_PREFIX
        return f"{cls.SK_PREFIX}{status.value}#"

    @classmethod
    def from_tournament(cls, tournament: Tournament) -> TournamentListing:
        return cls(
            tournament_id=tournament.tournament_id,
            title=tournament.title,
            admin_id=tournament.admin_id,
            status=tournament.status,
            is_public=tournament.is_public,
            slots_limit=tournament.slots_limit,
            created_at=tournament.created_at,
        )

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.status, self.tournament_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "title": self.title,
                "admin_id": self.admin_id,
                "status": self.status.value,
                "is_public": self.is_public,
                "created_at": self.created_at,
            }
        )
        if self.slots_limit is not None:
            item["slots_limit"] = self.slots_limit
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> TournamentListing:
        slots_limit = item.get("slots_limit")
        return cls(
            tournament_id=str(item["tournament_id"]),
            title=str(item.get("title", "")),
            admin_id=str(item.get("admin_id", "")),
            status=TournamentStatus(str(item["status"])),
            is_public=bool(item.get("is_public", True)),
            slots_limit=int(slots_limit) if slots_limit is not None else None,
            created_at=str(item.get("created_at", "")),
        )


@dataclass(slots=True)
class Enrollment:
    tournament_id: str
    user_id: str
    joined_at: str

    PK_TEMPLATE: ClassVar[str] = Tournament.PK_TEMPLATE
    SK_TEMPLATE: ClassVar[str] = "ENROLLMENT#%s"
    SK_PREFIX: ClassVar[str] = "ENROLLMENT#"

    @classmethod
    def key(cls, tournament_id: str, user_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % user_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id, self.user_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "user_id": self.user_id,
                "joined_at": self.joined_at,
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Enrollment:
        return cls(
            tournament_id=str(item["tournament_id"]),
            user_id=str(item.get("user_id") or str(item["sk"]).split("#", 1)[1]),
            joined_at=str(item.get("joined_at", "")),
        )


@dataclass(slots=True)
class Standing:
    tournament_id: str
    user_id: str
    points: int = 0
    wins: int = 0
    losses: int = 0

    PK_TEMPLATE: ClassVar[str] = Tournament.PK_TEMPLATE
    SK_TEMPLATE: ClassVar[str] = "STANDING#%s"
    SK_PREFIX: ClassVar[str] = "STANDING#"

    @classmethod
    def key(cls, tournament_id: str, user_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % user_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id, self.user_id)
        item.update(
            {
                "tournament_id": self.tournament_id,
                "user_id": self.user_id,
                "points": self.points,
                "wins": self.wins,
                "losses": self.losses,
            }
        )
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Standing:
        return cls(
            tournament_id=str(item["tournament_id"]),
            user_id=str(item.get("user_id") or str(item["sk"]).split("#", 1)[1]),
            points=int(item.get("points", 0)),
            wins=int(item.get("wins", 0)),
            losses=int(item.get("losses", 0)),
        )


@dataclass(slots=True)
class Match:
    match_id: str
    tournament_id: str
    round: int
    stage: MatchStage
    a_id: str
    b_id: str
    score_a: int = 0
    score_b: int = 0
    status: MatchStatus = MatchStatus.SCHEDULED
    winner_id: str | None = None
    created_at: str = ""
    decided_at: str | None = None

    PK_TEMPLATE: ClassVar[str] = Tournament.PK_TEMPLATE
    SK_TEMPLATE: ClassVar[str] = "MATCH#%s"
    SK_PREFIX: ClassVar[str] = "MATCH#"

    def __post_init__(self) -> None:
        if self.a_id == self.b_id:
            raise ValueError("A match needs two different participants")

    @staticmethod
    def build_id(stage: MatchStage, round_number: int, position: int) -> str:
        """Return the natural id of the ``position``-th match of a stage round."""
        return f"{stage.code}{round_number:02d}-{position:02d}"

    @classmethod
    def key(cls, tournament_id: str, match_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % match_id,
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(self.tournament_id, self.match_id)
        item.update(
            {
                "match_id": self.match_id,
                "tournament_id": self.tournament_id,
                "round": self.round,
                "stage": self.stage.value,
                "a_id": self.a_id,
                "b_id": self.b_id,
                "score_a": self.score_a,
                "score_b": self.score_b,
                "status": self.status.value,
                "created_at": self.created_at,
            }
        )
        if self.winner_id is not None:
            item["winner_id"] = self.winner_id
        if self.decided_at is not None:
            item["decided_at"] = self.decided_at
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> Match:
        return cls(
            match_id=str(item.get("match_id") or str(item["sk"]).split("#", 1)[1]),
            tournament_id=str(item["tournament_id"]),
            round=int(item.get("round", 1)),
            stage=MatchStage(str(item.get("stage", "GROUP"))),
            a_id=str(item["a_id"]),
            b_id=str(item["b_id"]),
            score_a=int(item.get("score_a", 0)),
            score_b=int(item.get("score_b", 0)),
            status=MatchStatus(str(item.get("status", "SCHEDULED"))),
            winner_id=_optional_str(item.get("winner_id")),
            created_at=str(item.get("created_at", "")),
            decided_at=_optional_str(item.get("decided_at")),
        )

    @property
    def participants(self) -> tuple[str, str]:
        return (self.a_id, self.b_id)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.a_id, self.b_id)

    def opponent_of(self, user_id: str) -> str:
        if user_id == self.a_id:
            return self.b_id
        if user_id == self.b_id:
            return self.a_id
        raise ValueError(f"{user_id} does not play in match {self.match_id}")

    def is_decided(self, games_to_win: int = 2) -> bool:
        return self.score_a >= games_to_win or self.score_b >= games_to_win

    def loser_id(self) -> str | None:
        if self.winner_id is None:
            return None
        return self.opponent_of(self.winner_id)


@dataclass(slots=True)
class MatchGame:
    tournament_id: str
    match_id: str
    index: int
    host_id: str
    status: GameStatus = GameStatus.PENDING
    code: str | None = None
    winner_id: str | None = None
    created_at: str = ""
    reported_at: str | None = None
    confirmed_at: str | None = None

    PK_TEMPLATE: ClassVar[str] = Tournament.PK_TEMPLATE
    SK_TEMPLATE: ClassVar[str] = "GAME#%s#%03d"
    SK_PREFIX_TEMPLATE: ClassVar[str] = "GAME#%s#"

    @classmethod
    def key(cls, tournament_id: str, match_id: str, index: int) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % (match_id, index),
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(
            self.tournament_id, self.match_id, self.index
        )
        item.update(
            {
                "tournament_id": self.tournament_id,
                "match_id": self.match_id,
                "index": self.index,
                "host_id": self.host_id,
                "status": self.status.value,
                "created_at": self.created_at,
            }
        )
        if self.code is not None:
            item["code"] = self.code
        if self.winner_id is not None:
            item["winner_id"] = self.winner_id
        if self.reported_at is not None:
            item["reported_at"] = self.reported_at
        if self.confirmed_at is not None:
            item["confirmed_at"] = self.confirmed_at
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> MatchGame:
        return cls(
            tournament_id=str(item["tournament_id"]),
            match_id=str(item["match_id"]),
            index=int(item["index"]),
            host_id=str(item["host_id"]),
            status=GameStatus(str(item.get("status", "PENDING"))),
            code=_optional_str(item.get("code")),
            winner_id=_optional_str(item.get("winner_id")),
            created_at=str(item.get("created_at", "")),
            reported_at=_optional_str(item.get("reported_at")),
            confirmed_at=_optional_str(item.get("confirmed_at")),
        )


@dataclass(slots=True)
class AuditEvent:
    tournament_id: str
    event_id: str
    action: str
    entity: str
    entity_id: str
    user_id: str | None
    created_at: str

    PK_TEMPLATE: ClassVar[str] = Tournament.PK_TEMPLATE
    SK_TEMPLATE: ClassVar[str] = "AUDIT#%s#%s"
    SK_PREFIX: ClassVar[str] = "AUDIT#"

    @classmethod
    def key(cls, tournament_id: str, created_at: str, event_id: str) -> dict[str, str]:
        return {
            "pk": cls.PK_TEMPLATE % tournament_id,
            "sk": cls.SK_TEMPLATE % (created_at, event_id),
        }

    def to_item(self) -> dict[str, object]:
        item: dict[str, object] = self.key(
            self.tournament_id, self.created_at, self.event_id
        )
        item.update(
            {
                "tournament_id": self.tournament_id,
                "event_id": self.event_id,
                "action": self.action,
                "entity": self.entity,
                "entity_id": self.entity_id,
                "created_at": self.created_at,
            }
        )
        if self.user_id is not None:
            item["user_id"] = self.user_id
        return item

    @classmethod
    def from_item(cls, item: dict[str, object]) -> AuditEvent:
        return cls(
            tournament_id=str(item["tournament_id"]),
            event_id=str(item["event_id"]),
            action=str(item.get("action", "")),
            entity=str(item.get("entity", "")),
            entity_id=str(item.get("entity_id", "")),
            user_id=_optional_str(item.get("user_id")),
            created_at=str(item.get("created_at", "")),
        )


__all__ = [
    "Actor",
    "AuditEvent",
    "Enrollment",
    "GameStatus",
    "KNOCKOUT_ORDER",
    "Match",
    "MatchGame",
    "MatchStage",
    "MatchStatus",
    "Role",
    "Standing",
    "Tournament",
    "TournamentListing",
    "TournamentStatus",
    "utc_now_iso",
]

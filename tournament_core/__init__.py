"""Tournament progression engine: Swiss rounds, knockout bracket and results."""

from .advancement import AdvanceResult, StageAdvancer
from .config import EngineConfig, build_table, read_engine_config
from .games import GameConfirmation, MatchGameProtocol
from .lifecycle import PlayerTournaments, TournamentLifecycle
from .matches import MatchStateMachine
from .models import (
    Actor,
    GameStatus,
    Match,
    MatchGame,
    MatchStage,
    MatchStatus,
    Role,
    Standing,
    Tournament,
    TournamentListing,
    TournamentStatus,
    utc_now_iso,
)
from .standings import RankedStanding, rank_standings
from .storage import TournamentStorage
from .validation import (
    ForbiddenError,
    InvalidStateError,
    InvalidValueError,
    NotFoundError,
    TournamentError,
)

__all__ = [
    "AdvanceResult",
    "StageAdvancer",
    "EngineConfig",
    "build_table",
    "read_engine_config",
    "GameConfirmation",
    "MatchGameProtocol",
    "PlayerTournaments",
    "TournamentLifecycle",
    "MatchStateMachine",
    "Actor",
    "GameStatus",
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
    "RankedStanding",
    "rank_standings",
    "TournamentStorage",
    "ForbiddenError",
    "InvalidStateError",
    "InvalidValueError",
    "NotFoundError",
    "TournamentError",
]

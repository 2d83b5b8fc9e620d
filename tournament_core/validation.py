from __future__ import annotations

import re


class TournamentError(Exception):
    """Base exception for rejected tournament operations."""


class NotFoundError(TournamentError, LookupError):
    """Raised when a referenced tournament, match or game does not exist."""


class InvalidStateError(TournamentError):
    """Raised when an entity is in the wrong lifecycle state for an operation."""


class ForbiddenError(TournamentError, PermissionError):
    """Raised when the acting user lacks the required relationship."""


class InvalidValueError(TournamentError, ValueError):
    """Base exception for validation failures."""


_GAME_CODE_PATTERN = re.compile(r"[A-Z0-9]{6}$")


def validate_title(raw: str) -> str:
    title = raw.strip()
    if len(title) < 3:
        raise InvalidValueError("Tournament title must be at least 3 characters long")
    if len(title) > 100:
        raise InvalidValueError("Tournament title must be 100 characters or fewer")
    return title


def validate_slots_limit(slots_limit: int | None) -> int | None:
    if slots_limit is None:
        return None
    if slots_limit < 2:
        raise InvalidValueError("Slots limit must be at least 2 players")
    return slots_limit


def validate_total_rounds(total_rounds: int | None) -> int | None:
    if total_rounds is None:
        return None
    if total_rounds < 1:
        raise InvalidValueError("Total rounds must be at least 1")
    return total_rounds


def normalize_game_code(raw: str | None) -> str | None:
    """Return the upper-cased lobby code, which must be exactly 6 characters."""
    if raw is None:
        return None
    code = raw.strip().upper()
    if not _GAME_CODE_PATTERN.match(code):
        raise InvalidValueError("Game code must be exactly 6 letters or digits")
    return code


__all__ = [
    "TournamentError",
    "NotFoundError",
    "InvalidStateError",
    "ForbiddenError",
    "InvalidValueError",
    "validate_title",
    "validate_slots_limit",
    "validate_total_rounds",
    "normalize_game_code",
]

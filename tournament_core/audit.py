"""Append-only audit trail for tournament operations."""

from __future__ import annotations

import logging
import uuid

from botocore.exceptions import BotoCoreError, ClientError

from .models import AuditEvent, utc_now_iso
from .storage import TournamentStorage

log = logging.getLogger("tournament-core")


class AuditLog:
    def __init__(self, storage: TournamentStorage, *, enabled: bool = True) -> None:
        self._storage = storage
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record(
        self,
        tournament_id: str,
        action: str,
        *,
        entity: str,
        entity_id: str,
        user_id: str | None,
    ) -> AuditEvent | None:
        """Write one audit event; delivery failures are logged, never raised."""
        if not self.enabled:
            return None
        event = AuditEvent(
            tournament_id=tournament_id,
            event_id=uuid.uuid4().hex,
            action=action,
            entity=entity,
            entity_id=entity_id,
            user_id=user_id,
            created_at=utc_now_iso(),
        )
        try:
            self._storage.append_audit(event)
        except (BotoCoreError, ClientError) as exc:
            log.warning(
                "Failed to record audit event %r for %s %s: %s",
                action,
                entity,
                entity_id,
                exc,
            )
            return None
        return event


__all__ = ["AuditLog"]

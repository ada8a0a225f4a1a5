"""Persistent history of answered queries."""

from __future__ import annotations

import datetime
from typing import Protocol

from .config import config
from .models import HistoryEntry, QueryKind
from .stores import BaseSQLiteStore

logger = config.get_logger(__name__)


class QueryHistory(Protocol):
    def record(self, entry: HistoryEntry) -> HistoryEntry: ...

    def list_for_vehicle(
        self, vehicle_id: str, limit: int = 20
    ) -> list[HistoryEntry]: ...


class SQLiteQueryHistory(BaseSQLiteStore):
    """Query history kept in the application database."""

    def record(self, entry: HistoryEntry) -> HistoryEntry:
        """Store an answered query.

        Returns:
            The entry with its database id.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO query_history
                    (vehicle_id, kind, user_input, answer, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.vehicle_id,
                    entry.kind.value,
                    entry.user_input,
                    entry.answer,
                    entry.created_at.isoformat(),
                ),
            )
            conn.commit()
            entry_id = cursor.lastrowid

        logger.info("Recorded %s query for vehicle %s", entry.kind, entry.vehicle_id)
        return HistoryEntry(
            vehicle_id=entry.vehicle_id,
            kind=entry.kind,
            user_input=entry.user_input,
            answer=entry.answer,
            created_at=entry.created_at,
            id=entry_id,
        )

    def list_for_vehicle(self, vehicle_id: str, limit: int = 20) -> list[HistoryEntry]:
        """Most recent queries of a vehicle, newest first."""  # noqa: DOC201
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, vehicle_id, kind, user_input, answer, created_at
                FROM query_history
                WHERE vehicle_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (vehicle_id, limit),
            ).fetchall()

        return [
            HistoryEntry(
                id=row[0],
                vehicle_id=row[1],
                kind=QueryKind(row[2]),
                user_input=row[3],
                answer=row[4],
                created_at=datetime.datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]

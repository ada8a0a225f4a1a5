"""Storage collaborators: vehicles, manual documents and manual files."""

from __future__ import annotations

import datetime
import shutil
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Protocol

from .config import config
from .models import DocumentStatus, ManualDocument, VehicleRef

logger = config.get_logger(__name__)


class VehicleStore(Protocol):
    def add(self, vehicle: VehicleRef) -> VehicleRef: ...

    def get(self, vehicle_id: str) -> VehicleRef | None: ...

    def list(self) -> list[VehicleRef]: ...

    def update(self, vehicle: VehicleRef) -> VehicleRef: ...

    def delete(self, vehicle_id: str) -> None: ...


class DocumentStore(Protocol):
    def get_for_vehicle(self, vehicle_id: str) -> ManualDocument | None: ...

    def create(
        self, vehicle_id: str, file_name: str, file_size_bytes: int
    ) -> ManualDocument: ...

    def update_status(
        self, document_id: str, status: DocumentStatus
    ) -> ManualDocument: ...

    def delete_for_vehicle(self, vehicle_id: str) -> None: ...


class BlobStore(Protocol):
    def upload(self, key: str, file_path: Path) -> bool: ...


class BaseSQLiteStore:
    """Common schema management for the SQLite-backed stores."""

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize the store and ensure the schema exists.

        Args:
            db_path: SQLite database file. If None, uses config.DATABASE_PATH.
        """
        self.db_path = Path(db_path if db_path is not None else config.DATABASE_PATH)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _create_tables(self) -> None:
        """Create vehicle, manual and history tables if they don't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS vehicles (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    brand TEXT,
                    model TEXT,
                    year INTEGER,
                    mileage INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS manual_documents (
                    id TEXT PRIMARY KEY,
                    vehicle_id TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL CHECK(
                        status IN ('uploading','processing','ready','error')
                    ),
                    file_name TEXT NOT NULL,
                    file_size_bytes INTEGER NOT NULL,
                    uploaded_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS manual_chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL,
                    chunk_id INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    page INTEGER,
                    start_char INTEGER,
                    end_char INTEGER,
                    embedding BLOB NOT NULL,
                    FOREIGN KEY (document_id) REFERENCES manual_documents (id)
                        ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS query_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    vehicle_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    user_input TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_chunks_document "
                "ON manual_chunks(document_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_vehicle "
                "ON query_history(vehicle_id, created_at)"
            )
            conn.commit()


class SQLiteVehicleStore(BaseSQLiteStore):
    """Vehicle records kept in SQLite."""

    @staticmethod
    def _row_to_vehicle(row: tuple[Any, ...]) -> VehicleRef:
        return VehicleRef(
            id=row[0],
            name=row[1],
            brand=row[2],
            model=row[3],
            year=row[4],
            mileage=row[5],
        )

    def add(self, vehicle: VehicleRef) -> VehicleRef:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO vehicles (id, name, brand, model, year, mileage)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    vehicle.id,
                    vehicle.name,
                    vehicle.brand,
                    vehicle.model,
                    vehicle.year,
                    vehicle.mileage,
                ),
            )
            conn.commit()
        logger.info("Registered vehicle %s", vehicle.id)
        return vehicle

    def get(self, vehicle_id: str) -> VehicleRef | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, brand, model, year, mileage FROM vehicles "
                "WHERE id = ?",
                (vehicle_id,),
            ).fetchone()
        return self._row_to_vehicle(row) if row else None

    def list(self) -> list[VehicleRef]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, brand, model, year, mileage FROM vehicles "
                "ORDER BY created_at, id"
            ).fetchall()
        return [self._row_to_vehicle(row) for row in rows]

    def update(self, vehicle: VehicleRef) -> VehicleRef:
        """Overwrite the stored attributes of an existing vehicle.

        Raises:
            KeyError: If the vehicle is not registered.
        """  # noqa: DOC201
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE vehicles
                SET name = ?, brand = ?, model = ?, year = ?, mileage = ?
                WHERE id = ?
                """,
                (
                    vehicle.name,
                    vehicle.brand,
                    vehicle.model,
                    vehicle.year,
                    vehicle.mileage,
                    vehicle.id,
                ),
            )
            conn.commit()
        if cursor.rowcount == 0:
            raise KeyError(vehicle.id)
        return vehicle

    def delete(self, vehicle_id: str) -> None:
        """Remove a vehicle together with its manual record."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM manual_documents WHERE vehicle_id = ?", (vehicle_id,)
            )
            conn.execute("DELETE FROM vehicles WHERE id = ?", (vehicle_id,))
            conn.commit()
        logger.info("Deleted vehicle %s", vehicle_id)


class SQLiteDocumentStore(BaseSQLiteStore):
    """Manual document records kept in SQLite, at most one per vehicle."""

    @staticmethod
    def _row_to_document(row: tuple[Any, ...]) -> ManualDocument:
        return ManualDocument(
            id=row[0],
            vehicle_id=row[1],
            status=DocumentStatus(row[2]),
            file_name=row[3],
            file_size_bytes=int(row[4]),
            uploaded_at=datetime.datetime.fromisoformat(row[5]),
        )

    def _fetch(self, conn: sqlite3.Connection, column: str, value: str) -> Any:
        return conn.execute(
            "SELECT id, vehicle_id, status, file_name, file_size_bytes, uploaded_at "
            f"FROM manual_documents WHERE {column} = ?",
            (value,),
        ).fetchone()

    def get_for_vehicle(self, vehicle_id: str) -> ManualDocument | None:
        with self._connect() as conn:
            row = self._fetch(conn, "vehicle_id", vehicle_id)
        return self._row_to_document(row) if row else None

    def create(
        self, vehicle_id: str, file_name: str, file_size_bytes: int
    ) -> ManualDocument:
        """Start a new manual record in ``uploading``, replacing any previous one.

        Returns:
            The freshly created record.
        """
        document = ManualDocument(
            id=uuid.uuid4().hex,
            vehicle_id=vehicle_id,
            status=DocumentStatus.UPLOADING,
            file_name=file_name,
            file_size_bytes=file_size_bytes,
            uploaded_at=datetime.datetime.now(tz=datetime.UTC),
        )
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM manual_documents WHERE vehicle_id = ?", (vehicle_id,)
            )
            conn.execute(
                """
                INSERT INTO manual_documents
                    (id, vehicle_id, status, file_name, file_size_bytes, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.vehicle_id,
                    document.status.value,
                    document.file_name,
                    document.file_size_bytes,
                    document.uploaded_at.isoformat(),
                ),
            )
            conn.commit()
        logger.info("Created manual record %s for vehicle %s", document.id, vehicle_id)
        return document

    def update_status(
        self, document_id: str, status: DocumentStatus
    ) -> ManualDocument:
        """Persist a new lifecycle status.

        Raises:
            KeyError: If no record has the given id.
        """  # noqa: DOC201
        with self._connect() as conn:
            conn.execute(
                "UPDATE manual_documents SET status = ? WHERE id = ?",
                (DocumentStatus(status).value, document_id),
            )
            row = self._fetch(conn, "id", document_id)
            conn.commit()
        if row is None:
            raise KeyError(document_id)
        return self._row_to_document(row)

    def delete_for_vehicle(self, vehicle_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM manual_documents WHERE vehicle_id = ?", (vehicle_id,)
            )
            conn.commit()


class LocalBlobStore:
    """Blob storage on the local filesystem."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root if root is not None else config.BLOB_STORAGE_DIR)
        self.root.mkdir(exist_ok=True, parents=True)

    def path_for(self, key: str) -> Path:
        """Resolve a key to a path inside the storage root.

        Raises:
            ValueError: If the key escapes the storage root.
        """  # noqa: DOC201
        target = (self.root / key).resolve()
        if not target.is_relative_to(self.root.resolve()):
            msg = f"Invalid storage key: {key}"
            raise ValueError(msg)
        return target

    def upload(self, key: str, file_path: Path) -> bool:
        """Copy a file under ``key``.

        Returns:
            True when the file was stored, False otherwise.
        """
        try:
            target = self.path_for(key)
            target.parent.mkdir(exist_ok=True, parents=True)
            shutil.copyfile(file_path, target)
        except (OSError, ValueError):
            logger.exception("Failed to store %s under %s", file_path, key)
            return False
        else:
            logger.info("Stored %s under %s", file_path.name, key)
            return True

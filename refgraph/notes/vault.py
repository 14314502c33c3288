"""
Vault Module

SQLite-backed entity store. Notes, contacts and topics each get a table;
``rowid`` order is insertion order. References are never stored here: they
live only inside note content.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import EntityNotFoundError, StoreWriteError, ValidationError
from .models import Contact, Entity, EntityKind, Note, Topic, utcnow
from .store import EntityStore, build_entity, new_entity_id, rank_entities

logger = logging.getLogger(__name__)

_TABLES = {
    EntityKind.NOTE: "notes",
    EntityKind.CONTACT: "contacts",
    EntityKind.TOPIC: "topics",
}


class SqliteEntityStore(EntityStore):
    """
    Persistent entity store on a local SQLite file.

    Features:
    - One table per entity kind
    - Insertion order preserved through ``rowid``
    - Write failures surfaced as ``StoreWriteError``
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize the store.

        Args:
            db_path: Path to the SQLite database file
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info(f"Entity store initialized at {self._db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _init_database(self) -> None:
        """Create tables if missing."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                created TEXT,
                modified TEXT
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS contacts (
                id TEXT PRIMARY KEY,
                full_name TEXT NOT NULL,
                email TEXT NOT NULL DEFAULT '',
                company TEXT NOT NULL DEFAULT '',
                created TEXT,
                modified TEXT
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS topics (
                id TEXT PRIMARY KEY,
                label TEXT NOT NULL,
                slug TEXT NOT NULL DEFAULT '',
                created TEXT,
                modified TEXT
            )
        """
        )

        conn.commit()
        conn.close()

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_entity(kind: EntityKind, row: sqlite3.Row) -> Entity:
        created = datetime.fromisoformat(row["created"])
        modified = datetime.fromisoformat(row["modified"])

        if kind is EntityKind.NOTE:
            return Note(
                id=row["id"],
                title=row["title"],
                content=row["content"],
                created_at=created,
                updated_at=modified,
            )
        if kind is EntityKind.CONTACT:
            return Contact(
                id=row["id"],
                full_name=row["full_name"],
                email=row["email"],
                company=row["company"],
                created_at=created,
                updated_at=modified,
            )
        return Topic(
            id=row["id"],
            label=row["label"],
            slug=row["slug"],
            created_at=created,
            updated_at=modified,
        )

    def _select(self, kind: EntityKind, where: str = "", params: tuple = ()) -> List[Entity]:
        conn = self._connect()
        conn.row_factory = sqlite3.Row
        try:
            cursor = conn.execute(
                f"SELECT * FROM {_TABLES[kind]} {where} ORDER BY rowid", params
            )
            return [self._row_to_entity(kind, row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def _write(self, sql: str, params: tuple) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.IntegrityError as e:
            raise ValidationError(detail=str(e), original_error=e)
        except sqlite3.Error as e:
            raise StoreWriteError(detail=str(e), original_error=e)
        finally:
            conn.close()

    # -------------------------------------------------------------------------
    # EntityStore
    # -------------------------------------------------------------------------

    async def get_entity(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        rows = self._select(kind, "WHERE id = ?", (entity_id,))
        return rows[0] if rows else None

    async def list_entities(self, kind: EntityKind) -> List[Entity]:
        return self._select(kind)

    async def search_entities(
        self, kind: EntityKind, prefix: str, limit: int
    ) -> List[Entity]:
        return rank_entities(self._select(kind), prefix, limit)

    async def create_entity(self, kind: EntityKind, seed: Dict[str, Any]) -> Entity:
        entity = build_entity(kind, seed.get("id") or new_entity_id(kind), seed)
        created = entity.created_at.isoformat()
        modified = entity.updated_at.isoformat()

        if isinstance(entity, Note):
            self._write(
                "INSERT INTO notes (id, title, content, created, modified) VALUES (?, ?, ?, ?, ?)",
                (entity.id, entity.title, entity.content, created, modified),
            )
        elif isinstance(entity, Contact):
            self._write(
                "INSERT INTO contacts (id, full_name, email, company, created, modified) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (entity.id, entity.full_name, entity.email, entity.company, created, modified),
            )
        else:
            self._write(
                "INSERT INTO topics (id, label, slug, created, modified) VALUES (?, ?, ?, ?, ?)",
                (entity.id, entity.label, entity.slug, created, modified),
            )

        logger.info(f"Created {kind.value}: {entity.id}")
        return entity

    async def save_note_content(self, note_id: str, content: str) -> Note:
        now = utcnow()
        updated = self._write(
            "UPDATE notes SET content = ?, modified = ? WHERE id = ?",
            (content, now.isoformat(), note_id),
        )
        if not updated:
            raise EntityNotFoundError(detail=f"Note not found: {note_id}")

        note = await self.get_entity(EntityKind.NOTE, note_id)
        logger.debug(f"Saved note content: {note_id}")
        return note

    async def delete_entity(self, kind: EntityKind, entity_id: str) -> bool:
        deleted = self._write(f"DELETE FROM {_TABLES[kind]} WHERE id = ?", (entity_id,))
        if deleted:
            logger.info(f"Deleted {kind.value}: {entity_id}")
        return bool(deleted)

    def health_check(self) -> bool:
        """Check if the database file is reachable."""
        return self._db_path.exists()

"""SQLite storage for encrypted credential records."""

from datetime import datetime
from pathlib import Path

import aiosqlite

from finvault.vault import CredentialRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS credentials (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    institution TEXT NOT NULL,
    encrypted_payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_used_at TEXT,
    UNIQUE (owner, institution)
);
"""

_COLUMNS = "id, owner, institution, encrypted_payload, created_at, last_used_at"


async def connect(path: Path | str) -> aiosqlite.Connection:
    """Open a connection and create tables. ``":memory:"`` is accepted for tests."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.executescript(SCHEMA)
    await db.commit()
    return db


def _to_record(row: aiosqlite.Row) -> CredentialRecord:
    return CredentialRecord(
        id=row["id"],
        owner=row["owner"],
        institution=row["institution"],
        encrypted_payload=row["encrypted_payload"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_used_at=(
            datetime.fromisoformat(row["last_used_at"]) if row["last_used_at"] else None
        ),
    )


class SqliteCredentialStore:
    """CredentialStore backed by an aiosqlite connection."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, record: CredentialRecord) -> None:
        """Insert a record. Raises ValueError if the (owner, institution) pair exists."""
        try:
            await self.db.execute(
                f"INSERT INTO credentials ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.owner,
                    record.institution,
                    record.encrypted_payload,
                    record.created_at.isoformat(),
                    record.last_used_at.isoformat() if record.last_used_at else None,
                ),
            )
        except aiosqlite.IntegrityError:
            raise ValueError(
                f"Credential for {record.owner}/{record.institution} already exists"
            ) from None
        await self.db.commit()

    async def update(self, record: CredentialRecord) -> None:
        """Replace the payload and last-used timestamp of an existing record."""
        cursor = await self.db.execute(
            "UPDATE credentials SET encrypted_payload = ?, last_used_at = ? WHERE id = ?",
            (
                record.encrypted_payload,
                record.last_used_at.isoformat() if record.last_used_at else None,
                record.id,
            ),
        )
        if cursor.rowcount == 0:
            raise ValueError(f"Credential '{record.id}' not found")
        await self.db.commit()

    async def touch(self, record_id: str, when: datetime) -> None:
        """Set last_used_at only. A record deleted meanwhile is left deleted."""
        await self.db.execute(
            "UPDATE credentials SET last_used_at = ? WHERE id = ?",
            (when.isoformat(), record_id),
        )
        await self.db.commit()

    async def find_by(self, owner: str, institution: str) -> CredentialRecord | None:
        cursor = await self.db.execute(
            f"SELECT {_COLUMNS} FROM credentials WHERE owner = ? AND institution = ?",
            (owner, institution),
        )
        row = await cursor.fetchone()
        return _to_record(row) if row is not None else None

    async def find_all(self) -> list[CredentialRecord]:
        cursor = await self.db.execute(f"SELECT {_COLUMNS} FROM credentials ORDER BY id")
        return [_to_record(row) for row in await cursor.fetchall()]

    async def delete(self, owner: str, institution: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM credentials WHERE owner = ? AND institution = ?",
            (owner, institution),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def replace_payloads(self, payloads: dict[str, str]) -> None:
        """Replace many payloads in a single transaction."""
        try:
            await self.db.executemany(
                "UPDATE credentials SET encrypted_payload = ? WHERE id = ?",
                [(payload, record_id) for record_id, payload in payloads.items()],
            )
        except Exception:
            await self.db.rollback()
            raise
        await self.db.commit()

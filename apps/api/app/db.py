"""SQLite helpers."""
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import CONFIG
from .schemas import (
    Baby,
    Badge,
    BadgeCategory,
    BadgeCollection,
    BadgeDifficulty,
    CareImportance,
    CareTip,
    FamilyMember,
    MediaItem,
    Permission,
    RelationType,
    VerificationStatus,
)

_DB_PATH = CONFIG.resolved_database_path
_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

_IMPORTANCE_RANK = "CASE importance WHEN 'critical' THEN 4 WHEN 'high' THEN 3 WHEN 'medium' THEN 2 ELSE 1 END"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
    cursor = conn.execute(f"PRAGMA table_info({table})")
    existing = {row[1] for row in cursor.fetchall()}
    if column not in existing:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


def initialize_db() -> None:
    with sqlite3.connect(_DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS babies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                birth_date TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS family_members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                baby_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                relation_type TEXT NOT NULL,
                display_name TEXT,
                is_primary INTEGER DEFAULT 0,
                permissions TEXT NOT NULL DEFAULT '[]',
                added_at TEXT NOT NULL,
                added_by TEXT,
                UNIQUE (baby_id, user_id),
                FOREIGN KEY (baby_id) REFERENCES babies(id)
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS badges (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                category TEXT NOT NULL,
                difficulty TEXT NOT NULL,
                min_age INTEGER,
                max_age INTEGER,
                is_active INTEGER DEFAULT 1,
                is_custom INTEGER DEFAULT 0,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        _ensure_column(conn, "badges", "instruction", "TEXT")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS badge_collections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                baby_id INTEGER NOT NULL,
                badge_id INTEGER NOT NULL,
                parent_id TEXT NOT NULL,
                completed_at TEXT NOT NULL,
                completed_day TEXT NOT NULL,
                submission_note TEXT,
                submission_media TEXT NOT NULL DEFAULT '[]',
                verification_status TEXT NOT NULL,
                verified_by TEXT,
                verified_at TEXT,
                verification_note TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (baby_id) REFERENCES babies(id),
                FOREIGN KEY (badge_id) REFERENCES badges(id)
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_badge_collections_day "
            "ON badge_collections (parent_id, completed_day)"
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS care_tips (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                content TEXT,
                category TEXT NOT NULL,
                importance TEXT NOT NULL DEFAULT 'medium',
                week_start INTEGER NOT NULL,
                week_end INTEGER NOT NULL,
                view_count INTEGER DEFAULT 0,
                is_active INTEGER DEFAULT 1,
                created_at TEXT NOT NULL
            );
            """
        )
        conn.commit()


@contextmanager
def get_connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_DB_PATH)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Open a write transaction that holds the database write lock until exit.

    Commits on a clean exit and rolls back when the block raises.
    """
    conn = sqlite3.connect(_DB_PATH, isolation_level=None, timeout=15.0)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# Babies and family members


def _row_to_member(row) -> FamilyMember:
    return FamilyMember(
        user_id=row["user_id"],
        relation_type=RelationType(row["relation_type"]),
        display_name=row["display_name"],
        is_primary=bool(row["is_primary"]),
        permissions=[Permission(value) for value in json.loads(row["permissions"] or "[]")],
        added_at=datetime.fromisoformat(row["added_at"]),
        added_by=row["added_by"],
    )


def fetch_members(conn: sqlite3.Connection, baby_id: int) -> List[FamilyMember]:
    conn.row_factory = sqlite3.Row
    rows = conn.execute(
        "SELECT * FROM family_members WHERE baby_id = ? ORDER BY id ASC",
        (baby_id,),
    ).fetchall()
    return [_row_to_member(row) for row in rows]


def fetch_baby(conn: sqlite3.Connection, baby_id: int) -> Optional[Baby]:
    conn.row_factory = sqlite3.Row
    row = conn.execute("SELECT * FROM babies WHERE id = ?", (baby_id,)).fetchone()
    if not row:
        return None
    return Baby(
        id=row["id"],
        name=row["name"],
        birth_date=row["birth_date"],
        family_members=fetch_members(conn, baby_id),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def get_baby(baby_id: int) -> Baby:
    with get_connection() as conn:
        baby = fetch_baby(conn, baby_id)
    if baby is None:
        raise ValueError(f"Baby {baby_id} not found")
    return baby


def insert_baby(conn: sqlite3.Connection, *, name: str, birth_date: Optional[str], now: datetime) -> int:
    cursor = conn.execute(
        "INSERT INTO babies (name, birth_date, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (name, birth_date, now.isoformat(), now.isoformat()),
    )
    return cursor.lastrowid


def touch_baby(conn: sqlite3.Connection, baby_id: int, now: datetime) -> None:
    conn.execute("UPDATE babies SET updated_at = ? WHERE id = ?", (now.isoformat(), baby_id))


def update_baby_fields(conn: sqlite3.Connection, baby_id: int, *, name: str, birth_date: Optional[str], now: datetime) -> None:
    conn.execute(
        "UPDATE babies SET name = ?, birth_date = ?, updated_at = ? WHERE id = ?",
        (name, birth_date, now.isoformat(), baby_id),
    )


def delete_baby(conn: sqlite3.Connection, baby_id: int) -> None:
    """Delete a baby with its family members and badge collections."""
    conn.execute("DELETE FROM badge_collections WHERE baby_id = ?", (baby_id,))
    conn.execute("DELETE FROM family_members WHERE baby_id = ?", (baby_id,))
    conn.execute("DELETE FROM babies WHERE id = ?", (baby_id,))


def list_baby_ids_for_user(user_id: str) -> List[int]:
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT baby_id FROM family_members WHERE user_id = ? ORDER BY baby_id ASC",
            (user_id,),
        ).fetchall()
    return [row[0] for row in rows]


def insert_member(conn: sqlite3.Connection, baby_id: int, member: FamilyMember) -> None:
    conn.execute(
        """
        INSERT INTO family_members (
            baby_id,
            user_id,
            relation_type,
            display_name,
            is_primary,
            permissions,
            added_at,
            added_by
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            baby_id,
            member.user_id,
            member.relation_type.value,
            member.display_name,
            1 if member.is_primary else 0,
            json.dumps([perm.value for perm in member.permissions]),
            member.added_at.isoformat(),
            member.added_by,
        ),
    )


def save_member(conn: sqlite3.Connection, baby_id: int, member: FamilyMember) -> None:
    conn.execute(
        """
        UPDATE family_members
        SET relation_type = ?, display_name = ?, is_primary = ?, permissions = ?
        WHERE baby_id = ? AND user_id = ?
        """,
        (
            member.relation_type.value,
            member.display_name,
            1 if member.is_primary else 0,
            json.dumps([perm.value for perm in member.permissions]),
            baby_id,
            member.user_id,
        ),
    )


def delete_member(conn: sqlite3.Connection, baby_id: int, user_id: str) -> None:
    conn.execute(
        "DELETE FROM family_members WHERE baby_id = ? AND user_id = ?",
        (baby_id, user_id),
    )


# Badge catalog


def _row_to_badge(row) -> Badge:
    return Badge(
        id=row["id"],
        title=row["title"],
        description=row["description"] or "",
        instruction=row["instruction"] or "",
        category=BadgeCategory(row["category"]),
        difficulty=BadgeDifficulty(row["difficulty"]),
        min_age=row["min_age"],
        max_age=row["max_age"],
        is_active=bool(row["is_active"]),
        is_custom=bool(row["is_custom"]),
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def create_badge(
    *,
    title: str,
    category: BadgeCategory,
    difficulty: BadgeDifficulty,
    description: str = "",
    instruction: str = "",
    min_age: Optional[int] = None,
    max_age: Optional[int] = None,
    is_active: bool = True,
    is_custom: bool = False,
    created_by: Optional[str] = None,
) -> Badge:
    now = utcnow().isoformat()
    with get_connection() as conn:
        cursor = conn.execute(
            """
            INSERT INTO badges (
                title,
                description,
                instruction,
                category,
                difficulty,
                min_age,
                max_age,
                is_active,
                is_custom,
                created_by,
                created_at,
                updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                title,
                description,
                instruction,
                category.value,
                difficulty.value,
                min_age,
                max_age,
                1 if is_active else 0,
                1 if is_custom else 0,
                created_by,
                now,
                now,
            ),
        )
        conn.commit()
        badge_id = cursor.lastrowid
    return get_badge(badge_id)


def count_custom_badges(created_by: str) -> int:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM badges WHERE is_custom = 1 AND created_by = ?",
            (created_by,),
        ).fetchone()
    return int(row[0])


def get_badge(badge_id: int) -> Badge:
    with get_connection() as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM badges WHERE id = ?", (badge_id,)).fetchone()
    if not row:
        raise ValueError(f"Badge {badge_id} not found")
    return _row_to_badge(row)


def list_badges(
    *,
    category: Optional[BadgeCategory] = None,
    difficulty: Optional[BadgeDifficulty] = None,
    is_active: Optional[bool] = True,
    age_months: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Badge]:
    query = "SELECT * FROM badges WHERE 1 = 1"
    params: List[Any] = []
    if category is not None:
        query += " AND category = ?"
        params.append(category.value)
    if difficulty is not None:
        query += " AND difficulty = ?"
        params.append(difficulty.value)
    if is_active is not None:
        query += " AND is_active = ?"
        params.append(1 if is_active else 0)
    if age_months is not None:
        query += " AND (min_age IS NULL OR min_age <= ?) AND (max_age IS NULL OR max_age >= ?)"
        params.extend([age_months, age_months])
    query += " ORDER BY id ASC LIMIT ? OFFSET ?"
    params.extend([limit, offset])
    with get_connection() as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(query, tuple(params)).fetchall()
    return [_row_to_badge(row) for row in rows]


# Badge collections


def _row_to_collection(row) -> BadgeCollection:
    return BadgeCollection(
        id=row["id"],
        baby_id=row["baby_id"],
        badge_id=row["badge_id"],
        parent_id=row["parent_id"],
        completed_at=datetime.fromisoformat(row["completed_at"]),
        submission_note=row["submission_note"],
        submission_media=[MediaItem(**item) for item in json.loads(row["submission_media"] or "[]")],
        verification_status=VerificationStatus(row["verification_status"]),
        verified_by=row["verified_by"],
        verified_at=_parse_ts(row["verified_at"]),
        verification_note=row["verification_note"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _media_json(media: List[MediaItem]) -> str:
    return json.dumps([item.model_dump() for item in media])


def count_submissions_on_day(
    conn: sqlite3.Connection,
    parent_id: str,
    day: str,
    *,
    baby_id: Optional[int] = None,
) -> int:
    query = "SELECT COUNT(*) FROM badge_collections WHERE parent_id = ? AND completed_day = ?"
    params: List[Any] = [parent_id, day]
    if baby_id is not None:
        query += " AND baby_id = ?"
        params.append(baby_id)
    return conn.execute(query, tuple(params)).fetchone()[0]


def insert_collection(
    conn: sqlite3.Connection,
    *,
    baby_id: int,
    badge_id: int,
    parent_id: str,
    completed_at: datetime,
    note: Optional[str],
    media: List[MediaItem],
    status: VerificationStatus,
    now: datetime,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO badge_collections (
            baby_id,
            badge_id,
            parent_id,
            completed_at,
            completed_day,
            submission_note,
            submission_media,
            verification_status,
            created_at,
            updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            baby_id,
            badge_id,
            parent_id,
            completed_at.isoformat(),
            completed_at.date().isoformat(),
            note,
            _media_json(media),
            status.value,
            now.isoformat(),
            now.isoformat(),
        ),
    )
    return cursor.lastrowid


def fetch_collection(conn: sqlite3.Connection, collection_id: int) -> Optional[BadgeCollection]:
    conn.row_factory = sqlite3.Row
    row = conn.execute("SELECT * FROM badge_collections WHERE id = ?", (collection_id,)).fetchone()
    if not row:
        return None
    return _row_to_collection(row)


def get_collection(collection_id: int) -> BadgeCollection:
    with get_connection() as conn:
        collection = fetch_collection(conn, collection_id)
    if collection is None:
        raise ValueError(f"Badge collection {collection_id} not found")
    return collection


def finalize_collection(
    conn: sqlite3.Connection,
    collection_id: int,
    *,
    status: VerificationStatus,
    verified_by: str,
    note: Optional[str],
    now: datetime,
) -> bool:
    """Apply a verification decision; returns False when the record was no longer pending."""
    cursor = conn.execute(
        """
        UPDATE badge_collections
        SET verification_status = ?, verified_by = ?, verified_at = ?, verification_note = ?, updated_at = ?
        WHERE id = ? AND verification_status = ?
        """,
        (
            status.value,
            verified_by,
            now.isoformat(),
            note,
            now.isoformat(),
            collection_id,
            VerificationStatus.PENDING.value,
        ),
    )
    return cursor.rowcount == 1


def save_collection_content(
    conn: sqlite3.Connection,
    collection_id: int,
    *,
    completed_at: datetime,
    note: Optional[str],
    media: List[MediaItem],
    now: datetime,
) -> None:
    conn.execute(
        """
        UPDATE badge_collections
        SET completed_at = ?, completed_day = ?, submission_note = ?, submission_media = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            completed_at.isoformat(),
            completed_at.date().isoformat(),
            note,
            _media_json(media),
            now.isoformat(),
            collection_id,
        ),
    )


def list_collections(
    *,
    baby_id: Optional[int] = None,
    parent_id: Optional[str] = None,
    status: Optional[VerificationStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[BadgeCollection], int]:
    where = " WHERE 1 = 1"
    params: List[Any] = []
    if baby_id is not None:
        where += " AND baby_id = ?"
        params.append(baby_id)
    if parent_id is not None:
        where += " AND parent_id = ?"
        params.append(parent_id)
    if status is not None:
        where += " AND verification_status = ?"
        params.append(status.value)
    with get_connection() as conn:
        conn.row_factory = sqlite3.Row
        total = conn.execute(f"SELECT COUNT(*) FROM badge_collections{where}", tuple(params)).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM badge_collections{where} ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
            tuple(params + [limit, offset]),
        ).fetchall()
    return [_row_to_collection(row) for row in rows], total


def collection_counts(baby_id: int) -> Tuple[Dict[str, int], Dict[str, int]]:
    """Return (counts per verification status, counts per badge category) for a baby."""
    with get_connection() as conn:
        status_rows = conn.execute(
            "SELECT verification_status, COUNT(*) FROM badge_collections WHERE baby_id = ? "
            "GROUP BY verification_status",
            (baby_id,),
        ).fetchall()
        category_rows = conn.execute(
            """
            SELECT badges.category, COUNT(*)
            FROM badge_collections
            JOIN badges ON badges.id = badge_collections.badge_id
            WHERE badge_collections.baby_id = ?
            GROUP BY badges.category
            """,
            (baby_id,),
        ).fetchall()
    return {row[0]: row[1] for row in status_rows}, {row[0]: row[1] for row in category_rows}


# Care tips


def _row_to_care_tip(row) -> CareTip:
    return CareTip(
        id=row["id"],
        title=row["title"],
        content=row["content"] or "",
        category=row["category"],
        importance=CareImportance(row["importance"]),
        week_start=row["week_start"],
        week_end=row["week_end"],
        view_count=row["view_count"] or 0,
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def insert_care_tip(
    *,
    title: str,
    content: str,
    category: str,
    importance: CareImportance,
    week_start: int,
    week_end: int,
    view_count: int = 0,
) -> CareTip:
    now = utcnow().isoformat()
    with get_connection() as conn:
        cursor = conn.execute(
            """
            INSERT INTO care_tips (
                title,
                content,
                category,
                importance,
                week_start,
                week_end,
                view_count,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (title, content, category, importance.value, week_start, week_end, view_count, now),
        )
        conn.commit()
        tip_id = cursor.lastrowid
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM care_tips WHERE id = ?", (tip_id,)).fetchone()
    return _row_to_care_tip(row)


def query_care_tips(
    *,
    category: Optional[str] = None,
    week: Optional[int] = None,
    importance: Optional[CareImportance] = None,
    trending: bool = False,
    search: Optional[str] = None,
    limit: int = 10,
    offset: int = 0,
) -> Tuple[List[CareTip], int]:
    where = " WHERE is_active = 1"
    params: List[Any] = []
    if category:
        where += " AND category = ?"
        params.append(category)
    if week is not None:
        where += " AND week_start <= ? AND week_end >= ?"
        params.extend([week, week])
    if importance is not None:
        where += " AND importance = ?"
        params.append(importance.value)
    if search:
        where += " AND (title LIKE ? OR content LIKE ?)"
        pattern = f"%{search}%"
        params.extend([pattern, pattern])
    if trending:
        order = " ORDER BY view_count DESC, id ASC"
    elif week is not None or importance is not None:
        order = f" ORDER BY {_IMPORTANCE_RANK} DESC, id ASC"
    else:
        order = " ORDER BY id ASC"
    with get_connection() as conn:
        conn.row_factory = sqlite3.Row
        total = conn.execute(f"SELECT COUNT(*) FROM care_tips{where}", tuple(params)).fetchone()[0]
        rows = conn.execute(
            f"SELECT * FROM care_tips{where}{order} LIMIT ? OFFSET ?",
            tuple(params + [limit, offset]),
        ).fetchall()
    return [_row_to_care_tip(row) for row in rows], total

"""
SQLite-backed memory store with an FTS5 keyword index.

One database holds the ``memories`` table and the ``memories_fts`` virtual
table, kept in sync by triggers. The store serves both the RecordStore and
the KeywordIndex surfaces consumed by the search engine.
"""

import asyncio
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger

from ..models import MemoryRecord, SearchFilters, from_epoch_ms, to_epoch_ms


SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    ts INTEGER NOT NULL,
    session_id TEXT,
    app TEXT NOT NULL,
    window_title TEXT,
    url_host TEXT,
    media_path TEXT,
    thumb_path TEXT,
    ocr_text TEXT,
    asr_text TEXT
);

CREATE INDEX IF NOT EXISTS idx_memories_ts ON memories(ts);
CREATE INDEX IF NOT EXISTS idx_memories_app ON memories(app);
CREATE INDEX IF NOT EXISTS idx_memories_url_host ON memories(url_host);

CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts USING fts5(
    id UNINDEXED,
    ocr_text,
    window_title,
    app UNINDEXED,
    url_host UNINDEXED,
    tokenize='porter unicode61'
);

CREATE TRIGGER IF NOT EXISTS memories_fts_insert AFTER INSERT ON memories
BEGIN
    INSERT INTO memories_fts(id, ocr_text, window_title, app, url_host)
    VALUES (new.id, new.ocr_text, new.window_title, new.app, new.url_host);
END;

CREATE TRIGGER IF NOT EXISTS memories_fts_delete AFTER DELETE ON memories
BEGIN
    DELETE FROM memories_fts WHERE id = old.id;
END;

CREATE TRIGGER IF NOT EXISTS memories_fts_update AFTER UPDATE ON memories
BEGIN
    DELETE FROM memories_fts WHERE id = old.id;
    INSERT INTO memories_fts(id, ocr_text, window_title, app, url_host)
    VALUES (new.id, new.ocr_text, new.window_title, new.app, new.url_host);
END;
"""

_COLUMNS = "id, ts, app, window_title, url_host, media_path, thumb_path, ocr_text, asr_text"

_PHRASE = re.compile(r'"([^"]+)"')
_WORD = re.compile(r"\w+", re.UNICODE)


def fts5_available(conn: sqlite3.Connection) -> bool:
    try:
        conn.execute("CREATE VIRTUAL TABLE temp.__fts5_check USING fts5(x)")
        conn.execute("DROP TABLE temp.__fts5_check")
        return True
    except sqlite3.OperationalError:
        return False


def _quote(term: str) -> str:
    return '"' + term.replace('"', '""') + '"'


def build_match_expression(text: str) -> str:
    """
    Turn keyword text into an FTS5 MATCH expression.

    Quoted phrases are all required. Without phrases, any bare word may
    match and bm25 rewards documents matching more of them. Every term is
    quoted so user input never reaches the FTS5 query grammar.
    """
    phrases = [p.strip() for p in _PHRASE.findall(text) if p.strip()]
    if phrases:
        return " AND ".join(_quote(p) for p in phrases)

    words = list(dict.fromkeys(w.lower() for w in _WORD.findall(text)))
    return " OR ".join(_quote(w) for w in words)


def _row_to_record(row: sqlite3.Row) -> MemoryRecord:
    text_parts = [part for part in (row["ocr_text"], row["asr_text"]) if part]
    return MemoryRecord(
        id=row["id"],
        timestamp=from_epoch_ms(row["ts"]),
        app=row["app"] or "",
        url_host=row["url_host"],
        window_title=row["window_title"],
        raw_text="\n".join(text_parts),
        media_ref=row["media_path"],
        thumb_ref=row["thumb_path"],
    )


class SQLiteMemoryStore:
    """Record store and FTS5 keyword index over one SQLite file."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    def init_schema(self) -> None:
        """Create tables, the FTS5 index and sync triggers. Idempotent."""
        conn = self._connect()
        try:
            if not fts5_available(conn):
                raise RuntimeError(
                    "SQLite FTS5 is not available in this Python build. "
                    "Install a Python/SQLite build compiled with FTS5."
                )
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()
        logger.debug(f"Memory store ready at {self.db_path}")

    # Writes (used by ingestion tooling and tests)

    def add(self, record: MemoryRecord, session_id: Optional[str] = None,
            asr_text: Optional[str] = None) -> None:
        """Insert or update one record; the FTS index follows via triggers."""
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO memories (id, ts, session_id, app, window_title, url_host,
                                      media_path, thumb_path, ocr_text, asr_text)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    ts = excluded.ts,
                    session_id = excluded.session_id,
                    app = excluded.app,
                    window_title = excluded.window_title,
                    url_host = excluded.url_host,
                    media_path = excluded.media_path,
                    thumb_path = excluded.thumb_path,
                    ocr_text = excluded.ocr_text,
                    asr_text = excluded.asr_text
                """,
                (
                    record.id,
                    record.ts_ms,
                    session_id,
                    record.app,
                    record.window_title,
                    record.url_host,
                    record.media_ref,
                    record.thumb_ref,
                    record.raw_text,
                    asr_text,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, record_id: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM memories WHERE id = ?", (record_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def iter_records(self, batch_size: int = 500) -> Iterator[MemoryRecord]:
        """Every record, oldest first."""
        conn = self._connect()
        try:
            cursor = conn.execute(f"SELECT {_COLUMNS} FROM memories ORDER BY ts ASC")
            while True:
                rows = cursor.fetchmany(batch_size)
                if not rows:
                    break
                for row in rows:
                    yield _row_to_record(row)
        finally:
            conn.close()

    # KeywordIndex

    def _query_sync(self, text: str, filters: SearchFilters, limit: int) -> List[Dict[str, Any]]:
        match = build_match_expression(text)
        if not match and filters.is_empty:
            return []

        where = []
        params: List[Any] = []
        if filters.time_window:
            where.append("m.ts >= ? AND m.ts < ?")
            params.extend([to_epoch_ms(filters.time_window.start), to_epoch_ms(filters.time_window.end)])
        if filters.app_hints or filters.host:
            where.append("memrecall_filter(m.ts, m.app, m.url_host)")

        conn = self._connect()
        try:
            conn.create_function(
                "memrecall_filter", 3,
                lambda ts, app, host: filters.matches(from_epoch_ms(ts), app, host),
                deterministic=True,
            )

            if match:
                sql = f"""
                    SELECT m.id AS record_id, -bm25(memories_fts) AS score
                    FROM memories_fts
                    JOIN memories m ON m.id = memories_fts.id
                    WHERE memories_fts MATCH ?
                    {"AND " + " AND ".join(where) if where else ""}
                    ORDER BY bm25(memories_fts) ASC, m.ts DESC
                    LIMIT ?
                """
                rows = conn.execute(sql, [match] + params + [limit]).fetchall()
            else:
                # filter-only query: newest matching records, no lexical evidence
                sql = f"""
                    SELECT m.id AS record_id, 0.0 AS score
                    FROM memories m
                    WHERE {" AND ".join(where)}
                    ORDER BY m.ts DESC
                    LIMIT ?
                """
                rows = conn.execute(sql, params + [limit]).fetchall()
        finally:
            conn.close()

        results = [dict(row) for row in rows]
        logger.debug(f"FTS query {match!r} returned {len(results)} rows")
        return results

    async def query(self, text: str, filters: SearchFilters, limit: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._query_sync, text, filters, limit)

    # RecordStore

    def _get_sync(self, record_id: str) -> Optional[MemoryRecord]:
        conn = self._connect()
        try:
            row = conn.execute(f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (record_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        return await asyncio.to_thread(self._get_sync, record_id)

    def _recent_sync(self, limit: int) -> List[MemoryRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM memories ORDER BY ts DESC, id ASC LIMIT ?", (limit,)
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    async def recent(self, limit: int) -> List[MemoryRecord]:
        return await asyncio.to_thread(self._recent_sync, limit)

    def _stats_sync(self) -> Dict[str, Any]:
        conn = self._connect()
        try:
            totals = conn.execute(
                "SELECT COUNT(*) AS total, COUNT(DISTINCT app) AS apps, MIN(ts) AS oldest, MAX(ts) AS newest "
                "FROM memories"
            ).fetchone()
            apps = conn.execute(
                "SELECT app, COUNT(*) AS count FROM memories GROUP BY app ORDER BY count DESC, app ASC"
            ).fetchall()
            fts_entries = conn.execute("SELECT COUNT(*) FROM memories_fts").fetchone()[0]
        finally:
            conn.close()

        return {
            "total_memories": totals["total"],
            "unique_apps": totals["apps"],
            "oldest_memory": totals["oldest"],
            "newest_memory": totals["newest"],
            "app_distribution": [{"app": row["app"], "count": row["count"]} for row in apps],
            "fts_entries": fts_entries,
            "db_size_bytes": self.db_path.stat().st_size if self.db_path.exists() else 0,
        }

    async def stats(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._stats_sync)

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from newsdesk.core.canonical import normalize_url
from newsdesk.core.content_types import ArticleRecord, RewrittenArticle
from newsdesk.core.settings import Settings


class ArticleStore(Protocol):
    """Read side used by the duplicate detector, plus the hash backfill writes."""

    def find_by_url(self, url: str) -> ArticleRecord | None: ...

    def find_by_normalized_url(self, url: str) -> ArticleRecord | None: ...

    def find_recent(
        self, days: int, limit: int | None = None, require_content: bool = False
    ) -> list[ArticleRecord]: ...

    def find_by_content_hash(self, content_hash: str) -> ArticleRecord | None: ...

    def list_without_content_hash(self) -> list[ArticleRecord]: ...

    def update_content_hash(self, article_id: int, content_hash: str) -> None: ...

    def save_article(self, article: RewrittenArticle) -> int: ...


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS articles (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url TEXT NOT NULL,
  normalized_url TEXT NOT NULL,
  title TEXT NOT NULL,
  content TEXT NOT NULL DEFAULT '',
  source_id TEXT,
  provider TEXT,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_articles_url ON articles(url);
CREATE INDEX IF NOT EXISTS idx_articles_normalized_url ON articles(normalized_url);
CREATE INDEX IF NOT EXISTS idx_articles_created_at ON articles(created_at);

CREATE TABLE IF NOT EXISTS app_settings (
  key TEXT PRIMARY KEY,
  value TEXT,
  updated_at TEXT DEFAULT (datetime('now'))
);
"""

_ARTICLE_COLUMNS = "id, url, normalized_url, title, content, content_hash, source_id, created_at"


def _run_migrations(conn: sqlite3.Connection) -> None:
    """Apply column additions for databases created before content hashing."""
    cur = conn.execute("PRAGMA table_info(articles)")
    columns = {row[1] for row in cur.fetchall()}

    if "content_hash" not in columns:
        conn.execute("ALTER TABLE articles ADD COLUMN content_hash TEXT")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_content_hash ON articles(content_hash)")
    conn.commit()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_record(row: sqlite3.Row | tuple) -> ArticleRecord:
    created_at = datetime.fromisoformat(row[7]) if row[7] else None
    return ArticleRecord(
        id=row[0],
        url=row[1],
        normalized_url=row[2],
        title=row[3],
        content=row[4] or "",
        content_hash=row[5],
        source_id=row[6],
        created_at=created_at,
    )


@dataclass
class DB:
    conn: sqlite3.Connection

    def init(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        _run_migrations(self.conn)

    def get_stats(self) -> dict[str, Any]:
        cur = self.conn.execute("select count(*) from articles")
        articles = cur.fetchone()[0]
        cur = self.conn.execute("select count(*) from articles where content_hash is null")
        unhashed = cur.fetchone()[0]
        return {"articles": articles, "without_content_hash": unhashed}

    # ==================== Article Store ====================

    def _find_one(self, where: str, params: tuple) -> ArticleRecord | None:
        cur = self.conn.execute(
            f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE {where} ORDER BY id LIMIT 1",
            params,
        )
        row = cur.fetchone()
        return _row_to_record(row) if row else None

    def find_by_url(self, url: str) -> ArticleRecord | None:
        return self._find_one("url = ?", (url,))

    def find_by_normalized_url(self, url: str) -> ArticleRecord | None:
        return self._find_one("normalized_url = ?", (url,))

    def find_by_content_hash(self, content_hash: str) -> ArticleRecord | None:
        return self._find_one("content_hash = ?", (content_hash,))

    def find_recent(
        self, days: int, limit: int | None = None, require_content: bool = False
    ) -> list[ArticleRecord]:
        """Articles created within the last `days` days, newest first."""
        since = (_utc_now() - timedelta(days=days)).isoformat()
        sql = f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE created_at >= ?"
        params: list[Any] = [since]
        if require_content:
            sql += " AND content != ''"
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cur = self.conn.execute(sql, params)
        return [_row_to_record(r) for r in cur.fetchall()]

    def list_without_content_hash(self) -> list[ArticleRecord]:
        cur = self.conn.execute(
            f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE content_hash IS NULL ORDER BY id"
        )
        return [_row_to_record(r) for r in cur.fetchall()]

    def update_content_hash(self, article_id: int, content_hash: str) -> None:
        self.conn.execute(
            "UPDATE articles SET content_hash = ? WHERE id = ?",
            (content_hash, article_id),
        )
        self.conn.commit()

    def save_article(self, article: RewrittenArticle) -> int:
        """Persist a rewritten article. Returns the new article id."""
        cur = self.conn.execute(
            """
            INSERT INTO articles (
                url, normalized_url, title, content, content_hash, source_id, provider, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                article.url,
                article.normalized_url,
                article.title,
                article.content,
                article.content_hash,
                article.source_id,
                article.provider_name,
                _utc_now().isoformat(),
            ),
        )
        article_id = cur.fetchone()[0]
        self.conn.commit()
        return article_id

    def insert_article(
        self,
        *,
        url: str,
        title: str,
        content: str = "",
        content_hash: str | None = None,
        source_id: str | None = None,
        created_at: datetime | None = None,
    ) -> int:
        """Insert an article as-is, e.g. one imported before content hashing existed."""
        cur = self.conn.execute(
            """
            INSERT INTO articles (url, normalized_url, title, content, content_hash, source_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                url,
                normalize_url(url),
                title,
                content,
                content_hash,
                source_id,
                (created_at or _utc_now()).isoformat(),
            ),
        )
        article_id = cur.fetchone()[0]
        self.conn.commit()
        return article_id

    # ==================== App Settings ====================

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value by key."""
        cur = self.conn.execute(
            "SELECT value FROM app_settings WHERE key = ?",
            (key,)
        )
        row = cur.fetchone()
        return row[0] if row else default

    def set_setting(self, key: str, value: str) -> None:
        """Set a setting value (upsert)."""
        self.conn.execute(
            """
            INSERT INTO app_settings (key, value, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = datetime('now')
            """,
            (key, value)
        )
        self.conn.commit()


_db: DB | None = None


def connect(path: str) -> DB:
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    db = DB(conn=conn)
    db.init()
    return db


def init_db() -> None:
    global _db

    s = Settings.from_env()
    if s.db_path != ":memory:":
        os.makedirs(os.path.dirname(s.db_path) or ".", exist_ok=True)
    _db = connect(s.db_path)


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db

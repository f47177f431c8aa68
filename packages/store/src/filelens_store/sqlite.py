"""SQLiteStore — local file-based store.

Why SQLite as the default store:
- Batteries included: ships with Python, no extra dependencies.
- Fast random access: the latest-revision lookup that runs before every
  analysis is an indexed query, not a scan.
- The UNIQUE (project_id, path, filename, version) constraint backs the
  per-file version invariant even if two processes share one database file.

Schema:
  projects        — one row per project
  file_revisions  — immutable file snapshots, versioned per file identity
  reviews         — one row per analysis attempt; issues/summary/metadata as JSON
  review_comments — user comments and AI replies attached to a review
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator

from filelens_core.errors import NotFoundError, PersistenceError
from filelens_core.models import ChangedLines, Issue, Summary
from filelens_store.base import BaseStore
from filelens_store.models import FileRevision, Project, Review, ReviewComment, ReviewStatus, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    owner       TEXT NOT NULL,
    created_at  TEXT
);
CREATE TABLE IF NOT EXISTS file_revisions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id    INTEGER NOT NULL REFERENCES projects (id),
    path          TEXT NOT NULL,
    filename      TEXT NOT NULL,
    content       TEXT NOT NULL,
    content_hash  TEXT NOT NULL,
    version       INTEGER NOT NULL,
    size          INTEGER DEFAULT 0,
    language      TEXT,
    last_modified TEXT,
    UNIQUE (project_id, path, filename, version)
);
CREATE TABLE IF NOT EXISTS reviews (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id             INTEGER NOT NULL REFERENCES file_revisions (id),
    model               TEXT,
    status              TEXT NOT NULL,
    is_incremental      INTEGER DEFAULT 0,
    changed_lines_json  TEXT,
    issues_json         TEXT DEFAULT '[]',
    summary_json        TEXT,
    metadata_json       TEXT DEFAULT '{}',
    created_at          TEXT,
    updated_at          TEXT
);
CREATE TABLE IF NOT EXISTS review_comments (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    review_id    INTEGER NOT NULL REFERENCES reviews (id),
    issue_index  INTEGER,
    author       TEXT,
    body         TEXT,
    is_ai        INTEGER DEFAULT 0,
    created_at   TEXT
);
CREATE INDEX IF NOT EXISTS idx_projects_owner  ON projects (owner);
CREATE INDEX IF NOT EXISTS idx_revisions_file  ON file_revisions (project_id, path, filename);
CREATE INDEX IF NOT EXISTS idx_reviews_file    ON reviews (file_id);
CREATE INDEX IF NOT EXISTS idx_comments_review ON review_comments (review_id);
"""

_REVIEW_SELECT = """
SELECT r.*, f.filename AS filename, f.path AS path, f.version AS version
FROM reviews r JOIN file_revisions f ON f.id = r.file_id
"""


class SQLiteStore(BaseStore):
    """Stores everything in a local SQLite database file.

    The database file path defaults to `.filelens.db` in the current working
    directory. Configure via .filelens.yml: `store_path: /path/to/filelens.db`.
    One connection is shared behind a lock so batch worker threads can use
    the same store.
    """

    def __init__(self, db_path: str = ".filelens.db"):
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {db_path}: {e}") from e

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise PersistenceError(f"{type(e).__name__}: {e}") from e

    # ------------------------------------------------------------------ #
    # Projects                                                             #
    # ------------------------------------------------------------------ #

    def create_project(self, name: str, owner: str) -> Project:
        project = Project(id=0, name=name, owner=owner)
        with self._tx() as conn:
            cur = conn.execute(
                "INSERT INTO projects (name, owner, created_at) VALUES (?, ?, ?)",
                (project.name, project.owner, project.created_at),
            )
        project.id = cur.lastrowid
        return project

    def get_project(self, project_id: int, owner: str | None = None) -> Project | None:
        with self._tx() as conn:
            if owner is None:
                row = conn.execute("SELECT * FROM projects WHERE id=?", (project_id,)).fetchone()
            else:
                row = conn.execute("SELECT * FROM projects WHERE id=? AND owner=?", (project_id, owner)).fetchone()
        return self._row_to_project(row) if row else None

    def list_projects(self, owner: str) -> list[Project]:
        with self._tx() as conn:
            rows = conn.execute("SELECT * FROM projects WHERE owner=? ORDER BY id", (owner,)).fetchall()
        return [self._row_to_project(r) for r in rows]

    # ------------------------------------------------------------------ #
    # File revisions                                                       #
    # ------------------------------------------------------------------ #

    def latest_revision(self, project_id: int, path: str, filename: str) -> FileRevision | None:
        with self._tx() as conn:
            row = conn.execute(
                """
                SELECT * FROM file_revisions
                WHERE project_id=? AND path=? AND filename=?
                ORDER BY version DESC LIMIT 1
                """,
                (project_id, path, filename),
            ).fetchone()
        return self._row_to_revision(row) if row else None

    def create_revision(self, revision: FileRevision) -> FileRevision:
        with self._tx() as conn:
            cur = conn.execute(
                """
                INSERT INTO file_revisions
                  (project_id, path, filename, content, content_hash,
                   version, size, language, last_modified)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    revision.project_id,
                    revision.path,
                    revision.filename,
                    revision.content,
                    revision.content_hash,
                    revision.version,
                    revision.size,
                    revision.language,
                    revision.last_modified,
                ),
            )
        return replace(revision, id=cur.lastrowid)

    def get_revision(self, revision_id: int) -> FileRevision | None:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM file_revisions WHERE id=?", (revision_id,)).fetchone()
        return self._row_to_revision(row) if row else None

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def create_review(self, review: Review) -> Review:
        with self._tx() as conn:
            cur = conn.execute(
                """
                INSERT INTO reviews
                  (file_id, model, status, is_incremental, changed_lines_json,
                   issues_json, summary_json, metadata_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    review.file_id,
                    review.model,
                    review.status.value,
                    int(review.is_incremental),
                    json.dumps(review.changed_lines.to_dict()) if review.changed_lines else None,
                    json.dumps([i.to_dict() for i in review.issues]),
                    json.dumps(review.summary.to_dict()) if review.summary else None,
                    json.dumps(review.metadata),
                    review.created_at,
                    review.updated_at,
                ),
            )
        return self.get_review(cur.lastrowid)

    def complete_review(
        self,
        review_id: int,
        issues: list[Issue],
        summary: Summary,
        metadata: dict[str, Any],
    ) -> Review:
        return self._finish(
            review_id,
            ReviewStatus.COMPLETED,
            metadata,
            issues_json=json.dumps([i.to_dict() for i in issues]),
            summary_json=json.dumps(summary.to_dict()),
        )

    def fail_review(self, review_id: int, metadata: dict[str, Any]) -> Review:
        return self._finish(review_id, ReviewStatus.FAILED, metadata)

    def _finish(self, review_id: int, status: ReviewStatus, metadata: dict[str, Any], **columns: str) -> Review:
        assignments = "".join(f", {col}=?" for col in columns)
        with self._tx() as conn:
            row = conn.execute("SELECT status FROM reviews WHERE id=?", (review_id,)).fetchone()
            if row is None:
                raise NotFoundError(f"Review {review_id} not found")
            if row["status"] != ReviewStatus.PROCESSING.value:
                raise PersistenceError(f"Review {review_id} is already {row['status']}")
            conn.execute(
                f"UPDATE reviews SET status=?, metadata_json=?, updated_at=?{assignments} WHERE id=?",
                (status.value, json.dumps(metadata), utc_now(), *columns.values(), review_id),
            )
        return self.get_review(review_id)

    def get_review(self, review_id: int) -> Review | None:
        with self._tx() as conn:
            row = conn.execute(_REVIEW_SELECT + " WHERE r.id=?", (review_id,)).fetchone()
        return self._row_to_review(row) if row else None

    def list_reviews(self, project_id: int) -> list[Review]:
        with self._tx() as conn:
            rows = conn.execute(
                _REVIEW_SELECT + " WHERE f.project_id=? ORDER BY r.created_at, r.id",
                (project_id,),
            ).fetchall()
        return [self._row_to_review(r) for r in rows]

    def delete_review(self, review_id: int) -> bool:
        with self._tx() as conn:
            conn.execute("DELETE FROM review_comments WHERE review_id=?", (review_id,))
            cur = conn.execute("DELETE FROM reviews WHERE id=?", (review_id,))
        return cur.rowcount > 0

    def purge_failed_reviews(self, older_than: str) -> int:
        with self._tx() as conn:
            conn.execute(
                """
                DELETE FROM review_comments WHERE review_id IN
                  (SELECT id FROM reviews WHERE status=? AND created_at < ?)
                """,
                (ReviewStatus.FAILED.value, older_than),
            )
            cur = conn.execute(
                "DELETE FROM reviews WHERE status=? AND created_at < ?",
                (ReviewStatus.FAILED.value, older_than),
            )
        logger.info("Purged %d failed review(s) created before %s", cur.rowcount, older_than)
        return cur.rowcount

    # ------------------------------------------------------------------ #
    # Comments                                                             #
    # ------------------------------------------------------------------ #

    def add_comment(self, comment: ReviewComment) -> ReviewComment:
        with self._tx() as conn:
            cur = conn.execute(
                """
                INSERT INTO review_comments (review_id, issue_index, author, body, is_ai, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    comment.review_id,
                    comment.issue_index,
                    comment.author,
                    comment.body,
                    int(comment.is_ai),
                    comment.created_at,
                ),
            )
        comment.id = cur.lastrowid
        return comment

    def list_comments(self, review_id: int) -> list[ReviewComment]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM review_comments WHERE review_id=? ORDER BY created_at, id",
                (review_id,),
            ).fetchall()
        return [
            ReviewComment(
                id=r["id"],
                review_id=r["review_id"],
                issue_index=r["issue_index"],
                author=r["author"] or "",
                body=r["body"] or "",
                is_ai=bool(r["is_ai"]),
                created_at=r["created_at"] or "",
            )
            for r in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------ #
    # Row mapping                                                          #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(id=row["id"], name=row["name"], owner=row["owner"], created_at=row["created_at"] or "")

    @staticmethod
    def _row_to_revision(row: sqlite3.Row) -> FileRevision:
        return FileRevision(
            id=row["id"],
            project_id=row["project_id"],
            path=row["path"],
            filename=row["filename"],
            content=row["content"],
            content_hash=row["content_hash"],
            version=row["version"],
            size=row["size"],
            language=row["language"] or "plaintext",
            last_modified=row["last_modified"] or "",
        )

    @staticmethod
    def _row_to_review(row: sqlite3.Row) -> Review:
        changed = json.loads(row["changed_lines_json"]) if row["changed_lines_json"] else None
        summary = json.loads(row["summary_json"]) if row["summary_json"] else None
        return Review(
            id=row["id"],
            file_id=row["file_id"],
            model=row["model"] or "",
            status=ReviewStatus(row["status"]),
            is_incremental=bool(row["is_incremental"]),
            changed_lines=ChangedLines.from_dict(changed) if changed is not None else None,
            issues=[Issue.from_dict(i) for i in json.loads(row["issues_json"] or "[]")],
            summary=Summary.from_dict(summary) if summary is not None else None,
            metadata=json.loads(row["metadata_json"] or "{}"),
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
            filename=row["filename"],
            path=row["path"],
            version=row["version"],
        )

"""In-memory store. Nothing survives the process.

Useful for tests and one-off runs (`store: memory` in .filelens.yml). It
enforces the same invariants as SQLiteStore: unique revision versions per
file identity and single terminal transitions for reviews.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from typing import Any

from filelens_core.errors import NotFoundError, PersistenceError
from filelens_core.models import Issue, Summary
from filelens_store.base import BaseStore
from filelens_store.models import FileRevision, Project, Review, ReviewComment, ReviewStatus, utc_now


class InMemoryStore(BaseStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._projects: dict[int, Project] = {}
        self._revisions: dict[int, FileRevision] = {}
        self._reviews: dict[int, Review] = {}
        self._comments: dict[int, ReviewComment] = {}

    def create_project(self, name: str, owner: str) -> Project:
        with self._lock:
            project = Project(id=next(self._ids), name=name, owner=owner)
            self._projects[project.id] = project
            return project

    def get_project(self, project_id: int, owner: str | None = None) -> Project | None:
        project = self._projects.get(project_id)
        if project is None or (owner is not None and project.owner != owner):
            return None
        return project

    def list_projects(self, owner: str) -> list[Project]:
        return [p for p in self._projects.values() if p.owner == owner]

    def latest_revision(self, project_id: int, path: str, filename: str) -> FileRevision | None:
        with self._lock:
            matches = [
                r
                for r in self._revisions.values()
                if r.project_id == project_id and r.path == path and r.filename == filename
            ]
        return max(matches, key=lambda r: r.version, default=None)

    def create_revision(self, revision: FileRevision) -> FileRevision:
        with self._lock:
            for r in self._revisions.values():
                if (r.project_id, r.path, r.filename, r.version) == (
                    revision.project_id,
                    revision.path,
                    revision.filename,
                    revision.version,
                ):
                    raise PersistenceError(
                        f"Revision {revision.version} of {revision.path}/{revision.filename} already exists"
                    )
            stored = replace(revision, id=next(self._ids))
            self._revisions[stored.id] = stored
            return stored

    def get_revision(self, revision_id: int) -> FileRevision | None:
        return self._revisions.get(revision_id)

    def create_review(self, review: Review) -> Review:
        with self._lock:
            revision = self._revisions.get(review.file_id)
            if revision is None:
                raise PersistenceError(f"File revision {review.file_id} does not exist")
            stored = replace(
                review,
                id=next(self._ids),
                filename=revision.filename,
                path=revision.path,
                version=revision.version,
            )
            self._reviews[stored.id] = stored
            return replace(stored)

    def complete_review(
        self,
        review_id: int,
        issues: list[Issue],
        summary: Summary,
        metadata: dict[str, Any],
    ) -> Review:
        return self._finish(review_id, ReviewStatus.COMPLETED, metadata, issues=list(issues), summary=summary)

    def fail_review(self, review_id: int, metadata: dict[str, Any]) -> Review:
        return self._finish(review_id, ReviewStatus.FAILED, metadata)

    def _finish(self, review_id: int, status: ReviewStatus, metadata: dict[str, Any], **fields) -> Review:
        with self._lock:
            review = self._reviews.get(review_id)
            if review is None:
                raise NotFoundError(f"Review {review_id} not found")
            if review.status is not ReviewStatus.PROCESSING:
                raise PersistenceError(f"Review {review_id} is already {review.status.value}")
            updated = replace(review, status=status, metadata=dict(metadata), updated_at=utc_now(), **fields)
            self._reviews[review_id] = updated
            return replace(updated)

    def get_review(self, review_id: int) -> Review | None:
        review = self._reviews.get(review_id)
        return replace(review) if review else None

    def list_reviews(self, project_id: int) -> list[Review]:
        with self._lock:
            return [
                replace(r)
                for r in self._reviews.values()
                if self._revisions[r.file_id].project_id == project_id
            ]

    def delete_review(self, review_id: int) -> bool:
        with self._lock:
            if self._reviews.pop(review_id, None) is None:
                return False
            for comment_id in [c.id for c in self._comments.values() if c.review_id == review_id]:
                del self._comments[comment_id]
            return True

    def purge_failed_reviews(self, older_than: str) -> int:
        with self._lock:
            stale = [
                r.id
                for r in self._reviews.values()
                if r.status is ReviewStatus.FAILED and r.created_at < older_than
            ]
            for review_id in stale:
                self.delete_review(review_id)
            return len(stale)

    def add_comment(self, comment: ReviewComment) -> ReviewComment:
        with self._lock:
            if comment.review_id not in self._reviews:
                raise PersistenceError(f"Review {comment.review_id} does not exist")
            stored = replace(comment, id=next(self._ids))
            self._comments[stored.id] = stored
            return stored

    def list_comments(self, review_id: int) -> list[ReviewComment]:
        return [c for c in self._comments.values() if c.review_id == review_id]

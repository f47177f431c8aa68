"""Abstract store interface.

Storage backends (SQLite, in-memory) implement this interface. The
orchestrator and the CLI depend on BaseStore, not on a concrete backend,
so backends are swappable without touching either.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from filelens_core.models import Issue, Summary
    from filelens_store.models import FileRevision, Project, Review, ReviewComment


class BaseStore(ABC):
    """Persistence layer for projects, file revisions, reviews and comments.

    Storage failures raise PersistenceError. Lookups that miss return None
    (or an empty list) rather than raising.
    """

    # ------------------------------------------------------------------ #
    # Projects                                                             #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_project(self, name: str, owner: str) -> Project:
        """Create and return a new project owned by ``owner``."""

    @abstractmethod
    def get_project(self, project_id: int, owner: str | None = None) -> Project | None:
        """Return the project, or None if it does not exist or belongs to someone else."""

    @abstractmethod
    def list_projects(self, owner: str) -> list[Project]:
        """Return the projects owned by ``owner``."""

    # ------------------------------------------------------------------ #
    # File revisions                                                       #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def latest_revision(self, project_id: int, path: str, filename: str) -> FileRevision | None:
        """Return the highest-version revision for this file identity, or None."""

    @abstractmethod
    def create_revision(self, revision: FileRevision) -> FileRevision:
        """Persist a revision and return it with its id assigned.

        Raises PersistenceError if the (project, path, filename, version)
        slot is already taken.
        """

    @abstractmethod
    def get_revision(self, revision_id: int) -> FileRevision | None:
        """Return a revision by id, or None."""

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create_review(self, review: Review) -> Review:
        """Persist a PROCESSING review and return it with its id assigned."""

    @abstractmethod
    def complete_review(
        self,
        review_id: int,
        issues: list[Issue],
        summary: Summary,
        metadata: dict[str, Any],
    ) -> Review:
        """Move a PROCESSING review to COMPLETED with its results.

        Raises NotFoundError for an unknown id and PersistenceError if the
        review already reached a terminal state.
        """

    @abstractmethod
    def fail_review(self, review_id: int, metadata: dict[str, Any]) -> Review:
        """Move a PROCESSING review to FAILED, keeping it as an audit record.

        Same preconditions as complete_review().
        """

    @abstractmethod
    def get_review(self, review_id: int) -> Review | None:
        """Return a review by id, or None."""

    @abstractmethod
    def list_reviews(self, project_id: int) -> list[Review]:
        """Return all reviews for a project, oldest first. Never raises on an empty project."""

    @abstractmethod
    def delete_review(self, review_id: int) -> bool:
        """Delete a review and its comments. Returns False if it did not exist."""

    @abstractmethod
    def purge_failed_reviews(self, older_than: str) -> int:
        """Delete FAILED reviews created before the ISO-8601 timestamp; return how many."""

    # ------------------------------------------------------------------ #
    # Comments                                                             #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def add_comment(self, comment: ReviewComment) -> ReviewComment:
        """Persist a comment on a review and return it with its id assigned."""

    @abstractmethod
    def list_comments(self, review_id: int) -> list[ReviewComment]:
        """Return the comments on a review, oldest first."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional: subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """


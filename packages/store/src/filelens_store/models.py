"""Persisted records: projects, file revisions, reviews and review comments.

Issue, Summary and ChangedLines come from filelens_core and are embedded
as-is; the store only serialises them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from filelens_core.models import ChangedLines, Issue, Summary


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReviewStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class Project:
    id: int
    name: str
    owner: str
    created_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class FileRevision:
    """One immutable snapshot of a file, versioned per (project, path, filename)."""

    project_id: int
    path: str
    filename: str
    content: str
    content_hash: str
    version: int
    size: int
    language: str
    last_modified: str = field(default_factory=utc_now)
    id: int | None = None


@dataclass
class Review:
    """Outcome of one analysis of one FileRevision.

    Created PROCESSING before the model call and moved exactly once to
    COMPLETED or FAILED afterwards.
    """

    file_id: int
    model: str
    status: ReviewStatus = ReviewStatus.PROCESSING
    is_incremental: bool = False
    changed_lines: ChangedLines | None = None
    issues: list[Issue] = field(default_factory=list)
    summary: Summary | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    id: int | None = None
    # Denormalised from the revision so listings need no second lookup.
    filename: str = ""
    path: str = ""
    version: int = 0


@dataclass
class ReviewComment:
    review_id: int
    issue_index: int | None
    author: str
    body: str
    is_ai: bool = False
    created_at: str = field(default_factory=utc_now)
    id: int | None = None

"""Value objects produced by the review pipeline.

These carry no persistence concerns; ``filelens_store`` embeds them in its
records and serialises them with ``to_dict`` / ``from_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SEVERITIES = ("critical", "high", "medium", "low", "info")
CATEGORIES = ("security", "bug", "performance", "style", "best-practice")


@dataclass
class Issue:
    """A single model-identified problem in a reviewed file."""

    line: int
    severity: str
    title: str
    category: str = "best-practice"
    description: str = ""
    suggestion: str = ""
    reasoning: str = ""
    fixed_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = {
            "line": self.line,
            "severity": self.severity,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "suggestion": self.suggestion,
            "reasoning": self.reasoning,
        }
        if self.fixed_code:
            d["fixedCode"] = self.fixed_code
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Issue:
        return cls(
            line=int(d.get("line", 1)),
            severity=d.get("severity", "info"),
            title=d.get("title", ""),
            category=d.get("category", "best-practice"),
            description=d.get("description", ""),
            suggestion=d.get("suggestion", ""),
            reasoning=d.get("reasoning", ""),
            fixed_code=d.get("fixedCode"),
        )


@dataclass
class Summary:
    total_issues: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)
    estimated_minutes: int = 0
    estimated_fix_time: str = "0m"

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_issues": self.total_issues,
            "by_severity": dict(self.by_severity),
            "by_category": dict(self.by_category),
            "estimated_minutes": self.estimated_minutes,
            "estimated_fix_time": self.estimated_fix_time,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Summary:
        return cls(
            total_issues=d.get("total_issues", 0),
            by_severity=dict(d.get("by_severity", {})),
            by_category=dict(d.get("by_category", {})),
            estimated_minutes=d.get("estimated_minutes", 0),
            estimated_fix_time=d.get("estimated_fix_time", "0m"),
        )


@dataclass(frozen=True)
class ChangedLines:
    """Snapshot of the diff stored on an incremental review."""

    added: tuple[int, ...] = ()
    modified: tuple[int, ...] = ()
    deleted: tuple[int, ...] = ()

    @property
    def in_new_file(self) -> list[int]:
        """Added and modified line numbers, i.e. the positions that exist in the new revision."""
        return sorted(set(self.added) | set(self.modified))

    def to_dict(self) -> dict[str, list[int]]:
        return {"added": list(self.added), "modified": list(self.modified), "deleted": list(self.deleted)}

    @classmethod
    def from_dict(cls, d: dict) -> ChangedLines:
        return cls(
            added=tuple(d.get("added", ())),
            modified=tuple(d.get("modified", ())),
            deleted=tuple(d.get("deleted", ())),
        )

from __future__ import annotations

from collections import Counter
from typing import Iterable

from filelens_core.models import Issue, Summary

# Minutes of remediation effort per issue; "info" findings cost nothing.
FIX_MINUTES = {"critical": 30, "high": 15, "medium": 10, "low": 5, "info": 0}


def format_duration(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}m" if hours > 0 else f"{rest}m"


def summarize(issues: Iterable[Issue]) -> Summary:
    """Tally issues by severity and category and estimate the time to fix them."""
    issues = list(issues)
    by_severity = Counter(i.severity for i in issues)
    by_category = Counter(i.category for i in issues)
    minutes = sum(FIX_MINUTES.get(sev, 0) * count for sev, count in by_severity.items())
    return Summary(
        total_issues=len(issues),
        by_severity=dict(by_severity),
        by_category=dict(by_category),
        estimated_minutes=minutes,
        estimated_fix_time=format_duration(minutes),
    )


def project_stats(reviews: Iterable) -> dict:
    """Aggregate stored reviews (anything with status/issues/filename/path/is_incremental).

    Only completed reviews contribute issues; failed and in-flight ones are
    counted by status alone.
    """
    reviews = list(reviews)
    status_counter: Counter[str] = Counter()
    severity_counter: Counter[str] = Counter()
    category_counter: Counter[str] = Counter()
    file_counter: Counter[str] = Counter()
    incremental = 0

    for review in reviews:
        status = getattr(review.status, "value", review.status)
        status_counter[status] += 1
        if review.is_incremental:
            incremental += 1
        if status != "COMPLETED":
            continue
        for issue in review.issues:
            severity_counter[issue.severity] += 1
            category_counter[issue.category] += 1
            file_counter[f"{review.path.rstrip('/')}/{review.filename}"] += 1

    total_issues = sum(severity_counter.values())
    completed = status_counter.get("COMPLETED", 0)
    minutes = sum(FIX_MINUTES.get(sev, 0) * count for sev, count in severity_counter.items())
    return {
        "total_reviews": len(reviews),
        "by_status": dict(status_counter),
        "total_issues": total_issues,
        "avg_issues_per_review": round(total_issues / completed, 1) if completed else 0.0,
        "by_severity": dict(severity_counter),
        "by_category": dict(category_counter),
        "files": file_counter.most_common(),
        "incremental_share": round(incremental / len(reviews), 3) if reviews else 0.0,
        "estimated_fix_time": format_duration(minutes),
    }

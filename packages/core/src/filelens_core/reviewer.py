"""Core file review orchestration.

One analysis request walks this state machine:

    START → HASH_COMPARE ─(same hash as latest revision)→ SKIP (unchanged)
                         └→ [DIFF if a prior revision exists]
                            → PERSIST_REVISION → CREATE_REVIEW (PROCESSING)
                            → MODEL_CALL → COMPLETED | FAILED

A prior revision with different content switches the model call to
incremental mode: only the changed neighbourhoods are sent. Without a prior
revision the whole file is analysed. Any failure after the review row exists
marks it FAILED (the row is kept) and is re-raised to the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from filelens_core.catalog import GuidelineCatalog, load_catalog
from filelens_core.config import DEFAULT_CONFIG, analysis_options, reply_options
from filelens_core.diff import DiffResult, build_snippet, compute_diff, similarity
from filelens_core.errors import InputValidationError, NotFoundError
from filelens_core.hashing import content_hash
from filelens_core.models import ChangedLines, Issue, Summary
from filelens_core.parser import ResponseParser
from filelens_core.prompts import build_full_prompt, build_incremental_prompt, build_reply_prompt
from filelens_core.providers.base import BaseModelClient, estimate_tokens
from filelens_core.providers.ollama import OllamaClient
from filelens_core.providers.openai import OpenAICompatibleClient
from filelens_core.summary import summarize
from filelens_core.utils.code import detect_language
from filelens_store.models import FileRevision, Review, ReviewComment

if TYPE_CHECKING:
    from filelens_store.base import BaseStore

logger = logging.getLogger(__name__)

REPLY_FALLBACK = "I'm here to help! Could you provide more details about your question?"
AI_AUTHOR = "filelens"

# Edit distance is quadratic; skip the similarity metric for larger files.
_SIMILARITY_MAX_CHARS = 5000
_RAW_RESPONSE_MAX_CHARS = 2000
_REPLY_CONTEXT_LINES = 5


def get_client(config: dict) -> BaseModelClient:
    provider = config.get("provider", "ollama")
    base_url = config.get("model_url", DEFAULT_CONFIG["model_url"])
    model = config.get("model_name", DEFAULT_CONFIG["model_name"])
    health_timeout = float(config.get("health_timeout", DEFAULT_CONFIG["health_timeout"]))
    if provider == "ollama":
        return OllamaClient(base_url=base_url, model=model, health_timeout=health_timeout)
    if provider == "openai":
        return OpenAICompatibleClient(
            base_url=base_url,
            model=model,
            api_key=config.get("openai_api_key"),
            health_timeout=health_timeout,
        )
    raise ValueError(f"Unknown model provider: {provider!r}. Choose 'ollama' or 'openai'.")


# ---------------------------------------------------------------------- #
# Results                                                                 #
# ---------------------------------------------------------------------- #


@dataclass
class FileSubmission:
    filename: str
    content: str
    path: str = "/"
    custom_rules: str | None = None
    guideline_ids: list[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    review_id: int
    file_id: int
    version: int
    filename: str
    path: str
    language: str
    is_incremental: bool
    changed_line_count: int
    summary: Summary
    issues: list[Issue]
    metadata: dict[str, Any]
    changed_lines: ChangedLines | None = None

    unchanged = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "review_id": self.review_id,
            "file_id": self.file_id,
            "version": self.version,
            "filename": self.filename,
            "path": self.path,
            "language": self.language,
            "is_incremental": self.is_incremental,
            "changed_line_count": self.changed_line_count,
            "changed_lines": self.changed_lines.to_dict() if self.changed_lines else None,
            "summary": self.summary.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "metadata": self.metadata,
        }


@dataclass
class UnchangedResult:
    """Returned when the content hash matches the latest stored revision."""

    file_id: int
    version: int
    filename: str
    path: str

    unchanged = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "unchanged": True,
            "file_id": self.file_id,
            "version": self.version,
            "filename": self.filename,
            "path": self.path,
        }


@dataclass
class BatchItemResult:
    filename: str
    result: AnalysisResult | UnchangedResult | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"filename": self.filename, "success": False, "error": self.error}
        return {"filename": self.filename, "success": True, **self.result.to_dict()}


@dataclass
class BatchResult:
    results: list[BatchItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.processed - self.successful

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class _KeyedLocks:
    """One lock per file identity, dropped once no caller holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple, list] = {}  # key -> [lock, holders]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: tuple) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# ---------------------------------------------------------------------- #
# Orchestrator                                                            #
# ---------------------------------------------------------------------- #


class ReviewOrchestrator:
    def __init__(
        self,
        store: BaseStore,
        client: BaseModelClient,
        config: dict | None = None,
        catalog: GuidelineCatalog | None = None,
        parser: ResponseParser | None = None,
    ):
        self.store = store
        self.client = client
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.catalog = catalog if catalog is not None else load_catalog(self.config)
        self.parser = parser or ResponseParser()
        self._locks = _KeyedLocks()

    # ------------------------------------------------------------------ #
    # Single file                                                          #
    # ------------------------------------------------------------------ #

    def analyze_file(
        self,
        project_id: int,
        filename: str,
        content: str,
        path: str | None = None,
        custom_rules: str | None = None,
        guideline_ids: Iterable[str] | None = None,
        owner: str | None = None,
    ) -> AnalysisResult | UnchangedResult:
        """Analyse one file submission and persist the outcome.

        Raises InputValidationError / NotFoundError before anything is
        persisted; ServiceUnavailable / ModelError / PersistenceError after
        the review has been marked FAILED.
        """
        if not project_id or not filename or not content:
            raise InputValidationError("project_id, filename and content are required")
        guideline_ids = list(guideline_ids or [])
        _, unknown = self.catalog.validate_ids(guideline_ids)
        if unknown:
            raise InputValidationError(f"Unknown guideline id(s): {', '.join(unknown)}")
        if self.store.get_project(project_id, owner) is None:
            raise NotFoundError(f"Project {project_id} not found")

        path = path or "/"
        with self._locks.hold((project_id, path, filename)):
            return self._analyze_locked(project_id, filename, content, path, custom_rules, guideline_ids)

    def _analyze_locked(
        self,
        project_id: int,
        filename: str,
        content: str,
        path: str,
        custom_rules: str | None,
        guideline_ids: list[str],
    ) -> AnalysisResult | UnchangedResult:
        new_hash = content_hash(content)
        prior = self.store.latest_revision(project_id, path, filename)

        if prior is not None and prior.content_hash == new_hash:
            logger.info("%s unchanged since version %d; skipping analysis", filename, prior.version)
            return UnchangedResult(file_id=prior.id, version=prior.version, filename=filename, path=path)

        diff = compute_diff(prior.content, content, int(self.config["diff_context_lines"])) if prior else None
        language = detect_language(filename)

        revision = self.store.create_revision(
            FileRevision(
                project_id=project_id,
                path=path,
                filename=filename,
                content=content,
                content_hash=new_hash,
                version=prior.version + 1 if prior else 1,
                size=len(content.encode("utf-8")),
                language=language,
            )
        )

        incremental = diff is not None and diff.has_changes
        changed = (
            ChangedLines(added=diff.added_lines, modified=diff.modified_lines, deleted=diff.deleted_lines)
            if incremental
            else None
        )
        review = self.store.create_review(
            Review(file_id=revision.id, model=self.client.model, is_incremental=incremental, changed_lines=changed)
        )
        logger.info(
            "Analyzing %s v%d (%s, %s)",
            filename,
            revision.version,
            language,
            f"incremental, {diff.total_changes} change(s)" if incremental else "full",
        )

        try:
            issues, summary, metadata = self._run_analysis(
                revision, prior, diff if incremental else None, custom_rules, guideline_ids
            )
            self.store.complete_review(review.id, issues, summary, metadata)
        except Exception as e:
            logger.error("Analysis of %s failed: %s", filename, e)
            self.store.fail_review(
                review.id,
                {"error": str(e), "error_type": type(e).__name__, "model": self.client.model, "language": language},
            )
            raise

        logger.info("Analysis of %s completed: %d issue(s)", filename, summary.total_issues)
        return AnalysisResult(
            review_id=review.id,
            file_id=revision.id,
            version=revision.version,
            filename=filename,
            path=path,
            language=language,
            is_incremental=incremental,
            changed_line_count=diff.total_changes if incremental else 0,
            changed_lines=changed,
            summary=summary,
            issues=issues,
            metadata=metadata,
        )

    def _run_analysis(
        self,
        revision: FileRevision,
        prior: FileRevision | None,
        diff: DiffResult | None,
        custom_rules: str | None,
        guideline_ids: list[str],
    ) -> tuple[list[Issue], Summary, dict[str, Any]]:
        start = time.monotonic()
        guideline_rules = self.catalog.combine(guideline_ids) if guideline_ids else ""

        if diff is not None:
            snippet = build_snippet(revision.content, diff, int(self.config["snippet_context_lines"]))
            rules = "\n".join(r for r in (custom_rules, guideline_rules) if r) or None
            prompt = build_incremental_prompt(
                revision.content,
                revision.language,
                revision.filename,
                sorted(set(diff.added_lines) | set(diff.modified_lines)),
                snippet,
                rules,
                deleted_lines=diff.deleted_lines,
            )
            options = analysis_options(self.config, incremental=True)
        else:
            prompt = build_full_prompt(
                revision.content, revision.language, revision.filename, custom_rules, guideline_rules or None
            )
            options = analysis_options(self.config)

        raw = self.client.generate(prompt, options)
        outcome = self.parser.parse_response(raw)
        if outcome.degraded:
            logger.warning("Response for %s could not be parsed; storing the fallback issue", revision.filename)
        summary = summarize(outcome.issues)

        prompt_tokens = estimate_tokens(prompt)
        response_tokens = estimate_tokens(raw)
        metadata: dict[str, Any] = {
            "model": self.client.model,
            "provider": self.client.name,
            "mode": "incremental" if diff is not None else "full",
            "language": revision.language,
            "processing_time_ms": int((time.monotonic() - start) * 1000),
            "prompt_tokens": prompt_tokens,
            "response_tokens": response_tokens,
            "tokens_used": prompt_tokens + response_tokens,
            "parse_strategy": outcome.strategy,
            "parse_degraded": outcome.degraded,
        }
        if outcome.degraded:
            metadata["raw_response"] = raw[:_RAW_RESPONSE_MAX_CHARS]
        if guideline_ids:
            metadata["guidelines"] = list(guideline_ids)
        if diff is not None and prior is not None:
            metadata["previous_version"] = prior.version
            if max(len(prior.content), len(revision.content)) <= _SIMILARITY_MAX_CHARS:
                metadata["similarity"] = round(similarity(prior.content, revision.content), 1)
        return outcome.issues, summary, metadata

    # ------------------------------------------------------------------ #
    # Batch                                                                #
    # ------------------------------------------------------------------ #

    def analyze_batch(
        self,
        project_id: int,
        files: list[FileSubmission | dict],
        owner: str | None = None,
    ) -> BatchResult:
        """Analyse every file independently; one failing file never aborts the batch.

        Files run one at a time unless ``max_workers`` > 1, in which case they
        fan out over a thread pool. Results keep submission order either way.
        """
        if not project_id or not files:
            raise InputValidationError("project_id and a non-empty files list are required")
        if self.store.get_project(project_id, owner) is None:
            raise NotFoundError(f"Project {project_id} not found")

        submissions = [f if isinstance(f, FileSubmission) else _submission_from_dict(f) for f in files]

        def run(submission: FileSubmission) -> BatchItemResult:
            return self._analyze_item(project_id, submission, owner)

        workers = max(1, int(self.config.get("max_workers") or 1))
        if workers == 1:
            results = [run(s) for s in submissions]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(run, submissions))

        batch = BatchResult(results)
        logger.info("Batch finished: %d processed, %d ok, %d failed", batch.processed, batch.successful, batch.failed)
        return batch

    def _analyze_item(self, project_id: int, submission: FileSubmission, owner: str | None) -> BatchItemResult:
        filename = submission.filename or "unknown"
        if not submission.filename or not submission.content:
            return BatchItemResult(filename=filename, error="Missing filename or content")
        try:
            result = self.analyze_file(
                project_id,
                submission.filename,
                submission.content,
                path=submission.path,
                custom_rules=submission.custom_rules,
                guideline_ids=submission.guideline_ids,
                owner=owner,
            )
        except Exception as e:
            logger.warning("Batch item %s failed: %s", filename, e)
            return BatchItemResult(filename=filename, error=str(e))
        return BatchItemResult(filename=filename, result=result)

    # ------------------------------------------------------------------ #
    # Health and conversation                                              #
    # ------------------------------------------------------------------ #

    def health_check(self) -> dict[str, Any]:
        healthy = self.client.health_check()
        models = self.client.list_models() if healthy else []
        return {"status": "healthy" if healthy else "unhealthy", "models": models}

    def generate_reply(self, user_comment: str, issue: Issue | dict, code_context: str, language: str) -> str:
        """Ask the model for a short plain-text answer; any failure yields REPLY_FALLBACK."""
        issue_dict = issue.to_dict() if isinstance(issue, Issue) else dict(issue)
        prompt = build_reply_prompt(user_comment, issue_dict, code_context, language)
        try:
            reply = self.client.generate(prompt, reply_options(self.config)).strip()
        except Exception as e:
            # A failed reply never fails the conversation.
            logger.error("AI reply generation failed: %s", e)
            return REPLY_FALLBACK
        return reply or REPLY_FALLBACK

    def reply_to_comment(
        self,
        review_id: int,
        issue_index: int,
        comment: str,
        author: str,
    ) -> tuple[ReviewComment, ReviewComment]:
        """Store a user's comment on an issue and the model's reply to it."""
        if not comment or not comment.strip():
            raise InputValidationError("comment must not be empty")
        review = self.store.get_review(review_id)
        if review is None:
            raise NotFoundError(f"Review {review_id} not found")
        revision = self.store.get_revision(review.file_id)
        if revision is None or self.store.get_project(revision.project_id, author) is None:
            raise NotFoundError(f"Review {review_id} not found")
        if not 0 <= issue_index < len(review.issues):
            raise InputValidationError(f"Review {review_id} has no issue #{issue_index}")

        issue = review.issues[issue_index]
        user_comment = self.store.add_comment(
            ReviewComment(review_id=review_id, issue_index=issue_index, author=author, body=comment.strip())
        )
        reply = self.generate_reply(comment, issue, code_context(revision.content, issue.line), revision.language)
        ai_comment = self.store.add_comment(
            ReviewComment(review_id=review_id, issue_index=issue_index, author=AI_AUTHOR, body=reply, is_ai=True)
        )
        return user_comment, ai_comment

    # ------------------------------------------------------------------ #
    # Retention                                                            #
    # ------------------------------------------------------------------ #

    def purge_failed_reviews(self, days: int | None = None) -> int:
        """Delete FAILED reviews older than ``days`` (default: failed_review_retention_days)."""
        return purge_failed_reviews(
            self.store, days if days is not None else int(self.config["failed_review_retention_days"])
        )


def purge_failed_reviews(store: BaseStore, days: int) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    removed = store.purge_failed_reviews(cutoff.isoformat())
    logger.info("Purged %d failed review(s) older than %d day(s)", removed, days)
    return removed


def code_context(content: str, line: int, radius: int = _REPLY_CONTEXT_LINES) -> str:
    """Return the lines around ``line`` (1-based), each prefixed with its number."""
    lines = content.split("\n")
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    return "\n".join(f"{n}: {lines[n - 1]}" for n in range(start, end + 1))


def _submission_from_dict(d: dict) -> FileSubmission:
    return FileSubmission(
        filename=d.get("filename") or "",
        content=d.get("content") or "",
        path=d.get("path") or "/",
        custom_rules=d.get("custom_rules"),
        guideline_ids=list(d.get("guideline_ids") or []),
    )

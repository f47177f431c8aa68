"""End-to-end tests for ReviewOrchestrator.

A real InMemoryStore is used so version numbering, review transitions and
comment storage are exercised for real; only the model client is stubbed.
"""

import json
import threading

import pytest

from filelens_core.catalog import Guideline, GuidelineCatalog
from filelens_core.config import DEFAULT_CONFIG
from filelens_core.errors import InputValidationError, ModelError, NotFoundError, ServiceUnavailable
from filelens_core.parser import FALLBACK_TITLE
from filelens_core.providers.base import BaseModelClient
from filelens_core.reviewer import (
    REPLY_FALLBACK,
    FileSubmission,
    ReviewOrchestrator,
    UnchangedResult,
    _KeyedLocks,
    code_context,
)
from filelens_store.memory import InMemoryStore
from filelens_store.models import ReviewStatus

OWNER = "alice"

ISSUES_JSON = json.dumps(
    {
        "issues": [
            {"line": 2, "severity": "critical", "category": "security", "title": "Injection"},
            {"line": 3, "severity": "critical", "category": "bug", "title": "Crash"},
        ]
    }
)

V1 = "import os\nquery = 'SELECT ' + user\nrun(query)\nprint('done')"
V2 = "import os\nquery = build(user)\nrun(query)"


class _FakeClient(BaseModelClient):
    """Records prompts and replays canned responses (or raises)."""

    name = "fake"

    def __init__(self, responses=None, error=None, healthy=True, models=None):
        super().__init__("http://fake", "fake-model")
        self.responses = list(responses or [ISSUES_JSON])
        self.error = error
        self.healthy = healthy
        self.models = models or []
        self.calls = []
        self._lock = threading.Lock()

    def _call_api(self, prompt, options):
        with self._lock:
            self.calls.append((prompt, options))
        if self.error:
            raise self.error
        return self.responses[min(len(self.calls), len(self.responses)) - 1]

    def _probe(self):
        return self.healthy

    def _fetch_models(self):
        return self.models


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def project(store):
    return store.create_project("demo", OWNER)


def _catalog():
    return GuidelineCatalog([Guideline("team", "Team Rules", ("python",), "", "1. No print statements")])


def _orchestrator(store, client=None, **config):
    return ReviewOrchestrator(store, client or _FakeClient(), config=config, catalog=_catalog())


# ---------------------------------------------------------------------------
# First analysis (full mode)
# ---------------------------------------------------------------------------


class TestFullAnalysis:
    def test_first_submission_is_full_review(self, store, project):
        client = _FakeClient()
        result = _orchestrator(store, client).analyze_file(project.id, "app.py", V1, owner=OWNER)

        assert result.unchanged is False
        assert result.version == 1
        assert result.is_incremental is False
        assert result.changed_line_count == 0
        assert result.language == "python"
        assert result.path == "/"
        assert [i.title for i in result.issues] == ["Injection", "Crash"]
        assert result.summary.estimated_fix_time == "1h 0m"

        prompt, options = client.calls[0]
        assert V1 in prompt
        assert options.num_predict == 4000
        assert options.timeout == 600

    def test_review_persisted_as_completed(self, store, project):
        result = _orchestrator(store).analyze_file(project.id, "app.py", V1, owner=OWNER)
        review = store.get_review(result.review_id)
        assert review.status is ReviewStatus.COMPLETED
        assert review.summary.total_issues == 2
        assert review.metadata["model"] == "fake-model"
        assert review.metadata["provider"] == "fake"
        assert review.metadata["parse_strategy"] == "strict"
        assert review.metadata["parse_degraded"] is False
        assert "raw_response" not in review.metadata
        assert review.metadata["tokens_used"] == review.metadata["prompt_tokens"] + review.metadata["response_tokens"]

    def test_revision_records_content_and_size(self, store, project):
        _orchestrator(store).analyze_file(project.id, "app.py", "x = 'é'", path="/src", owner=OWNER)
        revision = store.latest_revision(project.id, "/src", "app.py")
        assert revision.version == 1
        assert revision.size == len("x = 'é'".encode("utf-8"))
        assert revision.language == "python"

    def test_custom_rules_and_guidelines_reach_prompt(self, store, project):
        client = _FakeClient()
        _orchestrator(store, client).analyze_file(
            project.id, "app.py", V1, custom_rules="Use logging", guideline_ids=["team"], owner=OWNER
        )
        prompt = client.calls[0][0]
        assert "Use logging" in prompt
        assert "[Team Rules]" in prompt

    def test_unparseable_response_stores_fallback_issue(self, store, project):
        client = _FakeClient(responses=["Sorry, I can't do that."])
        result = _orchestrator(store, client).analyze_file(project.id, "app.py", V1, owner=OWNER)
        assert [i.title for i in result.issues] == [FALLBACK_TITLE]
        assert result.metadata["parse_degraded"] is True
        assert store.get_review(result.review_id).status is ReviewStatus.COMPLETED

    def test_unparseable_response_keeps_truncated_raw_text(self, store, project):
        raw = "Sorry, I can't do that. " * 200
        client = _FakeClient(responses=[raw])
        result = _orchestrator(store, client).analyze_file(project.id, "app.py", V1, owner=OWNER)
        stored = store.get_review(result.review_id).metadata["raw_response"]
        assert stored == raw[:2000]


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------


class TestChangeDetection:
    def test_identical_resubmission_is_skipped(self, store, project):
        client = _FakeClient()
        orchestrator = _orchestrator(store, client)
        first = orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)
        second = orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)

        assert isinstance(second, UnchangedResult)
        assert second.unchanged is True
        assert second.file_id == first.file_id
        assert second.version == 1
        assert len(client.calls) == 1
        assert len(store.list_reviews(project.id)) == 1

    def test_changed_content_runs_incremental_review(self, store, project):
        client = _FakeClient()
        orchestrator = _orchestrator(store, client)
        orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)
        result = orchestrator.analyze_file(project.id, "app.py", V2, owner=OWNER)

        assert result.version == 2
        assert result.is_incremental is True
        assert result.changed_lines.modified == (2,)
        assert result.changed_lines.deleted == (4,)
        assert result.changed_line_count == 2

        prompt, options = client.calls[1]
        assert "INCREMENTAL" in prompt
        assert "+ 2: query = build(user)" in prompt
        assert "DELETED LINES (previous revision): 4" in prompt
        assert options.num_predict == 2000
        assert result.metadata["previous_version"] == 1
        assert 0 < result.metadata["similarity"] < 100

    def test_incremental_review_stores_changed_lines(self, store, project):
        orchestrator = _orchestrator(store)
        orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)
        result = orchestrator.analyze_file(project.id, "app.py", V2, owner=OWNER)
        review = store.get_review(result.review_id)
        assert review.is_incremental is True
        assert review.changed_lines.deleted == (4,)

    def test_same_name_in_different_paths_is_independent(self, store, project):
        orchestrator = _orchestrator(store)
        a = orchestrator.analyze_file(project.id, "util.py", V1, path="/a", owner=OWNER)
        b = orchestrator.analyze_file(project.id, "util.py", V1, path="/b", owner=OWNER)
        assert a.version == b.version == 1
        assert b.unchanged is False

    def test_guidelines_merged_into_incremental_rules(self, store, project):
        client = _FakeClient()
        orchestrator = _orchestrator(store, client)
        orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)
        orchestrator.analyze_file(project.id, "app.py", V2, guideline_ids=["team"], owner=OWNER)
        assert "No print statements" in client.calls[1][0]


# ---------------------------------------------------------------------------
# Validation and failure
# ---------------------------------------------------------------------------


class TestValidationAndFailures:
    @pytest.mark.parametrize("field", ["filename", "content"])
    def test_missing_fields_rejected_before_persistence(self, store, project, field):
        kwargs = {"filename": "app.py", "content": V1}
        kwargs[field] = ""
        with pytest.raises(InputValidationError):
            _orchestrator(store).analyze_file(project.id, owner=OWNER, **kwargs)
        assert store.latest_revision(project.id, "/", "app.py") is None

    def test_unknown_guideline_rejected(self, store, project):
        with pytest.raises(InputValidationError, match="nope"):
            _orchestrator(store).analyze_file(project.id, "app.py", V1, guideline_ids=["nope"], owner=OWNER)
        assert store.list_reviews(project.id) == []

    def test_unknown_project(self, store):
        with pytest.raises(NotFoundError):
            _orchestrator(store).analyze_file(999, "app.py", V1, owner=OWNER)

    def test_project_of_another_owner_not_found(self, store, project):
        with pytest.raises(NotFoundError):
            _orchestrator(store).analyze_file(project.id, "app.py", V1, owner="mallory")

    def test_model_unavailable_marks_review_failed(self, store, project):
        client = _FakeClient(error=ServiceUnavailable("connection refused"))
        with pytest.raises(ServiceUnavailable):
            _orchestrator(store, client).analyze_file(project.id, "app.py", V1, owner=OWNER)

        (review,) = store.list_reviews(project.id)
        assert review.status is ReviewStatus.FAILED
        assert "connection refused" in review.metadata["error"]
        # The revision survives so the next submission becomes version 2.
        assert store.latest_revision(project.id, "/", "app.py").version == 1

    def test_model_error_marks_review_failed(self, store, project):
        client = _FakeClient(error=ModelError("HTTP 500"))
        with pytest.raises(ModelError):
            _orchestrator(store, client).analyze_file(project.id, "app.py", V1, owner=OWNER)
        assert store.list_reviews(project.id)[0].status is ReviewStatus.FAILED

    def test_resubmitting_after_failure_is_unchanged(self, store, project):
        failing = _orchestrator(store, _FakeClient(error=ServiceUnavailable("down")))
        with pytest.raises(ServiceUnavailable):
            failing.analyze_file(project.id, "app.py", V1, owner=OWNER)
        assert _orchestrator(store).analyze_file(project.id, "app.py", V1, owner=OWNER).unchanged is True


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class TestBatch:
    def test_isolates_failures_and_keeps_order(self, store, project):
        files = [
            FileSubmission("a.py", V1),
            {"filename": "b.py", "content": ""},
            {"filename": "c.py", "content": V2, "path": "/lib"},
        ]
        batch = _orchestrator(store).analyze_batch(project.id, files, owner=OWNER)

        assert batch.processed == 3
        assert batch.successful == 2
        assert batch.failed == 1
        assert [r.filename for r in batch.results] == ["a.py", "b.py", "c.py"]
        assert batch.results[1].error == "Missing filename or content"
        assert batch.results[2].result.path == "/lib"

    def test_model_failure_does_not_abort_batch(self, store, project):
        client = _FakeClient(error=ServiceUnavailable("down"))
        batch = _orchestrator(store, client).analyze_batch(
            project.id, [FileSubmission("a.py", V1), FileSubmission("b.py", V2)], owner=OWNER
        )
        assert batch.failed == 2
        assert all("down" in r.error for r in batch.results)

    def test_to_dict_shape(self, store, project):
        batch = _orchestrator(store).analyze_batch(project.id, [FileSubmission("a.py", V1)], owner=OWNER)
        d = batch.to_dict()
        assert d["processed"] == 1
        assert d["results"][0]["success"] is True
        assert d["results"][0]["filename"] == "a.py"
        assert d["results"][0]["summary"]["total_issues"] == 2

    def test_empty_batch_rejected(self, store, project):
        with pytest.raises(InputValidationError):
            _orchestrator(store).analyze_batch(project.id, [], owner=OWNER)

    def test_thread_pool_keeps_submission_order(self, store, project):
        files = [FileSubmission(f"f{i}.py", f"x = {i}") for i in range(8)]
        batch = _orchestrator(store, max_workers=4).analyze_batch(project.id, files, owner=OWNER)
        assert [r.filename for r in batch.results] == [f"f{i}.py" for i in range(8)]
        assert batch.successful == 8

    def test_duplicate_file_in_parallel_batch_gets_one_version(self, store, project):
        files = [FileSubmission("same.py", V1) for _ in range(4)]
        batch = _orchestrator(store, max_workers=4).analyze_batch(project.id, files, owner=OWNER)
        assert batch.successful == 4
        assert sum(1 for r in batch.results if r.result.unchanged) == 3
        assert store.latest_revision(project.id, "/", "same.py").version == 1

    def test_file_locks_released_after_batch(self, store, project):
        orchestrator = _orchestrator(store, max_workers=4)
        files = [FileSubmission(f"f{i}.py", f"x = {i}") for i in range(6)] + [FileSubmission("same.py", V1)] * 3
        orchestrator.analyze_batch(project.id, files, owner=OWNER)
        assert len(orchestrator._locks) == 0

    def test_file_lock_released_when_analysis_fails(self, store, project):
        orchestrator = _orchestrator(store, _FakeClient(error=ServiceUnavailable("down")))
        with pytest.raises(ServiceUnavailable):
            orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)
        assert len(orchestrator._locks) == 0


class TestKeyedLocks:
    def test_same_key_is_exclusive_until_released(self):
        locks = _KeyedLocks()
        entered = threading.Event()

        def contender():
            with locks.hold(("p", "/", "a.py")):
                entered.set()

        with locks.hold(("p", "/", "a.py")):
            worker = threading.Thread(target=contender)
            worker.start()
            assert not entered.wait(0.1)
            assert len(locks) == 1
        worker.join(timeout=2)
        assert entered.is_set()
        assert len(locks) == 0

    def test_distinct_keys_do_not_block(self):
        locks = _KeyedLocks()
        with locks.hold(("p", "/", "a.py")):
            with locks.hold(("p", "/", "b.py")):
                assert len(locks) == 2
        assert len(locks) == 0


# ---------------------------------------------------------------------------
# Health and replies
# ---------------------------------------------------------------------------


class TestHealth:
    def test_healthy_lists_models(self, store):
        client = _FakeClient(models=["codellama:7b"])
        assert _orchestrator(store, client).health_check() == {"status": "healthy", "models": ["codellama:7b"]}

    def test_unhealthy_has_no_models(self, store):
        client = _FakeClient(healthy=False, models=["x"])
        assert _orchestrator(store, client).health_check() == {"status": "unhealthy", "models": []}


class TestReplies:
    def _reviewed(self, store, project, client):
        orchestrator = _orchestrator(store, client)
        result = orchestrator.analyze_file(project.id, "app.py", V1, owner=OWNER)
        return orchestrator, result

    def test_reply_stores_both_comments(self, store, project):
        client = _FakeClient(responses=[ISSUES_JSON, "  Use parameterized queries.  "])
        orchestrator, result = self._reviewed(store, project, client)

        user_comment, ai_comment = orchestrator.reply_to_comment(result.review_id, 0, "Why?", OWNER)

        assert user_comment.author == OWNER
        assert user_comment.is_ai is False
        assert ai_comment.is_ai is True
        assert ai_comment.body == "Use parameterized queries."
        assert [c.id for c in store.list_comments(result.review_id)] == [user_comment.id, ai_comment.id]

        prompt, options = client.calls[1]
        assert "Injection (critical)" in prompt
        assert "2: query = 'SELECT ' + user" in prompt
        assert options.temperature == 0.7
        assert options.num_predict == 200
        assert options.timeout == 60

    def test_model_failure_yields_fallback_reply(self, store, project):
        orchestrator, result = self._reviewed(store, project, _FakeClient())
        orchestrator.client.error = ServiceUnavailable("down")
        _, ai_comment = orchestrator.reply_to_comment(result.review_id, 1, "Really?", OWNER)
        assert ai_comment.body == REPLY_FALLBACK

    def test_empty_model_reply_yields_fallback(self, store, project):
        orchestrator, result = self._reviewed(store, project, _FakeClient(responses=[ISSUES_JSON, "   "]))
        _, ai_comment = orchestrator.reply_to_comment(result.review_id, 0, "Hm?", OWNER)
        assert ai_comment.body == REPLY_FALLBACK

    def test_bad_issue_index(self, store, project):
        orchestrator, result = self._reviewed(store, project, _FakeClient())
        with pytest.raises(InputValidationError):
            orchestrator.reply_to_comment(result.review_id, 5, "?", OWNER)

    def test_unknown_review(self, store, project):
        with pytest.raises(NotFoundError):
            _orchestrator(store).reply_to_comment(404, 0, "?", OWNER)

    def test_review_of_another_owner(self, store, project):
        orchestrator, result = self._reviewed(store, project, _FakeClient())
        with pytest.raises(NotFoundError):
            orchestrator.reply_to_comment(result.review_id, 0, "?", "mallory")

    def test_empty_comment_rejected(self, store, project):
        orchestrator, result = self._reviewed(store, project, _FakeClient())
        with pytest.raises(InputValidationError):
            orchestrator.reply_to_comment(result.review_id, 0, "  ", OWNER)


class TestCodeContext:
    def test_window_around_line(self):
        content = "\n".join(f"l{i}" for i in range(1, 21))
        lines = code_context(content, 10, radius=2).split("\n")
        assert lines == ["8: l8", "9: l9", "10: l10", "11: l11", "12: l12"]

    def test_clipped_at_edges(self):
        assert code_context("a\nb", 1) == "1: a\n2: b"


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestRetention:
    def test_purge_removes_only_old_failed_reviews(self, store, project):
        orchestrator = _orchestrator(store, _FakeClient(error=ServiceUnavailable("down")))
        with pytest.raises(ServiceUnavailable):
            orchestrator.analyze_file(project.id, "a.py", V1, owner=OWNER)
        orchestrator.client.error = None
        orchestrator.analyze_file(project.id, "b.py", V1, owner=OWNER)

        assert orchestrator.purge_failed_reviews(days=1) == 0
        assert orchestrator.purge_failed_reviews(days=0) == 1
        (remaining,) = store.list_reviews(project.id)
        assert remaining.status is ReviewStatus.COMPLETED

    def test_default_retention_from_config(self, store, mocker):
        purge = mocker.patch.object(store, "purge_failed_reviews", return_value=0)
        _orchestrator(store).purge_failed_reviews()
        assert purge.called
        assert DEFAULT_CONFIG["failed_review_retention_days"] == 30

"""Tests for review findings and the review gate."""

import pytest

from qaflow import lifecycle, review
from qaflow.errors import NotFoundError, PreconditionError, ValidationError
from qaflow.models import CommentType, DemoStep, TicketStatus, WorkflowPhase


@pytest.fixture
def in_review(store, ticket):
    lifecycle.complete_work(store, ticket.id, "done")
    return ticket


def _finding(store, ticket_id, severity="major", agent="code-reviewer"):
    return review.submit_finding(store, ticket_id, agent, severity, "error-handling",
                                 "Swallowed exception", file_path="src/app.py", line_number=12)


def _steps():
    return [DemoStep(1, "Open /login", "Form renders"),
            DemoStep(2, "Submit bad password", "Error shown", type="visual")]


class TestSubmitFinding:
    def test_records_open_finding(self, store, in_review):
        result = _finding(store, in_review.id)
        assert result.workflow_state_updated
        assert result.finding.status == "open"
        assert result.finding.iteration == 1
        assert store.get_workflow_state(in_review.id).findings_count == 1
        assert result.to_dict()["finding"]["lineNumber"] == 12

    def test_requires_ai_review(self, store, ticket):
        with pytest.raises(PreconditionError):
            _finding(store, ticket.id)
        assert store.list_findings(ticket.id) == []

    @pytest.mark.parametrize("kwargs", [
        {"agent": "linter"},
        {"severity": "blocker"},
    ])
    def test_rejects_unknown_enums(self, store, in_review, kwargs):
        params = {"agent": "code-reviewer", "severity": "major"}
        params.update(kwargs)
        with pytest.raises(ValidationError):
            review.submit_finding(store, in_review.id, params["agent"], params["severity"],
                                  "cat", "desc")

    def test_unknown_ticket(self, store):
        with pytest.raises(NotFoundError):
            _finding(store, "missing")


class TestMarkFixed:
    def test_fix(self, store, in_review):
        finding = _finding(store, in_review.id).finding
        result = review.mark_fixed(store, finding.id)
        assert result.finding.status == "fixed"
        assert result.finding.fixed_at is not None
        assert store.get_workflow_state(in_review.id).findings_fixed == 1

    def test_wont_fix(self, store, in_review):
        finding = _finding(store, in_review.id).finding
        review.mark_fixed(store, finding.id, "wont_fix")
        assert store.get_finding(finding.id).status == "wont_fix"

    def test_already_resolved(self, store, in_review):
        finding = _finding(store, in_review.id).finding
        review.mark_fixed(store, finding.id)
        with pytest.raises(PreconditionError):
            review.mark_fixed(store, finding.id)

    def test_reopen_is_not_a_resolution(self, store, in_review):
        finding = _finding(store, in_review.id).finding
        with pytest.raises(ValidationError):
            review.mark_fixed(store, finding.id, "open")

    def test_unknown_finding(self, store):
        with pytest.raises(NotFoundError):
            review.mark_fixed(store, "missing")


class TestGetFindings:
    def test_newest_first_with_filters(self, store, in_review):
        first = _finding(store, in_review.id, "major").finding
        second = _finding(store, in_review.id, "minor", agent="code-simplifier").finding
        review.mark_fixed(store, first.id)

        assert [f.id for f in review.get_findings(store, in_review.id)] == [second.id, first.id]
        assert [f.id for f in review.get_findings(store, in_review.id, status="open")] == [second.id]
        assert review.get_findings(store, in_review.id, severity="critical") == []
        assert [f.id for f in review.get_findings(
            store, in_review.id, agent="code-simplifier")] == [second.id]

    def test_bad_filter(self, store, in_review):
        with pytest.raises(ValidationError):
            review.get_findings(store, in_review.id, status="closed")


class TestCheckComplete:
    def test_no_findings_is_complete(self, store, in_review):
        status = review.check_complete(store, in_review.id)
        assert status.complete
        assert status.to_dict()["canProceedToHumanReview"] is True

    def test_open_major_blocks(self, store, in_review):
        _finding(store, in_review.id, "major")
        _finding(store, in_review.id, "minor")
        status = review.check_complete(store, in_review.id)
        assert not status.complete
        assert (status.open_critical, status.open_major, status.open_minor) == (0, 1, 1)
        assert "Open major: 1" in status.message

    def test_minor_and_suggestions_do_not_block(self, store, in_review):
        _finding(store, in_review.id, "minor")
        _finding(store, in_review.id, "suggestion")
        assert review.check_complete(store, in_review.id).complete

    def test_resolving_blockers_completes(self, store, in_review):
        critical = _finding(store, in_review.id, "critical").finding
        major = _finding(store, in_review.id, "major").finding
        review.mark_fixed(store, critical.id)
        review.mark_fixed(store, major.id, "duplicate")
        status = review.check_complete(store, in_review.id)
        assert status.complete
        assert status.total_findings == 2
        assert status.fixed_findings == 1


class TestGenerateDemo:
    def test_moves_to_human_review(self, store, in_review):
        result = review.generate_demo_script(store, in_review.id, _steps())
        assert store.get_ticket(in_review.id).status == TicketStatus.HUMAN_REVIEW
        assert [s.order for s in result.demo.steps] == [1, 2]
        state = store.get_workflow_state(in_review.id)
        assert state.demo_generated
        assert state.current_phase == WorkflowPhase.HUMAN_REVIEW
        last = store.get_comments(in_review.id)[-1]
        assert last.type == CommentType.PROGRESS
        assert last.content == "Demo script generated with 2 steps. Ready for human review."

    def test_blocked_by_open_critical(self, store, in_review):
        _finding(store, in_review.id, "critical")
        with pytest.raises(PreconditionError) as exc:
            review.generate_demo_script(store, in_review.id, _steps())
        assert exc.value.details["openCritical"] == 1
        assert store.get_ticket(in_review.id).status == TicketStatus.AI_REVIEW
        assert store.get_demo(in_review.id) is None

    def test_open_minor_does_not_block_once_critical_fixed(self, store, in_review):
        critical = _finding(store, in_review.id, "critical").finding
        _finding(store, in_review.id, "minor")
        review.mark_fixed(store, critical.id)

        result = review.generate_demo_script(store, in_review.id, _steps())
        assert len(result.demo.steps) == 2
        assert store.get_ticket(in_review.id).status == TicketStatus.HUMAN_REVIEW
        assert [f.severity for f in review.get_findings(store, in_review.id, status="open")] \
            == ["minor"]

    def test_requires_ai_review(self, store, ticket):
        with pytest.raises(PreconditionError):
            review.generate_demo_script(store, ticket.id, _steps())

    def test_rejects_empty_and_duplicate_steps(self, store, in_review):
        with pytest.raises(ValidationError):
            review.generate_demo_script(store, in_review.id, [])
        with pytest.raises(ValidationError):
            review.generate_demo_script(store, in_review.id,
                                        [DemoStep(1, "a", "b"), DemoStep(1, "c", "d")])
        assert store.get_ticket(in_review.id).status == TicketStatus.AI_REVIEW

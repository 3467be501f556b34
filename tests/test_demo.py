"""Tests for demo walkthroughs and the feedback gate."""

import pytest

from qaflow import demo, lifecycle, review
from qaflow.errors import NotFoundError, PreconditionError, ValidationError
from qaflow.models import DemoStep, TicketStatus, WorkflowPhase


@pytest.fixture
def in_human_review(store, ticket):
    lifecycle.complete_work(store, ticket.id)
    review.generate_demo_script(store, ticket.id, [
        DemoStep(1, "Open /login", "Form renders"),
        DemoStep(2, "Log in", "Dashboard shows"),
    ])
    return ticket


class TestDemoSteps:
    def test_get_demo(self, store, in_human_review):
        script = demo.get_demo(store, in_human_review.id)
        assert len(script.steps) == 2

    def test_no_demo(self, store, ticket):
        with pytest.raises(NotFoundError):
            demo.get_demo(store, ticket.id)

    def test_update_step(self, store, in_human_review):
        demo.update_demo_step(store, in_human_review.id, 2, "failed", "Spinner forever")
        step = store.get_demo(in_human_review.id).step(2)
        assert step.status == "failed"
        assert step.notes == "Spinner forever"

    def test_update_unknown_step(self, store, in_human_review):
        with pytest.raises(ValidationError):
            demo.update_demo_step(store, in_human_review.id, 9, "passed")


class TestFeedback:
    def test_pass_completes_ticket(self, store, in_human_review):
        result = demo.submit_feedback(store, in_human_review.id, True, "Looks good", [
            demo.StepResult(1, "passed"), demo.StepResult(2, "passed"),
        ])
        assert result.status == TicketStatus.DONE
        got = store.get_ticket(in_human_review.id)
        assert got.status == TicketStatus.DONE
        assert got.completed_at is not None
        script = store.get_demo(in_human_review.id)
        assert script.passed is True
        assert script.completed_at is not None
        assert [s.status for s in script.steps] == ["passed", "passed"]
        assert store.get_workflow_state(in_human_review.id).current_phase == WorkflowPhase.DONE
        last = store.get_comments(in_human_review.id)[-1]
        assert last.author == "user"

    def test_fail_stays_in_human_review(self, store, in_human_review):
        result = demo.submit_feedback(store, in_human_review.id, False, "Login button broken")
        assert result.status == TicketStatus.HUMAN_REVIEW
        assert "message" in result.to_dict()
        got = store.get_ticket(in_human_review.id)
        assert got.status == TicketStatus.HUMAN_REVIEW
        assert got.completed_at is None
        script = store.get_demo(in_human_review.id)
        assert script.passed is False
        assert script.feedback == "Login button broken"
        assert not store.get_workflow_state(in_human_review.id).demo_generated

    def test_requires_human_review(self, store, ticket):
        with pytest.raises(PreconditionError):
            demo.submit_feedback(store, ticket.id, True, "ok")
        assert store.get_ticket(ticket.id).status == TicketStatus.READY

    def test_requires_feedback_text(self, store, in_human_review):
        with pytest.raises(ValidationError):
            demo.submit_feedback(store, in_human_review.id, True, "  ")

    def test_signed_off_demo_is_frozen(self, store, in_human_review):
        demo.submit_feedback(store, in_human_review.id, True, "ok")
        with pytest.raises(PreconditionError):
            demo.update_demo_step(store, in_human_review.id, 1, "failed")

    def test_bad_step_result_changes_nothing(self, store, in_human_review):
        with pytest.raises(ValidationError):
            demo.submit_feedback(store, in_human_review.id, True, "ok",
                                 [demo.StepResult(1, "great")])
        assert store.get_ticket(in_human_review.id).status == TicketStatus.HUMAN_REVIEW

"""End-to-end tests for the review board against the fake backend."""

from __future__ import annotations

import pytest
import pytest_asyncio

from case_review.board import CANCELLED, FAILED, ReviewBoard
from case_review.errors import InactiveCaseError, NotFoundError, ValidationError
from case_review.models import ReviewState
from case_review.session import build_session

from .conftest import ScriptedPrompter


@pytest_asyncio.fixture
async def board(config, session, backend, prompter, notifier):
    async with ReviewBoard(
        config,
        session,
        confirmer=prompter,
        collector=prompter,
        notifier=notifier,
        transport=backend.transport(),
    ) as review_board:
        yield review_board


def assert_records_consistent(board):
    for case in board.cases:
        assert (case.state is ReviewState.REJECTED) == bool(case.justification.strip())
        if case.state is not ReviewState.PENDING:
            assert case.approver_id is not None
            assert case.state_changed_at is not None


class TestLoad:
    @pytest.mark.asyncio
    async def test_load(self, board, notifier):
        outcome = await board.load()

        assert outcome.ok
        assert outcome.message == "3 case files loaded."
        assert [len(c.evidence) for c in board.cases] == [2, 1, 0]
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_load_failure_notifies(self, board, backend, notifier):
        backend.fail_list_status = 500

        outcome = await board.load()

        assert outcome.status == FAILED
        assert notifier.events == [("error", "Could not load case files", "Base de datos no disponible")]
        assert board.cases == []

    @pytest.mark.asyncio
    async def test_bad_token(self, board, session, backend, notifier):
        session.replace(build_session("expired", user_id=7))
        outcome = await board.load()

        assert outcome.status == FAILED
        assert notifier.events[-1][2] == "Token inválido"


class TestReviewActions:
    @pytest.mark.asyncio
    async def test_reject_scenario(self, board, backend, notifier):
        await board.load()

        outcome = await board.reject("EXP-002", "Foto ilegible")

        assert outcome.ok
        case = board.reconciler.lookup("EXP-002")
        assert case.state is ReviewState.REJECTED
        assert case.justification == "Foto ilegible"
        assert case.approver_id == 7
        assert case.approver_name == "Ana"
        assert len(case.evidence) == 1
        assert notifier.events == [("success", "Reject case file", "Case file EXP-002 was rejected.")]
        assert_records_consistent(board)

    @pytest.mark.asyncio
    async def test_empty_justification_warns_without_request(self, board, backend, notifier):
        await board.load()

        outcome = await board.reject("EXP-001", "")

        assert outcome.status == FAILED
        assert notifier.levels() == ["warning"]
        assert backend.mutations() == []
        assert board.reconciler.lookup("EXP-001").state is ReviewState.PENDING

    @pytest.mark.asyncio
    async def test_approve_and_refresh(self, board, backend, notifier):
        await board.load()
        listed = backend.calls("GET", "/Expedientes")

        outcome = await board.approve("EXP-001")

        assert outcome.ok
        assert outcome.case.state is ReviewState.APPROVED
        assert backend.calls("GET", "/Expedientes") > listed
        assert_records_consistent(board)

    @pytest.mark.asyncio
    async def test_request_rejection_cancelled(self, config, session, backend, notifier):
        prompts = ScriptedPrompter(justification=None)
        async with ReviewBoard(
            config, session, confirmer=prompts, collector=prompts, notifier=notifier, transport=backend.transport()
        ) as board:
            await board.load()
            outcome = await board.request_rejection("EXP-001")

        assert outcome.status == CANCELLED
        assert notifier.events == []
        assert backend.mutations() == []

    @pytest.mark.asyncio
    async def test_server_error_message_surfaced(self, board, backend, notifier):
        await board.load()
        backend.fail_mutation = (409, {"message": "El expediente está bloqueado"})

        outcome = await board.approve("EXP-001")

        assert outcome.status == FAILED
        assert notifier.events == [("error", "Approve case file", "El expediente está bloqueado")]
        assert board.reconciler.lookup("EXP-001").state is ReviewState.PENDING


class TestMaintenanceActions:
    @pytest.mark.asyncio
    async def test_edit_inactive_blocked(self, board, backend, notifier):
        await board.load()

        outcome = await board.edit("EXP-003", "EXP-003", "Cambio")

        assert outcome.status == FAILED
        assert isinstance(outcome.error, InactiveCaseError)
        assert backend.mutations() == []
        assert notifier.levels() == ["warning"]

    @pytest.mark.asyncio
    async def test_edit_rename(self, board, backend):
        await board.load()

        outcome = await board.edit("EXP-001", "EXP-001A", "Renombrado")

        assert outcome.ok
        assert outcome.case.code == "EXP-001A"
        assert board.reconciler.lookup("EXP-001") is None
        assert len(board.reconciler.lookup("EXP-001A").evidence) == 2

    @pytest.mark.asyncio
    async def test_edit_unknown_code(self, board, backend):
        await board.load()
        listed = backend.calls("GET", "/Expedientes")

        outcome = await board.edit("EXP-404", "EXP-404", "desc")

        assert outcome.status == FAILED
        assert isinstance(outcome.error, NotFoundError)
        assert backend.calls("GET", "/Expedientes") == listed

    @pytest.mark.asyncio
    async def test_deactivate_then_edit_then_activate(self, board, backend, prompter):
        await board.load()

        assert (await board.deactivate("EXP-001")).ok
        assert board.reconciler.lookup("EXP-001").active is False
        assert (await board.edit("EXP-001", "EXP-001", "x")).status == FAILED
        assert (await board.activate("EXP-001")).ok
        assert (await board.edit("EXP-001", "EXP-001", "x")).ok
        assert len(prompter.prompts) == 1

    @pytest.mark.asyncio
    async def test_deactivate_declined(self, config, session, backend, notifier):
        prompts = ScriptedPrompter(confirm=False)
        async with ReviewBoard(
            config, session, confirmer=prompts, notifier=notifier, transport=backend.transport()
        ) as board:
            await board.load()
            outcome = await board.deactivate("EXP-001")

        assert outcome.status == CANCELLED
        assert backend.mutations() == []

    @pytest.mark.asyncio
    async def test_toggle_active(self, board, backend):
        await board.load()

        outcome = await board.toggle_active("EXP-003")

        assert outcome.ok
        assert outcome.message == "Case file EXP-003 was activated."
        assert board.reconciler.lookup("EXP-003").state is ReviewState.APPROVED

    @pytest.mark.asyncio
    async def test_stale_warning_after_refresh_failure(self, board, backend, notifier, monkeypatch):
        await board.load()
        real_set_active = board.repository.set_active

        async def set_active_then_break(code, active):
            result = await real_set_active(code, active)
            backend.fail_list_status = 503
            return result

        monkeypatch.setattr(board.repository, "set_active", set_active_then_break)

        outcome = await board.activate("EXP-003")

        assert outcome.ok
        assert notifier.levels() == ["success", "warning"]
        assert notifier.events[-1][1] == "Refresh failed"

    @pytest.mark.asyncio
    async def test_no_error_escapes(self, board, backend):
        backend.fail_mutation = (500, {})
        await board.load()
        for action in (
            board.approve("EXP-001"),
            board.reject("EXP-001", "x"),
            board.activate("EXP-001"),
            board.deactivate("EXP-001"),
            board.edit("EXP-001", "EXP-001", "x"),
        ):
            outcome = await action
            assert outcome.status == FAILED


class TestUnloadedBoard:
    @pytest.mark.asyncio
    async def test_edit_requires_load(self, board, backend, notifier):
        outcome = await board.edit("EXP-003", "EXP-003", "Cambio")

        assert outcome.status == FAILED
        assert isinstance(outcome.error, ValidationError)
        assert backend.requests == []
        assert notifier.levels() == ["warning"]

    @pytest.mark.asyncio
    async def test_toggle_requires_load(self, board, backend):
        outcome = await board.toggle_active("EXP-003")

        assert outcome.status == FAILED
        assert isinstance(outcome.error, ValidationError)
        assert backend.requests == []

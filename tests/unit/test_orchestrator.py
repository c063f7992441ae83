"""Unit tests for sync/orchestrator.py."""

import asyncio
from unittest.mock import Mock

import pytest

from core.exceptions import AuthError, TransportError, UpstreamError
from sync.orchestrator import AppDataState, RefreshMode, RefreshOrchestrator, sort_jobs, sort_logs
from tests.factories import make_job, make_log
from tests.fakes import wait_for


@pytest.fixture
def orchestrator(mock_log_service, mock_job_service, mock_session):
    return RefreshOrchestrator(mock_log_service, mock_job_service, session=mock_session)


class TestSorting:
    def test_logs_newest_first(self):
        logs = [
            make_log("old", scan_date="2026-01-01T00:00:00Z"),
            make_log("new", scan_date="2026-03-01T00:00:00Z"),
        ]
        assert [log.log_id for log in sort_logs(logs)] == ["new", "old"]

    def test_jobs_without_date_last(self):
        jobs = [make_job("none", createdAt=None), make_job("dated")]
        assert [job.id for job in sort_jobs(jobs)] == ["dated", "none"]


class TestRefresh:
    @pytest.mark.asyncio
    async def test_replaces_mirrors(self, orchestrator, mock_log_service, mock_job_service):
        mock_log_service.list.return_value = [make_log("L1")]
        mock_job_service.list_jobs.return_value = [make_job("J1", status="completed")]

        assert await orchestrator.refresh(RefreshMode.INITIAL) is True
        state = orchestrator.state
        assert [log.log_id for log in state.logs] == ["L1"]
        assert [job.id for job in state.jobs] == ["J1"]
        assert state.loading is False
        assert state.refresh_count == 1
        assert state.last_refreshed is not None

    @pytest.mark.asyncio
    async def test_foreground_failure_sets_error(self, orchestrator, mock_log_service):
        orchestrator.state.logs = [make_log("kept")]
        mock_log_service.list.side_effect = TransportError("Request to /api/scanlogs timed out")

        assert await orchestrator.refresh(RefreshMode.MANUAL) is False
        assert orchestrator.state.error == "Request to /api/scanlogs timed out"
        assert orchestrator.state.loading is False
        assert [log.log_id for log in orchestrator.state.logs] == ["kept"]

    @pytest.mark.asyncio
    async def test_empty_message_uses_default_error(self, orchestrator, mock_job_service):
        mock_job_service.list_jobs.side_effect = UpstreamError("")
        await orchestrator.refresh(RefreshMode.INITIAL)
        assert orchestrator.state.error == "Could not load app data."

    @pytest.mark.asyncio
    async def test_foreground_clears_previous_error(self, orchestrator):
        orchestrator.state.error = "old"
        await orchestrator.refresh(RefreshMode.MANUAL)
        assert orchestrator.state.error is None

    @pytest.mark.asyncio
    async def test_background_failure_is_silent(self, orchestrator, mock_log_service):
        orchestrator.state.error = "previous"
        mock_log_service.list.side_effect = UpstreamError("boom")
        assert await orchestrator.refresh() is False
        assert orchestrator.state.error == "previous"
        assert orchestrator.state.loading is False

    @pytest.mark.asyncio
    async def test_auth_error_goes_to_session(self, orchestrator, mock_log_service, mock_job_service, mock_session):
        auth_error = AuthError("Token is not valid", status_code=401)
        mock_log_service.list.side_effect = UpstreamError("boom")
        mock_job_service.list_jobs.side_effect = auth_error

        assert await orchestrator.refresh(RefreshMode.MANUAL) is False
        mock_session.handle_error.assert_awaited_once_with(auth_error, "manual refresh")
        assert orchestrator.state.error is None

    @pytest.mark.asyncio
    async def test_reconciles_state_machine(self, mock_log_service, mock_job_service):
        machine = Mock()
        orchestrator = RefreshOrchestrator(mock_log_service, mock_job_service, state_machine=machine)
        mock_job_service.list_jobs.return_value = [make_job("J2")]
        await orchestrator.refresh()
        machine.reconcile.assert_called_once()
        assert [job.id for job in machine.reconcile.call_args.args[0]] == ["J2"]


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_background_refreshes_coalesce(self, orchestrator, mock_log_service):
        release = asyncio.Event()

        async def slow_list():
            await release.wait()
            return []

        mock_log_service.list.side_effect = slow_list
        first = asyncio.create_task(orchestrator.background_refresh())
        second = asyncio.create_task(orchestrator.background_refresh())
        await wait_for(lambda: mock_log_service.list.await_count == 1)
        release.set()
        await asyncio.gather(first, second)

        assert mock_log_service.list.await_count == 1
        assert orchestrator.state.refresh_count == 1

    @pytest.mark.asyncio
    async def test_loading_stays_on_until_last_foreground_finishes(self, orchestrator, mock_log_service):
        gates = [asyncio.Event(), asyncio.Event()]
        calls = []

        async def gated_list():
            gate = gates[len(calls)]
            calls.append(gate)
            await gate.wait()
            return []

        mock_log_service.list.side_effect = gated_list
        first = asyncio.create_task(orchestrator.refresh(RefreshMode.INITIAL))
        second = asyncio.create_task(orchestrator.refresh(RefreshMode.MANUAL))
        await wait_for(lambda: len(calls) == 2)

        gates[0].set()
        await first
        assert orchestrator.state.loading is True

        gates[1].set()
        await second
        assert orchestrator.state.loading is False
        assert orchestrator.state.refresh_count == 2

    @pytest.mark.asyncio
    async def test_reset_clears_mirrors(self, orchestrator):
        orchestrator.state = AppDataState(logs=[make_log()], jobs=[make_job()], error="x", loading=True)
        orchestrator.reset()
        assert orchestrator.state.logs == []
        assert orchestrator.state.jobs == []
        assert orchestrator.state.error is None
        assert orchestrator.state.loading is False

    @pytest.mark.asyncio
    async def test_reset_cancels_background_refresh(self, orchestrator, mock_log_service):
        mock_log_service.list.side_effect = asyncio.Event().wait
        task = asyncio.create_task(orchestrator.background_refresh())
        await wait_for(lambda: mock_log_service.list.await_count == 1)

        orchestrator.reset()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_results_dropped_when_session_ends_mid_refresh(
        self, mock_log_service, mock_job_service, mock_session
    ):
        machine = Mock()
        orchestrator = RefreshOrchestrator(
            mock_log_service, mock_job_service, session=mock_session, state_machine=machine
        )
        release = asyncio.Event()

        async def gated_jobs():
            await release.wait()
            return [make_job("J9")]

        mock_log_service.list.return_value = [make_log("previous-user")]
        mock_job_service.list_jobs.side_effect = gated_jobs
        task = asyncio.create_task(orchestrator.refresh(RefreshMode.MANUAL))
        await wait_for(lambda: mock_job_service.list_jobs.await_count == 1)

        mock_session.generation += 1
        orchestrator.reset()
        release.set()

        assert await task is False
        assert orchestrator.state.logs == []
        assert orchestrator.state.jobs == []
        assert orchestrator.state.loading is False
        machine.reconcile.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_from_ended_session_sets_no_error(
        self, orchestrator, mock_log_service, mock_session
    ):
        release = asyncio.Event()

        async def failing_list():
            await release.wait()
            raise TransportError("Could not reach backend")

        mock_log_service.list.side_effect = failing_list
        task = asyncio.create_task(orchestrator.refresh(RefreshMode.MANUAL))
        await wait_for(lambda: mock_log_service.list.await_count == 1)

        mock_session.generation += 1
        release.set()

        assert await task is False
        assert orchestrator.state.error is None

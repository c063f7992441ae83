"""Unit tests for jobs/state_machine.py."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from backend.models import JobInput, JobStatus, JobType, RecognitionResult
from core.exceptions import AuthError, JobStateError, TransportError, UpstreamError
from jobs.state_machine import BannerKind, ScanJobStateMachine
from tests.factories import make_job, make_result_payload
from tests.fakes import wait_for

CHANNEL_INPUT = JobInput(job_type=JobType.YOUTUBE_CHANNEL_BATCH, url="https://youtube.com/@chan")


@pytest_asyncio.fixture
async def make_machine(mock_job_service):
    """Build state machines that are stopped at teardown."""
    machines = []

    def _make(poll_interval=0.01):
        machine = ScanJobStateMachine(
            mock_job_service,
            poll_interval=poll_interval,
            on_terminal=AsyncMock(),
            on_auth_error=AsyncMock(),
        )
        machines.append(machine)
        return machine

    yield _make
    for machine in machines:
        machine.stop()
    await asyncio.sleep(0)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_polls_until_completed(self, make_machine, job_status_sequence):
        service = job_status_sequence(
            make_job(totalItems=10, itemsProcessed=3),
            make_job(totalItems=10, itemsProcessed=7),
            make_job(status="completed", totalItems=10, itemsProcessed=10),
        )
        service.create_job.return_value = make_job(status="fetching_items")
        machine = make_machine()

        created = await machine.submit(CHANNEL_INPUT)
        assert created.id == "J1"
        assert machine.is_polling

        await wait_for(lambda: machine.active_job is None)
        assert machine.last_finished.status == JobStatus.COMPLETED
        assert machine.poll_handle is None
        assert service.get_status.await_count == 3
        machine.on_terminal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_single_item_result_is_not_tracked(self, make_machine, mock_job_service):
        mock_job_service.create_job.return_value = RecognitionResult.model_validate(
            make_result_payload()
        )
        machine = make_machine()
        created = await machine.submit(
            JobInput(job_type=JobType.YOUTUBE_VIDEO_SINGLE, url="https://youtu.be/x")
        )
        assert isinstance(created, RecognitionResult)
        assert machine.active_job is None
        assert not machine.is_polling
        machine.on_terminal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_creation_failure_sets_error(self, make_machine, mock_job_service):
        mock_job_service.create_job.side_effect = UpstreamError("Invalid channel URL")
        machine = make_machine()
        assert await machine.submit(CHANNEL_INPUT) is None
        assert machine.error == "Invalid channel URL"
        assert machine.active_job is None

    @pytest.mark.asyncio
    async def test_creation_auth_failure(self, make_machine, mock_job_service):
        error = AuthError("Token is not valid", status_code=401)
        mock_job_service.create_job.side_effect = error
        machine = make_machine()
        assert await machine.submit(CHANNEL_INPUT) is None
        machine.on_auth_error.assert_awaited_once_with(error)
        assert machine.error is None

    @pytest.mark.asyncio
    async def test_already_terminal_job(self, make_machine, mock_job_service):
        mock_job_service.create_job.return_value = make_job(status="completed")
        machine = make_machine()
        await machine.submit(CHANNEL_INPUT)
        assert machine.active_job is None
        assert machine.last_finished.status == JobStatus.COMPLETED
        machine.on_terminal.assert_awaited_once()


class TestPolling:
    @pytest.mark.asyncio
    async def test_paused_stops_polling_with_banner(self, make_machine, job_status_sequence):
        job_status_sequence(make_job(status="paused", totalItems=5, itemsProcessed=2))
        machine = make_machine()
        await machine.track(make_job())

        await wait_for(lambda: not machine.is_polling)
        assert machine.active_job.status == JobStatus.PAUSED
        assert machine.banner.kind == BannerKind.PAUSED
        assert machine.poll_handle is None
        machine.on_terminal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_credits_exhausted_banner(self, make_machine, job_status_sequence):
        job_status_sequence(make_job(status="failed_credits_exhausted"))
        machine = make_machine()
        await machine.track(make_job())

        await wait_for(lambda: machine.banner is not None)
        assert machine.banner.kind == BannerKind.CREDITS_EXHAUSTED
        assert "resume" in machine.banner.message
        assert not machine.is_polling
        assert machine.active_job is not None

    @pytest.mark.asyncio
    async def test_queued_status_stops_polling(self, make_machine, job_status_sequence):
        service = job_status_sequence(make_job(status="queued_for_processing"))
        machine = make_machine()
        await machine.track(make_job(status="fetching_items"))

        await wait_for(lambda: not machine.is_polling)
        assert machine.active_job.status == JobStatus.QUEUED_FOR_PROCESSING
        assert service.get_status.await_count == 1

    @pytest.mark.asyncio
    async def test_new_waiting_job_gets_one_status_fetch(self, make_machine, job_status_sequence):
        service = job_status_sequence(make_job(status="pending_upload"))
        machine = make_machine()
        await machine.track(make_job(status="pending_upload"))
        assert machine.is_polling

        await wait_for(lambda: not machine.is_polling)
        assert service.get_status.await_count == 1
        assert machine.active_job.status == JobStatus.PENDING_UPLOAD

    @pytest.mark.asyncio
    async def test_status_failure_sets_error(self, make_machine, job_status_sequence):
        job_status_sequence(TransportError("Request to /api/jobs/J1 timed out", timeout=True))
        machine = make_machine()
        await machine.track(make_job())

        await wait_for(lambda: machine.error is not None)
        assert "timed out" in machine.error
        assert not machine.is_polling
        assert machine.active_job.id == "J1"

    @pytest.mark.asyncio
    async def test_status_auth_failure(self, make_machine, job_status_sequence):
        job_status_sequence(AuthError("expired", status_code=401))
        machine = make_machine()
        await machine.track(make_job())

        await wait_for(lambda: machine.on_auth_error.await_count == 1)
        assert machine.active_job is None
        assert machine.poll_handle is None

    @pytest.mark.asyncio
    async def test_one_poll_loop_per_job(self, make_machine, mock_job_service):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())
        first = machine.poll_handle
        await machine.track(make_job(itemsProcessed=1))
        assert machine.poll_handle is first

    @pytest.mark.asyncio
    async def test_tracking_new_job_replaces_loop(self, make_machine, mock_job_service):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job("J1"))
        first = machine.poll_handle
        await machine.track(make_job("J2"))
        await wait_for(lambda: first.task.done())
        assert machine.active_job.id == "J2"
        assert machine.poll_handle.job_id == "J2"
        assert first.task.cancelled()


class TestPause:
    @pytest.mark.asyncio
    async def test_optimistic_pause(self, make_machine, mock_job_service):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())

        job = await machine.pause()
        assert job.status == JobStatus.PAUSED
        assert machine.banner.kind == BannerKind.PAUSED
        assert not machine.is_polling
        mock_job_service.pause.assert_awaited_once_with("J1")

    @pytest.mark.asyncio
    async def test_pause_failure_restores_previous(self, make_machine, mock_job_service):
        mock_job_service.pause.side_effect = UpstreamError("Job is not running")
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())

        assert await machine.pause() is None
        assert machine.active_job.status == JobStatus.PROCESSING_ITEMS
        assert machine.banner is None
        assert machine.is_polling
        assert machine.error == "Could not pause job: Job is not running"

    @pytest.mark.asyncio
    async def test_pause_requires_running_job(self, make_machine):
        machine = make_machine(poll_interval=60)
        with pytest.raises(JobStateError):
            await machine.pause()
        await machine.track(make_job(status="queued_for_processing"))
        with pytest.raises(JobStateError, match="queued_for_processing"):
            await machine.pause()

    @pytest.mark.asyncio
    async def test_pause_auth_failure(self, make_machine, mock_job_service):
        mock_job_service.pause.side_effect = AuthError("expired", status_code=401)
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())
        assert await machine.pause() is None
        assert machine.active_job is None
        machine.on_auth_error.assert_awaited_once()


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_after_credits_exhausted(self, make_machine, job_status_sequence):
        job_status_sequence(make_job(status="completed"))
        machine = make_machine()
        await machine.track(make_job(status="failed_credits_exhausted"))
        assert machine.banner.kind == BannerKind.CREDITS_EXHAUSTED

        job = await machine.resume()
        assert job.status == JobStatus.PROCESSING_ITEMS
        assert machine.banner is None
        await wait_for(lambda: machine.active_job is None)
        machine.on_terminal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resume_failure_restores_banner(self, make_machine, mock_job_service):
        mock_job_service.resume.side_effect = UpstreamError("Still no credits")
        machine = make_machine(poll_interval=60)
        await machine.track(make_job(status="paused"))

        assert await machine.resume() is None
        assert machine.active_job.status == JobStatus.PAUSED
        assert machine.banner.kind == BannerKind.PAUSED
        assert not machine.is_polling
        assert "Still no credits" in machine.error

    @pytest.mark.asyncio
    async def test_resume_requires_paused_job(self, make_machine):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())
        with pytest.raises(JobStateError):
            await machine.resume()


class TestAbort:
    @pytest.mark.asyncio
    async def test_abort_is_terminal_immediately(self, make_machine, mock_job_service):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())

        aborted = await machine.abort()
        assert aborted.status == JobStatus.ABORTED
        assert machine.active_job is None
        assert machine.poll_handle is None
        machine.on_terminal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_abort_failure_still_finishes(self, make_machine, mock_job_service):
        mock_job_service.abort.side_effect = TransportError("Could not reach backend")
        machine = make_machine(poll_interval=60)
        await machine.track(make_job(status="paused"))

        await machine.abort()
        assert machine.active_job is None
        assert machine.banner is None
        assert machine.last_finished.status == JobStatus.ABORTED

    @pytest.mark.asyncio
    async def test_abort_auth_failure(self, make_machine, mock_job_service):
        mock_job_service.abort.side_effect = AuthError("expired", status_code=401)
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())
        assert await machine.abort() is None
        machine.on_auth_error.assert_awaited_once()
        machine.on_terminal.assert_not_awaited()


class TestReconcile:
    @pytest.mark.asyncio
    async def test_picks_up_active_job(self, make_machine):
        machine = make_machine(poll_interval=60)
        machine.reconcile([make_job("J0", status="completed"), make_job("J5")])
        assert machine.active_job.id == "J5"
        assert machine.is_polling

    @pytest.mark.asyncio
    async def test_picks_up_waiting_job_without_polling(self, make_machine):
        machine = make_machine(poll_interval=60)
        machine.reconcile([make_job("J5", status="queued_for_processing")])
        assert machine.active_job.id == "J5"
        assert not machine.is_polling

        machine.reconcile([make_job("J5", status="processing_items")])
        assert machine.is_polling

    @pytest.mark.asyncio
    async def test_terminal_update_clears_without_callback(self, make_machine):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())
        machine.reconcile([make_job(status="completed")])
        assert machine.active_job is None
        assert machine.poll_handle is None
        machine.on_terminal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_finished_jobs_are_not_picked_up_again(self, make_machine):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())
        await machine.abort()
        machine.reconcile([make_job()])
        assert machine.active_job is None

    @pytest.mark.asyncio
    async def test_other_jobs_do_not_replace_tracked_job(self, make_machine):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job("J1"))
        machine.reconcile([make_job("J2")])
        assert machine.active_job.id == "J1"

    @pytest.mark.asyncio
    async def test_skipped_while_control_in_flight(self, make_machine, mock_job_service):
        release = asyncio.Event()

        async def slow_pause(job_id):
            await release.wait()

        mock_job_service.pause.side_effect = slow_pause
        machine = make_machine(poll_interval=60)
        await machine.track(make_job())

        pause_task = asyncio.create_task(machine.pause())
        await wait_for(lambda: mock_job_service.pause.await_count == 1)
        machine.reconcile([make_job(status="processing_items", itemsProcessed=4)])
        assert machine.active_job.status == JobStatus.PAUSED

        release.set()
        await pause_task
        assert machine.active_job.status == JobStatus.PAUSED


class TestResumeOnMount:
    @pytest.mark.asyncio
    async def test_restores_polling(self, make_machine, mock_job_service):
        mock_job_service.get_active_job.return_value = make_job()
        machine = make_machine(poll_interval=60)
        job = await machine.resume_on_mount()
        assert job.id == "J1"
        assert machine.is_polling

    @pytest.mark.asyncio
    async def test_restores_banner(self, make_machine, mock_job_service):
        mock_job_service.get_active_job.return_value = make_job(status="failed_credits_exhausted")
        machine = make_machine(poll_interval=60)
        await machine.resume_on_mount()
        assert machine.banner.kind == BannerKind.CREDITS_EXHAUSTED
        assert not machine.is_polling

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["queued_for_processing", "pending_upload", "uploading_files"])
    async def test_waiting_job_is_tracked_without_polling(self, make_machine, mock_job_service, status):
        mock_job_service.get_active_job.return_value = make_job(status=status)
        machine = make_machine(poll_interval=60)
        job = await machine.resume_on_mount()
        assert job.status.value == status
        assert machine.active_job is not None
        assert machine.banner is None
        assert not machine.is_polling

    @pytest.mark.asyncio
    async def test_no_active_job(self, make_machine):
        machine = make_machine(poll_interval=60)
        assert await machine.resume_on_mount() is None
        assert machine.active_job is None

    @pytest.mark.asyncio
    async def test_load_failure(self, make_machine, mock_job_service):
        mock_job_service.get_active_job.side_effect = UpstreamError("boom")
        machine = make_machine(poll_interval=60)
        assert await machine.resume_on_mount() is None
        assert machine.error == "Could not load active job: boom"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_clears_everything(self, make_machine):
        machine = make_machine(poll_interval=60)
        await machine.track(make_job(status="paused"))
        machine.error = "old"
        machine.stop()
        assert machine.active_job is None
        assert machine.banner is None
        assert machine.error is None
        assert machine.poll_handle is None

    @pytest.mark.asyncio
    async def test_progress_and_status_text(self, make_machine):
        machine = make_machine(poll_interval=60)
        assert machine.progress_text is None
        await machine.track(make_job(totalItems=8, itemsProcessed=2))
        assert machine.progress_text == "2/8 items"
        assert machine.status_text == "Processing Items..."

"""
Tests for the job manager and job state machine.
"""

import pytest

from content_triage.config import settings
from content_triage.errors import InternalError, JobBusyError, NotFoundError, ValidationError
from content_triage.models.enums import DetectionType, JobStatus, Phase, Resolution
from content_triage.models.tables import ContentAnalysisJob
from content_triage.pipeline import jobs as jobs_module
from content_triage.pipeline import state

from conftest import CAMPAIGN_ID, OTHER_CAMPAIGN_ID

NOTE = "The Black Lotus met at Eldoria. Later, Mira arrived."


class TestTriggerAnalysis:

    async def test_creates_completed_job_with_pending_items(self, analyse, entities):
        job, items = await analyse(NOTE)

        assert job.status == JobStatus.COMPLETED.value
        assert job.phases == [Phase.IDENTIFICATION.value]
        assert job.current_phase is None
        assert job.total_items == 3
        assert job.resolved_items == 0
        assert job.content_snapshot == NOTE

        assert [i.matched_text for i in items] == ["Black Lotus", "Eldoria", "Mira"]
        assert all(i.resolution == Resolution.PENDING.value for i in items)
        assert all(i.phase == Phase.IDENTIFICATION.value for i in items)
        assert all(i.agent_name == "detector" for i in items)
        assert [i.position_start for i in items] == sorted(i.position_start for i in items)
        assert items[2].entity_id == entities["Captain Mira Vance"]

    async def test_wiki_link_with_unknown_name(self, analyse, entities):
        job, items = await analyse("Visited [[Silver Fox Inn]] and met a man named Viktor.")

        assert job.total_items == 1
        assert len(items) == 1
        assert items[0].detection_type == DetectionType.WIKI_LINK_RESOLVED.value
        assert items[0].entity_id == entities["Silver Fox Inn"]

    async def test_empty_content_completes_with_no_items(self, analyse, entities):
        job, items = await analyse("")
        assert job.status == JobStatus.COMPLETED.value
        assert job.total_items == 0
        assert items == []

    async def test_content_over_limit_is_rejected(self, analyse, entities, monkeypatch):
        monkeypatch.setattr(settings, "MAX_ANALYSIS_CONTENT_CHARS", 10)
        with pytest.raises(ValidationError):
            await analyse("Eldoria is a very long way away.")

    async def test_missing_source_field_is_rejected(self, job_manager):
        with pytest.raises(ValidationError):
            await job_manager.trigger_analysis(CAMPAIGN_ID, "sessions", 1, "", "text")

    async def test_detector_failure_marks_job_failed(self, analyse, job_manager, entities, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("index corrupted")

        monkeypatch.setattr(jobs_module, "detect", boom)
        with pytest.raises(InternalError):
            await analyse(NOTE)

        [job] = await job_manager.list_jobs(CAMPAIGN_ID)
        assert job.status == JobStatus.FAILED.value
        assert job.failure_reason == jobs_module.ANALYSIS_FAILED_REASON
        assert "index corrupted" not in job.failure_reason


class TestReanalysis:

    async def test_identical_content_does_not_duplicate(self, analyse, job_manager, entities):
        first_job, first_items = await analyse(NOTE)
        second_job, second_items = await analyse(NOTE)

        assert second_job.id == first_job.id
        assert [i.id for i in second_items] == [i.id for i in first_items]
        assert second_job.total_items == 3
        assert second_job.phases == [Phase.IDENTIFICATION.value, Phase.IDENTIFICATION.value]
        assert len(await job_manager.list_jobs(CAMPAIGN_ID)) == 1

    async def test_resolved_items_survive_and_stale_pending_removed(
        self, analyse, job_manager, resolution_service, entities
    ):
        job, items = await analyse(NOTE)
        await resolution_service.resolve_item(items[0].id, Resolution.ACCEPTED)

        # "Black Lotus" stays at the same span, Eldoria and Mira disappear
        job, items = await analyse("The Black Lotus slept.")

        assert [i.matched_text for i in items] == ["Black Lotus"]
        assert items[0].resolution == Resolution.ACCEPTED.value
        assert job.total_items == 1
        assert job.resolved_items == 1

    async def test_resolved_item_kept_when_no_longer_detected(self, analyse, resolution_service, entities):
        job, items = await analyse(NOTE)
        await resolution_service.resolve_item(items[1].id, Resolution.DISMISSED)

        job, items = await analyse("Nothing to see here.")

        assert [i.matched_text for i in items] == ["Eldoria"]
        assert job.total_items == 1
        assert job.resolved_items == 1

    async def test_rejected_while_enriching(self, analyse, session_factory, entities):
        job, _ = await analyse(NOTE)
        async with session_factory() as session, session.begin():
            row = await session.get(ContentAnalysisJob, job.id)
            state.start_phase(row, Phase.ENRICHMENT)

        with pytest.raises(JobBusyError):
            await analyse(NOTE)

    async def test_stale_identification_is_recovered(self, analyse, session_factory, entities):
        job, _ = await analyse(NOTE)
        async with session_factory() as session, session.begin():
            row = await session.get(ContentAnalysisJob, job.id)
            row.status = JobStatus.RUNNING.value
            row.current_phase = Phase.IDENTIFICATION.value

        job, items = await analyse(NOTE)

        assert job.status == JobStatus.COMPLETED.value
        assert job.current_phase is None
        assert job.failure_reason is None
        assert job.total_items == 3
        assert len(items) == 3

    async def test_moved_mention_keeps_its_resolution(self, analyse, resolution_service, entities):
        job, items = await analyse(NOTE)
        await resolution_service.resolve_item(items[0].id, Resolution.ACCEPTED)

        job, moved = await analyse("Later, the Black Lotus met at Eldoria.")

        lotus = [i for i in moved if i.matched_text == "Black Lotus"]
        assert len(lotus) == 1
        assert lotus[0].id == items[0].id
        assert lotus[0].resolution == Resolution.ACCEPTED.value
        assert lotus[0].position_start == 11
        assert job.total_items == 2
        assert job.resolved_items == 1

    async def test_separate_fields_get_separate_jobs(self, analyse, job_manager, entities):
        await analyse(NOTE, source_field="notes")
        await analyse(NOTE, source_field="summary")
        assert len(await job_manager.list_jobs(CAMPAIGN_ID)) == 2


class TestQueries:

    async def test_get_job_scoped_to_campaign(self, analyse, job_manager, entities):
        job, _ = await analyse(NOTE)
        assert (await job_manager.get_job(job.id, campaign_id=CAMPAIGN_ID)).id == job.id
        with pytest.raises(NotFoundError):
            await job_manager.get_job(job.id, campaign_id=OTHER_CAMPAIGN_ID)
        with pytest.raises(NotFoundError):
            await job_manager.get_job(9999)

    async def test_list_jobs_filters(self, analyse, job_manager, entities):
        await analyse(NOTE, source_id=10)
        await analyse(NOTE, source_id=11)

        assert len(await job_manager.list_jobs(CAMPAIGN_ID, source_table="sessions")) == 2
        assert len(await job_manager.list_jobs(CAMPAIGN_ID, source_id=11)) == 1
        assert len(await job_manager.list_jobs(CAMPAIGN_ID, status=JobStatus.FAILED)) == 0
        assert await job_manager.list_jobs(OTHER_CAMPAIGN_ID) == []

    async def test_list_job_items_filters(self, analyse, job_manager, resolution_service, entities):
        job, items = await analyse(NOTE)
        await resolution_service.resolve_item(items[0].id, Resolution.DISMISSED)

        pending = await job_manager.list_job_items(job.id, resolution=Resolution.PENDING)
        assert len(pending) == 2
        enrichment = await job_manager.list_job_items(job.id, phase=Phase.ENRICHMENT)
        assert enrichment == []
        with pytest.raises(NotFoundError):
            await job_manager.list_job_items(job.id, campaign_id=OTHER_CAMPAIGN_ID)


class TestStateMachine:

    def _job(self, status, phase=None):
        return ContentAnalysisJob(id=1, status=status.value, current_phase=phase, phases=[])

    def test_created_to_completed_is_illegal(self):
        with pytest.raises(InternalError):
            state.transition(self._job(JobStatus.CREATED), JobStatus.COMPLETED)

    def test_failed_requires_reason(self):
        with pytest.raises(InternalError):
            state.transition(self._job(JobStatus.RUNNING, "identification"), JobStatus.FAILED, "  ")

    def test_cancel_only_during_enrichment(self):
        with pytest.raises(InternalError):
            state.cancel_phase(self._job(JobStatus.RUNNING, Phase.IDENTIFICATION.value))

        job = self._job(JobStatus.RUNNING, Phase.ENRICHMENT.value)
        state.cancel_phase(job)
        assert job.status == JobStatus.CANCELLED.value
        assert job.current_phase is None

    def test_rested_job_reopens_for_new_phase(self):
        for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            job = self._job(status)
            state.start_phase(job, Phase.ENRICHMENT)
            assert job.status == JobStatus.RUNNING.value
            assert job.phases == [Phase.ENRICHMENT.value]

    def test_running_cannot_restart(self):
        with pytest.raises(InternalError):
            state.start_phase(self._job(JobStatus.RUNNING, "identification"), Phase.ENRICHMENT)

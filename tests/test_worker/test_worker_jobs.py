"""
Tests for enqueueing enrichment runs on RQ.
"""

from content_triage.worker import jobs as worker_jobs


class FakeQueue:

    def __init__(self):
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))

        class _Job:
            id = kwargs["job_id"]
        return _Job()


class TestEnqueueEnrichment:

    def test_run_id_is_part_of_rq_job_id(self, monkeypatch):
        queue = FakeQueue()
        monkeypatch.setattr(worker_jobs, "get_queue", lambda: queue)

        rq_job_id = worker_jobs.enqueue_enrichment(7, 3)

        assert rq_job_id == "enrichment-7-3"
        func, args, kwargs = queue.enqueued[0]
        assert func is worker_jobs.run_enrichment_job
        assert args == (7, 3)
        assert kwargs["job_timeout"] == worker_jobs.settings.JOB_TIMEOUT_SECONDS

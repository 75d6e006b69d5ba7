"""
Job status state machine.

created -> running -> completed | failed
running -> cancelled (enrichment only)
completed | failed | cancelled -> running (a new phase starts)
"""

from typing import Optional

import structlog

from content_triage.errors import InternalError
from content_triage.models.enums import JobStatus, Phase
from content_triage.models.tables import ContentAnalysisJob

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.CREATED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset({JobStatus.RUNNING}),
    JobStatus.FAILED: frozenset({JobStatus.RUNNING}),
    JobStatus.CANCELLED: frozenset({JobStatus.RUNNING}),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    job: ContentAnalysisJob,
    target: JobStatus,
    failure_reason: Optional[str] = None,
) -> None:
    """
    Move a job to a new status or raise InternalError.
    The caller owns the session and the per-job lock.
    """
    current = JobStatus(job.status)
    if not can_transition(current, target):
        raise InternalError(
            f"Illegal job transition {current.value} -> {target.value}",
            details={"job_id": job.id},
        )
    if target == JobStatus.CANCELLED and job.current_phase != Phase.ENRICHMENT.value:
        raise InternalError(
            "Only an enrichment run can be cancelled",
            details={"job_id": job.id},
        )
    if target == JobStatus.FAILED and not (failure_reason or "").strip():
        raise InternalError("A failed job needs a failure reason", details={"job_id": job.id})

    job.status = target.value
    if target == JobStatus.FAILED:
        job.failure_reason = failure_reason
    logger.debug("job_transition", job_id=job.id, from_status=current.value, to_status=target.value)


def start_phase(job: ContentAnalysisJob, phase: Phase) -> None:
    """Open a new phase: status running, phase appended to the history."""
    transition(job, JobStatus.RUNNING)
    job.current_phase = phase.value
    # Reassign so the JSON column is flagged dirty
    job.phases = [*(job.phases or []), phase.value]
    job.failure_reason = None
    if phase == Phase.ENRICHMENT:
        job.cancel_requested = False


def finish_phase(job: ContentAnalysisJob) -> None:
    transition(job, JobStatus.COMPLETED)
    job.current_phase = None


def fail_phase(job: ContentAnalysisJob, reason: str) -> None:
    transition(job, JobStatus.FAILED, failure_reason=reason)
    job.current_phase = None


def cancel_phase(job: ContentAnalysisJob) -> None:
    transition(job, JobStatus.CANCELLED)
    job.current_phase = None


def is_enriching(job: ContentAnalysisJob) -> bool:
    return job.status == JobStatus.RUNNING.value and job.current_phase == Phase.ENRICHMENT.value


def identification_completed(job: ContentAnalysisJob) -> bool:
    """True once an identification pass has run to completion at least once."""
    phases = job.phases or []
    if Phase.IDENTIFICATION.value not in phases:
        return False
    if job.status == JobStatus.RUNNING.value and job.current_phase == Phase.IDENTIFICATION.value:
        return False
    if job.status == JobStatus.FAILED.value and phases[-1] == Phase.IDENTIFICATION.value:
        return False
    return job.status != JobStatus.CREATED.value

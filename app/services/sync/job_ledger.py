"""Job run ledger.

Every batch job brackets its work with exactly one ``start`` and one
``finish`` (or ``fail``). Operators use the rows to tell apart "never ran",
"still running" and "ran and partially failed".
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core import metrics
from app.core.logging import get_logger
from app.models import JobRun
from app.utils.timezone import utcnow

logger = get_logger(__name__)

STATUS_RUNNING = "running"
STATUS_SUCCESS = "success"
STATUS_FAIL = "fail"
STATUS_COMPLETED_WITH_ERRORS = "completed_with_errors"

TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAIL, STATUS_COMPLETED_WITH_ERRORS)


def status_for_errors(errors: int) -> str:
    """Terminal status for a run that completed with ``errors`` row-level failures."""
    return STATUS_COMPLETED_WITH_ERRORS if errors > 0 else STATUS_SUCCESS


class JobLedger:
    """Writes JobRun rows. Each call commits so the row is visible while the job runs."""

    def __init__(self, db: Session):
        self.db = db

    def start(self, job_name: str, details: Optional[Dict[str, Any]] = None) -> str:
        """Record a job start and return the run id."""
        run = JobRun(job_name=job_name, status=STATUS_RUNNING, started_at=utcnow(), details=details or {})
        self.db.add(run)
        self.db.commit()

        logger.info(f"Job {job_name} started", extra={"run_id": run.id, "job_name": job_name})
        return run.id

    def finish(
        self,
        run_id: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> JobRun:
        """
        Record the terminal status of a run.

        Details are merged over the start details, so request parameters
        recorded at start survive next to the final counters.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal job status: {status}")

        run = self.db.get(JobRun, run_id)
        if run is None:
            raise LookupError(f"Unknown job run {run_id}")

        finished_at = utcnow()
        run.status = status
        run.finished_at = finished_at
        run.details = {**(run.details or {}), **(details or {})}
        if error is not None:
            run.error = error
        self.db.commit()

        duration = (finished_at - run.started_at).total_seconds()
        metrics.job_runs_total.labels(job_name=run.job_name, status=status).inc()
        metrics.job_duration_seconds.labels(job_name=run.job_name).observe(duration)

        log = logger.error if status == STATUS_FAIL else logger.info
        log(
            f"Job {run.job_name} finished: {status}",
            extra={"run_id": run_id, "job_name": run.job_name, "duration_s": round(duration, 3)},
        )
        return run

    def fail(self, run_id: str, error: str, details: Optional[Dict[str, Any]] = None) -> JobRun:
        """Record a job-level failure with its error message."""
        # A failed flush may have left the session unusable
        self.db.rollback()
        return self.finish(run_id, STATUS_FAIL, details={**(details or {}), "error": error}, error=error)

    def get(self, run_id: str) -> Optional[JobRun]:
        return self.db.get(JobRun, run_id)

    def recent(self, limit: int = 20, job_name: Optional[str] = None) -> List[JobRun]:
        query = self.db.query(JobRun)
        if job_name:
            query = query.filter(JobRun.job_name == job_name)
        return query.order_by(JobRun.started_at.desc()).limit(limit).all()


def serialize_run(run: JobRun) -> Dict[str, Any]:
    return {
        "id": run.id,
        "job_name": run.job_name,
        "status": run.status,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
        "details": run.details or {},
        "error": run.error,
    }

"""
Progress Reporter - keeps projects.sync_progress current during a run
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from metricsync.models import Project, ProgressStatus, utcnow
from metricsync.schemas.backfill import SyncProgressPayload

logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Overwrites one project's progress document in place.

    Percent never moves backwards within a run; a lower value passed to
    update() is raised to the last reported one.
    """

    def __init__(self, session_factory, project_id: str, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.project_id = project_id
        self.clock = clock
        self.started_at: Optional[datetime] = None
        self.percent = 0

    def start(self, message: str = "Starting import...") -> SyncProgressPayload:
        self.started_at = self.clock()
        self.percent = 0
        return self._write(ProgressStatus.IMPORTING, message, phase="batches")

    def update(
        self,
        percent: int,
        message: str,
        status: ProgressStatus = ProgressStatus.IMPORTING,
        phase: Optional[str] = "batches",
    ) -> SyncProgressPayload:
        self.percent = max(self.percent, min(int(percent), 100))
        return self._write(status, message, phase=phase)

    def finish(self, status: ProgressStatus, message: str) -> SyncProgressPayload:
        """Final snapshot; also stamps the project's last status and sync time"""
        self.percent = 100
        return self._write(status, message, phase="done", final=True)

    def _write(self, status: ProgressStatus, message: str, phase: Optional[str], final: bool = False) -> SyncProgressPayload:
        payload = SyncProgressPayload(
            status=status,
            progress=self.percent,
            message=message,
            started_at=self.started_at,
            phase=phase,
        )

        db = self.session_factory()
        try:
            project = db.query(Project).filter(Project.id == self.project_id).first()
            if project is None:
                logger.warning(f"[PROGRESS] Project {self.project_id} vanished, progress not saved")
                return payload
            project.sync_progress = payload.model_dump(mode="json")
            if final:
                project.webhook_status = status.value
                project.last_sync_at = self.clock()
            elif status == ProgressStatus.IMPORTING:
                project.webhook_status = "importing_history"
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        return payload


def read_progress(session_factory, project_id: str) -> Optional[SyncProgressPayload]:
    """Current progress document for a project (None if never set)"""
    db = session_factory()
    try:
        project = db.query(Project).filter(Project.id == project_id).first()
        if project is None or not project.sync_progress:
            return None
        return SyncProgressPayload.model_validate(project.sync_progress)
    finally:
        db.close()

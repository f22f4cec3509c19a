"""
Run Log - append-only audit trail in sync_logs
"""
import logging
from typing import List, Optional

from pydantic import BaseModel

from metricsync.models import SyncLog, RunStatus

logger = logging.getLogger(__name__)


class RunLog:
    """Writes one immutable row per run outcome"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def append(self, project_id: str, status: RunStatus, payload: BaseModel) -> int:
        db = self.session_factory()
        try:
            entry = SyncLog(
                project_id=project_id,
                status=status.value,
                message=payload.model_dump_json(),
            )
            db.add(entry)
            db.commit()
            db.refresh(entry)
            logger.debug(f"[RUN-LOG] {project_id} {status.value}: {entry.message}")
            return entry.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def recent(self, project_id: str, limit: int = 50, status: Optional[RunStatus] = None) -> List[SyncLog]:
        db = self.session_factory()
        try:
            query = db.query(SyncLog).filter(SyncLog.project_id == project_id)
            if status:
                query = query.filter(SyncLog.status == status.value)
            return query.order_by(SyncLog.id.desc()).limit(limit).all()
        finally:
            db.close()

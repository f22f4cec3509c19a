"""
Project lookups for the backfill engine
"""
from dataclasses import dataclass
from typing import List, Optional

from metricsync.models import Project
from metricsync.services.backfill.errors import ConfigurationError, ProjectNotFoundError


@dataclass(frozen=True)
class ProjectRef:
    """Detached snapshot of the project fields the engine needs"""

    id: str
    ad_account_id: str
    name: str
    timezone: Optional[str] = None

    @classmethod
    def from_model(cls, project: Project) -> "ProjectRef":
        return cls(
            id=project.id,
            ad_account_id=project.ad_account_id,
            name=project.name,
            timezone=project.timezone,
        )


def load_project(session_factory, project_id: str) -> ProjectRef:
    """Load a project, failing fast if it cannot be synced"""
    db = session_factory()
    try:
        project = db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            raise ProjectNotFoundError(project_id)
        if not project.ad_account_id:
            raise ConfigurationError(f"Project {project.name} has no ad_account_id")
        return ProjectRef.from_model(project)
    finally:
        db.close()


def list_active_projects(session_factory, project_id: Optional[str] = None) -> List[ProjectRef]:
    """Non-archived projects with an ad account, optionally narrowed to one id"""
    db = session_factory()
    try:
        query = db.query(Project).filter(
            Project.archived.is_(False),
            Project.ad_account_id.isnot(None),
        )
        if project_id:
            query = query.filter(Project.id == project_id)
        return [ProjectRef.from_model(p) for p in query.order_by(Project.name).all()]
    finally:
        db.close()


def ensure_project_exists(session_factory, project_id: str) -> None:
    """Raise ProjectNotFoundError unless the project row exists (ad account not required)"""
    db = session_factory()
    try:
        if db.query(Project.id).filter(Project.id == project_id).first() is None:
            raise ProjectNotFoundError(project_id)
    finally:
        db.close()

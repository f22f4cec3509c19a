"""
Backfill exceptions
"""


class BackfillError(Exception):
    """Base class for backfill engine errors"""
    pass


class ConfigurationError(BackfillError):
    """Missing credentials or identifiers; fails a request before any batch work"""
    pass


class ProjectNotFoundError(BackfillError):
    """Requested project does not exist"""

    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id

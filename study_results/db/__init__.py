"""Database module for study result storage."""

from study_results.db.models import (
    Base,
    BatchRecord,
    ComponentRecord,
    ComponentResultRecord,
    GroupResultRecord,
    StudyRecord,
    StudyResultRecord,
    UserRecord,
    WorkerRecord,
)
from study_results.db.session import get_engine, get_session, init_db, make_session_factory, session_scope

__all__ = [
    "Base",
    "UserRecord",
    "StudyRecord",
    "BatchRecord",
    "ComponentRecord",
    "WorkerRecord",
    "GroupResultRecord",
    "StudyResultRecord",
    "ComponentResultRecord",
    "get_engine",
    "get_session",
    "init_db",
    "make_session_factory",
    "session_scope",
]

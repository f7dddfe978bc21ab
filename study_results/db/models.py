"""SQLAlchemy ORM models for study result data.

Schema overview:
- Studies own components and batches; users are study members
- A study result is one run of a study by one worker
- A component result is one run of one component inside a study result
- Group results collect study results that ran together

Cross-entity links are plain foreign-key columns. No ORM relationships are
declared: services resolve parents with explicit repository calls inside the
current transaction instead of relying on lazy loading.

Uploaded result files stay on disk; see ``study_results.uploads``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Worker types
JATOS_WORKER = "Jatos"
PERSONAL_SINGLE_WORKER = "PersonalSingle"
PERSONAL_MULTIPLE_WORKER = "PersonalMultiple"
GENERAL_SINGLE_WORKER = "GeneralSingle"
GENERAL_MULTIPLE_WORKER = "GeneralMultiple"
MT_WORKER = "MT"
MT_SANDBOX_WORKER = "MTSandbox"

WORKER_TYPES = (
    JATOS_WORKER,
    PERSONAL_SINGLE_WORKER,
    PERSONAL_MULTIPLE_WORKER,
    GENERAL_SINGLE_WORKER,
    GENERAL_MULTIPLE_WORKER,
    MT_WORKER,
    MT_SANDBOX_WORKER,
)

# Group result states
GROUP_STARTED = "STARTED"
GROUP_FINISHED = "FINISHED"
GROUP_FIXED = "FIXED"
GROUP_STATES = (GROUP_STARTED, GROUP_FINISHED, GROUP_FIXED)

STUDY_STATES = ("PRE", "STARTED", "DATA_RETRIEVED", "FINISHED", "ABORTED", "FAIL")
COMPONENT_STATES = ("STARTED", "DATA_RETRIEVED", "FINISHED", "RELOADED", "ABORTED", "FAIL")

# Number of characters of result data kept in data_short
DATA_SHORT_MAX_CHARS = 1000


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    """Return timezone-aware UTC timestamp."""
    return datetime.now(UTC)


def _in_check(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


study_users = Table(
    "study_users",
    Base.metadata,
    Column("study_id", Integer, ForeignKey("studies.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
)

batch_workers = Table(
    "batch_workers",
    Base.metadata,
    Column("batch_id", Integer, ForeignKey("batches.id"), primary_key=True),
    Column("worker_id", Integer, ForeignKey("workers.id"), primary_key=True),
)


class UserRecord(Base):
    """Platform user (researcher) that can be a member of studies."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_superuser: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class StudyRecord(Base):
    """A study. Destructive result operations are gated by ``locked``."""

    __tablename__ = "studies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class BatchRecord(Base):
    """A batch of a study. Workers allowed to run it live in ``batch_workers``."""

    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("studies.id"), nullable=False)
    batch_session_data: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    batch_session_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class ComponentRecord(Base):
    """A component of a study. Produces component results."""

    __tablename__ = "components"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("studies.id"), nullable=False)


class WorkerRecord(Base):
    """Identity that runs a study.

    Jatos workers are tied to a platform user (``user_id``) and are never
    removed by result operations.
    """

    __tablename__ = "workers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    worker_type: Mapped[str] = mapped_column(String(30), nullable=False)
    user_id = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    comment = mapped_column(Text, nullable=True)

    __table_args__ = (CheckConstraint(_in_check("worker_type", WORKER_TYPES), name="valid_worker_type"),)


class GroupResultRecord(Base):
    """Collaborative session of several study results.

    Active and history members are the study results whose
    ``active_group_result_id`` / ``history_group_result_id`` point here.
    """

    __tablename__ = "group_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(Integer, ForeignKey("batches.id"), nullable=False)
    state: Mapped[str] = mapped_column(String(20), default=GROUP_STARTED, nullable=False)
    group_session_data: Mapped[str] = mapped_column(Text, default="{}", nullable=False)
    group_session_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    end_date = mapped_column(DateTime, nullable=True)

    __table_args__ = (CheckConstraint(_in_check("state", GROUP_STATES), name="valid_group_state"),)


class StudyResultRecord(Base):
    """One run of a study by one worker."""

    __tablename__ = "study_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    study_code = mapped_column(String(255), nullable=True)
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("studies.id"), nullable=False)
    batch_id: Mapped[int] = mapped_column(Integer, ForeignKey("batches.id"), nullable=False)

    # Nulled when the study result is detached from its worker during removal
    worker_id = mapped_column(Integer, ForeignKey("workers.id"), nullable=True)
    worker_type: Mapped[str] = mapped_column(String(30), nullable=False)

    active_group_result_id = mapped_column(Integer, ForeignKey("group_results.id"), nullable=True)
    history_group_result_id = mapped_column(Integer, ForeignKey("group_results.id"), nullable=True)

    state: Mapped[str] = mapped_column(String(20), default="STARTED", nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    end_date = mapped_column(DateTime, nullable=True)
    last_seen_date = mapped_column(DateTime, nullable=True)
    message = mapped_column(Text, nullable=True)
    confirmation_code = mapped_column(String(255), nullable=True)
    url_query_parameters = mapped_column(Text, nullable=True)

    __table_args__ = (CheckConstraint(_in_check("state", STUDY_STATES), name="valid_study_state"),)


class ComponentResultRecord(Base):
    """One run of a single component inside a study result.

    ``data`` holds the collected result data and may be large; list views
    use ``data_short`` and ``data_size`` instead.
    """

    __tablename__ = "component_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    study_result_id = mapped_column(Integer, ForeignKey("study_results.id"), nullable=True)
    component_id: Mapped[int] = mapped_column(Integer, ForeignKey("components.id"), nullable=False)

    state: Mapped[str] = mapped_column(String(20), default="STARTED", nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    end_date = mapped_column(DateTime, nullable=True)
    message = mapped_column(Text, nullable=True)

    data = mapped_column(Text, nullable=True, deferred=True)
    data_short = mapped_column(String(DATA_SHORT_MAX_CHARS), nullable=True)
    data_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (CheckConstraint(_in_check("state", COMPONENT_STATES), name="valid_component_state"),)

    def set_data(self, data: str | None) -> None:
        """Store result data and keep ``data_short``/``data_size`` in sync."""
        self.data = data
        self.data_short = data[:DATA_SHORT_MAX_CHARS] if data is not None else None
        self.data_size = len(data.encode("utf-8")) if data is not None else 0

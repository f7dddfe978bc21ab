"""Global pytest fixtures for the test suite."""

import uuid
from datetime import datetime, timedelta
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from study_results.config import ResultSettings
from study_results.db import (
    BatchRecord,
    ComponentRecord,
    ComponentResultRecord,
    GroupResultRecord,
    StudyRecord,
    StudyResultRecord,
    UserRecord,
    WorkerRecord,
    init_db,
    make_session_factory,
    session_scope,
)
from study_results.db.models import GENERAL_MULTIPLE_WORKER, GROUP_STARTED
from study_results.db.repository import ResultRepository
from study_results.remover import ResultRemover
from study_results.streamer import ResultStreamer
from study_results.study_log import StudyLogger
from study_results.uploads import ResultUploads

START = datetime(2024, 1, 2, 10, 0, 0)


class Seeder:
    """Creates committed test entities and returns their IDs.

    Every call runs in its own transaction so no session stays open while
    the code under test opens its own.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, entity) -> int:
        with session_scope(self.session_factory) as session:
            ResultRepository(session).add(entity)
            return entity.id

    def user(self, username: str = "alice", is_superuser: bool = False) -> int:
        return self._add(UserRecord(username=username, name=username.title(), is_superuser=is_superuser))

    def study(self, *member_ids: int, locked: bool = False, title: str = "Study") -> int:
        study_id = self._add(StudyRecord(uuid=str(uuid.uuid4()), title=title, locked=locked))
        with session_scope(self.session_factory) as session:
            repository = ResultRepository(session)
            for user_id in member_ids:
                repository.add_study_member(study_id, user_id)
        return study_id

    def lock(self, study_id: int) -> None:
        with session_scope(self.session_factory) as session:
            session.get(StudyRecord, study_id).locked = True

    def batch(self, study_id: int, title: str = "Default") -> int:
        return self._add(BatchRecord(uuid=str(uuid.uuid4()), title=title, study_id=study_id))

    def component(self, study_id: int, title: str = "Component") -> int:
        return self._add(ComponentRecord(uuid=str(uuid.uuid4()), title=title, study_id=study_id))

    def worker(
        self,
        batch_id: Optional[int] = None,
        worker_type: str = GENERAL_MULTIPLE_WORKER,
        user_id: Optional[int] = None,
    ) -> int:
        worker_id = self._add(WorkerRecord(worker_type=worker_type, user_id=user_id))
        if batch_id is not None:
            with session_scope(self.session_factory) as session:
                ResultRepository(session).add_batch_worker(batch_id, worker_id)
        return worker_id

    def group(self, batch_id: int, state: str = GROUP_STARTED) -> int:
        return self._add(GroupResultRecord(batch_id=batch_id, state=state))

    def study_result(
        self,
        study_id: int,
        batch_id: int,
        worker_id: Optional[int],
        worker_type: str = GENERAL_MULTIPLE_WORKER,
        active_group_result_id: Optional[int] = None,
        history_group_result_id: Optional[int] = None,
    ) -> int:
        return self._add(
            StudyResultRecord(
                uuid=str(uuid.uuid4()),
                study_id=study_id,
                batch_id=batch_id,
                worker_id=worker_id,
                worker_type=worker_type,
                active_group_result_id=active_group_result_id,
                history_group_result_id=history_group_result_id,
                state="FINISHED",
                start_date=START,
                end_date=START + timedelta(minutes=5),
            )
        )

    def component_result(self, study_result_id: Optional[int], component_id: int, data: Optional[str] = None) -> int:
        component_result = ComponentResultRecord(
            study_result_id=study_result_id,
            component_id=component_id,
            state="FINISHED",
            start_date=START,
            end_date=START + timedelta(seconds=90),
        )
        component_result.set_data(data)
        return self._add(component_result)


@pytest.fixture
def engine():
    """In-memory SQLite database shared by all sessions (and threads) of one test."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def uploads(tmp_path):
    return ResultUploads(tmp_path / "result_uploads")


@pytest.fixture
def study_logger(tmp_path):
    return StudyLogger(tmp_path / "study_logs")


@pytest.fixture
def settings():
    return ResultSettings(max_results_db_query_size=100, keep_alive_seconds=30)


@pytest.fixture
def streamer(session_factory, uploads, study_logger, settings):
    return ResultStreamer(session_factory, uploads, study_logger, settings)


@pytest.fixture
def remover(session_factory, uploads, study_logger, settings):
    return ResultRemover(session_factory, uploads, study_logger, settings)


@pytest.fixture
def world(seed):
    """A study with one batch, two components and three study results.

    alice is a member of the study, bob isn't. Study result ``a`` holds the
    component results ``a1`` and ``a2`` (one per component), ``b`` holds
    ``b1``, ``c`` holds ``c1``.
    """
    alice = seed.user("alice")
    bob = seed.user("bob")
    study = seed.study(alice, title="Memory Study")
    batch = seed.batch(study)
    component1 = seed.component(study, "Intro")
    component2 = seed.component(study, "Task")
    worker = seed.worker(batch)
    a = seed.study_result(study, batch, worker)
    a1 = seed.component_result(a, component1, "r1c1")
    a2 = seed.component_result(a, component2, "r1c2")
    b = seed.study_result(study, batch, worker)
    b1 = seed.component_result(b, component1, "r2c1")
    c = seed.study_result(study, batch, worker)
    c1 = seed.component_result(c, component1, '{"answer": 42}')
    return {
        "alice": alice,
        "bob": bob,
        "study": study,
        "batch": batch,
        "component1": component1,
        "component2": component2,
        "worker": worker,
        "a": a,
        "a1": a1,
        "a2": a2,
        "b": b,
        "b1": b1,
        "c": c,
        "c1": c1,
    }

"""Tests for result removal and the cleanup it triggers."""

import json
import logging
from unittest.mock import patch

import pytest

from study_results.config import ResultSettings
from study_results.db import StudyRecord, session_scope
from study_results.db.models import GROUP_FINISHED, GROUP_STARTED, JATOS_WORKER
from study_results.db.repository import ResultRepository
from study_results.exceptions import BadRequestError, ForbiddenError, NotFoundError
from study_results.remover import REMOVE_MSG, ResultRemover


@pytest.fixture
def read(session_factory):
    """Run a read against a fresh transaction."""

    def _read(fn):
        with session_scope(session_factory) as session:
            return fn(ResultRepository(session))

    return _read


def _exists(read, kind, entity_id):
    return read(lambda r: getattr(r, f"find_{kind}")(entity_id)) is not None


class TestRemoveComponentResults:
    def test_removes_only_the_given_results(self, world, remover, read):
        report = remover.remove_component_results([world["a1"], world["a1"]], world["alice"])

        assert report.removed_component_result_ids == [world["a1"]]
        assert not _exists(read, "component_result", world["a1"])
        assert _exists(read, "component_result", world["a2"])
        assert report.study_ids == {world["study"]}

    def test_emptied_study_result_is_kept_by_default(self, world, remover, read):
        remover.remove_component_results([world["b1"]], world["alice"])
        assert _exists(read, "study_result", world["b"])

    def test_emptied_study_result_is_removed_on_request(self, world, remover, read):
        report = remover.remove_component_results(
            [world["a1"], world["b1"]], world["alice"], remove_empty_study_results=True
        )

        assert report.removed_study_result_ids == [world["b"]]
        assert not _exists(read, "study_result", world["b"])
        # Still holds a2
        assert _exists(read, "study_result", world["a"])

    def test_second_removal_is_not_found(self, world, remover, read):
        remover.remove_component_results([world["c1"]], world["alice"])
        with pytest.raises(NotFoundError, match=f"ID {world['c1']} doesn't exist"):
            remover.remove_component_results([world["c1"]], world["alice"])

    def test_missing_id_removes_nothing(self, world, remover, read):
        with pytest.raises(NotFoundError):
            remover.remove_component_results([world["a1"], 9999], world["alice"])
        assert _exists(read, "component_result", world["a1"])

    def test_locked_study_removes_nothing(self, seed, world, remover, read):
        seed.lock(world["study"])
        with pytest.raises(ForbiddenError, match="locked"):
            remover.remove_component_results([world["a1"], world["b1"]], world["alice"])
        assert read(lambda r: r.count_component_results_by_component(world["component1"])) == 3

    def test_non_member(self, world, remover, read):
        with pytest.raises(ForbiddenError):
            remover.remove_component_results([world["a1"]], world["bob"])
        assert _exists(read, "component_result", world["a1"])

    def test_result_without_study_result_is_logged(self, seed, world, remover, read, caplog):
        orphan = seed.component_result(None, world["component1"], "lost")

        with caplog.at_level(logging.ERROR, logger="study_results.remover"):
            report = remover.remove_component_results([orphan], world["alice"])

        assert report.removed_component_result_ids == [orphan]
        assert not _exists(read, "component_result", orphan)
        assert "has no study result" in caplog.text


class TestRemoveStudyResults:
    def test_removes_component_results_too(self, world, remover, read):
        report = remover.remove_study_results([world["a"]], world["alice"])

        assert report.removed_component_result_ids == [world["a1"], world["a2"]]
        assert report.removed_study_result_ids == [world["a"]]
        assert read(lambda r: r.count_study_results_by_study(world["study"])) == 2
        assert read(lambda r: r.find_component_result_ids_by_study_result(world["a"])) == []

    def test_locked_study_is_rechecked(self, seed, world, remover, read):
        seed.lock(world["study"])
        with pytest.raises(ForbiddenError):
            remover.remove_study_results([world["a"]], world["alice"])
        assert read(lambda r: r.find_component_result_ids_by_study_result(world["a"])) == [world["a1"], world["a2"]]

    def test_missing_study_result(self, world, remover):
        with pytest.raises(NotFoundError, match="study result"):
            remover.remove_study_results([9999], world["alice"])

    def test_missing_user(self, world, remover):
        with pytest.raises(NotFoundError, match="user"):
            remover.remove_study_results([world["a"]], 9999)

    def test_upload_dirs_are_removed(self, world, remover, uploads):
        component_dir = uploads.get_result_uploads_dir(world["a"], world["a1"])
        component_dir.mkdir(parents=True)
        (component_dir / "photo.png").write_bytes(b"png")

        report = remover.remove_study_results([world["a"]], world["alice"])

        assert not uploads.get_result_uploads_dir(world["a"]).exists()
        assert report.skipped == []
        assert report.upload_bytes == 3

    def test_no_uploads_frees_nothing(self, world, remover):
        report = remover.remove_study_results([world["b"], world["c"]], world["alice"])
        assert report.upload_bytes == 0

    def test_upload_dir_failure_is_a_skip(self, world, remover, uploads, read):
        with patch.object(uploads, "remove_result_uploads_dir", side_effect=PermissionError("read-only")):
            report = remover.remove_study_results([world["b"]], world["alice"])

        assert [(skip.kind, skip.entity_id) for skip in report.skipped] == [
            ("upload_dir", world["b1"]),
            ("upload_dir", world["b"]),
        ]
        assert not _exists(read, "study_result", world["b"])

    def test_removal_is_study_logged(self, world, remover, session_factory, study_logger):
        remover.remove_study_results([world["c"]], world["alice"])

        with session_scope(session_factory) as session:
            path = study_logger.get_path(session.get(StudyRecord, world["study"]))
        entries = [json.loads(line) for line in path.read_text().splitlines() if line.strip()]
        assert [entry["msg"] for entry in entries] == [REMOVE_MSG]


class TestGroupCleanup:
    @pytest.mark.parametrize("membership", ["active_group_result_id", "history_group_result_id"])
    def test_finished_group_without_members_is_removed(self, seed, world, remover, read, membership):
        group = seed.group(world["batch"], GROUP_FINISHED)
        member = seed.study_result(world["study"], world["batch"], world["worker"], **{membership: group})

        report = remover.remove_study_results([member], world["alice"])

        assert report.removed_group_result_ids == [group]
        assert not _exists(read, "group_result", group)

    def test_unfinished_group_is_kept(self, seed, world, remover, read):
        group = seed.group(world["batch"], GROUP_STARTED)
        member = seed.study_result(world["study"], world["batch"], world["worker"], active_group_result_id=group)

        report = remover.remove_study_results([member], world["alice"])

        assert report.removed_group_result_ids == []
        assert _exists(read, "group_result", group)

    def test_group_with_remaining_members_is_kept(self, seed, world, remover, read):
        group = seed.group(world["batch"], GROUP_FINISHED)
        leaving = seed.study_result(world["study"], world["batch"], world["worker"], history_group_result_id=group)
        staying = seed.study_result(world["study"], world["batch"], world["worker"], history_group_result_id=group)

        remover.remove_study_results([leaving], world["alice"])

        assert _exists(read, "group_result", group)
        assert read(lambda r: r.count_history_members(group)) == 1
        assert read(lambda r: r.find_study_result(staying).history_group_result_id) == group


class TestBulkRemoval:
    def test_all_component_results_of_a_component(self, world, session_factory, uploads, study_logger, read):
        remover = ResultRemover(session_factory, uploads, study_logger, ResultSettings(max_results_db_query_size=2))

        report = remover.remove_all_component_results(world["component1"], world["alice"])

        assert report.removed_component_result_ids == [world["a1"], world["b1"], world["c1"]]
        assert read(lambda r: r.count_component_results_by_component(world["component1"])) == 0
        # Emptied study results stay
        assert read(lambda r: r.count_study_results_by_study(world["study"])) == 3

    def test_all_study_results_of_a_batch(self, world, remover, read):
        report = remover.remove_all_study_results(world["batch"], world["alice"])

        assert report.removed_study_result_ids == [world["a"], world["b"], world["c"]]
        assert read(lambda r: r.count_study_results_by_batch(world["batch"])) == 0
        assert _exists(read, "worker", world["worker"])

    def test_bulk_removal_in_locked_study(self, seed, world, remover, read):
        seed.lock(world["study"])
        with pytest.raises(ForbiddenError):
            remover.remove_all_study_results(world["batch"], world["alice"])
        with pytest.raises(ForbiddenError):
            remover.remove_all_component_results(world["component2"], world["alice"])
        assert read(lambda r: r.count_study_results_by_batch(world["batch"])) == 3

    def test_missing_component(self, world, remover):
        with pytest.raises(NotFoundError):
            remover.remove_all_component_results(9999, world["alice"])


class TestRemoveWorker:
    def test_removes_worker_and_its_results(self, world, remover, read):
        report = remover.remove_worker(world["worker"], world["alice"])

        assert report.removed_study_result_ids == [world["a"], world["b"], world["c"]]
        assert report.ids("worker") == [world["worker"]]
        assert not _exists(read, "worker", world["worker"])
        assert read(lambda r: r.count_study_results_by_study(world["study"])) == 0
        assert read(lambda r: r.is_worker_accessible(world["worker"], world["alice"])) is False

    def test_jatos_worker_cant_be_removed(self, seed, world, remover, read):
        jatos = seed.worker(world["batch"], JATOS_WORKER, user_id=world["alice"])
        with pytest.raises(ForbiddenError, match="Jatos"):
            remover.remove_worker(jatos, world["alice"])
        assert _exists(read, "worker", jatos)

    def test_missing_worker(self, world, remover):
        with pytest.raises(BadRequestError):
            remover.remove_worker(9999, world["alice"])

    def test_worker_of_foreign_study(self, world, remover, read):
        with pytest.raises(ForbiddenError):
            remover.remove_worker(world["worker"], world["bob"])
        assert _exists(read, "worker", world["worker"])

    def test_locked_study_keeps_worker(self, seed, world, remover, read):
        seed.lock(world["study"])
        with pytest.raises(ForbiddenError, match="locked"):
            remover.remove_worker(world["worker"], world["alice"])
        assert read(lambda r: r.count_study_results_by_study(world["study"])) == 3

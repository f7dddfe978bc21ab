"""Removal of component results, study results and workers.

Every operation runs in a single transaction and checks permissions for
all targeted entities before anything is changed. Removing entities also
cleans up what they leave behind:

* an emptied study result (no component results left) is detached from its
  worker and groups, and removed together with its upload directory;
* a group result is removed once it is FINISHED and has neither active nor
  past members, otherwise it is kept.

Deleting upload directories is best-effort. Leftover files are logged and
recorded as skips in the returned report, the database removal goes on.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from study_results.checker import Checker
from study_results.config import ResultSettings
from study_results.db.models import (
    GROUP_FINISHED,
    JATOS_WORKER,
    ComponentResultRecord,
    StudyRecord,
    StudyResultRecord,
    UserRecord,
)
from study_results.db.repository import ResultRepository
from study_results.db.session import SessionFactory, session_scope
from study_results.exceptions import ForbiddenError, NotFoundError
from study_results.reports import RemovalReport
from study_results.results import ResultService
from study_results.study_log import StudyLogger
from study_results.uploads import ResultUploads

logger = logging.getLogger(__name__)

REMOVE_MSG = "Removed result data and files"


def _unique(ids: Iterable[int]) -> List[int]:
    return list(dict.fromkeys(ids))


class ResultRemover:
    """Removes results and keeps workers, groups and upload dirs consistent."""

    def __init__(
        self,
        session_factory: SessionFactory,
        uploads: ResultUploads,
        study_logger: Optional[StudyLogger] = None,
        settings: Optional[ResultSettings] = None,
    ):
        self.session_factory = session_factory
        self.uploads = uploads
        self.study_logger = study_logger or StudyLogger()
        self.settings = settings or ResultSettings()

    @contextmanager
    def _unit_of_work(self) -> Iterator[Tuple[ResultRepository, Checker]]:
        with session_scope(self.session_factory) as session:
            repository = ResultRepository(session)
            yield repository, Checker(repository, self.settings.allow_superuser)

    @staticmethod
    def _require_user(repository: ResultRepository, user_id: int) -> UserRecord:
        user = repository.find_user(user_id)
        if user is None:
            raise NotFoundError(f"A user with ID {user_id} doesn't exist")
        return user

    def _log_removal(self, studies: Dict[int, StudyRecord], user: UserRecord) -> None:
        for study in studies.values():
            self.study_logger.log(study, user, REMOVE_MSG)

    # ========================================================================
    # Public operations
    # ========================================================================

    def remove_component_results(
        self, component_result_ids: Iterable[int], user_id: int, remove_empty_study_results: bool = False
    ) -> RemovalReport:
        """Remove the given component results.

        Args:
            component_result_ids: IDs of the component results
            user_id: Must be a member of every affected study
            remove_empty_study_results: If True, study results left without
                any component result are removed too

        Returns:
            Removed entity IDs and skipped cleanups

        Raises:
            NotFoundError: For the user or the first missing component result
            ForbiddenError: If the user lacks access or a study is locked
        """
        report = RemovalReport()
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            component_results = ResultService(repository).get_component_results(_unique(component_result_ids))
            studies = checker.check_component_results(component_results, user, True)

            parent_ids = []
            for component_result in component_results:
                if component_result.study_result_id is not None and component_result.study_result_id not in parent_ids:
                    parent_ids.append(component_result.study_result_id)
                self._remove_component_result(repository, component_result, report)

            if remove_empty_study_results:
                for study_result_id in parent_ids:
                    if repository.count_component_results_by_study_result(study_result_id) > 0:
                        continue
                    study_result = repository.find_study_result(study_result_id)
                    if study_result is not None:
                        self._remove_empty_study_result(repository, study_result, report)
            report.study_ids.update(studies)

        self._log_removal(studies, user)
        logger.info(f"Removed component results: {report.summary()}")
        return report

    def remove_study_results(self, study_result_ids: Iterable[int], user_id: int) -> RemovalReport:
        """Remove the given study results including their component results.

        Raises:
            NotFoundError: For the user or the first missing study result
            ForbiddenError: If the user lacks access or a study is locked
        """
        report = RemovalReport()
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            study_results = ResultService(repository).get_study_results(_unique(study_result_ids))
            studies = checker.check_study_results(study_results, user, True)

            for study_result in study_results:
                self._remove_study_result(repository, study_result, report)
            report.study_ids.update(studies)

        self._log_removal(studies, user)
        logger.info(f"Removed study results: {report.summary()}")
        return report

    def remove_all_component_results(self, component_id: int, user_id: int) -> RemovalReport:
        """Remove every component result of a component.

        Study results emptied by this are kept.
        """
        report = RemovalReport()
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            study = checker.check_standard_for_component(component_id, repository.find_component(component_id), user)
            checker.check_study_locked(study)

            # Removed entities drop out of the query, so always fetch the first page
            while True:
                page = repository.find_component_results_by_component(
                    component_id, 0, self.settings.max_results_db_query_size
                )
                if not page:
                    break
                for component_result in page:
                    self._remove_component_result(repository, component_result, report)
            report.study_ids.add(study.id)

        self._log_removal({study.id: study}, user)
        logger.info(f"Removed all component results of component {component_id}: {report.summary()}")
        return report

    def remove_all_study_results(self, batch_id: int, user_id: int) -> RemovalReport:
        """Remove every study result of a batch including their component results."""
        report = RemovalReport()
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            study = checker.check_standard_for_batch(repository.find_batch(batch_id), batch_id, user)
            checker.check_study_locked(study)

            while True:
                page = repository.find_study_results_by_batch(batch_id, 0, self.settings.max_results_db_query_size)
                if not page:
                    break
                for study_result in page:
                    self._remove_study_result(repository, study_result, report)
            report.study_ids.add(study.id)

        self._log_removal({study.id: study}, user)
        logger.info(f"Removed all study results of batch {batch_id}: {report.summary()}")
        return report

    def remove_worker(self, worker_id: int, user_id: int) -> RemovalReport:
        """Remove a worker together with all its study results.

        Raises:
            NotFoundError: If the user doesn't exist
            BadRequestError: If the worker doesn't exist
            ForbiddenError: For a Jatos worker, a worker the user may not
                access, or a study result the user may not remove
        """
        report = RemovalReport()
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            worker = repository.find_worker(worker_id)
            checker.check_worker(worker, worker_id)
            if worker.worker_type == JATOS_WORKER:
                raise ForbiddenError(f"Worker with ID {worker_id} belongs to a Jatos user and can't be removed")
            checker.check_user_allowed_to_access_worker(user, worker)

            study_results = repository.find_all_study_results_of_worker(worker_id)
            studies = checker.check_study_results(study_results, user, True)

            for study_result in study_results:
                self._remove_study_result(repository, study_result, report)
            repository.remove_batch_worker_links(worker_id)
            repository.remove(worker)
            report.ok("worker", worker_id)
            report.study_ids.update(studies)

        self._log_removal(studies, user)
        logger.info(f"Removed worker {worker_id}: {report.summary()}")
        return report

    # ========================================================================
    # Cleanup paths
    # ========================================================================

    def _remove_upload_dir(
        self, report: RemovalReport, study_result_id: int, component_result_id: Optional[int] = None
    ) -> None:
        try:
            self.uploads.remove_result_uploads_dir(study_result_id, component_result_id)
        except OSError as e:
            target = component_result_id if component_result_id is not None else study_result_id
            logger.warning(f"Could not remove result uploads dir of {study_result_id}/{component_result_id}: {e}")
            report.skip("upload_dir", target, str(e))

    def _remove_component_result(
        self, repository: ResultRepository, component_result: ComponentResultRecord, report: RemovalReport
    ) -> None:
        study_result_id = component_result.study_result_id
        if study_result_id is None or repository.find_study_result(study_result_id) is None:
            logger.error(
                f"Component result {component_result.id} has no study result, "
                f"but a component result always belongs to a study result"
            )
        if study_result_id is not None:
            self._remove_upload_dir(report, study_result_id, component_result.id)
        repository.remove(component_result)
        report.ok("component_result", component_result.id)

    def _remove_study_result(
        self, repository: ResultRepository, study_result: StudyResultRecord, report: RemovalReport
    ) -> None:
        report.upload_bytes += self.uploads.get_result_upload_dir_size(study_result.id)
        # Parent was already checked, so its component results are not checked again
        for component_result in repository.find_component_results_by_study_result(study_result.id):
            self._remove_component_result(repository, component_result, report)
        self._remove_empty_study_result(repository, study_result, report)

    def _remove_empty_study_result(
        self, repository: ResultRepository, study_result: StudyResultRecord, report: RemovalReport
    ) -> None:
        group_result_ids = _unique(
            gid
            for gid in (study_result.active_group_result_id, study_result.history_group_result_id)
            if gid is not None
        )
        # Membership lives on the study result, detaching is enough for worker and groups
        study_result.worker_id = None
        study_result.active_group_result_id = None
        study_result.history_group_result_id = None
        repository.update(study_result)
        for group_result_id in group_result_ids:
            self._remove_or_persist_group_result(repository, group_result_id, report)

        self._remove_upload_dir(report, study_result.id)
        repository.remove(study_result)
        report.ok("study_result", study_result.id)

    def _remove_or_persist_group_result(
        self, repository: ResultRepository, group_result_id: int, report: RemovalReport
    ) -> None:
        group_result = repository.find_group_result(group_result_id)
        if group_result is None:
            return
        if (
            group_result.state == GROUP_FINISHED
            and repository.count_active_members(group_result_id) == 0
            and repository.count_history_members(group_result_id) == 0
        ):
            repository.remove(group_result)
            report.ok("group_result", group_result_id)
        else:
            repository.update(group_result)

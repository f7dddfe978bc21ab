"""Permission checks for studies, results and workers.

Every check either passes silently or raises ``NotFoundError``,
``ForbiddenError`` or ``BadRequestError``. Parents (study of a component,
component of a component result, ...) are resolved through the repository
of the current session.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from study_results.db.models import (
    BatchRecord,
    ComponentRecord,
    ComponentResultRecord,
    GroupResultRecord,
    StudyRecord,
    StudyResultRecord,
    UserRecord,
    WorkerRecord,
)
from study_results.db.repository import ResultRepository
from study_results.exceptions import BadRequestError, ForbiddenError, NotFoundError


class Checker:
    """Checks whether a user may act on result entities."""

    def __init__(self, repository: ResultRepository, allow_superuser: bool = False):
        """Initialize checker.

        Args:
            repository: Repository of the current session
            allow_superuser: If True, superusers pass every membership check
        """
        self.repository = repository
        self.allow_superuser = allow_superuser

    def _has_access(self, study: StudyRecord, user: UserRecord) -> bool:
        if self.allow_superuser and user.is_superuser:
            return True
        return self.repository.is_study_member(study.id, user.id)

    def _forbid_non_member(self, study: StudyRecord, user: UserRecord) -> None:
        if not self._has_access(study, user):
            raise ForbiddenError(
                f"{user.name} ({user.username}) isn't a user of the study with ID {study.id}"
            )

    # ========================================================================
    # Studies, components, batches and groups
    # ========================================================================

    def check_standard_for_study(self, study: Optional[StudyRecord], study_id: int, user: UserRecord) -> None:
        """Check the study exists and the user is a member (or allowed superuser)."""
        if study is None:
            raise NotFoundError(f"A study with ID {study_id} doesn't exist")
        if not self._has_access(study, user):
            raise ForbiddenError(f"No access to study with ID {study_id}")

    def check_study_locked(self, study: StudyRecord) -> None:
        """Raise ForbiddenError if the study is locked."""
        if study.locked:
            raise ForbiddenError(f"Study with ID {study.id} is locked")

    def check_standard_for_component(
        self, component_id: int, component: Optional[ComponentRecord], user: UserRecord
    ) -> StudyRecord:
        """Check the component exists, has a study and the user is a member of it.

        Returns:
            The component's study
        """
        if component is None:
            raise NotFoundError(f"A component with ID {component_id} doesn't exist")
        study = self.repository.find_study(component.study_id)
        if study is None:
            raise ForbiddenError(f"Component with ID {component_id} doesn't belong to any study")
        self._forbid_non_member(study, user)
        return study

    def check_standard_for_batch(self, batch: Optional[BatchRecord], batch_id: int, user: UserRecord) -> StudyRecord:
        if batch is None:
            raise NotFoundError(f"A batch with ID {batch_id} doesn't exist")
        study = self.repository.find_study(batch.study_id)
        self._forbid_non_member(study, user)
        return study

    def check_standard_for_group(
        self, group_result: Optional[GroupResultRecord], group_result_id: int, user: UserRecord
    ) -> StudyRecord:
        if group_result is None:
            raise NotFoundError(f"A group result with ID {group_result_id} doesn't exist")
        batch = self.repository.find_batch(group_result.batch_id)
        study = self.repository.find_study(batch.study_id)
        self._forbid_non_member(study, user)
        return study

    # ========================================================================
    # Results
    # ========================================================================

    def check_component_result(
        self, component_result: ComponentResultRecord, user: UserRecord, study_must_not_be_locked: bool
    ) -> StudyRecord:
        """Check a component result's component and study, and optionally the lock.

        Args:
            component_result: Component result to check
            user: The study of the result must have this user
            study_must_not_be_locked: If True, a locked study fails with ForbiddenError

        Returns:
            The study the component result belongs to
        """
        component = self.repository.find_component(component_result.component_id)
        study = self.check_standard_for_component(component_result.component_id, component, user)
        if study_must_not_be_locked:
            self.check_study_locked(study)
        return study

    def check_component_results(
        self,
        component_results: Iterable[ComponentResultRecord],
        user: UserRecord,
        study_must_not_be_locked: bool,
    ) -> Dict[int, StudyRecord]:
        """Check every component result; the first failure raises.

        Returns:
            The studies the component results belong to, by ID
        """
        studies = {}
        for component_result in component_results:
            study = self.check_component_result(component_result, user, study_must_not_be_locked)
            studies[study.id] = study
        return studies

    def check_study_result(
        self, study_result: StudyResultRecord, user: UserRecord, study_must_not_be_locked: bool
    ) -> StudyRecord:
        """Check a study result's study, and optionally the lock.

        Returns:
            The study the study result belongs to
        """
        study = self.repository.find_study(study_result.study_id)
        self.check_standard_for_study(study, study_result.study_id, user)
        if study_must_not_be_locked:
            self.check_study_locked(study)
        return study

    def check_study_results(
        self,
        study_results: Iterable[StudyResultRecord],
        user: UserRecord,
        study_must_not_be_locked: bool,
    ) -> Dict[int, StudyRecord]:
        """Check every study result; the first failure raises.

        Returns:
            The studies the study results belong to, by ID
        """
        studies = {}
        for study_result in study_results:
            study = self.check_study_result(study_result, user, study_must_not_be_locked)
            studies[study.id] = study
        return studies

    # ========================================================================
    # Workers
    # ========================================================================

    def check_worker(self, worker: Optional[WorkerRecord], worker_id: int) -> None:
        if worker is None:
            raise BadRequestError(f"A worker with ID {worker_id} doesn't exist")

    def check_user_allowed_to_access_worker(self, user: UserRecord, worker: WorkerRecord) -> None:
        """Worker must belong to a batch of one of the user's studies."""
        if self.allow_superuser and user.is_superuser:
            return
        if not self.repository.is_worker_accessible(worker.id, user.id):
            raise ForbiddenError("User is not allowed to access this Worker")

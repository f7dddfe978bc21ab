"""Repository layer for result data.

Provides the paginated reads, count queries, ID resolvers and mutations
used by the result streamer and remover, abstracting away SQLAlchemy
query construction. All result lists are ordered by ID, which is creation
order.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.orm import Session

from study_results.db.models import (
    BatchRecord,
    ComponentRecord,
    ComponentResultRecord,
    GroupResultRecord,
    StudyRecord,
    StudyResultRecord,
    UserRecord,
    WorkerRecord,
    batch_workers,
    study_users,
)


class ResultRepository:
    """Repository for result reads and removals within one session."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    @staticmethod
    def _page(query: Select, offset: Optional[int], limit: Optional[int]) -> Select:
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query

    def _count(self, query: Select) -> int:
        return int(self.session.execute(query).scalar_one())

    def _scalars(self, query: Select) -> list:
        return list(self.session.execute(query).scalars().all())

    # ========================================================================
    # Entity lookups
    # ========================================================================

    def find_user(self, user_id: int) -> Optional[UserRecord]:
        return self.session.get(UserRecord, user_id)

    def find_study(self, study_id: int) -> Optional[StudyRecord]:
        return self.session.get(StudyRecord, study_id)

    def find_batch(self, batch_id: int) -> Optional[BatchRecord]:
        return self.session.get(BatchRecord, batch_id)

    def find_component(self, component_id: int) -> Optional[ComponentRecord]:
        return self.session.get(ComponentRecord, component_id)

    def find_worker(self, worker_id: int) -> Optional[WorkerRecord]:
        return self.session.get(WorkerRecord, worker_id)

    def find_group_result(self, group_result_id: int) -> Optional[GroupResultRecord]:
        return self.session.get(GroupResultRecord, group_result_id)

    def find_study_result(self, study_result_id: int) -> Optional[StudyResultRecord]:
        return self.session.get(StudyResultRecord, study_result_id)

    def find_component_result(self, component_result_id: int) -> Optional[ComponentResultRecord]:
        return self.session.get(ComponentResultRecord, component_result_id)

    def find_studies_by_ids(self, study_ids: Iterable[int]) -> List[StudyRecord]:
        ids = list(study_ids)
        if not ids:
            return []
        return self._scalars(select(StudyRecord).where(StudyRecord.id.in_(ids)).order_by(StudyRecord.id))

    # ========================================================================
    # Membership
    # ========================================================================

    def is_study_member(self, study_id: int, user_id: int) -> bool:
        """Return True if the user is a member of the study."""
        query = select(func.count()).select_from(study_users).where(
            and_(study_users.c.study_id == study_id, study_users.c.user_id == user_id)
        )
        return self._count(query) > 0

    def add_study_member(self, study_id: int, user_id: int) -> None:
        self.session.execute(study_users.insert().values(study_id=study_id, user_id=user_id))

    def add_batch_worker(self, batch_id: int, worker_id: int) -> None:
        self.session.execute(batch_workers.insert().values(batch_id=batch_id, worker_id=worker_id))

    def is_worker_accessible(self, worker_id: int, user_id: int) -> bool:
        """Return True if the worker belongs to a batch of one of the user's studies."""
        query = (
            select(func.count())
            .select_from(batch_workers)
            .join(BatchRecord, BatchRecord.id == batch_workers.c.batch_id)
            .join(study_users, study_users.c.study_id == BatchRecord.study_id)
            .where(and_(batch_workers.c.worker_id == worker_id, study_users.c.user_id == user_id))
        )
        return self._count(query) > 0

    def remove_batch_worker_links(self, worker_id: int) -> None:
        self.session.execute(batch_workers.delete().where(batch_workers.c.worker_id == worker_id))

    # ========================================================================
    # Study result pages and counts
    # ========================================================================

    def count_study_results_by_study(self, study_id: int) -> int:
        query = select(func.count(StudyResultRecord.id)).where(StudyResultRecord.study_id == study_id)
        return self._count(query)

    def find_study_results_by_study(
        self, study_id: int, offset: Optional[int] = None, limit: Optional[int] = None
    ) -> List[StudyResultRecord]:
        query = select(StudyResultRecord).where(StudyResultRecord.study_id == study_id).order_by(StudyResultRecord.id)
        return self._scalars(self._page(query, offset, limit))

    def _batch_filter(self, batch_id: int, worker_type: Optional[str], exclude_worker_type: Optional[str]):
        clauses = [StudyResultRecord.batch_id == batch_id]
        if worker_type is not None:
            clauses.append(StudyResultRecord.worker_type == worker_type)
        if exclude_worker_type is not None:
            clauses.append(StudyResultRecord.worker_type != exclude_worker_type)
        return and_(*clauses)

    def count_study_results_by_batch(
        self,
        batch_id: int,
        worker_type: Optional[str] = None,
        exclude_worker_type: Optional[str] = None,
    ) -> int:
        """Count study results of a batch.

        Args:
            batch_id: Batch ID
            worker_type: Only count results run by this worker type
            exclude_worker_type: Skip results run by this worker type

        Returns:
            Number of matching study results
        """
        query = select(func.count(StudyResultRecord.id)).where(
            self._batch_filter(batch_id, worker_type, exclude_worker_type)
        )
        return self._count(query)

    def find_study_results_by_batch(
        self,
        batch_id: int,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        worker_type: Optional[str] = None,
        exclude_worker_type: Optional[str] = None,
    ) -> List[StudyResultRecord]:
        query = (
            select(StudyResultRecord)
            .where(self._batch_filter(batch_id, worker_type, exclude_worker_type))
            .order_by(StudyResultRecord.id)
        )
        return self._scalars(self._page(query, offset, limit))

    @staticmethod
    def _group_filter(group_result_id: int):
        return or_(
            StudyResultRecord.active_group_result_id == group_result_id,
            StudyResultRecord.history_group_result_id == group_result_id,
        )

    def count_study_results_by_group(self, group_result_id: int) -> int:
        query = select(func.count(StudyResultRecord.id)).where(self._group_filter(group_result_id))
        return self._count(query)

    def find_study_results_by_group(
        self, group_result_id: int, offset: Optional[int] = None, limit: Optional[int] = None
    ) -> List[StudyResultRecord]:
        query = select(StudyResultRecord).where(self._group_filter(group_result_id)).order_by(StudyResultRecord.id)
        return self._scalars(self._page(query, offset, limit))

    @staticmethod
    def _worker_filter(worker_id: int, user_id: int):
        member_studies = select(study_users.c.study_id).where(study_users.c.user_id == user_id)
        return and_(StudyResultRecord.worker_id == worker_id, StudyResultRecord.study_id.in_(member_studies))

    def count_study_results_by_worker(self, worker_id: int, user_id: int) -> int:
        """Count the worker's study results that belong to studies of the user."""
        query = select(func.count(StudyResultRecord.id)).where(self._worker_filter(worker_id, user_id))
        return self._count(query)

    def find_study_results_by_worker(
        self, worker_id: int, user_id: int, offset: Optional[int] = None, limit: Optional[int] = None
    ) -> List[StudyResultRecord]:
        query = (
            select(StudyResultRecord).where(self._worker_filter(worker_id, user_id)).order_by(StudyResultRecord.id)
        )
        return self._scalars(self._page(query, offset, limit))

    def find_all_study_results_of_worker(self, worker_id: int) -> List[StudyResultRecord]:
        query = select(StudyResultRecord).where(StudyResultRecord.worker_id == worker_id).order_by(StudyResultRecord.id)
        return self._scalars(query)

    def find_study_results_by_ids(
        self, study_result_ids: Iterable[int], offset: Optional[int] = None, limit: Optional[int] = None
    ) -> List[StudyResultRecord]:
        ids = list(study_result_ids)
        if not ids:
            return []
        query = select(StudyResultRecord).where(StudyResultRecord.id.in_(ids)).order_by(StudyResultRecord.id)
        return self._scalars(self._page(query, offset, limit))

    def count_component_results_for_study_result_ids(self, study_result_ids: Iterable[int]) -> dict[int, int]:
        """Count component results per study result.

        Args:
            study_result_ids: Study result IDs

        Returns:
            Mapping of study result ID to its number of component results
            (study results without any are mapped to 0)
        """
        ids = list(study_result_ids)
        counts = {srid: 0 for srid in ids}
        if not ids:
            return counts
        query = (
            select(ComponentResultRecord.study_result_id, func.count(ComponentResultRecord.id))
            .where(ComponentResultRecord.study_result_id.in_(ids))
            .group_by(ComponentResultRecord.study_result_id)
        )
        for srid, count in self.session.execute(query).all():
            counts[srid] = int(count)
        return counts

    def count_component_results_by_study_result(self, study_result_id: int) -> int:
        query = select(func.count(ComponentResultRecord.id)).where(
            ComponentResultRecord.study_result_id == study_result_id
        )
        return self._count(query)

    # ========================================================================
    # Component result pages and counts
    # ========================================================================

    def count_component_results_by_component(self, component_id: int) -> int:
        query = select(func.count(ComponentResultRecord.id)).where(ComponentResultRecord.component_id == component_id)
        return self._count(query)

    def find_component_results_by_component(
        self, component_id: int, offset: Optional[int] = None, limit: Optional[int] = None
    ) -> List[ComponentResultRecord]:
        query = (
            select(ComponentResultRecord)
            .where(ComponentResultRecord.component_id == component_id)
            .order_by(ComponentResultRecord.id)
        )
        return self._scalars(self._page(query, offset, limit))

    def find_component_results_by_study_result(self, study_result_id: int) -> List[ComponentResultRecord]:
        query = (
            select(ComponentResultRecord)
            .where(ComponentResultRecord.study_result_id == study_result_id)
            .order_by(ComponentResultRecord.id)
        )
        return self._scalars(query)

    def find_component_result_ids_by_study_result(self, study_result_id: int) -> List[int]:
        query = (
            select(ComponentResultRecord.id)
            .where(ComponentResultRecord.study_result_id == study_result_id)
            .order_by(ComponentResultRecord.id)
        )
        return self._scalars(query)

    def find_component_results_by_ids(
        self, component_result_ids: Iterable[int], offset: Optional[int] = None, limit: Optional[int] = None
    ) -> List[ComponentResultRecord]:
        ids = list(component_result_ids)
        if not ids:
            return []
        query = (
            select(ComponentResultRecord).where(ComponentResultRecord.id.in_(ids)).order_by(ComponentResultRecord.id)
        )
        return self._scalars(self._page(query, offset, limit))

    def get_data(self, component_result_id: int) -> Optional[str]:
        """Load only the (possibly large) result data of a component result."""
        query = select(ComponentResultRecord.data).where(ComponentResultRecord.id == component_result_id)
        return self.session.execute(query).scalar_one_or_none()

    # ========================================================================
    # ID resolvers
    # ========================================================================

    def _ids(self, column, where_column, values: Iterable[int]) -> List[int]:
        ids = list(values)
        if not ids:
            return []
        query = (
            select(column)
            .where(and_(where_column.in_(ids), column.is_not(None)))
            .distinct()
            .order_by(column)
        )
        return self._scalars(query)

    def find_component_ids_by_study_ids(self, study_ids: Iterable[int]) -> List[int]:
        return self._ids(ComponentRecord.id, ComponentRecord.study_id, study_ids)

    def find_component_result_ids_by_component_ids(self, component_ids: Iterable[int]) -> List[int]:
        return self._ids(ComponentResultRecord.id, ComponentResultRecord.component_id, component_ids)

    def find_component_result_ids_by_component_result_ids(self, component_result_ids: Iterable[int]) -> List[int]:
        """Filter the given IDs down to those that exist."""
        return self._ids(ComponentResultRecord.id, ComponentResultRecord.id, component_result_ids)

    def find_component_result_ids_by_study_result_ids(self, study_result_ids: Iterable[int]) -> List[int]:
        return self._ids(ComponentResultRecord.id, ComponentResultRecord.study_result_id, study_result_ids)

    def find_component_result_ids_without_study_result(self, component_result_ids: Iterable[int]) -> List[int]:
        """Return those of the given IDs whose component result has no study result."""
        ids = list(component_result_ids)
        if not ids:
            return []
        query = (
            select(ComponentResultRecord.id)
            .where(and_(ComponentResultRecord.id.in_(ids), ComponentResultRecord.study_result_id.is_(None)))
            .order_by(ComponentResultRecord.id)
        )
        return self._scalars(query)

    def find_study_result_ids_by_batch_ids(self, batch_ids: Iterable[int]) -> List[int]:
        return self._ids(StudyResultRecord.id, StudyResultRecord.batch_id, batch_ids)

    def find_study_result_ids_by_group_ids(self, group_result_ids: Iterable[int]) -> List[int]:
        ids = list(group_result_ids)
        if not ids:
            return []
        query = (
            select(StudyResultRecord.id)
            .where(
                or_(
                    StudyResultRecord.active_group_result_id.in_(ids),
                    StudyResultRecord.history_group_result_id.in_(ids),
                )
            )
            .order_by(StudyResultRecord.id)
        )
        return self._scalars(query)

    def find_study_result_ids_by_component_result_ids(self, component_result_ids: Iterable[int]) -> List[int]:
        return self._ids(ComponentResultRecord.study_result_id, ComponentResultRecord.id, component_result_ids)

    def find_study_ids_by_study_result_ids(self, study_result_ids: Iterable[int]) -> List[int]:
        return self._ids(StudyResultRecord.study_id, StudyResultRecord.id, study_result_ids)

    def find_study_result_ids_in_study(self, study_result_ids: Iterable[int], study_id: int) -> List[int]:
        """Return those of the given study result IDs that belong to the study."""
        ids = list(study_result_ids)
        if not ids:
            return []
        query = (
            select(StudyResultRecord.id)
            .where(and_(StudyResultRecord.id.in_(ids), StudyResultRecord.study_id == study_id))
            .order_by(StudyResultRecord.id)
        )
        return self._scalars(query)

    # ========================================================================
    # Group membership
    # ========================================================================

    def count_active_members(self, group_result_id: int) -> int:
        query = select(func.count(StudyResultRecord.id)).where(
            StudyResultRecord.active_group_result_id == group_result_id
        )
        return self._count(query)

    def count_history_members(self, group_result_id: int) -> int:
        query = select(func.count(StudyResultRecord.id)).where(
            StudyResultRecord.history_group_result_id == group_result_id
        )
        return self._count(query)

    # ========================================================================
    # Mutations
    # ========================================================================

    def add(self, entity) -> None:
        """Persist a new entity and assign its ID."""
        self.session.add(entity)
        self.session.flush()

    def update(self, entity) -> None:
        """Flush pending changes of an entity."""
        self.session.add(entity)
        self.session.flush()

    def remove(self, entity) -> None:
        """Delete an entity."""
        self.session.delete(entity)
        self.session.flush()

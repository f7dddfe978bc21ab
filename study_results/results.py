"""Load result records by ID, failing on the first one that doesn't exist."""

from __future__ import annotations

from typing import Iterable, List

from study_results.db.models import ComponentResultRecord, StudyResultRecord
from study_results.db.repository import ResultRepository
from study_results.exceptions import NotFoundError


class ResultService:
    def __init__(self, repository: ResultRepository):
        self.repository = repository

    def get_component_results(self, component_result_ids: Iterable[int]) -> List[ComponentResultRecord]:
        """Component results in the order of the given IDs.

        Raises:
            NotFoundError: For the first ID without a component result
        """
        results = []
        for crid in component_result_ids:
            component_result = self.repository.find_component_result(crid)
            if component_result is None:
                raise NotFoundError(f"A component result with ID {crid} doesn't exist")
            results.append(component_result)
        return results

    def get_study_results(self, study_result_ids: Iterable[int]) -> List[StudyResultRecord]:
        """Study results in the order of the given IDs.

        Raises:
            NotFoundError: For the first ID without a study result
        """
        results = []
        for srid in study_result_ids:
            study_result = self.repository.find_study_result(srid)
            if study_result is None:
                raise NotFoundError(f"A study result with ID {srid} doesn't exist")
            results.append(study_result)
        return results

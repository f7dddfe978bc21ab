"""Extraction of result IDs from selector input.

A selector is a comma-separated list of IDs and inclusive ``min-max``
ranges, e.g. ``"3, 5-7,12"``. Higher-level keys (study, batch, group, ...)
are resolved through the repository into component result IDs.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping

from study_results.db.repository import ResultRepository
from study_results.exceptions import BadRequestError

logger = logging.getLogger(__name__)

_RANGE_PATTERN = re.compile(r"^(\d+)\s*-\s*(\d+)$")
_ID_PATTERN = re.compile(r"^\d+$")


def extract_ids(selector: str) -> List[int]:
    """Parse a selector string into a list of IDs.

    Whitespace and empty tokens are ignored. Ranges are expanded inclusively.
    IDs keep their encounter order and duplicates are kept.

    Args:
        selector: Comma-separated IDs and ``min-max`` ranges

    Returns:
        List of IDs

    Raises:
        BadRequestError: If the selector has no entries, a token is not a
            number or a range, or a range has min > max
    """
    if selector is None:
        raise BadRequestError("No result IDs given")

    ids: List[int] = []
    for token in (element.strip() for element in selector.split(",")):
        if not token:
            continue
        range_match = _RANGE_PATTERN.match(token)
        if range_match:
            low, high = int(range_match.group(1)), int(range_match.group(2))
            if low > high:
                raise BadRequestError(f"Invalid ID range {token}: minimum is larger than maximum")
            ids.extend(range(low, high + 1))
        elif _ID_PATTERN.match(token):
            ids.append(int(token))
        else:
            raise BadRequestError(f"Malformed result ID '{token}'")

    if not ids:
        raise BadRequestError("No result IDs given")
    return ids


def _ids_from_value(field: str, value: Any) -> List[int]:
    """Accept an int, a selector string or a list of either."""
    if isinstance(value, bool):
        raise BadRequestError(f"Malformed value for {field}")
    if isinstance(value, int):
        return [value]
    if isinstance(value, str):
        return extract_ids(value)
    if isinstance(value, (list, tuple)):
        ids: List[int] = []
        for element in value:
            ids.extend(_ids_from_value(field, element))
        return ids
    raise BadRequestError(f"Malformed value for {field}")


class ComponentResultIdsExtractor:
    """Resolves selector mappings into existing component result IDs.

    Accepted keys: studyIds, componentIds, componentResultIds,
    studyResultIds, batchIds, groupIds. The same mapping shape works for a
    JSON request body and for a parsed query string.
    """

    FIELDS = ("studyIds", "componentIds", "componentResultIds", "studyResultIds", "batchIds", "groupIds")

    def __init__(self, repository: ResultRepository):
        self.repository = repository

    def extract(self, selector: Mapping[str, Any]) -> List[int]:
        """Return the sorted, deduplicated component result IDs for ``selector``.

        Raises:
            BadRequestError: On unknown keys or malformed values
        """
        component_result_ids: set[int] = set()
        for field, value in selector.items():
            if field not in self.FIELDS:
                raise BadRequestError(f"Unknown field {field}")
            ids = _ids_from_value(field, value)
            component_result_ids.update(self._resolve(field, ids))
        logger.debug(f"Extracted {len(component_result_ids)} component result IDs from {sorted(selector)}")
        return sorted(component_result_ids)

    def extract_all(self, *selectors: Mapping[str, Any]) -> List[int]:
        """Union of :meth:`extract` over several selectors (e.g. body and query)."""
        merged: set[int] = set()
        for selector in selectors:
            merged.update(self.extract(selector))
        return sorted(merged)

    def _resolve(self, field: str, ids: Iterable[int]) -> List[int]:
        repo = self.repository
        if field == "studyIds":
            return repo.find_component_result_ids_by_component_ids(repo.find_component_ids_by_study_ids(ids))
        if field == "componentIds":
            return repo.find_component_result_ids_by_component_ids(ids)
        if field == "componentResultIds":
            return repo.find_component_result_ids_by_component_result_ids(ids)
        if field == "studyResultIds":
            return repo.find_component_result_ids_by_study_result_ids(ids)
        if field == "batchIds":
            return repo.find_component_result_ids_by_study_result_ids(repo.find_study_result_ids_by_batch_ids(ids))
        return repo.find_component_result_ids_by_study_result_ids(repo.find_study_result_ids_by_group_ids(ids))
